"""Authentication blueprint."""
from __future__ import annotations

import logging

from flask import Blueprint, abort, current_app, request
from flask_login import current_user, login_required, login_user, logout_user

from .degradation import Verdict
from .exceptions import PersistenceError, ValidationError
from .models import User


logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)


def _json_payload() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _credentials_from_payload(data: dict) -> tuple[str, str]:
    for field in ("email", "password"):
        if not data.get(field):
            abort(400, description=f"Missing field: {field}")
        if not isinstance(data[field], str):
            abort(400, description=f"Field must be a string: {field}")
    return data["email"].strip().lower(), data["password"]


@auth_bp.route("/signup", methods=["POST"])
def signup() -> tuple[dict, int]:
    payload = _json_payload()
    email, password = _credentials_from_payload(payload)

    store = current_app.degradation_guard.store
    if store.load(email) is not None:
        abort(400, description="Email already registered")

    user = User(email=email, failed_attempts=0)
    user.set_password(password)
    try:
        store.save(user)
    except ValidationError as exc:
        abort(400, description=str(exc))
    except PersistenceError:
        abort(400, description="Email already registered")

    return {"message": "Account created"}, 201


@auth_bp.route("/login", methods=["POST"])
def login() -> tuple[dict, int]:
    payload = _json_payload()
    email = payload.get("email", "")
    password = payload.get("password", "")
    if not isinstance(email, str) or not isinstance(password, str):
        abort(400, description="Email and password must be strings")
    email = email.strip().lower()

    guard = current_app.degradation_guard
    user = guard.store.load(email) if email else None
    if user is None:
        abort(401, description="Invalid credentials")

    verdict = guard.authenticate(
        user, lambda: Verdict.from_bool(user.check_password(password))
    )
    if verdict is Verdict.REJECTED:
        logger.info("Rejected login for %s", email)
        abort(401, description="Invalid credentials")

    login_user(user)
    return {"message": "Logged in"}, 200


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout() -> tuple[dict, int]:
    logout_user()
    return {"message": "Logged out"}, 200


@auth_bp.route("/degradation", methods=["GET"])
@login_required
def degradation_status() -> tuple[dict, int]:
    guard = current_app.degradation_guard
    return {
        "failed_attempts": guard.counter(current_user).count,
        "degraded": guard.is_degraded(current_user),
    }, 200
