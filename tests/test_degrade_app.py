from __future__ import annotations

import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.attributes import set_committed_value

from degrade_app import create_app
from degrade_app.config import TestingConfig
from degrade_app.exceptions import ConfigurationError, PersistenceError
from degrade_app.extensions import db
from degrade_app.models import User
from degrade_app.stores import SQLAlchemyAccountStore


class LockedSession:
    rolled_back = False

    def execute(self, *args, **kwargs):
        raise OperationalError("UPDATE users", {}, Exception("database is locked"))

    def rollback(self):
        self.rolled_back = True


class DisabledConfig(TestingConfig):
    DEGRADE_STRATEGIES = {"User": "none"}


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def delays(app, monkeypatch):
    recorded = []
    monkeypatch.setattr(app.degradation_guard, "sleep", recorded.append)
    return recorded


@pytest.fixture
def seeded_users(app):
    alice = User(email="alice@example.com")
    alice.set_password("alicepass")
    bob = User(email="bob@example.com", failed_attempts=5)
    bob.set_password("bobpass")
    db.session.add_all([alice, bob])
    db.session.commit()
    return {"alice": alice.id, "bob": bob.id}


def login(client, email, password):
    return client.post(
        "/auth/login",
        json={"email": email, "password": password},
    )


def failed_attempts(user_id: int) -> int:
    db.session.expire_all()
    return db.session.get(User, user_id).failed_attempts


def test_signup_creates_account_with_clean_counter(client):
    resp = client.post(
        "/auth/signup", json={"email": "Carol@Example.com", "password": "carolpass"}
    )
    assert resp.status_code == 201
    user = User.query.filter_by(email="carol@example.com").one()
    assert user.failed_attempts == 0
    assert user.check_password("carolpass")


def test_signup_rejects_duplicate_and_invalid_email(client, seeded_users):
    resp = client.post(
        "/auth/signup", json={"email": "alice@example.com", "password": "x"}
    )
    assert resp.status_code == 400
    resp = client.post("/auth/signup", json={"email": "not-an-email", "password": "x"})
    assert resp.status_code == 400
    resp = client.post("/auth/signup", json={"email": "dave@example.com"})
    assert resp.status_code == 400


def test_wrong_passwords_escalate_then_success_resets(client, seeded_users, delays):
    for _ in range(3):
        assert login(client, "alice@example.com", "wrong").status_code == 401

    assert delays == pytest.approx([0.1, 0.2, 0.3])
    assert failed_attempts(seeded_users["alice"]) == 3

    resp = login(client, "alice@example.com", "alicepass")
    assert resp.status_code == 200
    assert len(delays) == 3
    assert failed_attempts(seeded_users["alice"]) == 0


def test_counters_are_per_account(client, seeded_users, delays):
    login(client, "alice@example.com", "wrong")
    login(client, "bob@example.com", "wrong")

    assert failed_attempts(seeded_users["alice"]) == 1
    assert failed_attempts(seeded_users["bob"]) == 6
    assert delays == pytest.approx([0.1, 0.6])


def test_unknown_email_is_rejected_without_delay(client, seeded_users, delays):
    assert login(client, "nobody@example.com", "whatever").status_code == 401
    assert delays == []


def test_disabled_strategy_skips_throttling(monkeypatch):
    app = create_app(DisabledConfig)
    recorded = []
    monkeypatch.setattr(app.degradation_guard, "sleep", recorded.append)
    with app.app_context():
        db.create_all()
        bob = User(email="bob@example.com", failed_attempts=5)
        bob.set_password("bobpass")
        db.session.add(bob)
        db.session.commit()

        resp = login(app.test_client(), "bob@example.com", "wrong")
        assert resp.status_code == 401
        assert recorded == []
        assert failed_attempts(bob.id) == 5
        db.session.remove()
        db.drop_all()


def test_bad_degrade_config_fails_at_startup():
    class BadConfig(TestingConfig):
        DEGRADE_STRATEGY = "lockout"

    with pytest.raises(ConfigurationError):
        create_app(BadConfig)


def test_degradation_status_for_current_user(client, seeded_users, delays):
    assert client.get("/auth/degradation").status_code == 401

    login(client, "alice@example.com", "alicepass")
    resp = client.get("/auth/degradation")
    assert resp.status_code == 200
    assert resp.get_json() == {"failed_attempts": 0, "degraded": False}


def test_logout_requires_login(client, seeded_users):
    assert client.post("/auth/logout").status_code == 401
    login(client, "alice@example.com", "alicepass")
    assert client.post("/auth/logout").status_code == 200


def test_counter_write_is_atomic_against_stale_instances(app, seeded_users):
    store = app.degradation_guard.store
    user = db.session.get(User, seeded_users["alice"])
    store.increment_failed_attempts(user)
    store.increment_failed_attempts(user)

    # Another request loaded the row before those writes landed.
    set_committed_value(user, "failed_attempts", 0)
    assert store.increment_failed_attempts(user) == 3
    assert user.failed_attempts == 3
    assert failed_attempts(seeded_users["alice"]) == 3


def test_counter_write_ignores_invalid_account_fields(app, seeded_users):
    store = app.degradation_guard.store
    user = db.session.get(User, seeded_users["alice"])
    user.email = "broken"

    assert store.increment_failed_attempts(user) == 1
    db.session.expire_all()
    refreshed = db.session.get(User, seeded_users["alice"])
    assert refreshed.email == "broken"
    assert refreshed.failed_attempts == 1


def test_store_wraps_database_errors(app, seeded_users):
    session = LockedSession()
    store = SQLAlchemyAccountStore(session, User)
    user = db.session.get(User, seeded_users["alice"])

    with pytest.raises(PersistenceError):
        store.increment_failed_attempts(user)
    assert session.rolled_back


def test_database_error_still_rejects_with_delay(client, app, seeded_users, delays, monkeypatch):
    store = app.degradation_guard.store

    def fail(account):
        raise PersistenceError("database is locked")

    monkeypatch.setattr(store, "increment_failed_attempts", fail)
    assert login(client, "alice@example.com", "wrong").status_code == 401
    assert delays == pytest.approx([0.1])


def test_reset_degradation_cli(app, seeded_users):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["reset-degradation", "bob@example.com"])
    assert result.exit_code == 0
    assert failed_attempts(seeded_users["bob"]) == 0

    result = runner.invoke(args=["reset-degradation", "nobody@example.com"])
    assert result.exit_code != 0


def test_delay_runs_after_counter_is_committed(client, app, seeded_users, monkeypatch):
    seen = []

    def sleep(seconds):
        seen.append((seconds, db.session().in_transaction()))

    monkeypatch.setattr(app.degradation_guard, "sleep", sleep)
    assert login(client, "alice@example.com", "wrong").status_code == 401
    assert seen == [(0.1, False)]


def test_non_string_credentials_are_bad_requests(client, seeded_users, delays):
    assert login(client, 5, "wrong").status_code == 400
    assert login(client, "alice@example.com", ["wrong"]).status_code == 400
    resp = client.post("/auth/signup", json={"email": 5, "password": "x"})
    assert resp.status_code == 400
    assert client.post("/auth/login", json=["alice@example.com"]).status_code == 401
    assert delays == []
    assert failed_attempts(seeded_users["alice"]) == 0
