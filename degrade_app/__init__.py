"""Application factory for the login degradation service."""
from __future__ import annotations

import logging

import click
from flask import Flask

from .config import BaseConfig
from .extensions import db, login_manager
from .auth import auth_bp
from .degradation import DegradationGuard, DegradeSettings, check_required_fields
from .models import User
from .stores import SQLAlchemyAccountStore


logger = logging.getLogger(__name__)


def create_app(config_object: type[BaseConfig] | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or BaseConfig)

    # Misconfigured throttling fails here rather than on the first login.
    settings = DegradeSettings.from_config(app.config)
    check_required_fields(User, settings)

    # Initialize extensions.
    db.init_app(app)
    login_manager.init_app(app)

    app.degradation_guard = DegradationGuard(
        settings, SQLAlchemyAccountStore(db.session, User)
    )

    # Register blueprints.
    app.register_blueprint(auth_bp, url_prefix="/auth")

    # Provide CLI helpers for local dev.
    @app.cli.command("create-db")
    def create_db_command() -> None:
        """Create tables using SQLAlchemy metadata for quick testing."""
        with app.app_context():
            db.create_all()
            print("Database tables created.")

    @app.cli.command("reset-degradation")
    @click.argument("email")
    def reset_degradation_command(email: str) -> None:
        """Clear the failed login counter for EMAIL."""
        guard = app.degradation_guard
        user = guard.store.load(email.strip().lower())
        if user is None:
            raise click.ClickException(f"No account for {email}")
        guard.reset_degradation(user)
        logger.info("Cleared login degradation for %s", user.email)
        print(f"Login degradation cleared for {user.email}.")

    return app
