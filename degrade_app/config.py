"""Configuration helpers."""
from __future__ import annotations

import os


class BaseConfig:
    """Default configuration that can be overridden per environment."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", "sqlite:///degrade.db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seconds added to the failed-login delay for every consecutive failure.
    DEGRADE_INCREMENT = os.environ.get("DEGRADE_INCREMENT", "1.0")
    # "failed_attempts" escalates the delay, "none" disables throttling.
    DEGRADE_STRATEGY = os.environ.get("DEGRADE_STRATEGY", "failed_attempts")
    # Per model class overrides, e.g. {"User": "none"}.
    DEGRADE_STRATEGIES: dict[str, str] = {}


class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    DEGRADE_INCREMENT = 0.1
