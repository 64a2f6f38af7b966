"""Shared extensions."""
from __future__ import annotations

from flask_login import LoginManager
from flask_sqlalchemy import SQLAlchemy


db = SQLAlchemy()
# No login_view: the API answers 401 instead of redirecting.
login_manager = LoginManager()
