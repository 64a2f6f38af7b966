"""Exceptions raised by the login degradation layer."""
from __future__ import annotations


class DegradeError(Exception):
    """Base class for degradation errors."""


class ConfigurationError(DegradeError):
    """Throttling is misconfigured; raised while the app is being built."""


class PersistenceError(DegradeError):
    """A counter write could not be stored."""


class ValidationError(DegradeError):
    """An account record failed validation on a validated save."""

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = errors
        message = ", ".join(f"{field}: {reason}" for field, reason in errors.items())
        super().__init__(message or "invalid account")
