"""Escalating-delay login throttling.

Every wrong guess against a persisted account bumps its ``failed_attempts``
counter and then blocks the caller for ``failed_attempts * increment``
seconds before the rejection is returned. A correct credential resets the
counter and returns immediately, so an account is slowed down but never
locked out.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping

from .exceptions import ConfigurationError, PersistenceError
from .stores import COUNTER_FIELD, AccountStore


logger = logging.getLogger(__name__)


class Verdict(Enum):
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"

    @classmethod
    def from_bool(cls, ok: bool) -> "Verdict":
        return cls.AUTHENTICATED if ok else cls.REJECTED


class DegradeStrategy(str, Enum):
    FAILED_ATTEMPTS = "failed_attempts"
    NONE = "none"

    @classmethod
    def parse(cls, value: "str | DegradeStrategy") -> "DegradeStrategy":
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(member.value for member in cls)
            raise ConfigurationError(
                f"Unknown degrade strategy {value!r}; expected one of: {choices}"
            ) from None


@dataclass(frozen=True)
class DegradeSettings:
    """Process-wide throttling configuration, fixed once the app is built."""

    increment: float
    default_strategy: DegradeStrategy = DegradeStrategy.FAILED_ATTEMPTS
    strategies: Mapping[str, DegradeStrategy] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not math.isfinite(self.increment) or self.increment <= 0:
            raise ConfigurationError(
                f"DEGRADE_INCREMENT must be a positive finite number, got {self.increment!r}"
            )
        object.__setattr__(self, "strategies", MappingProxyType(dict(self.strategies)))

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "DegradeSettings":
        raw_increment = config.get("DEGRADE_INCREMENT", 1.0)
        try:
            increment = float(raw_increment)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"DEGRADE_INCREMENT must be a number of seconds, got {raw_increment!r}"
            ) from None
        default = DegradeStrategy.parse(
            config.get("DEGRADE_STRATEGY", DegradeStrategy.FAILED_ATTEMPTS)
        )
        strategies = {
            name: DegradeStrategy.parse(value)
            for name, value in (config.get("DEGRADE_STRATEGIES") or {}).items()
        }
        return cls(increment=increment, default_strategy=default, strategies=strategies)

    def strategy_for(self, account_cls: type) -> DegradeStrategy:
        return self.strategies.get(account_cls.__name__, self.default_strategy)

    def strategy_enabled(self, account_cls: type, strategy: DegradeStrategy) -> bool:
        return self.strategy_for(account_cls) is strategy


def degrade_delay(failed_attempts: int, increment: float) -> float:
    """Seconds to hold back the caller after the given number of failures."""
    if failed_attempts < 0:
        raise ValueError(f"failed_attempts cannot be negative: {failed_attempts}")
    return failed_attempts * increment


def required_fields(account_cls: type, settings: DegradeSettings) -> list[str]:
    if settings.strategy_enabled(account_cls, DegradeStrategy.FAILED_ATTEMPTS):
        return [COUNTER_FIELD]
    return []


def check_required_fields(account_cls: type, settings: DegradeSettings) -> None:
    """Fail at startup if an account class cannot carry the counter."""
    missing = [
        name for name in required_fields(account_cls, settings)
        if not hasattr(account_cls, name)
    ]
    if missing:
        raise ConfigurationError(
            f"{account_cls.__name__} is throttled by "
            f"{settings.strategy_for(account_cls).value!r} but lacks: {', '.join(missing)}"
        )


class FailureCounter:
    """Consecutive-failure counter for one account.

    Writes are unconditional and best effort: a store failure is logged and the
    in-memory count still moves, so the caller always gets its delay and verdict.
    """

    def __init__(self, store: AccountStore, account: Any) -> None:
        self.store = store
        self.account = account

    @property
    def count(self) -> int:
        return getattr(self.account, COUNTER_FIELD, None) or 0

    def increment(self) -> int:
        previous = self.count
        try:
            return self.store.increment_failed_attempts(self.account)
        except PersistenceError:
            logger.warning("Could not store failed attempt for %r", self.account, exc_info=True)
            count = previous + 1
            setattr(self.account, COUNTER_FIELD, count)
            return count

    def reset(self) -> None:
        try:
            self.store.reset_failed_attempts(self.account)
        except PersistenceError:
            logger.warning("Could not reset failed attempts for %r", self.account, exc_info=True)
            setattr(self.account, COUNTER_FIELD, 0)

    def is_degraded(self) -> bool:
        return self.count > 0


class DegradationGuard:
    """Wraps a credential check with the escalating-delay policy."""

    def __init__(
        self,
        settings: DegradeSettings,
        store: AccountStore,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.store = store
        self.sleep = sleep

    def delay_for(self, failed_attempts: int) -> float:
        return degrade_delay(failed_attempts, self.settings.increment)

    def counter(self, account: Any) -> FailureCounter:
        return FailureCounter(self.store, account)

    def applies_to(self, account: Any) -> bool:
        return self.store.is_persisted(account) and self.settings.strategy_enabled(
            type(account), DegradeStrategy.FAILED_ATTEMPTS
        )

    def is_degraded(self, account: Any) -> bool:
        return self.counter(account).is_degraded()

    def reset_degradation(self, account: Any) -> None:
        self.counter(account).reset()

    def authenticate(self, account: Any, base_check: Callable[[], Verdict]) -> Verdict:
        if not self.applies_to(account):
            return base_check()

        counter = self.counter(account)
        if base_check() is Verdict.AUTHENTICATED:
            counter.reset()
            return Verdict.AUTHENTICATED

        failed_attempts = counter.increment()
        delay = self.delay_for(failed_attempts)
        logger.debug(
            "Rejected attempt %d for %r, holding caller for %.3fs",
            failed_attempts, account, delay,
        )
        self.sleep(delay)
        return Verdict.REJECTED
