"""Account persistence used by the degradation guard."""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from sqlalchemy import func, inspect as sa_inspect, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from .exceptions import PersistenceError, ValidationError


COUNTER_FIELD = "failed_attempts"


class AccountStore(Protocol):
    """Reads accounts and writes their failure counter.

    ``save`` has two modes: validated, which refuses an invalid record, and
    ``skip_validation=True``, which writes it regardless. The counter writes are
    always unconditional and must be atomic per account.
    """

    def load(self, identity: str) -> Optional[Any]: ...

    def save(self, account: Any, skip_validation: bool = False) -> None: ...

    def is_persisted(self, account: Any) -> bool: ...

    def increment_failed_attempts(self, account: Any) -> int: ...

    def reset_failed_attempts(self, account: Any) -> None: ...


@dataclass
class Account:
    """Plain account record for :class:`InMemoryAccountStore`."""

    identity: str
    failed_attempts: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    def validate(self) -> None:
        if self.errors:
            raise ValidationError(dict(self.errors))


class InMemoryAccountStore:
    """Process-local store keyed by identity (email/IP)."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._lock = threading.Lock()

    def load(self, identity: str) -> Optional[Account]:
        return self._accounts.get(identity)

    def save(self, account: Account, skip_validation: bool = False) -> None:
        if not skip_validation:
            account.validate()
        with self._lock:
            self._accounts[account.identity] = account

    def is_persisted(self, account: Account) -> bool:
        return self._accounts.get(account.identity) is account

    def increment_failed_attempts(self, account: Account) -> int:
        with self._lock:
            account.failed_attempts = (account.failed_attempts or 0) + 1
            return account.failed_attempts

    def reset_failed_attempts(self, account: Account) -> None:
        with self._lock:
            account.failed_attempts = 0


class SQLAlchemyAccountStore:
    """Store backed by a mapped model with a ``failed_attempts`` column.

    Counter writes are single ``UPDATE`` statements evaluated by the database,
    so concurrent attempts against one row cannot lose increments.
    """

    def __init__(self, session: Session, model: type, identity_field: str = "email") -> None:
        self.session = session
        self.model = model
        self.identity_field = identity_field

    def load(self, identity: str) -> Optional[Any]:
        column = getattr(self.model, self.identity_field)
        return self.session.execute(
            select(self.model).where(column == identity)
        ).scalar_one_or_none()

    def save(self, account: Any, skip_validation: bool = False) -> None:
        if not skip_validation:
            account.validate()
        try:
            self.session.add(account)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceError(f"Could not save {account!r}") from exc

    def is_persisted(self, account: Any) -> bool:
        return sa_inspect(account).has_identity

    def increment_failed_attempts(self, account: Any) -> int:
        column = getattr(type(account), COUNTER_FIELD)
        return self._write_counter(account, func.coalesce(column, 0) + 1)

    def reset_failed_attempts(self, account: Any) -> None:
        self._write_counter(account, 0)

    def _write_counter(self, account: Any, value: Any) -> int:
        model = type(account)
        state = sa_inspect(account)
        if state.identity is None:
            raise PersistenceError(f"{account!r} has not been saved yet")
        criteria = [
            column == key
            for column, key in zip(sa_inspect(model).primary_key, state.identity)
        ]
        try:
            self.session.execute(
                update(model)
                .where(*criteria)
                .values({COUNTER_FIELD: value})
                .execution_options(synchronize_session=False)
            )
            count = self.session.execute(
                select(getattr(model, COUNTER_FIELD)).where(*criteria)
            ).scalar_one()
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceError(f"Could not write {COUNTER_FIELD} for {account!r}") from exc
        set_committed_value(account, COUNTER_FIELD, count)
        return count
