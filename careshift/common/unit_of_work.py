"""Explicit unit of work — one transaction per shift-affecting operation.

The unit of work owns the session, exposes ``begin`` / ``commit`` /
``rollback``, and holds the notifications raised during the transaction.
Notifications are dispatched only after a successful commit; a failing sink
is logged and never undoes the committed state.

``run`` wraps an operation in a transaction and retries it from scratch when
the database reports a concurrency conflict (serialization failure, deadlock,
exclusion-constraint violation, or an optimistic version mismatch).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from careshift.common.constants import NotificationEvent, UserRole
from careshift.common.exceptions import PersistenceFailure
from careshift.config import settings
from careshift.database import async_session_factory

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE codes that mean "another transaction won; try again"
_RETRYABLE_SQLSTATES = {
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "23P01",  # exclusion_violation
}


@dataclass
class PendingNotification:
    """A notification captured during a transaction, sent after commit."""

    company_id: uuid.UUID
    event_type: NotificationEvent
    title: str
    message: str
    recipient_ids: list[uuid.UUID] = field(default_factory=list)
    recipient_roles: list[UserRole] = field(default_factory=list)
    payload: dict[str, Any] = field(default_factory=dict)
    entity_type: Optional[str] = None
    entity_id: Optional[uuid.UUID] = None


def is_retryable_conflict(exc: BaseException) -> bool:
    """True when *exc* signals a lost race rather than a real error."""
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        return sqlstate in _RETRYABLE_SQLSTATES
    return False


class UnitOfWork:
    """Transaction boundary shared by the ledger and the shift controller."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
        notifier: Optional[Any] = None,
        *,
        max_attempts: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        self.notifier = notifier
        self.max_attempts = max_attempts or settings.TRANSACTION_MAX_ATTEMPTS
        self._session: Optional[AsyncSession] = None
        self._pending: list[PendingNotification] = []

    # ── Session access ──────────────────────────────────────────────

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError("UnitOfWork.begin() must be called before use.")
        return self._session

    @property
    def pending_notifications(self) -> list[PendingNotification]:
        return list(self._pending)

    # ── Transaction control ─────────────────────────────────────────

    async def begin(self) -> AsyncSession:
        if self._session is not None:
            raise RuntimeError("UnitOfWork already has an open transaction.")
        self._session = self._session_factory()
        await self._session.begin()
        self._pending = []
        return self._session

    async def commit(self) -> None:
        session = self.session
        try:
            await session.commit()
        finally:
            await self._close()
        pending, self._pending = self._pending, []
        await self._dispatch(pending)

    async def rollback(self) -> None:
        if self._session is None:
            return
        try:
            await self._session.rollback()
        finally:
            self._pending = []
            await self._close()

    async def _close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "UnitOfWork":
        await self.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()

    # ── Retrying runner ─────────────────────────────────────────────

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run *operation* inside a fresh transaction, retrying lost races.

        *operation* reads ``self.session`` and must be safe to re-run: every
        attempt starts from a clean transaction, so checks such as the
        carer-overlap query are evaluated again.
        """
        for attempt in range(1, self.max_attempts + 1):
            await self.begin()
            try:
                result = await operation()
                await self.commit()
                return result
            except Exception as exc:
                await self.rollback()
                if not is_retryable_conflict(exc):
                    raise
                logger.warning(
                    "Transaction conflict (attempt %d/%d): %s",
                    attempt, self.max_attempts, exc.__class__.__name__,
                )
                if attempt == self.max_attempts:
                    raise PersistenceFailure() from exc
        raise PersistenceFailure()  # pragma: no cover

    # ── Notifications ───────────────────────────────────────────────

    def notify(self, notification: PendingNotification) -> None:
        """Queue a notification; it is sent only if the transaction commits."""
        self._pending.append(notification)

    async def _dispatch(self, pending: list[PendingNotification]) -> None:
        if self.notifier is None:
            return
        for item in pending:
            try:
                await self.notifier.notify(item)
            except Exception:
                logger.exception(
                    "Notification %s for %s/%s failed; continuing",
                    item.event_type.value, item.entity_type, item.entity_id,
                )
