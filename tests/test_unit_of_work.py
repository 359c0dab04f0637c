"""Unit of work — commit/rollback, retry on lost races, post-commit dispatch."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from careshift.auth.models import User
from careshift.common.constants import NotificationEvent, UserRole
from careshift.common.exceptions import PersistenceFailure, ValidationException
from careshift.common.unit_of_work import (
    PendingNotification,
    UnitOfWork,
    is_retryable_conflict,
)
from tests.conftest import COMPANY_ID, TestSessionFactory, make_user


def _notice() -> PendingNotification:
    return PendingNotification(
        company_id=COMPANY_ID,
        event_type=NotificationEvent.shift_assigned,
        title="t",
        message="m",
    )


async def _user_count() -> int:
    async with TestSessionFactory() as session:
        return (await session.execute(select(func.count()).select_from(User))).scalar_one()


class _PgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(sqlstate)
        self.sqlstate = sqlstate


def test_retryable_conflicts():
    assert is_retryable_conflict(StaleDataError("version mismatch"))
    assert is_retryable_conflict(OperationalError("stmt", {}, _PgError("40001")))
    assert is_retryable_conflict(OperationalError("stmt", {}, _PgError("40P01")))
    assert is_retryable_conflict(OperationalError("stmt", {}, _PgError("23P01")))
    assert not is_retryable_conflict(OperationalError("stmt", {}, _PgError("23505")))
    assert not is_retryable_conflict(ValueError("nope"))


async def test_commit_persists_and_dispatches_after(sink):
    uow = UnitOfWork(TestSessionFactory, notifier=sink)
    async with uow:
        uow.session.add(make_user())
        uow.notify(_notice())
        assert sink.sent == []
    assert await _user_count() == 1
    assert len(sink.sent) == 1


async def test_rollback_discards_writes_and_notifications(sink):
    uow = UnitOfWork(TestSessionFactory, notifier=sink)
    with pytest.raises(RuntimeError):
        async with uow:
            uow.session.add(make_user())
            await uow.session.flush()
            uow.notify(_notice())
            raise RuntimeError("boom")
    assert await _user_count() == 0
    assert sink.sent == []


async def test_run_retries_lost_race_then_succeeds(uow, sink):
    attempts = []

    async def operation():
        attempts.append(1)
        uow.session.add(make_user(role=UserRole.staff))
        uow.notify(_notice())
        if len(attempts) == 1:
            raise StaleDataError("lost the race")
        return "ok"

    assert await uow.run(operation) == "ok"
    assert len(attempts) == 2
    assert await _user_count() == 1
    assert len(sink.sent) == 1


async def test_run_gives_up_with_persistence_failure(sink):
    uow = UnitOfWork(TestSessionFactory, notifier=sink, max_attempts=3)
    attempts = []

    async def operation():
        attempts.append(1)
        raise StaleDataError("always stale")

    with pytest.raises(PersistenceFailure) as exc_info:
        await uow.run(operation)
    assert len(attempts) == 3
    assert exc_info.value.status_code == 503
    assert sink.sent == []


async def test_run_does_not_retry_business_errors(uow):
    attempts = []

    async def operation():
        attempts.append(1)
        raise ValidationException({"field": ["bad"]})

    with pytest.raises(ValidationException):
        await uow.run(operation)
    assert len(attempts) == 1


async def test_failing_sink_does_not_undo_commit(uow, sink):
    sink.fail = True

    async def operation():
        uow.session.add(make_user())
        uow.notify(_notice())
        uow.notify(_notice())

    await uow.run(operation)
    assert await _user_count() == 1


async def test_session_requires_begin():
    uow = UnitOfWork(TestSessionFactory)
    with pytest.raises(RuntimeError):
        uow.session
