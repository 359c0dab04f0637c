"""Authorization ledger — deductions, exhaustion, alert dedupe, expiry sweep."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from careshift.authorizations.ledger import AuthorizationLedger
from careshift.authorizations.models import Authorization, AuthorizationAlert
from careshift.common.audit import AuditTrail
from careshift.common.constants import (
    AlertSeverity,
    AlertType,
    AuthorizationStatus,
    UnitType,
    UserRole,
)
from careshift.common.exceptions import (
    ForbiddenException,
    InvalidStateError,
    NotFoundException,
)
from careshift.common.unit_of_work import UnitOfWork
from tests.conftest import (
    COMPANY_ID,
    TestSessionFactory,
    actor,
    make_authorization,
    make_user,
    seed,
)

NOW = datetime.now(timezone.utc)
TODAY = NOW.date()


async def _deduct(uow, auth_or_client_id, hours: float, *, service_type="PERSONAL_CARE"):
    client_id = getattr(auth_or_client_id, "client_id", auth_or_client_id)
    return await uow.run(
        lambda: AuthorizationLedger.deduct_units(
            uow,
            company_id=COMPANY_ID,
            client_id=client_id,
            service_type=service_type,
            hours_worked=hours,
            shift_id=uuid.uuid4(),
            now=NOW,
        )
    )


async def _reload(auth_id) -> Authorization:
    async with TestSessionFactory() as session:
        return await session.get(Authorization, auth_id)


async def _open_alerts(auth_id) -> list[AuthorizationAlert]:
    async with TestSessionFactory() as session:
        return (
            await session.execute(
                select(AuthorizationAlert).where(
                    AuthorizationAlert.authorization_id == auth_id,
                    AuthorizationAlert.is_dismissed.is_(False),
                )
            )
        ).scalars().all()


# ── Deduction ───────────────────────────────────────────────────────


async def test_hourly_deduction_rounds_up_to_quarter(uow, sink, care_client):
    auth = await seed(make_authorization(care_client.id, authorized_units=40))

    result = await _deduct(uow, auth, 2.1)

    assert result.found is True
    assert result.units_deducted == 2.25
    assert result.used_units == 2.25
    assert result.remaining_units == 37.75
    assert result.status == AuthorizationStatus.active
    assert result.alerts == []
    stored = await _reload(auth.id)
    assert stored.used_units == 2.25
    assert stored.remaining_units == 37.75
    assert stored.version == 2
    assert await _open_alerts(auth.id) == []
    assert sink.sent == []


async def test_exhausting_quarter_hourly_authorization(uow, sink, care_client):
    auth = await seed(
        make_authorization(
            care_client.id,
            unit_type=UnitType.quarter_hourly,
            authorized_units=10,
            used_units=9,
        )
    )

    result = await _deduct(uow, auth, 0.1)

    assert result.units_deducted == 1.0
    assert result.used_units == 10.0
    assert result.remaining_units == 0.0
    assert result.status == AuthorizationStatus.exhausted
    assert result.alerts == [AlertType.units_exhausted]

    alerts = await _open_alerts(auth.id)
    assert len(alerts) == 1
    assert alerts[0].alert_type == AlertType.units_exhausted
    assert alerts[0].severity == AlertSeverity.critical
    assert sink.events() == ["AUTH_UNITS_EXHAUSTED"]

    # An exhausted authorization is no longer ACTIVE, so nothing else is charged
    again = await _deduct(uow, auth, 1.0)
    assert again.found is False
    assert len(await _open_alerts(auth.id)) == 1


async def test_remaining_never_negative(uow, care_client):
    auth = await seed(make_authorization(care_client.id, authorized_units=2, used_units=1.5))
    result = await _deduct(uow, auth, 3.0)
    assert result.used_units == 4.5
    assert result.remaining_units == 0.0
    assert result.status == AuthorizationStatus.exhausted


async def test_no_authorization_found_is_not_an_error(uow, care_client):
    await seed(make_authorization(care_client.id, service_type="SKILLED_NURSING"))
    result = await _deduct(uow, care_client.id, 2.0, service_type="PERSONAL_CARE")
    assert result.found is False
    assert result.client_id == care_client.id
    assert result.on_date == TODAY


async def test_authorization_outside_date_range_not_used(uow, care_client):
    await seed(
        make_authorization(
            care_client.id,
            start_date=TODAY + timedelta(days=1),
            end_date=TODAY + timedelta(days=30),
        )
    )
    result = await _deduct(uow, care_client.id, 1.0)
    assert result.found is False


async def test_soonest_ending_authorization_is_charged(uow, care_client):
    later = make_authorization(care_client.id, end_date=TODAY + timedelta(days=90))
    sooner = make_authorization(care_client.id, end_date=TODAY + timedelta(days=10))
    await seed(later, sooner)
    result = await _deduct(uow, care_client.id, 1.0)
    assert result.authorization_id == sooner.id


async def test_missing_service_type_matches_any_authorization(uow, care_client):
    auth = await seed(make_authorization(care_client.id, service_type="HOMEMAKER"))
    result = await _deduct(uow, care_client.id, 1.0, service_type=None)
    assert result.authorization_id == auth.id


async def test_deduction_writes_audit_row(uow, care_client):
    auth = await seed(make_authorization(care_client.id))
    await _deduct(uow, auth, 1.0)
    async with TestSessionFactory() as session:
        rows = (
            await session.execute(
                select(AuditTrail).where(AuditTrail.entity_id == auth.id)
            )
        ).scalars().all()
    assert [r.action for r in rows] == ["AUTHORIZATION_UNITS_DEDUCTED"]
    assert rows[0].old_values["used_units"] == 0.0
    assert rows[0].new_values["units_deducted"] == 1.0


# ── Low-units alerts ────────────────────────────────────────────────


async def test_low_units_warning_then_escalation_without_duplicates(uow, sink, care_client):
    auth = await seed(make_authorization(care_client.id, authorized_units=10, used_units=7.5))

    first = await _deduct(uow, auth, 0.5)   # 80%
    assert first.alerts == [AlertType.low_units]
    second = await _deduct(uow, auth, 0.25)  # 82.5%, still WARNING
    assert second.alerts == []
    third = await _deduct(uow, auth, 0.75)  # 90%, escalates
    assert third.alerts == [AlertType.low_units]

    alerts = await _open_alerts(auth.id)
    assert len(alerts) == 1
    assert alerts[0].severity == AlertSeverity.critical
    assert sink.events() == ["AUTH_UNITS_LOW", "AUTH_UNITS_LOW"]


async def test_exhaustion_raises_only_exhausted_alert(uow, care_client):
    auth = await seed(make_authorization(care_client.id, authorized_units=4, used_units=2))
    result = await _deduct(uow, auth, 2.0)
    assert result.alerts == [AlertType.units_exhausted]
    types = {a.alert_type for a in await _open_alerts(auth.id)}
    assert types == {AlertType.units_exhausted}


# ── Expiry sweep ────────────────────────────────────────────────────


async def test_expiration_sweep(uow, sink, care_client):
    lapsed = make_authorization(
        care_client.id,
        start_date=TODAY - timedelta(days=60),
        end_date=TODAY - timedelta(days=1),
    )
    critical = make_authorization(care_client.id, end_date=TODAY + timedelta(days=5))
    warning = make_authorization(care_client.id, end_date=TODAY + timedelta(days=20))
    distant = make_authorization(care_client.id, end_date=TODAY + timedelta(days=120))
    await seed(lapsed, critical, warning, distant)

    result = await uow.run(
        lambda: AuthorizationLedger.evaluate_expirations(uow, COMPANY_ID, now=NOW)
    )
    assert result.expired == [lapsed.id]
    assert result.alerts_raised == 2
    assert (await _reload(lapsed.id)).status == AuthorizationStatus.expired

    severities = {
        a.authorization_id: a.severity
        for auth in (critical, warning, distant)
        for a in await _open_alerts(auth.id)
    }
    assert severities == {
        critical.id: AlertSeverity.critical,
        warning.id: AlertSeverity.warning,
    }
    assert sink.events().count("AUTH_EXPIRING") == 2

    # Running again changes nothing
    again = await uow.run(
        lambda: AuthorizationLedger.evaluate_expirations(uow, COMPANY_ID, now=NOW)
    )
    assert again.expired == []
    assert again.alerts_raised == 0


# ── Dismissal ───────────────────────────────────────────────────────


async def test_dismiss_alert(uow, supervisor, care_client):
    auth = await seed(make_authorization(care_client.id, authorized_units=1))
    await _deduct(uow, auth, 1.0)
    (alert,) = await _open_alerts(auth.id)

    dismissed = await uow.run(
        lambda: AuthorizationLedger.dismiss_alert(uow, actor(supervisor), alert.id)
    )
    assert dismissed.is_dismissed is True
    assert dismissed.dismissed_by_id == supervisor.id
    assert await _open_alerts(auth.id) == []

    with pytest.raises(InvalidStateError):
        await uow.run(
            lambda: AuthorizationLedger.dismiss_alert(uow, actor(supervisor), alert.id)
        )


async def test_dismiss_alert_guards(uow, carer, supervisor):
    with pytest.raises(ForbiddenException):
        await uow.run(
            lambda: AuthorizationLedger.dismiss_alert(uow, actor(carer), uuid.uuid4())
        )
    with pytest.raises(NotFoundException):
        await uow.run(
            lambda: AuthorizationLedger.dismiss_alert(uow, actor(supervisor), uuid.uuid4())
        )


async def test_dismissed_alert_can_be_raised_again(uow, care_client):
    manager = await seed(make_user(role=UserRole.ops_manager))
    auth = await seed(make_authorization(care_client.id, authorized_units=10, used_units=7.5))
    await _deduct(uow, auth, 0.5)
    (alert,) = await _open_alerts(auth.id)
    await uow.run(lambda: AuthorizationLedger.dismiss_alert(uow, actor(manager), alert.id))

    result = await _deduct(uow, auth, 0.25)
    assert result.alerts == [AlertType.low_units]
    assert len(await _open_alerts(auth.id)) == 1


# ── Concurrent deductions ───────────────────────────────────────────


async def test_stale_authorization_write_is_rejected(uow, care_client):
    auth = await seed(make_authorization(care_client.id, authorized_units=40))

    async with TestSessionFactory() as session:
        stale = await session.get(Authorization, auth.id)
        assert stale.version == 1

        await _deduct(uow, auth, 2.0)

        stale.used_units = stale.used_units + 2.0
        with pytest.raises(StaleDataError):
            await session.flush()
        await session.rollback()

    stored = await _reload(auth.id)
    assert stored.used_units == 2.0
    assert stored.version == 2


async def test_racing_deductions_are_both_charged(monkeypatch, sink, care_client):
    auth = await seed(make_authorization(care_client.id, authorized_units=40))
    first = UnitOfWork(TestSessionFactory, notifier=sink)
    second = UnitOfWork(TestSessionFactory, notifier=sink)
    original = AuthorizationLedger.find_active_authorization
    reads: list[int] = []

    async def read_then_lose_race(uow, **kw):
        # First attempt of ``first`` reads the row, then ``second`` commits
        # before ``first`` writes.
        found = await original(uow, **kw)
        if uow is first:
            reads.append(found.version)
            if len(reads) == 1:
                await _deduct(second, auth, 2.0)
        return found

    monkeypatch.setattr(AuthorizationLedger, "find_active_authorization", read_then_lose_race)

    result = await _deduct(first, auth, 2.0)

    assert reads == [1, 2]
    assert result.units_deducted == 2.0
    stored = await _reload(auth.id)
    assert stored.used_units == 4.0
    assert stored.remaining_units == 36.0
    assert stored.version == 3

    async with TestSessionFactory() as session:
        audits = (
            await session.execute(
                select(AuditTrail).where(
                    AuditTrail.entity_id == auth.id,
                    AuditTrail.action == "AUTHORIZATION_UNITS_DEDUCTED",
                )
            )
        ).scalars().all()
    assert len(audits) == 2
