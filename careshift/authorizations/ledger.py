"""Authorization ledger — unit deduction, status transitions and alerting.

Every method takes the caller's ``UnitOfWork`` and writes through its
session, so a deduction, the alerts it raises and its audit row commit
together with the shift completion that triggered them.

Concurrency contract: the selected authorization row is read with
``SELECT … FOR UPDATE`` and every UPDATE is a compare-and-swap on
``Authorization.version``. A lost race surfaces as ``StaleDataError`` and
``UnitOfWork.run`` retries the whole operation.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional, Union

from sqlalchemy import select

from careshift.auth.dependencies import CurrentUser
from careshift.auth.permissions import can_manage_authorizations
from careshift.authorizations.models import Authorization, AuthorizationAlert
from careshift.authorizations.units import units_for_duration
from careshift.common.audit import create_audit_entry
from careshift.common.constants import (
    ALERT_RECIPIENT_ROLES,
    ALERT_TYPE_LABELS,
    SEVERITY_RANK,
    AlertSeverity,
    AlertType,
    AuthorizationStatus,
    NotificationEvent,
)
from careshift.common.exceptions import (
    ForbiddenException,
    InvalidStateError,
    NotFoundException,
)
from careshift.common.timeutils import agency_date, ensure_utc, utcnow
from careshift.common.unit_of_work import PendingNotification, UnitOfWork
from careshift.config import settings

logger = logging.getLogger(__name__)

_ALERT_EVENTS: dict[AlertType, NotificationEvent] = {
    AlertType.low_units: NotificationEvent.auth_units_low,
    AlertType.units_exhausted: NotificationEvent.auth_units_exhausted,
    AlertType.expiring_soon: NotificationEvent.auth_expiring,
}


# ── Results ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DeductionResult:
    authorization_id: uuid.UUID
    units_deducted: float
    used_units: float
    remaining_units: float
    status: AuthorizationStatus
    alerts: list[AlertType] = field(default_factory=list)

    found = True


@dataclass(frozen=True)
class NoAuthorizationFound:
    """Normal outcome when nothing covers the visit; completion still succeeds."""

    client_id: uuid.UUID
    service_type: Optional[str]
    on_date: date

    found = False


DeductionOutcome = Union[DeductionResult, NoAuthorizationFound]


@dataclass(frozen=True)
class ExpirationSweepResult:
    expired: list[uuid.UUID] = field(default_factory=list)
    alerts_raised: int = 0


def _snapshot(auth: Authorization) -> dict:
    return {
        "used_units": auth.used_units,
        "remaining_units": auth.remaining_units,
        "status": auth.status.value,
    }


# ── Ledger ──────────────────────────────────────────────────────────

class AuthorizationLedger:
    """Stateful operations on a client's authorizations."""

    @staticmethod
    async def find_active_authorization(
        uow: UnitOfWork,
        *,
        company_id: uuid.UUID,
        client_id: uuid.UUID,
        service_type: Optional[str],
        on_date: date,
        lock: bool = False,
    ) -> Optional[Authorization]:
        """Pick the ACTIVE authorization covering *on_date* that ends soonest.

        When *service_type* is None any service type of the client matches.
        """
        query = (
            select(Authorization)
            .where(
                Authorization.company_id == company_id,
                Authorization.client_id == client_id,
                Authorization.status == AuthorizationStatus.active,
                Authorization.start_date <= on_date,
                Authorization.end_date >= on_date,
            )
            .order_by(Authorization.end_date.asc(), Authorization.created_at.asc())
            .limit(1)
        )
        if service_type is not None:
            query = query.where(Authorization.service_type == service_type)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        return (await uow.session.execute(query)).scalars().first()

    @staticmethod
    async def deduct_units(
        uow: UnitOfWork,
        *,
        company_id: uuid.UUID,
        client_id: uuid.UUID,
        service_type: Optional[str],
        hours_worked: float,
        shift_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> DeductionOutcome:
        """Charge *hours_worked* against the client's current authorization."""
        now = ensure_utc(now) or utcnow()
        today = agency_date(now)

        auth = await AuthorizationLedger.find_active_authorization(
            uow,
            company_id=company_id,
            client_id=client_id,
            service_type=service_type,
            on_date=today,
            lock=True,
        )
        if auth is None:
            logger.info(
                "No active authorization for client %s (service=%s) on %s; "
                "shift %s completed without deduction",
                client_id, service_type, today, shift_id,
            )
            return NoAuthorizationFound(
                client_id=client_id, service_type=service_type, on_date=today,
            )

        units = units_for_duration(hours_worked, auth.unit_type)
        if units <= 0:
            return DeductionResult(
                authorization_id=auth.id,
                units_deducted=0.0,
                used_units=auth.used_units,
                remaining_units=auth.remaining_units,
                status=auth.status,
            )

        before = _snapshot(auth)
        auth.used_units = round(auth.used_units + units, 2)
        auth.remaining_units = max(round(auth.authorized_units - auth.used_units, 2), 0.0)
        if auth.remaining_units <= 0:
            auth.status = AuthorizationStatus.exhausted
        await uow.session.flush()

        raised = await AuthorizationLedger.evaluate_usage_alerts(uow, auth)

        await create_audit_entry(
            uow.session,
            action="AUTHORIZATION_UNITS_DEDUCTED",
            entity_type="Authorization",
            entity_id=auth.id,
            company_id=company_id,
            actor_id=actor_id,
            old_values=before,
            new_values={
                **_snapshot(auth),
                "units_deducted": units,
                "hours_worked": round(hours_worked, 4),
                "shift_id": str(shift_id),
            },
        )

        logger.info(
            "Deducted %s %s unit(s) from authorization %s for shift %s "
            "(used=%s remaining=%s status=%s)",
            units, auth.unit_type.value, auth.auth_number, shift_id,
            auth.used_units, auth.remaining_units, auth.status.value,
        )
        return DeductionResult(
            authorization_id=auth.id,
            units_deducted=units,
            used_units=auth.used_units,
            remaining_units=auth.remaining_units,
            status=auth.status,
            alerts=raised,
        )

    # ── Alerting ────────────────────────────────────────────────────

    @staticmethod
    async def evaluate_usage_alerts(
        uow: UnitOfWork, auth: Authorization,
    ) -> list[AlertType]:
        """Raise LOW_UNITS or UNITS_EXHAUSTED for the current balance."""
        raised: list[AlertType] = []

        if auth.remaining_units <= 0:
            alert = await AuthorizationLedger._raise_alert(
                uow,
                auth,
                AlertType.units_exhausted,
                AlertSeverity.critical,
                f"Authorization {auth.auth_number} has no remaining units "
                f"({auth.used_units:g} of {auth.authorized_units:g} used).",
            )
            if alert is not None:
                raised.append(AlertType.units_exhausted)
            return raised

        usage = auth.used_units / auth.authorized_units * 100
        if usage >= settings.AUTH_LOW_UNITS_WARNING_PERCENT:
            severity = (
                AlertSeverity.critical
                if usage >= settings.AUTH_LOW_UNITS_CRITICAL_PERCENT
                else AlertSeverity.warning
            )
            alert = await AuthorizationLedger._raise_alert(
                uow,
                auth,
                AlertType.low_units,
                severity,
                f"Authorization {auth.auth_number} is {usage:.1f}% used; "
                f"{auth.remaining_units:g} unit(s) remaining.",
            )
            if alert is not None:
                raised.append(AlertType.low_units)
        return raised

    @staticmethod
    async def _raise_alert(
        uow: UnitOfWork,
        auth: Authorization,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
    ) -> Optional[AuthorizationAlert]:
        """Create the alert unless an open one exists; escalate it if needed.

        Returns the created or escalated alert, or None when nothing changed.
        """
        session = uow.session
        existing = (
            await session.execute(
                select(AuthorizationAlert).where(
                    AuthorizationAlert.authorization_id == auth.id,
                    AuthorizationAlert.alert_type == alert_type,
                    AuthorizationAlert.is_dismissed.is_(False),
                ).limit(1)
            )
        ).scalars().first()

        if existing is not None:
            if SEVERITY_RANK[severity] <= SEVERITY_RANK[existing.severity]:
                return None
            existing.severity = severity
            existing.message = message
            alert = existing
            logger.info(
                "Escalated %s alert on authorization %s to %s",
                alert_type.value, auth.auth_number, severity.value,
            )
        else:
            alert = AuthorizationAlert(
                company_id=auth.company_id,
                authorization_id=auth.id,
                alert_type=alert_type,
                severity=severity,
                message=message,
            )
            session.add(alert)
            logger.info(
                "Raised %s %s alert on authorization %s",
                severity.value, alert_type.value, auth.auth_number,
            )
        await session.flush()

        uow.notify(
            PendingNotification(
                company_id=auth.company_id,
                event_type=_ALERT_EVENTS[alert_type],
                title=ALERT_TYPE_LABELS[alert_type],
                message=message,
                recipient_roles=list(ALERT_RECIPIENT_ROLES),
                payload={
                    "authorization_id": str(auth.id),
                    "auth_number": auth.auth_number,
                    "client_id": str(auth.client_id),
                    "severity": severity.value,
                },
                entity_type="authorization",
                entity_id=auth.id,
            )
        )
        return alert

    # ── Expiry sweep ────────────────────────────────────────────────

    @staticmethod
    async def evaluate_expirations(
        uow: UnitOfWork,
        company_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> ExpirationSweepResult:
        """Expire lapsed authorizations and warn about those ending soon."""
        now = ensure_utc(now) or utcnow()
        today = agency_date(now)
        horizon = today + timedelta(days=settings.AUTH_EXPIRING_SOON_DAYS)

        rows = (
            await uow.session.execute(
                select(Authorization)
                .where(
                    Authorization.company_id == company_id,
                    Authorization.status == AuthorizationStatus.active,
                    Authorization.end_date <= horizon,
                )
                .order_by(Authorization.end_date.asc())
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalars().all()

        expired: list[uuid.UUID] = []
        alerts_raised = 0
        for auth in rows:
            if auth.end_date < today:
                before = _snapshot(auth)
                auth.status = AuthorizationStatus.expired
                await uow.session.flush()
                await create_audit_entry(
                    uow.session,
                    action="AUTHORIZATION_EXPIRED",
                    entity_type="Authorization",
                    entity_id=auth.id,
                    company_id=company_id,
                    actor_id=actor_id,
                    old_values=before,
                    new_values=_snapshot(auth),
                )
                expired.append(auth.id)
                continue

            days_left = (auth.end_date - today).days
            severity = (
                AlertSeverity.critical
                if days_left <= settings.AUTH_EXPIRING_CRITICAL_DAYS
                else AlertSeverity.warning
            )
            alert = await AuthorizationLedger._raise_alert(
                uow,
                auth,
                AlertType.expiring_soon,
                severity,
                f"Authorization {auth.auth_number} expires on "
                f"{auth.end_date.isoformat()} ({days_left} day(s) left).",
            )
            if alert is not None:
                alerts_raised += 1

        if expired:
            logger.info("Expired %d authorization(s) for company %s", len(expired), company_id)
        return ExpirationSweepResult(expired=expired, alerts_raised=alerts_raised)

    # ── Dismissal ───────────────────────────────────────────────────

    @staticmethod
    async def dismiss_alert(
        uow: UnitOfWork,
        actor: CurrentUser,
        alert_id: uuid.UUID,
    ) -> AuthorizationAlert:
        if not can_manage_authorizations(actor.role):
            raise ForbiddenException("Only managers can dismiss authorization alerts.")

        alert = (
            await uow.session.execute(
                select(AuthorizationAlert).where(
                    AuthorizationAlert.id == alert_id,
                    AuthorizationAlert.company_id == actor.company_id,
                )
            )
        ).scalars().first()
        if alert is None:
            raise NotFoundException("AuthorizationAlert", alert_id)
        if alert.is_dismissed:
            raise InvalidStateError("Alert has already been dismissed.")

        alert.is_dismissed = True
        alert.dismissed_at = utcnow()
        alert.dismissed_by_id = actor.id
        await uow.session.flush()

        await create_audit_entry(
            uow.session,
            action="AUTHORIZATION_ALERT_DISMISSED",
            entity_type="AuthorizationAlert",
            entity_id=alert.id,
            company_id=actor.company_id,
            actor_id=actor.id,
            new_values={"alert_type": alert.alert_type.value},
        )
        return alert
