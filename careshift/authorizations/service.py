"""Authorization read service — lists with usage figures and the alert feed.

Mutations live in :mod:`careshift.authorizations.ledger`.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import case, func, select

from careshift.auth.dependencies import CurrentUser
from careshift.auth.permissions import can_read_authorizations
from careshift.authorizations.models import Authorization, AuthorizationAlert
from careshift.authorizations.schemas import (
    AlertListResponse,
    AlertResponse,
    AlertSummary,
    AuthorizationListResponse,
    AuthorizationResponse,
    AuthorizationStats,
)
from careshift.common.constants import (
    AlertSeverity,
    AuthorizationStatus,
)
from careshift.common.exceptions import ForbiddenException, NotFoundException
from careshift.common.pagination import PaginationParams, paginate
from careshift.common.timeutils import agency_date, ensure_utc, utcnow
from careshift.common.unit_of_work import UnitOfWork
from careshift.config import settings


def _to_response(auth: Authorization, today: date) -> AuthorizationResponse:
    days_remaining = (auth.end_date - today).days
    usage = auth.usage_percentage
    return AuthorizationResponse(
        id=auth.id,
        client_id=auth.client_id,
        auth_number=auth.auth_number,
        service_type=auth.service_type,
        unit_type=auth.unit_type,
        authorized_units=auth.authorized_units,
        used_units=auth.used_units,
        remaining_units=auth.remaining_units,
        usage_percentage=usage,
        start_date=auth.start_date,
        end_date=auth.end_date,
        days_remaining=max(days_remaining, 0),
        is_expiring_soon=0 <= days_remaining <= settings.AUTH_EXPIRING_SOON_DAYS,
        is_nearing_limit=usage >= settings.AUTH_LOW_UNITS_WARNING_PERCENT,
        status=auth.status,
    )


def _ensure_reader(actor: CurrentUser) -> None:
    if not can_read_authorizations(actor.role):
        raise ForbiddenException("You do not have access to authorizations.")


class AuthorizationService:
    """Async authorization queries."""

    @staticmethod
    async def list_authorizations(
        uow: UnitOfWork,
        actor: CurrentUser,
        pagination: PaginationParams,
        *,
        client_id: Optional[uuid.UUID] = None,
        status: Optional[AuthorizationStatus] = None,
        expiring_soon: bool = False,
        now: Optional[datetime] = None,
    ) -> AuthorizationListResponse:
        """Authorizations ordered by end date, with company-wide stats."""
        _ensure_reader(actor)
        today = agency_date(ensure_utc(now) or utcnow())
        horizon = today + timedelta(days=settings.AUTH_EXPIRING_SOON_DAYS)

        query = select(Authorization).where(Authorization.company_id == actor.company_id)
        if client_id is not None:
            query = query.where(Authorization.client_id == client_id)
        if status is not None:
            query = query.where(Authorization.status == status)
        if expiring_soon:
            query = query.where(
                Authorization.status == AuthorizationStatus.active,
                Authorization.end_date >= today,
                Authorization.end_date <= horizon,
            )
        query = query.order_by(Authorization.end_date.asc(), Authorization.id)

        rows, meta = await paginate(uow.session, query, pagination)
        stats = await AuthorizationService.get_stats(uow, actor.company_id, today)
        return AuthorizationListResponse(
            data=[_to_response(a, today) for a in rows],
            meta=meta,
            stats=stats,
        )

    @staticmethod
    async def get_stats(
        uow: UnitOfWork, company_id: uuid.UUID, today: date,
    ) -> AuthorizationStats:
        horizon = today + timedelta(days=settings.AUTH_EXPIRING_SOON_DAYS)
        is_active = Authorization.status == AuthorizationStatus.active
        low_threshold = settings.AUTH_LOW_UNITS_WARNING_PERCENT / 100
        row = (
            await uow.session.execute(
                select(
                    func.count(),
                    func.sum(case((is_active, 1), else_=0)),
                    func.sum(case((Authorization.status == AuthorizationStatus.exhausted, 1), else_=0)),
                    func.sum(case((Authorization.status == AuthorizationStatus.expired, 1), else_=0)),
                    func.sum(
                        case(
                            (
                                is_active
                                & (Authorization.used_units >= Authorization.authorized_units * low_threshold),
                                1,
                            ),
                            else_=0,
                        )
                    ),
                    func.sum(
                        case(
                            (
                                is_active
                                & (Authorization.end_date >= today)
                                & (Authorization.end_date <= horizon),
                                1,
                            ),
                            else_=0,
                        )
                    ),
                ).where(Authorization.company_id == company_id)
            )
        ).one()
        total, active, exhausted, expired, low_units, expiring = row
        return AuthorizationStats(
            total=total or 0,
            active=active or 0,
            exhausted=exhausted or 0,
            expired=expired or 0,
            low_units=low_units or 0,
            expiring_soon=expiring or 0,
        )

    @staticmethod
    async def get_authorization(
        uow: UnitOfWork,
        actor: CurrentUser,
        authorization_id: uuid.UUID,
        *,
        now: Optional[datetime] = None,
    ) -> AuthorizationResponse:
        _ensure_reader(actor)
        auth = (
            await uow.session.execute(
                select(Authorization).where(
                    Authorization.id == authorization_id,
                    Authorization.company_id == actor.company_id,
                )
            )
        ).scalars().first()
        if auth is None:
            raise NotFoundException("Authorization", authorization_id)
        return _to_response(auth, agency_date(ensure_utc(now) or utcnow()))

    @staticmethod
    async def list_alerts(
        uow: UnitOfWork,
        actor: CurrentUser,
        pagination: PaginationParams,
        *,
        include_dismissed: bool = False,
        authorization_id: Optional[uuid.UUID] = None,
    ) -> AlertListResponse:
        """Alert feed, newest first; open alerts only unless asked otherwise."""
        _ensure_reader(actor)
        query = select(AuthorizationAlert).where(
            AuthorizationAlert.company_id == actor.company_id,
        )
        if not include_dismissed:
            query = query.where(AuthorizationAlert.is_dismissed.is_(False))
        if authorization_id is not None:
            query = query.where(AuthorizationAlert.authorization_id == authorization_id)
        query = query.order_by(AuthorizationAlert.created_at.desc(), AuthorizationAlert.id)

        rows, meta = await paginate(uow.session, query, pagination)

        counts = (
            await uow.session.execute(
                select(AuthorizationAlert.severity, func.count())
                .where(
                    AuthorizationAlert.company_id == actor.company_id,
                    AuthorizationAlert.is_dismissed.is_(False),
                )
                .group_by(AuthorizationAlert.severity)
            )
        ).all()
        by_severity = {severity: count for severity, count in counts}

        return AlertListResponse(
            data=[AlertResponse.model_validate(alert) for alert in rows],
            meta=meta,
            summary=AlertSummary(
                total=sum(by_severity.values()),
                critical=by_severity.get(AlertSeverity.critical, 0),
                warning=by_severity.get(AlertSeverity.warning, 0),
            ),
        )
