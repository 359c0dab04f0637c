"""EVV service — read-only compliance aggregation.

The dashboard covers shifts currently in progress plus shifts completed today
(agency calendar); the report pages through completed shifts in a date window.
Each shift contributes its single verification record: compliant, out of
range, or missing when no usable location was captured. Shifts whose client
has geofencing disabled are counted separately and do not affect the
compliance rate.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union

from sqlalchemy import and_, func, or_, select

from careshift.auth.dependencies import CurrentUser
from careshift.auth.models import User
from careshift.auth.permissions import can_view_evv
from careshift.authorizations.units import calculate_shift_hours
from careshift.clients.models import Client
from careshift.common.constants import EVVComplianceFilter, EVVStatus, ShiftStatus
from careshift.common.exceptions import ForbiddenException, ValidationException
from careshift.common.pagination import PaginationParams, paginate
from careshift.common.timeutils import agency_date, agency_tz, ensure_utc, utcnow
from careshift.common.unit_of_work import UnitOfWork
from careshift.evv.schemas import (
    ComplianceMetrics,
    DashboardShiftItem,
    EVVDashboardResponse,
    EVVReportItem,
    EVVReportResponse,
    EVVReportSummary,
    OutOfRangeAlert,
    ReportParty,
)
from careshift.evv.models import EVVRecord
from careshift.scheduling.models import Shift

MAX_DASHBOARD_ALERTS = 20
REPORT_DEFAULT_DAYS = 7


def _local_midnight(day: date) -> datetime:
    """UTC instant at which the agency calendar day *day* begins."""
    return datetime.combine(day, time.min, tzinfo=agency_tz()).astimezone(timezone.utc)


def _day_bounds(now: datetime) -> tuple[datetime, datetime]:
    """UTC bounds of the agency calendar day containing *now*."""
    today = agency_date(now)
    return _local_midnight(today), _local_midnight(today + timedelta(days=1))


def _evv_status(shift: Shift) -> EVVStatus:
    if shift.evv_record is None:
        return EVVStatus.location_unavailable
    return shift.evv_record.status


def _tally(
    metrics: Union[ComplianceMetrics, EVVReportSummary],
    status: Optional[EVVStatus],
    count: int = 1,
) -> None:
    if status == EVVStatus.compliant:
        metrics.compliant += count
    elif status == EVVStatus.out_of_range:
        metrics.out_of_range += count
    elif status == EVVStatus.not_required:
        metrics.not_required += count
    else:
        metrics.missing_location += count


class EVVService:
    """Async EVV compliance queries."""

    @staticmethod
    async def get_dashboard(
        uow: UnitOfWork,
        actor: CurrentUser,
        *,
        now: Optional[datetime] = None,
    ) -> EVVDashboardResponse:
        if not can_view_evv(actor.role):
            raise ForbiddenException("You do not have access to EVV compliance data.")

        now = ensure_utc(now) or utcnow()
        day_start, day_end = _day_bounds(now)
        alert_since = now - timedelta(hours=24)

        query = (
            select(Shift, Client, User)
            .join(Client, Client.id == Shift.client_id)
            .join(User, User.id == Shift.carer_id)
            .where(
                Shift.company_id == actor.company_id,
                or_(
                    Shift.status == ShiftStatus.in_progress,
                    and_(
                        Shift.status == ShiftStatus.completed,
                        Shift.actual_end >= min(day_start, alert_since),
                    ),
                ),
            )
            .order_by(Shift.actual_start.desc())
        )
        rows = (await uow.session.execute(query)).all()

        metrics = ComplianceMetrics()
        active: list[DashboardShiftItem] = []
        alerts: list[OutOfRangeAlert] = []

        for shift, client, carer in rows:
            status = _evv_status(shift)
            record = shift.evv_record
            actual_end = ensure_utc(shift.actual_end)

            if shift.status == ShiftStatus.in_progress:
                metrics.total_active += 1
                _tally(metrics, status)
                active.append(
                    DashboardShiftItem(
                        shift_id=shift.id,
                        client_id=client.id,
                        client_name=client.display_name,
                        client_address=client.address,
                        carer_id=carer.id,
                        carer_name=carer.display_name,
                        scheduled_start=shift.scheduled_start,
                        scheduled_end=shift.scheduled_end,
                        actual_start=shift.actual_start,
                        evv_status=status,
                        distance_from_client=record.distance_from_client if record else None,
                        geofence_radius=record.geofence_radius if record else None,
                    )
                )
            elif actual_end is not None and day_start <= actual_end < day_end:
                metrics.today_completed += 1
                _tally(metrics, status)

            recent = shift.status == ShiftStatus.in_progress or (
                actual_end is not None and actual_end >= alert_since
            )
            if (
                recent
                and status == EVVStatus.out_of_range
                and len(alerts) < MAX_DASHBOARD_ALERTS
            ):
                alerts.append(
                    OutOfRangeAlert(
                        shift_id=shift.id,
                        carer_name=carer.display_name,
                        client_name=client.display_name,
                        distance_from_client=record.distance_from_client,
                        geofence_radius=record.geofence_radius,
                        captured_at=record.captured_at,
                    )
                )

        checked = metrics.compliant + metrics.out_of_range + metrics.missing_location
        if checked:
            metrics.compliance_rate = round(metrics.compliant / checked * 100)

        return EVVDashboardResponse(active_shifts=active, metrics=metrics, alerts=alerts)

    @staticmethod
    async def get_report(
        uow: UnitOfWork,
        actor: CurrentUser,
        pagination: PaginationParams,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        carer_id: Optional[uuid.UUID] = None,
        client_id: Optional[uuid.UUID] = None,
        compliance_status: Optional[EVVComplianceFilter] = None,
        now: Optional[datetime] = None,
    ) -> EVVReportResponse:
        """
        Page through completed visits and their verification outcome.

        Without a *start_date* the window is the last seven days up to *now*.
        Dates are agency calendar days and *end_date* is inclusive. The
        summary covers every visit in the window that matches the carer and
        client filters, whatever *compliance_status* or page was asked for.
        """
        if not can_view_evv(actor.role):
            raise ForbiddenException("You do not have access to EVV compliance data.")
        if start_date and end_date and end_date < start_date:
            raise ValidationException({"end_date": ["Must be on or after start_date."]})

        now = ensure_utc(now) or utcnow()
        if start_date is not None:
            window_start = _local_midnight(start_date)
        else:
            window_start = now - timedelta(days=REPORT_DEFAULT_DAYS)

        conditions = [
            Shift.company_id == actor.company_id,
            Shift.status == ShiftStatus.completed,
            Shift.actual_end >= window_start,
        ]
        if end_date is not None:
            conditions.append(Shift.actual_end < _local_midnight(end_date + timedelta(days=1)))
        if carer_id is not None:
            conditions.append(Shift.carer_id == carer_id)
        if client_id is not None:
            conditions.append(Shift.client_id == client_id)

        summary = EVVReportSummary()
        counts = await uow.session.execute(
            select(EVVRecord.status, func.count())
            .select_from(Shift)
            .outerjoin(EVVRecord, EVVRecord.shift_id == Shift.id)
            .where(*conditions)
            .group_by(EVVRecord.status)
        )
        for status, count in counts.all():
            summary.total += count
            _tally(summary, status, count)
        checked = summary.compliant + summary.out_of_range + summary.missing_location
        if checked:
            summary.compliance_rate = round(summary.compliant / checked * 100)

        if compliance_status == EVVComplianceFilter.compliant:
            conditions.append(EVVRecord.status == EVVStatus.compliant)
        elif compliance_status == EVVComplianceFilter.out_of_range:
            conditions.append(EVVRecord.status == EVVStatus.out_of_range)
        elif compliance_status == EVVComplianceFilter.missing:
            conditions.append(
                or_(
                    EVVRecord.id.is_(None),
                    EVVRecord.status == EVVStatus.location_unavailable,
                )
            )

        query = (
            select(Shift)
            .outerjoin(EVVRecord, EVVRecord.shift_id == Shift.id)
            .where(*conditions)
            .order_by(Shift.actual_end.desc(), Shift.id)
        )
        shifts, meta = await paginate(uow.session, query, pagination)

        clients = await _load_by_id(uow, Client, {s.client_id for s in shifts})
        carers = await _load_by_id(uow, User, {s.carer_id for s in shifts})

        data = [
            _report_item(shift, clients[shift.client_id], carers[shift.carer_id])
            for shift in shifts
        ]
        return EVVReportResponse(data=data, meta=meta, summary=summary)


async def _load_by_id(uow: UnitOfWork, model, ids: set[uuid.UUID]) -> dict:
    if not ids:
        return {}
    rows = (await uow.session.execute(select(model).where(model.id.in_(ids)))).scalars()
    return {row.id: row for row in rows}


def _report_item(shift: Shift, client: Client, carer: User) -> EVVReportItem:
    record = shift.evv_record
    hours = calculate_shift_hours(
        ensure_utc(shift.actual_start),
        ensure_utc(shift.actual_end),
        ensure_utc(shift.scheduled_start),
        ensure_utc(shift.scheduled_end),
    )
    return EVVReportItem(
        shift_id=shift.id,
        visit_date=agency_date(shift.actual_start) if shift.actual_start else None,
        client=ReportParty(id=client.id, name=client.display_name, address=client.address),
        carer=ReportParty(id=carer.id, name=carer.display_name),
        scheduled_start=shift.scheduled_start,
        scheduled_end=shift.scheduled_end,
        actual_start=shift.actual_start,
        actual_end=shift.actual_end,
        hours_worked=round(hours, 2),
        evv_status=_evv_status(shift),
        captured_at=record.captured_at if record else None,
        distance_from_client=record.distance_from_client if record else None,
        geofence_radius=record.geofence_radius if record else None,
        accuracy=record.accuracy if record else None,
        source=record.source if record else None,
    )
