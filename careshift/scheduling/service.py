"""Shift lifecycle service — scheduling, visit progress, EVV and completion.

Business logic:
  - Create / update with carer double-booking checks
  - Start → complete with authorization unit deduction
  - EVV location and client signature capture while a visit is in progress
  - Missed-visit and cancellation transitions with notification fan-out
  - Recurring (bulk) schedules with preview

Every public method takes the request's ``UnitOfWork`` and is meant to be
run through ``UnitOfWork.run`` so a lost race retries the whole operation.
Guards (permission, state, input) are evaluated before anything is written.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import select

from careshift.auth.dependencies import CurrentUser
from careshift.auth.models import User
from careshift.auth.permissions import (
    can_cancel_shift,
    can_manage_schedule,
    can_mark_missed,
    can_progress_shift,
    can_view_all_schedules,
    has_permission,
)
from careshift.authorizations.ledger import AuthorizationLedger, DeductionOutcome
from careshift.authorizations.units import calculate_bulk_units, calculate_shift_hours
from careshift.clients.models import Client
from careshift.common.audit import create_audit_entry
from careshift.common.constants import (
    MISSED_VISIT_REASON_LABELS,
    SHIFT_TRANSITIONS,
    EVVStatus,
    MissedVisitReason,
    ShiftStatus,
    UserRole,
)
from careshift.common.exceptions import (
    ForbiddenException,
    InvalidStateError,
    NotFoundException,
    ScheduleConflictError,
    ValidationException,
)
from careshift.common.pagination import PaginationParams, paginate
from careshift.common.timeutils import agency_date, ensure_utc, utcnow
from careshift.common.unit_of_work import UnitOfWork
from careshift.config import settings
from careshift.evv.geofence import ClientGeofence, ReportedLocation, validate_location
from careshift.evv.models import EVVRecord
from careshift.notifications.service import (
    bulk_assigned_notice,
    shift_assigned_notice,
    shift_cancelled_notice,
    shift_completed_notice,
    shift_missed_notice,
    shift_rescheduled_notice,
)
from careshift.scheduling.bulk import (
    Occurrence,
    generate_occurrences,
    hours_between,
    validate_window,
)
from careshift.scheduling.conflicts import find_conflicting_shift
from careshift.scheduling.models import Shift
from careshift.scheduling.schemas import (
    BulkOccurrence,
    BulkPreviewResponse,
    BulkShiftRequest,
    BulkShiftResponse,
    EVVCaptureRequest,
    ShiftListResponse,
    ShiftResponse,
    UnitProjection,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    shift: Shift
    hours_worked: float
    deduction: DeductionOutcome


def _shift_snapshot(shift: Shift) -> dict[str, Any]:
    return {
        "carer_id": str(shift.carer_id),
        "client_id": str(shift.client_id),
        "service_type": shift.service_type,
        "scheduled_start": ensure_utc(shift.scheduled_start).isoformat(),
        "scheduled_end": ensure_utc(shift.scheduled_end).isoformat(),
        "status": shift.status.value,
    }


class ShiftService:
    """Async shift lifecycle operations."""

    # ── Lookups & guards ────────────────────────────────────────────

    @staticmethod
    async def _get_shift(
        uow: UnitOfWork,
        company_id: uuid.UUID,
        shift_id: uuid.UUID,
        *,
        lock: bool = False,
    ) -> Shift:
        query = select(Shift).where(
            Shift.id == shift_id,
            Shift.company_id == company_id,
        )
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        shift = (await uow.session.execute(query)).scalars().first()
        if shift is None:
            raise NotFoundException("Shift", shift_id)
        return shift

    @staticmethod
    async def _get_client(
        uow: UnitOfWork, company_id: uuid.UUID, client_id: uuid.UUID,
    ) -> Client:
        client = (
            await uow.session.execute(
                select(Client).where(
                    Client.id == client_id,
                    Client.company_id == company_id,
                )
            )
        ).scalars().first()
        if client is None:
            raise NotFoundException("Client", client_id)
        return client

    @staticmethod
    async def _lock_carer(
        uow: UnitOfWork, company_id: uuid.UUID, carer_id: uuid.UUID,
    ) -> User:
        """Row-lock the carer so conflict check and insert are serialized."""
        carer = (
            await uow.session.execute(
                select(User)
                .where(User.id == carer_id, User.company_id == company_id)
                .with_for_update()
            )
        ).scalars().first()
        if carer is None:
            raise NotFoundException("Carer", carer_id)
        if not carer.is_active:
            raise ValidationException({"carer_id": ["Carer is not active."]})
        if carer.role != UserRole.carer:
            raise ValidationException(
                {"carer_id": ["Only users with the CARER role can be assigned shifts."]}
            )
        return carer

    @staticmethod
    def _ensure_transition(shift: Shift, target: ShiftStatus) -> None:
        if target not in SHIFT_TRANSITIONS[shift.status]:
            raise InvalidStateError(
                f"Cannot change shift from {shift.status.value} to {target.value}."
            )

    @staticmethod
    def _ensure_readable(actor: CurrentUser, shift: Shift, client: Optional[Client] = None) -> None:
        if can_view_all_schedules(actor.role):
            return
        if has_permission(actor.role, "schedule:read_own") and shift.carer_id == actor.id:
            return
        if (
            has_permission(actor.role, "schedule:read_sponsored")
            and client is not None
            and client.sponsor_id == actor.id
        ):
            return
        raise ForbiddenException("You cannot view this shift.")

    # ── Create ──────────────────────────────────────────────────────

    @staticmethod
    async def create_shift(
        uow: UnitOfWork,
        actor: CurrentUser,
        *,
        carer_id: uuid.UUID,
        client_id: uuid.UUID,
        scheduled_start: datetime,
        scheduled_end: datetime,
        service_type: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Shift:
        """Schedule a visit, rejecting it if the carer is already booked."""
        if not can_manage_schedule(actor.role):
            raise ForbiddenException("You do not have permission to manage schedules.")

        start = ensure_utc(scheduled_start)
        end = ensure_utc(scheduled_end)
        if end <= start:
            raise ValidationException(
                {"scheduled_end": ["scheduled_end must be after scheduled_start."]}
            )

        client = await ShiftService._get_client(uow, actor.company_id, client_id)
        await ShiftService._lock_carer(uow, actor.company_id, carer_id)

        conflict = await find_conflicting_shift(
            uow.session, carer_id=carer_id, start=start, end=end,
        )
        if conflict is not None:
            raise ScheduleConflictError(conflict.id)

        shift = Shift(
            company_id=actor.company_id,
            carer_id=carer_id,
            client_id=client_id,
            service_type=service_type,
            scheduled_start=start,
            scheduled_end=end,
            status=ShiftStatus.scheduled,
            notes=notes,
            created_by_id=actor.id,
            evv_record=None,
        )
        uow.session.add(shift)
        await uow.session.flush()

        await create_audit_entry(
            uow.session,
            action="SHIFT_CREATED",
            entity_type="Shift",
            entity_id=shift.id,
            company_id=actor.company_id,
            actor_id=actor.id,
            new_values=_shift_snapshot(shift),
        )
        uow.notify(shift_assigned_notice(shift, client))
        return shift

    # ── Update ──────────────────────────────────────────────────────

    @staticmethod
    async def update_shift(
        uow: UnitOfWork,
        actor: CurrentUser,
        shift_id: uuid.UUID,
        changes: dict[str, Any],
    ) -> Shift:
        """Apply a partial update; re-checks conflicts when carer or times move."""
        if not can_manage_schedule(actor.role):
            raise ForbiddenException("You do not have permission to manage schedules.")

        shift = await ShiftService._get_shift(uow, actor.company_id, shift_id, lock=True)
        if shift.is_terminal:
            raise InvalidStateError(f"A {shift.status.value} shift cannot be edited.")

        old_carer_id = shift.carer_id
        new_carer_id = changes.get("carer_id") or shift.carer_id
        new_start = ensure_utc(changes.get("scheduled_start")) or ensure_utc(shift.scheduled_start)
        new_end = ensure_utc(changes.get("scheduled_end")) or ensure_utc(shift.scheduled_end)
        if new_end <= new_start:
            raise ValidationException(
                {"scheduled_end": ["scheduled_end must be after scheduled_start."]}
            )

        carer_changed = new_carer_id != old_carer_id
        times_changed = (
            new_start != ensure_utc(shift.scheduled_start)
            or new_end != ensure_utc(shift.scheduled_end)
        )
        if (carer_changed or times_changed) and shift.status != ShiftStatus.scheduled:
            raise InvalidStateError("Only scheduled shifts can be moved or reassigned.")

        if carer_changed or times_changed:
            await ShiftService._lock_carer(uow, actor.company_id, new_carer_id)
            conflict = await find_conflicting_shift(
                uow.session,
                carer_id=new_carer_id,
                start=new_start,
                end=new_end,
                exclude_shift_id=shift.id,
            )
            if conflict is not None:
                raise ScheduleConflictError(conflict.id)

        client = await ShiftService._get_client(uow, actor.company_id, shift.client_id)
        before = _shift_snapshot(shift)

        shift.carer_id = new_carer_id
        shift.scheduled_start = new_start
        shift.scheduled_end = new_end
        if "service_type" in changes:
            shift.service_type = changes["service_type"]
        if "notes" in changes:
            shift.notes = changes["notes"]
        await uow.session.flush()

        await create_audit_entry(
            uow.session,
            action="SHIFT_UPDATED",
            entity_type="Shift",
            entity_id=shift.id,
            company_id=actor.company_id,
            actor_id=actor.id,
            old_values=before,
            new_values=_shift_snapshot(shift),
        )

        if carer_changed:
            uow.notify(shift_assigned_notice(shift, client))
            uow.notify(shift_cancelled_notice(shift, client, carer_id=old_carer_id))
        elif times_changed:
            uow.notify(shift_rescheduled_notice(shift, client))
        return shift

    # ── Start ───────────────────────────────────────────────────────

    @staticmethod
    async def start_shift(
        uow: UnitOfWork,
        actor: CurrentUser,
        shift_id: uuid.UUID,
        *,
        evv: Optional[EVVCaptureRequest] = None,
        now: Optional[datetime] = None,
    ) -> Shift:
        """Check the carer in; optionally capture EVV at the same time."""
        now = ensure_utc(now) or utcnow()
        shift = await ShiftService._get_shift(uow, actor.company_id, shift_id, lock=True)

        is_assigned = shift.carer_id == actor.id
        if not can_progress_shift(actor.role, is_assigned):
            raise ForbiddenException("Only the assigned carer or a manager can start this shift.")
        if evv is not None and not is_assigned:
            raise ForbiddenException("Only the assigned carer can submit EVV.")
        ShiftService._ensure_transition(shift, ShiftStatus.in_progress)

        shift.status = ShiftStatus.in_progress
        shift.actual_start = now
        await uow.session.flush()

        new_values: dict[str, Any] = {
            "status": shift.status.value,
            "actual_start": now.isoformat(),
        }
        if evv is not None:
            record = await ShiftService._record_evv(uow, actor, shift, evv, now)
            new_values["evv_status"] = record.status.value

        await create_audit_entry(
            uow.session,
            action="SHIFT_STARTED",
            entity_type="Shift",
            entity_id=shift.id,
            company_id=actor.company_id,
            actor_id=actor.id,
            old_values={"status": ShiftStatus.scheduled.value},
            new_values=new_values,
        )
        return shift

    # ── EVV ─────────────────────────────────────────────────────────

    @staticmethod
    async def capture_evv(
        uow: UnitOfWork,
        actor: CurrentUser,
        shift_id: uuid.UUID,
        capture: EVVCaptureRequest,
        *,
        now: Optional[datetime] = None,
    ) -> EVVRecord:
        """Record (or correct) the carer's location for an in-progress visit."""
        now = ensure_utc(now) or utcnow()
        shift = await ShiftService._get_shift(uow, actor.company_id, shift_id)

        if shift.carer_id != actor.id:
            raise ForbiddenException("Only the assigned carer can submit EVV.")
        if shift.status != ShiftStatus.in_progress:
            raise InvalidStateError("EVV can only be captured while the shift is in progress.")

        record = await ShiftService._record_evv(uow, actor, shift, capture, now)

        await create_audit_entry(
            uow.session,
            action="EVV_CAPTURED",
            entity_type="Shift",
            entity_id=shift.id,
            company_id=actor.company_id,
            actor_id=actor.id,
            new_values={
                "status": record.status.value,
                "distance_from_client": record.distance_from_client,
                "is_within_geofence": record.is_within_geofence,
                "source": record.source.value,
            },
        )
        return record

    @staticmethod
    async def _record_evv(
        uow: UnitOfWork,
        actor: CurrentUser,
        shift: Shift,
        capture: EVVCaptureRequest,
        now: datetime,
    ) -> EVVRecord:
        client = await ShiftService._get_client(uow, actor.company_id, shift.client_id)
        radius = client.geofence_radius or settings.DEFAULT_GEOFENCE_RADIUS_METERS

        within: Optional[bool] = None
        distance: Optional[int] = None
        if not client.geofence_enabled:
            status = EVVStatus.not_required
            message = "Geofence verification is not required for this client."
        elif capture.latitude is None or capture.longitude is None:
            status = EVVStatus.location_unavailable
            message = "Device location was not available."
        elif not client.has_location:
            status = EVVStatus.location_unavailable
            message = "Client has no registered location."
        else:
            result = validate_location(
                ReportedLocation(capture.latitude, capture.longitude, capture.accuracy),
                ClientGeofence(client.latitude, client.longitude, radius),
            )
            status = result.status
            message = result.message
            within = result.is_within_geofence
            distance = result.distance_meters

        # One record per shift; a corrected capture overwrites it in place.
        record = shift.evv_record
        if record is None:
            record = EVVRecord(shift_id=shift.id)
            shift.evv_record = record
            uow.session.add(record)

        record.latitude = capture.latitude
        record.longitude = capture.longitude
        record.accuracy = capture.accuracy
        record.source = capture.source
        record.captured_at = now
        record.captured_by_id = actor.id
        record.status = status
        record.is_within_geofence = within
        record.distance_from_client = distance
        record.geofence_radius = float(radius)
        record.message = message
        await uow.session.flush()

        if status == EVVStatus.out_of_range:
            logger.warning(
                "EVV out of range for shift %s: %sm (limit %sm)", shift.id, distance, radius,
            )
        return record

    # ── Signature ───────────────────────────────────────────────────

    @staticmethod
    async def capture_signature(
        uow: UnitOfWork,
        actor: CurrentUser,
        shift_id: uuid.UUID,
        signature: str,
        *,
        now: Optional[datetime] = None,
    ) -> Shift:
        now = ensure_utc(now) or utcnow()
        if not signature:
            raise ValidationException({"signature": ["Signature is required."]})

        shift = await ShiftService._get_shift(uow, actor.company_id, shift_id)
        if shift.carer_id != actor.id:
            raise ForbiddenException("Only the assigned carer can capture the client's signature.")
        if shift.status != ShiftStatus.in_progress:
            raise InvalidStateError("A signature can only be captured while the shift is in progress.")

        shift.client_signature = signature
        shift.signature_captured_at = now
        await uow.session.flush()

        await create_audit_entry(
            uow.session,
            action="SIGNATURE_CAPTURED",
            entity_type="Shift",
            entity_id=shift.id,
            company_id=actor.company_id,
            actor_id=actor.id,
            new_values={"signature_captured_at": now.isoformat()},
        )
        return shift

    # ── Complete ────────────────────────────────────────────────────

    @staticmethod
    async def complete_shift(
        uow: UnitOfWork,
        actor: CurrentUser,
        shift_id: uuid.UUID,
        *,
        actual_end: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> CompletionResult:
        """Close the visit and charge the worked time to the authorization.

        The deduction is advisory: with no covering authorization the shift
        still completes.
        """
        now = ensure_utc(now) or utcnow()
        shift = await ShiftService._get_shift(uow, actor.company_id, shift_id, lock=True)

        if not can_progress_shift(actor.role, shift.carer_id == actor.id):
            raise ForbiddenException("Only the assigned carer or a manager can complete this shift.")
        ShiftService._ensure_transition(shift, ShiftStatus.completed)

        end = ensure_utc(actual_end) or now
        start = ensure_utc(shift.actual_start)
        if start is not None and end < start:
            raise ValidationException({"actual_end": ["actual_end cannot be before actual_start."]})

        client = await ShiftService._get_client(uow, actor.company_id, shift.client_id)
        hours = calculate_shift_hours(
            start, end, ensure_utc(shift.scheduled_start), ensure_utc(shift.scheduled_end),
        )

        shift.status = ShiftStatus.completed
        shift.actual_end = end
        await uow.session.flush()

        deduction = await AuthorizationLedger.deduct_units(
            uow,
            company_id=actor.company_id,
            client_id=shift.client_id,
            service_type=shift.service_type,
            hours_worked=hours,
            shift_id=shift.id,
            actor_id=actor.id,
            now=now,
        )

        await create_audit_entry(
            uow.session,
            action="SHIFT_COMPLETED",
            entity_type="Shift",
            entity_id=shift.id,
            company_id=actor.company_id,
            actor_id=actor.id,
            old_values={"status": ShiftStatus.in_progress.value},
            new_values={
                "status": shift.status.value,
                "actual_end": end.isoformat(),
                "hours_worked": round(hours, 4),
                "authorization_id": (
                    str(deduction.authorization_id) if deduction.found else None
                ),
                "units_deducted": deduction.units_deducted if deduction.found else 0,
            },
        )

        notice = shift_completed_notice(shift, client)
        if notice is not None:
            uow.notify(notice)
        return CompletionResult(shift=shift, hours_worked=hours, deduction=deduction)

    # ── Missed ──────────────────────────────────────────────────────

    @staticmethod
    async def mark_missed(
        uow: UnitOfWork,
        actor: CurrentUser,
        shift_id: uuid.UUID,
        *,
        reason: MissedVisitReason | str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Shift:
        now = ensure_utc(now) or utcnow()
        try:
            reason = MissedVisitReason(reason)
        except ValueError:
            raise ValidationException(
                {"reason": [f"'{reason}' is not a valid missed-visit reason."]}
            )

        shift = await ShiftService._get_shift(uow, actor.company_id, shift_id, lock=True)
        if not can_mark_missed(actor.role, shift.carer_id == actor.id):
            raise ForbiddenException("You cannot mark this shift as missed.")
        ShiftService._ensure_transition(shift, ShiftStatus.missed)

        client = await ShiftService._get_client(uow, actor.company_id, shift.client_id)
        previous = shift.status

        shift.status = ShiftStatus.missed
        shift.missed_reason = reason
        shift.missed_notes = notes
        shift.missed_at = now
        shift.missed_by_id = actor.id
        await uow.session.flush()

        await create_audit_entry(
            uow.session,
            action="SHIFT_MISSED",
            entity_type="Shift",
            entity_id=shift.id,
            company_id=actor.company_id,
            actor_id=actor.id,
            old_values={"status": previous.value},
            new_values={
                "status": shift.status.value,
                "missed_reason": reason.value,
                "missed_notes": notes,
                "missed_at": now.isoformat(),
            },
        )
        uow.notify(shift_missed_notice(shift, client, MISSED_VISIT_REASON_LABELS[reason]))
        return shift

    # ── Cancel ──────────────────────────────────────────────────────

    @staticmethod
    async def cancel_shift(
        uow: UnitOfWork,
        actor: CurrentUser,
        shift_id: uuid.UUID,
        *,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Shift:
        now = ensure_utc(now) or utcnow()
        if not can_cancel_shift(actor.role):
            raise ForbiddenException("Only managers can cancel shifts.")

        shift = await ShiftService._get_shift(uow, actor.company_id, shift_id, lock=True)
        ShiftService._ensure_transition(shift, ShiftStatus.cancelled)
        client = await ShiftService._get_client(uow, actor.company_id, shift.client_id)

        shift.status = ShiftStatus.cancelled
        shift.cancelled_at = now
        shift.cancelled_by_id = actor.id
        await uow.session.flush()

        await create_audit_entry(
            uow.session,
            action="SHIFT_CANCELLED",
            entity_type="Shift",
            entity_id=shift.id,
            company_id=actor.company_id,
            actor_id=actor.id,
            old_values={"status": ShiftStatus.scheduled.value},
            new_values={"status": shift.status.value, "reason": reason},
        )
        uow.notify(shift_cancelled_notice(shift, client))
        return shift

    # ── Read ────────────────────────────────────────────────────────

    @staticmethod
    async def get_shift(
        uow: UnitOfWork, actor: CurrentUser, shift_id: uuid.UUID,
    ) -> Shift:
        shift = await ShiftService._get_shift(uow, actor.company_id, shift_id)
        client = None
        if has_permission(actor.role, "schedule:read_sponsored"):
            client = await ShiftService._get_client(uow, actor.company_id, shift.client_id)
        ShiftService._ensure_readable(actor, shift, client)
        return shift

    @staticmethod
    async def list_shifts(
        uow: UnitOfWork,
        actor: CurrentUser,
        pagination: PaginationParams,
        *,
        start_from: Optional[datetime] = None,
        start_to: Optional[datetime] = None,
        carer_id: Optional[uuid.UUID] = None,
        client_id: Optional[uuid.UUID] = None,
        status: Optional[ShiftStatus] = None,
    ) -> ShiftListResponse:
        """Company shifts ordered by start; carers and sponsors see their own."""
        query = select(Shift).where(Shift.company_id == actor.company_id)

        if can_view_all_schedules(actor.role):
            if carer_id is not None:
                query = query.where(Shift.carer_id == carer_id)
        elif has_permission(actor.role, "schedule:read_own"):
            query = query.where(Shift.carer_id == actor.id)
        elif has_permission(actor.role, "schedule:read_sponsored"):
            sponsored = select(Client.id).where(
                Client.company_id == actor.company_id,
                Client.sponsor_id == actor.id,
            )
            query = query.where(Shift.client_id.in_(sponsored))
        else:
            raise ForbiddenException("You cannot view schedules.")

        if client_id is not None:
            query = query.where(Shift.client_id == client_id)
        if status is not None:
            query = query.where(Shift.status == status)
        if start_from is not None:
            query = query.where(Shift.scheduled_start >= ensure_utc(start_from))
        if start_to is not None:
            query = query.where(Shift.scheduled_start < ensure_utc(start_to))

        query = query.order_by(Shift.scheduled_start.asc(), Shift.id)
        rows, meta = await paginate(uow.session, query, pagination)
        return ShiftListResponse(
            data=[ShiftResponse.model_validate(s) for s in rows],
            meta=meta,
        )

    # ── Bulk ────────────────────────────────────────────────────────

    @staticmethod
    async def _plan_bulk(
        uow: UnitOfWork,
        actor: CurrentUser,
        request: BulkShiftRequest,
        now: datetime,
        *,
        lock: bool,
    ) -> tuple[Client, list[tuple[Occurrence, Optional[Shift]]], UnitProjection]:
        """Expand the schedule and pair each occurrence with any conflict."""
        if not can_manage_schedule(actor.role):
            raise ForbiddenException("You do not have permission to manage schedules.")

        today = agency_date(now)
        validate_window(request.start_date, request.weeks, today)
        hours_per_shift = hours_between(request.start_time, request.end_time)
        if hours_per_shift <= 0:
            raise ValidationException({"end_time": ["end_time must be after start_time."]})

        occurrences = generate_occurrences(
            request.start_date,
            request.weeks,
            request.days_of_week,
            request.start_time,
            request.end_time,
        )
        if not occurrences:
            raise ValidationException(
                {"days_of_week": ["No dates match the selected criteria."]}
            )

        client = await ShiftService._get_client(uow, actor.company_id, request.client_id)
        if lock:
            await ShiftService._lock_carer(uow, actor.company_id, request.carer_id)

        planned: list[tuple[Occurrence, Optional[Shift]]] = []
        for occurrence in occurrences:
            conflict = await find_conflicting_shift(
                uow.session,
                carer_id=request.carer_id,
                start=occurrence.start,
                end=occurrence.end,
            )
            planned.append((occurrence, conflict))

        bookable = sum(1 for _, conflict in planned if conflict is None)
        projection = await ShiftService._project_units(
            uow, actor, request, hours_per_shift, bookable, today,
        )
        return client, planned, projection

    @staticmethod
    async def _project_units(
        uow: UnitOfWork,
        actor: CurrentUser,
        request: BulkShiftRequest,
        hours_per_shift: float,
        shift_count: int,
        today: date,
    ) -> UnitProjection:
        auth = await AuthorizationLedger.find_active_authorization(
            uow,
            company_id=actor.company_id,
            client_id=request.client_id,
            service_type=request.service_type,
            on_date=today,
        )
        if auth is None:
            return UnitProjection()
        units = calculate_bulk_units(hours_per_shift, shift_count, auth.unit_type)
        return UnitProjection(
            authorization_id=auth.id,
            unit_type=auth.unit_type.value,
            projected_units=units,
            remaining_units=auth.remaining_units,
            exceeds_remaining=units > auth.remaining_units,
        )

    @staticmethod
    async def preview_bulk_shifts(
        uow: UnitOfWork,
        actor: CurrentUser,
        request: BulkShiftRequest,
        *,
        now: Optional[datetime] = None,
    ) -> BulkPreviewResponse:
        now = ensure_utc(now) or utcnow()
        _, planned, projection = await ShiftService._plan_bulk(
            uow, actor, request, now, lock=False,
        )
        return BulkPreviewResponse(
            total=len(planned),
            occurrences=[
                BulkOccurrence(
                    scheduled_start=occ.start,
                    scheduled_end=occ.end,
                    conflicting_shift_id=conflict.id if conflict else None,
                )
                for occ, conflict in planned
            ],
            conflict_count=sum(1 for _, conflict in planned if conflict is not None),
            projection=projection,
        )

    @staticmethod
    async def bulk_create_shifts(
        uow: UnitOfWork,
        actor: CurrentUser,
        request: BulkShiftRequest,
        *,
        now: Optional[datetime] = None,
    ) -> BulkShiftResponse:
        """Create a recurring schedule in one transaction.

        Conflicts abort the whole batch unless ``skip_conflicts`` is set, in
        which case the conflicting dates are skipped and reported.
        """
        now = ensure_utc(now) or utcnow()
        client, planned, projection = await ShiftService._plan_bulk(
            uow, actor, request, now, lock=True,
        )

        conflicts = [
            BulkOccurrence(
                scheduled_start=occ.start,
                scheduled_end=occ.end,
                conflicting_shift_id=conflict.id,
            )
            for occ, conflict in planned
            if conflict is not None
        ]
        if conflicts and not request.skip_conflicts:
            raise ScheduleConflictError(conflicts[0].conflicting_shift_id)

        created: list[Shift] = []
        for occurrence, conflict in planned:
            if conflict is not None:
                continue
            shift = Shift(
                company_id=actor.company_id,
                carer_id=request.carer_id,
                client_id=request.client_id,
                service_type=request.service_type,
                scheduled_start=occurrence.start,
                scheduled_end=occurrence.end,
                status=ShiftStatus.scheduled,
                notes=request.notes,
                created_by_id=actor.id,
                evv_record=None,
            )
            uow.session.add(shift)
            created.append(shift)
        await uow.session.flush()

        shift_ids = [s.id for s in created]
        if created:
            await create_audit_entry(
                uow.session,
                action="BULK_SHIFTS_CREATED",
                entity_type="Shift",
                entity_id=shift_ids[0],
                company_id=actor.company_id,
                actor_id=actor.id,
                new_values={
                    "count": len(created),
                    "skipped": len(conflicts),
                    "carer_id": str(request.carer_id),
                    "client_id": str(request.client_id),
                    "start_date": request.start_date.isoformat(),
                    "weeks": request.weeks,
                    "days_of_week": request.days_of_week,
                    "start_time": request.start_time,
                    "end_time": request.end_time,
                    "projected_units": projection.projected_units,
                    "shift_ids": [str(i) for i in shift_ids],
                },
            )
            uow.notify(bulk_assigned_notice(actor.company_id, request.carer_id, client, shift_ids))

        logger.info(
            "Bulk schedule for carer %s: %d created, %d skipped",
            request.carer_id, len(created), len(conflicts),
        )
        return BulkShiftResponse(
            created=len(created),
            skipped=len(conflicts),
            shift_ids=shift_ids,
            conflicts=conflicts,
            projection=projection,
        )
