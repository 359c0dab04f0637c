"""Scheduling router — shifts, visit lifecycle, EVV capture, bulk schedules.

All endpoints require authentication; role and ownership guards are enforced
by ``ShiftService`` so they apply identically outside HTTP.
"""


import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status

from careshift.auth.dependencies import CurrentUser, get_current_user
from careshift.common.constants import (
    MISSED_VISIT_REASON_LABELS,
    ShiftStatus,
)
from careshift.common.pagination import PaginationParams
from careshift.common.rate_limit import limiter
from careshift.common.unit_of_work import UnitOfWork
from careshift.dependencies import get_uow
from careshift.scheduling.schemas import (
    BulkPreviewResponse,
    BulkShiftRequest,
    BulkShiftResponse,
    DeductionSummary,
    EVVCaptureRequest,
    EVVRecordResponse,
    MarkMissedRequest,
    MissedReasonOption,
    ShiftCompleteRequest,
    ShiftCompleteResponse,
    ShiftCreate,
    ShiftListResponse,
    ShiftResponse,
    ShiftStartRequest,
    ShiftUpdate,
    SignatureRequest,
)
from careshift.scheduling.service import ShiftService

router = APIRouter(prefix="", tags=["scheduling"])


# ── GET /missed-reasons ─────────────────────────────────────────────
# NOTE: registered before /{shift_id} so the literal path wins.

@router.get("/missed-reasons", response_model=list[MissedReasonOption])
async def list_missed_reasons(
    user: CurrentUser = Depends(get_current_user),
):
    """Closed list of missed-visit reason codes with display labels."""
    return [
        MissedReasonOption(code=code, label=label)
        for code, label in MISSED_VISIT_REASON_LABELS.items()
    ]


# ── POST /bulk/preview ──────────────────────────────────────────────

@router.post("/bulk/preview", response_model=BulkPreviewResponse)
async def preview_bulk_shifts(
    body: BulkShiftRequest,
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    """Expand a recurring schedule and report conflicts without writing."""
    return await uow.run(lambda: ShiftService.preview_bulk_shifts(uow, user, body))


# ── POST /bulk ──────────────────────────────────────────────────────

@router.post("/bulk", response_model=BulkShiftResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def bulk_create_shifts(
    request: Request,
    body: BulkShiftRequest,
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    """Create a recurring weekly schedule in one transaction."""
    return await uow.run(lambda: ShiftService.bulk_create_shifts(uow, user, body))


# ── POST / ──────────────────────────────────────────────────────────

@router.post("", response_model=ShiftResponse, status_code=status.HTTP_201_CREATED)
async def create_shift(
    body: ShiftCreate,
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    """Schedule a single visit."""
    shift = await uow.run(
        lambda: ShiftService.create_shift(
            uow,
            user,
            carer_id=body.carer_id,
            client_id=body.client_id,
            scheduled_start=body.scheduled_start,
            scheduled_end=body.scheduled_end,
            service_type=body.service_type,
            notes=body.notes,
        )
    )
    return ShiftResponse.model_validate(shift)


# ── GET / ───────────────────────────────────────────────────────────

@router.get("", response_model=ShiftListResponse)
async def list_shifts(
    start_from: Optional[datetime] = Query(None, description="Scheduled start >= (inclusive)"),
    start_to: Optional[datetime] = Query(None, description="Scheduled start < (exclusive)"),
    carer_id: Optional[uuid.UUID] = Query(None),
    client_id: Optional[uuid.UUID] = Query(None),
    status: Optional[ShiftStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    """List shifts visible to the caller (paginated)."""
    return await uow.run(
        lambda: ShiftService.list_shifts(
            uow,
            user,
            pagination,
            start_from=start_from,
            start_to=start_to,
            carer_id=carer_id,
            client_id=client_id,
            status=status,
        )
    )


# ── GET /{shift_id} ─────────────────────────────────────────────────

@router.get("/{shift_id}", response_model=ShiftResponse)
async def get_shift(
    shift_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    shift = await uow.run(lambda: ShiftService.get_shift(uow, user, shift_id))
    return ShiftResponse.model_validate(shift)


# ── PATCH /{shift_id} ───────────────────────────────────────────────

@router.patch("/{shift_id}", response_model=ShiftResponse)
async def update_shift(
    shift_id: uuid.UUID,
    body: ShiftUpdate,
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    """Reschedule, reassign or annotate a shift."""
    changes = body.model_dump(exclude_unset=True)
    shift = await uow.run(lambda: ShiftService.update_shift(uow, user, shift_id, changes))
    return ShiftResponse.model_validate(shift)


# ── POST /{shift_id}/start ──────────────────────────────────────────

@router.post("/{shift_id}/start", response_model=ShiftResponse)
async def start_shift(
    shift_id: uuid.UUID,
    body: Optional[ShiftStartRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    """Check in; the body may carry an EVV capture taken at arrival."""
    evv = body.evv if body else None
    shift = await uow.run(lambda: ShiftService.start_shift(uow, user, shift_id, evv=evv))
    return ShiftResponse.model_validate(shift)


# ── POST /{shift_id}/evv ────────────────────────────────────────────

@router.post("/{shift_id}/evv", response_model=EVVRecordResponse)
async def capture_evv(
    shift_id: uuid.UUID,
    body: EVVCaptureRequest,
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    """Submit the carer's current location for verification."""
    record = await uow.run(lambda: ShiftService.capture_evv(uow, user, shift_id, body))
    return EVVRecordResponse.model_validate(record)


# ── POST /{shift_id}/signature ──────────────────────────────────────

@router.post("/{shift_id}/signature", response_model=ShiftResponse)
async def capture_signature(
    shift_id: uuid.UUID,
    body: SignatureRequest,
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    shift = await uow.run(
        lambda: ShiftService.capture_signature(uow, user, shift_id, body.signature)
    )
    return ShiftResponse.model_validate(shift)


# ── POST /{shift_id}/complete ───────────────────────────────────────

@router.post("/{shift_id}/complete", response_model=ShiftCompleteResponse)
async def complete_shift(
    shift_id: uuid.UUID,
    body: Optional[ShiftCompleteRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    """Complete the visit and deduct authorization units."""
    actual_end = body.actual_end if body else None
    result = await uow.run(
        lambda: ShiftService.complete_shift(uow, user, shift_id, actual_end=actual_end)
    )
    deduction = result.deduction
    return ShiftCompleteResponse(
        shift=ShiftResponse.model_validate(result.shift),
        hours_worked=round(result.hours_worked, 4),
        deduction=DeductionSummary(
            authorization_found=deduction.found,
            authorization_id=deduction.authorization_id if deduction.found else None,
            units_deducted=deduction.units_deducted if deduction.found else 0.0,
            remaining_units=deduction.remaining_units if deduction.found else None,
        ),
    )


# ── POST /{shift_id}/mark-missed ────────────────────────────────────

@router.post("/{shift_id}/mark-missed", response_model=ShiftResponse)
async def mark_missed(
    shift_id: uuid.UUID,
    body: MarkMissedRequest,
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    shift = await uow.run(
        lambda: ShiftService.mark_missed(
            uow, user, shift_id, reason=body.reason, notes=body.notes,
        )
    )
    return ShiftResponse.model_validate(shift)


# ── POST /{shift_id}/cancel ─────────────────────────────────────────

@router.post("/{shift_id}/cancel", response_model=ShiftResponse)
async def cancel_shift(
    shift_id: uuid.UUID,
    reason: Optional[str] = Body(default=None, embed=True, max_length=500),
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    shift = await uow.run(
        lambda: ShiftService.cancel_shift(uow, user, shift_id, reason=reason)
    )
    return ShiftResponse.model_validate(shift)
