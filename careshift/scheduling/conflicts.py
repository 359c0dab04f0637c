"""Carer double-booking detection.

Intervals are half-open ``[start, end)``: a shift ending at 10:00 and one
starting at 10:00 do not overlap. Only SCHEDULED and IN_PROGRESS shifts of
the same carer occupy time.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from careshift.common.constants import ACTIVE_SHIFT_STATUSES, ShiftStatus
from careshift.common.timeutils import ensure_utc
from careshift.scheduling.models import Shift


class ShiftLike(Protocol):
    id: uuid.UUID
    carer_id: uuid.UUID
    scheduled_start: datetime
    scheduled_end: datetime
    status: ShiftStatus


def intervals_overlap(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime,
) -> bool:
    return ensure_utc(start_a) < ensure_utc(end_b) and ensure_utc(end_a) > ensure_utc(start_b)


def find_conflict(
    carer_id: uuid.UUID,
    proposed_start: datetime,
    proposed_end: datetime,
    existing_shifts: Iterable[ShiftLike],
    *,
    exclude_shift_id: Optional[uuid.UUID] = None,
) -> Optional[ShiftLike]:
    """Return the first active shift of *carer_id* overlapping the proposal."""
    for shift in existing_shifts:
        if shift.carer_id != carer_id:
            continue
        if shift.status not in ACTIVE_SHIFT_STATUSES:
            continue
        if exclude_shift_id is not None and shift.id == exclude_shift_id:
            continue
        if intervals_overlap(
            shift.scheduled_start, shift.scheduled_end, proposed_start, proposed_end,
        ):
            return shift
    return None


def has_conflict(
    carer_id: uuid.UUID,
    proposed_start: datetime,
    proposed_end: datetime,
    existing_shifts: Iterable[ShiftLike],
) -> bool:
    return find_conflict(carer_id, proposed_start, proposed_end, existing_shifts) is not None


async def find_conflicting_shift(
    session: AsyncSession,
    *,
    carer_id: uuid.UUID,
    start: datetime,
    end: datetime,
    exclude_shift_id: Optional[uuid.UUID] = None,
) -> Optional[Shift]:
    """Load the carer's candidate shifts and apply :func:`find_conflict`.

    The caller is expected to hold the carer's row lock so the check and the
    subsequent insert are not interleaved with another writer.
    """
    start = ensure_utc(start)
    end = ensure_utc(end)
    candidates = (
        await session.execute(
            select(Shift)
            .where(
                Shift.carer_id == carer_id,
                Shift.status.in_(list(ACTIVE_SHIFT_STATUSES)),
                Shift.scheduled_start < end,
                Shift.scheduled_end > start,
            )
            .order_by(Shift.scheduled_start)
        )
    ).scalars().all()
    return find_conflict(
        carer_id, start, end, candidates, exclude_shift_id=exclude_shift_id,
    )
