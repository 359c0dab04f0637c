"""Conflict detector — half-open interval overlap for a carer's active shifts."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime

from careshift.common.constants import ShiftStatus
from careshift.scheduling.conflicts import (
    find_conflict,
    find_conflicting_shift,
    has_conflict,
    intervals_overlap,
)
from tests.conftest import TestSessionFactory, at, make_shift, seed

CARER = uuid.uuid4()


@dataclass
class FakeShift:
    scheduled_start: datetime
    scheduled_end: datetime
    carer_id: uuid.UUID = CARER
    status: ShiftStatus = ShiftStatus.scheduled
    id: uuid.UUID = None

    def __post_init__(self):
        self.id = self.id or uuid.uuid4()


# ── Pure predicate ──────────────────────────────────────────────────


def test_touching_intervals_do_not_overlap():
    assert not intervals_overlap(at(9), at(10), at(10), at(11))
    assert not intervals_overlap(at(10), at(11), at(9), at(10))


def test_partial_and_contained_intervals_overlap():
    assert intervals_overlap(at(9), at(10), at(9, 30), at(10, 30))
    assert intervals_overlap(at(9), at(12), at(10), at(11))


def test_morning_shift_blocks_half_hour_offset():
    existing = [FakeShift(at(9), at(10))]
    assert has_conflict(CARER, at(9, 30), at(10, 30), existing)
    assert not has_conflict(CARER, at(10), at(11), existing)


def test_other_carers_and_inactive_shifts_ignored():
    existing = [
        FakeShift(at(9), at(10), carer_id=uuid.uuid4()),
        FakeShift(at(9), at(10), status=ShiftStatus.cancelled),
        FakeShift(at(9), at(10), status=ShiftStatus.completed),
        FakeShift(at(9), at(10), status=ShiftStatus.missed),
    ]
    assert find_conflict(CARER, at(9), at(10), existing) is None


def test_in_progress_shift_blocks():
    blocker = FakeShift(at(9), at(10), status=ShiftStatus.in_progress)
    assert find_conflict(CARER, at(9, 45), at(11), [blocker]) is blocker


def test_excluded_shift_is_skipped():
    own = FakeShift(at(9), at(10))
    assert find_conflict(CARER, at(9), at(10), [own], exclude_shift_id=own.id) is None


# ── Database query ──────────────────────────────────────────────────


async def test_find_conflicting_shift_queries_active_shifts(carer, care_client):
    blocker = make_shift(carer.id, care_client.id, at(9), at(10))
    cancelled = make_shift(
        carer.id, care_client.id, at(12), at(13), status=ShiftStatus.cancelled,
    )
    await seed(blocker, cancelled)

    async with TestSessionFactory() as session:
        hit = await find_conflicting_shift(
            session, carer_id=carer.id, start=at(9, 30), end=at(10, 30),
        )
        touching = await find_conflicting_shift(
            session, carer_id=carer.id, start=at(10), end=at(11),
        )
        over_cancelled = await find_conflicting_shift(
            session, carer_id=carer.id, start=at(12), end=at(13),
        )
        excluded = await find_conflicting_shift(
            session, carer_id=carer.id, start=at(9), end=at(10),
            exclude_shift_id=blocker.id,
        )

    assert hit is not None and hit.id == blocker.id
    assert touching is None
    assert over_cancelled is None
    assert excluded is None
