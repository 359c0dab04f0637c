"""Unit conversion: worked hours → authorization units.

All conversions round up, so partial quarter-hours and partial days are
billed as whole units.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from careshift.common.constants import UnitType

# Hours are rounded to this many places before ceil() so float noise such as
# 2.1 * 4 == 8.400000000000002 does not cost an extra unit.
_HOURS_PRECISION = 9


def units_for_duration(hours_worked: float, unit_type: UnitType) -> float:
    """Convert *hours_worked* into units of *unit_type*.

    HOURLY rounds up to the next quarter hour, QUARTER_HOURLY counts started
    15-minute blocks, DAILY is 1 for any positive duration.
    Zero, negative or non-finite durations yield 0.
    """
    if not math.isfinite(hours_worked) or hours_worked <= 0:
        return 0.0

    quarters = math.ceil(round(hours_worked * 4, _HOURS_PRECISION))
    if unit_type == UnitType.hourly:
        return quarters / 4
    if unit_type == UnitType.quarter_hourly:
        return float(quarters)
    if unit_type == UnitType.daily:
        return 1.0
    raise ValueError(f"Unknown unit type: {unit_type!r}")


def calculate_shift_hours(
    actual_start: Optional[datetime],
    actual_end: Optional[datetime],
    scheduled_start: datetime,
    scheduled_end: datetime,
) -> float:
    """Hours worked, preferring actual times over scheduled ones, floored at 0."""
    start = actual_start or scheduled_start
    end = actual_end or scheduled_end
    hours = (end - start).total_seconds() / 3600
    return max(hours, 0.0)


def calculate_bulk_units(
    hours_per_shift: float, shift_count: int, unit_type: UnitType,
) -> float:
    """Projected consumption of *shift_count* identical shifts."""
    return units_for_duration(hours_per_shift, unit_type) * shift_count
