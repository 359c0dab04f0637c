"""Recurring schedule expansion for bulk shift creation.

Weekdays follow ``date.weekday()``: 0 = Monday … 6 = Sunday. Wall-clock
times are interpreted in the agency timezone and converted to UTC, so a
09:00 visit stays at 09:00 local across a DST change.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from careshift.common.exceptions import ValidationException
from careshift.common.timeutils import agency_tz
from careshift.config import settings


@dataclass(frozen=True)
class Occurrence:
    start: datetime
    end: datetime

    @property
    def hours(self) -> float:
        return (self.end - self.start).total_seconds() / 3600


def parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def hours_between(start_time: str, end_time: str) -> float:
    """Length of a same-day visit given as HH:MM strings; <= 0 when inverted."""
    start, end = parse_hhmm(start_time), parse_hhmm(end_time)
    return ((end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)) / 60


def validate_window(start_date: date, weeks: int, today: date) -> None:
    errors: dict[str, list[str]] = {}
    if start_date < today:
        errors["start_date"] = ["Start date cannot be in the past."]
    if not 1 <= weeks <= settings.BULK_MAX_WEEKS:
        errors["weeks"] = [f"Must be between 1 and {settings.BULK_MAX_WEEKS}."]
    if errors:
        raise ValidationException(errors)


def generate_dates(start_date: date, weeks: int, days_of_week: Iterable[int]) -> list[date]:
    """Every date in ``[start_date, start_date + weeks)`` falling on a selected weekday."""
    selected = set(days_of_week)
    return [
        day
        for day in (start_date + timedelta(days=offset) for offset in range(weeks * 7))
        if day.weekday() in selected
    ]


def generate_occurrences(
    start_date: date,
    weeks: int,
    days_of_week: Iterable[int],
    start_time: str,
    end_time: str,
    tz: Optional[ZoneInfo] = None,
) -> list[Occurrence]:
    tz = tz or agency_tz()
    local_start, local_end = parse_hhmm(start_time), parse_hhmm(end_time)
    occurrences = []
    for day in generate_dates(start_date, weeks, days_of_week):
        start = datetime.combine(day, local_start, tzinfo=tz).astimezone(timezone.utc)
        end = datetime.combine(day, local_end, tzinfo=tz).astimezone(timezone.utc)
        occurrences.append(Occurrence(start=start, end=end))
    return occurrences
