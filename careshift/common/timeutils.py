"""Datetime helpers: everything is stored in UTC, calendars use the agency zone."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from careshift.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return *value* as an aware UTC datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def agency_tz() -> ZoneInfo:
    return ZoneInfo(settings.AGENCY_TIMEZONE)


def agency_date(value: datetime) -> date:
    """Calendar date of *value* as seen by the agency."""
    return ensure_utc(value).astimezone(agency_tz()).date()
