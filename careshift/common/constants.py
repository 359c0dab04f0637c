"""Enums and constants for CareShift — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    admin = "ADMIN"
    ops_manager = "OPS_MANAGER"
    clinical_director = "CLINICAL_DIRECTOR"
    supervisor = "SUPERVISOR"
    staff = "STAFF"
    carer = "CARER"
    sponsor = "SPONSOR"


# ── Scheduling ──────────────────────────────────────────────────────

class ShiftStatus(str, enum.Enum):
    scheduled = "SCHEDULED"
    in_progress = "IN_PROGRESS"
    completed = "COMPLETED"
    missed = "MISSED"
    cancelled = "CANCELLED"


# Only these statuses occupy a carer's time slot.
ACTIVE_SHIFT_STATUSES: frozenset[ShiftStatus] = frozenset(
    {ShiftStatus.scheduled, ShiftStatus.in_progress}
)

TERMINAL_SHIFT_STATUSES: frozenset[ShiftStatus] = frozenset(
    {ShiftStatus.completed, ShiftStatus.missed, ShiftStatus.cancelled}
)

# Allowed lifecycle transitions: from → {to}
SHIFT_TRANSITIONS: dict[ShiftStatus, frozenset[ShiftStatus]] = {
    ShiftStatus.scheduled: frozenset(
        {ShiftStatus.in_progress, ShiftStatus.missed, ShiftStatus.cancelled}
    ),
    ShiftStatus.in_progress: frozenset(
        {ShiftStatus.completed, ShiftStatus.missed}
    ),
    ShiftStatus.completed: frozenset(),
    ShiftStatus.missed: frozenset(),
    ShiftStatus.cancelled: frozenset(),
}


class MissedVisitReason(str, enum.Enum):
    client_refused = "CLIENT_REFUSED"
    client_hospitalized = "CLIENT_HOSPITALIZED"
    client_not_home = "CLIENT_NOT_HOME"
    client_cancelled = "CLIENT_CANCELLED"
    carer_illness = "CARER_ILLNESS"
    carer_emergency = "CARER_EMERGENCY"
    transportation_issue = "TRANSPORTATION_ISSUE"
    weather = "WEATHER"
    scheduling_error = "SCHEDULING_ERROR"
    other = "OTHER"


MISSED_VISIT_REASON_LABELS: dict[MissedVisitReason, str] = {
    MissedVisitReason.client_refused: "Client refused service",
    MissedVisitReason.client_hospitalized: "Client hospitalized",
    MissedVisitReason.client_not_home: "Client not home",
    MissedVisitReason.client_cancelled: "Client cancelled visit",
    MissedVisitReason.carer_illness: "Caregiver illness",
    MissedVisitReason.carer_emergency: "Caregiver emergency",
    MissedVisitReason.transportation_issue: "Transportation issue",
    MissedVisitReason.weather: "Severe weather",
    MissedVisitReason.scheduling_error: "Scheduling error",
    MissedVisitReason.other: "Other",
}


# ── EVV ─────────────────────────────────────────────────────────────

class EVVStatus(str, enum.Enum):
    compliant = "COMPLIANT"
    out_of_range = "OUT_OF_RANGE"
    location_unavailable = "LOCATION_UNAVAILABLE"
    not_required = "NOT_REQUIRED"


class EVVSource(str, enum.Enum):
    mobile = "MOBILE"
    web = "WEB"


# EVV report filter; ``missing`` covers shifts with no record or no usable location.
class EVVComplianceFilter(str, enum.Enum):
    compliant = "compliant"
    out_of_range = "out_of_range"
    missing = "missing"


# ── Authorizations ──────────────────────────────────────────────────

class UnitType(str, enum.Enum):
    hourly = "HOURLY"
    quarter_hourly = "QUARTER_HOURLY"
    daily = "DAILY"


class AuthorizationStatus(str, enum.Enum):
    active = "ACTIVE"
    exhausted = "EXHAUSTED"
    expired = "EXPIRED"
    cancelled = "CANCELLED"


class AlertType(str, enum.Enum):
    low_units = "LOW_UNITS"
    units_exhausted = "UNITS_EXHAUSTED"
    expiring_soon = "EXPIRING_SOON"


class AlertSeverity(str, enum.Enum):
    warning = "WARNING"
    critical = "CRITICAL"


ALERT_TYPE_LABELS: dict[AlertType, str] = {
    AlertType.low_units: "Authorization units running low",
    AlertType.units_exhausted: "Authorization units exhausted",
    AlertType.expiring_soon: "Authorization expiring soon",
}

# Severity ordering used when escalating an open alert in place
SEVERITY_RANK: dict[AlertSeverity, int] = {
    AlertSeverity.warning: 1,
    AlertSeverity.critical: 2,
}


# ── Notifications ───────────────────────────────────────────────────

class NotificationEvent(str, enum.Enum):
    shift_assigned = "SHIFT_ASSIGNED"
    shift_rescheduled = "SHIFT_RESCHEDULED"
    shift_cancelled = "SHIFT_CANCELLED"
    shift_completed = "SHIFT_COMPLETED"
    shift_missed = "SHIFT_MISSED"
    auth_units_low = "AUTH_UNITS_LOW"
    auth_units_exhausted = "AUTH_UNITS_EXHAUSTED"
    auth_expiring = "AUTH_EXPIRING"


# ── Role-based permissions ──────────────────────────────────────────

_MANAGER_PERMISSIONS = [
    "schedule:manage",
    "schedule:read_all",
    "schedule:cancel",
    "schedule:mark_missed",
    "authorization:read",
    "authorization:manage",
    "evv:read",
]

PERMISSIONS: dict[UserRole, list[str]] = {
    UserRole.admin: _MANAGER_PERMISSIONS + ["system:configure"],
    UserRole.ops_manager: list(_MANAGER_PERMISSIONS),
    UserRole.clinical_director: list(_MANAGER_PERMISSIONS),
    UserRole.supervisor: list(_MANAGER_PERMISSIONS),
    UserRole.staff: [
        "schedule:manage",
        "schedule:read_all",
        "authorization:read",
        "evv:read",
    ],
    UserRole.carer: [
        "schedule:read_own",
        "schedule:mark_missed_own",
    ],
    UserRole.sponsor: [
        "schedule:read_sponsored",
    ],
}

# Roles that receive operational alerts (missed visits, authorization alerts)
ALERT_RECIPIENT_ROLES: tuple[UserRole, ...] = (
    UserRole.supervisor,
    UserRole.admin,
    UserRole.ops_manager,
)

# ── Misc constants ──────────────────────────────────────────────────

EARTH_RADIUS_METERS = 6_371_000
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
