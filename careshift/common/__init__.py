"""Common module — shared utilities for CareShift."""

from careshift.common.audit import AuditTrail, create_audit_entry
from careshift.common.constants import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    PERMISSIONS,
    AlertSeverity,
    AlertType,
    AuthorizationStatus,
    EVVSource,
    EVVStatus,
    MissedVisitReason,
    NotificationEvent,
    ShiftStatus,
    UnitType,
    UserRole,
)
from careshift.common.exceptions import (
    AppException,
    ForbiddenException,
    InvalidInput,
    InvalidLocation,
    InvalidStateError,
    NotFoundException,
    PersistenceFailure,
    ScheduleConflictError,
    ValidationException,
    register_exception_handlers,
)
from careshift.common.pagination import (
    PaginationMeta,
    PaginationParams,
    paginate,
)
from careshift.common.unit_of_work import PendingNotification, UnitOfWork

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "AlertSeverity",
    "AlertType",
    "AuthorizationStatus",
    "EVVSource",
    "EVVStatus",
    "MissedVisitReason",
    "NotificationEvent",
    "ShiftStatus",
    "UnitType",
    "UserRole",
    "PERMISSIONS",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ForbiddenException",
    "InvalidInput",
    "InvalidLocation",
    "InvalidStateError",
    "NotFoundException",
    "PersistenceFailure",
    "ScheduleConflictError",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginationMeta",
    "PaginationParams",
    "paginate",
    # Unit of work
    "PendingNotification",
    "UnitOfWork",
]
