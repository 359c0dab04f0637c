"""Permission predicates used by the shift state machine and routers.

Every role check in the scheduling and authorization code goes through these
functions; they are derived from the ``PERMISSIONS`` table so a role's
capabilities are defined in one place.
"""

from __future__ import annotations

from careshift.common.constants import PERMISSIONS, UserRole

MANAGER_TIER: frozenset[UserRole] = frozenset(
    {
        UserRole.admin,
        UserRole.ops_manager,
        UserRole.clinical_director,
        UserRole.supervisor,
    }
)


def has_permission(role: UserRole, permission: str) -> bool:
    return permission in PERMISSIONS.get(role, [])


def is_manager_tier(role: UserRole) -> bool:
    return role in MANAGER_TIER


def can_manage_schedule(role: UserRole) -> bool:
    """Create, edit and bulk-create shifts."""
    return has_permission(role, "schedule:manage")


def can_view_all_schedules(role: UserRole) -> bool:
    return has_permission(role, "schedule:read_all")


def can_cancel_shift(role: UserRole) -> bool:
    return has_permission(role, "schedule:cancel")


def can_mark_missed(role: UserRole, is_assigned_carer: bool) -> bool:
    """Managers may mark any shift missed; carers only their own."""
    if has_permission(role, "schedule:mark_missed"):
        return True
    return is_assigned_carer and has_permission(role, "schedule:mark_missed_own")


def can_progress_shift(role: UserRole, is_assigned_carer: bool) -> bool:
    """Start or complete a visit: the assigned carer or a manager."""
    return is_assigned_carer or is_manager_tier(role)


def can_read_authorizations(role: UserRole) -> bool:
    return has_permission(role, "authorization:read")


def can_manage_authorizations(role: UserRole) -> bool:
    """Dismiss alerts and run the expiry sweep."""
    return has_permission(role, "authorization:manage")


def can_view_evv(role: UserRole) -> bool:
    return has_permission(role, "evv:read")
