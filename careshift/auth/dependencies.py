"""Auth dependencies — JWT validation, RBAC enforcement.

Identity is issued by the platform's session provider; this service trusts a
signed bearer token carrying the user id (``sub``), ``role`` and tenant
(``company_id``) and only enforces role-based guards.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt

from careshift.auth.permissions import has_permission
from careshift.common.constants import UserRole
from careshift.common.exceptions import ForbiddenException
from careshift.config import settings


@dataclass(frozen=True)
class CurrentUser:
    """The acting user as asserted by the identity provider."""

    id: uuid.UUID
    role: UserRole
    company_id: uuid.UUID


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_user(request: Request) -> CurrentUser:
    """Validate the JWT and return the acting user."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type.")

    try:
        user_id = uuid.UUID(payload["sub"])
        company_id = uuid.UUID(payload["company_id"])
        role = UserRole(payload["role"])
    except (KeyError, ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Token is missing identity claims.")

    return CurrentUser(id=user_id, role=role, company_id=company_id)


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: UserRole) -> Callable:
    """Return a FastAPI dependency that enforces role membership."""

    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed_roles:
            raise ForbiddenException(
                detail=f"Role '{user.role.value}' is not permitted. Required: {[r.value for r in allowed_roles]}.",
            )
        return user

    return _check


# ── Permission-based dependency ─────────────────────────────────────

def require_permission(permission: str) -> Callable:
    """Return a FastAPI dependency that enforces a specific permission string."""

    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not has_permission(user.role, permission):
            raise ForbiddenException(
                detail=f"Permission '{permission}' is not granted to role '{user.role.value}'.",
            )
        return user

    return _check
