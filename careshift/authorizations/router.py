"""Authorization router — usage views, alert feed, dismissal and expiry sweep."""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query

from careshift.auth.dependencies import CurrentUser, get_current_user, require_role
from careshift.auth.permissions import MANAGER_TIER
from careshift.authorizations.ledger import AuthorizationLedger
from careshift.authorizations.schemas import (
    AlertListResponse,
    AlertResponse,
    AuthorizationListResponse,
    AuthorizationResponse,
    ExpirationSweepResponse,
)
from careshift.authorizations.service import AuthorizationService
from careshift.common.constants import AuthorizationStatus
from careshift.common.pagination import PaginationParams
from careshift.common.unit_of_work import UnitOfWork
from careshift.dependencies import get_uow

router = APIRouter(prefix="", tags=["authorizations"])


# ── GET / ───────────────────────────────────────────────────────────

@router.get("", response_model=AuthorizationListResponse)
async def list_authorizations(
    client_id: Optional[uuid.UUID] = Query(None),
    status: Optional[AuthorizationStatus] = Query(None),
    expiring_soon: bool = Query(False, description="Active and ending within 30 days"),
    pagination: PaginationParams = Depends(),
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    """List authorizations with computed usage statistics."""
    return await uow.run(
        lambda: AuthorizationService.list_authorizations(
            uow,
            user,
            pagination,
            client_id=client_id,
            status=status,
            expiring_soon=expiring_soon,
        )
    )


# ── GET /alerts ─────────────────────────────────────────────────────
# NOTE: alert routes are registered before /{authorization_id}.

@router.get("/alerts", response_model=AlertListResponse)
async def list_alerts(
    include_dismissed: bool = Query(False),
    authorization_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    return await uow.run(
        lambda: AuthorizationService.list_alerts(
            uow,
            user,
            pagination,
            include_dismissed=include_dismissed,
            authorization_id=authorization_id,
        )
    )


# ── POST /alerts/evaluate ───────────────────────────────────────────

@router.post("/alerts/evaluate", response_model=ExpirationSweepResponse)
async def evaluate_expirations(
    user: CurrentUser = Depends(require_role(*MANAGER_TIER)),
    uow: UnitOfWork = Depends(get_uow),
):
    """Expire lapsed authorizations and raise expiring-soon alerts."""
    result = await uow.run(
        lambda: AuthorizationLedger.evaluate_expirations(uow, user.company_id, actor_id=user.id)
    )
    return ExpirationSweepResponse(expired=result.expired, alerts_raised=result.alerts_raised)


# ── POST /alerts/{alert_id}/dismiss ─────────────────────────────────

@router.post("/alerts/{alert_id}/dismiss", response_model=AlertResponse)
async def dismiss_alert(
    alert_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    alert = await uow.run(lambda: AuthorizationLedger.dismiss_alert(uow, user, alert_id))
    return AlertResponse.model_validate(alert)


# ── GET /{authorization_id} ─────────────────────────────────────────

@router.get("/{authorization_id}", response_model=AuthorizationResponse)
async def get_authorization(
    authorization_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    return await uow.run(
        lambda: AuthorizationService.get_authorization(uow, user, authorization_id)
    )
