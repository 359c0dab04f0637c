"""EVV router — compliance dashboard and report."""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from careshift.auth.dependencies import CurrentUser, require_permission
from careshift.common.constants import EVVComplianceFilter
from careshift.common.pagination import PaginationParams
from careshift.common.unit_of_work import UnitOfWork
from careshift.dependencies import get_uow
from careshift.evv.schemas import EVVDashboardResponse, EVVReportResponse
from careshift.evv.service import EVVService

router = APIRouter(prefix="", tags=["evv"])


# ── GET /dashboard ──────────────────────────────────────────────────

@router.get("/dashboard", response_model=EVVDashboardResponse)
async def evv_dashboard(
    user: CurrentUser = Depends(require_permission("evv:read")),
    uow: UnitOfWork = Depends(get_uow),
):
    """Verification status of active visits and today's completed visits."""
    return await uow.run(lambda: EVVService.get_dashboard(uow, user))


# ── GET /reports ────────────────────────────────────────────────────

@router.get("/reports", response_model=EVVReportResponse)
async def evv_report(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    carer_id: Optional[uuid.UUID] = Query(None),
    client_id: Optional[uuid.UUID] = Query(None),
    compliance_status: Optional[EVVComplianceFilter] = Query(None),
    pagination: PaginationParams = Depends(),
    user: CurrentUser = Depends(require_permission("evv:read")),
    uow: UnitOfWork = Depends(get_uow),
):
    """Completed visits with hours worked and location check outcome."""
    return await uow.run(
        lambda: EVVService.get_report(
            uow,
            user,
            pagination,
            start_date=start_date,
            end_date=end_date,
            carer_id=carer_id,
            client_id=client_id,
            compliance_status=compliance_status,
        )
    )
