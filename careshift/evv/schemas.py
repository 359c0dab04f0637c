"""EVV dashboard and compliance report schemas."""


import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel

from careshift.common.constants import EVVSource, EVVStatus
from careshift.common.pagination import PaginationMeta


class DashboardShiftItem(BaseModel):
    """An in-progress visit with its verification state."""

    shift_id: uuid.UUID
    client_id: uuid.UUID
    client_name: str
    client_address: Optional[str] = None
    carer_id: uuid.UUID
    carer_name: str
    scheduled_start: datetime
    scheduled_end: datetime
    actual_start: Optional[datetime] = None
    evv_status: EVVStatus
    distance_from_client: Optional[int] = None
    geofence_radius: Optional[float] = None


class ComplianceMetrics(BaseModel):
    total_active: int = 0
    today_completed: int = 0
    compliant: int = 0
    out_of_range: int = 0
    missing_location: int = 0
    not_required: int = 0
    compliance_rate: int = 100


class OutOfRangeAlert(BaseModel):
    shift_id: uuid.UUID
    carer_name: str
    client_name: str
    distance_from_client: Optional[int] = None
    geofence_radius: Optional[float] = None
    captured_at: datetime


class EVVDashboardResponse(BaseModel):
    active_shifts: list[DashboardShiftItem] = []
    metrics: ComplianceMetrics
    alerts: list[OutOfRangeAlert] = []


# ── Compliance report ───────────────────────────────────────────────

class ReportParty(BaseModel):
    id: uuid.UUID
    name: str
    address: Optional[str] = None


class EVVReportItem(BaseModel):
    """A completed visit with its verification outcome."""

    shift_id: uuid.UUID
    visit_date: Optional[date] = None
    client: ReportParty
    carer: ReportParty
    scheduled_start: datetime
    scheduled_end: datetime
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    hours_worked: float
    evv_status: EVVStatus
    captured_at: Optional[datetime] = None
    distance_from_client: Optional[int] = None
    geofence_radius: Optional[float] = None
    accuracy: Optional[float] = None
    source: Optional[EVVSource] = None


class EVVReportSummary(BaseModel):
    total: int = 0
    compliant: int = 0
    out_of_range: int = 0
    missing_location: int = 0
    not_required: int = 0
    compliance_rate: int = 0


class EVVReportResponse(BaseModel):
    data: list[EVVReportItem]
    meta: PaginationMeta
    summary: EVVReportSummary
