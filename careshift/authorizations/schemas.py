"""Authorization Pydantic v2 schemas — read models and alert views."""


import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from careshift.common.constants import (
    AlertSeverity,
    AlertType,
    AuthorizationStatus,
    UnitType,
)
from careshift.common.pagination import PaginationMeta


class AuthorizationResponse(BaseModel):
    """Authorization with computed usage figures."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    client_id: uuid.UUID
    auth_number: str
    service_type: str
    unit_type: UnitType
    authorized_units: float
    used_units: float
    remaining_units: float
    usage_percentage: float
    start_date: date
    end_date: date
    days_remaining: int = 0
    is_expiring_soon: bool = False
    is_nearing_limit: bool = False
    status: AuthorizationStatus


class AuthorizationStats(BaseModel):
    total: int = 0
    active: int = 0
    exhausted: int = 0
    expired: int = 0
    low_units: int = 0
    expiring_soon: int = 0


class AuthorizationListResponse(BaseModel):
    data: list[AuthorizationResponse]
    meta: PaginationMeta
    stats: AuthorizationStats


class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    authorization_id: uuid.UUID
    auth_number: Optional[str] = None
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    is_dismissed: bool
    dismissed_at: Optional[datetime] = None
    created_at: datetime


class AlertSummary(BaseModel):
    total: int = 0
    critical: int = 0
    warning: int = 0


class AlertListResponse(BaseModel):
    data: list[AlertResponse]
    meta: PaginationMeta
    summary: AlertSummary


class ExpirationSweepResponse(BaseModel):
    expired: list[uuid.UUID]
    alerts_raised: int
