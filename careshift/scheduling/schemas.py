"""Scheduling Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Response           → response bodies (read)
"""


import re
import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from careshift.common.constants import (
    EVVSource,
    EVVStatus,
    MissedVisitReason,
    ShiftStatus,
)
from careshift.common.pagination import PaginationMeta

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ═════════════════════════════════════════════════════════════════════
# Shift create / update
# ═════════════════════════════════════════════════════════════════════


class ShiftCreate(BaseModel):
    """Payload for scheduling a single shift."""

    carer_id: uuid.UUID
    client_id: uuid.UUID
    service_type: Optional[str] = Field(None, max_length=100)
    scheduled_start: datetime
    scheduled_end: datetime
    notes: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def _end_after_start(self) -> "ShiftCreate":
        if self.scheduled_end <= self.scheduled_start:
            raise ValueError("scheduled_end must be after scheduled_start")
        return self


class ShiftUpdate(BaseModel):
    """Partial update; only provided fields change."""

    carer_id: Optional[uuid.UUID] = None
    service_type: Optional[str] = Field(None, max_length=100)
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=2000)


# ═════════════════════════════════════════════════════════════════════
# Lifecycle transitions
# ═════════════════════════════════════════════════════════════════════


class EVVCaptureRequest(BaseModel):
    """Location reported by the carer's device. Coordinates may be absent."""

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    source: EVVSource = EVVSource.mobile


class ShiftStartRequest(BaseModel):
    """Optional EVV capture taken at check-in."""

    evv: Optional[EVVCaptureRequest] = None


class ShiftCompleteRequest(BaseModel):
    actual_end: Optional[datetime] = None


class SignatureRequest(BaseModel):
    signature: str = Field(..., min_length=1, description="Base64 image data")


class MarkMissedRequest(BaseModel):
    reason: MissedVisitReason
    notes: Optional[str] = Field(None, max_length=2000)


# ═════════════════════════════════════════════════════════════════════
# Responses
# ═════════════════════════════════════════════════════════════════════


class EVVRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    captured_at: datetime
    source: EVVSource
    status: EVVStatus
    is_within_geofence: Optional[bool] = None
    distance_from_client: Optional[int] = None
    geofence_radius: Optional[float] = None
    message: Optional[str] = None


class ShiftResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    carer_id: uuid.UUID
    client_id: uuid.UUID
    service_type: Optional[str] = None
    scheduled_start: datetime
    scheduled_end: datetime
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    status: ShiftStatus
    notes: Optional[str] = None
    has_signature: bool = False
    signature_captured_at: Optional[datetime] = None
    missed_reason: Optional[MissedVisitReason] = None
    missed_notes: Optional[str] = None
    missed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    evv_record: Optional[EVVRecordResponse] = None
    created_at: Optional[datetime] = None


class DeductionSummary(BaseModel):
    authorization_found: bool
    authorization_id: Optional[uuid.UUID] = None
    units_deducted: float = 0.0
    remaining_units: Optional[float] = None


class ShiftCompleteResponse(BaseModel):
    shift: ShiftResponse
    hours_worked: float
    deduction: DeductionSummary


class ShiftListResponse(BaseModel):
    data: list[ShiftResponse]
    meta: PaginationMeta


class MissedReasonOption(BaseModel):
    code: MissedVisitReason
    label: str


# ═════════════════════════════════════════════════════════════════════
# Bulk scheduling
# ═════════════════════════════════════════════════════════════════════


class BulkShiftRequest(BaseModel):
    """Recurring weekly schedule for one carer and client."""

    carer_id: uuid.UUID
    client_id: uuid.UUID
    service_type: Optional[str] = Field(None, max_length=100)
    start_date: date
    weeks: int = Field(..., ge=1)
    days_of_week: list[int] = Field(..., min_length=1, description="0 = Monday … 6 = Sunday")
    start_time: str = Field(..., description="HH:MM in the agency timezone")
    end_time: str = Field(..., description="HH:MM in the agency timezone")
    skip_conflicts: bool = False
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("days_of_week")
    @classmethod
    def _valid_days(cls, value: list[int]) -> list[int]:
        if any(d < 0 or d > 6 for d in value):
            raise ValueError("days_of_week values must be between 0 and 6")
        return sorted(set(value))

    @field_validator("start_time", "end_time")
    @classmethod
    def _valid_time(cls, value: str) -> str:
        if not _HHMM.match(value):
            raise ValueError("must be HH:MM (24-hour)")
        return value

    @model_validator(mode="after")
    def _end_after_start(self) -> "BulkShiftRequest":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class BulkOccurrence(BaseModel):
    scheduled_start: datetime
    scheduled_end: datetime
    conflicting_shift_id: Optional[uuid.UUID] = None


class UnitProjection(BaseModel):
    authorization_id: Optional[uuid.UUID] = None
    unit_type: Optional[str] = None
    projected_units: float = 0.0
    remaining_units: Optional[float] = None
    exceeds_remaining: bool = False


class BulkShiftResponse(BaseModel):
    created: int
    skipped: int
    shift_ids: list[uuid.UUID] = []
    conflicts: list[BulkOccurrence] = []
    projection: UnitProjection


class BulkPreviewResponse(BaseModel):
    total: int
    occurrences: list[BulkOccurrence] = []
    conflict_count: int = 0
    projection: UnitProjection
