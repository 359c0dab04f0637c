"""Scheduling ORM model — Shift (one scheduled caregiving visit)."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from careshift.common.constants import (
    TERMINAL_SHIFT_STATUSES,
    MissedVisitReason,
    ShiftStatus,
)
from careshift.database import Base, pg_enum
from careshift.evv.models import EVVRecord


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Shift(Base):
    __tablename__ = "shifts"
    __table_args__ = (
        sa.CheckConstraint(
            "scheduled_end > scheduled_start", name="ck_shifts_end_after_start"
        ),
        sa.Index("ix_shifts_carer_window", "carer_id", "scheduled_start", "scheduled_end"),
        sa.Index("ix_shifts_company_start", "company_id", "scheduled_start"),
        sa.Index("ix_shifts_client", "client_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False
    )
    carer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("clients.id", ondelete="RESTRICT"),
        nullable=False,
    )
    service_type: Mapped[Optional[str]] = mapped_column(sa.String(100))

    scheduled_start: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    scheduled_end: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    actual_start: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    actual_end: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    status: Mapped[ShiftStatus] = mapped_column(
        pg_enum(ShiftStatus, "shift_status"),
        nullable=False,
        default=ShiftStatus.scheduled,
    )
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)

    # Client signature (base64 image data)
    client_signature: Mapped[Optional[str]] = mapped_column(sa.Text)
    signature_captured_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )

    # Missed visit
    missed_reason: Mapped[Optional[MissedVisitReason]] = mapped_column(
        pg_enum(MissedVisitReason, "missed_visit_reason")
    )
    missed_notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    missed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    missed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL")
    )

    # Cancellation
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    cancelled_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL")
    )

    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # Relationships
    evv_record: Mapped[Optional[EVVRecord]] = relationship(
        back_populates="shift",
        uselist=False,
        lazy="selectin",
    )

    @property
    def has_signature(self) -> bool:
        return self.client_signature is not None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SHIFT_STATUSES
