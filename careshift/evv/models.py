"""EVV ORM model — one verification record per shift."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from careshift.common.constants import EVVSource, EVVStatus
from careshift.database import Base, pg_enum

if TYPE_CHECKING:
    from careshift.scheduling.models import Shift


class EVVRecord(Base):
    __tablename__ = "evv_records"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    shift_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("shifts.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    latitude: Mapped[Optional[float]] = mapped_column(sa.Float)
    longitude: Mapped[Optional[float]] = mapped_column(sa.Float)
    accuracy: Mapped[Optional[float]] = mapped_column(sa.Float)
    captured_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    source: Mapped[EVVSource] = mapped_column(
        pg_enum(EVVSource, "evv_source"),
        nullable=False,
    )
    status: Mapped[EVVStatus] = mapped_column(
        pg_enum(EVVStatus, "evv_status"),
        nullable=False,
    )
    is_within_geofence: Mapped[Optional[bool]] = mapped_column(sa.Boolean)
    distance_from_client: Mapped[Optional[int]] = mapped_column(sa.Integer)
    geofence_radius: Mapped[Optional[float]] = mapped_column(sa.Float)
    message: Mapped[Optional[str]] = mapped_column(sa.String(255))
    captured_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL")
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    shift: Mapped["Shift"] = relationship(back_populates="evv_record")
