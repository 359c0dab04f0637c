"""Client ORM model — registered visit location and geofence settings.

Client records are owned by the intake context; scheduling only reads them.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from careshift.config import settings
from careshift.database import Base


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    first_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(sa.String(500))

    # Registered location
    latitude: Mapped[Optional[float]] = mapped_column(sa.Float)
    longitude: Mapped[Optional[float]] = mapped_column(sa.Float)
    geofence_radius: Mapped[int] = mapped_column(
        sa.Integer,
        default=lambda: settings.DEFAULT_GEOFENCE_RADIUS_METERS,
    )
    geofence_enabled: Mapped[bool] = mapped_column(sa.Boolean, default=True)

    # Family member / sponsor who receives visit notifications
    sponsor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None
