"""Authorization ORM models — insurance unit quotas and their alerts."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from careshift.common.constants import (
    AlertSeverity,
    AlertType,
    AuthorizationStatus,
    UnitType,
)
from careshift.database import Base, pg_enum


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Authorization(Base):
    """A client's authorized service units for a date range.

    ``version`` is a compare-and-swap counter: every UPDATE issued by the ORM
    includes ``WHERE version = :old`` and raises ``StaleDataError`` when a
    concurrent writer got there first.
    """

    __tablename__ = "authorizations"
    __table_args__ = (
        sa.Index(
            "ix_authorizations_lookup",
            "company_id", "client_id", "service_type", "status",
        ),
        sa.CheckConstraint("used_units >= 0", name="ck_authorizations_used_nonneg"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
    )
    auth_number: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    service_type: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    unit_type: Mapped[UnitType] = mapped_column(
        pg_enum(UnitType, "unit_type"),
        nullable=False,
    )
    authorized_units: Mapped[float] = mapped_column(
        sa.Numeric(10, 2, asdecimal=False), nullable=False
    )
    used_units: Mapped[float] = mapped_column(
        sa.Numeric(10, 2, asdecimal=False), nullable=False, default=0.0
    )
    remaining_units: Mapped[float] = mapped_column(
        sa.Numeric(10, 2, asdecimal=False), nullable=False
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    status: Mapped[AuthorizationStatus] = mapped_column(
        pg_enum(AuthorizationStatus, "authorization_status"),
        nullable=False,
        default=AuthorizationStatus.active,
    )
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def usage_percentage(self) -> float:
        if not self.authorized_units:
            return 0.0
        return min(round(self.used_units / self.authorized_units * 100, 1), 100.0)


class AuthorizationAlert(Base):
    __tablename__ = "authorization_alerts"
    __table_args__ = (
        sa.Index(
            "ix_authorization_alerts_open",
            "authorization_id", "alert_type", "is_dismissed",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    authorization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("authorizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    alert_type: Mapped[AlertType] = mapped_column(
        pg_enum(AlertType, "alert_type"),
        nullable=False,
    )
    severity: Mapped[AlertSeverity] = mapped_column(
        pg_enum(AlertSeverity, "alert_severity"),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(sa.Text, nullable=False)
    is_dismissed: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    dismissed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    dismissed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    authorization: Mapped["Authorization"] = relationship(lazy="joined")

    @property
    def auth_number(self) -> Optional[str]:
        return self.authorization.auth_number if self.authorization else None
