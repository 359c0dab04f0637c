"""Notification service — inbox operations, the in-app sink and shift notices."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from careshift.auth.models import User
from careshift.common.constants import ALERT_RECIPIENT_ROLES, NotificationEvent
from careshift.common.exceptions import ForbiddenException, NotFoundException
from careshift.common.pagination import PaginationParams, build_meta
from careshift.common.timeutils import agency_tz, ensure_utc
from careshift.common.unit_of_work import PendingNotification, UnitOfWork
from careshift.database import async_session_factory
from careshift.notifications.models import Notification
from careshift.notifications.schemas import (
    NotificationListMeta,
    NotificationListResponse,
    NotificationResponse,
)

if TYPE_CHECKING:
    from careshift.clients.models import Client
    from careshift.scheduling.models import Shift

logger = logging.getLogger(__name__)


# ── Sink ────────────────────────────────────────────────────────────

class NotificationSink(Protocol):
    """Delivery channel invoked by the unit of work after commit."""

    async def notify(self, notification: PendingNotification) -> None: ...


class InAppNotificationSink:
    """Writes one ``Notification`` row per resolved recipient.

    Runs in its own session: the business transaction has already committed
    when this is called.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    ) -> None:
        self._session_factory = session_factory

    async def notify(self, notification: PendingNotification) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                recipients = await resolve_recipients(session, notification)
                for recipient_id in recipients:
                    session.add(
                        Notification(
                            company_id=notification.company_id,
                            recipient_id=recipient_id,
                            event_type=notification.event_type,
                            title=notification.title,
                            message=notification.message,
                            entity_type=notification.entity_type,
                            entity_id=notification.entity_id,
                            payload=notification.payload or None,
                        )
                    )
        logger.debug(
            "Delivered %s to %d recipient(s)",
            notification.event_type.value, len(recipients),
        )


async def resolve_recipients(
    session: AsyncSession, notification: PendingNotification,
) -> list[uuid.UUID]:
    """Expand role recipients to active users of the tenant, de-duplicated."""
    recipients: list[uuid.UUID] = list(dict.fromkeys(notification.recipient_ids))
    if notification.recipient_roles:
        rows = (
            await session.execute(
                select(User.id).where(
                    User.company_id == notification.company_id,
                    User.role.in_(list(notification.recipient_roles)),
                    User.is_active.is_(True),
                ).order_by(User.created_at)
            )
        ).scalars().all()
        for user_id in rows:
            if user_id not in recipients:
                recipients.append(user_id)
    return recipients


# ── Inbox service ───────────────────────────────────────────────────


class NotificationService:
    """Async notification inbox operations."""

    @staticmethod
    async def get_notifications(
        uow: UnitOfWork,
        user_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        is_read: Optional[bool] = None,
        event_type: Optional[NotificationEvent] = None,
    ) -> NotificationListResponse:
        """Return paginated notifications for a user, newest first."""
        db = uow.session
        query = (
            select(Notification)
            .where(Notification.recipient_id == user_id)
            .order_by(Notification.created_at.desc())
        )

        if is_read is not None:
            query = query.where(Notification.is_read == is_read)
        if event_type is not None:
            query = query.where(Notification.event_type == event_type)

        count_q = query.with_only_columns(
            func.count(), maintain_column_froms=True,
        ).order_by(None)
        total: int = (await db.execute(count_q)).scalar_one()

        rows = (
            await db.execute(
                query.offset(pagination.offset).limit(pagination.page_size)
            )
        ).scalars().all()

        # Unread count, always unfiltered (badge)
        unread = await NotificationService.get_unread_count(uow, user_id)

        meta = build_meta(pagination.page, pagination.page_size, total)
        return NotificationListResponse(
            data=[NotificationResponse.model_validate(n) for n in rows],
            meta=NotificationListMeta(**meta.model_dump(), unread=unread),
        )

    @staticmethod
    async def mark_read(
        uow: UnitOfWork,
        notification_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Notification:
        """Mark a single notification as read. Verifies ownership."""
        db = uow.session
        result = await db.execute(
            select(Notification).where(Notification.id == notification_id)
        )
        notification = result.scalars().first()

        if notification is None:
            raise NotFoundException("Notification", notification_id)

        if notification.recipient_id != user_id:
            raise ForbiddenException("You can only mark your own notifications as read.")

        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        await db.flush()
        return notification

    @staticmethod
    async def mark_all_read(uow: UnitOfWork, user_id: uuid.UUID) -> int:
        """Bulk-mark all unread notifications as read. Returns count updated."""
        now = datetime.now(timezone.utc)
        result = await uow.session.execute(
            update(Notification)
            .where(
                Notification.recipient_id == user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=now)
        )
        return result.rowcount  # type: ignore[return-value]

    @staticmethod
    async def get_unread_count(uow: UnitOfWork, user_id: uuid.UUID) -> int:
        """Return the number of unread notifications for a user."""
        result = await uow.session.execute(
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.recipient_id == user_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()


# ── Shift notices ───────────────────────────────────────────────────
# Built by the scheduling service and queued on its unit of work.


def _shift_payload(shift: "Shift") -> dict:
    return {
        "shift_id": str(shift.id),
        "client_id": str(shift.client_id),
        "carer_id": str(shift.carer_id),
        "scheduled_start": shift.scheduled_start.isoformat(),
        "scheduled_end": shift.scheduled_end.isoformat(),
        "status": shift.status.value,
    }


def _when(shift: "Shift") -> str:
    """Scheduled start on the agency wall clock, e.g. ``2030-03-04 09:00 EST``."""
    local = ensure_utc(shift.scheduled_start).astimezone(agency_tz())
    return local.strftime("%Y-%m-%d %H:%M %Z")


def shift_assigned_notice(shift: "Shift", client: "Client") -> PendingNotification:
    return PendingNotification(
        company_id=shift.company_id,
        event_type=NotificationEvent.shift_assigned,
        title="New Shift Assigned",
        message=f"You have been scheduled with {client.display_name} on {_when(shift)}.",
        recipient_ids=[shift.carer_id],
        payload=_shift_payload(shift),
        entity_type="shift",
        entity_id=shift.id,
    )


def shift_rescheduled_notice(shift: "Shift", client: "Client") -> PendingNotification:
    return PendingNotification(
        company_id=shift.company_id,
        event_type=NotificationEvent.shift_rescheduled,
        title="Shift Rescheduled",
        message=f"Your visit with {client.display_name} is now on {_when(shift)}.",
        recipient_ids=[shift.carer_id],
        payload=_shift_payload(shift),
        entity_type="shift",
        entity_id=shift.id,
    )


def shift_cancelled_notice(
    shift: "Shift", client: "Client", carer_id: Optional[uuid.UUID] = None,
) -> PendingNotification:
    """Cancellation notice; *carer_id* overrides the recipient on reassignment."""
    return PendingNotification(
        company_id=shift.company_id,
        event_type=NotificationEvent.shift_cancelled,
        title="Shift Cancelled",
        message=f"Your visit with {client.display_name} on {_when(shift)} was cancelled.",
        recipient_ids=[carer_id or shift.carer_id],
        payload=_shift_payload(shift),
        entity_type="shift",
        entity_id=shift.id,
    )


def shift_completed_notice(shift: "Shift", client: "Client") -> Optional[PendingNotification]:
    """Visit summary for the client's sponsor, if the client has one."""
    if client.sponsor_id is None:
        return None
    return PendingNotification(
        company_id=shift.company_id,
        event_type=NotificationEvent.shift_completed,
        title="Visit Completed",
        message=f"The visit with {client.display_name} on {_when(shift)} was completed.",
        recipient_ids=[client.sponsor_id],
        payload=_shift_payload(shift),
        entity_type="shift",
        entity_id=shift.id,
    )


def shift_missed_notice(shift: "Shift", client: "Client", reason_label: str) -> PendingNotification:
    """Missed-visit fan-out: supervisors and admins plus the client's sponsor."""
    recipients = [client.sponsor_id] if client.sponsor_id is not None else []
    return PendingNotification(
        company_id=shift.company_id,
        event_type=NotificationEvent.shift_missed,
        title="Missed Visit",
        message=(
            f"The visit with {client.display_name} on {_when(shift)} was missed: "
            f"{reason_label}."
        ),
        recipient_ids=recipients,
        recipient_roles=list(ALERT_RECIPIENT_ROLES),
        payload={**_shift_payload(shift), "missed_reason": shift.missed_reason.value},
        entity_type="shift",
        entity_id=shift.id,
    )


def bulk_assigned_notice(
    company_id: uuid.UUID,
    carer_id: uuid.UUID,
    client: "Client",
    shift_ids: list[uuid.UUID],
) -> PendingNotification:
    """One summary notice for a recurring schedule instead of one per shift."""
    return PendingNotification(
        company_id=company_id,
        event_type=NotificationEvent.shift_assigned,
        title="New Shifts Assigned",
        message=f"{len(shift_ids)} visit(s) with {client.display_name} have been scheduled for you.",
        recipient_ids=[carer_id],
        payload={
            "client_id": str(client.id),
            "shift_ids": [str(s) for s in shift_ids],
        },
        entity_type="client",
        entity_id=client.id,
    )
