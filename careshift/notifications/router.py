"""Notification endpoints — list, mark read, unread count."""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query

from careshift.auth.dependencies import CurrentUser, get_current_user
from careshift.common.constants import NotificationEvent
from careshift.common.pagination import PaginationParams
from careshift.common.unit_of_work import UnitOfWork
from careshift.dependencies import get_uow
from careshift.notifications.schemas import (
    NotificationListResponse,
    NotificationResponse,
)
from careshift.notifications.service import NotificationService

router = APIRouter(prefix="", tags=["notifications"])


# ── GET / — list current user's notifications ───────────────────────

@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    is_read: Optional[bool] = Query(default=None, description="Filter by read status"),
    event_type: Optional[NotificationEvent] = Query(
        default=None, description="Filter by event type"
    ),
    pagination: PaginationParams = Depends(),
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    """List notifications for the authenticated user (paginated)."""
    return await uow.run(
        lambda: NotificationService.get_notifications(
            uow,
            user.id,
            pagination,
            is_read=is_read,
            event_type=event_type,
        )
    )


# ── GET /unread-count — badge count ─────────────────────────────────
# NOTE: This route MUST be registered before /{notification_id}/read
# to avoid FastAPI treating "unread-count" as a UUID path parameter.

@router.get("/unread-count")
async def unread_count(
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    """Return the number of unread notifications (for header badge)."""
    count = await uow.run(lambda: NotificationService.get_unread_count(uow, user.id))
    return {"data": {"count": count}}


# ── PUT /read-all — bulk mark all as read ───────────────────────────

@router.put("/read-all")
async def mark_all_read(
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    """Mark all unread notifications as read for the authenticated user."""
    count = await uow.run(lambda: NotificationService.mark_all_read(uow, user.id))
    return {"message": "All notifications marked as read", "data": {"count": count}}


# ── PUT /{notification_id}/read — mark single as read ───────────────

@router.put("/{notification_id}/read")
async def mark_read(
    notification_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
):
    """Mark a single notification as read."""
    notification = await uow.run(
        lambda: NotificationService.mark_read(uow, notification_id, user.id)
    )
    return {
        "message": "Notification marked as read",
        "data": NotificationResponse.model_validate(notification),
    }
