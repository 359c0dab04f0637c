"""Shared FastAPI dependencies."""

from fastapi import Request

from careshift.common.unit_of_work import UnitOfWork
from careshift.database import async_session_factory


async def get_uow(request: Request) -> UnitOfWork:
    """A fresh unit of work per request, wired to the app's notification sink."""
    return UnitOfWork(
        async_session_factory,
        notifier=getattr(request.app.state, "notification_sink", None),
    )
