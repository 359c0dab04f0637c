"""CareShift — FastAPI Application Factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from careshift.authorizations.router import router as authorizations_router
from careshift.common.exceptions import register_exception_handlers
from careshift.common.rate_limit import limiter
from careshift.config import settings
from careshift.database import engine
from careshift.evv.router import router as evv_router
from careshift.notifications.router import router as notifications_router
from careshift.notifications.service import InAppNotificationSink
from careshift.scheduling.router import router as scheduling_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logger.info("CareShift starting (environment=%s)", settings.ENVIRONMENT)
    yield
    await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="CareShift",
        description="Shift scheduling, EVV and authorization consumption for home care",
        version="1.0.0",
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Post-commit notification delivery
    app.state.notification_sink = InAppNotificationSink()

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT,
        }

    # Register routers
    app.include_router(scheduling_router, prefix="/api/v1/scheduling", tags=["scheduling"])
    app.include_router(authorizations_router, prefix="/api/v1/authorizations", tags=["authorizations"])
    app.include_router(evv_router, prefix="/api/v1/evv", tags=["evv"])
    app.include_router(notifications_router, prefix="/api/v1/notifications", tags=["notifications"])

    return app


app = create_app()
