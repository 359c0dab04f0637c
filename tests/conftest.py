"""Shared test fixtures — async DB, unit of work, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test settings before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ.setdefault("AGENCY_TIMEZONE", "UTC")

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from careshift.auth.dependencies import CurrentUser
from careshift.common.constants import AuthorizationStatus, ShiftStatus, UnitType, UserRole
from careshift.common.unit_of_work import PendingNotification, UnitOfWork
from careshift.config import settings
from careshift.database import Base
from careshift.dependencies import get_uow
from careshift.main import create_app

# Import the model registry so every table is on Base.metadata
import careshift.models  # noqa: F401
from careshift.auth.models import User
from careshift.authorizations.models import Authorization
from careshift.clients.models import Client
from careshift.scheduling.models import Shift

# ── SQLite compat: compile PG-specific types to TEXT/CHAR ───────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)

COMPANY_ID = uuid.UUID("00000000-0000-0000-0000-00000000c0de")
OTHER_COMPANY_ID = uuid.UUID("00000000-0000-0000-0000-0000000000ff")


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from careshift.common.rate_limit import limiter

    limiter.reset()
    yield


# ── Notification sink ───────────────────────────────────────────────

class RecordingSink:
    """Collects dispatched notifications; can be told to fail."""

    def __init__(self) -> None:
        self.sent: list[PendingNotification] = []
        self.fail = False

    async def notify(self, notification: PendingNotification) -> None:
        if self.fail:
            raise RuntimeError("sink unavailable")
        self.sent.append(notification)

    def events(self) -> list[str]:
        return [n.event_type.value for n in self.sent]


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def uow(sink) -> UnitOfWork:
    return UnitOfWork(TestSessionFactory, notifier=sink)


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(sink):
    """Create a fresh app instance with the unit of work overridden."""
    application = create_app()

    async def _override_get_uow() -> UnitOfWork:
        return UnitOfWork(TestSessionFactory, notifier=sink)

    application.dependency_overrides[get_uow] = _override_get_uow
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB reads in tests) ─────────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session


async def seed(*objects):
    """Insert *objects* in their own committed transaction."""
    async with TestSessionFactory() as session:
        session.add_all(objects)
        await session.commit()
    return objects[0] if len(objects) == 1 else objects


# ── Model factories ─────────────────────────────────────────────────

def make_user(
    *,
    role: UserRole = UserRole.carer,
    company_id: uuid.UUID = COMPANY_ID,
    first_name: str = "Test",
    last_name: Optional[str] = None,
    is_active: bool = True,
) -> User:
    suffix = uuid.uuid4().hex[:8]
    return User(
        id=uuid.uuid4(),
        company_id=company_id,
        first_name=first_name,
        last_name=last_name or role.value.title(),
        email=f"{role.value.lower()}.{suffix}@careshift.test",
        role=role,
        is_active=is_active,
    )


def make_client(
    *,
    company_id: uuid.UUID = COMPANY_ID,
    latitude: Optional[float] = 40.7128,
    longitude: Optional[float] = -74.0060,
    geofence_radius: int = 150,
    geofence_enabled: bool = True,
    sponsor_id: Optional[uuid.UUID] = None,
) -> Client:
    return Client(
        id=uuid.uuid4(),
        company_id=company_id,
        first_name="Grace",
        last_name="Hopper",
        address="1 Liberty Plaza, New York, NY",
        latitude=latitude,
        longitude=longitude,
        geofence_radius=geofence_radius,
        geofence_enabled=geofence_enabled,
        sponsor_id=sponsor_id,
    )


def make_authorization(
    client_id: uuid.UUID,
    *,
    company_id: uuid.UUID = COMPANY_ID,
    service_type: str = "PERSONAL_CARE",
    unit_type: UnitType = UnitType.hourly,
    authorized_units: float = 40.0,
    used_units: float = 0.0,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: AuthorizationStatus = AuthorizationStatus.active,
    auth_number: Optional[str] = None,
) -> Authorization:
    today = datetime.now(timezone.utc).date()
    return Authorization(
        id=uuid.uuid4(),
        company_id=company_id,
        client_id=client_id,
        auth_number=auth_number or f"AUTH-{uuid.uuid4().hex[:6].upper()}",
        service_type=service_type,
        unit_type=unit_type,
        authorized_units=authorized_units,
        used_units=used_units,
        remaining_units=authorized_units - used_units,
        start_date=start_date or today - timedelta(days=30),
        end_date=end_date or today + timedelta(days=180),
        status=status,
    )


def make_shift(
    carer_id: uuid.UUID,
    client_id: uuid.UUID,
    start: datetime,
    end: datetime,
    *,
    company_id: uuid.UUID = COMPANY_ID,
    status: ShiftStatus = ShiftStatus.scheduled,
    service_type: Optional[str] = "PERSONAL_CARE",
    actual_start: Optional[datetime] = None,
    actual_end: Optional[datetime] = None,
) -> Shift:
    return Shift(
        id=uuid.uuid4(),
        company_id=company_id,
        carer_id=carer_id,
        client_id=client_id,
        service_type=service_type,
        scheduled_start=start,
        scheduled_end=end,
        status=status,
        actual_start=actual_start,
        actual_end=actual_end,
        evv_record=None,
    )


def at(hour: int, minute: int = 0, *, day: Optional[date] = None) -> datetime:
    """UTC datetime on *day* (default: a fixed future date)."""
    day = day or date(2030, 3, 4)
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


# ── Auth helpers ────────────────────────────────────────────────────

def actor(user: User) -> CurrentUser:
    return CurrentUser(id=user.id, role=user.role, company_id=user.company_id)


def create_access_token(
    user: User,
    *,
    expired: bool = False,
    token_type: str = "access",
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(user.id),
        "role": user.role.value,
        "company_id": str(user.company_id),
        "type": token_type,
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


# ── Common seeded actors ────────────────────────────────────────────

@pytest.fixture
async def supervisor() -> User:
    return await seed(make_user(role=UserRole.supervisor, first_name="Sam"))


@pytest.fixture
async def carer() -> User:
    return await seed(make_user(role=UserRole.carer, first_name="Casey"))


@pytest.fixture
async def sponsor() -> User:
    return await seed(make_user(role=UserRole.sponsor, first_name="Pat"))


@pytest.fixture
async def care_client(sponsor) -> Client:
    return await seed(make_client(sponsor_id=sponsor.id))
