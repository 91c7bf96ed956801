"""Shared test fixtures — async DB, client, seed factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
All sessions share one in-memory connection (StaticPool), so seed data is
committed before calling services that open their own sessions.
"""

from __future__ import annotations

import os

# Pin settings before any other import touches pydantic-settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("CRON_TZ", "Asia/Bangkok")
os.environ.setdefault("WORKING_HOURS_PER_DAY", "9")

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from siamleave.common.constants import LeaveStatus
from siamleave.config import settings
from siamleave.database import Base, get_db, get_session_factory
from siamleave.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import siamleave.core_hr.models  # noqa: F401
import siamleave.leave.models  # noqa: F401

from siamleave.core_hr.models import Employee, Position
from siamleave.leave.models import LeaveQuota, LeaveRequest, LeaveType, LeaveUsed

# ── SQLite compat: compile PG-specific types ────────────────────────

from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


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


@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() as a SQLite custom function."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


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
    from siamleave.common.rate_limit import limiter
    limiter.reset()
    yield


@pytest.fixture(autouse=True)
def _working_day(monkeypatch):
    """Every test starts from a 9-hour working day."""
    monkeypatch.setattr(settings, "WORKING_HOURS_PER_DAY", 9)
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def _override_get_session_factory() -> async_sessionmaker[AsyncSession]:
    return TestSessionFactory


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_session_factory] = _override_get_session_factory
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


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

def _now() -> datetime:
    return datetime.now(timezone.utc)


async def seed_position(
    db: AsyncSession,
    *,
    name_en: str = "Engineer",
    new_year_quota: bool = False,
) -> Position:
    position = Position(
        id=uuid.uuid4(),
        name_en=name_en,
        name_th=name_en,
        new_year_quota=new_year_quota,
        created_at=_now(),
    )
    db.add(position)
    await db.flush()
    return position


async def seed_employee(
    db: AsyncSession,
    *,
    position_id: Optional[uuid.UUID] = None,
    full_name: str = "Somchai Jaidee",
) -> Employee:
    code = uuid.uuid4().hex[:6].upper()
    employee = Employee(
        id=uuid.uuid4(),
        employee_code=f"SL-{code}",
        full_name=full_name,
        email=f"{code.lower()}@siamleave.test",
        position_id=position_id,
        is_active=True,
        created_at=_now(),
    )
    db.add(employee)
    await db.flush()
    return employee


async def seed_leave_type(
    db: AsyncSession,
    *,
    name_en: str = "Annual Leave",
    name_th: Optional[str] = "ลาพักร้อน",
    is_active: bool = True,
    deleted_at: Optional[datetime] = None,
    created_at: Optional[datetime] = None,
) -> LeaveType:
    now = created_at or _now()
    leave_type = LeaveType(
        id=uuid.uuid4(),
        name_en=name_en,
        name_th=name_th,
        is_active=is_active,
        deleted_at=deleted_at,
        created_at=now,
        updated_at=now,
    )
    db.add(leave_type)
    await db.flush()
    return leave_type


async def seed_quota(
    db: AsyncSession,
    position_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    quota: Decimal | int = 10,
    *,
    created_at: Optional[datetime] = None,
) -> LeaveQuota:
    grant = LeaveQuota(
        id=uuid.uuid4(),
        position_id=position_id,
        leave_type_id=leave_type_id,
        quota=Decimal(quota),
        created_at=created_at or _now(),
    )
    db.add(grant)
    await db.flush()
    return grant


async def seed_usage(
    db: AsyncSession,
    user_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    *,
    days: int = 0,
    hours: Decimal | int = 0,
    created_at: Optional[datetime] = None,
) -> LeaveUsed:
    when = created_at or _now()
    record = LeaveUsed(
        id=uuid.uuid4(),
        user_id=user_id,
        leave_type_id=leave_type_id,
        days=days,
        hours=Decimal(hours),
        created_at=when,
        updated_at=when,
    )
    db.add(record)
    await db.flush()
    return record


async def seed_request(
    db: AsyncSession,
    user_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    *,
    status: LeaveStatus = LeaveStatus.pending,
    created_at: Optional[datetime] = None,
) -> LeaveRequest:
    request = LeaveRequest(
        id=uuid.uuid4(),
        user_id=user_id,
        leave_type_id=leave_type_id,
        status=status,
        start_date=date(2026, 3, 2),
        end_date=date(2026, 3, 3),
        created_at=created_at or _now(),
    )
    db.add(request)
    await db.flush()
    return request
