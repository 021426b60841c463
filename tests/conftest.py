"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
Row locks (``FOR UPDATE``) are silently dropped by the SQLite dialect.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from lms.common.constants import UserRole
from lms.config import settings
from lms.database import Base, get_db
from lms.leave.ledger import current_year
from lms.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import lms.common.audit  # noqa: F401
import lms.core_hr.models  # noqa: F401
import lms.leave.models  # noqa: F401

from lms.core_hr.models import Department, Employee
from lms.leave.models import LeaveBalance, LeaveType

# ── SQLite compat: compile PG-specific types to TEXT ────────────────

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


# Register PG-compatible functions for SQLite
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
    from lms.common.rate_limit import limiter

    limiter.reset()
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


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
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


@pytest.fixture
def session_factory():
    """Open extra sessions, e.g. to simulate a concurrent request."""
    return TestSessionFactory


# ── Model factories ─────────────────────────────────────────────────

async def make_department(db: AsyncSession, *, name: str = "Engineering") -> Department:
    dept = Department(id=uuid.uuid4(), name=name, description=f"{name} department")
    db.add(dept)
    await db.flush()
    return dept


async def make_employee(
    db: AsyncSession,
    *,
    department_id: uuid.UUID,
    name: str = "Test User",
    email: Optional[str] = None,
    role: UserRole = UserRole.employee,
    manager_id: Optional[uuid.UUID] = None,
    joining_date: date = date(2020, 1, 1),
    is_active: bool = True,
) -> Employee:
    suffix = uuid.uuid4().hex[:6].upper()
    emp = Employee(
        id=uuid.uuid4(),
        employee_id=f"EMP-{suffix}",
        email=email or f"user.{suffix.lower()}@example.com",
        name=name,
        department_id=department_id,
        role=role,
        joining_date=joining_date,
        manager_id=manager_id,
        is_active=is_active,
    )
    db.add(emp)
    await db.flush()
    return emp


async def make_leave_type(
    db: AsyncSession,
    *,
    name: str = "Annual Leave",
    max_days_per_year: int = 21,
    is_active: bool = True,
) -> LeaveType:
    lt = LeaveType(
        id=uuid.uuid4(),
        name=name,
        description=f"{name} entitlement",
        max_days_per_year=max_days_per_year,
        carry_forward_allowed=False,
        max_carry_forward_days=0,
        is_active=is_active,
    )
    db.add(lt)
    await db.flush()
    return lt


async def make_balance(
    db: AsyncSession,
    *,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    allocated_days: int = 21,
    used_days: int = 0,
    carried_forward_days: int = 0,
    year: Optional[int] = None,
) -> LeaveBalance:
    balance = LeaveBalance(
        id=uuid.uuid4(),
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        year=year or current_year(),
        allocated_days=allocated_days,
        used_days=used_days,
        carried_forward_days=carried_forward_days,
    )
    db.add(balance)
    await db.flush()
    return balance


@pytest.fixture
async def seed(db) -> dict:
    """A small org, committed: HR user, a manager, their report, and an
    unrelated employee, all with a current-year Annual Leave balance of 21."""
    dept = await make_department(db)
    leave_type = await make_leave_type(db)
    hr = await make_employee(db, department_id=dept.id, name="Hana HR", role=UserRole.hr)
    manager = await make_employee(
        db, department_id=dept.id, name="Mo Manager", role=UserRole.manager,
    )
    employee = await make_employee(
        db, department_id=dept.id, name="Eve Employee", manager_id=manager.id,
    )
    outsider = await make_employee(db, department_id=dept.id, name="Oscar Other")
    for emp in (hr, manager, employee, outsider):
        await make_balance(db, employee_id=emp.id, leave_type_id=leave_type.id)
    await db.commit()

    return {
        "department_id": dept.id,
        "leave_type_id": leave_type.id,
        "hr_id": hr.id,
        "manager_id": manager.id,
        "employee_id": employee.id,
        "outsider_id": outsider.id,
    }


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
    expired: bool = False,
    token_type: str = "access",
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(employee_id),
        "role": role.value,
        "type": token_type,
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(employee_id: uuid.UUID, **kwargs) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(employee_id, **kwargs)}"}
