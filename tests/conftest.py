"""
Shared test fixtures for the attendance test suite.

In-memory aiosqlite behind a StaticPool, the real app over
httpx.ASGITransport, and dependency overrides for the signed-in user,
the wall clock and the IP locator.
"""

import os
import sys
from datetime import datetime, timezone
from typing import AsyncGenerator
from zoneinfo import ZoneInfo

import pytest

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CORS_ORIGINS"] = '["*"]'
os.environ["IP_GEOLOCATION_ENABLED"] = "false"

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from absensi.api.v1.deps import (get_clock, get_current_active_user, get_db,
                                 get_ip_locator, require_admin)
from absensi.api.v1.endpoints.auth import limiter
from absensi.core.config import settings
from absensi.core.security import get_password_hash
from absensi.db.base import Base
from absensi.db.session import build_engine, build_session_factory
from absensi.main import app
from absensi.models.employee import Employee
from absensi.models.user import User

OFFICE_LAT = settings.OFFICE_LAT
OFFICE_LNG = settings.OFFICE_LNG

# Test engine shared by the app override and direct db_session access
test_engine = build_engine("sqlite+aiosqlite:///:memory:")
TestingSessionLocal = build_session_factory(test_engine)

# One hash for every seeded account; bcrypt is slow on purpose
TEST_PASSWORD = "secret123"
TEST_PASSWORD_HASH = get_password_hash(TEST_PASSWORD)


@pytest.fixture(autouse=True)
async def setup_db():
    """Create all tables before usage and drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestingSessionLocal() as session:
        yield session


app.dependency_overrides[get_db] = _override_get_db


@pytest.fixture
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with TestingSessionLocal() as session:
        yield session


# ── Auth Overrides ──────────────────────────────────────────────────
async def _override_get_current_active_user():
    return User(id=1, email="test@example.com", is_active=True, role="admin")


async def _override_require_admin():
    return User(id=1, email="admin@example.com", is_active=True, role="admin")


app.dependency_overrides[get_current_active_user] = _override_get_current_active_user
app.dependency_overrides[require_admin] = _override_require_admin

# IP cross-check off unless a test installs a fake locator
app.dependency_overrides[get_ip_locator] = lambda: None

# Login rate limit only where a test turns it on
limiter.enabled = False


@pytest.fixture
def real_auth():
    """Drop the auth overrides so tokens and cookies are really checked."""
    saved = {
        dep: app.dependency_overrides.pop(dep)
        for dep in (get_current_active_user, require_admin)
    }
    yield
    app.dependency_overrides.update(saved)


# ── Domain fixtures ─────────────────────────────────────────────────
def wita(year: int, month: int, day: int, hour: int, minute: int = 0) -> datetime:
    """A WITA wall-clock time as the UTC instant the app clock returns."""
    local = datetime(year, month, day, hour, minute, tzinfo=ZoneInfo("Asia/Makassar"))
    return local.astimezone(timezone.utc)


@pytest.fixture
def at_wita():
    return wita


@pytest.fixture
def set_clock():
    """Freeze the app clock: ``set_clock(instant)``."""

    def _set(instant: datetime) -> None:
        app.dependency_overrides[get_clock] = lambda: (lambda: instant)

    yield _set
    app.dependency_overrides.pop(get_clock, None)


@pytest.fixture
def set_ip_locator():
    """Install a fake IP locator for the tap endpoint."""

    def _set(locator) -> None:
        app.dependency_overrides[get_ip_locator] = lambda: locator

    yield _set
    app.dependency_overrides[get_ip_locator] = lambda: None


async def make_employee(
    session: AsyncSession,
    *,
    user_id: int | None = None,
    email: str,
    code: str,
    name: str,
    department: str | None = "IT",
    role: str = "employee",
) -> Employee:
    user = User(id=user_id, email=email, hashed_password=TEST_PASSWORD_HASH, role=role)
    session.add(user)
    await session.flush()
    emp = Employee(
        user_id=user.id,
        employee_code=code,
        name=name,
        department=department,
        position="Staff",
    )
    session.add(emp)
    await session.commit()
    await session.refresh(emp)
    return emp


@pytest.fixture
async def employee(db_session: AsyncSession) -> Employee:
    """Profile for user id 1, the user every auth override signs in as."""
    return await make_employee(
        db_session,
        user_id=1,
        email="budi@example.com",
        code="EMP001",
        name="Budi Santoso",
    )


@pytest.fixture
def employee_factory(db_session: AsyncSession):
    async def _make(**kwargs) -> Employee:
        return await make_employee(db_session, **kwargs)

    return _make


def fix_near_office(d_lat: float = 0.0, accuracy: float = 12.5) -> dict:
    """Tap body offset ``d_lat`` degrees north of the office."""
    return {
        "latitude": round(OFFICE_LAT + d_lat, 7),
        "longitude": OFFICE_LNG,
        "accuracy": accuracy,
    }


@pytest.fixture
def near_office():
    return fix_near_office
