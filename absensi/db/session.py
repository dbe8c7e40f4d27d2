"""
Async engine & session factory.

PostgreSQL (asyncpg) gets a real connection pool.  An in-memory SQLite
URL (aiosqlite, used by the test-suite and local demos) must share one
connection, otherwise every session would see its own empty database.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from absensi.core.config import settings


def build_engine(url: str) -> AsyncEngine:
    engine_args: dict = {"echo": False}
    if url.startswith("postgresql"):
        engine_args.update(
            pool_pre_ping=True,
            pool_size=20,
            max_overflow=10,
            pool_recycle=300,
        )
    elif url.startswith("sqlite") and ":memory:" in url:
        engine_args.update(
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(url, **engine_args)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Attendance rows are serialised after commit; keep them loaded
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL)
async_session_factory = build_session_factory(engine)
