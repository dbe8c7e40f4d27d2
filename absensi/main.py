"""
Absensi — application entry point.

This is the **only** file that assembles the app.  Attendance rules live
in `services/`, HTTP wiring in `api/`, persistence in `models/` and `db/`.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy import select

from absensi.api.v1.api import api_router
from absensi.api.v1.endpoints.auth import limiter
from absensi.core.config import settings
from absensi.core.enums import Role
from absensi.core.exceptions import register_exception_handlers
from absensi.core.security import get_password_hash
from absensi.db.base import Base
from absensi.db.session import async_session_factory, engine

# Ensure all models are imported so metadata.create_all can see them
from absensi.models.attendance import AttendanceRecord  # noqa: F401
from absensi.models.employee import Employee
from absensi.models.security_log import SecurityLog  # noqa: F401
from absensi.models.user import User

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


async def seed_admin() -> None:
    """Create the first admin account (with a profile) if it is missing."""
    async with async_session_factory() as session:
        result = await session.execute(
            select(User).where(User.email == settings.FIRST_ADMIN_EMAIL)
        )
        if result.scalar_one_or_none() is not None:
            return
        admin = User(
            email=settings.FIRST_ADMIN_EMAIL,
            hashed_password=get_password_hash(settings.FIRST_ADMIN_PASSWORD),
            role=Role.ADMIN.value,
        )
        session.add(admin)
        await session.flush()
        session.add(
            Employee(
                user_id=admin.id,
                employee_code="ADMIN",
                name="Administrator",
                department="IT",
                position="System Administrator",
            )
        )
        await session.commit()
        logger.info(
            "Default admin created: %s (password: <redacted>)",
            settings.FIRST_ADMIN_EMAIL,
        )


# ── Lifespan ────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(_app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")

    await seed_admin()

    logger.info(
        "%s v%s started (office %s, radius %.0f m, %s)",
        settings.PROJECT_NAME,
        settings.VERSION,
        settings.OFFICE_NAME,
        settings.GEOFENCE_RADIUS_M,
        settings.TIMEZONE,
    )
    yield
    await engine.dispose()
    logger.info("Shutdown complete")


# ── App factory ─────────────────────────────────────────────────────
def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="Geofenced employee attendance (WITA)",
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate limiting (login / refresh)
    application.state.limiter = limiter

    # Global exception handlers (prevent stack-trace leakage)
    register_exception_handlers(application)

    # Mount API v1
    application.include_router(api_router, prefix=settings.API_V1_PREFIX)

    # Serve frontend static files (must be last — catch-all mount)
    frontend_dir = Path(__file__).resolve().parent.parent / "frontend"
    if frontend_dir.is_dir():
        application.mount(
            "/",
            StaticFiles(directory=str(frontend_dir), html=True),
            name="frontend",
        )
        logger.info("Frontend mounted from %s", frontend_dir)

    return application


app = create_app()
