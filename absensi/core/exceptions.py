"""
Domain errors for attendance attempts plus the global exception handlers
that keep stack traces away from clients.

Every ``AttendanceError`` is scoped to a single attempt: it is raised
before (or instead of) any attendance write, so prior state stays intact.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

logger = logging.getLogger(__name__)


# ── Domain errors ───────────────────────────────────────────────────
class AttendanceError(Exception):
    """Base class for a rejected attendance attempt."""

    status_code = 400
    code = "attendance_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def payload(self) -> dict:
        return {"detail": self.detail, "code": self.code, "success": False}


class LocationUnavailableError(AttendanceError):
    code = "location_unavailable"


class ProfileNotFoundError(AttendanceError):
    status_code = 403
    code = "profile_not_found"


class GeofenceRejection(AttendanceError):
    status_code = 403
    code = "geofence_rejected"

    def __init__(self, detail: str, distance_meters: int | None = None) -> None:
        super().__init__(detail)
        self.distance_meters = distance_meters

    def payload(self) -> dict:
        body = super().payload()
        body["distance_meters"] = self.distance_meters
        return body


class SuspiciousLocationError(GeofenceRejection):
    code = "suspicious_location_data"


class LocationMismatchError(GeofenceRejection):
    code = "location_ip_mismatch"


class OutOfRangeError(GeofenceRejection):
    code = "location_out_of_range"


class TimeWindowError(AttendanceError):
    code = "invalid_time_window"


class CheckInWindowError(TimeWindowError):
    code = "invalid_check_in_window"


class CheckOutWindowError(TimeWindowError):
    code = "invalid_check_out_window"


class AlreadyCheckedInError(TimeWindowError):
    code = "already_checked_in"


class StateConflictError(AttendanceError):
    status_code = 409
    code = "state_conflict"


class AttendanceCompleteError(StateConflictError):
    code = "attendance_complete"


class AlreadyCheckedOutError(StateConflictError):
    code = "already_checked_out"


# ── Handlers ────────────────────────────────────────────────────────
async def _http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "success": False},
        headers=getattr(exc, "headers", None),
    )


async def _attendance_error_handler(_request: Request, exc: AttendanceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.payload())


async def _rate_limit_handler(_request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded: {exc.detail}", "success": False},
    )


async def _integrity_error_handler(_request: Request, exc: IntegrityError) -> JSONResponse:
    logger.error("Database integrity error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=409,
        content={"detail": "Database constraint violation", "success": False},
    )


async def _sqlalchemy_error_handler(_request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Could not save attendance, please try again",
            "success": False,
            "retryable": True,
        },
    )


async def _generic_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "success": False},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI app."""
    app.add_exception_handler(HTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(AttendanceError, _attendance_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrityError, _integrity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _sqlalchemy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _generic_exception_handler)
