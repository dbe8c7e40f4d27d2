"""
Geofence evaluation for a live position fix.

Order of checks for a fix:

1. Suspicious-fix heuristics (accuracy of exactly 0 m or coarser than
   ``MAX_ACCURACY_M``; latitude or longitude with fewer than
   ``MIN_COORDINATE_DECIMALS`` fractional digits).  Fails closed.
2. IP cross-check, best effort.  Blocks only when a lookup succeeds and
   lands farther than ``IP_MISMATCH_THRESHOLD_M`` from the fix.
3. Distance to the office.  ``in_range`` is decided on the unrounded
   haversine distance; the reported distance is rounded to the meter.

Every blocking decision appends a ``SecurityLog`` row and is committed
before the rejection is raised, so the audit trail survives the failed
attempt.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from absensi.core.config import settings
from absensi.core.enums import SecurityEventType
from absensi.core.exceptions import (LocationMismatchError, OutOfRangeError,
                                     SuspiciousLocationError)
from absensi.core.timezone import format_local_time
from absensi.models.security_log import SecurityLog
from absensi.services.ip_locator import IpLocation, IpLocator

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000


class LocationFix(BaseModel):
    latitude: float
    longitude: float
    accuracy: float


class GeofenceResult(BaseModel):
    distance_meters: int
    in_range: bool
    ip_location: IpLocation | None = None


# ── Pure helpers ────────────────────────────────────────────────────
def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def distance_to_office(lat: float, lng: float) -> float:
    return haversine_distance(lat, lng, settings.OFFICE_LAT, settings.OFFICE_LNG)


def is_within_radius(distance: float, radius: float | None = None) -> bool:
    """Inclusive at the boundary."""
    limit = settings.GEOFENCE_RADIUS_M if radius is None else radius
    return distance <= limit


def coordinate_decimals(value: float) -> int:
    """Number of fractional digits in the shortest repr of ``value``."""
    exponent = Decimal(repr(value)).as_tuple().exponent
    if not isinstance(exponent, int):  # nan / inf
        return 0
    return max(0, -exponent)


def suspicious_reason(
    fix: LocationFix,
    max_accuracy: float | None = None,
    min_decimals: int | None = None,
) -> str | None:
    """Return why a fix looks synthetic, or ``None`` when it looks usable."""
    max_accuracy = settings.MAX_ACCURACY_M if max_accuracy is None else max_accuracy
    min_decimals = settings.MIN_COORDINATE_DECIMALS if min_decimals is None else min_decimals

    if fix.accuracy == 0:
        return "GPS accuracy reported as exactly 0 m"
    if fix.accuracy > max_accuracy:
        return f"GPS accuracy {fix.accuracy:.0f} m is coarser than {max_accuracy:.0f} m"
    if (
        coordinate_decimals(fix.latitude) < min_decimals
        or coordinate_decimals(fix.longitude) < min_decimals
    ):
        return (
            f"Coordinates ({fix.latitude}, {fix.longitude}) have fewer than "
            f"{min_decimals} decimal digits"
        )
    return None


# ── Evaluation with audit side effects ──────────────────────────────
async def _log_event(
    db: AsyncSession,
    *,
    user_id: int,
    event_type: SecurityEventType,
    description: str,
    fix: LocationFix,
    ip_address: str | None,
    now: datetime,
    ip_location: IpLocation | None = None,
    distance_meters: int | None = None,
) -> None:
    db.add(
        SecurityLog(
            user_id=user_id,
            event_type=event_type.value,
            description=description,
            ip_address=ip_address,
            gps_location_lat=fix.latitude,
            gps_location_lng=fix.longitude,
            ip_location_lat=ip_location.latitude if ip_location else None,
            ip_location_lng=ip_location.longitude if ip_location else None,
            distance_meters=distance_meters,
            created_at=now,
        )
    )
    await db.commit()
    logger.warning(
        "Blocked attendance for user %d at %s WITA: %s (%s)",
        user_id,
        format_local_time(now),
        event_type.value,
        description,
    )


async def evaluate_fix(
    db: AsyncSession,
    fix: LocationFix,
    *,
    user_id: int,
    now: datetime,
    ip_address: str | None = None,
    ip_locator: IpLocator | None = None,
) -> GeofenceResult:
    """Classify ``fix`` and raise a ``GeofenceRejection`` when it is unusable."""
    reason = suspicious_reason(fix)
    if reason is not None:
        await _log_event(
            db,
            user_id=user_id,
            event_type=SecurityEventType.SUSPICIOUS_LOCATION_DATA,
            description=reason,
            fix=fix,
            ip_address=ip_address,
            now=now,
        )
        raise SuspiciousLocationError(
            "Location data looks unreliable. Enable high-accuracy GPS and try again."
        )

    ip_location = None
    if ip_locator is not None:
        ip_location = await ip_locator.locate(ip_address)
    if ip_location is not None:
        gap = haversine_distance(
            fix.latitude, fix.longitude, ip_location.latitude, ip_location.longitude
        )
        if gap > settings.IP_MISMATCH_THRESHOLD_M:
            gap_m = round(gap)
            await _log_event(
                db,
                user_id=user_id,
                event_type=SecurityEventType.LOCATION_IP_MISMATCH,
                description=f"GPS fix is {gap_m} m away from the network location",
                fix=fix,
                ip_address=ip_address,
                now=now,
                ip_location=ip_location,
                distance_meters=gap_m,
            )
            raise LocationMismatchError(
                "GPS location does not match your network location.",
                distance_meters=gap_m,
            )

    raw = distance_to_office(fix.latitude, fix.longitude)
    distance_m = round(raw)
    if not is_within_radius(raw):
        await _log_event(
            db,
            user_id=user_id,
            event_type=SecurityEventType.LOCATION_OUT_OF_RANGE,
            description=(
                f"Attendance attempted {distance_m} m from {settings.OFFICE_NAME} "
                f"(limit {settings.GEOFENCE_RADIUS_M:.0f} m)"
            ),
            fix=fix,
            ip_address=ip_address,
            now=now,
            ip_location=ip_location,
            distance_meters=distance_m,
        )
        raise OutOfRangeError(
            f"You are {distance_m} m from the office. Move within "
            f"{settings.GEOFENCE_RADIUS_M:.0f} m to record attendance.",
            distance_meters=distance_m,
        )

    return GeofenceResult(distance_meters=distance_m, in_range=True, ip_location=ip_location)
