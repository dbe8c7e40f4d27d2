"""
Fixed-zone clock helpers (WITA, ``Asia/Makassar``, UTC+8, no DST).

Instants are always stored as UTC-aware datetimes.  Only calendar
bucketing (the ``date`` column, hour-of-day window checks) goes through
the local zone, and it always goes through ``to_local`` so the host
machine's own timezone never leaks into a decision.
"""

from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from absensi.core.config import settings


@lru_cache(maxsize=None)
def get_zone(name: str | None = None) -> ZoneInfo:
    return ZoneInfo(name or settings.TIMEZONE)


def utc_now() -> datetime:
    """Current instant, UTC-aware.  Injected as the app clock."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Normalise a potentially-naive timestamp to UTC-aware.

    SQLite hands back naive datetimes; they were written as UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_local(instant: datetime) -> datetime:
    return ensure_utc(instant).astimezone(get_zone())


def local_now(now: datetime | None = None) -> datetime:
    """The given (or current) instant with WITA calendar fields."""
    return to_local(now if now is not None else utc_now())


def local_today(now: datetime | None = None) -> str:
    """Today's calendar date in WITA as ``YYYY-MM-DD``."""
    return local_now(now).date().isoformat()


# Display only: never compare or key on these strings.
def format_local_time(instant: datetime) -> str:
    return to_local(instant).strftime("%H.%M")


def format_local_date(instant: datetime) -> str:
    local = to_local(instant)
    return f"{local.day}/{local.month}/{local.year}"
