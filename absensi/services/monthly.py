"""
Monthly aggregation over raw attendance rows.

Everything here is pure: callers fetch the month's rows in one query and
hand them in.  The unique (employee_id, date) key should already rule out
duplicates, but rows written before that constraint existed (or restored
from a backup) can still collide, so the read path collapses them by
keeping the highest id per key.
"""

from __future__ import annotations

import calendar
import logging
import math
from collections.abc import Iterable, Sequence
from datetime import date
from typing import Protocol

from pydantic import BaseModel

from absensi.core.config import settings
from absensi.core.enums import AttendanceStatus

logger = logging.getLogger(__name__)


class RecordLike(Protocol):
    id: object
    employee_id: int
    date: str
    status: str


class HolidayCalendar(BaseModel):
    """Recurring ``MM-DD`` dates plus one-off ``YYYY-MM-DD`` dates."""

    recurring: frozenset[str] = frozenset()
    specific: frozenset[str] = frozenset()

    @classmethod
    def parse(cls, entries: Iterable[str]) -> "HolidayCalendar":
        recurring: set[str] = set()
        specific: set[str] = set()
        for entry in entries:
            entry = entry.strip()
            if len(entry) == 5:
                recurring.add(entry)
            else:
                specific.add(entry)
        return cls(recurring=frozenset(recurring), specific=frozenset(specific))

    @classmethod
    def from_settings(cls) -> "HolidayCalendar":
        return cls.parse(settings.HOLIDAYS)

    def is_holiday(self, day: date) -> bool:
        return day.strftime("%m-%d") in self.recurring or day.isoformat() in self.specific


def is_working_day(day: date, holidays: HolidayCalendar | None = None) -> bool:
    holidays = holidays or HolidayCalendar.from_settings()
    return day.weekday() < 5 and not holidays.is_holiday(day)


def working_days_in_month(
    year: int, month: int, holidays: HolidayCalendar | None = None
) -> int:
    """Count Mon-Fri non-holiday days across the whole month."""
    holidays = holidays or HolidayCalendar.from_settings()
    _, days_in_month = calendar.monthrange(year, month)
    return sum(
        1
        for d in range(1, days_in_month + 1)
        if is_working_day(date(year, month, d), holidays)
    )


def month_bounds(year: int, month: int) -> tuple[str, str]:
    """First and last ``YYYY-MM-DD`` of the month, for string range queries."""
    _, days_in_month = calendar.monthrange(year, month)
    return f"{year:04d}-{month:02d}-01", f"{year:04d}-{month:02d}-{days_in_month:02d}"


# ── Dedup ───────────────────────────────────────────────────────────
def _id_key(record_id: object) -> tuple[int, int | str]:
    # numeric ids compare numerically and always sort before string ids
    if isinstance(record_id, int) and not isinstance(record_id, bool):
        return (0, record_id)
    text = str(record_id)
    if text.isascii() and text.isdigit():
        return (0, int(text))
    return (1, text)


def dedup_records(records: Iterable[RecordLike]) -> list[RecordLike]:
    """Keep one record per (employee_id, date): the one with the largest id.

    Output is ordered by (employee_id, date) so repeated runs over the
    same input, in any order, give the same list.
    """
    kept: dict[tuple[int, str], RecordLike] = {}
    for rec in records:
        key = (rec.employee_id, rec.date)
        current = kept.get(key)
        if current is None or _id_key(rec.id) > _id_key(current.id):
            kept[key] = rec
    return [kept[k] for k in sorted(kept)]


# ── Summary ─────────────────────────────────────────────────────────
def percentage(count: int, total: int) -> int:
    """Whole-number percentage, halves rounded up."""
    if total <= 0:
        return 0
    return math.floor(count * 100 / total + 0.5)


class MonthlyCounts(BaseModel):
    total_days: int
    present_days: int
    late_days: int
    absent_days: int
    present_percentage: int
    late_percentage: int
    absent_percentage: int
    integrity_warning: bool = False

    @property
    def attended_days(self) -> int:
        return self.present_days + self.late_days


def summarize(
    records: Sequence[RecordLike],
    total_working_days: int,
    holidays: HolidayCalendar | None = None,
    employee_id: int | None = None,
) -> MonthlyCounts:
    """Count one employee's already-deduplicated records against the month."""
    holidays = holidays or HolidayCalendar.from_settings()
    present = late = 0
    for rec in records:
        if not is_working_day(date.fromisoformat(rec.date), holidays):
            continue
        if rec.status == AttendanceStatus.PRESENT.value:
            present += 1
        elif rec.status == AttendanceStatus.LATE.value:
            late += 1

    absent = total_working_days - (present + late)
    warning = absent < 0
    if warning:
        logger.warning(
            "Attendance integrity: employee %s attended %d days out of %d working days",
            employee_id,
            present + late,
            total_working_days,
        )
        absent = 0

    return MonthlyCounts(
        total_days=total_working_days,
        present_days=present,
        late_days=late,
        absent_days=absent,
        present_percentage=percentage(present, total_working_days),
        late_percentage=percentage(late, total_working_days),
        absent_percentage=percentage(absent, total_working_days),
        integrity_warning=warning,
    )


def working_days_elapsed(
    year: int, month: int, today: date, holidays: HolidayCalendar | None = None
) -> int:
    """Working days from the 1st up to ``today`` (whole month if it is past, 0 if future)."""
    holidays = holidays or HolidayCalendar.from_settings()
    if (year, month) > (today.year, today.month):
        return 0
    if (year, month) < (today.year, today.month):
        return working_days_in_month(year, month, holidays)
    return sum(
        1
        for d in range(1, today.day + 1)
        if is_working_day(date(year, month, d), holidays)
    )
