"""
Attendance state engine.

A day moves ``EMPTY -> AWAITING_CHECKOUT -> COMPLETE``, or, when the whole
check-in window was missed, ``EMPTY -> LATE_CHECKOUT_ONLY`` (terminal for
the day).  ``derive_state`` and ``decide`` are pure: they take the stored
record and the WITA hour and either return the transition to apply or
raise the matching ``AttendanceError``.  ``record_attendance`` wraps them
with the geofence check and the read-decide-write cycle against the
database.

Transition table (hours are local, ranges inclusive-start/exclusive-end):

    EMPTY              [start, cutoff)       check in, present
    EMPTY              [cutoff, in_end)      check in, late
    EMPTY              [in_end, out_end)     late check-out only, late
    EMPTY              otherwise             reject (window)
    AWAITING_CHECKOUT  [in_end, out_end)     check out, status unchanged
    AWAITING_CHECKOUT  otherwise             reject (window)
    LATE_CHECKOUT_ONLY any                   reject (already checked out)
    COMPLETE           any                   reject (complete)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from absensi.core.config import settings
from absensi.core.enums import AttendanceAction, AttendanceStatus, DayState
from absensi.core.exceptions import (AlreadyCheckedInError,
                                     AlreadyCheckedOutError,
                                     AttendanceCompleteError, AttendanceError,
                                     CheckInWindowError, CheckOutWindowError)
from absensi.core.timezone import format_local_time, to_local
from absensi.models.attendance import AttendanceRecord
from absensi.models.employee import Employee
from absensi.services.geofence import GeofenceResult, LocationFix, evaluate_fix
from absensi.services.ip_locator import IpLocator

logger = logging.getLogger(__name__)


class AttendanceWindows(BaseModel):
    check_in_start: int = 7
    on_time_cutoff: int = 8
    check_in_end: int = 12
    check_out_end: int = 19

    @classmethod
    def from_settings(cls) -> "AttendanceWindows":
        return cls(
            check_in_start=settings.CHECK_IN_START_HOUR,
            on_time_cutoff=settings.ON_TIME_CUTOFF_HOUR,
            check_in_end=settings.CHECK_IN_END_HOUR,
            check_out_end=settings.CHECK_OUT_END_HOUR,
        )

    @property
    def check_in_label(self) -> str:
        return f"{self.check_in_start:02d}:00-{self.check_in_end:02d}:00 WITA"

    @property
    def check_out_label(self) -> str:
        return f"{self.check_in_end:02d}:00-{self.check_out_end:02d}:00 WITA"


class Transition(BaseModel):
    action: AttendanceAction
    # None keeps whatever status the record already has
    status: AttendanceStatus | None


class AttendanceOutcome(BaseModel):
    model_config = {"arbitrary_types_allowed": True}

    action: AttendanceAction
    record: AttendanceRecord
    geofence: GeofenceResult
    local_time: str


# ── Pure decision logic ─────────────────────────────────────────────
def derive_state(record: AttendanceRecord | None) -> DayState:
    if record is None:
        return DayState.EMPTY
    has_in = record.check_in_time is not None
    has_out = record.check_out_time is not None
    if has_in and has_out:
        return DayState.COMPLETE
    if has_in:
        return DayState.AWAITING_CHECKOUT
    if has_out:
        return DayState.LATE_CHECKOUT_ONLY
    return DayState.EMPTY


def decide(
    state: DayState, hour: int, windows: AttendanceWindows | None = None
) -> Transition:
    """Pick the transition for ``state`` at local ``hour`` or raise why not."""
    w = windows or AttendanceWindows.from_settings()

    if state is DayState.COMPLETE:
        raise AttendanceCompleteError(
            "Attendance for today is already complete (check-in and check-out recorded)."
        )

    if state is DayState.LATE_CHECKOUT_ONLY:
        raise AlreadyCheckedOutError(
            "You already checked out today with a late status; "
            "check-in cannot be recorded retroactively."
        )

    if state is DayState.AWAITING_CHECKOUT:
        if w.check_in_end <= hour < w.check_out_end:
            return Transition(action=AttendanceAction.CHECK_OUT, status=None)
        if hour < w.check_in_end:
            raise AlreadyCheckedInError(
                f"You have already checked in today. Check-out is open {w.check_out_label}."
            )
        raise CheckOutWindowError(f"Check-out is only allowed {w.check_out_label}.")

    # EMPTY
    if w.check_in_start <= hour < w.on_time_cutoff:
        return Transition(action=AttendanceAction.CHECK_IN, status=AttendanceStatus.PRESENT)
    if w.on_time_cutoff <= hour < w.check_in_end:
        return Transition(action=AttendanceAction.CHECK_IN, status=AttendanceStatus.LATE)
    if w.check_in_end <= hour < w.check_out_end:
        return Transition(action=AttendanceAction.LATE_CHECK_OUT, status=AttendanceStatus.LATE)
    raise CheckInWindowError(
        f"Check-in is only allowed {w.check_in_label}. "
        f"After {w.check_in_end:02d}:00 only a late check-out is possible "
        f"until {w.check_out_end:02d}:00."
    )


def preview(
    state: DayState, hour: int, windows: AttendanceWindows | None = None
) -> tuple[Transition | None, str]:
    """What a tap would do right now, with a short hint for the client."""
    try:
        transition = decide(state, hour, windows)
    except AttendanceError as e:
        return None, e.detail
    return transition, _describe(transition)


def _describe(transition: Transition) -> str:
    if transition.action is AttendanceAction.LATE_CHECK_OUT:
        return "You missed the check-in window. Tapping now records a late check-out."
    if transition.action is AttendanceAction.CHECK_OUT:
        return "Tapping now records your check-out."
    if transition.status is AttendanceStatus.LATE:
        return "Checking in now will be recorded as late."
    return "Checking in now will be recorded as on time."


# ── Read-decide-write against the store ─────────────────────────────
async def load_day_record(
    db: AsyncSession, employee_id: int, date_str: str, lock: bool = False
) -> AttendanceRecord | None:
    """Latest record for the day; highest id wins if duplicates slipped in."""
    stmt = (
        select(AttendanceRecord)
        .where(AttendanceRecord.employee_id == employee_id, AttendanceRecord.date == date_str)
        .order_by(AttendanceRecord.id.desc())
        .limit(1)
    )
    if lock:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


def _apply(
    record: AttendanceRecord | None,
    transition: Transition,
    *,
    employee_id: int,
    date_str: str,
    fix: LocationFix,
    now: datetime,
) -> AttendanceRecord:
    if record is None:
        record = AttendanceRecord(employee_id=employee_id, date=date_str)

    if transition.action is AttendanceAction.CHECK_IN:
        record.check_in_time = now
    elif transition.action is AttendanceAction.LATE_CHECK_OUT:
        record.check_in_time = None
        record.check_out_time = now
    else:
        record.check_out_time = now

    if transition.status is not None:
        record.status = transition.status.value
    record.location_lat = fix.latitude
    record.location_lng = fix.longitude
    return record


async def record_attendance(
    db: AsyncSession,
    *,
    employee: Employee,
    fix: LocationFix,
    clock: Callable[[], datetime],
    ip_address: str | None = None,
    ip_locator: IpLocator | None = None,
    windows: AttendanceWindows | None = None,
) -> AttendanceOutcome:
    """Run one attendance tap end to end.

    The day's record is re-read (with a row lock where the backend has
    one) right before deciding; client-held state is never trusted.  The
    unique (employee_id, date) key backs this up: losing an insert race
    rolls back, re-reads and decides again against the winner's row.
    """
    now = clock()
    local = to_local(now)
    date_str = local.date().isoformat()
    # rollback expires ORM state, so keep plain copies of what the loop needs
    employee_id = employee.id
    who = f"{employee.name} ({employee.employee_code})"

    geofence = await evaluate_fix(
        db,
        fix,
        user_id=employee.user_id,
        now=now,
        ip_address=ip_address,
        ip_locator=ip_locator,
    )

    retried = False
    while True:
        record = await load_day_record(db, employee_id, date_str, lock=True)
        state = derive_state(record)
        try:
            transition = decide(state, local.hour, windows)
        except AttendanceError:
            await db.rollback()
            raise

        is_new = record is None
        record = _apply(
            record,
            transition,
            employee_id=employee_id,
            date_str=date_str,
            fix=fix,
            now=now,
        )
        if is_new:
            db.add(record)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            if retried:
                raise
            retried = True
            logger.info(
                "Concurrent attendance insert for employee %d on %s, re-reading",
                employee_id,
                date_str,
            )
            continue
        break

    await db.refresh(record)
    logger.info(
        "%s for %s on %s at %s WITA, status=%s, distance=%dm",
        transition.action.value,
        who,
        date_str,
        format_local_time(now),
        record.status,
        geofence.distance_meters,
    )
    return AttendanceOutcome(
        action=transition.action,
        record=record,
        geofence=geofence,
        local_time=format_local_time(now),
    )
