"""
Employee-facing attendance endpoints.

The client polls its position every ``LOCATION_POLL_SECONDS`` and calls
``/attendance/today`` to render the button; the tap itself always
re-reads the day's record server side and decides again, so a stale
preview can never write the wrong transition.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from absensi.api.v1.deps import (get_client_ip, get_clock, get_current_employee,
                                 get_db, get_ip_locator)
from absensi.core.config import settings
from absensi.core.enums import AttendanceAction, AttendanceStatus
from absensi.core.exceptions import LocationUnavailableError
from absensi.core.timezone import ensure_utc, format_local_time, to_local
from absensi.models.attendance import AttendanceRecord
from absensi.models.employee import Employee
from absensi.schemas.attendance import (AttendanceConfigResponse,
                                        AttendanceRead, HistoryResponse,
                                        TapRequest, TapResponse, TodayResponse,
                                        WindowConfig)
from absensi.services.attendance_engine import (AttendanceWindows,
                                                derive_state, load_day_record,
                                                preview, record_attendance)
from absensi.services.geofence import LocationFix
from absensi.services.ip_locator import IpLocator
from absensi.services.monthly import (dedup_records, month_bounds, percentage,
                                      working_days_elapsed)

router = APIRouter(prefix="/attendance", tags=["attendance"])
logger = logging.getLogger(__name__)

_MESSAGES = {
    (AttendanceAction.CHECK_IN, AttendanceStatus.PRESENT): "Checked in on time",
    (AttendanceAction.CHECK_IN, AttendanceStatus.LATE): "Checked in late",
    (AttendanceAction.LATE_CHECK_OUT, AttendanceStatus.LATE): (
        "Check-in window missed; late check-out recorded"
    ),
}


def work_minutes(check_in: datetime | None, check_out: datetime | None) -> int | None:
    if check_in is None or check_out is None:
        return None
    delta = ensure_utc(check_out) - ensure_utc(check_in)
    return max(0, int(delta.total_seconds() // 60))


def serialize_record(record: AttendanceRecord) -> AttendanceRead:
    return AttendanceRead(
        id=record.id,
        employee_id=record.employee_id,
        date=record.date,
        status=record.status,
        check_in_time=record.check_in_time and ensure_utc(record.check_in_time),
        check_out_time=record.check_out_time and ensure_utc(record.check_out_time),
        check_in_local=format_local_time(record.check_in_time) if record.check_in_time else None,
        check_out_local=format_local_time(record.check_out_time) if record.check_out_time else None,
        location_lat=record.location_lat,
        location_lng=record.location_lng,
        work_minutes=work_minutes(record.check_in_time, record.check_out_time),
    )


@router.get("/config", response_model=AttendanceConfigResponse)
async def attendance_config(
    _employee: Employee = Depends(get_current_employee),
) -> AttendanceConfigResponse:
    """Office geofence and windows, for the client's polling driver."""
    return AttendanceConfigResponse(
        office_name=settings.OFFICE_NAME,
        office_lat=settings.OFFICE_LAT,
        office_lng=settings.OFFICE_LNG,
        radius_meters=settings.GEOFENCE_RADIUS_M,
        timezone=settings.TIMEZONE,
        windows=WindowConfig(
            check_in_start_hour=settings.CHECK_IN_START_HOUR,
            on_time_cutoff_hour=settings.ON_TIME_CUTOFF_HOUR,
            check_in_end_hour=settings.CHECK_IN_END_HOUR,
            check_out_end_hour=settings.CHECK_OUT_END_HOUR,
        ),
        location_poll_seconds=settings.LOCATION_POLL_SECONDS,
        geolocation_timeout_seconds=settings.GEOLOCATION_TIMEOUT_SECONDS,
    )


@router.get("/today", response_model=TodayResponse)
async def attendance_today(
    employee: Employee = Depends(get_current_employee),
    clock: Callable[[], datetime] = Depends(get_clock),
    db: AsyncSession = Depends(get_db),
) -> TodayResponse:
    now = clock()
    local = to_local(now)
    date_str = local.date().isoformat()

    record = await load_day_record(db, employee.id, date_str)
    state = derive_state(record)
    transition, hint = preview(state, local.hour)
    return TodayResponse(
        date=date_str,
        local_time=format_local_time(now),
        state=state,
        record=serialize_record(record) if record else None,
        next_action=transition.action if transition else None,
        next_status=transition.status if transition else None,
        hint=hint,
    )


@router.post("/tap", response_model=TapResponse)
async def attendance_tap(
    body: TapRequest,
    employee: Employee = Depends(get_current_employee),
    clock: Callable[[], datetime] = Depends(get_clock),
    ip_address: str | None = Depends(get_client_ip),
    ip_locator: IpLocator | None = Depends(get_ip_locator),
    db: AsyncSession = Depends(get_db),
) -> TapResponse:
    """Check in, check out or late check-out, whichever the day allows now."""
    if body.latitude is None or body.longitude is None or body.accuracy is None:
        raise LocationUnavailableError(
            "Location is unavailable. Allow location access and try again."
        )

    outcome = await record_attendance(
        db,
        employee=employee,
        fix=LocationFix(
            latitude=body.latitude,
            longitude=body.longitude,
            accuracy=body.accuracy,
        ),
        clock=clock,
        ip_address=ip_address,
        ip_locator=ip_locator,
        windows=AttendanceWindows.from_settings(),
    )
    status = AttendanceStatus(outcome.record.status)
    message = _MESSAGES.get((outcome.action, status), "Checked out")
    return TapResponse(
        success=True,
        action=outcome.action,
        status=status,
        message=f"{message} at {outcome.local_time} WITA",
        distance_meters=outcome.geofence.distance_meters,
        local_time=outcome.local_time,
        record=serialize_record(outcome.record),
    )


@router.get("/history", response_model=HistoryResponse)
async def attendance_history(
    year: int | None = Query(default=None, ge=2000, le=9999),
    month: int | None = Query(default=None, ge=1, le=12),
    employee: Employee = Depends(get_current_employee),
    clock: Callable[[], datetime] = Depends(get_clock),
    db: AsyncSession = Depends(get_db),
) -> HistoryResponse:
    """The caller's own month, newest day first."""
    today: date = to_local(clock()).date()
    year = year or today.year
    month = month or today.month
    start, end = month_bounds(year, month)
    result = await db.execute(
        select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee.id,
            AttendanceRecord.date >= start,
            AttendanceRecord.date <= end,
        )
    )
    records = dedup_records(result.scalars().all())
    records.sort(key=lambda r: r.date, reverse=True)

    present = sum(1 for r in records if r.status == AttendanceStatus.PRESENT.value)
    late = sum(1 for r in records if r.status == AttendanceStatus.LATE.value)
    absent = sum(1 for r in records if r.status == AttendanceStatus.ABSENT.value)
    elapsed = working_days_elapsed(year, month, today)
    return HistoryResponse(
        year=year,
        month=month,
        records=[serialize_record(r) for r in records],
        total_present=present,
        total_late=late,
        total_absent=absent,
        total_attended=present + late,
        working_days_elapsed=elapsed,
        attendance_percentage=percentage(present + late, elapsed),
    )
