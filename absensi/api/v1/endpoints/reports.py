"""
Admin reporting endpoints.

Each report fetches its rows in **one** SQL query and aggregates in
Python; the monthly report runs the rows through the same dedup and
working-day rules the service layer exposes for unit tests.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from absensi.api.v1.deps import get_clock, get_db, require_admin
from absensi.api.v1.endpoints.employees import filter_employees
from absensi.core.enums import AttendanceStatus, SecurityEventType
from absensi.core.timezone import (ensure_utc, format_local_date,
                                   format_local_time, local_today)
from absensi.models.attendance import AttendanceRecord
from absensi.models.employee import Employee
from absensi.models.security_log import SecurityLog
from absensi.models.user import User
from absensi.schemas.attendance import (DailyAttendanceItem,
                                        DailyReportResponse, HealthResponse,
                                        MonthlyDetail, MonthlyEmployeeSummary,
                                        MonthlyReportResponse, SecurityLogRead)
from absensi.services.monthly import (HolidayCalendar, dedup_records,
                                      month_bounds, summarize,
                                      working_days_in_month)

router = APIRouter(tags=["reports"])
logger = logging.getLogger(__name__)


def _validate_date(date_str: str) -> str:
    try:
        return date.fromisoformat(date_str).isoformat()
    except ValueError:
        raise HTTPException(status_code=400, detail="Date must be YYYY-MM-DD") from None


# ── Daily report ────────────────────────────────────────────────────
@router.get("/reports/daily", response_model=DailyReportResponse)
async def daily_report(
    date_str: str | None = None,
    department: str | None = None,
    status: AttendanceStatus | None = None,
    search: str | None = None,
    clock: Callable[[], datetime] = Depends(get_clock),
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> DailyReportResponse:
    """All records for one WITA day, defaulting to today."""
    day = _validate_date(date_str) if date_str else local_today(clock())

    emp_query = filter_employees(
        select(Employee.id).where(Employee.is_active.is_(True)), department, search
    )
    active_ids = set((await db.execute(emp_query)).scalars().all())

    rec_query = filter_employees(
        select(AttendanceRecord, Employee)
        .join(Employee, AttendanceRecord.employee_id == Employee.id)
        .where(AttendanceRecord.date == day)
        .order_by(AttendanceRecord.check_in_time.asc(), AttendanceRecord.id.asc()),
        department,
        search,
    )
    rows = (await db.execute(rec_query)).all()

    latest: dict[int, tuple[AttendanceRecord, Employee]] = {}
    for rec, emp in rows:
        current = latest.get(rec.employee_id)
        if current is None or rec.id > current[0].id:
            latest[rec.employee_id] = (rec, emp)

    items = []
    for rec, emp in latest.values():
        if status is not None and rec.status != status.value:
            continue
        items.append(
            DailyAttendanceItem(
                id=rec.id,
                employee_id=emp.id,
                employee_code=emp.employee_code,
                name=emp.name,
                department=emp.department,
                position=emp.position,
                status=rec.status,
                check_in_time=rec.check_in_time and ensure_utc(rec.check_in_time),
                check_out_time=rec.check_out_time and ensure_utc(rec.check_out_time),
                check_in_local=format_local_time(rec.check_in_time) if rec.check_in_time else None,
                check_out_local=format_local_time(rec.check_out_time) if rec.check_out_time else None,
                location_lat=rec.location_lat,
                location_lng=rec.location_lng,
            )
        )

    recorded = [rec for rec, _ in latest.values()]
    return DailyReportResponse(
        date=day,
        total_employees=len(active_ids),
        present=sum(1 for r in recorded if r.status == AttendanceStatus.PRESENT.value),
        late=sum(1 for r in recorded if r.status == AttendanceStatus.LATE.value),
        not_checked_in=len(active_ids - set(latest)),
        awaiting_checkout=sum(
            1 for r in recorded if r.check_in_time is not None and r.check_out_time is None
        ),
        records=items,
    )


# ── Monthly report (single query) ───────────────────────────────────
@router.get("/reports/monthly/{year}/{month}", response_model=MonthlyReportResponse)
async def monthly_report(
    year: int = Path(ge=2000, le=9999),
    month: int = Path(ge=1, le=12),
    department: str | None = None,
    search: str | None = None,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> MonthlyReportResponse:
    """Present / late / absent per active employee against the month's working days."""
    holidays = HolidayCalendar.from_settings()
    total_working_days = working_days_in_month(year, month, holidays)
    start, end = month_bounds(year, month)

    emp_query = filter_employees(
        select(Employee).where(Employee.is_active.is_(True)).order_by(Employee.name),
        department,
        search,
    )
    employees = list((await db.execute(emp_query)).scalars().all())

    result = await db.execute(
        select(AttendanceRecord).where(
            AttendanceRecord.date >= start,
            AttendanceRecord.date <= end,
            AttendanceRecord.employee_id.in_([e.id for e in employees]),
        )
    )
    by_emp: dict[int, list[AttendanceRecord]] = defaultdict(list)
    for rec in dedup_records(result.scalars().all()):
        by_emp[rec.employee_id].append(rec)

    summaries = []
    for emp in employees:
        records = by_emp.get(emp.id, [])
        counts = summarize(records, total_working_days, holidays, employee_id=emp.id)
        summaries.append(
            MonthlyEmployeeSummary(
                employee_id=emp.id,
                employee_code=emp.employee_code,
                name=emp.name,
                department=emp.department,
                position=emp.position,
                **counts.model_dump(),
                attendance_details=[
                    MonthlyDetail(
                        record_id=r.id,
                        date=r.date,
                        status=r.status,
                        check_in_time=r.check_in_time and ensure_utc(r.check_in_time),
                        check_out_time=r.check_out_time and ensure_utc(r.check_out_time),
                    )
                    for r in records
                ],
            )
        )

    return MonthlyReportResponse(
        year=year,
        month=month,
        total_working_days=total_working_days,
        employees=summaries,
    )


# ── Security logs ───────────────────────────────────────────────────
@router.get("/security-logs", response_model=list[SecurityLogRead])
async def security_logs(
    limit: int = Query(default=100, ge=1, le=1000),
    event_type: SecurityEventType | None = None,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> list[SecurityLogRead]:
    """Blocked location fixes, newest first."""
    query = (
        select(SecurityLog, Employee.employee_code, Employee.name)
        .outerjoin(Employee, Employee.user_id == SecurityLog.user_id)
        .order_by(SecurityLog.created_at.desc(), SecurityLog.id.desc())
        .limit(limit)
    )
    if event_type is not None:
        query = query.where(SecurityLog.event_type == event_type.value)

    logs = []
    for log, code, name in (await db.execute(query)).all():
        item = SecurityLogRead.model_validate(log)
        item.employee_code = code
        item.name = name
        if log.created_at is not None:
            item.created_local = (
                f"{format_local_date(log.created_at)} {format_local_time(log.created_at)}"
            )
        logs.append(item)
    return logs


# ── Health ──────────────────────────────────────────────────────────
@router.get("/health", response_model=HealthResponse)
async def health(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """Public health check — DB connectivity."""
    result = HealthResponse(db=False)
    try:
        await db.execute(select(1))
        result.db = True
    except Exception as e:
        logger.error("Health check DB failure: %s", e)
    return result
