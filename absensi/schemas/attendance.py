"""Pydantic schemas for Attendance / Employee / Reports / Security logs."""

from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from absensi.core.enums import AttendanceAction, AttendanceStatus, DayState, Role

_CODE_RE = re.compile(r"^[A-Za-z0-9_-]{2,32}$")


# ── Tap (check-in / check-out) ──────────────────────────────────────
class TapRequest(BaseModel):
    """A live position fix from the device.

    Fields are optional on the wire so that a missing fix surfaces as a
    location-unavailable error rather than a generic validation error.
    """

    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0)


class AttendanceRead(BaseModel):
    id: int
    employee_id: int
    date: str
    status: AttendanceStatus
    check_in_time: datetime | None
    check_out_time: datetime | None
    check_in_local: str | None = None
    check_out_local: str | None = None
    location_lat: float | None
    location_lng: float | None
    work_minutes: int | None = None


class TapResponse(BaseModel):
    success: bool
    action: AttendanceAction
    status: AttendanceStatus
    message: str
    distance_meters: int
    local_time: str
    record: AttendanceRead


class TodayResponse(BaseModel):
    date: str
    local_time: str
    state: DayState
    record: AttendanceRead | None
    next_action: AttendanceAction | None
    next_status: AttendanceStatus | None
    hint: str


class WindowConfig(BaseModel):
    check_in_start_hour: int
    on_time_cutoff_hour: int
    check_in_end_hour: int
    check_out_end_hour: int


class AttendanceConfigResponse(BaseModel):
    office_name: str
    office_lat: float
    office_lng: float
    radius_meters: float
    timezone: str
    windows: WindowConfig
    location_poll_seconds: int
    geolocation_timeout_seconds: int


class HistoryResponse(BaseModel):
    year: int
    month: int
    records: list[AttendanceRead]
    total_present: int
    total_late: int
    total_absent: int
    total_attended: int
    working_days_elapsed: int
    attendance_percentage: int


# ── Employee ────────────────────────────────────────────────────────
class EmployeeCreate(BaseModel):
    name: str
    email: str
    password: str = Field(min_length=6)
    employee_code: str | None = None
    department: str | None = None
    position: str | None = None
    role: Role = Role.EMPLOYEE

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name must not be empty")
        if len(v) > 200:
            raise ValueError("Name must not exceed 200 characters")
        return v

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v

    @field_validator("employee_code")
    @classmethod
    def _code(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not _CODE_RE.match(v):
            raise ValueError("Employee code must be 2-32 alphanumeric chars")
        return v


class EmployeeUpdate(BaseModel):
    name: str | None = None
    employee_code: str | None = None
    department: str | None = None
    position: str | None = None
    role: Role | None = None

    @field_validator("employee_code")
    @classmethod
    def _code(cls, v: str | None) -> str | None:
        if v is not None and not _CODE_RE.match(v.strip()):
            raise ValueError("Employee code must be 2-32 alphanumeric chars")
        return v.strip() if v else v


class EmployeeRead(BaseModel):
    id: int
    user_id: int
    employee_code: str
    name: str
    email: str | None = None
    department: str | None
    position: str | None
    role: Role | None = None
    is_active: bool
    created_at: datetime | None


# ── Daily report ───────────────────────────────────────────────────
class DailyAttendanceItem(BaseModel):
    id: int
    employee_id: int
    employee_code: str
    name: str
    department: str | None
    position: str | None
    status: AttendanceStatus
    check_in_time: datetime | None
    check_out_time: datetime | None
    check_in_local: str | None
    check_out_local: str | None
    location_lat: float | None
    location_lng: float | None


class DailyReportResponse(BaseModel):
    date: str
    total_employees: int
    present: int
    late: int
    not_checked_in: int
    awaiting_checkout: int
    records: list[DailyAttendanceItem]


# ── Monthly report ─────────────────────────────────────────────────
class MonthlyDetail(BaseModel):
    record_id: int
    date: str
    status: AttendanceStatus
    check_in_time: datetime | None
    check_out_time: datetime | None


class MonthlyEmployeeSummary(BaseModel):
    employee_id: int
    employee_code: str
    name: str
    department: str | None
    position: str | None
    total_days: int
    present_days: int
    late_days: int
    absent_days: int
    present_percentage: int
    late_percentage: int
    absent_percentage: int
    integrity_warning: bool = False
    attendance_details: list[MonthlyDetail] = Field(default_factory=list)


class MonthlyReportResponse(BaseModel):
    year: int
    month: int
    total_working_days: int
    employees: list[MonthlyEmployeeSummary]


# ── Security logs ──────────────────────────────────────────────────
class SecurityLogRead(BaseModel):
    id: int
    user_id: int
    employee_code: str | None = None
    name: str | None = None
    event_type: str
    description: str | None
    ip_address: str | None
    gps_location_lat: float | None
    gps_location_lng: float | None
    ip_location_lat: float | None
    ip_location_lng: float | None
    distance_meters: int | None
    created_at: datetime | None
    created_local: str | None = None

    model_config = {"from_attributes": True}


# ── Health ─────────────────────────────────────────────────────────
class HealthResponse(BaseModel):
    db: bool


# ── Generic ────────────────────────────────────────────────────────
class DeleteResponse(BaseModel):
    success: bool
    message: str
