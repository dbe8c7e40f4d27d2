from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Account roles used for access control."""

    ADMIN = "admin"
    EMPLOYEE = "employee"


class AttendanceStatus(str, Enum):
    """Status stored on an attendance record."""

    PRESENT = "present"
    LATE = "late"
    ABSENT = "absent"


class DayState(str, Enum):
    """Where an employee's day stands, derived from the stored record."""

    EMPTY = "empty"
    AWAITING_CHECKOUT = "awaiting_checkout"
    LATE_CHECKOUT_ONLY = "late_checkout_only"
    COMPLETE = "complete"


class AttendanceAction(str, Enum):
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"
    LATE_CHECK_OUT = "late_check_out"


class SecurityEventType(str, Enum):
    SUSPICIOUS_LOCATION_DATA = "suspicious_location_data"
    LOCATION_IP_MISMATCH = "location_ip_mismatch"
    LOCATION_OUT_OF_RANGE = "location_out_of_range"
