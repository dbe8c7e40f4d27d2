"""Pydantic schemas for the login / refresh / logout exchange."""

from __future__ import annotations

from pydantic import BaseModel

from absensi.core.config import settings
from absensi.core.enums import Role


class Token(BaseModel):
    """Issued on login and refresh; the same pair is also set as cookies.

    ``role`` lets the client pick the admin or the employee screens
    without a second round-trip to ``/auth/me``.
    """

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
    role: Role


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutResponse(BaseModel):
    message: str
