"""
FastAPI dependencies — auth guards, database session, clock and the
collaborators the attendance engine needs.
"""

from __future__ import annotations

import ipaddress
from collections.abc import AsyncGenerator, Callable
from datetime import datetime
from typing import Optional

from fastapi import Cookie, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from absensi.core.config import settings
from absensi.core.enums import Role
from absensi.core.exceptions import ProfileNotFoundError
from absensi.core.security import decode_access_token
from absensi.core.timezone import utc_now
from absensi.db.session import async_session_factory
from absensi.models.employee import Employee
from absensi.models.user import User
from absensi.services.ip_locator import IpLocator

# We use auto_error=False so we can manually check for the cookie if header is missing
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


# ── Database session ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


# ── Auth dependencies ───────────────────────────────────────────────
async def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    access_token: Optional[str] = Cookie(default=None),  # Read from HttpOnly Cookie
    db: AsyncSession = Depends(get_db),
) -> User:
    """Decode JWT from Header OR Cookie, look up user."""

    # Priority: Header > Cookie
    final_token = token
    if not final_token and access_token:
        # auth.py sets the cookie as "Bearer <token>"
        if access_token.startswith("Bearer "):
            final_token = access_token.split(" ", 1)[1]
        else:
            final_token = access_token

    credentials_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not final_token:
        raise credentials_exc

    payload = decode_access_token(final_token)
    if payload is None:
        raise credentials_exc

    user_id: str | None = payload.get("sub")
    if user_id is None or not str(user_id).isdecimal():
        raise credentials_exc

    result = await db.execute(select(User).where(User.id == int(user_id)))
    user = result.scalar_one_or_none()
    if user is None:
        raise credentials_exc
    return user


async def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    """Reject inactive accounts."""
    if not current_user.is_active:
        raise HTTPException(status_code=400, detail="Inactive user account")
    return current_user


async def require_admin(
    current_user: User = Depends(get_current_active_user),
) -> User:
    """Only allow admin role to proceed."""
    if current_user.role != Role.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return current_user


async def get_current_employee(
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> Employee:
    """The caller's active employee profile; attendance is keyed on its id."""
    result = await db.execute(
        select(Employee).where(
            Employee.user_id == current_user.id, Employee.is_active.is_(True)
        )
    )
    employee = result.scalar_one_or_none()
    if employee is None:
        raise ProfileNotFoundError("No active employee profile for this account.")
    return employee


# ── Engine collaborators ────────────────────────────────────────────
def get_clock() -> Callable[[], datetime]:
    return utc_now


_ip_locator = IpLocator(
    settings.IP_GEOLOCATION_URL,
    timeout=settings.IP_GEOLOCATION_TIMEOUT_SECONDS,
)


def get_ip_locator() -> IpLocator | None:
    if not settings.IP_GEOLOCATION_ENABLED:
        return None
    return _ip_locator


def _parse_ip(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def _is_trusted_proxy(ip: str) -> bool:
    addr = ipaddress.ip_address(ip)
    return any(
        addr in ipaddress.ip_network(entry, strict=False) for entry in settings.TRUSTED_PROXIES
    )


def get_client_ip(request: Request) -> str | None:
    """The caller's address as a normalised IP string, or ``None``.

    ``X-Forwarded-For`` is only read when the socket peer is a trusted
    proxy; hops are walked right to left past further trusted proxies.
    Anything that does not parse as an address is dropped.
    """
    peer = _parse_ip(request.client.host if request.client else None)
    if peer is None or not _is_trusted_proxy(peer):
        return peer

    forwarded = request.headers.get("x-forwarded-for", "")
    for hop in reversed([h for h in forwarded.split(",") if h.strip()]):
        ip = _parse_ip(hop)
        if ip is None:
            return None
        if not _is_trusted_proxy(ip):
            return ip
    return peer
