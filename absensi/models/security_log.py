"""
Security log — append-only audit trail of blocked location fixes.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String

from absensi.db.base import Base


class SecurityLog(Base):
    __tablename__ = "security_logs"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    user_id: int = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # type: ignore[assignment]
    event_type: str = Column(String(40), nullable=False)  # type: ignore[assignment]
    # suspicious_location_data | location_ip_mismatch | location_out_of_range
    description: str | None = Column(String(500), nullable=True)  # type: ignore[assignment]
    ip_address: str | None = Column(String(45), nullable=True)  # type: ignore[assignment]
    gps_location_lat: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    gps_location_lng: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    ip_location_lat: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    ip_location_lng: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    distance_meters: int | None = Column(Integer, nullable=True)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
