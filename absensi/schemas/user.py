"""Pydantic schemas for User accounts."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, field_validator

from absensi.core.enums import Role


class UserCreate(BaseModel):
    email: str
    password: str
    role: Role = Role.EMPLOYEE

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v


class ProfileRead(BaseModel):
    employee_id: int
    employee_code: str
    name: str
    department: str | None
    position: str | None


class UserRead(BaseModel):
    id: int
    email: str
    role: Role
    is_active: bool
    created_at: datetime | None
    profile: ProfileRead | None = None

    model_config = {"from_attributes": True}
