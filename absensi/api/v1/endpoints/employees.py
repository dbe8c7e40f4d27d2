"""
Employee management.

- Every route here is admin-only.
- Creating an employee creates the login account and the profile in one
  transaction; the profile id is what attendance rows hang off.
- Deleting is a soft delete: profile and account are deactivated and the
  attendance history stays.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from absensi.api.v1.deps import get_db, require_admin
from absensi.core.security import get_password_hash
from absensi.models.employee import Employee
from absensi.models.user import User
from absensi.schemas.attendance import (DeleteResponse, EmployeeCreate,
                                        EmployeeRead, EmployeeUpdate)

router = APIRouter(prefix="/employees", tags=["employees"])
logger = logging.getLogger(__name__)


def generate_employee_code(now: datetime | None = None) -> str:
    """``EMP`` + last six digits of the epoch millis + three random digits."""
    now = now or datetime.now(timezone.utc)
    millis = str(int(now.timestamp() * 1000))[-6:]
    return f"EMP{millis}{random.randint(0, 999):03d}"


def filter_employees(query, department: str | None = None, search: str | None = None):
    """Narrow an Employee query by exact department and a name/code substring."""
    if department:
        query = query.where(Employee.department == department)
    if search:
        # Escape SQL LIKE metacharacters to prevent wildcard injection
        safe_search = search.replace("%", r"\%").replace("_", r"\_")
        pattern = f"%{safe_search}%"
        query = query.where(
            or_(
                Employee.name.ilike(pattern, escape="\\"),
                Employee.employee_code.ilike(pattern, escape="\\"),
            )
        )
    return query


def _to_read(emp: Employee, user: User | None) -> EmployeeRead:
    return EmployeeRead(
        id=emp.id,
        user_id=emp.user_id,
        employee_code=emp.employee_code,
        name=emp.name,
        email=user.email if user else None,
        department=emp.department,
        position=emp.position,
        role=user.role if user else None,
        is_active=emp.is_active,
        created_at=emp.created_at,
    )


async def _load(db: AsyncSession, employee_id: int) -> tuple[Employee, User]:
    result = await db.execute(
        select(Employee, User)
        .join(User, Employee.user_id == User.id)
        .where(Employee.id == employee_id)
    )
    row = result.first()
    if row is None:
        raise HTTPException(status_code=404, detail="Employee not found")
    return row[0], row[1]


async def _code_taken(db: AsyncSession, code: str, exclude_id: int | None = None) -> bool:
    query = select(Employee.id).where(Employee.employee_code == code)
    if exclude_id is not None:
        query = query.where(Employee.id != exclude_id)
    return (await db.execute(query)).first() is not None


@router.get("", response_model=list[EmployeeRead])
async def list_employees(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=500),
    search: str | None = None,
    department: str | None = None,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> list[EmployeeRead]:
    query = (
        select(Employee, User)
        .join(User, Employee.user_id == User.id)
        .where(Employee.is_active.is_(True))
        .order_by(Employee.name)
        .offset(skip)
        .limit(limit)
    )
    result = await db.execute(filter_employees(query, department, search))
    return [_to_read(emp, user) for emp, user in result.all()]


@router.post("", response_model=EmployeeRead, status_code=201)
async def create_employee(
    body: EmployeeCreate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> EmployeeRead:
    existing = await db.execute(select(User.id).where(User.email == body.email))
    if existing.first() is not None:
        raise HTTPException(status_code=400, detail=f"Email '{body.email}' already registered")

    code = body.employee_code or generate_employee_code()
    if await _code_taken(db, code):
        raise HTTPException(
            status_code=400,
            detail=f"Employee code '{code}' already registered",
        )

    user = User(
        email=body.email,
        hashed_password=get_password_hash(body.password),
        role=body.role.value,
    )
    db.add(user)
    await db.flush()

    employee = Employee(
        user_id=user.id,
        employee_code=code,
        name=body.name,
        department=body.department,
        position=body.position,
    )
    db.add(employee)
    await db.commit()
    await db.refresh(employee)
    await db.refresh(user)
    logger.info("Created employee %s (%s)", employee.name, employee.employee_code)
    return _to_read(employee, user)


@router.get("/{employee_id}", response_model=EmployeeRead)
async def get_employee(
    employee_id: int,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> EmployeeRead:
    emp, user = await _load(db, employee_id)
    if not emp.is_active:
        raise HTTPException(status_code=404, detail="Employee not found")
    return _to_read(emp, user)


@router.put("/{employee_id}", response_model=EmployeeRead)
async def update_employee(
    employee_id: int,
    body: EmployeeUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> EmployeeRead:
    emp, user = await _load(db, employee_id)
    changes = body.model_dump(exclude_unset=True)

    code = changes.get("employee_code")
    if code and await _code_taken(db, code, exclude_id=emp.id):
        raise HTTPException(
            status_code=400,
            detail=f"Employee code '{code}' already registered",
        )

    role = changes.pop("role", None)
    if role is not None:
        user.role = role.value if hasattr(role, "value") else role
    for field, value in changes.items():
        if value is not None:
            setattr(emp, field, value)

    await db.commit()
    await db.refresh(emp)
    await db.refresh(user)
    logger.info("Updated employee %d", employee_id)
    return _to_read(emp, user)


@router.delete("/{employee_id}", response_model=DeleteResponse)
async def delete_employee(
    employee_id: int,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> DeleteResponse:
    """Soft-delete (deactivate) an employee. Attendance history is preserved."""
    emp, user = await _load(db, employee_id)
    emp.is_active = False
    user.is_active = False
    await db.commit()
    logger.info("Soft-deleted employee %d (%s)", employee_id, emp.name)
    return DeleteResponse(success=True, message=f"Employee '{emp.name}' deactivated")
