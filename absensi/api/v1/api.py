"""
V1 API router aggregator — wires all endpoint modules together.
"""

from fastapi import APIRouter

from absensi.api.v1.endpoints import attendance, auth, employees, reports

api_router = APIRouter()

# Auth (login, refresh, profile, account creation)
api_router.include_router(auth.router)

# Employee self-service: config, today, tap, history
api_router.include_router(attendance.router)

# Admin: employee management
api_router.include_router(employees.router)

# Admin: daily / monthly reports, security logs; public health
api_router.include_router(reports.router)
