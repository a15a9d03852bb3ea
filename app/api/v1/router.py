from fastapi import APIRouter

from app.api.v1.endpoints import (
    # Platform administration
    tenants,
    # Access Control
    auth,
    # People
    employees,
    departments,
    # Attendance
    attendance,
    # Leave
    leaves,
    leave_policies,
    # Regularization
    regularizations,
    # Calendar
    holidays,
    # Notifications
    notifications,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Tenant Administration (PSA) ====================
api_router.include_router(
    tenants.router,
    prefix="/tenants",
    tags=["Tenants"]
)

# ==================== Access Control ====================
api_router.include_router(
    auth.router,
    prefix="/auth",
    tags=["Authentication"]
)

# ==================== Employees & Hierarchy ====================
api_router.include_router(
    employees.router,
    prefix="/employees",
    tags=["Employees"]
)
api_router.include_router(
    departments.router,
    prefix="/departments",
    tags=["Departments"]
)

# ==================== Attendance ====================
api_router.include_router(
    attendance.router,
    prefix="/attendance",
    tags=["Attendance"]
)

# ==================== Leave ====================
api_router.include_router(
    leaves.router,
    prefix="/leaves",
    tags=["Leaves"]
)
api_router.include_router(
    leave_policies.router,
    prefix="/leave-policies",
    tags=["Leave Policies"]
)

# ==================== Regularization ====================
api_router.include_router(
    regularizations.router,
    prefix="/regularizations",
    tags=["Regularizations"]
)

# ==================== Holidays ====================
api_router.include_router(
    holidays.router,
    prefix="/holidays",
    tags=["Holidays"]
)

# ==================== Notifications ====================
api_router.include_router(
    notifications.router,
    prefix="/notifications",
    tags=["Notifications"]
)
