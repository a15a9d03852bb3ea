"""Employee directory and reporting hierarchy endpoints."""
import uuid
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from app.api.deps import TenantDB, CurrentUser, HRUser, raise_for_failure
from app.models.hr import Employee
from app.schemas.hr import (
    EmployeeCreate, EmployeeResponse, EmployeeListResponse, ManagerAssignRequest,
)
from app.services.hierarchy import HierarchyService

router = APIRouter()


@router.get("", response_model=EmployeeListResponse)
async def list_employees(
    db: TenantDB,
    current_user: HRUser,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    department_id: Optional[uuid.UUID] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    manager_id: Optional[uuid.UUID] = None,
):
    """List employees with search and filters. HR only."""
    employees, total = await HierarchyService(db).list_employees(
        skip=(page - 1) * size,
        limit=size,
        search=search,
        department_id=department_id,
        status_value=status_filter.upper() if status_filter else None,
        manager_id=manager_id,
    )
    pages = (total + size - 1) // size
    return EmployeeListResponse(items=employees, total=total, page=page, size=size, pages=pages)


@router.post("", response_model=EmployeeResponse, status_code=status.HTTP_201_CREATED)
async def create_employee(
    data: EmployeeCreate,
    db: TenantDB,
    current_user: HRUser,
):
    """Create an employee; a leave policy, when given, seeds their balances."""
    employee = raise_for_failure(await HierarchyService(db).create_employee(data))
    await db.commit()
    await db.refresh(employee)
    return employee


@router.get("/{employee_id}", response_model=EmployeeResponse)
async def get_employee(
    employee_id: uuid.UUID,
    db: TenantDB,
    current_user: CurrentUser,
):
    employee = await db.get(Employee, employee_id)
    if employee is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    if employee.id != current_user.id and not current_user.is_hr and employee.manager_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only view your own or your team's profiles"
        )
    return employee


@router.put("/{employee_id}/manager", response_model=EmployeeResponse)
async def set_manager(
    employee_id: uuid.UUID,
    data: ManagerAssignRequest,
    db: TenantDB,
    current_user: HRUser,
):
    """Set or clear an employee's manager. Assignments that would form a cycle are refused."""
    employee = raise_for_failure(await HierarchyService(db).set_manager(employee_id, data.manager_id))
    await db.commit()
    return employee
