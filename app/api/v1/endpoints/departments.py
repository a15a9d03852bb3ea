"""Department endpoints. Departments scope leave policies and filter the directory."""
from typing import List

from fastapi import APIRouter, status

from app.api.deps import TenantDB, CurrentUser, HRUser, raise_for_failure
from app.schemas.hr import DepartmentCreate, DepartmentResponse
from app.services.hierarchy import HierarchyService

router = APIRouter()


@router.get("", response_model=List[DepartmentResponse])
async def list_departments(
    db: TenantDB,
    current_user: CurrentUser,
    active_only: bool = False,
):
    return await HierarchyService(db).list_departments(active_only=active_only)


@router.post("", response_model=DepartmentResponse, status_code=status.HTTP_201_CREATED)
async def create_department(
    data: DepartmentCreate,
    db: TenantDB,
    current_user: HRUser,
):
    """Create a department. Codes are unique per tenant."""
    department = raise_for_failure(await HierarchyService(db).create_department(data))
    await db.commit()
    await db.refresh(department)
    return department
