"""
Employee records and the reporting hierarchy.

The manager chain is kept acyclic: before a manager is set, the chain above
the proposed manager is walked over an in-memory snapshot of
{employee_id: manager_id}.
"""
import logging
import uuid
from typing import Optional, Dict, List, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import status

from app.core.security import get_password_hash
from app.models.hr import Department, Employee
from app.schemas.hr import DepartmentCreate, EmployeeCreate
from app.services.leave_policy_service import LeavePolicyService
from app.services.results import Failure, Result, not_found

logger = logging.getLogger(__name__)


def would_create_cycle(
    employee_id: uuid.UUID,
    manager_id: Optional[uuid.UUID],
    manager_of: Dict[uuid.UUID, Optional[uuid.UUID]],
) -> bool:
    """
    True if making manager_id the manager of employee_id closes a loop.

    Walks up from the proposed manager; reaching employee_id means the
    employee would end up managing themselves. A chain that revisits a node
    is already corrupt and is treated as a cycle too.
    """
    visited = set()
    current = manager_id
    while current is not None:
        if current == employee_id:
            return True
        if current in visited:
            return True
        visited.add(current)
        current = manager_of.get(current)
    return False


class HierarchyService:
    """Employee creation, listing and manager assignment."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def manager_snapshot(self) -> Dict[uuid.UUID, Optional[uuid.UUID]]:
        result = await self.db.execute(select(Employee.id, Employee.manager_id))
        return {employee_id: manager_id for employee_id, manager_id in result.all()}

    async def set_manager(
        self,
        employee_id: uuid.UUID,
        manager_id: Optional[uuid.UUID],
    ) -> Result[Employee]:
        """Set (or clear, with None) an employee's direct manager."""
        employee = await self.db.get(Employee, employee_id)
        if employee is None:
            return not_found("EMPLOYEE_NOT_FOUND", "Employee not found")

        if manager_id is not None:
            if manager_id == employee_id:
                return Failure("CANNOT_SET_SELF_MANAGER", "An employee cannot be their own manager")

            manager = await self.db.get(Employee, manager_id)
            if manager is None:
                return not_found("MANAGER_NOT_FOUND", "Manager not found")

            if would_create_cycle(employee_id, manager_id, await self.manager_snapshot()):
                return Failure(
                    "CYCLE_DETECTED",
                    "Assigning this manager would create a reporting cycle",
                    details={"employee_id": str(employee_id), "manager_id": str(manager_id)},
                )

        employee.manager_id = manager_id
        await self.db.flush()
        logger.info(f"Manager of {employee.employee_code} set to {manager_id}")
        return employee

    async def create_employee(self, data: EmployeeCreate) -> Result[Employee]:
        code = data.employee_code.strip().upper()
        conditions = [Employee.employee_code == code]
        if data.email:
            conditions.append(Employee.email == data.email.lower())
        existing = await self.db.execute(select(Employee).where(or_(*conditions)))
        if existing.scalars().first():
            return Failure(
                "EMPLOYEE_EXISTS",
                "An employee with this code or email already exists",
                status.HTTP_409_CONFLICT,
            )

        if data.manager_id is not None and await self.db.get(Employee, data.manager_id) is None:
            return not_found("MANAGER_NOT_FOUND", "Manager not found")
        if data.department_id is not None and await self.db.get(Department, data.department_id) is None:
            return not_found("DEPARTMENT_NOT_FOUND", "Department not found")

        employee = Employee(
            employee_code=code,
            first_name=data.first_name,
            middle_name=data.middle_name,
            last_name=data.last_name,
            email=data.email.lower() if data.email else None,
            password_hash=get_password_hash(data.password) if data.password else None,
            role=data.role.value,
            designation=data.designation,
            department_id=data.department_id,
            manager_id=data.manager_id,
            status=data.status.value,
            joining_date=data.joining_date,
        )
        self.db.add(employee)
        await self.db.flush()

        if data.leave_policy_id:
            await LeavePolicyService(self.db).assign_policy(employee.id, data.leave_policy_id)

        logger.info(f"Created employee {employee.employee_code}")
        return employee

    async def list_employees(
        self,
        skip: int = 0,
        limit: int = 20,
        search: Optional[str] = None,
        department_id: Optional[uuid.UUID] = None,
        status_value: Optional[str] = None,
        manager_id: Optional[uuid.UUID] = None,
    ) -> Tuple[List[Employee], int]:
        query = select(Employee)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(
                Employee.employee_code.ilike(pattern),
                Employee.first_name.ilike(pattern),
                Employee.last_name.ilike(pattern),
                Employee.email.ilike(pattern),
            ))
        if department_id:
            query = query.where(Employee.department_id == department_id)
        if status_value:
            query = query.where(Employee.status == status_value)
        if manager_id:
            query = query.where(Employee.manager_id == manager_id)

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        result = await self.db.execute(query.order_by(Employee.employee_code).offset(skip).limit(limit))
        return list(result.scalars().all()), total

    # ==================== Departments ====================

    async def create_department(self, data: DepartmentCreate) -> Result[Department]:
        code = data.code.strip().upper()
        existing = await self.db.execute(select(Department).where(Department.code == code))
        if existing.scalar_one_or_none():
            return Failure(
                "DEPARTMENT_EXISTS",
                f"Department with code '{code}' already exists",
                status.HTTP_409_CONFLICT,
            )

        department = Department(code=code, name=data.name.strip(), is_active=data.is_active)
        self.db.add(department)
        await self.db.flush()
        logger.info(f"Created department {department.code}")
        return department

    async def list_departments(self, active_only: bool = False) -> List[Department]:
        query = select(Department).order_by(Department.code)
        if active_only:
            query = query.where(Department.is_active == True)  # noqa: E712
        result = await self.db.execute(query)
        return list(result.scalars().all())
