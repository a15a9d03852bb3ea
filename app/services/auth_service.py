from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.hr import Employee, EmployeeStatus
from app.core.security import verify_password, create_access_token
from app.config import settings


class AuthService:
    """Authentication service for employee login and token issuing."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def authenticate_employee(
        self,
        email: str,
        password: str
    ) -> Optional[Employee]:
        """
        Authenticate an employee by email and password.

        Args:
            email: Employee's email address
            password: Plain text password

        Returns:
            Employee if authentication succeeded, None otherwise
        """
        result = await self.db.execute(
            select(Employee).where(Employee.email == email.lower())
        )
        employee = result.scalar_one_or_none()

        if employee is None:
            return None

        if not verify_password(password, employee.password_hash):
            return None

        if employee.status == EmployeeStatus.INACTIVE.value:
            return None

        return employee

    def create_token(self, employee: Employee, tenant_id: str) -> Tuple[str, int]:
        """
        Create an access token for an employee.

        Returns:
            Tuple of (access_token, expires_in_seconds)
        """
        access_token = create_access_token(
            subject=employee.id,
            role=employee.role,
            tenant_id=tenant_id,
            additional_claims={"email": employee.email},
        )
        return access_token, settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
