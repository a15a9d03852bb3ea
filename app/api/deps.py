from typing import Annotated, Any, Optional
import uuid
import logging

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db, get_db_with_tenant
from app.core.security import verify_access_token
from app.core.tenant_context import get_tenant_store
from app.core.tenant_router import TenantConnectionRouter
from app.models.hr import Employee, EmployeeRole, EmployeeStatus, HR_ROLES
from app.services.results import Failure


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer()

# Type aliases for database sessions
DB = Annotated[AsyncSession, Depends(get_db)]  # Registry (for tenant management)
TenantDB = Annotated[AsyncSession, Depends(get_db_with_tenant)]  # Tenant store (for HR data)


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: TenantDB,
) -> Employee:
    """
    Dependency to get the current authenticated employee.
    Validates the JWT token and loads the employee from the tenant store,
    using the same session as the endpoint.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    claims = verify_access_token(credentials.credentials)
    if claims is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise credentials_exception

    try:
        employee_uuid = uuid.UUID(claims.get("sub", ""))
    except ValueError:
        logger.warning(f"Invalid employee id in token: {claims.get('sub')}")
        raise credentials_exception

    store = get_tenant_store(request)
    token_tenant = claims.get("tenant_id")
    if token_tenant and str(token_tenant) not in (store.tenant_id, store.tenant.get("code")):
        logger.warning(f"Token tenant {token_tenant} does not match request tenant {store.tenant_id}")
        raise credentials_exception

    result = await db.execute(select(Employee).where(Employee.id == employee_uuid))
    employee = result.scalar_one_or_none()

    if employee is None:
        logger.warning(f"Employee {employee_uuid} not found in store {store.selector}")
        raise credentials_exception

    if employee.status == EmployeeStatus.INACTIVE.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Employee account is deactivated"
        )

    return employee


CurrentUser = Annotated[Employee, Depends(get_current_user)]


def require_roles(*roles: str):
    """
    Dependency factory to require one of the given roles.

    Usage:
        @router.put("/settings")
        async def update_settings(user: Annotated[Employee, Depends(require_roles("HR", "ADMIN"))]):
            ...
    """
    async def role_dependency(user: CurrentUser) -> Employee:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied. Required role: {', '.join(roles)}"
            )
        return user

    return role_dependency


HRUser = Annotated[Employee, Depends(require_roles(*sorted(HR_ROLES)))]


async def get_platform_admin(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> dict:
    """
    Dependency for platform administration endpoints.
    Only checks the token; platform admins are not tenant employees.
    """
    claims = verify_access_token(credentials.credentials)
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if claims.get("role") != EmployeeRole.PSA.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Platform administrator access required"
        )
    return claims


PlatformAdmin = Annotated[dict, Depends(get_platform_admin)]


def get_tenant_router(request: Request) -> TenantConnectionRouter:
    return request.app.state.tenant_router


TenantRouter = Annotated[TenantConnectionRouter, Depends(get_tenant_router)]


def get_client_ip(request: Request) -> Optional[str]:
    """Client IP: first X-Forwarded-For hop, then X-Real-IP, then the socket address."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else None


def raise_for_failure(result: Any) -> Any:
    """Return a service result unchanged, or raise its Failure as an HTTPException."""
    if isinstance(result, Failure):
        raise HTTPException(status_code=result.status_code, detail=result.to_detail())
    return result
