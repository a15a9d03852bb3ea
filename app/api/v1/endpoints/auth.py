from fastapi import APIRouter, HTTPException, status, Request

from app.api.deps import TenantDB, CurrentUser, get_client_ip
from app.core.tenant_context import get_tenant_store
from app.schemas.auth import LoginRequest, TokenResponse
from app.schemas.hr import EmployeeResponse
from app.services.auth_service import AuthService
from app.services.audit_service import AuditService

router = APIRouter()


@router.post("/login", response_model=TokenResponse)
async def login(
    request: Request,
    data: LoginRequest,
    db: TenantDB,
):
    """
    Authenticate an employee of the resolved tenant and return an access token.

    The tenant comes from the X-Tenant-ID header or the tenantId query parameter.
    """
    store = get_tenant_store(request)
    auth_service = AuthService(db)

    employee = await auth_service.authenticate_employee(data.email, data.password)

    if not employee:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token, expires_in = auth_service.create_token(employee, store.tenant_id)

    await AuditService(db).log(
        action="LOGIN",
        entity_type="EMPLOYEE",
        entity_id=employee.id,
        user_id=employee.id,
        description="Employee logged in",
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    await db.commit()

    return TokenResponse(
        access_token=access_token,
        token_type="bearer",
        expires_in=expires_in,
        employee_id=str(employee.id),
        role=employee.role,
        tenant_id=store.tenant_id,
    )


@router.get("/me", response_model=EmployeeResponse)
async def get_me(current_user: CurrentUser):
    """Get the current employee's profile."""
    return current_user
