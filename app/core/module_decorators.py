"""
Module access control for Multi-Tenant HRMS

Tenants enable feature modules (attendance, leave, regularization) in the
registry. An empty module list means every module is enabled.
"""
from fastapi import HTTPException, Request, status
import logging

from app.core.tenant_context import NoTenantContextError, get_tenant_store

logger = logging.getLogger(__name__)


class Modules:
    ATTENDANCE = "attendance"
    LEAVE = "leave"
    REGULARIZATION = "regularization"


def tenant_has_module(tenant: dict, module_code: str) -> bool:
    """True when the tenant snapshot enables the module."""
    enabled = tenant.get("modules") or []
    return not enabled or module_code in enabled


def require_module(module_code: str):
    """
    Dependency factory to check if tenant has access to a specific module

    Usage:
        router = APIRouter(dependencies=[Depends(require_module("attendance"))])

    Raises:
        HTTPException 401: If tenant context not found
        HTTPException 403: If module not enabled for tenant
    """
    async def check_module(request: Request) -> None:
        try:
            store = get_tenant_store(request)
        except NoTenantContextError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Tenant context not found. Please login."
            )

        if not tenant_has_module(store.tenant, module_code):
            logger.warning(
                f"Module access denied: Tenant {store.tenant.get('code')} "
                f"attempted to access module '{module_code}'"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Module '{module_code}' is not enabled for your account."
            )

    return check_module
