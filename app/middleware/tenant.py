"""
Tenant middleware for multi-tenant request handling
"""
from typing import Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
import logging

from app.core.security import token_tenant_id
from app.core.tenant_context import TenantNotFoundError, TenantInactiveError

logger = logging.getLogger(__name__)

# Routes that never need a tenant
PUBLIC_ROUTES = {
    "/",
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
}

PUBLIC_PREFIXES = (
    "/docs/",
    "/api/v1/tenants",  # Platform administration (PSA token)
)

# Unauthenticated routes that may name the tenant in the query string
TENANT_QUERY_ROUTES = {
    "/api/v1/auth/login",
}


def get_tenant_identifier(request: Request) -> Optional[str]:
    """
    Extract the tenant identifier from a request.

    Priority:
    1. JWT token claim (tenant_id) - if user is logged in
    2. Custom header (X-Tenant-ID) - for API calls
    3. tenantId query parameter - public routes only
    """
    tenant_id = token_tenant_id(request.headers.get("Authorization"))
    if tenant_id:
        return tenant_id

    tenant_id = request.headers.get("X-Tenant-ID")
    if tenant_id:
        return tenant_id.strip()

    if request.url.path in TENANT_QUERY_ROUTES:
        return request.query_params.get("tenantId")

    return None


def is_public_route(path: str) -> bool:
    if path in PUBLIC_ROUTES:
        return True
    return any(path.startswith(prefix) for prefix in PUBLIC_PREFIXES)


async def tenant_middleware(request: Request, call_next):
    """
    Middleware to inject tenant context into request

    This middleware:
    1. Identifies the tenant from the request
    2. Resolves a bound store handle through the connection router
    3. Injects the handle into request.state.tenant_store

    Public routes (health check, docs, platform admin) skip tenant check.
    """
    if request.method == "OPTIONS" or is_public_route(request.url.path):
        return await call_next(request)

    identifier = get_tenant_identifier(request)
    if not identifier:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "tenant_required",
                "detail": "Tenant context required. Include X-Tenant-ID header."
            },
        )

    router = request.app.state.tenant_router
    try:
        store = await router.resolve(identifier, verify_active=True)
    except TenantNotFoundError as e:
        logger.warning(f"Tenant resolution failed for '{identifier}': {e}")
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "tenant_not_resolved", "detail": str(e)},
        )
    except TenantInactiveError as e:
        logger.warning(str(e))
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"error": "tenant_inactive", "detail": str(e)},
        )

    request.state.tenant_store = store
    request.state.tenant_id = store.tenant_id

    logger.debug(f"Request for tenant: {store.tenant.get('code')} | Store: {store.selector}")
    return await call_next(request)
