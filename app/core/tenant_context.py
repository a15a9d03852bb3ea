"""
Tenant context for request handling.

The tenant middleware resolves each request's tenant through the
TenantConnectionRouter and leaves the bound store on
request.state.tenant_store. Everything tenant scoped (employees,
attendance, leave) is reached through that store; the registry (tenants)
is the only data outside it.
"""
from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from app.core.tenant_router import TenantStore


class TenantNotFoundError(Exception):
    """No registry row matches the tenant identifier."""
    pass


class TenantInactiveError(Exception):
    """The tenant exists but is not ACTIVE."""
    pass


class NoTenantContextError(Exception):
    """Tenant-scoped code ran on a request the middleware did not resolve."""
    pass


def get_tenant_store(request: Request) -> "TenantStore":
    """
    The store bound to this request.

    Raises:
        NoTenantContextError: The route is public or the middleware is not installed
    """
    store = getattr(request.state, "tenant_store", None)
    if store is None:
        raise NoTenantContextError(
            f"No tenant store on request {request.method} {request.url.path}; "
            "is the tenant middleware installed?"
        )
    return store
