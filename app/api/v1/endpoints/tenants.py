"""API endpoints for tenant administration (platform admin)."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.api.deps import DB, PlatformAdmin, TenantRouter
from app.models.tenant import Tenant
from app.schemas.tenant_admin import (
    TenantCreateRequest,
    TenantResponse,
    TenantListResponse,
    TenantStatusUpdateRequest,
    TenantStatusUpdateResponse,
)
from app.services.tenant_admin_service import TenantAdminService

logger = logging.getLogger(__name__)

router = APIRouter()


def tenant_response(tenant: Tenant, service: TenantAdminService) -> TenantResponse:
    response = TenantResponse.model_validate(tenant)
    response.selector = service.selector_for(tenant)
    return response


@router.post("", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    data: TenantCreateRequest,
    db: DB,
    tenant_router: TenantRouter,
    admin: PlatformAdmin,
):
    """
    Register a tenant and bind its store.

    When admin_email and admin_password are given the tenant's first ADMIN
    employee is created in the new store.
    """
    service = TenantAdminService(db, tenant_router)
    tenant = await service.create_tenant(data)
    return tenant_response(tenant, service)


@router.get("", response_model=TenantListResponse)
async def list_tenants(
    db: DB,
    tenant_router: TenantRouter,
    admin: PlatformAdmin,
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """List all tenants with status counts."""
    service = TenantAdminService(db, tenant_router)
    tenants, stats = await service.list_all_tenants(
        status_filter=status_filter,
        limit=limit,
        offset=offset
    )
    return TenantListResponse(
        tenants=[tenant_response(t, service) for t in tenants],
        **stats
    )


@router.patch("/{tenant_id}/status", response_model=TenantStatusUpdateResponse)
async def update_tenant_status(
    tenant_id: UUID,
    data: TenantStatusUpdateRequest,
    db: DB,
    tenant_router: TenantRouter,
    admin: PlatformAdmin,
):
    """
    Activate, suspend or retire a tenant.

    Takes effect on the tenant's next request; cached store handles stay.
    """
    service = TenantAdminService(db, tenant_router)
    tenant = await service.update_tenant_status(tenant_id, data.status, data.reason)
    await db.commit()

    logger.info(f"Platform admin {admin.get('sub')} set tenant {tenant.code} to {tenant.status}")
    return TenantStatusUpdateResponse(
        success=True,
        message=f"Tenant status updated to {tenant.status}",
        tenant_id=tenant.id,
        new_status=tenant.status
    )
