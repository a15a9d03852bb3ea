"""Service for tenant administration (platform admin operations)."""

import logging
import uuid
from typing import List, Tuple, Optional

from sqlalchemy import select, func, case, desc
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from app.core.security import get_password_hash
from app.core.tenant_router import TenantConnectionRouter, build_selector
from app.models.hr import Employee, EmployeeRole
from app.models.tenant import Tenant, TenantStatus
from app.schemas.tenant_admin import TenantCreateRequest

logger = logging.getLogger(__name__)


class TenantAdminService:
    """Service for platform admin tenant management operations."""

    def __init__(self, db: AsyncSession, router: TenantConnectionRouter):
        self.db = db
        self.router = router

    async def create_tenant(self, data: TenantCreateRequest) -> Tenant:
        """
        Register a tenant, bind its store and create its first administrator.

        The registry row is committed before the store is bound, since the
        router reads tenants through its own registry session.
        """
        existing = await self.db.execute(select(Tenant).where(Tenant.code == data.code))
        if existing.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Tenant code {data.code} already exists"
            )

        tenant = Tenant(
            code=data.code,
            name=data.name,
            email_domain=data.email_domain,
            plan=data.plan,
            status=TenantStatus.ACTIVE.value,
            modules=list(data.modules),
            settings=dict(data.settings),
        )
        self.db.add(tenant)
        await self.db.commit()
        await self.db.refresh(tenant)

        store = await self.router.resolve(str(tenant.id))

        if data.admin_email and data.admin_password:
            async with store.session() as session:
                session.add(Employee(
                    employee_code="ADMIN-0001",
                    first_name=data.admin_first_name,
                    email=data.admin_email.lower(),
                    password_hash=get_password_hash(data.admin_password),
                    role=EmployeeRole.ADMIN.value,
                ))
            logger.info(f"Created administrator {data.admin_email} for tenant {tenant.code}")

        logger.info(f"Provisioned tenant {tenant.code} on store {store.selector}")
        return tenant

    async def list_all_tenants(
        self,
        status_filter: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> Tuple[List[Tenant], dict]:
        """
        List all tenants with filtering.

        Returns:
            (tenants, stats)
        """
        query = select(Tenant)
        if status_filter:
            query = query.where(Tenant.status == status_filter.upper())
        query = query.order_by(desc(Tenant.created_at)).limit(limit).offset(offset)

        result = await self.db.execute(query)
        tenants = list(result.scalars().all())

        stats_query = select(
            func.count(Tenant.id).label('total'),
            func.sum(case((Tenant.status == TenantStatus.ACTIVE.value, 1), else_=0)).label('active'),
            func.sum(case((Tenant.status == TenantStatus.PENDING.value, 1), else_=0)).label('pending'),
            func.sum(case((Tenant.status == TenantStatus.SUSPENDED.value, 1), else_=0)).label('suspended')
        )
        stats_row = (await self.db.execute(stats_query)).first()

        stats = {
            'total': int(stats_row.total or 0),
            'active': int(stats_row.active or 0),
            'pending': int(stats_row.pending or 0),
            'suspended': int(stats_row.suspended or 0)
        }
        return tenants, stats

    async def update_tenant_status(
        self,
        tenant_id: uuid.UUID,
        new_status: TenantStatus,
        reason: Optional[str] = None
    ) -> Tenant:
        """
        Change a tenant's lifecycle status.

        Cached store handles are left alone; status is checked on every
        resolve, so a suspended tenant is refused from the next request on.
        """
        tenant = await self.db.get(Tenant, tenant_id)
        if not tenant:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Tenant not found"
            )

        old_status = tenant.status
        tenant.status = new_status.value
        if reason:
            tenant.settings = {**(tenant.settings or {}), "status_reason": reason}
        await self.db.flush()

        logger.info(f"Tenant {tenant.code} status {old_status} -> {tenant.status}" + (f" ({reason})" if reason else ""))
        return tenant

    def selector_for(self, tenant: Tenant) -> str:
        return build_selector(str(tenant.id), self.router.prefix)
