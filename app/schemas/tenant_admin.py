"""Schemas for tenant administration (platform admin)"""

from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import List, Optional
from uuid import UUID
from datetime import datetime

from app.models.tenant import TenantStatus


class TenantCreateRequest(BaseModel):
    """Provision a tenant and, optionally, its first administrator."""
    code: str = Field(..., min_length=2, max_length=50, pattern=r"^[A-Za-z0-9_-]+$")
    name: str = Field(..., max_length=255)
    email_domain: Optional[str] = None
    plan: str = "FREE"
    modules: List[str] = Field(default_factory=list)
    settings: dict = Field(default_factory=dict)

    admin_email: Optional[EmailStr] = None
    admin_password: Optional[str] = Field(None, min_length=6)
    admin_first_name: str = "Admin"

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class TenantResponse(BaseModel):
    """Tenant registry row"""
    id: UUID
    code: str
    name: str
    email_domain: Optional[str] = None
    plan: str
    status: str
    modules: List[str] = []
    settings: dict = {}
    selector: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TenantListResponse(BaseModel):
    """Response for listing all tenants"""
    tenants: List[TenantResponse]
    total: int
    active: int
    pending: int
    suspended: int


class TenantStatusUpdateRequest(BaseModel):
    """Request to update tenant status"""
    status: TenantStatus = Field(..., description="New status: ACTIVE, SUSPENDED, PENDING, DELETED")
    reason: Optional[str] = Field(None, description="Reason for status change")


class TenantStatusUpdateResponse(BaseModel):
    """Response after status update"""
    success: bool
    message: str
    tenant_id: UUID
    new_status: str
