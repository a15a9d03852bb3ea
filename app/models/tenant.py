"""
Tenant registry model for multi-tenant architecture
"""
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
import uuid

from app.database import Base
from app.db_types import JSONType, UUIDType


class TenantStatus(str, Enum):
    """Lifecycle status of a tenant."""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    DELETED = "DELETED"


class Tenant(Base):
    """
    Tenant/Organization model

    Each tenant represents a customer organization with its own isolated
    data store. The store selector is derived from the tenant id by the
    connection router.
    """
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="Human readable tenant code, e.g. ACME"
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email_domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    plan: Mapped[str] = mapped_column(String(50), default="FREE", nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=TenantStatus.ACTIVE.value,
        nullable=False,
        comment="PENDING, ACTIVE, SUSPENDED, DELETED"
    )
    modules: Mapped[list] = mapped_column(
        JSONType,
        default=list,
        nullable=False,
        comment="Enabled feature modules, empty means all"
    )
    settings: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Tenant(code='{self.code}', status='{self.status}')>"
