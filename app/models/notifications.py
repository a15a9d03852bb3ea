"""Database models for Notifications module."""
from datetime import datetime, timezone
from uuid import uuid4
from enum import Enum

from sqlalchemy import Column, String, Text, DateTime, Boolean, Index

from app.database import TenantBase
from app.db_types import UUIDType


class NotificationType(str, Enum):
    """Types of notifications."""
    # Leave
    LEAVE_REQUEST = "LEAVE_REQUEST"
    LEAVE_APPLIED_BY_HR = "LEAVE_APPLIED_BY_HR"
    LEAVE_APPROVED = "LEAVE_APPROVED"
    LEAVE_REJECTED = "LEAVE_REJECTED"
    LEAVE_UPDATED = "LEAVE_UPDATED"
    LEAVE_CANCELLED = "LEAVE_CANCELLED"

    # Regularization
    REGULARIZATION_REQUEST = "REGULARIZATION_REQUEST"
    REGULARIZATION_APPROVED = "REGULARIZATION_APPROVED"
    REGULARIZATION_REJECTED = "REGULARIZATION_REJECTED"


class Notification(TenantBase):
    """
    Notification model - stores in-app notifications.
    Addressed to one employee (receiver_id) or broadcast to a role (receiver_role).
    """
    __tablename__ = "notifications"

    id = Column(UUIDType, primary_key=True, default=uuid4)

    # Recipient
    receiver_id = Column(UUIDType, nullable=True, index=True)
    receiver_role = Column(String(20), nullable=True, comment="EMPLOYEE, MANAGER, HR, PSA")

    # Notification content
    notification_type = Column(String(50), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)

    # Reference to related entity
    entity_type = Column(String(50))  # e.g., "leave_request", "regularization"
    entity_id = Column(UUIDType)

    # Status
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    read_at = Column(DateTime(timezone=True))

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index('ix_notifications_receiver_unread', 'receiver_id', 'is_read'),
        Index('ix_notifications_role', 'receiver_role'),
    )

    def __repr__(self) -> str:
        return f"<Notification(type='{self.notification_type}', receiver='{self.receiver_id or self.receiver_role}')>"
