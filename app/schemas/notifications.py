"""Pydantic schemas for Notifications module."""
from datetime import datetime
from typing import Optional, List
from uuid import UUID
from pydantic import BaseModel

from app.schemas.base import BaseResponseSchema


class NotificationResponse(BaseResponseSchema):
    """Response schema for Notification."""
    id: UUID
    receiver_id: Optional[UUID] = None
    receiver_role: Optional[str] = None
    notification_type: str
    title: str
    message: str
    entity_type: Optional[str] = None
    entity_id: Optional[UUID] = None
    is_read: bool = False
    read_at: Optional[datetime] = None
    created_at: datetime


class NotificationListResponse(BaseModel):
    """Response for listing notifications."""
    items: List[NotificationResponse]
    total: int
    unread_count: int = 0
