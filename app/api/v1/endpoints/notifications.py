"""API endpoints for in-app notifications."""
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from app.api.deps import TenantDB, CurrentUser
from app.schemas.notifications import NotificationResponse, NotificationListResponse
from app.services.notification_service import NotificationService

router = APIRouter()


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    db: TenantDB,
    current_user: CurrentUser,
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
):
    """Notifications addressed to the current employee or broadcast to their role."""
    items, total, unread = await NotificationService(db).list_for(
        current_user, unread_only=unread_only, limit=limit
    )
    return NotificationListResponse(items=items, total=total, unread_count=unread)


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: UUID,
    db: TenantDB,
    current_user: CurrentUser,
):
    notification = await NotificationService(db).mark_read(current_user, notification_id)
    if notification is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found"
        )
    await db.commit()
    return notification
