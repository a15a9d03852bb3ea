"""
In-app notification service.

Notifications are rows in the tenant store, addressed to one employee or
broadcast to a role. Outbound email/SMS is not sent from here.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, List, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.hr import Employee, EmployeeRole, HR_ROLES
from app.models.notifications import Notification, NotificationType

logger = logging.getLogger(__name__)


class NotificationService:
    """Create and read in-app notifications."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def notify_employee(
        self,
        receiver_id: uuid.UUID,
        notification_type: NotificationType,
        title: str,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        notification = Notification(
            receiver_id=receiver_id,
            notification_type=notification_type.value,
            title=title,
            message=message,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        self.db.add(notification)
        logger.debug(f"Notification {notification_type.value} queued for employee {receiver_id}")
        return notification

    async def notify_role(
        self,
        role: EmployeeRole,
        notification_type: NotificationType,
        title: str,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        notification = Notification(
            receiver_role=role.value,
            notification_type=notification_type.value,
            title=title,
            message=message,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        self.db.add(notification)
        logger.debug(f"Notification {notification_type.value} broadcast to role {role.value}")
        return notification

    async def notify_hr_and_manager(
        self,
        employee: Employee,
        notification_type: NotificationType,
        title: str,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Fan out a request raised by an employee to HR and their direct manager."""
        await self.notify_role(
            EmployeeRole.HR, notification_type, title, message, entity_type, entity_id
        )
        if employee.manager_id:
            await self.notify_employee(
                employee.manager_id, notification_type, title, message, entity_type, entity_id
            )

    def _visible_to(self, employee: Employee):
        roles = [employee.role]
        if employee.role in HR_ROLES:
            roles.append(EmployeeRole.HR.value)
        return or_(
            Notification.receiver_id == employee.id,
            Notification.receiver_role.in_(roles),
        )

    async def list_for(
        self,
        employee: Employee,
        unread_only: bool = False,
        limit: int = 50,
    ) -> Tuple[List[Notification], int, int]:
        """Notifications for an employee, including role broadcasts. Returns (items, total, unread)."""
        base = select(Notification).where(self._visible_to(employee))
        if unread_only:
            base = base.where(Notification.is_read == False)  # noqa: E712

        total = (await self.db.execute(
            select(func.count()).select_from(base.subquery())
        )).scalar() or 0

        unread = (await self.db.execute(
            select(func.count())
            .select_from(Notification)
            .where(self._visible_to(employee), Notification.is_read == False)  # noqa: E712
        )).scalar() or 0

        result = await self.db.execute(
            base.order_by(Notification.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all()), total, unread

    async def mark_read(self, employee: Employee, notification_id: uuid.UUID) -> Optional[Notification]:
        result = await self.db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                self._visible_to(employee),
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            return None

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.now(timezone.utc)
        return notification
