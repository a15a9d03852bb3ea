from typing import Optional, Dict, Any
from decimal import Decimal
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditLog
from app.models.hr import LeaveBalance


class AuditService:
    """
    Audit trail for attendance, leave and regularization events.

    Rows are added to the caller's session and flushed; committing is left
    to the caller so an audit row lands or rolls back with the change it
    describes.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[uuid.UUID] = None,
        user_id: Optional[uuid.UUID] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: What happened (MANUAL_OVERRIDE, BULK_UPLOAD_EXCEL, ...)
            entity_type: Kind of row affected (ATTENDANCE, LEAVE_BALANCE, ...)
            entity_id: ID of the affected row, when there is one
            user_id: Employee who acted
            old_values / new_values: Before and after snapshots
            meta: Extra context (distance, radius, row counts, ...)
        """
        audit_log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            old_values=old_values,
            new_values=new_values,
            description=description,
            ip_address=ip_address,
            user_agent=user_agent,
            meta=meta,
        )
        self.db.add(audit_log)
        await self.db.flush()
        return audit_log

    async def log_location_violation(
        self,
        action: str,
        employee_id: uuid.UUID,
        error: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        ip_address: Optional[str] = None,
        distance: Optional[float] = None,
        radius: Optional[int] = None,
    ) -> AuditLog:
        """Log a punch refused by the geofence or the IP allow-list."""
        meta: Dict[str, Any] = {"client_ip": ip_address}
        if distance is not None:
            meta["distance_m"] = round(distance, 1)
        if radius is not None:
            meta["allowed_radius_m"] = radius
        return await self.log(
            action=action,
            entity_type="ATTENDANCE",
            user_id=employee_id,
            new_values={"latitude": latitude, "longitude": longitude, "error": error},
            description=error,
            ip_address=ip_address,
            meta=meta,
        )

    async def log_balance_adjustment(
        self,
        action: str,
        balance: LeaveBalance,
        used_before: Decimal,
        description: str,
        user_id: Optional[uuid.UUID] = None,
        ip_address: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """Log a direct change to a balance's used days outside the request lifecycle."""
        return await self.log(
            action=action,
            entity_type="LEAVE_BALANCE",
            entity_id=balance.id,
            user_id=user_id,
            old_values={"used": float(used_before)},
            new_values={"used": float(balance.used)},
            description=description,
            ip_address=ip_address,
            meta=meta,
        )
