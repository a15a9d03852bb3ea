"""
Regularization Service.

Correction requests raised by employees against a past day:
- ATTENDANCE: fix check-in / check-out times on a day
- LEAVE: change what a day counted as (another leave type, or "Present")

Approving a LEAVE regularization moves one day between balances: the new
type is charged, the type the day originally counted against is refunded.
"""
import logging
import uuid
from datetime import datetime, timezone, date, timedelta
from decimal import Decimal
from typing import Optional, Dict, Any, List, Tuple

from fastapi import status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.hr import (
    AppliedBy, AttendanceStatus, Employee, HalfDayTarget, LeaveRequest, LeaveStatus,
    Regularization, RegularizationCategory, RegularizationStatus,
)
from app.models.notifications import NotificationType
from app.services.attendance_policy import (
    as_utc, build_manual_logs, calculate_working_hours, is_early_out_punch, is_late_punch,
    parse_hhmm, tenant_timezone,
)
from app.services.attendance_service import AttendanceService
from app.services.audit_service import AuditService
from app.services.leave_ledger import LeaveLedger, ZERO, consume, refund, to_days
from app.services.leave_service import ACTIVE_LEAVE_STATUSES, LeaveService, count_leave_days
from app.services.notification_service import NotificationService
from app.services.results import Failure, Result, forbidden, invalid_status, not_found

logger = logging.getLogger(__name__)

PRESENT_LEAVE_TYPE = "present"

# Original day values that never held a balance
_NON_LEAVE_TYPES = {"absent", "none", "present", ""}

ONE_DAY = Decimal("1")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def remaining_ranges(leave: LeaveRequest, day: date) -> List[Tuple[date, date, Optional[str]]]:
    """
    The parts of a leave left once `day` is taken out of it.

    Returns (start, end, half_day_target) per part; the half day stays with
    the part that still contains its date.
    """
    half_day_date = leave.half_day_date
    parts = []
    if day > leave.start_date:
        parts.append((leave.start_date, day - timedelta(days=1)))
    if day < leave.end_date:
        parts.append((day + timedelta(days=1), leave.end_date))

    ranges = []
    for start, end in parts:
        target = None
        if half_day_date is not None and start <= half_day_date <= end:
            target = HalfDayTarget.START.value if half_day_date == start else HalfDayTarget.END.value
        ranges.append((start, end, target))
    return ranges


class RegularizationService:
    """Service for attendance and leave regularization."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.attendance = AttendanceService(db)
        self.ledger = LeaveLedger(db)
        self.leaves = LeaveService(db)
        self.notifications = NotificationService(db)
        self.audit = AuditService(db)

    async def _get(self, regularization_id: uuid.UUID) -> Optional[Regularization]:
        result = await self.db.execute(
            select(Regularization)
            .options(selectinload(Regularization.employee))
            .where(Regularization.id == regularization_id)
        )
        return result.scalar_one_or_none()

    async def _covering_leave(self, employee_id: uuid.UUID, day: date) -> Optional[LeaveRequest]:
        result = await self.db.execute(
            select(LeaveRequest).where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES),
                LeaveRequest.start_date <= day,
                LeaveRequest.end_date >= day,
            )
        )
        return result.scalars().first()

    def _leave_conflict(self, leave: Optional[LeaveRequest], new_type: str) -> Optional[Failure]:
        """A day already under a leave can only be moved off an approved one of another type."""
        if leave is None:
            return None
        if leave.status == LeaveStatus.PENDING.value:
            return Failure(
                "LEAVE_PENDING",
                f"A pending {leave.leave_type} request covers this day; edit or cancel it instead",
                status_code=status.HTTP_409_CONFLICT,
                details={"leave_request_id": str(leave.id)},
            )
        if leave.leave_type.lower() == new_type.strip().lower():
            return Failure(
                "INVALID_REQUESTED_DATA",
                f"The day is already counted as {leave.leave_type}",
            )
        return None

    async def _snapshot(self, employee_id: uuid.UUID, day: date) -> Dict[str, Any]:
        """What the day looks like right now: attendance plus any covering leave."""
        record = await self.attendance.get_record(employee_id, day)
        leave = await self._covering_leave(employee_id, day)

        leave_type = None
        if leave is not None:
            leave_type = leave.leave_type
        elif record is not None:
            leave_type = record.leave_type

        return {
            "attendance": {
                "check_in": _iso(as_utc(record.check_in)) if record else None,
                "check_out": _iso(as_utc(record.check_out)) if record else None,
                "status": record.status if record else AttendanceStatus.ABSENT.value,
                "working_hours": float(record.working_hours or 0) if record else 0,
            },
            "overlapping_leave": {
                "id": str(leave.id),
                "leave_type": leave.leave_type,
                "status": leave.status,
            } if leave else None,
            "leave_type": leave_type,
        }

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create(
        self,
        actor: Employee,
        category: str,
        start_date: date,
        end_date: Optional[date] = None,
        issue_type: Optional[str] = None,
        requested_data: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
        attachment_url: Optional[str] = None,
    ) -> Result[Regularization]:
        category = category.value if hasattr(category, "value") else category
        end_date = end_date or start_date
        requested_data = dict(requested_data or {})

        if end_date < start_date:
            return Failure("INVALID_DATE_RANGE", "End date cannot be before start date")

        if category == RegularizationCategory.LEAVE.value:
            if end_date != start_date:
                return Failure("INVALID_DATE_RANGE", "Leave regularization applies to a single day")
            if not str(requested_data.get("leave_type") or "").strip():
                return Failure("INVALID_REQUESTED_DATA", "requested_data.leave_type is required")
        else:
            if not requested_data.get("check_in") and not requested_data.get("check_out"):
                return Failure("INVALID_REQUESTED_DATA", "requested_data needs check_in or check_out")
            for key in ("check_in", "check_out"):
                if requested_data.get(key):
                    try:
                        parse_hhmm(str(requested_data[key]))
                    except ValueError:
                        return Failure("INVALID_TIME", f"{key} must be HH:MM")

        settings_row = await self.attendance.get_settings()
        today = await self.attendance.local_today()
        if (start_date.year, start_date.month) < (today.year, today.month) and today.day > settings_row.attendance_lock_day:
            return Failure(
                "PAYROLL_LOCKED",
                f"Attendance for {start_date:%B %Y} is locked for payroll processing",
                details={"lock_day": settings_row.attendance_lock_day},
            )

        if category == RegularizationCategory.LEAVE.value:
            failure = self._leave_conflict(
                await self._covering_leave(actor.id, start_date), str(requested_data["leave_type"])
            )
            if failure:
                return failure

        regularization = Regularization(
            employee_id=actor.id,
            category=category,
            start_date=start_date,
            end_date=end_date,
            issue_type=issue_type,
            original_data=await self._snapshot(actor.id, start_date),
            requested_data=requested_data,
            reason=reason,
            attachment_url=attachment_url,
            status=RegularizationStatus.PENDING.value,
        )
        self.db.add(regularization)
        await self.db.flush()

        await self.notifications.notify_hr_and_manager(
            actor,
            NotificationType.REGULARIZATION_REQUEST,
            "New regularization request",
            f"{actor.full_name} requested a {category.lower()} regularization for {start_date}",
            entity_type="REGULARIZATION",
            entity_id=regularization.id,
        )
        await self.db.flush()
        logger.info(f"Regularization {regularization.id} ({category}) raised by {actor.employee_code}")
        return regularization

    # =========================================================================
    # APPROVE / REJECT
    # =========================================================================

    async def approve(
        self,
        actor: Employee,
        regularization_id: uuid.UUID,
        remark: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Result[Regularization]:
        if not remark or not remark.strip():
            return Failure("REMARK_REQUIRED", "Remark is mandatory when approving a regularization")

        regularization = await self._get(regularization_id)
        if regularization is None:
            return not_found("REGULARIZATION_NOT_FOUND", "Regularization not found")
        if not (actor.is_hr or regularization.employee.manager_id == actor.id):
            return forbidden("Only HR or the employee's manager can approve this regularization")
        if regularization.status != RegularizationStatus.PENDING.value:
            return invalid_status(regularization.status)

        if regularization.category == RegularizationCategory.ATTENDANCE.value:
            await self._apply_attendance(regularization, actor, remark.strip(), ip_address)
        else:
            covering = await self._covering_leave(regularization.employee_id, regularization.start_date)
            failure = self._leave_conflict(
                covering, str((regularization.requested_data or {}).get("leave_type"))
            )
            if failure:
                return failure
            await self._apply_leave(regularization, actor, covering, ip_address)

        regularization.status = RegularizationStatus.APPROVED.value
        regularization.approver_id = actor.id
        regularization.admin_remark = remark.strip()
        regularization.action_date = datetime.now(timezone.utc)
        await self.db.flush()

        await self.notifications.notify_employee(
            regularization.employee_id,
            NotificationType.REGULARIZATION_APPROVED,
            "Regularization approved",
            f"Your regularization for {regularization.start_date} has been approved",
            entity_type="REGULARIZATION",
            entity_id=regularization.id,
        )
        await self.db.flush()
        logger.info(f"Regularization {regularization.id} approved by {actor.employee_code}")
        return regularization

    async def _apply_attendance(
        self,
        regularization: Regularization,
        actor: Employee,
        remark: str,
        ip_address: Optional[str],
    ) -> None:
        """Rewrite the day's punches from the requested times. The ledger is untouched."""
        settings_row = await self.attendance.get_settings()
        tz = tenant_timezone(settings_row)
        day = regularization.start_date
        requested = regularization.requested_data or {}

        check_in = parse_hhmm(str(requested["check_in"])) if requested.get("check_in") else None
        check_out = parse_hhmm(str(requested["check_out"])) if requested.get("check_out") else None

        record = await self.attendance.get_or_create_record(
            regularization.employee_id, day, AttendanceStatus.PRESENT.value
        )
        if check_in is None and record.check_in is not None:
            check_in = as_utc(record.check_in).astimezone(tz).time()
        if check_out is None and record.check_out is not None:
            check_out = as_utc(record.check_out).astimezone(tz).time()

        logs, check_in_at, check_out_at = build_manual_logs(
            day, check_in, check_out, tz, location="Regularization", device="System"
        )
        record.logs = logs
        record.check_in = check_in_at
        record.check_out = check_out_at
        record.working_hours = calculate_working_hours(logs)
        record.is_late = bool(check_in_at and is_late_punch(check_in_at, day, settings_row, tz))
        record.is_early_out = bool(check_out_at and is_early_out_punch(check_out_at, day, settings_row, tz))
        record.status = AttendanceStatus.PRESENT.value
        record.is_manual_override = True
        record.override_reason = f"Regularization: {remark}"
        record.approved_by = actor.id
        await self.db.flush()

        await self.audit.log(
            action="ATTENDANCE_REGULARIZATION_APPROVED",
            entity_type="ATTENDANCE",
            entity_id=record.id,
            user_id=actor.id,
            old_values=(regularization.original_data or {}).get("attendance"),
            new_values={
                "check_in": _iso(check_in_at),
                "check_out": _iso(check_out_at),
                "status": record.status,
                "working_hours": float(record.working_hours),
            },
            description=f"Attendance regularized for {day}",
            ip_address=ip_address,
            meta={"regularization_id": str(regularization.id)},
        )

    async def _release_day(
        self,
        leave: LeaveRequest,
        day: date,
        regularization: Regularization,
    ) -> Decimal:
        """
        Take one day out of an approved leave and return the paid days it held.

        A one-day leave is cancelled; a day at either edge shrinks the range;
        a day in the middle splits it, the later part becoming a new approved
        request. Paid days go back to the parts in date order.
        """
        ranges = remaining_ranges(leave, day)
        counts = [count_leave_days(start, end, target is not None) for start, end, target in ranges]
        removed = to_days(leave.days_count) - sum(counts, ZERO)
        paid = to_days(leave.paid_leave_days)
        released = min(removed, paid)
        remaining_paid = paid - released
        meta = dict(leave.meta or {})
        meta["regularized_days"] = list(meta.get("regularized_days") or []) + [
            {"date": day.isoformat(), "regularization_id": str(regularization.id)}
        ]

        if not ranges:
            leave.status = LeaveStatus.CANCELLED.value
            leave.meta = meta
            await self.db.flush()
            logger.info(f"Leave {leave.id} superseded by regularization {regularization.id}")
            return released

        parts = []
        for (start, end, target), days in zip(ranges, counts):
            part_paid = min(remaining_paid, days)
            remaining_paid -= part_paid
            parts.append((start, end, target, days, part_paid))

        start, end, target, days, part_paid = parts[0]
        later = parts[1:]
        original_end = leave.end_date
        session = leave.half_day_session
        leave.start_date = start
        leave.end_date = end
        leave.is_half_day = target is not None
        leave.half_day_target = target
        leave.half_day_session = session if target else None
        leave.days_count = days
        leave.paid_leave_days = part_paid
        leave.unpaid_leave_days = days - part_paid
        leave.meta = meta

        for start, end, target, days, part_paid in later:
            self.db.add(LeaveRequest(
                employee_id=leave.employee_id,
                applied_by_id=leave.applied_by_id,
                applied_by_role=leave.applied_by_role,
                leave_type=leave.leave_type,
                start_date=start,
                end_date=end,
                is_half_day=target is not None,
                half_day_target=target,
                half_day_session=session if target else None,
                days_count=days,
                paid_leave_days=part_paid,
                unpaid_leave_days=days - part_paid,
                year=leave.year,
                reason=leave.reason,
                status=LeaveStatus.APPROVED.value,
                approver_id=leave.approver_id,
                approved_at=leave.approved_at,
                admin_remark=leave.admin_remark,
                meta={"split_from": str(leave.id), "regularization_id": str(regularization.id)},
            ))
        await self.db.flush()
        logger.info(
            f"Leave {leave.id} ({leave.leave_type} ..{original_end}) released {day} "
            f"for regularization {regularization.id}"
        )
        return released

    async def _apply_leave(
        self,
        regularization: Regularization,
        actor: Employee,
        covering: Optional[LeaveRequest],
        ip_address: Optional[str],
    ) -> None:
        """Move one day from the original leave type to the requested one."""
        employee = regularization.employee
        day = regularization.start_date
        year = await self.attendance.cycle_year(day)
        requested = regularization.requested_data or {}
        original = regularization.original_data or {}

        new_type = str(requested.get("leave_type")).strip()
        is_present = new_type.lower() == PRESENT_LEAVE_TYPE

        new_balance = None
        if not is_present:
            new_balance = await self.ledger.get_balance(employee.id, new_type, year)
            if new_balance is not None:
                used_before = new_balance.used
                consume(new_balance, ONE_DAY)
                await self.audit.log_balance_adjustment(
                    "REGULARIZATION_DEDUCT", new_balance, used_before,
                    f"1 day of {new_type} charged for {day}",
                    user_id=actor.id,
                    ip_address=ip_address,
                    meta={"regularization_id": str(regularization.id)},
                )

        if covering is not None:
            old_type = covering.leave_type
            old_year = covering.year
            refund_days = await self._release_day(covering, day, regularization)
        else:
            old_type = original.get("leave_type") or requested.get("original_leave_type")
            old_year = year
            refund_days = ONE_DAY

        if (
            old_type and refund_days > 0
            and str(old_type).strip().lower() not in _NON_LEAVE_TYPES and old_type != new_type
        ):
            old_balance = await self.ledger.get_balance(employee.id, old_type, old_year)
            if old_balance is not None:
                used_before = old_balance.used
                refund(old_balance, refund_days)
                await self.audit.log_balance_adjustment(
                    "REGULARIZATION_REFUND", old_balance, used_before,
                    f"{refund_days} day of {old_type} refunded for {day}",
                    user_id=actor.id,
                    ip_address=ip_address,
                    meta={"regularization_id": str(regularization.id)},
                )

        if is_present:
            record = await self.attendance.get_or_create_record(
                employee.id, day, AttendanceStatus.PRESENT.value
            )
            record.status = AttendanceStatus.PRESENT.value
            record.leave_type = None
            record.leave_color = None
            await self.db.flush()
            return

        paid = ONE_DAY if new_balance is not None else Decimal("0")
        leave = LeaveRequest(
            employee_id=employee.id,
            applied_by_id=actor.id,
            applied_by_role=AppliedBy.HR.value,
            leave_type=new_type,
            start_date=day,
            end_date=day,
            is_half_day=False,
            days_count=ONE_DAY,
            paid_leave_days=paid,
            unpaid_leave_days=ONE_DAY - paid,
            year=year,
            reason=f"Regularization: {regularization.reason or ''}".strip(),
            status=LeaveStatus.APPROVED.value,
            approver_id=actor.id,
            approved_at=datetime.now(timezone.utc),
            meta={"regularization_id": str(regularization.id)},
        )
        self.db.add(leave)
        await self.db.flush()
        await self.leaves.sync_leave_to_attendance(leave, employee)

    async def reject(
        self,
        actor: Employee,
        regularization_id: uuid.UUID,
        remark: Optional[str] = None,
    ) -> Result[Regularization]:
        regularization = await self._get(regularization_id)
        if regularization is None:
            return not_found("REGULARIZATION_NOT_FOUND", "Regularization not found")
        if not (actor.is_hr or regularization.employee.manager_id == actor.id):
            return forbidden("Only HR or the employee's manager can reject this regularization")
        if regularization.status != RegularizationStatus.PENDING.value:
            return invalid_status(regularization.status)

        regularization.status = RegularizationStatus.REJECTED.value
        regularization.approver_id = actor.id
        regularization.admin_remark = remark
        regularization.action_date = datetime.now(timezone.utc)
        await self.db.flush()

        await self.notifications.notify_employee(
            regularization.employee_id,
            NotificationType.REGULARIZATION_REJECTED,
            "Regularization rejected",
            f"Your regularization for {regularization.start_date} was rejected"
            + (f": {remark}" if remark else ""),
            entity_type="REGULARIZATION",
            entity_id=regularization.id,
        )
        await self.db.flush()
        logger.info(f"Regularization {regularization.id} rejected by {actor.employee_code}")
        return regularization

    # =========================================================================
    # LISTINGS
    # =========================================================================

    async def _paginate(self, query, skip: int, limit: int) -> Tuple[List[Regularization], int]:
        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        result = await self.db.execute(
            query.order_by(Regularization.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all()), total

    async def mine(
        self,
        employee: Employee,
        status_value: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Regularization], int]:
        query = select(Regularization).where(Regularization.employee_id == employee.id)
        if status_value:
            query = query.where(Regularization.status == status_value)
        return await self._paginate(query, skip, limit)

    async def for_reviewer(
        self,
        actor: Employee,
        status_value: Optional[str] = RegularizationStatus.PENDING.value,
        category: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Regularization], int]:
        """HR see every request; a manager sees their direct reports' requests."""
        query = select(Regularization)
        if not actor.is_hr:
            query = query.join(Employee, Employee.id == Regularization.employee_id).where(
                Employee.manager_id == actor.id
            )
        if status_value:
            query = query.where(Regularization.status == status_value)
        if category:
            query = query.where(Regularization.category == category)
        return await self._paginate(query, skip, limit)
