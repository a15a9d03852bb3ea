"""
Leave Request Service.

Request lifecycle on top of the balance ledger:

    apply   -> PENDING (reserve paid days)          self-filed
            -> APPROVED (consume paid days)         filed by HR for someone else
    approve PENDING -> APPROVED (commit paid days)
    reject  PENDING -> REJECTED (release paid days)
    cancel  PENDING -> CANCELLED (release paid days)
    edit    PENDING -> PENDING (re-split and move the difference)

Only the paid portion of a request moves through the ledger. When the
balance cannot cover the whole range the remainder is booked as unpaid
(loss of pay) instead of rejecting the request.
"""
import logging
import uuid
from datetime import datetime, timezone, timedelta, date
from decimal import Decimal
from typing import Optional, List, Dict, Any, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.models.hr import (
    AppliedBy, AttendanceStatus, Employee, HalfDayTarget, Holiday, LeaveBalance,
    LeaveRequest, LeaveStatus, is_unpaid_leave_type,
)
from app.models.notifications import NotificationType
from app.services.attendance_policy import is_weekly_off
from app.services.attendance_service import AttendanceService
from app.services.leave_ledger import LeaveLedger, ZERO, to_days, commit, consume, release, reserve
from app.services.leave_policy_service import LeavePolicyService
from app.services.notification_service import NotificationService
from app.services.results import Failure, Result, forbidden, invalid_status, not_found

logger = logging.getLogger(__name__)

ACTIVE_LEAVE_STATUSES = (LeaveStatus.PENDING.value, LeaveStatus.APPROVED.value)

HALF_DAY = Decimal("0.5")


def count_leave_days(start_date: date, end_date: date, is_half_day: bool) -> Decimal:
    """Calendar days in the range, less half a day for a half-day request."""
    days = Decimal((end_date - start_date).days + 1)
    if is_half_day:
        days -= HALF_DAY
    return days


def resolve_half_day_target(
    is_half_day: bool,
    target: Optional[str],
    end_date_given: bool,
) -> Optional[str]:
    """Half-day boundary: as requested, else END when a range was given, else START."""
    if not is_half_day:
        return None
    if target:
        return target.value if isinstance(target, HalfDayTarget) else str(target)
    return HalfDayTarget.END.value if end_date_given else HalfDayTarget.START.value


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


class LeaveService:
    """Service for leave requests and balances."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LeaveLedger(db)
        self.attendance = AttendanceService(db)
        self.notifications = NotificationService(db)
        self.policies = LeavePolicyService(db)

    # =========================================================================
    # VALIDATION HELPERS
    # =========================================================================

    async def _validate_range(
        self,
        employee_id: uuid.UUID,
        start_date: date,
        end_date: date,
        allow_past: bool,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> Optional[Failure]:
        """Checks shared by apply and edit, in order. Returns the first failure."""
        if not allow_past and start_date < await self.attendance.local_today():
            return Failure("PAST_DATE", "Cannot apply leave for past dates")

        if end_date < start_date:
            return Failure("INVALID_DATE_RANGE", "End date cannot be before start date")

        settings_row = await self.attendance.get_settings()
        for boundary in (start_date, end_date):
            if is_weekly_off(boundary, settings_row):
                return Failure(
                    "WEEKLY_OFF_DATE",
                    f"Leave cannot start or end on a weekly off ({boundary:%A}, {boundary})",
                    details={"date": str(boundary)},
                )

        result = await self.db.execute(
            select(Holiday)
            .where(Holiday.holiday_date.in_([start_date, end_date]))
            .order_by(Holiday.holiday_date)
        )
        holiday = result.scalars().first()
        if holiday is not None:
            return Failure(
                "HOLIDAY_DATE",
                f"Leave cannot start or end on a holiday: {holiday.name} ({holiday.holiday_date})",
                details={"date": str(holiday.holiday_date), "holiday": holiday.name},
            )

        query = select(LeaveRequest).where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES),
            LeaveRequest.start_date <= end_date,
            LeaveRequest.end_date >= start_date,
        )
        if exclude_id is not None:
            query = query.where(LeaveRequest.id != exclude_id)
        overlapping = (await self.db.execute(query)).scalars().first()
        if overlapping is not None:
            return Failure(
                "OVERLAPPING_LEAVE",
                f"Leave overlaps an existing {overlapping.status.lower()} request "
                f"({overlapping.start_date} to {overlapping.end_date})",
                details={"conflicting_leave_id": str(overlapping.id)},
            )
        return None

    async def _split_paid(
        self,
        employee_id: uuid.UUID,
        leave_type: str,
        year: int,
        days: Decimal,
    ) -> Tuple[Decimal, Decimal, Optional[LeaveBalance]]:
        """(paid, unpaid, balance) for a request of `days` against the current balance."""
        if is_unpaid_leave_type(leave_type):
            return ZERO, days, None

        balance = await self.ledger.get_balance(employee_id, leave_type, year)
        if balance is None:
            return ZERO, days, None

        paid = min(max(to_days(balance.available), ZERO), days)
        return paid, days - paid, balance

    async def _get_request(self, request_id: uuid.UUID) -> Optional[LeaveRequest]:
        result = await self.db.execute(
            select(LeaveRequest)
            .options(selectinload(LeaveRequest.employee))
            .where(LeaveRequest.id == request_id)
        )
        return result.scalar_one_or_none()

    async def get_leave(self, actor: Employee, request_id: uuid.UUID) -> Result[LeaveRequest]:
        """A request visible to its employee, their manager or HR."""
        leave = await self._get_request(request_id)
        if leave is None:
            return not_found("LEAVE_NOT_FOUND", "Leave request not found")
        if leave.employee_id != actor.id and not self._can_decide(actor, leave.employee):
            return forbidden("You can only view your own or your team's leave requests")
        return leave

    @staticmethod
    def _can_decide(actor: Employee, employee: Employee) -> bool:
        return actor.is_hr or employee.manager_id == actor.id

    @staticmethod
    def _label(leave_type: str, unpaid: Decimal) -> str:
        return f"{leave_type} (Partial LOP)" if unpaid > 0 else leave_type

    # =========================================================================
    # APPLY
    # =========================================================================

    async def apply_leave(
        self,
        actor: Employee,
        leave_type: str,
        start_date: date,
        end_date: Optional[date] = None,
        is_half_day: bool = False,
        half_day_target: Optional[str] = None,
        half_day_session: Optional[str] = None,
        reason: Optional[str] = None,
        employee_id: Optional[uuid.UUID] = None,
    ) -> Result[LeaveRequest]:
        """
        File a leave request.

        HR roles may file for another employee; such requests are approved
        immediately and consume balance directly.
        """
        leave_type = leave_type.strip()
        employee = actor
        on_behalf = employee_id is not None and employee_id != actor.id

        if on_behalf:
            if not actor.is_hr:
                return forbidden("Only HR can apply leave on behalf of another employee")
            employee = await self.db.get(Employee, employee_id)
            if employee is None:
                return not_found("EMPLOYEE_NOT_FOUND", "Employee not found")

        end_given = end_date is not None
        end_date = end_date or start_date

        failure = await self._validate_range(employee.id, start_date, end_date, allow_past=actor.is_hr)
        if failure:
            return failure

        target = resolve_half_day_target(is_half_day, half_day_target, end_given)
        days = count_leave_days(start_date, end_date, is_half_day)
        if days <= 0:
            return Failure("INVALID_DAYS", "Leave duration must be greater than zero")

        year = await self.attendance.cycle_year(start_date)
        paid, unpaid, balance = await self._split_paid(employee.id, leave_type, year, days)

        now = datetime.now(timezone.utc)
        leave = LeaveRequest(
            employee_id=employee.id,
            applied_by_id=actor.id,
            applied_by_role=AppliedBy.HR.value if on_behalf else AppliedBy.EMPLOYEE.value,
            leave_type=leave_type,
            start_date=start_date,
            end_date=end_date,
            is_half_day=is_half_day,
            half_day_target=target,
            half_day_session=_enum_value(half_day_session) if is_half_day else None,
            days_count=days,
            paid_leave_days=paid,
            unpaid_leave_days=unpaid,
            year=year,
            reason=reason,
            status=LeaveStatus.APPROVED.value if on_behalf else LeaveStatus.PENDING.value,
            approver_id=actor.id if on_behalf else None,
            approved_at=now if on_behalf else None,
        )
        self.db.add(leave)

        if balance is not None and paid > 0:
            if on_behalf:
                consume(balance, paid)
            else:
                reserve(balance, paid)

        await self.db.flush()

        label = self._label(leave_type, unpaid)
        if on_behalf:
            await self.sync_leave_to_attendance(leave, employee)
            await self.notifications.notify_employee(
                employee.id,
                NotificationType.LEAVE_APPLIED_BY_HR,
                "Leave applied by HR",
                f"HR applied {label} for you from {start_date} to {end_date} ({days} day(s))",
                entity_type="LEAVE_REQUEST",
                entity_id=leave.id,
            )
        else:
            await self.notifications.notify_hr_and_manager(
                employee,
                NotificationType.LEAVE_REQUEST,
                "New leave request",
                f"{employee.full_name} applied for {label} from {start_date} to {end_date} ({days} day(s))",
                entity_type="LEAVE_REQUEST",
                entity_id=leave.id,
            )

        await self.db.flush()
        logger.info(
            f"Leave {leave.status} for {employee.employee_code}: {leave_type} "
            f"{start_date}..{end_date}, paid {paid}, unpaid {unpaid}"
        )
        return leave

    # =========================================================================
    # APPROVE / REJECT
    # =========================================================================

    async def approve_leave(
        self,
        actor: Employee,
        request_id: uuid.UUID,
        remark: Optional[str] = None,
    ) -> Result[LeaveRequest]:
        leave = await self._get_request(request_id)
        if leave is None:
            return not_found("LEAVE_NOT_FOUND", "Leave request not found")
        if not self._can_decide(actor, leave.employee):
            return forbidden("Only HR or the employee's manager can approve this leave")
        if leave.status != LeaveStatus.PENDING.value:
            return invalid_status(leave.status)

        paid = to_days(leave.paid_leave_days)
        if paid > 0:
            balance = await self.ledger.get_balance(leave.employee_id, leave.leave_type, leave.year)
            if balance is not None:
                commit(balance, paid)

        leave.status = LeaveStatus.APPROVED.value
        leave.approver_id = actor.id
        leave.approved_at = datetime.now(timezone.utc)
        leave.admin_remark = remark
        await self.db.flush()

        await self.sync_leave_to_attendance(leave, leave.employee)
        await self.notifications.notify_employee(
            leave.employee_id,
            NotificationType.LEAVE_APPROVED,
            "Leave approved",
            f"Your {self._label(leave.leave_type, to_days(leave.unpaid_leave_days))} from "
            f"{leave.start_date} to {leave.end_date} has been approved",
            entity_type="LEAVE_REQUEST",
            entity_id=leave.id,
        )
        await self.db.flush()
        logger.info(f"Leave {leave.id} approved by {actor.employee_code}")
        return leave

    async def reject_leave(
        self,
        actor: Employee,
        request_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> Result[LeaveRequest]:
        leave = await self._get_request(request_id)
        if leave is None:
            return not_found("LEAVE_NOT_FOUND", "Leave request not found")
        if not self._can_decide(actor, leave.employee):
            return forbidden("Only HR or the employee's manager can reject this leave")
        if leave.status != LeaveStatus.PENDING.value:
            return invalid_status(leave.status)

        await self._release_paid(leave)

        leave.status = LeaveStatus.REJECTED.value
        leave.approver_id = actor.id
        leave.admin_remark = reason
        leave.rejection_reason = reason
        await self.db.flush()

        await self.notifications.notify_employee(
            leave.employee_id,
            NotificationType.LEAVE_REJECTED,
            "Leave rejected",
            f"Your {leave.leave_type} from {leave.start_date} to {leave.end_date} was rejected"
            + (f": {reason}" if reason else ""),
            entity_type="LEAVE_REQUEST",
            entity_id=leave.id,
        )
        await self.db.flush()
        logger.info(f"Leave {leave.id} rejected by {actor.employee_code}")
        return leave

    async def _release_paid(self, leave: LeaveRequest) -> None:
        paid = to_days(leave.paid_leave_days)
        if paid <= 0:
            return
        balance = await self.ledger.get_balance(leave.employee_id, leave.leave_type, leave.year)
        if balance is not None:
            release(balance, paid)

    # =========================================================================
    # EDIT / CANCEL
    # =========================================================================

    async def edit_leave(
        self,
        actor: Employee,
        request_id: uuid.UUID,
        changes: Dict[str, Any],
    ) -> Result[LeaveRequest]:
        """
        Edit a PENDING request owned by the actor.

        Same type and cycle: the pending hold moves by the change in paid days,
        with the request's own hold counted as available. New type: the new
        bucket must cover the whole range before anything moves.
        """
        leave = await self._get_request(request_id)
        if leave is None:
            return not_found("LEAVE_NOT_FOUND", "Leave request not found")
        if leave.employee_id != actor.id:
            return forbidden("You can only edit your own leave requests")
        if leave.status != LeaveStatus.PENDING.value:
            return invalid_status(leave.status)

        new_type = (changes.get("leave_type") or leave.leave_type).strip()
        start_date = changes.get("start_date") or leave.start_date
        # A new start without an end makes a one-day request
        end_date = changes.get("end_date") or (changes.get("start_date") or leave.end_date)
        is_half_day = changes["is_half_day"] if changes.get("is_half_day") is not None else leave.is_half_day
        target_input = changes.get("half_day_target") or (leave.half_day_target if is_half_day else None)
        session_input = changes.get("half_day_session") or (leave.half_day_session if is_half_day else None)

        failure = await self._validate_range(
            leave.employee_id, start_date, end_date, allow_past=actor.is_hr, exclude_id=leave.id
        )
        if failure:
            return failure

        target = resolve_half_day_target(is_half_day, target_input, end_date != start_date)
        new_days = count_leave_days(start_date, end_date, is_half_day)
        if new_days <= 0:
            return Failure("INVALID_DAYS", "Leave duration must be greater than zero")

        new_year = await self.attendance.cycle_year(start_date)
        old_paid = to_days(leave.paid_leave_days)
        same_bucket = new_type == leave.leave_type and new_year == leave.year

        if same_bucket:
            balance = None
            if not is_unpaid_leave_type(new_type):
                balance = await self.ledger.get_balance(leave.employee_id, new_type, new_year)
            if balance is None:
                new_paid = ZERO
            else:
                capacity = max(to_days(balance.available), ZERO) + old_paid
                new_paid = min(capacity, new_days)
                delta = new_paid - old_paid
                if delta > 0:
                    reserve(balance, delta)
                elif delta < 0:
                    release(balance, -delta)
        else:
            new_balance = None
            new_paid = ZERO
            if not is_unpaid_leave_type(new_type):
                new_balance = await self.ledger.get_balance(leave.employee_id, new_type, new_year)
                available = to_days(new_balance.available) if new_balance else ZERO
                if new_balance is None or available < new_days:
                    return Failure(
                        "INSUFFICIENT_BALANCE",
                        f"Insufficient {new_type} balance. Available: {available}, Requested: {new_days}",
                        details={"available": float(available), "requested": float(new_days)},
                    )
                new_paid = new_days

            await self._release_paid(leave)
            if new_balance is not None and new_paid > 0:
                reserve(new_balance, new_paid)

        old_summary = f"{leave.leave_type} {leave.start_date}..{leave.end_date}"
        leave.leave_type = new_type
        leave.start_date = start_date
        leave.end_date = end_date
        leave.is_half_day = is_half_day
        leave.half_day_target = target
        leave.half_day_session = _enum_value(session_input) if is_half_day else None
        leave.days_count = new_days
        leave.paid_leave_days = new_paid
        leave.unpaid_leave_days = new_days - new_paid
        leave.year = new_year
        if "reason" in changes:
            leave.reason = changes["reason"]
        await self.db.flush()

        await self.notifications.notify_hr_and_manager(
            leave.employee,
            NotificationType.LEAVE_UPDATED,
            "Leave request updated",
            f"{leave.employee.full_name} changed {old_summary} to "
            f"{self._label(new_type, leave.unpaid_leave_days)} {start_date}..{end_date}",
            entity_type="LEAVE_REQUEST",
            entity_id=leave.id,
        )
        await self.db.flush()
        logger.info(f"Leave {leave.id} edited: {new_days} day(s), paid {new_paid}")
        return leave

    async def cancel_leave(self, actor: Employee, request_id: uuid.UUID) -> Result[LeaveRequest]:
        leave = await self._get_request(request_id)
        if leave is None:
            return not_found("LEAVE_NOT_FOUND", "Leave request not found")
        if leave.employee_id != actor.id:
            return forbidden("You can only cancel your own leave requests")
        if leave.status == LeaveStatus.APPROVED.value:
            return Failure(
                "CANNOT_CANCEL_APPROVED",
                "Approved leaves cannot be cancelled directly. "
                "Please use Attendance Regularization if you were present.",
            )
        if leave.status != LeaveStatus.PENDING.value:
            return invalid_status(leave.status)

        await self._release_paid(leave)
        leave.status = LeaveStatus.CANCELLED.value
        await self.db.flush()

        await self.notifications.notify_hr_and_manager(
            leave.employee,
            NotificationType.LEAVE_CANCELLED,
            "Leave request cancelled",
            f"{leave.employee.full_name} cancelled {leave.leave_type} "
            f"from {leave.start_date} to {leave.end_date}",
            entity_type="LEAVE_REQUEST",
            entity_id=leave.id,
        )
        await self.db.flush()
        logger.info(f"Leave {leave.id} cancelled by {actor.employee_code}")
        return leave

    # =========================================================================
    # ATTENDANCE SYNC
    # =========================================================================

    async def leave_color(self, employee: Employee, leave_type: str) -> str:
        policy = await self.policies.find_applicable_policy(employee)
        rule = policy.rule_for(leave_type) if policy else None
        return (rule.color if rule and rule.color else None) or settings.DEFAULT_LEAVE_COLOR

    async def sync_leave_to_attendance(self, leave: LeaveRequest, employee: Employee) -> None:
        """Mark every day of an approved request as LEAVE (HALF_DAY on the half-day date)."""
        color = await self.leave_color(employee, leave.leave_type)
        half_day_date = leave.half_day_date

        day = leave.start_date
        while day <= leave.end_date:
            status_value = (
                AttendanceStatus.HALF_DAY.value if day == half_day_date else AttendanceStatus.LEAVE.value
            )
            record = await self.attendance.get_or_create_record(employee.id, day, status_value)
            record.status = status_value
            record.leave_type = leave.leave_type
            record.leave_color = color
            day += timedelta(days=1)

        await self.db.flush()
        logger.debug(f"Synced leave {leave.id} to attendance ({leave.start_date}..{leave.end_date})")

    # =========================================================================
    # LISTINGS & BALANCES
    # =========================================================================

    async def _paginate(self, query, skip: int, limit: int) -> Tuple[List[LeaveRequest], int]:
        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        result = await self.db.execute(
            query.options(selectinload(LeaveRequest.employee))
            .order_by(LeaveRequest.start_date.desc(), LeaveRequest.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def my_leaves(
        self,
        employee: Employee,
        status_value: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[LeaveRequest], int]:
        query = select(LeaveRequest).where(LeaveRequest.employee_id == employee.id)
        if status_value:
            query = query.where(LeaveRequest.status == status_value)
        return await self._paginate(query, skip, limit)

    async def team_leaves(
        self,
        manager: Employee,
        status_value: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[LeaveRequest], int]:
        """Requests of the manager's direct reports."""
        query = (
            select(LeaveRequest)
            .join(Employee, Employee.id == LeaveRequest.employee_id)
            .where(Employee.manager_id == manager.id)
        )
        if status_value:
            query = query.where(LeaveRequest.status == status_value)
        return await self._paginate(query, skip, limit)

    async def all_leaves(
        self,
        status_value: Optional[str] = None,
        employee_id: Optional[uuid.UUID] = None,
        leave_type: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[LeaveRequest], int]:
        query = select(LeaveRequest)
        if status_value:
            query = query.where(LeaveRequest.status == status_value)
        if employee_id:
            query = query.where(LeaveRequest.employee_id == employee_id)
        if leave_type:
            query = query.where(LeaveRequest.leave_type == leave_type)
        if start_date:
            query = query.where(LeaveRequest.end_date >= start_date)
        if end_date:
            query = query.where(LeaveRequest.start_date <= end_date)
        return await self._paginate(query, skip, limit)

    async def my_balances(self, employee: Employee, year: Optional[int] = None) -> Dict[str, Any]:
        """
        Balances for a cycle year (current one by default), seeded from the
        applicable policy when the employee has none yet.
        """
        if year is None:
            year = await self.attendance.cycle_year(await self.attendance.local_today())

        balances = await self.ledger.balances_for(employee.id, year)
        policy = await self.policies.find_applicable_policy(employee)

        if not balances and policy is not None and policy.rules:
            balances = await self.ledger.initialise_from_policy(employee.id, policy, year)

        colors = {rule.leave_type: rule.color for rule in (policy.rules if policy else [])}
        return {
            "employee_id": employee.id,
            "year": year,
            "balances": [
                {
                    "id": b.id,
                    "employee_id": b.employee_id,
                    "leave_type": b.leave_type,
                    "year": b.year,
                    "total": float(b.total),
                    "used": float(b.used),
                    "pending": float(b.pending),
                    "available": float(b.available),
                    "version": b.version,
                    "color": colors.get(b.leave_type) or settings.DEFAULT_LEAVE_COLOR,
                }
                for b in balances
            ],
        }
