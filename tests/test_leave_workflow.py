"""
Leave request lifecycle against the balance ledger.
"""
import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.models.hr import AttendanceStatus, HalfDayTarget, Holiday, LeaveStatus
from app.models.notifications import Notification, NotificationType
from app.services.attendance_service import AttendanceService
from app.services.leave_service import LeaveService, count_leave_days, resolve_half_day_target
from app.services.results import Failure

from conftest import assert_ledger_consistent, next_weekday


@pytest.fixture
def monday():
    """A Monday at least a week ahead."""
    return next_weekday(0)


@pytest.fixture
async def cl_balance(employee, add_balance, monday):
    """12 days of CL for the employee in the cycle of `monday`."""
    return await add_balance(employee, "CL", 12, monday.year)


class TestDayCounting:

    def test_calendar_days_inclusive(self):
        assert count_leave_days(date(2026, 3, 2), date(2026, 3, 4), False) == Decimal("3")

    def test_half_day_takes_off_half(self):
        assert count_leave_days(date(2026, 3, 2), date(2026, 3, 4), True) == Decimal("2.5")
        assert count_leave_days(date(2026, 3, 2), date(2026, 3, 2), True) == Decimal("0.5")

    @pytest.mark.parametrize("is_half_day,target,end_given,expected", [
        (False, None, True, None),
        (True, None, True, "END"),
        (True, None, False, "START"),
        (True, HalfDayTarget.START, True, "START"),
        (True, "END", False, "END"),
    ])
    def test_half_day_target(self, is_half_day, target, end_given, expected):
        assert resolve_half_day_target(is_half_day, target, end_given) == expected


class TestApply:
    """Filing a request"""

    async def test_pending_request_reserves_paid_days(self, db, employee, manager, cl_balance, monday):
        leave = await LeaveService(db).apply_leave(
            employee, "CL", monday, monday + timedelta(days=2), reason="Family trip"
        )

        assert leave.status == LeaveStatus.PENDING.value
        assert leave.days_count == Decimal("3")
        assert leave.paid_leave_days == Decimal("3.0")
        assert leave.unpaid_leave_days == Decimal("0.0")
        assert cl_balance.pending == Decimal("3.0")
        assert cl_balance.available == Decimal("9.0")
        assert_ledger_consistent(cl_balance)

        result = await db.execute(
            select(Notification).where(Notification.notification_type == NotificationType.LEAVE_REQUEST.value)
        )
        receivers = {(n.receiver_id, n.receiver_role) for n in result.scalars().all()}
        assert (None, "HR") in receivers
        assert (manager.id, None) in receivers

    async def test_short_balance_books_remainder_as_unpaid(self, db, employee, add_balance, monday):
        balance = await add_balance(employee, "CL", 2, monday.year)

        leave = await LeaveService(db).apply_leave(employee, "CL", monday, monday + timedelta(days=2))

        assert leave.paid_leave_days == Decimal("2.0")
        assert leave.unpaid_leave_days == Decimal("1.0")
        assert balance.pending == Decimal("2.0")
        assert balance.available == Decimal("0.0")
        assert_ledger_consistent(balance)

    async def test_unpaid_type_never_touches_a_balance(self, db, employee, cl_balance, monday):
        leave = await LeaveService(db).apply_leave(employee, "LOP", monday, monday + timedelta(days=1))

        assert leave.paid_leave_days == Decimal("0")
        assert leave.unpaid_leave_days == Decimal("2")
        assert cl_balance.pending == Decimal("0")

    async def test_weekend_inside_range_counts_whatever_sandwich_setting(self, db, hr, employee, cl_balance, monday):
        await AttendanceService(db).update_settings({"sandwich_leave": False}, hr)
        saturday = monday - timedelta(days=2)

        leave = await LeaveService(db).apply_leave(employee, "CL", saturday, monday)

        assert leave.days_count == Decimal("3")
        assert cl_balance.pending == Decimal("3.0")

    async def test_type_without_balance_is_all_unpaid(self, db, employee, monday):
        leave = await LeaveService(db).apply_leave(employee, "EL", monday)

        assert leave.end_date == monday
        assert leave.paid_leave_days == Decimal("0")
        assert leave.unpaid_leave_days == Decimal("1")

    async def test_half_day_on_single_date_targets_start(self, db, employee, cl_balance, monday):
        leave = await LeaveService(db).apply_leave(
            employee, "CL", monday, is_half_day=True, half_day_session="FIRST_HALF"
        )

        assert leave.days_count == Decimal("0.5")
        assert leave.half_day_target == "START"
        assert leave.half_day_session == "FIRST_HALF"
        assert cl_balance.pending == Decimal("0.5")

    async def test_past_date_refused_for_employee(self, db, employee, cl_balance):
        past = date.today() - timedelta(days=10)
        result = await LeaveService(db).apply_leave(employee, "CL", past)

        assert isinstance(result, Failure)
        assert result.code == "PAST_DATE"

    async def test_end_before_start_refused(self, db, employee, monday):
        result = await LeaveService(db).apply_leave(employee, "CL", monday, monday - timedelta(days=1))
        assert result.code == "INVALID_DATE_RANGE"

    async def test_weekly_off_boundary_refused(self, db, employee, monday):
        sunday = monday + timedelta(days=6)
        result = await LeaveService(db).apply_leave(employee, "CL", monday, sunday)

        assert result.code == "WEEKLY_OFF_DATE"
        assert result.details["date"] == str(sunday)

    async def test_holiday_boundary_refused(self, db, employee, monday):
        db.add(Holiday(name="Founders Day", holiday_date=monday))
        await db.flush()

        result = await LeaveService(db).apply_leave(employee, "CL", monday, monday + timedelta(days=1))

        assert result.code == "HOLIDAY_DATE"
        assert result.details["holiday"] == "Founders Day"

    async def test_overlap_with_pending_request_refused(self, db, employee, cl_balance, monday):
        service = LeaveService(db)
        first = await service.apply_leave(employee, "CL", monday, monday + timedelta(days=2))

        result = await service.apply_leave(employee, "CL", monday + timedelta(days=1))

        assert result.code == "OVERLAPPING_LEAVE"
        assert result.details["conflicting_leave_id"] == str(first.id)
        assert cl_balance.pending == Decimal("3.0")

    async def test_hr_filing_for_employee_is_approved_and_consumed(self, db, hr, employee, cl_balance, monday):
        leave = await LeaveService(db).apply_leave(
            hr, "CL", monday, monday + timedelta(days=1), employee_id=employee.id
        )

        assert leave.status == LeaveStatus.APPROVED.value
        assert leave.applied_by_role == "HR"
        assert leave.approver_id == hr.id
        assert cl_balance.used == Decimal("2.0")
        assert cl_balance.pending == Decimal("0")

        record = await AttendanceService(db).get_record(employee.id, monday)
        assert record.status == AttendanceStatus.LEAVE.value
        assert record.leave_type == "CL"

    async def test_only_hr_may_file_for_someone_else(self, db, employee, manager, monday):
        result = await LeaveService(db).apply_leave(manager, "CL", monday, employee_id=employee.id)

        assert result.code == "FORBIDDEN"
        assert result.status_code == 403


class TestDecisions:
    """Approve, reject and cancel"""

    async def test_approve_commits_days_and_marks_attendance(self, db, employee, manager, cl_balance, monday):
        service = LeaveService(db)
        leave = await service.apply_leave(
            employee, "CL", monday, monday + timedelta(days=2), is_half_day=True
        )

        approved = await service.approve_leave(manager, leave.id, remark="Enjoy")

        assert approved.status == LeaveStatus.APPROVED.value
        assert approved.admin_remark == "Enjoy"
        assert cl_balance.used == Decimal("2.5")
        assert cl_balance.pending == Decimal("0.0")
        assert_ledger_consistent(cl_balance)

        attendance = AttendanceService(db)
        first = await attendance.get_record(employee.id, monday)
        last = await attendance.get_record(employee.id, monday + timedelta(days=2))
        assert first.status == AttendanceStatus.LEAVE.value
        assert last.status == AttendanceStatus.HALF_DAY.value

    async def test_reject_releases_the_hold(self, db, hr, employee, cl_balance, monday):
        service = LeaveService(db)
        leave = await service.apply_leave(employee, "CL", monday, monday + timedelta(days=1))

        rejected = await service.reject_leave(hr, leave.id, reason="Quarter end")

        assert rejected.status == LeaveStatus.REJECTED.value
        assert rejected.rejection_reason == "Quarter end"
        assert cl_balance.pending == Decimal("0.0")
        assert cl_balance.available == Decimal("12.0")

    async def test_decided_request_cannot_be_decided_again(self, db, hr, employee, cl_balance, monday):
        service = LeaveService(db)
        leave = await service.apply_leave(employee, "CL", monday)
        await service.approve_leave(hr, leave.id)

        result = await service.reject_leave(hr, leave.id)

        assert result.code == "INVALID_STATUS"
        assert result.details["current_status"] == "APPROVED"
        assert cl_balance.used == Decimal("1.0")

    async def test_unrelated_employee_cannot_approve(self, db, employee, add_employee, cl_balance, monday):
        colleague = await add_employee("EMP002")
        service = LeaveService(db)
        leave = await service.apply_leave(employee, "CL", monday)

        result = await service.approve_leave(colleague, leave.id)

        assert result.status_code == 403
        assert cl_balance.pending == Decimal("1.0")

    async def test_cancel_pending_releases_the_hold(self, db, employee, cl_balance, monday):
        service = LeaveService(db)
        leave = await service.apply_leave(employee, "CL", monday, monday + timedelta(days=3))

        cancelled = await service.cancel_leave(employee, leave.id)

        assert cancelled.status == LeaveStatus.CANCELLED.value
        assert cl_balance.pending == Decimal("0.0")
        assert_ledger_consistent(cl_balance)

    async def test_approved_leave_cannot_be_cancelled(self, db, hr, employee, cl_balance, monday):
        service = LeaveService(db)
        leave = await service.apply_leave(employee, "CL", monday)
        await service.approve_leave(hr, leave.id)

        result = await service.cancel_leave(employee, leave.id)

        assert result.code == "CANNOT_CANCEL_APPROVED"
        assert cl_balance.used == Decimal("1.0")

    async def test_missing_request_is_not_found(self, db, hr):
        result = await LeaveService(db).approve_leave(hr, uuid.uuid4())
        assert result.code == "LEAVE_NOT_FOUND"
        assert result.status_code == 404


class TestEdit:
    """Editing a pending request"""

    async def test_shrinking_to_a_half_day_moves_the_difference(self, db, employee, cl_balance, monday):
        service = LeaveService(db)
        leave = await service.apply_leave(employee, "CL", monday, monday + timedelta(days=2))

        edited = await service.edit_leave(
            employee, leave.id, {"end_date": monday, "is_half_day": True}
        )

        assert edited.days_count == Decimal("0.5")
        assert edited.half_day_target == "START"
        assert edited.paid_leave_days == Decimal("0.5")
        assert cl_balance.pending == Decimal("0.5")
        assert_ledger_consistent(cl_balance)

    async def test_growing_counts_own_hold_as_available(self, db, employee, add_balance, monday):
        balance = await add_balance(employee, "CL", 3, monday.year)
        service = LeaveService(db)
        leave = await service.apply_leave(employee, "CL", monday, monday + timedelta(days=2))
        assert balance.available == Decimal("0.0")

        edited = await service.edit_leave(employee, leave.id, {"end_date": monday + timedelta(days=4)})

        assert edited.days_count == Decimal("5")
        assert edited.paid_leave_days == Decimal("3.0")
        assert edited.unpaid_leave_days == Decimal("2.0")
        assert balance.pending == Decimal("3.0")

    async def test_new_start_alone_makes_a_single_day(self, db, employee, cl_balance, monday):
        service = LeaveService(db)
        leave = await service.apply_leave(employee, "CL", monday, monday + timedelta(days=1))
        thursday = monday + timedelta(days=3)

        edited = await service.edit_leave(employee, leave.id, {"start_date": thursday})

        assert (edited.start_date, edited.end_date) == (thursday, thursday)
        assert edited.days_count == Decimal("1")
        assert cl_balance.pending == Decimal("1.0")
        assert_ledger_consistent(cl_balance)

    async def test_switching_type_moves_the_whole_hold(self, db, employee, add_balance, cl_balance, monday):
        sl_balance = await add_balance(employee, "SL", 5, monday.year)
        service = LeaveService(db)
        leave = await service.apply_leave(employee, "CL", monday, monday + timedelta(days=1))

        edited = await service.edit_leave(employee, leave.id, {"leave_type": "SL"})

        assert edited.leave_type == "SL"
        assert cl_balance.pending == Decimal("0.0")
        assert sl_balance.pending == Decimal("2.0")

    async def test_switching_to_short_type_changes_nothing(self, db, employee, add_balance, cl_balance, monday):
        sl_balance = await add_balance(employee, "SL", 1, monday.year)
        service = LeaveService(db)
        leave = await service.apply_leave(employee, "CL", monday, monday + timedelta(days=1))

        result = await service.edit_leave(employee, leave.id, {"leave_type": "SL"})

        assert result.code == "INSUFFICIENT_BALANCE"
        assert cl_balance.pending == Decimal("2.0")
        assert sl_balance.pending == Decimal("0")

    async def test_only_owner_may_edit(self, db, hr, employee, cl_balance, monday):
        service = LeaveService(db)
        leave = await service.apply_leave(employee, "CL", monday)

        result = await service.edit_leave(hr, leave.id, {"reason": "changed"})
        assert result.code == "FORBIDDEN"
