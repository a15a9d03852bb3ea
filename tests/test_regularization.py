"""
Attendance and leave regularization.
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.models.audit_log import AuditLog
from app.models.hr import AttendanceStatus, LeaveRequest, LeaveStatus, RegularizationStatus
from app.services.attendance_policy import is_weekly_off
from app.services.attendance_service import AttendanceService
from app.services.leave_service import LeaveService
from app.services.regularization_service import RegularizationService, remaining_ranges

from conftest import assert_ledger_consistent


@pytest.fixture
async def workday(db):
    """A working day in the current month, no later than today."""
    service = AttendanceService(db)
    day = await service.local_today()
    settings_row = await service.get_settings()
    while is_weekly_off(day, settings_row):
        day -= timedelta(days=1)
    return day


@pytest.fixture
async def balances(employee, add_balance, workday):
    """CL and SL balances for the employee's current cycle."""
    return (
        await add_balance(employee, "CL", 12, workday.year),
        await add_balance(employee, "SL", 6, workday.year),
    )


@pytest.fixture
async def day_on_cl(db, hr, employee, balances, workday):
    """The workday booked as approved CL by HR."""
    return await LeaveService(db).apply_leave(hr, "CL", workday, employee_id=employee.id)


class TestCreate:

    async def test_attendance_request_snapshots_the_day(self, db, employee, manager, workday):
        await AttendanceService(db).get_or_create_record(employee.id, workday, AttendanceStatus.ABSENT.value)
        await db.flush()

        regularization = await RegularizationService(db).create(
            employee, "ATTENDANCE", workday,
            issue_type="Missed punch",
            requested_data={"check_in": "09:00", "check_out": "18:00"},
            reason="Biometric was down",
        )

        assert regularization.status == RegularizationStatus.PENDING.value
        assert regularization.end_date == workday
        assert regularization.original_data["attendance"]["status"] == AttendanceStatus.ABSENT.value
        assert regularization.original_data["overlapping_leave"] is None

    async def test_leave_request_records_covering_leave(self, db, employee, day_on_cl, workday):
        regularization = await RegularizationService(db).create(
            employee, "LEAVE", workday, requested_data={"leave_type": "SL"}
        )

        assert regularization.original_data["leave_type"] == "CL"
        assert regularization.original_data["overlapping_leave"]["id"] == str(day_on_cl.id)

    @pytest.mark.parametrize("category,span,requested,code", [
        ("LEAVE", 1, {"leave_type": "SL"}, "INVALID_DATE_RANGE"),
        ("LEAVE", 0, {}, "INVALID_REQUESTED_DATA"),
        ("ATTENDANCE", 0, {}, "INVALID_REQUESTED_DATA"),
        ("ATTENDANCE", 0, {"check_in": "9am"}, "INVALID_TIME"),
        ("ATTENDANCE", -1, {"check_in": "09:00"}, "INVALID_DATE_RANGE"),
    ])
    async def test_validation(self, db, employee, workday, category, span, requested, code):
        result = await RegularizationService(db).create(
            employee, category, workday, workday + timedelta(days=span), requested_data=requested
        )
        assert result.code == code


class TestApproveAttendance:

    async def test_times_rewrite_the_day(self, db, employee, manager, workday):
        service = RegularizationService(db)
        regularization = await service.create(
            employee, "ATTENDANCE", workday, requested_data={"check_in": "09:00", "check_out": "18:00"}
        )

        approved = await service.approve(manager, regularization.id, remark="Verified with security")

        assert approved.status == RegularizationStatus.APPROVED.value
        assert approved.approver_id == manager.id
        record = await AttendanceService(db).get_record(employee.id, workday)
        assert record.status == AttendanceStatus.PRESENT.value
        assert record.working_hours == Decimal("9.00")
        assert record.is_manual_override is True
        assert record.override_reason == "Regularization: Verified with security"

        audit = (await db.execute(
            select(AuditLog).where(AuditLog.action == "ATTENDANCE_REGULARIZATION_APPROVED")
        )).scalar_one()
        assert audit.meta == {"regularization_id": str(regularization.id)}

    async def test_remark_is_mandatory(self, db, hr, employee, workday):
        service = RegularizationService(db)
        regularization = await service.create(employee, "ATTENDANCE", workday, requested_data={"check_in": "09:00"})

        result = await service.approve(hr, regularization.id, remark=" ")
        assert result.code == "REMARK_REQUIRED"

    async def test_unrelated_employee_cannot_decide(self, db, employee, add_employee, workday):
        colleague = await add_employee("EMP002")
        service = RegularizationService(db)
        regularization = await service.create(employee, "ATTENDANCE", workday, requested_data={"check_in": "09:00"})

        assert (await service.approve(colleague, regularization.id, remark="ok")).status_code == 403
        assert (await service.reject(colleague, regularization.id)).status_code == 403


class TestApproveLeave:
    """One day moves between balances"""

    async def test_switch_to_another_type_moves_the_day(self, db, hr, employee, balances, day_on_cl, workday):
        cl_balance, sl_balance = balances
        assert cl_balance.used == Decimal("1.0")
        service = RegularizationService(db)
        regularization = await service.create(
            employee, "LEAVE", workday, requested_data={"leave_type": "SL"}, reason="Was actually sick"
        )

        await service.approve(hr, regularization.id, remark="Medical certificate attached")

        assert cl_balance.used == Decimal("0.0")
        assert sl_balance.used == Decimal("1.0")
        assert_ledger_consistent(cl_balance)
        assert_ledger_consistent(sl_balance)

        actions = (await db.execute(
            select(AuditLog.action).where(AuditLog.action.like("REGULARIZATION_%"))
        )).scalars().all()
        assert sorted(actions) == ["REGULARIZATION_DEDUCT", "REGULARIZATION_REFUND"]

        leaves = (await db.execute(
            select(LeaveRequest).where(LeaveRequest.leave_type == "SL")
        )).scalars().all()
        assert len(leaves) == 1
        assert leaves[0].status == LeaveStatus.APPROVED.value
        assert leaves[0].meta == {"regularization_id": str(regularization.id)}

        record = await AttendanceService(db).get_record(employee.id, workday)
        assert record.status == AttendanceStatus.LEAVE.value
        assert record.leave_type == "SL"

    async def test_present_refunds_and_marks_the_day(self, db, hr, employee, balances, day_on_cl, workday):
        cl_balance, sl_balance = balances
        service = RegularizationService(db)
        regularization = await service.create(employee, "LEAVE", workday, requested_data={"leave_type": "Present"})

        await service.approve(hr, regularization.id, remark="Was in office")

        assert cl_balance.used == Decimal("0.0")
        assert sl_balance.used == Decimal("0")
        record = await AttendanceService(db).get_record(employee.id, workday)
        assert record.status == AttendanceStatus.PRESENT.value
        assert record.leave_type is None

    async def test_day_without_prior_leave_only_charges(self, db, hr, employee, balances, workday):
        cl_balance, sl_balance = balances
        service = RegularizationService(db)
        regularization = await service.create(employee, "LEAVE", workday, requested_data={"leave_type": "SL"})

        await service.approve(hr, regularization.id, remark="Approved")

        assert sl_balance.used == Decimal("1.0")
        assert cl_balance.used == Decimal("0")


class TestReject:

    async def test_reject_leaves_ledger_alone(self, db, manager, employee, balances, workday):
        cl_balance, sl_balance = balances
        service = RegularizationService(db)
        regularization = await service.create(employee, "LEAVE", workday, requested_data={"leave_type": "SL"})

        rejected = await service.reject(manager, regularization.id, remark="No proof")

        assert rejected.status == RegularizationStatus.REJECTED.value
        assert rejected.admin_remark == "No proof"
        assert sl_balance.used == Decimal("0")

        again = await service.approve(manager, regularization.id, remark="Changed my mind")
        assert again.code == "INVALID_STATUS"


class TestListings:

    async def test_reviewer_scopes(self, db, hr, manager, employee, add_employee, workday):
        outsider = await add_employee("EMP003")
        service = RegularizationService(db)
        await service.create(employee, "ATTENDANCE", workday, requested_data={"check_in": "09:00"})
        await service.create(outsider, "ATTENDANCE", workday, requested_data={"check_in": "09:30"})

        _, hr_total = await service.for_reviewer(hr)
        team, manager_total = await service.for_reviewer(manager)
        mine, mine_total = await service.mine(employee)

        assert hr_total == 2
        assert manager_total == 1
        assert team[0].employee_id == employee.id
        assert mine_total == 1


def _working_neighbour(day, settings_row, step):
    day += timedelta(days=step)
    while is_weekly_off(day, settings_row):
        day += timedelta(days=step)
    return day


class TestCoveringLeave:
    """A regularized day ends up under exactly one active leave"""

    async def _active_on(self, db, employee, day):
        result = await db.execute(
            select(LeaveRequest.leave_type, LeaveRequest.status).where(
                LeaveRequest.employee_id == employee.id,
                LeaveRequest.status.in_([LeaveStatus.PENDING.value, LeaveStatus.APPROVED.value]),
                LeaveRequest.start_date <= day,
                LeaveRequest.end_date >= day,
            )
        )
        return [tuple(row) for row in result.all()]

    async def test_single_day_leave_is_superseded(self, db, hr, employee, balances, day_on_cl, workday):
        service = RegularizationService(db)
        regularization = await service.create(employee, "LEAVE", workday, requested_data={"leave_type": "SL"})

        await service.approve(hr, regularization.id, remark="Medical certificate attached")

        assert await self._active_on(db, employee, workday) == [("SL", LeaveStatus.APPROVED.value)]
        assert day_on_cl.status == LeaveStatus.CANCELLED.value
        assert day_on_cl.meta["regularized_days"] == [
            {"date": workday.isoformat(), "regularization_id": str(regularization.id)}
        ]

    async def test_day_inside_a_range_splits_it(self, db, hr, employee, balances, workday):
        cl_balance, sl_balance = balances
        settings_row = await AttendanceService(db).get_settings()
        before = _working_neighbour(workday, settings_row, -1)
        after = _working_neighbour(workday, settings_row, 1)
        leave = await LeaveService(db).apply_leave(hr, "CL", before, after, employee_id=employee.id)
        booked = leave.days_count
        service = RegularizationService(db)
        regularization = await service.create(employee, "LEAVE", workday, requested_data={"leave_type": "SL"})

        await service.approve(hr, regularization.id, remark="Sick on the middle day")

        assert await self._active_on(db, employee, workday) == [("SL", LeaveStatus.APPROVED.value)]
        parts = (await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.leave_type == "CL", LeaveRequest.status == LeaveStatus.APPROVED.value)
            .order_by(LeaveRequest.start_date)
        )).scalars().all()
        assert [(p.start_date, p.end_date) for p in parts] == [
            (before, workday - timedelta(days=1)),
            (workday + timedelta(days=1), after),
        ]
        assert sum(p.days_count for p in parts) == booked - 1
        assert sum(p.paid_leave_days for p in parts) == cl_balance.used
        assert cl_balance.used == booked - 1
        assert sl_balance.used == Decimal("1.0")
        assert_ledger_consistent(cl_balance)

    async def test_pending_leave_blocks_the_request(self, db, hr, add_balance, workday):
        await add_balance(hr, "CL", 12, workday.year)
        pending = await LeaveService(db).apply_leave(hr, "CL", workday)
        assert pending.status == LeaveStatus.PENDING.value

        result = await RegularizationService(db).create(hr, "LEAVE", workday, requested_data={"leave_type": "SL"})

        assert result.code == "LEAVE_PENDING"
        assert result.status_code == 409
        assert result.details["leave_request_id"] == str(pending.id)

    async def test_leave_filed_after_the_request_blocks_approval(self, db, hr, add_balance, workday):
        cl_balance = await add_balance(hr, "CL", 12, workday.year)
        sl_balance = await add_balance(hr, "SL", 6, workday.year)
        leaves = LeaveService(db)
        service = RegularizationService(db)
        regularization = await service.create(hr, "LEAVE", workday, requested_data={"leave_type": "SL"})
        pending = await leaves.apply_leave(hr, "CL", workday)

        result = await service.approve(hr, regularization.id, remark="Approved")
        assert result.code == "LEAVE_PENDING"
        assert regularization.status == RegularizationStatus.PENDING.value

        await leaves.approve_leave(hr, pending.id)
        assert cl_balance.used + sl_balance.used == Decimal("1.0")

    async def test_same_type_is_refused(self, db, employee, day_on_cl, workday):
        result = await RegularizationService(db).create(
            employee, "LEAVE", workday, requested_data={"leave_type": "cl"}
        )
        assert result.code == "INVALID_REQUESTED_DATA"


class TestRemainingRanges:

    @pytest.mark.parametrize("offset,expected", [
        (0, [(1, 4, None)]),
        (4, [(0, 3, None)]),
        (2, [(0, 1, None), (3, 4, None)]),
    ])
    async def test_full_days(self, workday, offset, expected):
        start = workday
        leave = LeaveRequest(start_date=start, end_date=start + timedelta(days=4), is_half_day=False)

        ranges = remaining_ranges(leave, start + timedelta(days=offset))

        assert ranges == [
            (start + timedelta(days=a), start + timedelta(days=b), target) for a, b, target in expected
        ]

    async def test_half_day_stays_with_its_part(self, workday):
        leave = LeaveRequest(
            start_date=workday, end_date=workday + timedelta(days=2),
            is_half_day=True, half_day_target="END",
        )

        ranges = remaining_ranges(leave, workday)

        assert ranges == [(workday + timedelta(days=1), workday + timedelta(days=2), "END")]

    async def test_single_day_leaves_nothing(self, workday):
        leave = LeaveRequest(start_date=workday, end_date=workday, is_half_day=False)
        assert remaining_ranges(leave, workday) == []
