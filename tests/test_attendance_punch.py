"""
Punch engine, manual override and attendance reporting.
"""
from datetime import date, datetime, time, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.models.audit_log import AuditLog
from app.models.hr import AttendanceStatus, Holiday, MaxPunchAction, PunchMode, PunchType
from app.services.attendance_policy import as_utc, calculate_working_hours, evaluate_status
from app.services.attendance_service import AttendanceService

# 2026-03-02 is a Monday
DAY = date(2026, 3, 2)


def at(hour: int, minute: int = 0, day: date = DAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def service(db):
    return AttendanceService(db)


@pytest.fixture
async def multiple_mode(service, hr):
    """Switch the tenant to multiple punches per day."""
    return await service.update_settings({"punch_mode": PunchMode.MULTIPLE}, hr)


class TestSinglePunchMode:
    """Default mode: one IN and one OUT per day"""

    async def test_first_punch_opens_the_day(self, service, employee):
        result = await service.punch(employee, now=at(9, 10), device="Web")

        record = result["attendance"]
        assert result["punch_type"] == "IN"
        assert record.attendance_date == DAY
        assert record.status == AttendanceStatus.PRESENT.value
        assert as_utc(record.check_in) == at(9, 10)
        assert record.is_late is False
        assert record.logs[0]["device"] == "Web"
        assert result["warning"] is None

    async def test_punch_after_late_allowance_is_late(self, service, employee):
        result = await service.punch(employee, now=at(9, 31))
        assert result["attendance"].is_late is True
        assert result["policy"]["is_late"] is True

    async def test_in_then_out_completes_a_full_day(self, service, employee):
        await service.punch(employee, now=at(9, 0))
        result = await service.punch(employee, now=at(18, 0))

        record = result["attendance"]
        assert result["punch_type"] == "OUT"
        assert record.working_hours == Decimal("9.00")
        assert record.status == AttendanceStatus.PRESENT.value
        assert record.is_early_out is False

    async def test_third_punch_is_refused(self, service, employee):
        await service.punch(employee, now=at(9, 0))
        await service.punch(employee, now=at(18, 0))

        result = await service.punch(employee, now=at(18, 30))

        assert result.code == "SINGLE_PUNCH_MODE_VIOLATION"
        record = await service.get_record(employee.id, DAY)
        assert len(record.logs) == 2

    @pytest.mark.parametrize("out_hour,expected", [
        (10, AttendanceStatus.ABSENT.value),
        (14, AttendanceStatus.HALF_DAY.value),
        (17, AttendanceStatus.PRESENT.value),
    ])
    async def test_status_follows_hours_thresholds(self, service, employee, out_hour, expected):
        await service.punch(employee, now=at(9, 0))
        result = await service.punch(employee, now=at(out_hour, 0))

        assert result["attendance"].status == expected
        assert result["attendance"].is_early_out is True

    async def test_bad_date_string_is_refused(self, service, employee):
        result = await service.punch(employee, date_str="02/03/2026", now=at(9, 0))
        assert result.code == "INVALID_DATE"

    async def test_explicit_date_wins_over_clock(self, service, employee):
        result = await service.punch(employee, date_str="2026-03-03", now=at(9, 0))
        assert result["attendance"].attendance_date == date(2026, 3, 3)


class TestMultiplePunchMode:
    """Alternating punches with working hours from complete pairs"""

    async def test_punches_alternate_and_sum_pairs(self, service, employee, multiple_mode):
        types = []
        for hour, minute in ((9, 0), (13, 0), (14, 0), (17, 30)):
            result = await service.punch(employee, now=at(hour, minute))
            types.append(result["punch_type"])

        record = result["attendance"]
        assert types == ["IN", "OUT", "IN", "OUT"]
        assert record.working_hours == Decimal("7.50")
        assert record.status == AttendanceStatus.PRESENT.value
        assert as_utc(record.check_in) == at(9, 0)
        assert as_utc(record.check_out) == at(17, 30)

    async def test_working_hours_are_reproducible_from_logs(self, service, employee, multiple_mode):
        for hour in (8, 12, 13, 16, 17):
            result = await service.punch(employee, now=at(hour))

        record = result["attendance"]
        assert calculate_working_hours(record.logs) == record.working_hours
        # 8-12 and 13-16; the 17:00 IN is still open
        assert record.working_hours == Decimal("7.0")

    async def test_limit_blocks_further_punches(self, service, employee, hr, multiple_mode):
        await service.update_settings({"max_punches_per_day": 2}, hr)
        await service.punch(employee, now=at(9))
        await service.punch(employee, now=at(12))

        result = await service.punch(employee, now=at(13))

        assert result.code == "MAX_PUNCH_LIMIT_EXCEEDED"

    async def test_limit_in_warn_mode_flags_but_records(self, service, employee, hr, multiple_mode):
        await service.update_settings(
            {"max_punches_per_day": 2, "max_punch_action": MaxPunchAction.WARN}, hr
        )
        await service.punch(employee, now=at(9))
        await service.punch(employee, now=at(12))

        result = await service.punch(employee, now=at(13))

        assert result["warning"] is not None
        assert len(result["attendance"].logs) == 3

    async def test_limit_is_clamped_to_two(self, service, hr):
        settings_row = await service.update_settings({"max_punches_per_day": 1}, hr)
        assert settings_row.max_punches_per_day == 2


class TestPunchStatusRules:

    async def test_leave_day_keeps_its_status(self, db, service, employee):
        record = await service.get_or_create_record(employee.id, DAY, AttendanceStatus.LEAVE.value)
        await db.flush()

        await service.punch(employee, now=at(9))
        await db.refresh(record)

        assert record.status == AttendanceStatus.LEAVE.value

    async def test_overtime_counts_beyond_shift(self, service, employee, hr):
        await service.update_settings({"overtime_allowed": True}, hr)
        await service.punch(employee, now=at(8))
        result = await service.punch(employee, now=at(20))

        assert result["attendance"].overtime_hours == Decimal("3.00")

    async def test_open_in_punch_is_provisional(self, service):
        settings_row = await service.get_settings()
        assert evaluate_status(None, Decimal("0"), PunchType.IN, settings_row) == AttendanceStatus.PRESENT.value


class TestSettings:

    async def test_defaults_are_created_on_first_read(self, service):
        settings_row = await service.get_settings()

        assert settings_row.shift_start_time == "09:00"
        assert settings_row.punch_mode == PunchMode.SINGLE.value
        assert settings_row.weekly_off_days == [6]

    async def test_update_is_audited_with_old_and_new_values(self, db, service, hr):
        await service.update_settings({"grace_time_minutes": 5, "allowed_ips": [" 10.0.0.1 ", ""]}, hr)

        result = await db.execute(
            select(AuditLog).where(AuditLog.action == "ATTENDANCE_SETTINGS_UPDATED")
        )
        log = result.scalar_one()
        assert log.old_values["grace_time_minutes"] == 15
        assert log.new_values["grace_time_minutes"] == 5
        assert log.new_values["allowed_ips"] == ["10.0.0.1"]

    async def test_unknown_timezone_is_refused(self, service, hr):
        result = await service.update_settings({"timezone": "Mars/Olympus"}, hr)
        assert result.code == "INVALID_TIMEZONE"


class TestOverride:
    """HR manual override"""

    async def test_override_replaces_logs(self, db, service, employee, hr):
        await service.punch(employee, now=at(9))

        record = await service.override(
            hr, employee.id, DAY, AttendanceStatus.PRESENT.value,
            check_in=time(9, 0), check_out=time(17, 0), reason="Forgot to punch out",
        )

        assert record.is_manual_override is True
        assert record.approved_by == hr.id
        assert record.working_hours == Decimal("8.00")
        assert [entry["type"] for entry in record.logs] == ["IN", "OUT"]

        audit = await db.execute(select(AuditLog).where(AuditLog.action == "MANUAL_OVERRIDE"))
        assert audit.scalar_one().old_values["status"] == AttendanceStatus.PRESENT.value

    async def test_reason_is_mandatory(self, service, employee, hr):
        result = await service.override(hr, employee.id, DAY, AttendanceStatus.ABSENT.value, reason="  ")
        assert result.code == "REASON_REQUIRED"


class TestReporting:
    """Calendar, today summary, HR stats and monthly snapshot"""

    async def test_calendar_precedence(self, db, service, employee):
        db.add(Holiday(name="Spring Holiday", holiday_date=date(2026, 3, 4)))
        await service.punch(employee, now=at(9))
        await db.flush()

        calendar = await service.calendar(employee.id, 3, 2026)
        days = {entry["day"]: entry for entry in calendar["days"]}

        assert len(days) == 31
        assert days[date(2026, 3, 1)]["status"] == AttendanceStatus.WEEKLY_OFF.value
        assert days[DAY]["status"] == AttendanceStatus.PRESENT.value
        assert days[date(2026, 3, 4)]["holiday_name"] == "Spring Holiday"
        assert days[date(2026, 3, 5)]["status"] == "NOT_MARKED"

    async def test_today_summary_counts_punches(self, service, employee):
        await service.punch(employee, now=at(9))

        summary = await service.today_summary(employee, now=at(12))

        assert summary["total_punches"] == 1
        assert summary["in_count"] == 1
        assert summary["is_checked_in"] is True
        assert summary["first_punch"] == at(9)

    async def test_today_summary_without_record(self, service, employee):
        summary = await service.today_summary(employee, now=at(12))
        assert summary["status"] == "NOT_MARKED"
        assert summary["logs"] == []

    async def test_hr_stats_for_a_day(self, service, employee, manager, hr):
        await service.punch(employee, now=at(9))
        await service.punch(employee, now=at(17))
        await service.punch(manager, now=at(9, 30))

        stats = await service.hr_stats(DAY)

        assert stats["total_employees"] == 3
        assert stats["punched_in"] == 2
        assert stats["missing_punch_out"] == 1
        assert stats["average_working_hours"] == 4.0

    async def test_monthly_snapshot(self, db, service, employee):
        db.add(Holiday(name="Spring Holiday", holiday_date=date(2026, 3, 4)))
        await service.punch(employee, now=at(9))
        await service.punch(employee, now=at(18))
        leave_day = await service.get_or_create_record(employee.id, date(2026, 3, 3), AttendanceStatus.LEAVE.value)
        leave_day.leave_type = "CL"
        await db.flush()

        snapshot = await service.monthly_snapshot(employee.id, 3, 2026, today=date(2026, 3, 31))

        assert snapshot["present_days"] == 1
        assert snapshot["leave_days"] == 1
        assert snapshot["holidays"] == 1
        assert snapshot["weekly_offs"] == 5
        assert snapshot["absent_days"] == 31 - 5 - 1 - 1 - 1
        assert snapshot["total_working_hours"] == 9.0
