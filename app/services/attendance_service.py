"""
Attendance Service - punch engine, manual overrides and attendance reporting.

Business logic for:
- Punch in/out against the tenant's shift, geofence and IP policy
- Attendance settings (one row per tenant store)
- HR manual override of a day
- Calendar, today summary, HR stats and the monthly payroll snapshot
"""
import logging
import uuid
from datetime import datetime, timezone, timedelta, date, time
from decimal import Decimal
from typing import Optional, List, Dict, Any, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from fastapi import status

from app.models.hr import (
    Attendance, AttendanceSettings, AttendanceStatus, Employee, EmployeeStatus,
    Holiday, MaxPunchAction, PunchMode, PunchType,
)
from app.services.attendance_policy import (
    as_utc, build_manual_logs, calculate_overtime_hours, calculate_working_hours,
    evaluate_status, geo_check_applies, ip_check_applies, is_early_out_punch,
    is_late_punch, is_weekly_off, leave_year_for, log_time, make_log, month_bounds, next_punch_type,
    parse_date_str, tenant_timezone, validate_geofence, validate_ip,
)
from app.services.audit_service import AuditService
from app.services.results import Failure, Result, not_found

logger = logging.getLogger(__name__)

NOT_MARKED = "NOT_MARKED"

# Settings whose enum values are stored as plain strings
_ENUM_SETTINGS = ("punch_mode", "max_punch_action", "location_restriction_mode")


class AttendanceService:
    """Service for attendance operations inside one tenant store."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    # =========================================================================
    # SETTINGS
    # =========================================================================

    async def get_settings(self) -> AttendanceSettings:
        """Return the tenant's attendance settings, creating defaults on first read."""
        result = await self.db.execute(select(AttendanceSettings).limit(1))
        settings_row = result.scalar_one_or_none()
        if settings_row is None:
            settings_row = AttendanceSettings()
            self.db.add(settings_row)
            await self.db.flush()
            await self.db.refresh(settings_row)
            logger.info("Created default attendance settings")
        return settings_row

    async def local_today(self, now: Optional[datetime] = None) -> date:
        """Today's date in the tenant's timezone."""
        settings_row = await self.get_settings()
        now = as_utc(now or datetime.now(timezone.utc))
        return now.astimezone(tenant_timezone(settings_row)).date()

    async def cycle_year(self, day: date) -> int:
        """Leave accounting year that a date falls in."""
        settings_row = await self.get_settings()
        return leave_year_for(day, settings_row.leave_cycle_start_month)

    async def update_settings(
        self,
        changes: Dict[str, Any],
        actor: Employee,
        ip_address: Optional[str] = None,
    ) -> Result[AttendanceSettings]:
        """
        Apply a partial settings update.

        Blank IPs/ranges are dropped and max_punches_per_day is clamped to at
        least 2. Old and new values are written to the audit log.
        """
        settings_row = await self.get_settings()

        if changes.get("timezone"):
            try:
                ZoneInfo(changes["timezone"])
            except (ZoneInfoNotFoundError, ValueError):
                return Failure("INVALID_TIMEZONE", f"Unknown timezone: {changes['timezone']}")

        if "allowed_ips" in changes and changes["allowed_ips"] is not None:
            changes["allowed_ips"] = [ip.strip() for ip in changes["allowed_ips"] if ip and ip.strip()]
        if "allowed_ip_ranges" in changes and changes["allowed_ip_ranges"] is not None:
            changes["allowed_ip_ranges"] = [
                r.strip() for r in changes["allowed_ip_ranges"] if r and r.strip()
            ]
        if changes.get("max_punches_per_day") is not None:
            changes["max_punches_per_day"] = max(2, int(changes["max_punches_per_day"]))

        old_values = {}
        new_values = {}
        for key, value in changes.items():
            if value is None and key not in ("office_latitude", "office_longitude", "timezone"):
                continue
            if key in _ENUM_SETTINGS and hasattr(value, "value"):
                value = value.value
            old_values[key] = getattr(settings_row, key)
            new_values[key] = value
            setattr(settings_row, key, value)

        await self.db.flush()
        await self.db.refresh(settings_row)

        await self.audit.log(
            action="ATTENDANCE_SETTINGS_UPDATED",
            entity_type="ATTENDANCE_SETTINGS",
            entity_id=settings_row.id,
            user_id=actor.id,
            old_values=old_values,
            new_values=new_values,
            description="Attendance settings updated",
            ip_address=ip_address,
        )
        logger.info(f"Attendance settings updated by {actor.employee_code}: {sorted(new_values)}")
        return settings_row

    # =========================================================================
    # RECORDS
    # =========================================================================

    async def get_record(self, employee_id: uuid.UUID, day: date) -> Optional[Attendance]:
        result = await self.db.execute(
            select(Attendance).where(
                Attendance.employee_id == employee_id,
                Attendance.attendance_date == day,
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create_record(
        self,
        employee_id: uuid.UUID,
        day: date,
        status_value: str = AttendanceStatus.PRESENT.value,
    ) -> Attendance:
        """Day record for an employee; a new one starts empty with the given status."""
        record = await self.get_record(employee_id, day)
        if record is None:
            record = Attendance(
                employee_id=employee_id,
                attendance_date=day,
                status=status_value,
                logs=[],
                working_hours=Decimal("0"),
                overtime_hours=Decimal("0"),
            )
            self.db.add(record)
        return record

    # =========================================================================
    # PUNCH
    # =========================================================================

    async def punch(
        self,
        employee: Employee,
        date_str: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        location: Optional[str] = None,
        device: Optional[str] = None,
        client_ip: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Result[Dict[str, Any]]:
        """
        Record an IN or OUT punch for the employee.

        The punch type alternates from the last log entry. Geofence and IP
        violations are audit-logged and returned as 403 failures without
        touching the day record.
        """
        settings_row = await self.get_settings()
        tz = tenant_timezone(settings_row)
        now = as_utc(now or datetime.now(timezone.utc))

        if geo_check_applies(settings_row):
            is_valid, error, distance = validate_geofence(latitude, longitude, settings_row)
            if not is_valid:
                logger.warning(f"Geofence violation for {employee.employee_code}: {error}")
                await self.audit.log_location_violation(
                    "PUNCH_GEO_VIOLATION", employee.id, error,
                    latitude=latitude, longitude=longitude, ip_address=client_ip,
                    distance=distance, radius=settings_row.allowed_radius_meters,
                )
                return Failure("GEO_FENCING_VIOLATION", error, status.HTTP_403_FORBIDDEN)

        if ip_check_applies(settings_row):
            is_valid, error = validate_ip(client_ip, settings_row)
            if not is_valid:
                logger.warning(f"IP restriction violation for {employee.employee_code}: {error}")
                await self.audit.log_location_violation(
                    "PUNCH_IP_VIOLATION", employee.id, error,
                    latitude=latitude, longitude=longitude, ip_address=client_ip,
                )
                return Failure("IP_RESTRICTION_VIOLATION", error, status.HTTP_403_FORBIDDEN)

        if date_str:
            try:
                day = parse_date_str(date_str)
            except ValueError:
                return Failure("INVALID_DATE", "Invalid date format. Use YYYY-MM-DD")
        else:
            day = now.astimezone(tz).date()

        entry_kwargs = dict(
            device=device, location=location, ip=client_ip, latitude=latitude, longitude=longitude
        )
        warning = None
        record = await self.get_record(employee.id, day)

        if record is None:
            punch_type = PunchType.IN
            record = Attendance(
                employee_id=employee.id,
                attendance_date=day,
                status=AttendanceStatus.PRESENT.value,
                check_in=now,
                logs=[make_log(now, punch_type, **entry_kwargs)],
                is_late=is_late_punch(now, day, settings_row, tz),
                working_hours=Decimal("0"),
                overtime_hours=Decimal("0"),
            )
            self.db.add(record)
        else:
            logs = list(record.logs or [])
            punch_type = next_punch_type(logs)

            if settings_row.punch_mode == PunchMode.SINGLE.value:
                if punch_type == PunchType.IN and record.check_in is not None:
                    return Failure(
                        "SINGLE_PUNCH_MODE_VIOLATION",
                        "Single punch mode: Only one punch in allowed per day",
                    )
                if punch_type == PunchType.OUT and record.check_out is not None:
                    return Failure(
                        "SINGLE_PUNCH_MODE_VIOLATION",
                        "Single punch mode: You have already completed your shift for today.",
                    )
            elif len(logs) >= settings_row.max_punches_per_day:
                if settings_row.max_punch_action == MaxPunchAction.BLOCK.value:
                    return Failure(
                        "MAX_PUNCH_LIMIT_EXCEEDED",
                        f"Maximum punch limit reached ({settings_row.max_punches_per_day}). "
                        "Contact HR for manual override.",
                    )
                warning = (
                    f"Punch limit of {settings_row.max_punches_per_day} exceeded; "
                    "this punch has been flagged for HR review"
                )

            logs.append(make_log(now, punch_type, **entry_kwargs))
            record.logs = logs

            if punch_type == PunchType.IN and record.check_in is None:
                record.check_in = now
                record.is_late = is_late_punch(now, day, settings_row, tz)
            elif punch_type == PunchType.OUT:
                record.check_out = now
                record.is_early_out = is_early_out_punch(now, day, settings_row, tz)

        working_hours = calculate_working_hours(record.logs)
        record.working_hours = working_hours
        if settings_row.overtime_allowed and working_hours > 0:
            record.overtime_hours = calculate_overtime_hours(working_hours, settings_row)
        else:
            record.overtime_hours = Decimal("0")
        record.status = evaluate_status(record.status, working_hours, punch_type, settings_row)

        await self.db.flush()
        await self.db.refresh(record)

        logger.info(
            f"Punch {punch_type.value} for {employee.employee_code} on {day}: "
            f"{working_hours}h, status {record.status}"
        )
        return {
            "punch_type": punch_type.value,
            "attendance": record,
            "policy": {
                "punch_mode": settings_row.punch_mode,
                "is_late": bool(record.is_late),
                "is_early_out": bool(record.is_early_out),
                "working_hours": float(working_hours),
            },
            "warning": warning,
        }

    # =========================================================================
    # MANUAL OVERRIDE
    # =========================================================================

    async def override(
        self,
        actor: Employee,
        employee_id: uuid.UUID,
        day: date,
        status_value: str,
        check_in: Optional[time] = None,
        check_out: Optional[time] = None,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Result[Attendance]:
        """HR override of one day. Replaces the punch logs with the given pair."""
        if not reason or not reason.strip():
            return Failure("REASON_REQUIRED", "Reason is mandatory for manual override")

        employee = await self.db.get(Employee, employee_id)
        if employee is None:
            return not_found("EMPLOYEE_NOT_FOUND", "Employee not found")

        settings_row = await self.get_settings()
        tz = tenant_timezone(settings_row)
        record = await self.get_or_create_record(employee_id, day, status_value)

        old_values = {
            "status": record.status,
            "check_in": record.check_in.isoformat() if record.check_in else None,
            "check_out": record.check_out.isoformat() if record.check_out else None,
        }

        logs, check_in_at, check_out_at = build_manual_logs(
            day, check_in, check_out, tz, location="Manual Override", device="System"
        )
        record.status = status_value
        record.check_in = check_in_at
        record.check_out = check_out_at
        record.logs = logs
        record.working_hours = calculate_working_hours(logs)
        record.is_late = bool(check_in_at and is_late_punch(check_in_at, day, settings_row, tz))
        record.is_early_out = bool(check_out_at and is_early_out_punch(check_out_at, day, settings_row, tz))
        record.is_manual_override = True
        record.override_reason = reason.strip()
        record.approved_by = actor.id

        await self.db.flush()
        await self.db.refresh(record)

        await self.audit.log(
            action="MANUAL_OVERRIDE",
            entity_type="ATTENDANCE",
            entity_id=record.id,
            user_id=actor.id,
            old_values=old_values,
            new_values={
                "status": status_value,
                "check_in": check_in_at.isoformat() if check_in_at else None,
                "check_out": check_out_at.isoformat() if check_out_at else None,
            },
            description=f"Manual override for {employee.employee_code} on {day}",
            ip_address=ip_address,
            meta={"reason": reason.strip()},
        )
        logger.info(f"Manual override by {actor.employee_code} for {employee.employee_code} on {day}")
        return record

    # =========================================================================
    # LISTINGS
    # =========================================================================

    async def employee_month(self, employee_id: uuid.UUID, month: int, year: int) -> List[Attendance]:
        first, last = month_bounds(year, month)
        result = await self.db.execute(
            select(Attendance)
            .where(
                Attendance.employee_id == employee_id,
                Attendance.attendance_date.between(first, last),
            )
            .order_by(Attendance.attendance_date)
        )
        return list(result.scalars().all())

    async def team_month(self, manager: Employee, month: int, year: int) -> List[Attendance]:
        """Attendance of the manager's direct reports for a month."""
        first, last = month_bounds(year, month)
        result = await self.db.execute(
            select(Attendance)
            .join(Employee, Employee.id == Attendance.employee_id)
            .options(selectinload(Attendance.employee))
            .where(
                Employee.manager_id == manager.id,
                Attendance.attendance_date.between(first, last),
            )
            .order_by(Attendance.attendance_date, Employee.employee_code)
        )
        return list(result.scalars().all())

    async def list_attendance(
        self,
        skip: int = 0,
        limit: int = 20,
        employee_id: Optional[uuid.UUID] = None,
        status_value: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        department_id: Optional[uuid.UUID] = None,
    ) -> Tuple[List[Attendance], int]:
        """All attendance with filters; returns (items, total)."""
        query = select(Attendance).join(Employee, Employee.id == Attendance.employee_id)

        if employee_id:
            query = query.where(Attendance.employee_id == employee_id)
        if status_value:
            query = query.where(Attendance.status == status_value)
        if start_date:
            query = query.where(Attendance.attendance_date >= start_date)
        if end_date:
            query = query.where(Attendance.attendance_date <= end_date)
        if department_id:
            query = query.where(Employee.department_id == department_id)

        count_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar() or 0

        query = (
            query.options(selectinload(Attendance.employee))
            .order_by(Attendance.attendance_date.desc(), Employee.employee_code)
            .offset(skip)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    # =========================================================================
    # CALENDAR & SUMMARIES
    # =========================================================================

    async def _holidays_between(self, first: date, last: date) -> Dict[date, Holiday]:
        result = await self.db.execute(
            select(Holiday).where(Holiday.holiday_date.between(first, last))
        )
        return {h.holiday_date: h for h in result.scalars().all()}

    async def calendar(self, employee_id: uuid.UUID, month: int, year: int) -> Dict[str, Any]:
        """
        Month view for one employee.
        Day precedence: holiday, weekly off, attendance status, NOT_MARKED.
        """
        first, last = month_bounds(year, month)
        settings_row = await self.get_settings()
        holidays = await self._holidays_between(first, last)
        records = {r.attendance_date: r for r in await self.employee_month(employee_id, month, year)}

        days = []
        for offset in range((last - first).days + 1):
            day = first + timedelta(days=offset)
            entry = {"day": day, "status": NOT_MARKED, "working_hours": 0}
            record = records.get(day)

            if day in holidays:
                entry["status"] = AttendanceStatus.HOLIDAY.value
                entry["holiday_name"] = holidays[day].name
            elif is_weekly_off(day, settings_row):
                entry["status"] = AttendanceStatus.WEEKLY_OFF.value
            elif record is not None:
                entry.update(
                    status=record.status,
                    leave_type=record.leave_type,
                    leave_color=record.leave_color,
                    check_in=as_utc(record.check_in),
                    check_out=as_utc(record.check_out),
                    working_hours=float(record.working_hours or 0),
                )
            days.append(entry)

        return {"employee_id": employee_id, "month": month, "year": year, "days": days}

    async def today_summary(self, employee: Employee, now: Optional[datetime] = None) -> Dict[str, Any]:
        settings_row = await self.get_settings()
        now = as_utc(now or datetime.now(timezone.utc))
        day = now.astimezone(tenant_timezone(settings_row)).date()

        record = await self.get_record(employee.id, day)
        if record is None:
            return {
                "day": day,
                "status": NOT_MARKED,
                "total_punches": 0,
                "in_count": 0,
                "out_count": 0,
                "working_hours": 0,
                "is_checked_in": False,
                "first_punch": None,
                "last_punch": None,
                "logs": [],
            }

        logs = list(record.logs or [])
        return {
            "day": day,
            "status": record.status,
            "total_punches": len(logs),
            "in_count": sum(1 for e in logs if e.get("type") == PunchType.IN.value),
            "out_count": sum(1 for e in logs if e.get("type") == PunchType.OUT.value),
            "working_hours": float(record.working_hours or 0),
            "is_checked_in": bool(logs) and logs[-1].get("type") == PunchType.IN.value,
            "first_punch": log_time(logs[0]) if logs else None,
            "last_punch": log_time(logs[-1]) if logs else None,
            "logs": logs,
        }

    async def hr_stats(self, day: date) -> Dict[str, Any]:
        """Dashboard numbers for one day across the tenant."""
        total_result = await self.db.execute(
            select(func.count(Employee.id)).where(Employee.status == EmployeeStatus.ACTIVE.value)
        )
        total_employees = total_result.scalar() or 0

        result = await self.db.execute(select(Attendance).where(Attendance.attendance_date == day))
        records = list(result.scalars().all())

        worked = [float(r.working_hours or 0) for r in records if r.check_in is not None]
        average = round(sum(worked) / len(worked), 2) if worked else 0

        return {
            "day": day,
            "total_employees": total_employees,
            "punched_in": len(records),
            "multiple_punches": sum(1 for r in records if len(r.logs or []) > 2),
            "missing_punch_out": sum(1 for r in records if r.check_in is not None and r.check_out is None),
            "average_working_hours": average,
        }

    async def monthly_snapshot(
        self,
        employee_id: uuid.UUID,
        month: int,
        year: int,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Month totals for payroll.

        Half days count 0.5 present. Working days with no record count as
        absent, but only up to today.
        """
        first, last = month_bounds(year, month)
        settings_row = await self.get_settings()
        today = today or datetime.now(timezone.utc).astimezone(tenant_timezone(settings_row)).date()
        holidays = await self._holidays_between(first, last)
        records = {r.attendance_date: r for r in await self.employee_month(employee_id, month, year)}

        snapshot = {
            "employee_id": employee_id,
            "month": month,
            "year": year,
            "present_days": 0.0,
            "absent_days": 0,
            "leave_days": 0.0,
            "holidays": 0,
            "weekly_offs": 0,
            "late_marks": 0,
            "total_working_hours": 0.0,
        }

        for offset in range((last - first).days + 1):
            day = first + timedelta(days=offset)
            record = records.get(day)

            if record is not None:
                if record.is_late:
                    snapshot["late_marks"] += 1
                snapshot["total_working_hours"] += float(record.working_hours or 0)

            if day in holidays:
                snapshot["holidays"] += 1
            elif is_weekly_off(day, settings_row):
                snapshot["weekly_offs"] += 1
            elif record is None:
                if day <= today:
                    snapshot["absent_days"] += 1
            elif record.status == AttendanceStatus.PRESENT.value:
                snapshot["present_days"] += 1
            elif record.status == AttendanceStatus.HALF_DAY.value:
                snapshot["present_days"] += 0.5
                if record.leave_type:
                    snapshot["leave_days"] += 0.5
            elif record.status == AttendanceStatus.LEAVE.value:
                snapshot["leave_days"] += 1
            elif record.status in (AttendanceStatus.ABSENT.value, AttendanceStatus.MISSED_PUNCH.value):
                snapshot["absent_days"] += 1
            elif record.status == AttendanceStatus.HOLIDAY.value:
                snapshot["holidays"] += 1
            elif record.status == AttendanceStatus.WEEKLY_OFF.value:
                snapshot["weekly_offs"] += 1

        snapshot["total_working_hours"] = round(snapshot["total_working_hours"], 2)
        return snapshot
