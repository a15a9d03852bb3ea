"""HR models living inside each tenant's store.

Supports:
- Department and employee records with a manager hierarchy
- Leave policies, the leave balance ledger and leave requests
- Daily attendance with punch logs and per-tenant attendance settings
- Regularization requests and the holiday calendar
"""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Numeric, Date, Float
from sqlalchemy import UniqueConstraint, Index, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import TenantBase
from app.db_types import JSONType, UUIDType


# ==================== Enums ====================

class EmployeeRole(str, Enum):
    """Access role carried by an employee account."""
    EMPLOYEE = "EMPLOYEE"
    MANAGER = "MANAGER"
    HR = "HR"
    ADMIN = "ADMIN"
    PSA = "PSA"


# Roles allowed to act on anyone's attendance and leave
HR_ROLES = frozenset({EmployeeRole.HR.value, EmployeeRole.ADMIN.value, EmployeeRole.PSA.value})


class EmployeeStatus(str, Enum):
    """Employee status in organization."""
    ACTIVE = "ACTIVE"
    DRAFT = "DRAFT"
    INACTIVE = "INACTIVE"


class LeaveStatus(str, Enum):
    """Leave request status."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class AppliedBy(str, Enum):
    """Who filed a leave request."""
    EMPLOYEE = "EMPLOYEE"
    HR = "HR"


class HalfDayTarget(str, Enum):
    """Which boundary date of a leave range is the half day."""
    START = "START"
    END = "END"


class HalfDaySession(str, Enum):
    FIRST_HALF = "FIRST_HALF"
    SECOND_HALF = "SECOND_HALF"


class AttendanceStatus(str, Enum):
    """Daily attendance status."""
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    LEAVE = "LEAVE"
    HOLIDAY = "HOLIDAY"
    WEEKLY_OFF = "WEEKLY_OFF"
    HALF_DAY = "HALF_DAY"
    MISSED_PUNCH = "MISSED_PUNCH"


# Statuses set by other components that punches must not overwrite
STICKY_ATTENDANCE_STATUSES = frozenset({
    AttendanceStatus.LEAVE.value,
    AttendanceStatus.HOLIDAY.value,
    AttendanceStatus.WEEKLY_OFF.value,
})


class PunchType(str, Enum):
    IN = "IN"
    OUT = "OUT"


class PunchMode(str, Enum):
    SINGLE = "SINGLE"
    MULTIPLE = "MULTIPLE"


class MaxPunchAction(str, Enum):
    BLOCK = "BLOCK"
    WARN = "WARN"


class LocationRestrictionMode(str, Enum):
    NONE = "NONE"
    GEO = "GEO"
    IP = "IP"
    BOTH = "BOTH"


class PolicyApplicability(str, Enum):
    ALL = "ALL"
    DEPARTMENT = "DEPARTMENT"
    ROLE = "ROLE"
    SPECIFIC = "SPECIFIC"


class RegularizationCategory(str, Enum):
    ATTENDANCE = "ATTENDANCE"
    LEAVE = "LEAVE"


class RegularizationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class HolidayType(str, Enum):
    PUBLIC = "PUBLIC"
    OPTIONAL = "OPTIONAL"
    COMPANY = "COMPANY"
    NATIONAL = "NATIONAL"
    FESTIVAL = "FESTIVAL"


# Leave types that never draw on a balance
UNPAID_LEAVE_TYPES = frozenset({"lop", "loss of pay", "leave without pay", "personal leave"})


def is_unpaid_leave_type(leave_type: Optional[str]) -> bool:
    """True for leave types that are always fully unpaid."""
    return (leave_type or "").strip().lower() in UNPAID_LEAVE_TYPES


# ==================== Department ====================

class Department(TenantBase):
    """
    Department within a tenant.
    """
    __tablename__ = "departments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
        index=True,
        comment="HR, SALES, OPS, etc."
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    employees: Mapped[List["Employee"]] = relationship("Employee", back_populates="department")

    def __repr__(self) -> str:
        return f"<Department(code='{self.code}', name='{self.name}')>"


# ==================== Employee ====================

class Employee(TenantBase):
    """
    Employee record. Also the login account for the tenant's users.
    The manager chain must stay acyclic; this is checked when a manager is set.
    """
    __tablename__ = "employees"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Identification
    employee_code: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="EMP-0001"
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    middle_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Employment Details
    role: Mapped[str] = mapped_column(
        String(20),
        default=EmployeeRole.EMPLOYEE.value,
        nullable=False,
        comment="EMPLOYEE, MANAGER, HR, ADMIN, PSA"
    )
    designation: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=EmployeeStatus.ACTIVE.value,
        nullable=False,
        index=True,
        comment="ACTIVE, DRAFT, INACTIVE"
    )
    joining_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Reporting
    manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Assignments
    leave_policy_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("leave_policies.id", ondelete="SET NULL"),
        nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    department: Mapped[Optional["Department"]] = relationship(
        "Department",
        back_populates="employees"
    )
    leave_policy: Mapped[Optional["LeavePolicy"]] = relationship("LeavePolicy")

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.middle_name, self.last_name]
        return " ".join(p for p in parts if p)

    @property
    def is_hr(self) -> bool:
        return self.role in HR_ROLES

    def __repr__(self) -> str:
        return f"<Employee(code='{self.employee_code}')>"


# ==================== Leave Policy ====================

class LeavePolicy(TenantBase):
    """
    Named bundle of leave rules, scoped to all employees, departments,
    roles or one specific employee.
    """
    __tablename__ = "leave_policies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    applicable_to: Mapped[str] = mapped_column(
        String(20),
        default=PolicyApplicability.ALL.value,
        nullable=False,
        comment="ALL, DEPARTMENT, ROLE, SPECIFIC"
    )
    departments: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    roles: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    specific_employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    effective_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    rules: Mapped[List["LeavePolicyRule"]] = relationship(
        "LeavePolicyRule",
        back_populates="policy",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def rule_for(self, leave_type: str) -> Optional["LeavePolicyRule"]:
        for rule in self.rules:
            if rule.leave_type == leave_type:
                return rule
        return None

    def __repr__(self) -> str:
        return f"<LeavePolicy(name='{self.name}', applicable_to='{self.applicable_to}')>"


class LeavePolicyRule(TenantBase):
    """One leave type entitlement inside a policy."""
    __tablename__ = "leave_policy_rules"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    policy_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("leave_policies.id", ondelete="CASCADE"),
        nullable=False
    )
    leave_type: Mapped[str] = mapped_column(String(50), nullable=False, comment="CL, SL, EL ...")
    total_per_year: Mapped[Decimal] = mapped_column(Numeric(5, 1), default=0, nullable=False)
    monthly_accrual: Mapped[bool] = mapped_column(Boolean, default=False)
    carry_forward_allowed: Mapped[bool] = mapped_column(Boolean, default=False)
    max_carry_forward: Mapped[Decimal] = mapped_column(Numeric(5, 1), default=0)
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=True)
    allow_during_probation: Mapped[bool] = mapped_column(Boolean, default=True)
    color: Mapped[str] = mapped_column(String(20), default="#3b82f6")

    policy: Mapped["LeavePolicy"] = relationship("LeavePolicy", back_populates="rules")

    __table_args__ = (
        UniqueConstraint('policy_id', 'leave_type', name='uq_policy_rule_type'),
    )


# ==================== Leave Balance ====================

class LeaveBalance(TenantBase):
    """
    Leave ledger row per employee, leave type and accounting year.

    available is derived: total - used - pending, recomputed before every
    insert and update. version is an optimistic-lock counter.
    """
    __tablename__ = "leave_balances"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False
    )
    policy_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("leave_policies.id", ondelete="SET NULL"),
        nullable=True
    )
    leave_type: Mapped[str] = mapped_column(String(50), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False, comment="Leave cycle start year")

    total: Mapped[Decimal] = mapped_column(Numeric(5, 1), default=Decimal("0"), nullable=False)
    used: Mapped[Decimal] = mapped_column(Numeric(5, 1), default=Decimal("0"), nullable=False)
    pending: Mapped[Decimal] = mapped_column(Numeric(5, 1), default=Decimal("0"), nullable=False)
    available: Mapped[Decimal] = mapped_column(
        Numeric(5, 1),
        default=Decimal("0"),
        nullable=False,
        comment="Derived: total - used - pending"
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    __table_args__ = (
        UniqueConstraint('employee_id', 'leave_type', 'year', name='uq_leave_balance'),
    )
    __mapper_args__ = {"version_id_col": version}

    def recompute_available(self) -> Decimal:
        self.available = (
            Decimal(self.total or 0) - Decimal(self.used or 0) - Decimal(self.pending or 0)
        )
        return self.available

    def __repr__(self) -> str:
        return (
            f"<LeaveBalance(employee='{self.employee_id}', type='{self.leave_type}', "
            f"year={self.year}, available={self.available})>"
        )


@event.listens_for(LeaveBalance, "before_insert")
@event.listens_for(LeaveBalance, "before_update")
def _recompute_available_before_write(mapper, connection, target: LeaveBalance) -> None:
    target.recompute_available()


# ==================== Leave Request ====================

class LeaveRequest(TenantBase):
    """
    Employee leave application.
    PENDING requests hold their paid days in the balance's pending field.
    """
    __tablename__ = "leave_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    applied_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    applied_by_role: Mapped[str] = mapped_column(
        String(20),
        default=AppliedBy.EMPLOYEE.value,
        nullable=False,
        comment="EMPLOYEE or HR"
    )
    leave_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Leave Period
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_half_day: Mapped[bool] = mapped_column(Boolean, default=False)
    half_day_target: Mapped[Optional[str]] = mapped_column(String(10), nullable=True, comment="START or END")
    half_day_session: Mapped[Optional[str]] = mapped_column(
        String(15),
        nullable=True,
        comment="FIRST_HALF or SECOND_HALF"
    )
    days_count: Mapped[Decimal] = mapped_column(Numeric(5, 1), nullable=False)
    paid_leave_days: Mapped[Decimal] = mapped_column(Numeric(5, 1), default=Decimal("0"), nullable=False)
    unpaid_leave_days: Mapped[Decimal] = mapped_column(Numeric(5, 1), default=Decimal("0"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False, comment="Leave cycle year the balance belongs to")

    # Details
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default=LeaveStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="PENDING, APPROVED, REJECTED, CANCELLED"
    )

    # Approval tracking
    approver_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    admin_remark: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hr_comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    meta: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    employee: Mapped["Employee"] = relationship("Employee", foreign_keys=[employee_id])

    __table_args__ = (
        Index('idx_leave_requests_range', 'employee_id', 'start_date', 'end_date'),
    )

    @property
    def half_day_date(self) -> Optional[date]:
        if not self.is_half_day:
            return None
        if self.half_day_target == HalfDayTarget.START.value:
            return self.start_date
        return self.end_date

    def __repr__(self) -> str:
        return f"<LeaveRequest(employee='{self.employee_id}', type='{self.leave_type}', status='{self.status}')>"


# ==================== Attendance ====================

class Attendance(TenantBase):
    """
    Daily attendance record for employees.
    logs holds the ordered punch entries: {time, type, device, location, ip, latitude, longitude}.
    """
    __tablename__ = "attendance"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Employee & Date
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False
    )
    attendance_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    # Status
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        comment="PRESENT, ABSENT, LEAVE, HOLIDAY, WEEKLY_OFF, HALF_DAY, MISSED_PUNCH"
    )
    leave_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    leave_color: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Time tracking
    check_in: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    logs: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    working_hours: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        default=Decimal("0"),
        nullable=False,
        comment="Sum of IN->OUT pairs"
    )
    overtime_hours: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)

    # Late/Early tracking
    is_late: Mapped[bool] = mapped_column(Boolean, default=False)
    is_early_out: Mapped[bool] = mapped_column(Boolean, default=False)

    # Overrides
    is_manual_override: Mapped[bool] = mapped_column(Boolean, default=False)
    override_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    locked: Mapped[bool] = mapped_column(Boolean, default=False)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    employee: Mapped["Employee"] = relationship("Employee")

    __table_args__ = (
        UniqueConstraint('employee_id', 'attendance_date', name='uq_attendance_employee_date'),
        Index('idx_attendance_employee', 'employee_id'),
    )

    def __repr__(self) -> str:
        return f"<Attendance(employee_id='{self.employee_id}', date='{self.attendance_date}', status='{self.status}')>"


# ==================== Attendance Settings ====================

class AttendanceSettings(TenantBase):
    """
    Tenant-wide attendance policy. One row per tenant store.
    weekly_off_days uses Python weekday numbers (0 = Monday, 6 = Sunday).
    """
    __tablename__ = "attendance_settings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Shift
    shift_start_time: Mapped[str] = mapped_column(String(5), default="09:00", nullable=False)
    shift_end_time: Mapped[str] = mapped_column(String(5), default="18:00", nullable=False)
    grace_time_minutes: Mapped[int] = mapped_column(Integer, default=15, nullable=False)
    late_mark_threshold_minutes: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    half_day_threshold_hours: Mapped[float] = mapped_column(Float, default=4, nullable=False)
    full_day_threshold_hours: Mapped[float] = mapped_column(Float, default=7, nullable=False)
    weekly_off_days: Mapped[list] = mapped_column(JSONType, default=lambda: [6], nullable=False)
    timezone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, comment="IANA zone name")

    # Calendar / payroll. sandwich_leave, auto_absent, break_tracking_enabled and
    # overtime_to_payroll are stored for payroll; no rule here reads them.
    sandwich_leave: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_absent: Mapped[bool] = mapped_column(Boolean, default=True)
    attendance_lock_day: Mapped[int] = mapped_column(Integer, default=25, nullable=False)
    leave_cycle_start_month: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
        comment="1 = January"
    )

    # Punch policy
    punch_mode: Mapped[str] = mapped_column(String(10), default=PunchMode.SINGLE.value, nullable=False)
    max_punches_per_day: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    max_punch_action: Mapped[str] = mapped_column(String(10), default=MaxPunchAction.BLOCK.value, nullable=False)
    break_tracking_enabled: Mapped[bool] = mapped_column(Boolean, default=False)

    # Overtime
    overtime_allowed: Mapped[bool] = mapped_column(Boolean, default=False)
    overtime_after_shift_hours: Mapped[bool] = mapped_column(Boolean, default=True)
    overtime_to_payroll: Mapped[bool] = mapped_column(Boolean, default=False)

    # Location restrictions
    location_restriction_mode: Mapped[str] = mapped_column(
        String(10),
        default=LocationRestrictionMode.NONE.value,
        nullable=False,
        comment="NONE, GEO, IP, BOTH"
    )
    geo_fencing_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    office_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    office_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    allowed_radius_meters: Mapped[float] = mapped_column(Float, default=100, nullable=False)
    ip_restriction_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    allowed_ips: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    allowed_ip_ranges: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )


# ==================== Regularization ====================

class Regularization(TenantBase):
    """
    Correction request against an attendance or leave day.
    original_data is a snapshot taken at creation time.
    """
    __tablename__ = "regularizations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    category: Mapped[str] = mapped_column(String(20), nullable=False, comment="ATTENDANCE or LEAVE")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    issue_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    original_data: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    requested_data: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attachment_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=RegularizationStatus.PENDING.value,
        nullable=False,
        index=True
    )
    approver_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    admin_remark: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    action_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    employee: Mapped["Employee"] = relationship("Employee")

    def __repr__(self) -> str:
        return f"<Regularization(employee='{self.employee_id}', category='{self.category}', status='{self.status}')>"


# ==================== Holiday ====================

class Holiday(TenantBase):
    """Declared holiday. At most one per date."""
    __tablename__ = "holidays"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    holiday_date: Mapped[date] = mapped_column(Date, nullable=False, unique=True, index=True)
    type: Mapped[str] = mapped_column(String(20), default=HolidayType.PUBLIC.value, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Holiday(name='{self.name}', date='{self.holiday_date}')>"
