"""Pydantic schemas for HR, attendance, leave and regularization."""
from datetime import datetime, date, time
from typing import Optional, List, Dict, Any
from uuid import UUID
from pydantic import BaseModel, Field, EmailStr, field_validator

from app.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema, PaginatedResponse

from app.models.hr import (
    EmployeeRole, EmployeeStatus, AttendanceStatus,
    HalfDayTarget, HalfDaySession, PunchMode, MaxPunchAction,
    LocationRestrictionMode, PolicyApplicability, RegularizationCategory, HolidayType,
)


# ==================== Employee Schemas ====================

class EmployeeCreate(BaseCreateSchema):
    """Schema for creating Employee."""
    employee_code: str = Field(..., max_length=30)
    first_name: str = Field(..., max_length=100)
    middle_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)
    role: EmployeeRole = EmployeeRole.EMPLOYEE
    designation: Optional[str] = None
    department_id: Optional[UUID] = None
    manager_id: Optional[UUID] = None
    status: EmployeeStatus = EmployeeStatus.ACTIVE
    joining_date: Optional[date] = None
    leave_policy_id: Optional[UUID] = None


class EmployeeResponse(BaseResponseSchema):
    """Response schema for Employee."""
    id: UUID
    employee_code: str
    first_name: str
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: str
    email: Optional[str] = None
    role: str
    designation: Optional[str] = None
    department_id: Optional[UUID] = None
    manager_id: Optional[UUID] = None
    status: str
    joining_date: Optional[date] = None
    leave_policy_id: Optional[UUID] = None
    created_at: datetime


class EmployeeListResponse(PaginatedResponse):
    items: List[EmployeeResponse]


class ManagerAssignRequest(BaseModel):
    """Set or clear an employee's direct manager."""
    manager_id: Optional[UUID] = None


class DepartmentCreate(BaseCreateSchema):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=100)
    is_active: bool = True


class DepartmentResponse(BaseResponseSchema):
    id: UUID
    code: str
    name: str
    is_active: bool
    created_at: datetime


# ==================== Attendance Schemas ====================

class PunchRequest(BaseCreateSchema):
    """Punch input. date_str is the client's local date (YYYY-MM-DD)."""
    date_str: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    location: Optional[str] = Field(None, max_length=255)
    device: Optional[str] = Field(None, max_length=100)


class AttendanceResponse(BaseResponseSchema):
    """Response schema for Attendance."""
    id: UUID
    employee_id: UUID
    attendance_date: date
    status: str
    check_in: Optional[datetime] = None
    check_out: Optional[datetime] = None
    logs: List[Dict[str, Any]] = []
    working_hours: float = 0
    overtime_hours: float = 0
    is_late: bool = False
    is_early_out: bool = False
    leave_type: Optional[str] = None
    leave_color: Optional[str] = None
    is_manual_override: bool = False
    override_reason: Optional[str] = None
    locked: bool = False
    approved_by: Optional[UUID] = None
    employee_code: Optional[str] = None
    employee_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PunchPolicy(BaseModel):
    """Policy flags echoed with each punch."""
    punch_mode: str
    is_late: bool
    is_early_out: bool
    working_hours: float


class PunchResponse(BaseModel):
    punch_type: str
    attendance: AttendanceResponse
    policy: PunchPolicy
    warning: Optional[str] = None


class AttendanceListResponse(PaginatedResponse):
    """Response for listing attendance."""
    items: List[AttendanceResponse]


class AttendanceSettingsResponse(BaseResponseSchema):
    """Tenant attendance policy."""
    shift_start_time: str
    shift_end_time: str
    grace_time_minutes: int
    late_mark_threshold_minutes: int
    half_day_threshold_hours: float
    full_day_threshold_hours: float
    weekly_off_days: List[int]
    timezone: Optional[str] = None
    sandwich_leave: bool
    auto_absent: bool
    attendance_lock_day: int
    leave_cycle_start_month: int
    punch_mode: str
    max_punches_per_day: int
    max_punch_action: str
    break_tracking_enabled: bool
    overtime_allowed: bool
    overtime_after_shift_hours: bool
    overtime_to_payroll: bool
    location_restriction_mode: str
    geo_fencing_enabled: bool
    office_latitude: Optional[float] = None
    office_longitude: Optional[float] = None
    allowed_radius_meters: float
    ip_restriction_enabled: bool
    allowed_ips: List[str]
    allowed_ip_ranges: List[str]
    updated_at: Optional[datetime] = None


class AttendanceSettingsUpdate(BaseUpdateSchema):
    """Partial update of the attendance policy."""
    shift_start_time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")
    shift_end_time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")
    grace_time_minutes: Optional[int] = Field(None, ge=0)
    late_mark_threshold_minutes: Optional[int] = Field(None, ge=0)
    half_day_threshold_hours: Optional[float] = Field(None, ge=0)
    full_day_threshold_hours: Optional[float] = Field(None, ge=0)
    weekly_off_days: Optional[List[int]] = None
    timezone: Optional[str] = None
    # Stored for payroll; leave counting always spans every calendar day
    sandwich_leave: Optional[bool] = Field(None, description="Stored only; not applied to leave day counts")
    auto_absent: Optional[bool] = Field(None, description="Stored only; no job marks absentees")
    attendance_lock_day: Optional[int] = Field(None, ge=1, le=31)
    leave_cycle_start_month: Optional[int] = Field(None, ge=1, le=12)
    punch_mode: Optional[PunchMode] = None
    max_punches_per_day: Optional[int] = None
    max_punch_action: Optional[MaxPunchAction] = None
    break_tracking_enabled: Optional[bool] = Field(None, description="Stored only; breaks are not tracked")
    overtime_allowed: Optional[bool] = None
    overtime_after_shift_hours: Optional[bool] = None
    overtime_to_payroll: Optional[bool] = Field(None, description="Stored only; kept for payroll")
    location_restriction_mode: Optional[LocationRestrictionMode] = None
    geo_fencing_enabled: Optional[bool] = None
    office_latitude: Optional[float] = Field(None, ge=-90, le=90)
    office_longitude: Optional[float] = Field(None, ge=-180, le=180)
    allowed_radius_meters: Optional[float] = Field(None, gt=0)
    ip_restriction_enabled: Optional[bool] = None
    allowed_ips: Optional[List[str]] = None
    allowed_ip_ranges: Optional[List[str]] = None

    @field_validator("weekly_off_days")
    @classmethod
    def validate_weekdays(cls, v):
        if v is not None and any(d < 0 or d > 6 for d in v):
            raise ValueError("weekly_off_days must be weekday numbers 0-6 (0 = Monday)")
        return v


class AttendanceOverrideRequest(BaseCreateSchema):
    """Manual HR override of one attendance day."""
    employee_id: UUID
    attendance_date: date
    status: AttendanceStatus
    check_in: Optional[time] = None
    check_out: Optional[time] = None
    reason: Optional[str] = None


class CalendarDay(BaseModel):
    day: date
    status: str
    holiday_name: Optional[str] = None
    leave_type: Optional[str] = None
    leave_color: Optional[str] = None
    check_in: Optional[datetime] = None
    check_out: Optional[datetime] = None
    working_hours: float = 0


class AttendanceCalendarResponse(BaseModel):
    employee_id: UUID
    month: int
    year: int
    days: List[CalendarDay]


class TodaySummary(BaseModel):
    """Today's punch summary for the current employee."""
    day: date
    status: str
    total_punches: int
    in_count: int
    out_count: int
    working_hours: float
    is_checked_in: bool
    first_punch: Optional[datetime] = None
    last_punch: Optional[datetime] = None
    logs: List[Dict[str, Any]] = []


class AttendanceStats(BaseModel):
    """HR dashboard numbers for one day."""
    day: date
    total_employees: int
    punched_in: int
    multiple_punches: int
    missing_punch_out: int
    average_working_hours: float


class MonthlySnapshot(BaseModel):
    """Monthly attendance summary feeding payroll."""
    employee_id: UUID
    month: int
    year: int
    present_days: float
    absent_days: int
    leave_days: float
    holidays: int
    weekly_offs: int
    late_marks: int
    total_working_hours: float


class BulkUploadError(BaseModel):
    row: int
    error: str


class BulkUploadResponse(BaseModel):
    success: int
    failed: int
    errors: List[BulkUploadError]


# ==================== Leave Schemas ====================

class LeaveApplyRequest(BaseCreateSchema):
    """Apply for leave. employee_id is only honoured for HR roles."""
    leave_type: str = Field(..., min_length=1, max_length=50)
    start_date: date
    end_date: Optional[date] = None
    is_half_day: bool = False
    half_day_target: Optional[HalfDayTarget] = None
    half_day_session: Optional[HalfDaySession] = None
    reason: Optional[str] = None
    employee_id: Optional[UUID] = None


class LeaveEditRequest(BaseUpdateSchema):
    """Edit a pending leave request."""
    leave_type: Optional[str] = Field(None, min_length=1, max_length=50)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_half_day: Optional[bool] = None
    half_day_target: Optional[HalfDayTarget] = None
    half_day_session: Optional[HalfDaySession] = None
    reason: Optional[str] = None


class LeaveApproveRequest(BaseModel):
    remark: Optional[str] = None


class LeaveRejectRequest(BaseModel):
    reason: Optional[str] = None


class LeaveRequestResponse(BaseResponseSchema):
    """Response schema for LeaveRequest."""
    id: UUID
    employee_id: UUID
    applied_by_id: Optional[UUID] = None
    applied_by_role: str
    leave_type: str
    start_date: date
    end_date: date
    is_half_day: bool
    half_day_target: Optional[str] = None
    half_day_session: Optional[str] = None
    days_count: float
    paid_leave_days: float
    unpaid_leave_days: float
    year: int
    reason: Optional[str] = None
    status: str
    approver_id: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    admin_remark: Optional[str] = None
    hr_comment: Optional[str] = None
    rejection_reason: Optional[str] = None
    employee_code: Optional[str] = None
    employee_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class LeaveRequestListResponse(PaginatedResponse):
    """Response for listing leave requests."""
    items: List[LeaveRequestResponse]


class LeaveBalanceResponse(BaseResponseSchema):
    """Response schema for LeaveBalance."""
    id: UUID
    employee_id: UUID
    leave_type: str
    year: int
    total: float
    used: float
    pending: float
    available: float
    version: int
    color: Optional[str] = None


class LeaveBalanceSummary(BaseModel):
    """All balances of one employee for a cycle year."""
    employee_id: UUID
    year: int
    balances: List[LeaveBalanceResponse]


# ==================== Leave Policy Schemas ====================

class LeavePolicyRuleBase(BaseModel):
    leave_type: str = Field(..., min_length=1, max_length=50)
    total_per_year: float = Field(0, ge=0)
    monthly_accrual: bool = False
    carry_forward_allowed: bool = False
    max_carry_forward: float = Field(0, ge=0)
    requires_approval: bool = True
    allow_during_probation: bool = True
    color: Optional[str] = Field(None, max_length=20)


class LeavePolicyRuleResponse(LeavePolicyRuleBase, BaseResponseSchema):
    id: UUID
    color: Optional[str] = None


class LeavePolicyCreate(BaseCreateSchema):
    """Schema for creating LeavePolicy."""
    name: str = Field(..., max_length=100)
    description: Optional[str] = None
    applicable_to: PolicyApplicability = PolicyApplicability.ALL
    departments: List[str] = Field(default_factory=list)
    roles: List[str] = Field(default_factory=list)
    specific_employee_id: Optional[UUID] = None
    is_active: bool = True
    effective_from: Optional[date] = None
    rules: List[LeavePolicyRuleBase] = Field(default_factory=list)


class LeavePolicyUpdate(BaseUpdateSchema):
    """Schema for updating LeavePolicy. Rules, when given, replace all rules."""
    name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    applicable_to: Optional[PolicyApplicability] = None
    departments: Optional[List[str]] = None
    roles: Optional[List[str]] = None
    specific_employee_id: Optional[UUID] = None
    is_active: Optional[bool] = None
    effective_from: Optional[date] = None
    rules: Optional[List[LeavePolicyRuleBase]] = None
    reassign: bool = False


class LeavePolicyResponse(BaseResponseSchema):
    """Response schema for LeavePolicy."""
    id: UUID
    name: str
    description: Optional[str] = None
    applicable_to: str
    departments: List[str] = []
    roles: List[str] = []
    specific_employee_id: Optional[UUID] = None
    is_active: bool
    effective_from: Optional[date] = None
    rules: List[LeavePolicyRuleResponse] = []
    employee_count: int = 0
    created_at: datetime
    updated_at: datetime


class LeavePolicyAssignRequest(BaseModel):
    employee_id: UUID
    policy_id: UUID


# ==================== Regularization Schemas ====================

class RegularizationCreate(BaseCreateSchema):
    """
    Correction request.

    requested_data for ATTENDANCE: {"check_in": "09:00", "check_out": "18:00"}
    requested_data for LEAVE: {"leave_type": "SL" | "Present", "original_leave_type": "CL"}
    """
    category: RegularizationCategory
    start_date: date
    end_date: Optional[date] = None
    issue_type: Optional[str] = Field(None, max_length=100)
    requested_data: Dict[str, Any] = Field(default_factory=dict)
    reason: Optional[str] = None
    attachment_url: Optional[str] = Field(None, max_length=500)


class RegularizationAction(BaseModel):
    remark: Optional[str] = None


class RegularizationResponse(BaseResponseSchema):
    id: UUID
    employee_id: UUID
    category: str
    start_date: date
    end_date: date
    issue_type: Optional[str] = None
    original_data: Dict[str, Any] = {}
    requested_data: Dict[str, Any] = {}
    reason: Optional[str] = None
    attachment_url: Optional[str] = None
    status: str
    approver_id: Optional[UUID] = None
    admin_remark: Optional[str] = None
    action_date: Optional[datetime] = None
    created_at: datetime


class RegularizationListResponse(PaginatedResponse):
    items: List[RegularizationResponse]


# ==================== Holiday Schemas ====================

class HolidayCreate(BaseCreateSchema):
    name: str = Field(..., max_length=100)
    holiday_date: date
    type: HolidayType = HolidayType.PUBLIC
    description: Optional[str] = None


class HolidayResponse(BaseResponseSchema):
    id: UUID
    name: str
    holiday_date: date
    type: str
    description: Optional[str] = None
