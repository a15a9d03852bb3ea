"""
Attendance API Endpoints.

Endpoints for:
- Punching in and out (geo-fenced / IP restricted)
- Attendance settings
- Employee, team and HR views
- Manual override and Excel bulk upload
"""
import uuid
from datetime import date
from typing import Optional, List

from fastapi import APIRouter, Depends, Query, HTTPException, status, Request, UploadFile, File

from app.api.deps import TenantDB, CurrentUser, HRUser, get_client_ip, raise_for_failure
from app.core.module_decorators import Modules, require_module
from app.models.hr import Attendance, Employee
from app.schemas.hr import (
    PunchRequest, PunchResponse, PunchPolicy,
    AttendanceResponse, AttendanceListResponse,
    AttendanceSettingsResponse, AttendanceSettingsUpdate,
    AttendanceOverrideRequest, AttendanceCalendarResponse,
    TodaySummary, AttendanceStats, MonthlySnapshot, BulkUploadResponse,
)
from app.services.attendance_service import AttendanceService
from app.services.attendance_import_service import AttendanceImportService

router = APIRouter(
    dependencies=[Depends(require_module(Modules.ATTENDANCE))],
)

EXCEL_EXTENSIONS = (".xlsx", ".xlsm")


def attendance_response(record: Attendance) -> AttendanceResponse:
    """Format an attendance row, adding employee details when they were loaded."""
    response = AttendanceResponse.model_validate(record)
    employee = record.__dict__.get("employee")
    if employee is not None:
        response.employee_code = employee.employee_code
        response.employee_name = employee.full_name
    return response


async def _check_can_view(db, current_user: Employee, employee_id: uuid.UUID) -> None:
    if employee_id == current_user.id or current_user.is_hr:
        return
    employee = await db.get(Employee, employee_id)
    if employee is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    if employee.manager_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only view your own or your team's attendance"
        )


# ==================== Settings ====================

@router.get("/settings", response_model=AttendanceSettingsResponse)
async def get_attendance_settings(db: TenantDB, current_user: CurrentUser):
    """Get the tenant's attendance settings (created with defaults on first read)."""
    settings_row = await AttendanceService(db).get_settings()
    await db.commit()
    return settings_row


@router.put("/settings", response_model=AttendanceSettingsResponse)
async def update_attendance_settings(
    request: Request,
    data: AttendanceSettingsUpdate,
    db: TenantDB,
    current_user: HRUser,
):
    """Update attendance settings. HR only."""
    service = AttendanceService(db)
    settings_row = raise_for_failure(await service.update_settings(
        data.model_dump(exclude_unset=True),
        actor=current_user,
        ip_address=get_client_ip(request),
    ))
    await db.commit()
    await db.refresh(settings_row)
    return settings_row


# ==================== Punch ====================

@router.post("/punch", response_model=PunchResponse)
async def punch(
    request: Request,
    data: PunchRequest,
    db: TenantDB,
    current_user: CurrentUser,
):
    """
    Record a punch for the current employee.

    The punch direction alternates IN/OUT. Location violations are audited
    and rejected with 403.
    """
    service = AttendanceService(db)
    result = await service.punch(
        current_user,
        date_str=data.date_str,
        latitude=data.latitude,
        longitude=data.longitude,
        location=data.location,
        device=data.device,
        client_ip=get_client_ip(request),
    )
    # Violation audit rows are kept even though the punch is refused
    await db.commit()
    result = raise_for_failure(result)

    return PunchResponse(
        punch_type=result["punch_type"],
        attendance=attendance_response(result["attendance"]),
        policy=PunchPolicy(**result["policy"]),
        warning=result["warning"],
    )


@router.get("/today", response_model=TodaySummary)
async def get_today(db: TenantDB, current_user: CurrentUser):
    """Today's punch summary for the current employee."""
    return await AttendanceService(db).today_summary(current_user)


# ==================== Views ====================

@router.get("/me", response_model=List[AttendanceResponse])
async def get_my_attendance(
    db: TenantDB,
    current_user: CurrentUser,
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2000, le=2100),
):
    """The current employee's attendance for a month."""
    records = await AttendanceService(db).employee_month(current_user.id, month, year)
    return [attendance_response(r) for r in records]


@router.get("/team", response_model=List[AttendanceResponse])
async def get_team_attendance(
    db: TenantDB,
    current_user: CurrentUser,
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2000, le=2100),
):
    """Attendance of the current employee's direct reports for a month."""
    records = await AttendanceService(db).team_month(current_user, month, year)
    return [attendance_response(r) for r in records]


@router.get("/calendar", response_model=AttendanceCalendarResponse)
async def get_calendar(
    db: TenantDB,
    current_user: CurrentUser,
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2000, le=2100),
    employee_id: Optional[uuid.UUID] = None,
):
    """Month calendar with holidays, weekly offs and leave colours."""
    target = employee_id or current_user.id
    await _check_can_view(db, current_user, target)
    return await AttendanceService(db).calendar(target, month, year)


@router.get("/snapshot", response_model=MonthlySnapshot)
async def get_monthly_snapshot(
    db: TenantDB,
    current_user: CurrentUser,
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2000, le=2100),
    employee_id: Optional[uuid.UUID] = None,
):
    """Present/absent/leave counts for a month."""
    target = employee_id or current_user.id
    await _check_can_view(db, current_user, target)
    return await AttendanceService(db).monthly_snapshot(target, month, year)


@router.get("", response_model=AttendanceListResponse)
async def list_attendance(
    db: TenantDB,
    current_user: HRUser,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    employee_id: Optional[uuid.UUID] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    department_id: Optional[uuid.UUID] = None,
):
    """List attendance records across the tenant. HR only."""
    skip = (page - 1) * size
    records, total = await AttendanceService(db).list_attendance(
        skip=skip,
        limit=size,
        employee_id=employee_id,
        status_value=status_filter.upper() if status_filter else None,
        start_date=start_date,
        end_date=end_date,
        department_id=department_id,
    )
    pages = (total + size - 1) // size

    return AttendanceListResponse(
        items=[attendance_response(r) for r in records],
        total=total,
        page=page,
        size=size,
        pages=pages,
    )


@router.get("/stats", response_model=AttendanceStats)
async def get_attendance_stats(
    db: TenantDB,
    current_user: HRUser,
    day: Optional[date] = None,
):
    """Punch statistics for a day (today by default). HR only."""
    service = AttendanceService(db)
    return await service.hr_stats(day or await service.local_today())


# ==================== HR actions ====================

@router.post("/override", response_model=AttendanceResponse)
async def override_attendance(
    request: Request,
    data: AttendanceOverrideRequest,
    db: TenantDB,
    current_user: HRUser,
):
    """Set an employee's attendance for a day by hand. A reason is mandatory."""
    record = raise_for_failure(await AttendanceService(db).override(
        current_user,
        employee_id=data.employee_id,
        day=data.attendance_date,
        status_value=data.status.value,
        check_in=data.check_in,
        check_out=data.check_out,
        reason=data.reason,
        ip_address=get_client_ip(request),
    ))
    await db.commit()
    await db.refresh(record)
    return attendance_response(record)


@router.post("/upload", response_model=BulkUploadResponse)
async def upload_attendance(
    request: Request,
    db: TenantDB,
    current_user: HRUser,
    file: UploadFile = File(...),
):
    """
    Bulk-import attendance from an Excel sheet.

    Expected columns:
    - Employee ID: employee code
    - Date: attendance date
    - Status: PRESENT, ABSENT, HALF_DAY, ... (optional, PRESENT by default)
    - Check In / Check Out: HH:MM (optional)

    Each row is applied on its own; failed rows are reported with their
    sheet row number.
    """
    filename = file.filename or ""
    if not filename.lower().endswith(EXCEL_EXTENSIONS):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unsupported file format. Please upload an Excel (.xlsx) file."
        )

    content = await file.read()
    result = raise_for_failure(await AttendanceImportService(db).import_excel(
        content,
        actor=current_user,
        filename=filename,
        ip_address=get_client_ip(request),
    ))
    await db.commit()
    return result
