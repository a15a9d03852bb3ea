"""
Leave API Endpoints.

Endpoints for:
- Applying for, editing and cancelling leave
- Manager / HR approval and rejection
- Leave balances
"""
import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, HTTPException, status

from app.api.deps import TenantDB, CurrentUser, HRUser, raise_for_failure
from app.core.module_decorators import Modules, require_module
from app.models.hr import Employee, LeaveRequest
from app.schemas.hr import (
    LeaveApplyRequest, LeaveEditRequest, LeaveApproveRequest, LeaveRejectRequest,
    LeaveRequestResponse, LeaveRequestListResponse, LeaveBalanceSummary,
)
from app.services.leave_service import LeaveService

router = APIRouter(
    dependencies=[Depends(require_module(Modules.LEAVE))],
)


def leave_response(leave: LeaveRequest) -> LeaveRequestResponse:
    """Format a leave request, adding employee details when they were loaded."""
    response = LeaveRequestResponse.model_validate(leave)
    employee = leave.__dict__.get("employee")
    if employee is not None:
        response.employee_code = employee.employee_code
        response.employee_name = employee.full_name
    return response


def _list_response(items, total: int, page: int, size: int) -> LeaveRequestListResponse:
    pages = (total + size - 1) // size
    return LeaveRequestListResponse(
        items=[leave_response(leave) for leave in items],
        total=total,
        page=page,
        size=size,
        pages=pages,
    )


@router.post("", response_model=LeaveRequestResponse, status_code=status.HTTP_201_CREATED)
async def apply_leave(
    data: LeaveApplyRequest,
    db: TenantDB,
    current_user: CurrentUser,
):
    """
    Apply for leave.

    Self-filed requests start PENDING and reserve the paid days. HR can
    file for another employee with employee_id; such requests are approved
    immediately. Days beyond the available balance are booked as unpaid.
    """
    service = LeaveService(db)
    leave = raise_for_failure(await service.apply_leave(
        current_user,
        leave_type=data.leave_type,
        start_date=data.start_date,
        end_date=data.end_date,
        is_half_day=data.is_half_day,
        half_day_target=data.half_day_target.value if data.half_day_target else None,
        half_day_session=data.half_day_session.value if data.half_day_session else None,
        reason=data.reason,
        employee_id=data.employee_id,
    ))
    await db.commit()
    return leave_response(leave)


@router.get("/me", response_model=LeaveRequestListResponse)
async def list_my_leaves(
    db: TenantDB,
    current_user: CurrentUser,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
):
    """The current employee's leave requests."""
    items, total = await LeaveService(db).my_leaves(
        current_user,
        status_value=status_filter.upper() if status_filter else None,
        skip=(page - 1) * size,
        limit=size,
    )
    return _list_response(items, total, page, size)


@router.get("/team", response_model=LeaveRequestListResponse)
async def list_team_leaves(
    db: TenantDB,
    current_user: CurrentUser,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
):
    """Leave requests of the current employee's direct reports."""
    items, total = await LeaveService(db).team_leaves(
        current_user,
        status_value=status_filter.upper() if status_filter else None,
        skip=(page - 1) * size,
        limit=size,
    )
    return _list_response(items, total, page, size)


@router.get("", response_model=LeaveRequestListResponse)
async def list_leaves(
    db: TenantDB,
    current_user: HRUser,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    employee_id: Optional[uuid.UUID] = None,
    leave_type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    """All leave requests in the tenant. HR only."""
    items, total = await LeaveService(db).all_leaves(
        status_value=status_filter.upper() if status_filter else None,
        employee_id=employee_id,
        leave_type=leave_type,
        start_date=start_date,
        end_date=end_date,
        skip=(page - 1) * size,
        limit=size,
    )
    return _list_response(items, total, page, size)


@router.get("/balances/me", response_model=LeaveBalanceSummary)
async def get_leave_balance(
    db: TenantDB,
    current_user: CurrentUser,
    year: Optional[int] = Query(None, ge=2000, le=2100),
    employee_id: Optional[uuid.UUID] = None,
):
    """
    Leave balances for a cycle year.

    Balances are seeded from the applicable policy on first read. HR and
    managers may pass employee_id to look at someone else's balances.
    """
    employee = current_user
    if employee_id and employee_id != current_user.id:
        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
        if not (current_user.is_hr or employee.manager_id == current_user.id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You can only view your own or your team's balances"
            )

    summary = await LeaveService(db).my_balances(employee, year)
    await db.commit()
    return summary


@router.get("/{request_id}", response_model=LeaveRequestResponse)
async def get_leave(
    request_id: uuid.UUID,
    db: TenantDB,
    current_user: CurrentUser,
):
    """Get a leave request by ID."""
    leave = raise_for_failure(await LeaveService(db).get_leave(current_user, request_id))
    return leave_response(leave)


@router.put("/{request_id}", response_model=LeaveRequestResponse)
async def edit_leave(
    request_id: uuid.UUID,
    data: LeaveEditRequest,
    db: TenantDB,
    current_user: CurrentUser,
):
    """Edit a pending leave request; the balance moves by the difference."""
    leave = raise_for_failure(await LeaveService(db).edit_leave(
        current_user,
        request_id,
        data.model_dump(exclude_unset=True),
    ))
    await db.commit()
    return leave_response(leave)


@router.post("/{request_id}/approve", response_model=LeaveRequestResponse)
async def approve_leave(
    request_id: uuid.UUID,
    db: TenantDB,
    current_user: CurrentUser,
    data: Optional[LeaveApproveRequest] = None,
):
    """Approve a pending request. HR or the employee's manager."""
    leave = raise_for_failure(await LeaveService(db).approve_leave(
        current_user,
        request_id,
        remark=data.remark if data else None,
    ))
    await db.commit()
    return leave_response(leave)


@router.post("/{request_id}/reject", response_model=LeaveRequestResponse)
async def reject_leave(
    request_id: uuid.UUID,
    db: TenantDB,
    current_user: CurrentUser,
    data: Optional[LeaveRejectRequest] = None,
):
    """Reject a pending request and release its reserved days."""
    leave = raise_for_failure(await LeaveService(db).reject_leave(
        current_user,
        request_id,
        reason=data.reason if data else None,
    ))
    await db.commit()
    return leave_response(leave)


@router.post("/{request_id}/cancel", response_model=LeaveRequestResponse)
async def cancel_leave(
    request_id: uuid.UUID,
    db: TenantDB,
    current_user: CurrentUser,
):
    """Cancel your own pending request."""
    leave = raise_for_failure(await LeaveService(db).cancel_leave(current_user, request_id))
    await db.commit()
    return leave_response(leave)
