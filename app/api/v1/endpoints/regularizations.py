"""
Regularization API Endpoints.

Employees ask for a past day to be corrected, either its punches
(ATTENDANCE) or its leave status (LEAVE). HR or the employee's manager
decides; approval rewrites attendance and moves leave balance.
"""
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from app.api.deps import TenantDB, CurrentUser, get_client_ip, raise_for_failure
from app.core.module_decorators import Modules, require_module
from app.schemas.hr import (
    RegularizationCreate, RegularizationAction,
    RegularizationResponse, RegularizationListResponse,
)
from app.services.regularization_service import RegularizationService

router = APIRouter(
    dependencies=[Depends(require_module(Modules.REGULARIZATION))],
)


@router.post("", response_model=RegularizationResponse, status_code=status.HTTP_201_CREATED)
async def create_regularization(
    data: RegularizationCreate,
    db: TenantDB,
    current_user: CurrentUser,
):
    """
    Raise a regularization request.

    requested_data:
    - ATTENDANCE: {"check_in": "HH:MM", "check_out": "HH:MM", "status": optional}
    - LEAVE: {"leave_type": "Casual Leave" | "Present", "is_half_day": bool}
    """
    regularization = raise_for_failure(await RegularizationService(db).create(
        current_user,
        category=data.category.value,
        start_date=data.start_date,
        end_date=data.end_date,
        issue_type=data.issue_type,
        requested_data=data.requested_data,
        reason=data.reason,
        attachment_url=data.attachment_url,
    ))
    await db.commit()
    return regularization


@router.get("/me", response_model=RegularizationListResponse)
async def list_my_regularizations(
    db: TenantDB,
    current_user: CurrentUser,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
):
    """The current employee's regularization requests."""
    items, total = await RegularizationService(db).mine(
        current_user,
        status_value=status_filter.upper() if status_filter else None,
        skip=(page - 1) * size,
        limit=size,
    )
    pages = (total + size - 1) // size
    return RegularizationListResponse(items=items, total=total, page=page, size=size, pages=pages)


@router.get("", response_model=RegularizationListResponse)
async def list_regularizations_for_review(
    db: TenantDB,
    current_user: CurrentUser,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query("PENDING", alias="status"),
    category: Optional[str] = None,
):
    """Requests awaiting the current reviewer: all for HR, direct reports for a manager."""
    items, total = await RegularizationService(db).for_reviewer(
        current_user,
        status_value=status_filter.upper() if status_filter else None,
        category=category.upper() if category else None,
        skip=(page - 1) * size,
        limit=size,
    )
    pages = (total + size - 1) // size
    return RegularizationListResponse(items=items, total=total, page=page, size=size, pages=pages)


@router.post("/{regularization_id}/approve", response_model=RegularizationResponse)
async def approve_regularization(
    request: Request,
    regularization_id: uuid.UUID,
    data: RegularizationAction,
    db: TenantDB,
    current_user: CurrentUser,
):
    """Approve a pending request. A remark is mandatory."""
    regularization = raise_for_failure(await RegularizationService(db).approve(
        current_user,
        regularization_id,
        remark=data.remark,
        ip_address=get_client_ip(request),
    ))
    await db.commit()
    return regularization


@router.post("/{regularization_id}/reject", response_model=RegularizationResponse)
async def reject_regularization(
    regularization_id: uuid.UUID,
    db: TenantDB,
    current_user: CurrentUser,
    data: Optional[RegularizationAction] = None,
):
    regularization = raise_for_failure(await RegularizationService(db).reject(
        current_user,
        regularization_id,
        remark=data.remark if data else None,
    ))
    await db.commit()
    return regularization
