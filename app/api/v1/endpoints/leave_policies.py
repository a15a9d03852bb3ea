"""Leave policy administration endpoints (HR only)."""
import uuid
from typing import Optional, List

from fastapi import APIRouter, Depends, status

from app.api.deps import TenantDB, HRUser
from app.core.module_decorators import Modules, require_module
from app.models.hr import LeavePolicy
from app.schemas.hr import (
    LeavePolicyCreate, LeavePolicyUpdate, LeavePolicyResponse,
    LeavePolicyAssignRequest, LeaveBalanceResponse,
)
from app.services.leave_policy_service import LeavePolicyService

router = APIRouter(
    dependencies=[Depends(require_module(Modules.LEAVE))],
)


def policy_response(policy: LeavePolicy, employee_count: int = 0) -> LeavePolicyResponse:
    response = LeavePolicyResponse.model_validate(policy)
    response.employee_count = employee_count
    return response


@router.get("", response_model=List[LeavePolicyResponse])
async def list_policies(
    db: TenantDB,
    current_user: HRUser,
    is_active: Optional[bool] = None,
):
    """List leave policies with the number of employees on each."""
    policies = await LeavePolicyService(db).list_policies(is_active=is_active)
    return [policy_response(policy, count) for policy, count in policies]


@router.post("", response_model=LeavePolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_policy(
    data: LeavePolicyCreate,
    db: TenantDB,
    current_user: HRUser,
):
    """Create a leave policy with its per-type rules."""
    policy = await LeavePolicyService(db).create_policy(data)
    await db.commit()
    return policy_response(policy)


@router.get("/{policy_id}", response_model=LeavePolicyResponse)
async def get_policy(
    policy_id: uuid.UUID,
    db: TenantDB,
    current_user: HRUser,
):
    service = LeavePolicyService(db)
    policy = await service.get_policy(policy_id)
    return policy_response(policy, await service.employee_count(policy.id))


@router.put("/{policy_id}", response_model=LeavePolicyResponse)
async def update_policy(
    policy_id: uuid.UUID,
    data: LeavePolicyUpdate,
    db: TenantDB,
    current_user: HRUser,
):
    """
    Update a policy. Rules, when sent, replace the existing set; with
    reassign=true the balances of every assigned employee are re-seeded.
    """
    service = LeavePolicyService(db)
    policy = await service.update_policy(policy_id, data)
    count = await service.employee_count(policy.id)
    await db.commit()
    return policy_response(policy, count)


@router.patch("/{policy_id}/toggle", response_model=LeavePolicyResponse)
async def toggle_policy(
    policy_id: uuid.UUID,
    db: TenantDB,
    current_user: HRUser,
):
    """Activate or deactivate a policy."""
    service = LeavePolicyService(db)
    policy = await service.toggle_policy_status(policy_id)
    count = await service.employee_count(policy.id)
    await db.commit()
    return policy_response(policy, count)


@router.delete("/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_policy(
    policy_id: uuid.UUID,
    db: TenantDB,
    current_user: HRUser,
):
    """Delete a policy; assigned employees are unassigned and its balances removed."""
    await LeavePolicyService(db).delete_policy(policy_id)
    await db.commit()


@router.post("/assign", response_model=List[LeaveBalanceResponse])
async def assign_policy(
    data: LeavePolicyAssignRequest,
    db: TenantDB,
    current_user: HRUser,
):
    """Assign a policy to an employee and recreate their current-cycle balances."""
    balances = await LeavePolicyService(db).assign_policy(data.employee_id, data.policy_id)
    await db.commit()
    return balances
