"""
Leave Policy Service.

Administration of leave policies and their per-type rules, and assignment
of a policy to an employee (which re-seeds that employee's balances for the
current leave cycle).
"""
import logging
import uuid
from typing import Optional, List, Tuple

from sqlalchemy import select, func, update, delete
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from app.models.hr import (
    Employee, LeaveBalance, LeavePolicy, LeavePolicyRule, PolicyApplicability,
)
from app.schemas.hr import LeavePolicyCreate, LeavePolicyUpdate, LeavePolicyRuleBase
from app.config import settings
from app.services.attendance_service import AttendanceService
from app.services.leave_ledger import LeaveLedger, to_days

logger = logging.getLogger(__name__)


def _build_rule(data: LeavePolicyRuleBase) -> LeavePolicyRule:
    return LeavePolicyRule(
        leave_type=data.leave_type.strip(),
        total_per_year=to_days(data.total_per_year),
        monthly_accrual=data.monthly_accrual,
        carry_forward_allowed=data.carry_forward_allowed,
        max_carry_forward=to_days(data.max_carry_forward),
        requires_approval=data.requires_approval,
        allow_during_probation=data.allow_during_probation,
        color=data.color or settings.DEFAULT_LEAVE_COLOR,
    )


class LeavePolicyService:
    """Service for leave policy administration."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LeaveLedger(db)
        self.attendance = AttendanceService(db)

    async def create_policy(self, data: LeavePolicyCreate) -> LeavePolicy:
        """Create a policy together with its rules."""
        leave_types = [r.leave_type.strip() for r in data.rules]
        if len(set(leave_types)) != len(leave_types):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Each leave type can appear only once in a policy"
            )

        policy = LeavePolicy(
            name=data.name,
            description=data.description,
            applicable_to=data.applicable_to.value,
            departments=list(data.departments),
            roles=list(data.roles),
            specific_employee_id=data.specific_employee_id,
            is_active=data.is_active,
            effective_from=data.effective_from,
            rules=[_build_rule(r) for r in data.rules],
        )
        self.db.add(policy)
        await self.db.flush()
        logger.info(f"Created leave policy '{policy.name}' with {len(policy.rules)} rules")
        return await self.get_policy(policy.id)

    async def get_policy(self, policy_id: uuid.UUID) -> LeavePolicy:
        result = await self.db.execute(
            select(LeavePolicy)
            .where(LeavePolicy.id == policy_id)
            .execution_options(populate_existing=True)
        )
        policy = result.scalar_one_or_none()
        if not policy:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Leave policy not found"
            )
        return policy

    async def employee_count(self, policy_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(Employee.id)).where(Employee.leave_policy_id == policy_id)
        )
        return result.scalar() or 0

    async def list_policies(self, is_active: Optional[bool] = None) -> List[Tuple[LeavePolicy, int]]:
        """Policies with the number of employees assigned to each."""
        query = select(LeavePolicy).order_by(LeavePolicy.name)
        if is_active is not None:
            query = query.where(LeavePolicy.is_active == is_active)
        result = await self.db.execute(query)

        counts_result = await self.db.execute(
            select(Employee.leave_policy_id, func.count(Employee.id))
            .where(Employee.leave_policy_id.is_not(None))
            .group_by(Employee.leave_policy_id)
        )
        counts = {policy_id: count for policy_id, count in counts_result.all()}
        return [(p, counts.get(p.id, 0)) for p in result.scalars().all()]

    async def update_policy(self, policy_id: uuid.UUID, data: LeavePolicyUpdate) -> LeavePolicy:
        """
        Update policy fields. When rules are given they replace all existing
        rules; with reassign=True every assigned employee is re-seeded.
        """
        policy = await self.get_policy(policy_id)
        changes = data.model_dump(exclude_unset=True, exclude={"rules", "reassign"})

        for field, value in changes.items():
            if field == "applicable_to" and value is not None:
                value = PolicyApplicability(value).value
            setattr(policy, field, value)

        if data.rules is not None:
            leave_types = [r.leave_type.strip() for r in data.rules]
            if len(set(leave_types)) != len(leave_types):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Each leave type can appear only once in a policy"
                )
            # Old rows must be gone before new ones hit the (policy, type) constraint
            policy.rules.clear()
            await self.db.flush()
            policy.rules.extend(_build_rule(r) for r in data.rules)

        await self.db.flush()

        if data.reassign:
            result = await self.db.execute(
                select(Employee).where(Employee.leave_policy_id == policy.id)
            )
            for employee in result.scalars().all():
                await self._seed_balances(employee, policy)
            logger.info(f"Re-seeded balances for employees on policy '{policy.name}'")

        return await self.get_policy(policy.id)

    async def toggle_policy_status(self, policy_id: uuid.UUID) -> LeavePolicy:
        policy = await self.get_policy(policy_id)
        policy.is_active = not policy.is_active
        await self.db.flush()
        logger.info(f"Leave policy '{policy.name}' is now {'active' if policy.is_active else 'inactive'}")
        return policy

    async def delete_policy(self, policy_id: uuid.UUID) -> None:
        """Delete a policy, unassigning its employees and dropping balances it created."""
        policy = await self.get_policy(policy_id)

        await self.db.execute(
            update(Employee)
            .where(Employee.leave_policy_id == policy.id)
            .values(leave_policy_id=None)
        )
        await self.db.execute(delete(LeaveBalance).where(LeaveBalance.policy_id == policy.id))
        await self.db.delete(policy)
        await self.db.flush()
        logger.info(f"Deleted leave policy '{policy.name}'")

    async def assign_policy(self, employee_id: uuid.UUID, policy_id: uuid.UUID) -> List[LeaveBalance]:
        """Assign a policy and recreate the employee's current-cycle balances from its rules."""
        employee = await self.db.get(Employee, employee_id)
        if not employee:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Employee not found"
            )
        policy = await self.get_policy(policy_id)
        if not policy.is_active:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot assign an inactive leave policy"
            )

        employee.leave_policy_id = policy.id
        balances = await self._seed_balances(employee, policy)
        logger.info(f"Assigned policy '{policy.name}' to {employee.employee_code}")
        return balances

    async def _seed_balances(self, employee: Employee, policy: LeavePolicy) -> List[LeaveBalance]:
        year = await self.attendance.cycle_year(await self.attendance.local_today())
        return await self.ledger.initialise_from_policy(employee.id, policy, year, replace=True)

    async def find_applicable_policy(self, employee: Employee) -> Optional[LeavePolicy]:
        """
        The employee's assigned policy, otherwise the most specific active
        policy that applies: SPECIFIC, then DEPARTMENT, then ROLE, then ALL.
        """
        if employee.leave_policy_id:
            result = await self.db.execute(
                select(LeavePolicy).where(LeavePolicy.id == employee.leave_policy_id)
            )
            policy = result.scalar_one_or_none()
            if policy is not None:
                return policy

        result = await self.db.execute(
            select(LeavePolicy)
            .where(LeavePolicy.is_active == True)  # noqa: E712
            .order_by(LeavePolicy.created_at)
        )
        policies = list(result.scalars().all())

        department = str(employee.department_id) if employee.department_id else None
        ranked = {
            PolicyApplicability.SPECIFIC.value: lambda p: p.specific_employee_id == employee.id,
            PolicyApplicability.DEPARTMENT.value: lambda p: department is not None and department in (p.departments or []),
            PolicyApplicability.ROLE.value: lambda p: employee.role in (p.roles or []),
            PolicyApplicability.ALL.value: lambda p: True,
        }
        for applicability, matches in ranked.items():
            for policy in policies:
                if policy.applicable_to == applicability and matches(policy):
                    return policy
        return None
