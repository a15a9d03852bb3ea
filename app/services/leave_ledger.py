"""
Leave balance ledger.

One LeaveBalance row per (employee, leave type, cycle year) carries
total / used / pending / available. The movements below are the only way
request workflows change a balance; each one recomputes available.

    reserve   pending += d          (request filed)
    release   pending -= d          (request rejected, cancelled or shrunk)
    commit    pending -= d, used += d   (request approved)
    consume   used += d             (HR-filed or regularized day)
    refund    used -= d, floor 0    (day handed back by a regularization)

Rows carry a version counter; a concurrent writer fails with StaleDataError
at flush instead of silently overwriting.
"""
import logging
import uuid
from decimal import Decimal
from typing import Optional, List, Union

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.hr import LeaveBalance, LeavePolicy

logger = logging.getLogger(__name__)

Days = Union[Decimal, float, int, str]

ZERO = Decimal("0")


def to_days(value: Optional[Days]) -> Decimal:
    """Normalise a day quantity to a one-decimal Decimal."""
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(Decimal("0.1"))


def reserve(balance: LeaveBalance, days: Days) -> LeaveBalance:
    balance.pending = to_days(balance.pending) + to_days(days)
    balance.recompute_available()
    return balance


def release(balance: LeaveBalance, days: Days) -> LeaveBalance:
    balance.pending = max(ZERO, to_days(balance.pending) - to_days(days))
    balance.recompute_available()
    return balance


def commit(balance: LeaveBalance, days: Days) -> LeaveBalance:
    d = to_days(days)
    balance.pending = max(ZERO, to_days(balance.pending) - d)
    balance.used = to_days(balance.used) + d
    balance.recompute_available()
    return balance


def consume(balance: LeaveBalance, days: Days) -> LeaveBalance:
    balance.used = to_days(balance.used) + to_days(days)
    balance.recompute_available()
    return balance


def refund(balance: LeaveBalance, days: Days) -> LeaveBalance:
    balance.used = max(ZERO, to_days(balance.used) - to_days(days))
    balance.recompute_available()
    return balance


class LeaveLedger:
    """Balance lookups and policy-driven initialisation."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_balance(
        self,
        employee_id: uuid.UUID,
        leave_type: str,
        year: int,
    ) -> Optional[LeaveBalance]:
        result = await self.db.execute(
            select(LeaveBalance).where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.leave_type == leave_type,
                LeaveBalance.year == year,
            )
        )
        return result.scalar_one_or_none()

    async def balances_for(self, employee_id: uuid.UUID, year: int) -> List[LeaveBalance]:
        result = await self.db.execute(
            select(LeaveBalance)
            .where(LeaveBalance.employee_id == employee_id, LeaveBalance.year == year)
            .order_by(LeaveBalance.leave_type)
        )
        return list(result.scalars().all())

    async def initialise_from_policy(
        self,
        employee_id: uuid.UUID,
        policy: LeavePolicy,
        year: int,
        replace: bool = False,
    ) -> List[LeaveBalance]:
        """
        Create one balance per policy rule with total = total_per_year.

        With replace=True the employee's existing balances for that year are
        deleted first (policy re-assignment).
        """
        if replace:
            await self.db.execute(
                delete(LeaveBalance).where(
                    LeaveBalance.employee_id == employee_id,
                    LeaveBalance.year == year,
                )
            )

        balances = []
        for rule in policy.rules:
            balance = LeaveBalance(
                employee_id=employee_id,
                policy_id=policy.id,
                leave_type=rule.leave_type,
                year=year,
                total=to_days(rule.total_per_year),
                used=ZERO,
                pending=ZERO,
            )
            balance.recompute_available()
            self.db.add(balance)
            balances.append(balance)

        await self.db.flush()
        logger.info(
            f"Initialised {len(balances)} leave balances for employee {employee_id} "
            f"from policy '{policy.name}' ({year})"
        )
        return balances
