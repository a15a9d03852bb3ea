"""
Shared fixtures.

Tenant stores are SQLite files under a temporary directory, one per tenant
(database isolation). The environment is set before anything under `app`
is imported because settings are read at import time.
"""
import os
import tempfile
import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest

_TMP_DIR = tempfile.mkdtemp(prefix="hrms-tests-")

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/registry.db"
os.environ["TENANT_ISOLATION"] = "database"
os.environ["TENANT_DATABASE_URL_TEMPLATE"] = f"sqlite+aiosqlite:///{_TMP_DIR}/{{selector}}.db"
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["TENANT_ALLOW_UNRESOLVED"] = "false"

from app.core.tenant_router import TenantConnectionRouter  # noqa: E402
from app.models.hr import Employee, EmployeeRole, LeaveBalance  # noqa: E402
from app.services.leave_ledger import ZERO, to_days  # noqa: E402


def tenant_record(code: str, status: str = "ACTIVE", modules=None) -> dict:
    """Registry snapshot as the router keeps it."""
    return {
        "id": f"{code.lower()}-id",
        "code": code,
        "name": f"{code} Ltd",
        "status": status,
        "modules": list(modules or []),
        "settings": {},
    }


def static_loader(*records: dict):
    """Tenant loader answering from a fixed set of records, by code or id."""
    by_key = {}
    for record in records:
        by_key[record["code"]] = record
        by_key[record["id"]] = record

    async def load(identifier: str):
        return by_key.get(identifier)

    return load


def next_weekday(weekday: int, weeks_ahead: int = 1) -> date:
    """A future date on the given weekday (0 = Monday)."""
    today = date.today()
    days = (weekday - today.weekday()) % 7 + 7 * weeks_ahead
    return today + timedelta(days=days)


@pytest.fixture
def store_dir(tmp_path):
    """Directory holding the per-tenant SQLite files of one test."""
    return tmp_path


@pytest.fixture
async def tenant_router(store_dir):
    """Router over the ACME tenant with one SQLite file per tenant."""
    router = TenantConnectionRouter(
        isolation="database",
        url_template=f"sqlite+aiosqlite:///{store_dir}/{{selector}}.db",
        tenant_loader=static_loader(tenant_record("ACME")),
        capacity=4,
    )
    yield router
    await router.close()


@pytest.fixture
async def db(tenant_router):
    """Session on the ACME tenant store."""
    store = await tenant_router.resolve("ACME")
    async with store.session_factory() as session:
        yield session


async def _add_employee(db, code: str, role: str = EmployeeRole.EMPLOYEE.value, manager=None) -> Employee:
    employee = Employee(
        employee_code=code,
        first_name=code.title(),
        email=f"{code.lower()}@acme.com",
        role=role,
        manager_id=manager.id if manager else None,
    )
    db.add(employee)
    await db.flush()
    return employee


@pytest.fixture
async def hr(db):
    """An HR user."""
    return await _add_employee(db, "HR001", role=EmployeeRole.HR.value)


@pytest.fixture
async def manager(db):
    return await _add_employee(db, "MGR001", role=EmployeeRole.MANAGER.value)


@pytest.fixture
async def employee(db, manager):
    """An employee reporting to `manager`."""
    return await _add_employee(db, "EMP001", manager=manager)


@pytest.fixture
def add_employee(db):
    """Factory for extra employees."""
    async def factory(code: str, role: str = EmployeeRole.EMPLOYEE.value, manager=None) -> Employee:
        return await _add_employee(db, code, role=role, manager=manager)
    return factory


@pytest.fixture
def add_balance(db):
    """Factory for a leave balance row (total only, nothing used or pending)."""
    async def factory(employee: Employee, leave_type: str, total, year: int) -> LeaveBalance:
        balance = LeaveBalance(
            employee_id=employee.id,
            leave_type=leave_type,
            year=year,
            total=to_days(total),
            used=ZERO,
            pending=ZERO,
        )
        balance.recompute_available()
        db.add(balance)
        await db.flush()
        return balance
    return factory


def assert_ledger_consistent(balance: LeaveBalance) -> None:
    """available is always total - used - pending, and nothing goes negative."""
    assert Decimal(balance.available) == (
        Decimal(balance.total) - Decimal(balance.used) - Decimal(balance.pending)
    )
    assert Decimal(balance.used) >= 0
    assert Decimal(balance.pending) >= 0


def unique_code(prefix: str = "T") -> str:
    return f"{prefix}{uuid.uuid4().hex[:8].upper()}"
