"""
HTTP surface: tenant provisioning, tenant resolution and a few tenant routes.
"""
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.security import create_access_token
from app.core.tenant_router import TenantConnectionRouter
from app.database import engine, init_db
from app.main import app

from conftest import next_weekday, unique_code

ADMIN_EMAIL = "admin@acme.com"
ADMIN_PASSWORD = "admin123"


@pytest.fixture
async def client():
    """ASGI client with the registry and a fresh tenant router."""
    await init_db()
    app.state.tenant_router = TenantConnectionRouter()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
    await app.state.tenant_router.close()
    await engine.dispose()


@pytest.fixture
def psa_headers():
    token = create_access_token("platform-admin", role="PSA")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def tenant(client, psa_headers):
    """A freshly provisioned tenant with an administrator."""
    response = await client.post("/api/v1/tenants", headers=psa_headers, json={
        "code": unique_code(),
        "name": "Acme Corp",
        "admin_email": ADMIN_EMAIL,
        "admin_password": ADMIN_PASSWORD,
        "admin_first_name": "Admin",
    })
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
async def admin_headers(client, tenant):
    """Bearer headers for the tenant administrator."""
    response = await client.post(
        f"/api/v1/auth/login?tenantId={tenant['code']}",
        json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
    )
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


class TestPublicRoutes:

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["checks"]["database"] == "connected"

    async def test_root(self, client):
        response = await client.get("/")
        assert response.status_code == 200


class TestTenantProvisioning:

    async def test_create_returns_selector(self, tenant):
        assert tenant["status"] == "ACTIVE"
        assert tenant["selector"] == "tenant_" + tenant["id"].replace("-", "_")

    async def test_duplicate_code_conflicts(self, client, psa_headers, tenant):
        response = await client.post(
            "/api/v1/tenants", headers=psa_headers, json={"code": tenant["code"], "name": "Again"}
        )
        assert response.status_code == 409

    async def test_employee_token_is_not_platform_admin(self, client, admin_headers):
        response = await client.get("/api/v1/tenants", headers=admin_headers)
        assert response.status_code == 403

    async def test_login_token_carries_tenant(self, client, tenant):
        response = await client.post(
            "/api/v1/auth/login",
            headers={"X-Tenant-ID": tenant["code"]},
            json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
        )

        body = response.json()
        assert body["tenant_id"] == tenant["id"]
        assert body["role"] == "ADMIN"

    async def test_wrong_password(self, client, tenant):
        response = await client.post(
            f"/api/v1/auth/login?tenantId={tenant['code']}",
            json={"email": ADMIN_EMAIL, "password": "not-the-password"},
        )
        assert response.status_code == 401


class TestTenantResolution:

    async def test_missing_tenant(self, client):
        response = await client.get("/api/v1/holidays")

        assert response.status_code == 400
        assert response.json()["error"] == "tenant_required"

    async def test_unknown_tenant(self, client):
        response = await client.get("/api/v1/holidays", headers={"X-Tenant-ID": "NOPE"})

        assert response.status_code == 404
        assert response.json()["error"] == "tenant_not_resolved"

    async def test_suspended_tenant_is_refused(self, client, psa_headers, tenant, admin_headers):
        response = await client.patch(
            f"/api/v1/tenants/{tenant['id']}/status",
            headers=psa_headers,
            json={"status": "SUSPENDED", "reason": "Unpaid invoice"},
        )
        assert response.status_code == 200

        response = await client.get("/api/v1/holidays", headers=admin_headers)

        assert response.status_code == 403
        assert response.json()["error"] == "tenant_inactive"


class TestTenantRoutes:

    async def test_punch(self, client, admin_headers):
        response = await client.post("/api/v1/attendance/punch", headers=admin_headers, json={"device": "Web"})

        assert response.status_code == 200, response.text
        assert response.json()["punch_type"] == "IN"

    async def test_holiday_is_unique_per_date(self, client, admin_headers):
        payload = {"name": "Founders Day", "holiday_date": str(next_weekday(2, weeks_ahead=3))}

        first = await client.post("/api/v1/holidays", headers=admin_headers, json=payload)
        second = await client.post("/api/v1/holidays", headers=admin_headers, json=payload)

        assert first.status_code == 201
        assert second.status_code == 409

    async def test_apply_leave(self, client, admin_headers):
        monday = next_weekday(0, weeks_ahead=2)
        response = await client.post("/api/v1/leaves", headers=admin_headers, json={
            "leave_type": "CL",
            "start_date": str(monday),
            "end_date": str(monday + timedelta(days=1)),
            "reason": "Family function",
        })

        assert response.status_code == 201, response.text
        body = response.json()
        assert body["status"] == "PENDING"
        # No balance configured, so every day is unpaid
        assert float(body["unpaid_leave_days"]) == 2.0

    async def test_rule_violation_carries_code(self, client, admin_headers):
        monday = next_weekday(0)
        response = await client.post("/api/v1/leaves", headers=admin_headers, json={
            "leave_type": "CL",
            "start_date": str(monday + timedelta(days=2)),
            "end_date": str(monday),
        })

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_DATE_RANGE"

    async def test_department_created_then_listed(self, client, admin_headers):
        created = await client.post(
            "/api/v1/departments", headers=admin_headers, json={"code": "ops", "name": "Operations"}
        )
        listed = await client.get("/api/v1/departments", headers=admin_headers)

        assert created.status_code == 201, created.text
        assert created.json()["code"] == "OPS"
        assert [d["code"] for d in listed.json()] == ["OPS"]
