"""
Tenant connection router: resolution, bounded cache, single-flight creation.
"""
import asyncio

import pytest
from sqlalchemy import select

from app.core.tenant_context import TenantInactiveError, TenantNotFoundError
from app.core.tenant_router import TenantConnectionRouter, build_selector
from app.models.hr import Employee

from conftest import static_loader, tenant_record


class FakeClock:
    """Monotonic clock that ticks once per read."""

    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        self.now += 1
        return self.now


def make_router(store_dir, *records, **kwargs) -> TenantConnectionRouter:
    return TenantConnectionRouter(
        isolation="database",
        url_template=f"sqlite+aiosqlite:///{store_dir}/{{selector}}.db",
        tenant_loader=static_loader(*records),
        **kwargs,
    )


class TestResolution:
    """Identifier to store handle"""

    async def test_resolve_by_code_and_id_share_one_handle(self, store_dir):
        router = make_router(store_dir, tenant_record("ACME"))
        try:
            by_code = await router.resolve("ACME")
            by_id = await router.resolve("acme-id")

            assert by_code is by_id
            assert by_code.selector == build_selector("acme-id")
            assert len(router) == 1
            assert "acme-id" in router
            assert "acme-id" in router.registered
        finally:
            await router.close()

    async def test_selector_replaces_dashes(self):
        assert build_selector("3f2a-77", prefix="tenant") == "tenant_3f2a_77"

    async def test_unknown_tenant_raises_when_fallback_disabled(self, store_dir):
        router = make_router(store_dir, tenant_record("ACME"), allow_unresolved=False)
        try:
            with pytest.raises(TenantNotFoundError):
                await router.resolve("GHOST")
            assert len(router) == 0
        finally:
            await router.close()

    async def test_empty_identifier_is_not_found(self, store_dir):
        router = make_router(store_dir, tenant_record("ACME"))
        try:
            with pytest.raises(TenantNotFoundError):
                await router.resolve("   ")
        finally:
            await router.close()

    async def test_unknown_tenant_uses_raw_identifier_when_fallback_enabled(self, store_dir):
        router = make_router(store_dir, allow_unresolved=True)
        try:
            store = await router.resolve("ghost")

            assert store.tenant_id == "ghost"
            assert store.selector == "tenant_ghost"
            assert store.tenant["status"] == "ACTIVE"
        finally:
            await router.close()

    async def test_inactive_tenant_rejected_only_when_verified(self, store_dir):
        router = make_router(store_dir, tenant_record("SLEEPY", status="SUSPENDED"))
        try:
            with pytest.raises(TenantInactiveError):
                await router.resolve("SLEEPY", verify_active=True)

            store = await router.resolve("SLEEPY")
            assert store.tenant["status"] == "SUSPENDED"
        finally:
            await router.close()

    async def test_capacity_must_be_positive(self, store_dir):
        with pytest.raises(ValueError):
            make_router(store_dir, capacity=-1)


class TestBoundedCache:
    """LRU eviction by last access time"""

    async def test_least_recently_accessed_is_evicted(self, store_dir):
        router = make_router(
            store_dir,
            tenant_record("A"), tenant_record("B"), tenant_record("C"),
            capacity=2,
            clock=FakeClock(),
        )
        try:
            await router.resolve("A")
            first_b = await router.resolve("B")
            await router.resolve("A")  # A is now the most recent
            await router.resolve("C")

            assert len(router) == 2
            assert set(router.cached_tenant_ids) == {"a-id", "c-id"}
            assert "b-id" not in router.registered

            again_b = await router.resolve("B")
            assert again_b is not first_b
            assert set(router.cached_tenant_ids) == {"b-id", "c-id"}
        finally:
            await router.close()

    async def test_cache_never_exceeds_capacity(self, store_dir):
        records = [tenant_record(f"T{i}") for i in range(6)]
        router = make_router(store_dir, *records, capacity=3, clock=FakeClock())
        try:
            for record in records:
                await router.resolve(record["code"])
                assert len(router) <= 3
            assert set(router.cached_tenant_ids) == {"t3-id", "t4-id", "t5-id"}
        finally:
            await router.close()

    async def test_clear_cache_drops_every_handle(self, store_dir):
        router = make_router(store_dir, tenant_record("A"), tenant_record("B"))
        await router.resolve("A")
        await router.resolve("B")

        await router.clear_cache()

        assert len(router) == 0
        assert router.registered == set()


class TestSingleFlight:
    """Concurrent misses for one tenant share a single creation"""

    async def test_concurrent_resolves_create_one_store(self, store_dir, monkeypatch):
        router = make_router(store_dir, tenant_record("ACME"))
        created = []
        original = router._create_store

        def counting_create(tenant_id, tenant):
            created.append(tenant_id)
            return original(tenant_id, tenant)

        monkeypatch.setattr(router, "_create_store", counting_create)
        try:
            stores = await asyncio.gather(*(router.resolve("ACME") for _ in range(8)))

            assert created == ["acme-id"]
            assert all(store is stores[0] for store in stores)
            assert len(router) == 1
        finally:
            await router.close()

    async def test_failed_creation_is_not_cached(self, store_dir, monkeypatch):
        router = make_router(store_dir, tenant_record("ACME"))

        def broken_create(tenant_id, tenant):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(router, "_create_store", broken_create)
        with pytest.raises(RuntimeError):
            await router.resolve("ACME")
        assert len(router) == 0

        monkeypatch.undo()
        try:
            store = await router.resolve("ACME")
            assert store.tenant_id == "acme-id"
        finally:
            await router.close()


class TestCancelledCreation:
    """A creation cancelled mid-bind leaves nothing behind"""

    @pytest.fixture
    def slow_bind(self, monkeypatch):
        """Holds the first table bind until the test cancels it."""
        def install(router):
            original = router._ensure_registered
            started = asyncio.Event()
            calls = []

            async def held_register(store):
                calls.append(store.tenant_id)
                if len(calls) == 1:
                    started.set()
                    await asyncio.Event().wait()
                await original(store)

            monkeypatch.setattr(router, "_ensure_registered", held_register)
            return started
        return install

    async def test_tenant_resolves_after_cancelled_creation(self, store_dir, slow_bind):
        router = make_router(store_dir, tenant_record("ACME"))
        started = slow_bind(router)
        try:
            creator = asyncio.create_task(router.resolve("ACME"))
            await started.wait()
            creator.cancel()
            with pytest.raises(asyncio.CancelledError):
                await creator

            assert len(router) == 0
            assert "acme-id" not in router.registered

            store = await asyncio.wait_for(router.resolve("ACME"), timeout=3)
            assert store.tenant_id == "acme-id"
        finally:
            await router.close()

    async def test_waiter_takes_over_from_cancelled_creator(self, store_dir, slow_bind):
        router = make_router(store_dir, tenant_record("ACME"))
        started = slow_bind(router)
        try:
            creator = asyncio.create_task(router.resolve("ACME"))
            await started.wait()
            waiter = asyncio.create_task(router.resolve("ACME"))
            for _ in range(5):
                await asyncio.sleep(0)

            creator.cancel()
            store = await asyncio.wait_for(waiter, timeout=3)
            with pytest.raises(asyncio.CancelledError):
                await creator

            assert store.tenant_id == "acme-id"
            assert router.cached_tenant_ids == ["acme-id"]
        finally:
            await router.close()

    async def test_store_evicted_before_return_is_not_rebound(self, store_dir, monkeypatch):
        router = make_router(store_dir, tenant_record("A"), tenant_record("B"), capacity=1, clock=FakeClock())
        original = router._get_or_create

        async def evicting_get_or_create(tenant_id, tenant):
            store = await original(tenant_id, tenant)
            if tenant_id == "a-id":
                await original("b-id", tenant_record("B"))
            return store

        monkeypatch.setattr(router, "_get_or_create", evicting_get_or_create)
        try:
            store = await router.resolve("A")

            assert store.tenant_id == "a-id"
            assert router.cached_tenant_ids == ["b-id"]
            assert "a-id" not in router.registered
        finally:
            await router.close()


class TestIsolation:
    """Each tenant sees only its own rows"""

    async def test_rows_do_not_leak_between_tenants(self, store_dir):
        router = make_router(store_dir, tenant_record("A"), tenant_record("B"))
        try:
            store_a = await router.resolve("A")
            store_b = await router.resolve("B")

            async with store_a.session() as session:
                session.add(Employee(employee_code="A-1", first_name="Ann"))

            async with store_b.session() as session:
                codes = (await session.execute(select(Employee.employee_code))).scalars().all()
            assert codes == []

            async with store_a.session() as session:
                codes = (await session.execute(select(Employee.employee_code))).scalars().all()
            assert codes == ["A-1"]
        finally:
            await router.close()
