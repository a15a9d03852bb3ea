"""
Tenant Connection Router

Maps a tenant identifier (code or id) to a bound handle on that tenant's
isolated store. Handles are kept in a bounded cache keyed by tenant id and
evicted least-recently-accessed first.

Two isolation modes are supported:
- schema: one shared engine, each tenant in its own PostgreSQL schema
  reached through schema_translate_map
- database: one engine per tenant built from TENANT_DATABASE_URL_TEMPLATE

The router is created once at startup and stored on app.state.tenant_router.
"""
import asyncio
import logging
import time
import uuid
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Set

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.config import settings
from app.core.tenant_context import TenantNotFoundError, TenantInactiveError
from app.database import TenantBase, create_engine_for_url
from app.models import hr, notifications, audit_log  # noqa: F401  (registers tenant tables)
from app.models.tenant import Tenant, TenantStatus

logger = logging.getLogger(__name__)

TenantLoader = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]


def build_selector(tenant_id: str, prefix: Optional[str] = None) -> str:
    """Store selector for a tenant id, e.g. tenant_3f2a..."""
    prefix = prefix or settings.TENANT_DB_PREFIX
    return f"{prefix}_{tenant_id}".replace("-", "_")


def tenant_snapshot(tenant: Tenant) -> Dict[str, Any]:
    """Plain copy of the registry row, safe to keep beyond the session."""
    return {
        "id": str(tenant.id),
        "code": tenant.code,
        "name": tenant.name,
        "status": tenant.status,
        "modules": list(tenant.modules or []),
        "settings": dict(tenant.settings or {}),
    }


def _retrieve_exception(future: asyncio.Future) -> None:
    # Waiters may not exist; mark a failed creation as observed.
    if not future.cancelled():
        future.exception()


@dataclass
class TenantStore:
    """Bound handle on one tenant's store."""
    tenant_id: str
    selector: str
    tenant: Dict[str, Any]
    engine: AsyncEngine
    session_factory: async_sessionmaker
    owns_engine: bool = False

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session on this store; commits on success, rolls back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


@dataclass
class _CacheEntry:
    store: TenantStore
    last_access: float = field(default=0.0)


class TenantConnectionRouter:
    """
    Bounded cache of TenantStore handles.

    - resolve() looks the tenant up in the registry, then returns the cached
      handle or creates one; concurrent misses for the same tenant share
      one in-flight creation.
    - At capacity, the entry with the oldest access time is evicted and its
      engine disposed when the handle owns one.
    - Tenant tables are bound once per tenant id and tracked in `registered`.
    """

    def __init__(
        self,
        registry_session_factory: Optional[async_sessionmaker] = None,
        shared_engine: Optional[AsyncEngine] = None,
        capacity: Optional[int] = None,
        isolation: Optional[str] = None,
        url_template: Optional[str] = None,
        prefix: Optional[str] = None,
        allow_unresolved: Optional[bool] = None,
        tenant_loader: Optional[TenantLoader] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if registry_session_factory is None or shared_engine is None:
            from app.database import async_session_factory, engine
            registry_session_factory = registry_session_factory or async_session_factory
            shared_engine = shared_engine or engine

        self.registry_session_factory = registry_session_factory
        self.shared_engine = shared_engine
        self.capacity = capacity or settings.TENANT_CACHE_SIZE
        self.isolation = isolation or settings.TENANT_ISOLATION
        self.url_template = url_template or settings.TENANT_DATABASE_URL_TEMPLATE
        self.prefix = prefix or settings.TENANT_DB_PREFIX
        self.allow_unresolved = (
            settings.TENANT_ALLOW_UNRESOLVED if allow_unresolved is None else allow_unresolved
        )
        self._load_tenant = tenant_loader or self._load_tenant_from_registry
        self._clock = clock

        if self.capacity < 1:
            raise ValueError("Tenant cache capacity must be at least 1")
        if self.isolation == "database" and not self.url_template:
            raise ValueError("TENANT_DATABASE_URL_TEMPLATE is required for database isolation")

        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._inflight: Dict[str, asyncio.Future] = {}
        self._register_locks: Dict[str, asyncio.Lock] = {}
        self.registered: Set[str] = set()

    # ==================== Public API ====================

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, tenant_id: str) -> bool:
        return tenant_id in self._entries

    @property
    def cached_tenant_ids(self) -> List[str]:
        return list(self._entries.keys())

    async def resolve(self, identifier: str, verify_active: bool = False) -> TenantStore:
        """
        Return the bound store for a tenant code or id.

        Raises:
            TenantNotFoundError: No registry match and fallback disabled
            TenantInactiveError: verify_active and tenant is not ACTIVE
        """
        identifier = str(identifier).strip()
        if not identifier:
            raise TenantNotFoundError("Empty tenant identifier")

        tenant = await self._load_tenant(identifier)
        if tenant is None:
            if not self.allow_unresolved:
                raise TenantNotFoundError(f"Tenant '{identifier}' not found")
            logger.warning(
                f"Tenant '{identifier}' not found in registry, using raw identifier as selector"
            )
            tenant = {
                "id": identifier,
                "code": identifier,
                "name": identifier,
                "status": TenantStatus.ACTIVE.value,
                "modules": [],
                "settings": {},
            }

        if verify_active and tenant["status"] != TenantStatus.ACTIVE.value:
            raise TenantInactiveError(
                f"Tenant {tenant['code']} is not active (status: {tenant['status']})"
            )

        store = await self._get_or_create(tenant["id"], tenant)
        # Evicted meanwhile: the engine may be disposed
        if store.tenant_id in self._entries:
            await self._ensure_registered(store)
        return store

    async def clear_cache(self) -> None:
        """Drop every cached handle and registration marker."""
        entries = list(self._entries.values())
        self._entries.clear()
        self._inflight.clear()
        self._register_locks.clear()
        self.registered.clear()

        for entry in entries:
            await self._dispose(entry.store)
        logger.info(f"Tenant cache cleared ({len(entries)} handles dropped)")

    async def close(self) -> None:
        await self.clear_cache()

    # ==================== Cache ====================

    async def _get_or_create(self, tenant_id: str, tenant: Dict[str, Any]) -> TenantStore:
        entry = self._entries.get(tenant_id)
        if entry is not None:
            entry.last_access = self._clock()
            entry.store.tenant = tenant
            self._entries.move_to_end(tenant_id)
            return entry.store

        pending = self._inflight.get(tenant_id)
        if pending is not None:
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                # The creating call was cancelled, not this one: take over
                if not pending.cancelled():
                    raise
                return await self._get_or_create(tenant_id, tenant)

        future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_retrieve_exception)
        self._inflight[tenant_id] = future

        store = None
        try:
            store = self._create_store(tenant_id, tenant)
            await self._ensure_registered(store)
        except BaseException as exc:
            self._inflight.pop(tenant_id, None)
            self.registered.discard(tenant_id)
            if isinstance(exc, asyncio.CancelledError):
                future.cancel()
            else:
                future.set_exception(exc)
            if store is not None:
                await self._dispose(store)
            raise

        self._entries[tenant_id] = _CacheEntry(store=store, last_access=self._clock())
        evicted = self._evict_over_capacity(keep=tenant_id)
        self._inflight.pop(tenant_id, None)
        future.set_result(store)

        for old in evicted:
            await self._dispose(old)
        return store

    def _evict_over_capacity(self, keep: str) -> List[TenantStore]:
        """Pop least-recently-accessed entries until the cache fits."""
        evicted = []
        while len(self._entries) > self.capacity:
            victim_id = None
            oldest = None
            for key, entry in self._entries.items():
                if key == keep:
                    continue
                if oldest is None or entry.last_access < oldest:
                    oldest = entry.last_access
                    victim_id = key
            if victim_id is None:
                break

            victim = self._entries.pop(victim_id)
            self.registered.discard(victim_id)
            self._register_locks.pop(victim_id, None)
            evicted.append(victim.store)
            logger.info(f"Evicted tenant store {victim.store.selector} from cache")
        return evicted

    async def _dispose(self, store: TenantStore) -> None:
        if store.owns_engine:
            await store.engine.dispose()

    # ==================== Store creation ====================

    def _create_store(self, tenant_id: str, tenant: Dict[str, Any]) -> TenantStore:
        selector = build_selector(tenant_id, self.prefix)

        if self.isolation == "database":
            store_engine = create_engine_for_url(self.url_template.format(selector=selector))
            owns_engine = True
        else:
            store_engine = self.shared_engine.execution_options(
                schema_translate_map={None: selector}
            )
            owns_engine = False

        session_factory = async_sessionmaker(
            store_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info(f"Created tenant store {selector} for tenant {tenant.get('code')}")
        return TenantStore(
            tenant_id=tenant_id,
            selector=selector,
            tenant=tenant,
            engine=store_engine,
            session_factory=session_factory,
            owns_engine=owns_engine,
        )

    async def _ensure_registered(self, store: TenantStore) -> None:
        """Bind the tenant table set on the store once per tenant id."""
        if store.tenant_id in self.registered:
            return

        lock = self._register_locks.setdefault(store.tenant_id, asyncio.Lock())
        async with lock:
            if store.tenant_id in self.registered:
                return
            async with store.engine.begin() as conn:
                if self.isolation == "schema":
                    await conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{store.selector}"'))
                await conn.run_sync(TenantBase.metadata.create_all)
            self.registered.add(store.tenant_id)
            logger.info(f"Bound {len(TenantBase.metadata.tables)} tables on {store.selector}")

    # ==================== Registry lookup ====================

    async def _load_tenant_from_registry(self, identifier: str) -> Optional[Dict[str, Any]]:
        """Find a tenant by id when the identifier is a UUID, else by code."""
        try:
            tenant_uuid = uuid.UUID(identifier)
        except ValueError:
            tenant_uuid = None

        async with self.registry_session_factory() as session:
            if tenant_uuid is not None:
                stmt = select(Tenant).where(Tenant.id == tenant_uuid)
            else:
                stmt = select(Tenant).where(Tenant.code == identifier.upper())
            tenant = (await session.execute(stmt)).scalar_one_or_none()

        return tenant_snapshot(tenant) if tenant else None
