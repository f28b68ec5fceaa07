"""Shared fixtures: in-memory databases, fake registries and handle factories."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio

from orgbase.db import create_engine, init_models, make_session_factory
from orgbase.multitenancy.registry import SqlTenantRegistry
from orgbase.multitenancy.tenant import (
    TenantPlan,
    TenantRecord,
    TenantStatus,
    default_settings,
)

SQLITE_URL = "sqlite+aiosqlite:///:memory:"


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    """An in-memory SQLite engine with all tables created."""
    engine = create_engine(SQLITE_URL)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def registry(engine) -> SqlTenantRegistry:
    return SqlTenantRegistry(make_session_factory(engine))


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def make_tenant(
    slug: str,
    tenant_id: str | None = None,
    status: TenantStatus = TenantStatus.ACTIVE,
    plan: TenantPlan = TenantPlan.BASIC,
    domain: str | None = None,
) -> TenantRecord:
    return TenantRecord(
        id=tenant_id or f"id-{slug}",
        name=slug.title(),
        slug=slug,
        status=status,
        plan=plan,
        domain=domain,
        settings=default_settings(plan),
        created_at=datetime.now(timezone.utc),
    )


class StaticRegistry:
    """Read-only registry over a fixed set of tenants."""

    def __init__(self, *tenants: TenantRecord, fail_with: Exception | None = None):
        self.tenants = {t.id: t for t in tenants}
        self.fail_with = fail_with
        self.lookups = 0

    def add(self, tenant: TenantRecord) -> None:
        self.tenants[tenant.id] = tenant

    async def _check(self) -> None:
        self.lookups += 1
        if self.fail_with is not None:
            raise self.fail_with

    async def get_by_id(self, tenant_id: str) -> TenantRecord | None:
        await self._check()
        return self.tenants.get(tenant_id)

    async def get_by_slug(self, slug: str) -> TenantRecord | None:
        await self._check()
        return next((t for t in self.tenants.values() if t.slug == slug), None)

    async def get_by_domain(self, domain: str) -> TenantRecord | None:
        await self._check()
        return next((t for t in self.tenants.values() if t.domain == domain), None)


class FakeHandle:
    def __init__(self, tenant_id: str, serial: int):
        self.tenant_id = tenant_id
        self.serial = serial
        self.disposed = False

    def __repr__(self) -> str:
        return f"<FakeHandle {self.tenant_id}#{self.serial}>"


class FakeHandleFactory:
    """Handle factory with controllable latency and failures."""

    def __init__(
        self,
        create_delay: float = 0.0,
        probe_delay: float = 0.0,
        fail_create: int = 0,
        fail_probe: int = 0,
    ):
        self.create_delay = create_delay
        self.probe_delay = probe_delay
        self.fail_create = fail_create
        self.fail_probe = fail_probe
        self.created: list[FakeHandle] = []
        self.disposed: list[FakeHandle] = []

    async def create(self, tenant: TenantRecord) -> FakeHandle:
        await asyncio.sleep(self.create_delay)
        if self.fail_create:
            self.fail_create -= 1
            raise OSError("connection refused")
        handle = FakeHandle(tenant.id, len(self.created) + 1)
        self.created.append(handle)
        return handle

    async def probe(self, handle: FakeHandle) -> None:
        await asyncio.sleep(self.probe_delay)
        if self.fail_probe:
            self.fail_probe -= 1
            raise OSError("probe failed")

    async def dispose(self, handle: FakeHandle) -> None:
        handle.disposed = True
        self.disposed.append(handle)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def acme() -> TenantRecord:
    return make_tenant("acme")


@pytest.fixture
def static_registry(acme: TenantRecord) -> StaticRegistry:
    return StaticRegistry(acme, make_tenant("globex"))


def cache_options(**overrides: Any) -> dict[str, Any]:
    """Cache options small enough for tests."""
    options = {
        "ttl_seconds": 300.0,
        "sweep_interval": 30.0,
        "probe_timeout": 1.0,
        "drain_timeout": 1.0,
    }
    options.update(overrides)
    return options
