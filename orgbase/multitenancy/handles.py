"""
Per-tenant data-store handles.

A handle is what the connection cache stores for one tenant: a SQLAlchemy
``AsyncEngine`` plus the session factory bound to it. Where the engine
points is decided per tenant:

    1. ``tenant.settings["database_url"]`` when present,
    2. else ``TENANT_DATABASE_URL_TEMPLATE`` formatted with the tenant's
       ``slug`` and ``id``,
    3. else the shared control-plane engine (row-level isolation).

Handles built on the shared engine do not own it, so disposing them
leaves the engine running for other tenants.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from orgbase.db import create_engine, make_session_factory
from orgbase.multitenancy.tenant import TenantRecord

logger = logging.getLogger(__name__)

H = TypeVar("H")


class HandleFactory(Protocol[H]):
    """Builds, verifies and releases handles for the connection cache."""

    async def create(self, tenant: TenantRecord) -> H: ...

    async def probe(self, handle: H) -> None: ...

    async def dispose(self, handle: H) -> None: ...


@dataclass
class TenantHandle:
    """A live data-store handle for one tenant.

    Attributes:
        tenant_id: The tenant this handle serves.
        engine: Engine the handle's sessions run on.
        owns_engine: Whether disposing the handle disposes the engine.
        session_factory: Sessions bound to ``engine``.
    """

    tenant_id: str
    engine: AsyncEngine
    owns_engine: bool = True
    session_factory: async_sessionmaker[AsyncSession] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.session_factory = make_session_factory(self.engine)


class EngineHandleFactory:
    """Creates :class:`TenantHandle` objects backed by SQLAlchemy engines.

    Attributes:
        shared_engine: Control-plane engine used when a tenant has no
            dedicated target.
        url_template: Optional per-tenant URL template.
        engine_options: Extra keyword arguments for dedicated engines.
    """

    def __init__(
        self,
        shared_engine: AsyncEngine,
        url_template: str = "",
        engine_options: dict[str, Any] | None = None,
    ):
        self.shared_engine = shared_engine
        self.url_template = url_template
        self.engine_options = engine_options or {}

    def target_url(self, tenant: TenantRecord) -> str | None:
        """Return the dedicated URL for ``tenant``, or None to share."""
        url = tenant.settings.get("database_url")
        if url:
            return url
        if self.url_template:
            return self.url_template.format(slug=tenant.slug, id=tenant.id)
        return None

    async def create(self, tenant: TenantRecord) -> TenantHandle:
        url = self.target_url(tenant)
        if url is None:
            return TenantHandle(tenant.id, self.shared_engine, owns_engine=False)
        logger.debug(f"Creating dedicated engine for tenant {tenant.id}")
        return TenantHandle(tenant.id, create_engine(url, **self.engine_options))

    async def probe(self, handle: TenantHandle) -> None:
        async with handle.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def dispose(self, handle: TenantHandle) -> None:
        if handle.owns_engine:
            await handle.engine.dispose()
