"""
Data backend selection.

The web layer and the CLI talk to exactly one :class:`DataBackend`,
chosen once at startup:

    - :class:`SqlBackend`: the real registry and connection cache over
      SQLAlchemy engines.
    - :class:`DegradedBackend`: empty reads and refused writes, used when
      ``DATA_BACKEND="degraded"`` or when the database is unreachable at
      startup and ``ALLOW_DEGRADED_START`` is set.

Example:
    backend = await select_backend(settings)
    async with backend.accessor(context) as data:
        await data.projects.list()
    await backend.shutdown()
"""

from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Protocol
import asyncio
import logging

from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncEngine

from orgbase.config import Settings
from orgbase.db import create_engine, make_session_factory
from orgbase.multitenancy.cache import CacheStats, ConnectionCache
from orgbase.multitenancy.context import TenantContext
from orgbase.multitenancy.degraded import DegradedDataAccessor, DegradedTenantRegistry
from orgbase.multitenancy.errors import ConnectivityError
from orgbase.multitenancy.handles import EngineHandleFactory, HandleFactory
from orgbase.multitenancy.registry import SqlTenantRegistry, TenantRegistry
from orgbase.multitenancy.scoped import ScopedDataAccessor

logger = logging.getLogger(__name__)


class BackendMode(str, Enum):
    NORMAL = "normal"
    DEGRADED = "degraded"


class DataBackend(Protocol):
    """What the web layer and CLI need from a backend."""

    mode: BackendMode
    registry: TenantRegistry
    cache: ConnectionCache | None

    async def startup(self) -> None: ...

    async def shutdown(self) -> None: ...

    def accessor(self, context: TenantContext) -> Any: ...

    def cache_stats(self) -> CacheStats: ...

    async def evict(self, tenant_id: str) -> bool: ...

    async def health(self) -> dict[str, Any]: ...


class SqlBackend:
    """Registry and connection cache over a shared control-plane engine.

    Attributes:
        engine: Engine for ``DATABASE_URL``; also serves tenants without
            a dedicated database.
        registry: The SQL tenant registry.
        cache: Per-tenant handle cache.
    """

    mode = BackendMode.NORMAL

    def __init__(
        self,
        engine: AsyncEngine,
        factory: HandleFactory[Any] | None = None,
        *,
        ttl_seconds: float = 300.0,
        sweep_interval: float = 30.0,
        probe_timeout: float = 5.0,
        drain_timeout: float = 10.0,
    ):
        self.engine = engine
        self.registry = SqlTenantRegistry(make_session_factory(engine))
        self.cache = ConnectionCache(
            self.registry,
            factory or EngineHandleFactory(engine),
            ttl_seconds=ttl_seconds,
            sweep_interval=sweep_interval,
            probe_timeout=probe_timeout,
            drain_timeout=drain_timeout,
        )
        self._probe_timeout = probe_timeout
        self._started = False

    @classmethod
    def from_settings(cls, app_settings: Settings) -> "SqlBackend":
        """Build a backend from configuration without touching the network.

        Raises:
            ConnectivityError: If ``DATABASE_URL`` is malformed or its
                driver is not installed.
        """
        try:
            engine = create_engine(app_settings.DATABASE_URL)
        except (ArgumentError, ImportError) as e:
            raise ConnectivityError(f"Cannot create database engine: {e}") from e
        factory = EngineHandleFactory(engine, app_settings.TENANT_DATABASE_URL_TEMPLATE)
        return cls(
            engine,
            factory,
            ttl_seconds=app_settings.CACHE_TTL_SECONDS,
            sweep_interval=app_settings.CACHE_SWEEP_INTERVAL_SECONDS,
            probe_timeout=app_settings.CACHE_PROBE_TIMEOUT_SECONDS,
            drain_timeout=app_settings.CACHE_DRAIN_TIMEOUT_SECONDS,
        )

    async def startup(self) -> None:
        """Probe the control-plane database and start the cache sweeper.

        Raises:
            ConnectivityError: If the database does not answer in time.
        """
        if self._started:
            return
        try:
            await asyncio.wait_for(self.registry.ping(), timeout=self._probe_timeout)
        except asyncio.TimeoutError as e:
            raise ConnectivityError(
                f"Database did not respond within {self._probe_timeout}s"
            ) from e
        except Exception as e:
            raise ConnectivityError(f"Database unreachable: {e}") from e
        self.cache.start()
        self._started = True
        logger.info(f"SQL backend ready ({self.engine.url.render_as_string(hide_password=True)})")

    async def shutdown(self) -> None:
        await self.cache.drain_all()
        await self.engine.dispose()
        self._started = False
        logger.info("SQL backend shut down")

    @asynccontextmanager
    async def accessor(self, context: TenantContext) -> AsyncIterator[ScopedDataAccessor]:
        """Lease the tenant's handle and wrap it in a scoped accessor."""
        async with self.cache.lease(context.tenant_id) as handle:
            yield ScopedDataAccessor(handle, context)

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    async def evict(self, tenant_id: str) -> bool:
        return await self.cache.remove(tenant_id)

    async def health(self) -> dict[str, Any]:
        try:
            await asyncio.wait_for(self.registry.ping(), timeout=self._probe_timeout)
            database = "ok"
        except Exception as e:
            logger.warning(f"Health check: database unreachable: {e!r}")
            database = "unavailable"
        return {
            "mode": self.mode.value,
            "database": database,
            "cache": self.cache_stats().to_dict(),
        }

    def __repr__(self) -> str:
        return f"<SqlBackend started={self._started} cache={self.cache!r}>"


class DegradedBackend:
    """Backend used when the database is unavailable.

    Attributes:
        cause: Human-readable reason, surfaced in write errors.
    """

    mode = BackendMode.DEGRADED
    cache = None

    def __init__(self, cause: str):
        self.cause = cause
        self.registry = DegradedTenantRegistry(cause)

    async def startup(self) -> None:
        logger.warning(f"Running in degraded mode: {self.cause}")

    async def shutdown(self) -> None:
        return None

    @asynccontextmanager
    async def accessor(self, context: TenantContext) -> AsyncIterator[DegradedDataAccessor]:
        yield DegradedDataAccessor(context, self.cause)

    def cache_stats(self) -> CacheStats:
        return CacheStats(count=0, tenant_ids=[])

    async def evict(self, tenant_id: str) -> bool:
        return False

    async def health(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "database": "unavailable",
            "cause": self.cause,
            "cache": self.cache_stats().to_dict(),
        }

    def __repr__(self) -> str:
        return f"<DegradedBackend cause={self.cause!r}>"


async def select_backend(app_settings: Settings) -> DataBackend:
    """Build and start the backend the configuration asks for.

    Raises:
        ConnectivityError: If the SQL backend cannot start and degraded
            start is not allowed.
    """
    if app_settings.DATA_BACKEND == "degraded":
        backend: DataBackend = DegradedBackend("DATA_BACKEND is set to 'degraded'")
        await backend.startup()
        return backend

    try:
        sql_backend = SqlBackend.from_settings(app_settings)
    except ConnectivityError as e:
        return await _degrade_or_raise(app_settings, e)

    try:
        await sql_backend.startup()
    except ConnectivityError as e:
        await sql_backend.shutdown()
        return await _degrade_or_raise(app_settings, e)
    return sql_backend


async def _degrade_or_raise(app_settings: Settings, error: ConnectivityError) -> DataBackend:
    if not app_settings.ALLOW_DEGRADED_START:
        logger.error(f"Database unavailable and degraded start disabled: {error.message}")
        raise error
    logger.warning(f"Database unavailable, starting in degraded mode: {error.message}")
    backend = DegradedBackend(error.message)
    await backend.startup()
    return backend
