"""
Per-tenant connection cache for orgbase.

The cache maps a tenant id to one live handle. Handles are created lazily
on the first request for a tenant and released after a fixed idle period.

Guarantees:
    - At most one live entry per tenant id. Concurrent ``get`` calls that
      arrive while a handle is being built all wait on the same creation
      task instead of building their own.
    - A caller that is cancelled while waiting does not cancel the shared
      creation; it still completes and populates the cache.
    - A handle that fails creation or its probe (including a probe
      timeout) is disposed and never cached. The error reaches every
      waiter as :class:`ConnectivityError`; the next call tries again.
    - An entry leaves the index before its handle is disposed, and
      disposal waits (bounded) for in-flight leases to finish.

Eviction is purely time based: one background sweep task walks the
last-access index every ``sweep_interval`` seconds and retires entries
idle for at least ``ttl_seconds``. There is no per-key timer.

Example:
    cache = ConnectionCache(registry, EngineHandleFactory(engine), ttl_seconds=300)
    cache.start()

    async with cache.lease(tenant_id) as handle:
        ...  # eviction waits for this block to finish

    await cache.drain_all()  # on shutdown
"""

from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable
import asyncio
import logging
import time

from orgbase.multitenancy.errors import ConnectivityError, TenancyError, TenantNotFoundError
from orgbase.multitenancy.handles import HandleFactory
from orgbase.multitenancy.registry import TenantRegistry

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached handle for one tenant.

    Attributes:
        tenant_id: Cache key.
        handle: The live handle.
        created_at: Clock reading when the handle was cached.
        last_accessed_at: Clock reading of the last successful fetch.
        in_flight: Number of open leases on the handle.
    """

    tenant_id: str
    handle: Any
    created_at: float
    last_accessed_at: float
    in_flight: int = 0
    _idle: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def __post_init__(self) -> None:
        self._idle.set()

    def touch(self, now: float) -> None:
        self.last_accessed_at = now

    def idle_for(self, now: float) -> float:
        return now - self.last_accessed_at

    def acquire(self) -> None:
        self.in_flight += 1
        self._idle.clear()

    def release(self, now: float) -> None:
        self.in_flight -= 1
        self.last_accessed_at = now
        if self.in_flight <= 0:
            self.in_flight = 0
            self._idle.set()

    async def wait_idle(self, timeout: float) -> bool:
        """Wait until no lease is open. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


@dataclass(frozen=True)
class CacheStats:
    """Diagnostic snapshot of the cache."""

    count: int
    tenant_ids: list[str]
    pending: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"count": self.count, "tenant_ids": self.tenant_ids, "pending": self.pending}


def _consume_result(task: asyncio.Task) -> None:
    # Keeps asyncio from warning when every waiter was cancelled.
    if not task.cancelled():
        task.exception()


class ConnectionCache:
    """Caches one handle per tenant with idle-timeout eviction.

    Attributes:
        _registry: Looks up the tenant a handle is built for.
        _factory: Creates, probes and disposes handles.
        _ttl: Idle seconds after which an entry is evicted.
        _sweep_interval: Seconds between sweeps.
        _probe_timeout: Bound on the creation probe.
        _drain_timeout: Bound on waiting for leases and on shutdown.
        _entries: The live index, keyed by tenant id.
        _pending: In-flight creations, keyed by tenant id.
    """

    def __init__(
        self,
        registry: TenantRegistry,
        factory: HandleFactory[Any],
        *,
        ttl_seconds: float = 300.0,
        sweep_interval: float = 30.0,
        probe_timeout: float = 5.0,
        drain_timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._registry = registry
        self._factory = factory
        self._ttl = ttl_seconds
        self._sweep_interval = sweep_interval
        self._probe_timeout = probe_timeout
        self._drain_timeout = drain_timeout
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._pending: dict[str, asyncio.Task[CacheEntry]] = {}
        self._sweeper: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def ttl(self) -> float:
        return self._ttl

    @property
    def closed(self) -> bool:
        return self._closed

    def __contains__(self, tenant_id: object) -> bool:
        return tenant_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def get(self, tenant_id: str) -> Any:
        """Return the live handle for ``tenant_id``, creating it if needed.

        Raises:
            TenantNotFoundError: If the registry does not know the tenant.
            ConnectivityError: If the handle cannot be created or probed,
                or the cache has been drained.
        """
        entry = await self._fetch(tenant_id)
        return entry.handle

    @asynccontextmanager
    async def lease(self, tenant_id: str) -> AsyncIterator[Any]:
        """Fetch the handle and hold it for the duration of the block.

        Eviction and removal wait for open leases before disposing.
        """
        entry = await self._fetch(tenant_id)
        entry.acquire()
        try:
            yield entry.handle
        finally:
            entry.release(self._clock())

    async def _fetch(self, tenant_id: str) -> CacheEntry:
        if self._closed:
            raise ConnectivityError("Connection cache is closed", tenant_id=tenant_id)

        entry = self._entries.get(tenant_id)
        if entry is not None:
            entry.touch(self._clock())
            return entry

        task = self._pending.get(tenant_id)
        if task is None:
            task = asyncio.create_task(
                self._create_entry(tenant_id), name=f"orgbase-handle-{tenant_id}"
            )
            task.add_done_callback(_consume_result)
            self._pending[tenant_id] = task
        else:
            logger.debug(f"Joining in-flight handle creation for tenant {tenant_id}")

        entry = await asyncio.shield(task)
        entry.touch(self._clock())
        return entry

    async def _create_entry(self, tenant_id: str) -> CacheEntry:
        try:
            tenant = await self._lookup(tenant_id)

            try:
                handle = await self._factory.create(tenant)
            except Exception as e:
                logger.error(f"Handle creation failed for tenant {tenant_id}: {e!r}")
                raise ConnectivityError(
                    f"Could not connect to the data store for tenant '{tenant_id}'",
                    tenant_id=tenant_id,
                    cause=str(e),
                ) from e

            try:
                await asyncio.wait_for(self._factory.probe(handle), timeout=self._probe_timeout)
            except asyncio.TimeoutError as e:
                await self._dispose(tenant_id, handle)
                logger.error(
                    f"Handle probe timed out after {self._probe_timeout}s for tenant {tenant_id}"
                )
                raise ConnectivityError(
                    f"Data store for tenant '{tenant_id}' did not respond in time",
                    tenant_id=tenant_id,
                ) from e
            except Exception as e:
                await self._dispose(tenant_id, handle)
                logger.error(f"Handle probe failed for tenant {tenant_id}: {e!r}")
                raise ConnectivityError(
                    f"Data store for tenant '{tenant_id}' is unreachable",
                    tenant_id=tenant_id,
                    cause=str(e),
                ) from e

            if self._closed:
                await self._dispose(tenant_id, handle)
                raise ConnectivityError("Connection cache is closed", tenant_id=tenant_id)

            now = self._clock()
            entry = CacheEntry(tenant_id=tenant_id, handle=handle, created_at=now, last_accessed_at=now)
            self._entries[tenant_id] = entry
            logger.info(f"Cached new handle for tenant {tenant_id} ({len(self._entries)} cached)")
            return entry
        finally:
            self._pending.pop(tenant_id, None)

    async def _lookup(self, tenant_id: str) -> Any:
        try:
            tenant = await self._registry.get_by_id(tenant_id)
        except TenancyError:
            raise
        except Exception as e:
            logger.error(f"Registry lookup failed while building handle for {tenant_id}: {e!r}")
            raise ConnectivityError(
                "Tenant registry is unreachable", tenant_id=tenant_id, cause=str(e)
            ) from e
        if tenant is None:
            raise TenantNotFoundError(f"Tenant '{tenant_id}' not found")
        return tenant

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    async def remove(self, tenant_id: str) -> bool:
        """Evict the entry for ``tenant_id`` and dispose its handle.

        Idempotent. Returns True if an entry was removed.
        """
        entry = self._entries.pop(tenant_id, None)
        if entry is None:
            return False
        logger.info(f"Removing cached handle for tenant {tenant_id}")
        await self._retire(entry)
        return True

    async def sweep(self) -> list[str]:
        """Evict every entry idle for at least the TTL with no open lease.

        Returns:
            The evicted tenant ids.
        """
        now = self._clock()
        expired = [
            tenant_id
            for tenant_id, entry in self._entries.items()
            if entry.in_flight == 0 and entry.idle_for(now) >= self._ttl
        ]
        retired = [self._entries.pop(tenant_id) for tenant_id in expired]
        for entry in retired:
            logger.info(
                f"Evicting idle handle for tenant {entry.tenant_id} "
                f"(idle {entry.idle_for(now):.0f}s)"
            )
            await self._retire(entry)
        return expired

    async def _retire(self, entry: CacheEntry) -> None:
        if not await entry.wait_idle(self._drain_timeout):
            logger.warning(
                f"Disposing handle for tenant {entry.tenant_id} with "
                f"{entry.in_flight} operation(s) still in flight"
            )
        await self._dispose(entry.tenant_id, entry.handle)

    async def _dispose(self, tenant_id: str, handle: Any) -> None:
        try:
            await self._factory.dispose(handle)
        except Exception as e:
            logger.warning(f"Failed to dispose handle for tenant {tenant_id}: {e!r}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background sweep task. Idempotent."""
        if self._closed:
            raise RuntimeError("Cannot start a drained connection cache")
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="orgbase-cache-sweeper")
            logger.debug(
                f"Cache sweeper started (ttl={self._ttl}s, interval={self._sweep_interval}s)"
            )

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Cache sweep failed; retrying next interval")

    async def drain_all(self) -> None:
        """Stop sweeping and dispose every handle.

        Pending creations are allowed to settle first; the whole drain is
        bounded by the drain timeout. Later fetches raise
        :class:`ConnectivityError`.
        """
        self._closed = True
        if self._sweeper is not None:
            self._sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

        try:
            await asyncio.wait_for(self._drain(), timeout=self._drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Cache drain timed out after {self._drain_timeout}s; "
                f"{len(self._entries)} handle(s) not disposed"
            )

    async def _drain(self) -> None:
        pending = list(self._pending.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        entries = list(self._entries.values())
        self._entries.clear()
        await asyncio.gather(*(self._retire(entry) for entry in entries))
        logger.info(f"Connection cache drained ({len(entries)} handle(s) disposed)")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def stats(self) -> CacheStats:
        return CacheStats(
            count=len(self._entries),
            tenant_ids=sorted(self._entries),
            pending=len(self._pending),
        )

    def __repr__(self) -> str:
        return f"<ConnectionCache entries={len(self._entries)} ttl={self._ttl}s>"
