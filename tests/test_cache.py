"""Tests for orgbase.multitenancy.cache - per-tenant connection cache."""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeHandleFactory, StaticRegistry, cache_options, make_tenant
from orgbase.multitenancy.cache import CacheEntry, CacheStats, ConnectionCache
from orgbase.multitenancy.errors import ConnectivityError, TenantNotFoundError


def make_cache(registry, factory, clock=None, **overrides) -> ConnectionCache:
    kwargs = cache_options(**overrides)
    if clock is not None:
        kwargs["clock"] = clock
    return ConnectionCache(registry, factory, **kwargs)


# ===========================================================================
# CacheEntry
# ===========================================================================


class TestCacheEntry:
    """Tests for the per-tenant entry bookkeeping."""

    def test_new_entry_is_idle(self):
        entry = CacheEntry("t1", object(), created_at=0.0, last_accessed_at=0.0)
        assert entry.in_flight == 0
        assert entry.idle_for(10.0) == 10.0

    def test_acquire_release(self):
        entry = CacheEntry("t1", object(), created_at=0.0, last_accessed_at=0.0)
        entry.acquire()
        entry.acquire()
        assert entry.in_flight == 2
        entry.release(5.0)
        assert entry.in_flight == 1
        assert entry.last_accessed_at == 5.0
        entry.release(6.0)
        assert entry.in_flight == 0

    @pytest.mark.asyncio
    async def test_wait_idle_times_out_while_leased(self):
        entry = CacheEntry("t1", object(), created_at=0.0, last_accessed_at=0.0)
        entry.acquire()
        assert await entry.wait_idle(0.01) is False
        entry.release(1.0)
        assert await entry.wait_idle(0.01) is True


# ===========================================================================
# Fetching
# ===========================================================================


class TestGet:
    """Tests for lazy creation and reuse."""

    @pytest.mark.asyncio
    async def test_first_get_creates_and_caches(self, static_registry, acme):
        factory = FakeHandleFactory()
        cache = make_cache(static_registry, factory)

        handle = await cache.get(acme.id)

        assert handle.tenant_id == acme.id
        assert acme.id in cache
        assert len(factory.created) == 1

    @pytest.mark.asyncio
    async def test_second_get_reuses_handle(self, static_registry, acme):
        factory = FakeHandleFactory()
        cache = make_cache(static_registry, factory)

        first = await cache.get(acme.id)
        second = await cache.get(acme.id)

        assert first is second
        assert len(factory.created) == 1

    @pytest.mark.asyncio
    async def test_concurrent_gets_share_one_creation(self, static_registry, acme):
        factory = FakeHandleFactory(create_delay=0.05)
        cache = make_cache(static_registry, factory)

        handles = await asyncio.gather(*(cache.get(acme.id) for _ in range(20)))

        assert len(factory.created) == 1
        assert all(h is handles[0] for h in handles)
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_different_tenants_get_different_handles(self, static_registry):
        factory = FakeHandleFactory(create_delay=0.01)
        cache = make_cache(static_registry, factory)

        a, g = await asyncio.gather(cache.get("id-acme"), cache.get("id-globex"))

        assert a is not g
        assert {h.tenant_id for h in factory.created} == {"id-acme", "id-globex"}

    @pytest.mark.asyncio
    async def test_unknown_tenant_raises_not_found(self, static_registry):
        cache = make_cache(static_registry, FakeHandleFactory())
        with pytest.raises(TenantNotFoundError):
            await cache.get("missing")
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_registry_failure_is_connectivity_error(self, acme):
        registry = StaticRegistry(acme, fail_with=RuntimeError("db down"))
        cache = make_cache(registry, FakeHandleFactory())
        with pytest.raises(ConnectivityError):
            await cache.get(acme.id)


# ===========================================================================
# Failures
# ===========================================================================


class TestFailures:
    """Failed creations are never cached."""

    @pytest.mark.asyncio
    async def test_create_failure_not_cached(self, static_registry, acme):
        factory = FakeHandleFactory(fail_create=1)
        cache = make_cache(static_registry, factory)

        with pytest.raises(ConnectivityError) as exc_info:
            await cache.get(acme.id)
        assert exc_info.value.tenant_id == acme.id
        assert acme.id not in cache

        handle = await cache.get(acme.id)
        assert handle.serial == 1
        assert acme.id in cache

    @pytest.mark.asyncio
    async def test_create_failure_reaches_every_waiter(self, static_registry, acme):
        factory = FakeHandleFactory(create_delay=0.02, fail_create=1)
        cache = make_cache(static_registry, factory)

        results = await asyncio.gather(
            *(cache.get(acme.id) for _ in range(5)), return_exceptions=True
        )

        assert all(isinstance(r, ConnectivityError) for r in results)
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_probe_failure_disposes_handle(self, static_registry, acme):
        factory = FakeHandleFactory(fail_probe=1)
        cache = make_cache(static_registry, factory)

        with pytest.raises(ConnectivityError):
            await cache.get(acme.id)

        assert len(factory.created) == 1
        assert factory.created[0].disposed
        assert acme.id not in cache

    @pytest.mark.asyncio
    async def test_probe_timeout_disposes_handle(self, static_registry, acme):
        factory = FakeHandleFactory(probe_delay=1.0)
        cache = make_cache(static_registry, factory, probe_timeout=0.05)

        with pytest.raises(ConnectivityError, match="did not respond"):
            await cache.get(acme.id)

        assert factory.created[0].disposed
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_next_call_retries_after_probe_failure(self, static_registry, acme):
        factory = FakeHandleFactory(fail_probe=1)
        cache = make_cache(static_registry, factory)

        with pytest.raises(ConnectivityError):
            await cache.get(acme.id)
        handle = await cache.get(acme.id)

        assert handle.serial == 2
        assert not handle.disposed


# ===========================================================================
# Cancellation
# ===========================================================================


class TestCancellation:
    """A cancelled waiter does not cancel the shared creation."""

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_creation_running(self, static_registry, acme):
        factory = FakeHandleFactory(create_delay=0.05)
        cache = make_cache(static_registry, factory)

        waiter = asyncio.create_task(cache.get(acme.id))
        await asyncio.sleep(0.01)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        handle = await cache.get(acme.id)
        assert len(factory.created) == 1
        assert handle is factory.created[0]

    @pytest.mark.asyncio
    async def test_all_waiters_cancelled_still_populates(self, static_registry, acme):
        factory = FakeHandleFactory(create_delay=0.03)
        cache = make_cache(static_registry, factory)

        waiter = asyncio.create_task(cache.get(acme.id))
        await asyncio.sleep(0.005)
        waiter.cancel()
        await asyncio.sleep(0.06)

        assert acme.id in cache
        assert cache.stats().pending == 0


# ===========================================================================
# Eviction
# ===========================================================================


class TestEviction:
    """Idle entries are evicted by the sweep; fresh handles afterwards."""

    @pytest.mark.asyncio
    async def test_sweep_evicts_after_ttl(self, static_registry, acme, clock):
        factory = FakeHandleFactory()
        cache = make_cache(static_registry, factory, clock=clock, ttl_seconds=300)

        old = await cache.get(acme.id)
        clock.advance(299)
        assert await cache.sweep() == []
        clock.advance(1)
        assert await cache.sweep() == [acme.id]

        assert old.disposed
        assert acme.id not in cache

    @pytest.mark.asyncio
    async def test_get_after_eviction_creates_fresh_handle(self, static_registry, acme, clock):
        factory = FakeHandleFactory()
        cache = make_cache(static_registry, factory, clock=clock)

        old = await cache.get(acme.id)
        clock.advance(cache.ttl)
        await cache.sweep()
        new = await cache.get(acme.id)

        assert new is not old
        assert len(factory.created) == 2

    @pytest.mark.asyncio
    async def test_access_resets_idle_timer(self, static_registry, acme, clock):
        cache = make_cache(static_registry, FakeHandleFactory(), clock=clock, ttl_seconds=300)

        await cache.get(acme.id)
        clock.advance(200)
        await cache.get(acme.id)
        clock.advance(200)

        assert await cache.sweep() == []
        assert acme.id in cache

    @pytest.mark.asyncio
    async def test_sweep_only_evicts_expired(self, static_registry, clock):
        cache = make_cache(static_registry, FakeHandleFactory(), clock=clock, ttl_seconds=100)

        await cache.get("id-acme")
        clock.advance(60)
        await cache.get("id-globex")
        clock.advance(40)

        assert await cache.sweep() == ["id-acme"]
        assert cache.stats().tenant_ids == ["id-globex"]

    @pytest.mark.asyncio
    async def test_background_sweeper(self, static_registry, acme, clock):
        factory = FakeHandleFactory()
        cache = make_cache(static_registry, factory, clock=clock, sweep_interval=0.01)
        cache.start()
        try:
            await cache.get(acme.id)
            clock.advance(cache.ttl + 1)
            await asyncio.sleep(0.05)
            assert acme.id not in cache
            assert factory.created[0].disposed
        finally:
            await cache.drain_all()

    @pytest.mark.asyncio
    async def test_sweeper_survives_failed_sweep(
        self, static_registry, acme, clock, monkeypatch, caplog
    ):
        cache = make_cache(static_registry, FakeHandleFactory(), clock=clock, sweep_interval=0.01)
        real_sweep = cache.sweep
        calls = 0

        async def flaky_sweep():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("boom")
            return await real_sweep()

        monkeypatch.setattr(cache, "sweep", flaky_sweep)
        cache.start()
        try:
            await cache.get(acme.id)
            clock.advance(cache.ttl + 1)
            await asyncio.sleep(0.1)
            assert calls >= 2
            assert not cache._sweeper.done()
            assert acme.id not in cache
            assert "Cache sweep failed" in caplog.text
        finally:
            await cache.drain_all()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, static_registry):
        cache = make_cache(static_registry, FakeHandleFactory())
        cache.start()
        sweeper = cache._sweeper
        cache.start()
        assert cache._sweeper is sweeper
        await cache.drain_all()


# ===========================================================================
# Leases
# ===========================================================================


class TestLeases:
    """Eviction waits for in-flight operations."""

    @pytest.mark.asyncio
    async def test_sweep_skips_leased_entry(self, static_registry, acme, clock):
        cache = make_cache(static_registry, FakeHandleFactory(), clock=clock)

        async with cache.lease(acme.id):
            clock.advance(cache.ttl * 2)
            assert await cache.sweep() == []

        assert acme.id in cache

    @pytest.mark.asyncio
    async def test_remove_waits_for_lease(self, static_registry, acme):
        factory = FakeHandleFactory()
        cache = make_cache(static_registry, factory, drain_timeout=1.0)

        async with cache.lease(acme.id) as handle:
            removal = asyncio.create_task(cache.remove(acme.id))
            await asyncio.sleep(0.02)
            # Out of the index immediately, but not disposed while leased.
            assert acme.id not in cache
            assert not handle.disposed

        assert await removal is True
        assert handle.disposed

    @pytest.mark.asyncio
    async def test_remove_disposes_after_drain_timeout(self, static_registry, acme):
        factory = FakeHandleFactory()
        cache = make_cache(static_registry, factory, drain_timeout=0.02)

        async with cache.lease(acme.id) as handle:
            await cache.remove(acme.id)
            assert handle.disposed


# ===========================================================================
# Removal and shutdown
# ===========================================================================


class TestRemoveAndDrain:
    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, static_registry, acme):
        factory = FakeHandleFactory()
        cache = make_cache(static_registry, factory)

        await cache.get(acme.id)
        assert await cache.remove(acme.id) is True
        assert await cache.remove(acme.id) is False
        assert len(factory.disposed) == 1

    @pytest.mark.asyncio
    async def test_remove_unknown_is_noop(self, static_registry):
        cache = make_cache(static_registry, FakeHandleFactory())
        assert await cache.remove("nobody") is False

    @pytest.mark.asyncio
    async def test_drain_all_disposes_everything(self, static_registry):
        factory = FakeHandleFactory()
        cache = make_cache(static_registry, factory)
        cache.start()

        await cache.get("id-acme")
        await cache.get("id-globex")
        await cache.drain_all()

        assert len(cache) == 0
        assert all(h.disposed for h in factory.created)
        assert cache.closed

    @pytest.mark.asyncio
    async def test_get_after_drain_raises(self, static_registry, acme):
        cache = make_cache(static_registry, FakeHandleFactory())
        await cache.drain_all()
        with pytest.raises(ConnectivityError):
            await cache.get(acme.id)

    @pytest.mark.asyncio
    async def test_drain_settles_pending_creation(self, static_registry, acme):
        factory = FakeHandleFactory(create_delay=0.03)
        cache = make_cache(static_registry, factory)

        waiter = asyncio.create_task(cache.get(acme.id))
        await asyncio.sleep(0.005)
        await cache.drain_all()

        with pytest.raises(ConnectivityError):
            await waiter
        assert len(cache) == 0
        assert all(h.disposed for h in factory.created)


# ===========================================================================
# Stats
# ===========================================================================


class TestStats:
    @pytest.mark.asyncio
    async def test_stats_reflect_entries(self, static_registry):
        cache = make_cache(static_registry, FakeHandleFactory())
        assert cache.stats() == CacheStats(count=0, tenant_ids=[], pending=0)

        await cache.get("id-globex")
        await cache.get("id-acme")

        stats = cache.stats()
        assert stats.count == 2
        assert stats.tenant_ids == ["id-acme", "id-globex"]
        assert stats.to_dict() == {
            "count": 2,
            "tenant_ids": ["id-acme", "id-globex"],
            "pending": 0,
        }

    @pytest.mark.asyncio
    async def test_stats_after_add_tenant(self, static_registry):
        static_registry.add(make_tenant("initech"))
        cache = make_cache(static_registry, FakeHandleFactory())
        await cache.get("id-initech")
        assert cache.stats().tenant_ids == ["id-initech"]
