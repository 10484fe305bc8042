"""Tests for the TTL result cache, its stores, and the expiry sweeper."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from sqlgate.engine import (
    CacheEntry,
    CacheFailure,
    CacheManager,
    CacheStore,
    CacheSweeper,
    EngineCacheStore,
    InternalEngine,
    MemoryCacheStore,
    fingerprint,
)


class FakeClock:
    """Controllable wall clock in seconds."""

    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenStore(CacheStore):
    """Store whose every operation fails."""

    async def get(self, key: str) -> CacheEntry | None:
        raise CacheFailure("store down")

    async def put(self, entry: CacheEntry) -> None:
        raise CacheFailure("store down")

    async def delete_expired(self, at_ms: float) -> int:
        raise CacheFailure("store down")


class TestFingerprint:
    """Tests for cache key derivation."""

    def test_whitespace_insensitive(self) -> None:
        assert fingerprint("SELECT *\n  FROM users") == fingerprint("SELECT * FROM users")

    def test_params_distinguish(self) -> None:
        assert fingerprint("SELECT ?", [1]) != fingerprint("SELECT ?", [2])

    def test_tuple_and_list_params_match(self) -> None:
        assert fingerprint("SELECT ?", (1,)) == fingerprint("SELECT ?", [1])

    def test_named_param_order_irrelevant(self) -> None:
        assert fingerprint("SELECT :a, :b", {"a": 1, "b": 2}) == fingerprint(
            "SELECT :a, :b", {"b": 2, "a": 1}
        )


class TestIsCacheable:
    """Tests for the read-only cacheability check."""

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT * FROM users",
            "  select 1",
            "WITH x AS (SELECT 1) SELECT * FROM x",
            "EXPLAIN SELECT * FROM users",
        ],
    )
    def test_reads(self, sql: str) -> None:
        assert CacheManager.is_cacheable(sql)

    @pytest.mark.parametrize(
        "sql",
        [
            "INSERT INTO users (name) VALUES ('x')",
            "UPDATE users SET name = 'x'",
            "DELETE FROM users",
            "WITH x AS (SELECT 1) DELETE FROM users",
            "PRAGMA foreign_keys = ON",
            "CREATE TABLE t (id INTEGER)",
        ],
    )
    def test_writes(self, sql: str) -> None:
        assert not CacheManager.is_cacheable(sql)

    def test_pragma_introspection_is_not_cached(self) -> None:
        """Schema lookups must reflect DDL run since the last call."""
        assert not CacheManager.is_cacheable("PRAGMA table_info(users)")


class TestCacheManager:
    """Tests for lookup/store with TTL expiry."""

    async def test_store_then_hit(self) -> None:
        cache = CacheManager(MemoryCacheStore(), clock=FakeClock())
        await cache.store("SELECT * FROM users", None, [{"id": 1}])
        assert await cache.lookup("SELECT  *  FROM users", None) == [{"id": 1}]

    async def test_miss(self) -> None:
        cache = CacheManager(MemoryCacheStore(), clock=FakeClock())
        assert await cache.lookup("SELECT 1", None) is None

    async def test_expiry_is_lazy_until_sweep(self) -> None:
        """Expired entries stop being served at once but stay stored until swept."""
        clock = FakeClock()
        store = MemoryCacheStore()
        cache = CacheManager(store, default_ttl=60, clock=clock)
        await cache.store("SELECT 1", None, [{"1": 1}])

        clock.now += 60
        assert await cache.lookup("SELECT 1", None) == [{"1": 1}]

        clock.now += 1
        assert await cache.lookup("SELECT 1", None) is None
        assert len(store) == 1

        assert await cache.sweep() == 1
        assert len(store) == 0

    async def test_per_call_ttl(self) -> None:
        clock = FakeClock()
        cache = CacheManager(MemoryCacheStore(), default_ttl=60, clock=clock)
        await cache.store("SELECT 1", None, [], ttl=5)
        clock.now += 6
        assert await cache.lookup("SELECT 1", None) is None

    async def test_store_failures_are_absorbed(self, caplog: pytest.LogCaptureFixture) -> None:
        """A broken store degrades to misses; callers see no error."""
        cache = CacheManager(BrokenStore())

        await cache.store("SELECT 1", None, [])
        assert await cache.lookup("SELECT 1", None) is None
        assert await cache.sweep() == 0
        assert "store down" in caplog.text


class TestEngineCacheStore:
    """Tests for the tmp_cache table store."""

    @pytest.fixture
    async def engine(self) -> AsyncIterator[InternalEngine]:
        engine = InternalEngine(":memory:")
        await engine.open()
        yield engine
        await engine.close()

    async def test_round_trip_and_upsert(self, engine: InternalEngine) -> None:
        store = EngineCacheStore(engine)
        await store.put(CacheEntry(key="k", result=[{"a": 1}], timestamp=1000.0, ttl=60))
        await store.put(CacheEntry(key="k", result=[{"a": 2}], timestamp=2000.0, ttl=30))

        entry = await store.get("k")

        assert entry == CacheEntry(key="k", result=[{"a": 2}], timestamp=2000.0, ttl=30)
        rows = await engine.execute_query("SELECT COUNT(*) AS n FROM tmp_cache", None, False)
        assert rows == [{"n": 1}]

    async def test_delete_expired(self, engine: InternalEngine) -> None:
        store = EngineCacheStore(engine)
        await store.put(CacheEntry(key="old", result=[], timestamp=0.0, ttl=1))
        await store.put(CacheEntry(key="new", result=[], timestamp=10_000.0, ttl=60))

        removed = await store.delete_expired(5_000.0)

        assert removed == 1
        assert await store.get("old") is None
        assert await store.get("new") is not None

    async def test_engine_errors_raise_cache_failure(self) -> None:
        """A tmp_cache table with the wrong shape surfaces as CacheFailure."""
        engine = InternalEngine(":memory:")
        store = EngineCacheStore(engine)
        await engine.open()
        await engine.execute_query("CREATE TABLE tmp_cache (id INTEGER)", None, False)
        with pytest.raises(CacheFailure):
            await store.get("k")
        await engine.close()


class TestCacheSweeper:
    """Tests for the background sweep task."""

    async def test_start_sweeps_and_stop_cancels(self) -> None:
        clock = FakeClock()
        store = MemoryCacheStore()
        cache = CacheManager(store, clock=clock)
        await cache.store("SELECT 1", None, [], ttl=1)
        clock.now += 2

        sweeper = CacheSweeper(cache, interval=3600)
        sweeper.start()
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert sweeper.running
        assert len(store) == 0

        await sweeper.stop()
        assert not sweeper.running

    async def test_kick_runs_one_sweep(self) -> None:
        clock = FakeClock()
        store = MemoryCacheStore()
        cache = CacheManager(store, clock=clock)
        await cache.store("SELECT 1", None, [], ttl=1)
        clock.now += 2

        sweeper = CacheSweeper(cache)
        sweeper.kick()
        sweeper.kick()
        await sweeper.stop()

        assert len(store) == 0
