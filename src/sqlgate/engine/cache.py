"""TTL result cache for object-mode reads.

Entries are keyed by a fingerprint of the post-security SQL and params and
hold the row-mapping result. Expired entries are skipped on lookup and
deleted by a periodic sweep.

Two stores are available:
    - MemoryCacheStore: per-process dict, shared by concurrent requests
    - EngineCacheStore: ``tmp_cache`` table inside the internal engine

Store failures raise CacheFailure, which CacheManager logs and turns into a
miss or a no-op write. Callers never see them.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .exceptions import CacheFailure, GatewayError
from .sql.backend import Params
from .transform import ObjectResult

if TYPE_CHECKING:
    from .internal import InternalEngine

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

_WHITESPACE = re.compile(r"\s+")
_READ_PREFIX = re.compile(r"^\s*(SELECT|WITH|EXPLAIN)\b", re.IGNORECASE)
_WRITE_KEYWORD = re.compile(
    r"\b(INSERT|UPDATE|DELETE|REPLACE|UPSERT|CREATE|DROP|ALTER|TRUNCATE|ATTACH|DETACH|VACUUM)\b",
    re.IGNORECASE,
)


def normalize_sql(sql: str) -> str:
    """Collapse whitespace runs and trim."""
    return _WHITESPACE.sub(" ", sql).strip()


def fingerprint(sql: str, params: Params = None) -> str:
    """Deterministic cache key for a statement and its params."""
    if isinstance(params, tuple):
        params = list(params)
    payload = json.dumps(
        {"sql": normalize_sql(sql), "params": params}, sort_keys=True, default=str
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def now_ms(clock: Clock = time.time) -> float:
    return clock() * 1000


@dataclass
class CacheEntry:
    """One cached result.

    Attributes:
        key: Fingerprint of (sql, params)
        result: Row mappings
        timestamp: Insertion time in epoch milliseconds
        ttl: Time to live in seconds
    """

    key: str
    result: ObjectResult
    timestamp: float
    ttl: int

    def is_expired(self, at_ms: float) -> bool:
        return self.timestamp + self.ttl * 1000 < at_ms


class CacheStore(ABC):
    """Backing storage for cache entries. Implementations raise CacheFailure."""

    @abstractmethod
    async def get(self, key: str) -> CacheEntry | None: ...

    @abstractmethod
    async def put(self, entry: CacheEntry) -> None: ...

    @abstractmethod
    async def delete_expired(self, at_ms: float) -> int: ...


class MemoryCacheStore(CacheStore):
    """In-process store. Concurrent writes to one key are last-write-wins."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    async def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    async def put(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry

    async def delete_expired(self, at_ms: float) -> int:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(at_ms)]
        for key in expired:
            self._entries.pop(key, None)
        return len(expired)


class EngineCacheStore(CacheStore):
    """Store backed by the ``tmp_cache`` table of the internal engine."""

    CREATE_TABLE = (
        "CREATE TABLE IF NOT EXISTS tmp_cache ("
        '"id" INTEGER PRIMARY KEY AUTOINCREMENT, '
        '"timestamp" REAL NOT NULL, '
        '"ttl" INTEGER NOT NULL, '
        '"query" TEXT UNIQUE NOT NULL, '
        '"results" TEXT)'
    )

    def __init__(self, engine: InternalEngine):
        self._engine = engine
        self._ready = False

    async def _ensure_table(self) -> None:
        if not self._ready:
            await self._engine.execute_query(self.CREATE_TABLE, None, is_raw=False)
            self._ready = True

    async def get(self, key: str) -> CacheEntry | None:
        try:
            await self._ensure_table()
            rows = await self._engine.execute_query(
                "SELECT timestamp, ttl, results FROM tmp_cache WHERE query = ?", [key], False
            )
            if not rows:
                return None
            row = rows[0]
            return CacheEntry(
                key=key,
                result=json.loads(row["results"]),
                timestamp=float(row["timestamp"]),
                ttl=int(row["ttl"]),
            )
        except (GatewayError, ValueError, TypeError) as e:
            raise CacheFailure(f"cache read failed: {e}") from e

    async def put(self, entry: CacheEntry) -> None:
        try:
            await self._ensure_table()
            await self._engine.execute_query(
                "INSERT INTO tmp_cache (timestamp, ttl, query, results) VALUES (?, ?, ?, ?) "
                "ON CONFLICT(query) DO UPDATE SET timestamp = excluded.timestamp, "
                "ttl = excluded.ttl, results = excluded.results",
                [entry.timestamp, entry.ttl, entry.key, json.dumps(entry.result, default=str)],
                False,
            )
        except (GatewayError, ValueError, TypeError) as e:
            raise CacheFailure(f"cache write failed: {e}") from e

    async def delete_expired(self, at_ms: float) -> int:
        try:
            await self._ensure_table()
            raw = await self._engine.execute_query(
                "DELETE FROM tmp_cache WHERE timestamp + (ttl * 1000) < ?", [at_ms], True
            )
        except GatewayError as e:
            raise CacheFailure(f"cache sweep failed: {e}") from e
        return raw.meta.rows_written  # type: ignore[union-attr]


class CacheManager:
    """Lookup/store front end over a CacheStore.

    Example:
        cache = CacheManager(MemoryCacheStore(), default_ttl=60)
        hit = await cache.lookup("SELECT * FROM users", None)
        if hit is None:
            rows = await run_query()
            await cache.store("SELECT * FROM users", None, rows)
    """

    def __init__(self, store: CacheStore, default_ttl: int = 60, clock: Clock = time.time):
        self.store_backend = store
        self.default_ttl = default_ttl
        self._clock = clock

    @staticmethod
    def is_cacheable(sql: str) -> bool:
        """Only plain reads are cached.

        PRAGMA is never cached: schema introspection must see DDL at once.
        """
        if not _READ_PREFIX.match(sql):
            return False
        return not _WRITE_KEYWORD.search(sql)

    async def lookup(self, sql: str, params: Params = None) -> ObjectResult | None:
        """Cached result, or None on miss, expiry, or store failure."""
        key = fingerprint(sql, params)
        try:
            entry = await self.store_backend.get(key)
        except CacheFailure as e:
            logger.warning(f"Cache lookup failed, treating as miss: {e}")
            return None

        if entry is None:
            logger.debug(f"Cache miss {key[:12]}")
            return None
        if entry.is_expired(now_ms(self._clock)):
            logger.debug(f"Cache entry {key[:12]} expired")
            return None
        logger.debug(f"Cache hit {key[:12]}")
        return entry.result

    async def store(
        self, sql: str, params: Params, result: ObjectResult, ttl: int | None = None
    ) -> None:
        """Write a result. Failures are logged and ignored."""
        entry = CacheEntry(
            key=fingerprint(sql, params),
            result=result,
            timestamp=now_ms(self._clock),
            ttl=ttl if ttl is not None else self.default_ttl,
        )
        try:
            await self.store_backend.put(entry)
        except CacheFailure as e:
            logger.warning(f"Cache write failed, skipping: {e}")

    async def sweep(self) -> int:
        """Delete expired entries. Returns the number removed, 0 on failure."""
        try:
            removed = await self.store_backend.delete_expired(now_ms(self._clock))
        except CacheFailure as e:
            logger.error(f"Cache sweep failed: {e}", exc_info=True)
            return 0
        if removed:
            logger.debug(f"Cache sweep removed {removed} expired entries")
        return removed


class CacheSweeper:
    """Periodic expiry sweep owned by the gateway lifecycle.

    ``kick()`` schedules an extra sweep without waiting for it; ``stop()``
    cancels the periodic task and awaits any sweeps still running.
    """

    def __init__(self, cache: CacheManager, interval: float = 60.0):
        self._cache = cache
        self.interval = interval
        self._task: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[Any]] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="sqlgate-cache-sweep")
        logger.debug(f"Cache sweeper started (interval={self.interval}s)")

    def kick(self) -> None:
        """Run one sweep in the background."""
        if self._pending:
            return
        task = asyncio.create_task(self._sweep_once())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        logger.debug("Cache sweeper stopped")

    async def _run(self) -> None:
        while True:
            await self._sweep_once()
            await asyncio.sleep(self.interval)

    async def _sweep_once(self) -> None:
        try:
            await self._cache.sweep()
        except Exception as e:
            logger.error(f"Cache sweep raised {type(e).__name__}: {e}", exc_info=True)
