"""Embedded database engine co-located with the gateway.

The rest of the gateway only reaches it through ``execute_query``, which
already understands the raw flag and answers in the requested shape.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3

from .exceptions import BackendExecutionError
from .sql.backend import ConnectionConfig, DatabaseEngine, Params
from .sql.sqlite_backend import SqliteBackend
from .transform import ObjectResult, RawResult, ResultMeta, to_object

logger = logging.getLogger(__name__)


class InternalEngine:
    """Single-connection SQLite engine with serialized statement execution.

    Example:
        engine = InternalEngine("/data/gateway.db")
        await engine.open()
        rows = await engine.execute_query("SELECT 1 AS one", None, is_raw=False)
        # -> [{"one": 1}]
        await engine.close()
    """

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._backend = SqliteBackend()
        self._lock = asyncio.Lock()
        self._open_lock = asyncio.Lock()
        self._opened = False

    @property
    def is_open(self) -> bool:
        return self._opened

    async def open(self) -> None:
        if self._opened:
            return
        # Concurrent first requests must share one connection
        async with self._open_lock:
            if self._opened:
                return
            await self._backend.connect(
                ConnectionConfig(engine=DatabaseEngine.SQLITE, path=self.path)
            )
            self._opened = True
        logger.info(f"Internal engine opened: {self.path}")

    async def close(self) -> None:
        if not self._opened:
            return
        await self._backend.disconnect()
        self._opened = False
        logger.info("Internal engine closed")

    async def execute_query(
        self, sql: str, params: Params = None, is_raw: bool = False
    ) -> RawResult | ObjectResult:
        """Run one statement.

        Args:
            sql: SQL text with ``?`` or ``:name`` placeholders
            params: Positional list or named mapping
            is_raw: Return RawResult instead of row mappings

        Raises:
            BackendExecutionError: If SQLite rejects the statement
        """
        await self.open()
        async with self._lock:
            try:
                result = await self._backend.execute(sql, params)
            except sqlite3.Error as e:
                raise BackendExecutionError(str(e)) from e

        raw = RawResult(
            columns=result.columns,
            rows=result.values,
            meta=ResultMeta(
                rows_read=result.row_count,
                rows_written=0 if result.columns else result.affected_rows,
            ),
        )
        return raw if is_raw else to_object(raw)

    async def execute_script(self, sql: str) -> None:
        """Run a multi-statement script (schema setup)."""
        await self.open()
        async with self._lock:
            try:
                await self._backend.execute_script(sql)
            except sqlite3.Error as e:
                raise BackendExecutionError(str(e)) from e
