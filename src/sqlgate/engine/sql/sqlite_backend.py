"""SQLite database backend implementation.

This module provides the SQLite backend, using the stdlib sqlite3 module with
asyncio run_in_executor for async operation. It serves both the external
``sqlite`` dialect and the embedded internal engine.

Features:
    - WAL mode by default for concurrent reads
    - Automatic busy_timeout for lock contention handling
    - Foreign key enforcement enabled
    - Path validation and parent directory creation
    - PRAGMA configuration via options
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Any

from .backend import ConnectionConfig, DatabaseBackendBase, DatabaseEngine, Params, QueryResult

logger = logging.getLogger(__name__)


class SqliteBackend(DatabaseBackendBase):
    """SQLite backend using stdlib sqlite3 with async executor.

    Attributes:
        engine: DatabaseEngine.SQLITE
        DEFAULT_PRAGMAS: Default PRAGMA settings applied on connection

    Example:
        backend = SqliteBackend()
        await backend.connect(ConnectionConfig(
            engine=DatabaseEngine.SQLITE,
            path="/data/app.db"
        ))
        result = await backend.execute("SELECT * FROM users WHERE id = ?", (42,))
        await backend.disconnect()
    """

    engine = DatabaseEngine.SQLITE

    DEFAULT_PRAGMAS: dict[str, str | int] = {
        "journal_mode": "WAL",
        "busy_timeout": 30000,
        "synchronous": "NORMAL",
        "foreign_keys": "ON",
    }

    def __init__(self) -> None:
        """Initialize SQLite backend."""
        self._conn: sqlite3.Connection | None = None
        self._config: ConnectionConfig | None = None

    async def connect(self, config: ConnectionConfig) -> None:
        """Connect to SQLite database.

        Creates the database file and parent directories if they don't exist.
        Applies PRAGMA settings from config.options or defaults.

        Args:
            config: Connection configuration with path
        """
        self._config = config

        def _connect() -> sqlite3.Connection:
            path = config.path
            if path is None:
                raise ValueError("SQLite requires 'path' parameter")

            if path != ":memory:" and not path.startswith(":"):
                Path(path).parent.mkdir(parents=True, exist_ok=True)

            # check_same_thread=False: calls hop between executor threads
            conn = sqlite3.connect(path, check_same_thread=False)
            conn.row_factory = sqlite3.Row

            pragmas = {**self.DEFAULT_PRAGMAS}
            if config.options.get("sqlite_pragmas"):
                pragmas.update(config.options["sqlite_pragmas"])

            if config.timeout:
                pragmas["busy_timeout"] = config.timeout * 1000

            for pragma, value in pragmas.items():
                try:
                    conn.execute(f"PRAGMA {pragma}={value}")
                except sqlite3.Error as e:
                    logger.warning(f"Failed to set PRAGMA {pragma}={value}: {e}")

            logger.debug(f"Connected to SQLite database: {path}")
            return conn

        loop = asyncio.get_running_loop()
        self._conn = await loop.run_in_executor(None, _connect)

    async def disconnect(self) -> None:
        """Close SQLite connection.

        Safe to call multiple times or if not connected.
        """
        if self._conn is None:
            return

        conn = self._conn
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, conn.close)
        self._conn = None
        logger.debug("Disconnected from SQLite database")

    async def execute(self, sql: str, params: Params = None) -> QueryResult:
        """Run one statement and auto-commit.

        Rows are fetched whenever the statement produces a result set
        (SELECT, PRAGMA, or anything with RETURNING).

        Args:
            sql: SQL statement
            params: Statement parameters (tuple, list, or dict)

        Returns:
            QueryResult with rows, columns and affected counts
        """
        self._ensure_connected()

        def _execute() -> QueryResult:
            assert self._conn is not None
            cursor = self._conn.execute(sql, self._normalize_params(params))

            if cursor.description:
                columns = [desc[0] for desc in cursor.description]
                fetched = cursor.fetchall()
                rows = [dict(row) for row in fetched]
                values = [list(row) for row in fetched]
            else:
                columns = []
                rows = []
                values = []

            self._conn.commit()

            return QueryResult(
                rows=rows,
                values=values,
                columns=columns,
                row_count=len(rows),
                affected_rows=max(cursor.rowcount, 0),
                last_insert_id=cursor.lastrowid,
            )

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _execute)

    async def execute_script(self, sql: str) -> None:
        """Execute a multi-statement SQL script.

        Args:
            sql: Multi-statement SQL script
        """
        self._ensure_connected()

        def _execute_script() -> None:
            assert self._conn is not None
            self._conn.executescript(sql)

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _execute_script)
        logger.debug("Executed SQL script")

    def _ensure_connected(self) -> None:
        """Ensure database is connected.

        Raises:
            RuntimeError: If not connected
        """
        if self._conn is None:
            raise RuntimeError("Not connected to database. Call connect() first.")

    def _normalize_params(self, params: Params) -> tuple[Any, ...] | dict[str, Any]:
        """Normalize parameters to sqlite3-compatible format."""
        if params is None:
            return ()
        if isinstance(params, dict):
            return params
        if isinstance(params, list):
            return tuple(params)
        return params
