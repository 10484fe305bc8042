"""PostgreSQL database backend implementation.

This module provides the PostgreSQL backend using asyncpg for native async
operation. One connection is opened per dispatched statement.

Note:
    Requires the 'asyncpg' package: pip install sqlgate[postgresql]
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .backend import ConnectionConfig, DatabaseBackendBase, DatabaseEngine, Params, QueryResult

if TYPE_CHECKING:
    import asyncpg  # type: ignore[import-not-found]

logger = logging.getLogger(__name__)


def _import_asyncpg() -> Any:
    """Import asyncpg with helpful error message if not installed."""
    try:
        import asyncpg

        return asyncpg
    except ImportError as e:
        raise ImportError(
            "PostgreSQL backend requires 'asyncpg' package. "
            "Install with: pip install sqlgate[postgresql]"
        ) from e


class PostgresBackend(DatabaseBackendBase):
    """PostgreSQL backend using asyncpg.

    Attributes:
        engine: DatabaseEngine.POSTGRESQL

    Example:
        backend = PostgresBackend()
        await backend.connect(ConnectionConfig(
            engine=DatabaseEngine.POSTGRESQL,
            host="localhost",
            database="mydb",
            username="user",
            password="pass"
        ))
        result = await backend.execute("SELECT * FROM users WHERE id = $1", (42,))
        await backend.disconnect()
    """

    engine = DatabaseEngine.POSTGRESQL

    def __init__(self) -> None:
        """Initialize PostgreSQL backend."""
        self._conn: asyncpg.Connection | None = None
        self._config: ConnectionConfig | None = None

    async def connect(self, config: ConnectionConfig) -> None:
        """Open a connection.

        Args:
            config: Connection configuration

        Raises:
            ImportError: If asyncpg is not installed
        """
        asyncpg = _import_asyncpg()
        self._config = config

        ssl_context: bool | None = None
        if config.ssl is True or config.ssl in ("require", "verify-ca", "verify-full"):
            ssl_context = True  # asyncpg will create appropriate context

        server_settings = None
        if config.options.get("search_path"):
            server_settings = {"search_path": str(config.options["search_path"])}

        self._conn = await asyncpg.connect(
            server_settings=server_settings,
            host=config.host,
            port=config.port,
            database=config.database,
            user=config.username,
            password=config.password,
            ssl=ssl_context,
            command_timeout=config.timeout,
            timeout=config.connect_timeout,
        )

        logger.debug(f"Connected to PostgreSQL: {config.host}:{config.port}/{config.database}")

    async def disconnect(self) -> None:
        """Close the connection. Safe to call multiple times."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
        logger.debug("Disconnected from PostgreSQL")

    async def execute(self, sql: str, params: Params = None) -> QueryResult:
        """Run one statement through a prepared statement.

        A prepared statement gives both the result rows and the command
        status tag (e.g. "INSERT 0 1") in a single round trip.

        Args:
            sql: SQL statement (use $1, $2 for params)
            params: Statement parameters

        Returns:
            QueryResult with rows and affected_rows
        """
        if self._conn is None:
            raise RuntimeError("Not connected to database. Call connect() first.")

        statement = await self._conn.prepare(sql)
        records = await statement.fetch(*self._positional(params))

        rows = [dict(record) for record in records]
        columns = [attr.name for attr in statement.get_attributes()]
        affected = self._parse_affected_rows(statement.get_statusmsg())

        return QueryResult(
            rows=rows,
            columns=columns,
            row_count=len(rows),
            affected_rows=affected,
        )

    @staticmethod
    def _parse_affected_rows(status: str | None) -> int:
        """Parse affected row count from a status tag like 'UPDATE 3'."""
        if not status:
            return 0
        parts = status.split()
        if parts and parts[0] in ("INSERT", "UPDATE", "DELETE", "MERGE"):
            try:
                return int(parts[-1])
            except ValueError:
                return 0
        return 0
