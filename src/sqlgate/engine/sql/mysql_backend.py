"""MySQL/MariaDB database backend implementation.

This module provides the MySQL backend using aiomysql for native async
operation. Compatible with MySQL 5.7+ and MariaDB 10.2+.

Note:
    Requires the 'aiomysql' package: pip install sqlgate[mysql]
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .backend import ConnectionConfig, DatabaseBackendBase, DatabaseEngine, Params, QueryResult

if TYPE_CHECKING:
    import aiomysql  # type: ignore[import-not-found]

logger = logging.getLogger(__name__)


def _import_aiomysql() -> Any:
    """Import aiomysql with helpful error message if not installed."""
    try:
        import aiomysql

        return aiomysql
    except ImportError as e:
        raise ImportError(
            "MySQL backend requires 'aiomysql' package. Install with: pip install sqlgate[mysql]"
        ) from e


class MySQLBackend(DatabaseBackendBase):
    """MySQL/MariaDB backend using aiomysql.

    Attributes:
        engine: DatabaseEngine.MYSQL

    Example:
        backend = MySQLBackend()
        await backend.connect(ConnectionConfig(
            engine=DatabaseEngine.MYSQL,
            host="localhost",
            database="mydb",
            username="user",
            password="pass"
        ))
        result = await backend.execute("SELECT * FROM users WHERE id = %s", (42,))
        await backend.disconnect()
    """

    engine = DatabaseEngine.MYSQL

    def __init__(self) -> None:
        """Initialize MySQL backend."""
        self._conn: aiomysql.Connection | None = None
        self._config: ConnectionConfig | None = None

    async def connect(self, config: ConnectionConfig) -> None:
        """Open a connection with autocommit enabled.

        Args:
            config: Connection configuration

        Raises:
            ImportError: If aiomysql is not installed
        """
        aiomysql = _import_aiomysql()
        self._config = config

        self._conn = await aiomysql.connect(
            host=config.host,
            port=config.port or 3306,
            db=config.database,
            user=config.username,
            password=config.password or "",
            ssl=True if config.ssl else None,
            connect_timeout=config.connect_timeout,
            autocommit=True,
        )

        logger.debug(f"Connected to MySQL: {config.host}:{config.port}/{config.database}")

    async def disconnect(self) -> None:
        """Close the connection. Safe to call multiple times."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        logger.debug("Disconnected from MySQL")

    async def execute(self, sql: str, params: Params = None) -> QueryResult:
        """Run one statement with a DictCursor.

        Args:
            sql: SQL statement (use %s for params)
            params: Statement parameters

        Returns:
            QueryResult with rows, affected_rows and last_insert_id
        """
        aiomysql = _import_aiomysql()
        if self._conn is None:
            raise RuntimeError("Not connected to database. Call connect() first.")

        bound: tuple[Any, ...] | dict[str, Any] | None
        if isinstance(params, dict):
            bound = params
        else:
            bound = self._positional(params) or None

        async with self._conn.cursor(aiomysql.DictCursor) as cursor:
            await cursor.execute(sql, bound)
            if cursor.description:
                columns = [desc[0] for desc in cursor.description]
                rows = list(await cursor.fetchall())
            else:
                columns = []
                rows = []
            affected = max(cursor.rowcount, 0) if not columns else 0
            last_id = cursor.lastrowid

        return QueryResult(
            rows=rows,
            columns=columns,
            row_count=len(rows),
            affected_rows=affected,
            last_insert_id=last_id or None,
        )
