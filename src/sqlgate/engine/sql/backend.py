"""Database backend protocol and data classes for the driver layer.

This module defines the abstract interface that every direct-driver backend
implements, along with shared data structures for connection settings and
statement results.

Backends are opened per call: the dispatcher connects, runs one statement,
and disconnects in a ``finally`` block. Pooling is left to the drivers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class DatabaseEngine(Enum):
    """SQL engines reachable through a direct driver."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


@dataclass
class ConnectionConfig:
    """Database connection configuration.

    Attributes:
        engine: Target engine (sqlite, postgresql, mysql)
        path: SQLite database file path (or ":memory:" for in-memory)
        host: Database server host (PostgreSQL/MySQL)
        port: Database server port
        database: Database name
        username: Database username
        password: Database password
        ssl: SSL/TLS configuration (bool or sslmode string)
        timeout: Statement execution timeout in seconds
        connect_timeout: Connection establishment timeout in seconds
        options: Backend-specific options (e.g., sqlite_pragmas)
    """

    engine: DatabaseEngine
    path: str | None = None
    host: str | None = None
    port: int | None = None
    database: str | None = None
    username: str | None = None
    password: str | None = None
    ssl: bool | str = False
    timeout: int = 30
    connect_timeout: int = 10
    options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate configuration based on engine."""
        if self.engine == DatabaseEngine.SQLITE:
            if not self.path:
                raise ValueError("SQLite requires 'path' parameter")
        else:
            if not self.host:
                raise ValueError(f"{self.engine.value} requires 'host' parameter")
            if not self.database:
                raise ValueError(f"{self.engine.value} requires 'database' parameter")

            if self.port is None:
                if self.engine == DatabaseEngine.POSTGRESQL:
                    self.port = 5432
                elif self.engine == DatabaseEngine.MYSQL:
                    self.port = 3306


@dataclass
class QueryResult:
    """Unified statement result across backends.

    Attributes:
        rows: Result rows as list of dicts (empty for statements without a result set)
        values: The same rows as positional lists, when the driver keeps them;
            duplicate column names survive here but not in ``rows``
        columns: Column names from the result set, in order
        row_count: Number of rows returned
        affected_rows: Number of rows changed by INSERT/UPDATE/DELETE
        last_insert_id: Last inserted row ID, when the driver reports one
    """

    rows: list[dict[str, Any]] = field(default_factory=list)
    values: list[list[Any]] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)
    row_count: int = 0
    affected_rows: int = 0
    last_insert_id: int | None = None


# Type alias for statement parameters
Params = tuple[Any, ...] | list[Any] | dict[str, Any] | None


@runtime_checkable
class DatabaseBackend(Protocol):
    """Protocol for direct-driver backends.

    The gateway only needs three operations from a driver: open a
    connection, run one statement, and close the connection.

    Example implementation:
        class SqliteBackend:
            engine = DatabaseEngine.SQLITE

            async def connect(self, config: ConnectionConfig) -> None:
                self._conn = sqlite3.connect(config.path)

            async def execute(self, sql: str, params: Params = None) -> QueryResult:
                cursor = self._conn.execute(sql, params or ())
                rows = [dict(row) for row in cursor.fetchall()]
                return QueryResult(rows=rows, row_count=len(rows))
    """

    engine: DatabaseEngine

    async def connect(self, config: ConnectionConfig) -> None:
        """Establish the database connection.

        Args:
            config: Connection configuration
        """
        ...

    async def disconnect(self) -> None:
        """Close the database connection. Safe to call multiple times."""
        ...

    async def execute(self, sql: str, params: Params = None) -> QueryResult:
        """Run one statement and return its rows and counts.

        Args:
            sql: SQL statement in the engine's native placeholder style
            params: Statement parameters (positional or named)

        Returns:
            QueryResult with rows (if any) and affected counts
        """
        ...


class DatabaseBackendBase(ABC):
    """Abstract base class for direct-driver backends."""

    engine: DatabaseEngine

    @abstractmethod
    async def connect(self, config: ConnectionConfig) -> None:
        """Establish database connection."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close database connection."""
        pass

    @abstractmethod
    async def execute(self, sql: str, params: Params = None) -> QueryResult:
        """Run one statement."""
        pass

    @staticmethod
    def _positional(params: Params) -> tuple[Any, ...]:
        """Flatten params into a positional tuple for drivers without named binds."""
        if params is None:
            return ()
        if isinstance(params, dict):
            return tuple(params.values())
        return tuple(params)
