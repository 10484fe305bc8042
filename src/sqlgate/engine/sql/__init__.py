"""Driver layer: direct database backends and HTTP API providers.

This module provides a unified interface for executing one SQL statement
against SQLite, PostgreSQL, MySQL, or an HTTP-fronted SQL service.

Features:
    - Pluggable backend architecture
    - Automatic parameter placeholder conversion between dialects
    - HTTP providers with validated response schemas
    - Schema introspection and CRUD query building for the REST layer

Usage:
    from sqlgate.engine.sql import SqliteBackend, ConnectionConfig, DatabaseEngine

    backend = SqliteBackend()
    await backend.connect(ConnectionConfig(engine=DatabaseEngine.SQLITE, path="/data/app.db"))
    result = await backend.execute("SELECT * FROM users WHERE id = ?", [1])
    await backend.disconnect()
"""

from .backend import (
    ConnectionConfig,
    DatabaseBackend,
    DatabaseBackendBase,
    DatabaseEngine,
    Params,
    QueryResult,
)
from .http_backends import (
    CloudflareD1Backend,
    HttpBackend,
    HttpBackendError,
    StarbaseBackend,
    TursoBackend,
)
from .model import ColumnDef, ModelSchema, is_identifier
from .mysql_backend import MySQLBackend
from .param_converter import (
    ParamConverter,
    convert_sql_for_engine,
    named_to_positional,
    positional_to_named,
)
from .postgres_backend import PostgresBackend
from .query_builder import QueryBuilder
from .sqlite_backend import SqliteBackend

__all__ = [
    # Core types
    "ConnectionConfig",
    "DatabaseBackend",
    "DatabaseBackendBase",
    "DatabaseEngine",
    "Params",
    "QueryResult",
    # Parameter conversion
    "ParamConverter",
    "convert_sql_for_engine",
    "named_to_positional",
    "positional_to_named",
    # Direct backends
    "SqliteBackend",
    "PostgresBackend",
    "MySQLBackend",
    # HTTP providers
    "HttpBackend",
    "HttpBackendError",
    "CloudflareD1Backend",
    "TursoBackend",
    "StarbaseBackend",
    # REST support
    "ColumnDef",
    "ModelSchema",
    "QueryBuilder",
    "is_identifier",
]
