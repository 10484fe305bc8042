"""Backend dispatch: internal engine, hosted proxy, or a direct adapter.

Routing for one statement:

    source == internal          -> InternalEngine.execute_query (shape by is_raw)
    external + hosted key       -> HostedProxyClient
    external                    -> AdapterRegistry[provider or dialect]

External results come back as row mappings and are converted to the raw
shape once, here, when the caller asked for raw mode.

Adding a backend is a registration:

    registry.register("duckdb-http", lambda source: DriverConnection(MyBackend(...)))
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, PrivateAttr

from .config import Configuration, DataSource, ExternalSource
from .exceptions import (
    BackendExecutionError,
    ConfigurationError,
    GatewayError,
    UnsupportedBackendError,
)
from .hosted import HostedProxyClient
from .internal import InternalEngine
from .sql.backend import ConnectionConfig, DatabaseEngine, Params
from .sql.http_backends import CloudflareD1Backend, HttpBackend, StarbaseBackend, TursoBackend
from .sql.mysql_backend import MySQLBackend
from .sql.param_converter import ParamConverter
from .sql.postgres_backend import PostgresBackend
from .sql.sqlite_backend import SqliteBackend
from .transform import ObjectResult, RawResult, to_raw

logger = logging.getLogger(__name__)


class DriverConnection:
    """One per-call connection to an external backend.

    Wraps either a direct driver (which takes a ConnectionConfig on connect
    and native placeholders) or an HTTP provider (which takes gateway-style
    placeholders as-is).
    """

    def __init__(self, backend: Any, config: ConnectionConfig | None = None):
        self.backend = backend
        self.config = config

    async def open(self) -> None:
        if isinstance(self.backend, HttpBackend):
            await self.backend.connect()
        else:
            await self.backend.connect(self.config)

    async def close(self) -> None:
        await self.backend.disconnect()

    async def run(self, sql: str, params: Params = None) -> ObjectResult:
        if self.config is not None and self.config.engine != DatabaseEngine.SQLITE:
            converter = ParamConverter(self.config.engine)
            native_sql = converter.convert(sql)
            params = converter.convert_params(params, sql)
            sql = native_sql
        result = await self.backend.execute(sql, params)
        return result.rows


AdapterFactory = Callable[[ExternalSource], DriverConnection]


def _require(source: ExternalSource, *fields: str) -> None:
    missing = [name for name in fields if not getattr(source, name)]
    if missing:
        label = source.provider or source.dialect
        raise ConfigurationError(f"External source '{label}' requires: {', '.join(missing)}")


def _postgres(source: ExternalSource) -> DriverConnection:
    _require(source, "host", "database")
    config = ConnectionConfig(
        engine=DatabaseEngine.POSTGRESQL,
        host=source.host,
        port=source.port,
        database=source.database,
        username=source.user,
        password=source.password,
        ssl=source.ssl,
        timeout=source.timeout,
        options={"search_path": source.default_schema} if source.default_schema else {},
    )
    return DriverConnection(PostgresBackend(), config)


def _mysql(source: ExternalSource) -> DriverConnection:
    _require(source, "host", "database")
    config = ConnectionConfig(
        engine=DatabaseEngine.MYSQL,
        host=source.host,
        port=source.port,
        database=source.database,
        username=source.user,
        password=source.password,
        ssl=source.ssl,
        timeout=source.timeout,
    )
    return DriverConnection(MySQLBackend(), config)


def _sqlite(source: ExternalSource) -> DriverConnection:
    _require(source, "path")
    config = ConnectionConfig(
        engine=DatabaseEngine.SQLITE, path=source.path, timeout=source.timeout
    )
    return DriverConnection(SqliteBackend(), config)


def _cloudflare_d1(source: ExternalSource) -> DriverConnection:
    _require(source, "api_key", "account_id", "database_id")
    return DriverConnection(
        CloudflareD1Backend(
            api_key=source.api_key,  # type: ignore[arg-type]
            account_id=source.account_id,  # type: ignore[arg-type]
            database_id=source.database_id,  # type: ignore[arg-type]
            api_url=source.url,
            timeout=float(source.timeout),
        )
    )


def _turso(source: ExternalSource) -> DriverConnection:
    _require(source, "url")
    return DriverConnection(
        TursoBackend(
            url=source.url,  # type: ignore[arg-type]
            token=source.token,
            timeout=float(source.timeout),
        )
    )


def _starbase(source: ExternalSource) -> DriverConnection:
    _require(source, "url")
    return DriverConnection(
        StarbaseBackend(
            url=source.url,  # type: ignore[arg-type]
            api_key=source.token or source.api_key,
            timeout=float(source.timeout),
        )
    )


class AdapterRegistry(BaseModel):
    """
    Registry of external backend adapters.

    Maps provider or dialect names to adapter factories.
    """

    model_config = {"arbitrary_types_allowed": True}

    _factories: dict[str, AdapterFactory] = PrivateAttr(default_factory=dict)

    def register(self, key: str, factory: AdapterFactory, replace: bool = False) -> None:
        """Register a factory under a provider or dialect name."""
        key = key.lower()
        if key in self._factories and not replace:
            raise ValueError(f"Adapter already registered: {key}")
        self._factories[key] = factory

    def get(self, key: str) -> AdapterFactory:
        """Get adapter factory by key."""
        key = key.lower()
        if key not in self._factories:
            raise UnsupportedBackendError(f"Unsupported external database type: {key}")
        return self._factories[key]

    def has(self, key: str) -> bool:
        return key.lower() in self._factories

    def list_types(self) -> list[str]:
        """List registered adapter keys."""
        return list(self._factories.keys())

    def resolve(self, source: ExternalSource) -> AdapterFactory:
        """Pick the factory for a source; the provider wins over the dialect."""
        if source.provider and self.has(source.provider):
            return self.get(source.provider)
        if self.has(source.dialect):
            return self.get(source.dialect)
        label = f"{source.dialect}/{source.provider}" if source.provider else source.dialect
        raise UnsupportedBackendError(f"Unsupported external database type: {label}")


def create_default_registry() -> AdapterRegistry:
    """Registry with every built-in adapter."""
    registry = AdapterRegistry()
    registry.register("postgres", _postgres)
    registry.register("postgresql", _postgres)
    registry.register("mysql", _mysql)
    registry.register("sqlite", _sqlite)
    registry.register("cloudflare-d1", _cloudflare_d1)
    registry.register("turso", _turso)
    registry.register("starbase", _starbase)
    return registry


class BackendDispatcher:
    """Executes post-security statements on the configured backend."""

    def __init__(
        self,
        data_source: DataSource,
        config: Configuration,
        engine: InternalEngine | None = None,
        registry: AdapterRegistry | None = None,
        hosted: HostedProxyClient | None = None,
    ):
        self.data_source = data_source
        self.config = config
        self.engine = engine
        self.registry = registry or create_default_registry()
        self.hosted = hosted

    async def dispatch(
        self, sql: str, params: Params = None, is_raw: bool = False
    ) -> RawResult | ObjectResult:
        """Run one statement and return it in the requested shape.

        Raises:
            UnsupportedBackendError: No adapter for the external source
            BackendExecutionError: Driver, network, or SQL failure
        """
        if self.data_source.source == "internal":
            if self.engine is None:
                raise ConfigurationError("Internal data source has no engine")
            return await self.engine.execute_query(sql, params, is_raw)

        rows = await self._dispatch_external(sql, params)
        return to_raw(rows) if is_raw else rows

    async def _dispatch_external(self, sql: str, params: Params) -> ObjectResult:
        source = self.data_source.external
        if source is None:
            raise ConfigurationError("No external data sources available.")

        if self.hosted is not None:
            return await self.hosted.execute(sql, params)

        factory = self.registry.resolve(source)
        connection = factory(source)
        try:
            await connection.open()
            return await connection.run(sql, params)
        except GatewayError:
            raise
        except Exception as e:
            label = source.provider or source.dialect
            logger.error(f"{label} execution failed: {e}")
            raise BackendExecutionError(str(e)) from e
        finally:
            try:
                await connection.close()
            except Exception as e:
                label = source.provider or source.dialect
                logger.warning(f"Failed to close {label} connection: {e}")
