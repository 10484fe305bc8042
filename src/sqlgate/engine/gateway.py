"""Gateway: one tenant's data source, policies, cache, and pipeline.

Example:
    settings = GatewayConfigLoader().load()
    async with Gateway.from_settings(settings) as gateway:
        rows = await gateway.query("SELECT * FROM users WHERE id = ?", [1])
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .cache import CacheManager, CacheStore, CacheSweeper, EngineCacheStore, MemoryCacheStore
from .config import (
    DEFAULT_HOSTED_API_URL,
    AllowlistPolicy,
    Configuration,
    DataSource,
    GatewaySettings,
    RlsPolicy,
)
from .dispatch import AdapterRegistry, BackendDispatcher
from .exceptions import ConfigurationError
from .hosted import HostedProxyClient
from .internal import InternalEngine
from .pipeline import PipelineResult, QueryPipeline
from .request import QueryRequest
from .rest import RestTranslator
from .security import SecurityEnforcer
from .sql.backend import Params

logger = logging.getLogger(__name__)


class Gateway:
    """Owns every pipeline component for one tenant.

    Raises:
        ConfigurationError: At construction, when ``source`` is external but
            no external descriptor is configured
    """

    def __init__(
        self,
        data_source: DataSource,
        config: Configuration | None = None,
        allowlist: AllowlistPolicy | None = None,
        rls: list[RlsPolicy] | None = None,
        *,
        engine: InternalEngine | None = None,
        registry: AdapterRegistry | None = None,
        cache_store: CacheStore | None = None,
        hosted_api_url: str = DEFAULT_HOSTED_API_URL,
        hosted_transport: httpx.AsyncBaseTransport | None = None,
        sweep_interval: float = 60.0,
    ):
        if data_source.source == "external" and data_source.external is None:
            raise ConfigurationError("No external data sources available.")

        self.data_source = data_source
        self.config = config or Configuration()

        needs_engine = data_source.source == "internal" or (
            cache_store is None and data_source.cache_store == "engine"
        )
        self.engine = engine or (InternalEngine(data_source.path) if needs_engine else None)

        if cache_store is None:
            if data_source.cache_store == "engine":
                assert self.engine is not None
                cache_store = EngineCacheStore(self.engine)
            else:
                cache_store = MemoryCacheStore()
        self.cache = CacheManager(cache_store, default_ttl=data_source.cache_ttl)
        self.sweeper = CacheSweeper(self.cache, interval=sweep_interval)

        hosted = None
        if data_source.source == "external" and self.config.outerbase_api_key:
            hosted = HostedProxyClient(
                hosted_api_url, self.config.outerbase_api_key, transport=hosted_transport
            )

        self.security = SecurityEnforcer(data_source, self.config, allowlist, rls)
        self.dispatcher = BackendDispatcher(
            data_source, self.config, engine=self.engine, registry=registry, hosted=hosted
        )
        self.pipeline = QueryPipeline(data_source, self.security, self.dispatcher, self.cache)
        self.rest = RestTranslator(self.pipeline, data_source)

    @classmethod
    def from_settings(cls, settings: GatewaySettings, **kwargs: Any) -> Gateway:
        return cls(
            settings.data_source,
            settings.config,
            settings.allowlist,
            settings.rls,
            hosted_api_url=settings.hosted_api_url,
            sweep_interval=settings.sweep_interval,
            **kwargs,
        )

    def feature(self, name: str) -> bool:
        return self.config.feature(name)

    async def start(self) -> None:
        if self.engine is not None:
            await self.engine.open()
        self.sweeper.start()
        logger.info(
            f"Gateway started (source={self.data_source.source}, "
            f"dialect={self.data_source.dialect}, role={self.config.role})"
        )

    async def stop(self) -> None:
        await self.sweeper.stop()
        if self.engine is not None:
            await self.engine.close()
        logger.info("Gateway stopped")

    async def __aenter__(self) -> Gateway:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def execute(
        self, request: QueryRequest, is_raw: bool = False
    ) -> PipelineResult | list[PipelineResult]:
        """Run a validated query request."""
        self.sweeper.kick()
        return await self.pipeline.execute(request, is_raw)

    async def query(self, sql: str, params: Params = None, is_raw: bool = False) -> PipelineResult:
        """Run one statement."""
        self.sweeper.kick()
        return await self.pipeline.execute_query(sql, params, is_raw)

    async def handle_rest(
        self,
        method: str,
        table: str,
        record_id: str | None = None,
        query: Any = (),
        body: Any = None,
    ) -> Any:
        """Run one REST request against the internal engine."""
        self.sweeper.kick()
        return await self.rest.handle(method, table, record_id, query, body)
