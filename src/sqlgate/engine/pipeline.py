"""Query pipeline: security -> cache lookup -> dispatch -> cache write.

A transaction batch runs each statement through the full pipeline in order.
There is no rollback: when statement N fails, statements before it have
already taken effect and the batch reports a single error.
"""

from __future__ import annotations

import logging

from .cache import CacheManager
from .config import DataSource
from .dispatch import BackendDispatcher
from .request import QueryDescriptor, QueryRequest, TransactionBatch
from .security import SecurityEnforcer
from .sql.backend import Params
from .transform import ObjectResult, RawResult

logger = logging.getLogger(__name__)

PipelineResult = RawResult | ObjectResult


class QueryPipeline:
    """Composes security, cache, and dispatch for one gateway."""

    def __init__(
        self,
        data_source: DataSource,
        security: SecurityEnforcer,
        dispatcher: BackendDispatcher,
        cache: CacheManager | None = None,
    ):
        self.data_source = data_source
        self.security = security
        self.dispatcher = dispatcher
        self.cache = cache

    async def execute_query(
        self, sql: str, params: Params = None, is_raw: bool = False
    ) -> PipelineResult:
        """Run one statement.

        Args:
            sql: Statement text
            params: Positional list or named mapping
            is_raw: Return RawResult instead of row mappings

        Raises:
            SecurityRejection: Allowlist or RLS refused the statement
            UnsupportedBackendError: No adapter for the external source
            BackendExecutionError: The backend failed
        """
        secured = self.security.secure(sql, params)

        use_cache = (
            self.cache is not None
            and self.data_source.cache
            and not is_raw
            and not secured.rls_modified
            and CacheManager.is_cacheable(secured.sql)
        )

        if use_cache:
            assert self.cache is not None
            cached = await self.cache.lookup(secured.sql, secured.params)
            if cached is not None:
                return cached

        result = await self.dispatcher.dispatch(secured.sql, secured.params, is_raw)

        if use_cache and isinstance(result, list):
            assert self.cache is not None
            await self.cache.store(
                secured.sql, secured.params, result, ttl=self.data_source.cache_ttl
            )

        return result

    async def execute_transaction(
        self, queries: list[QueryDescriptor], is_raw: bool = False
    ) -> list[PipelineResult]:
        """Run statements one after another; the first failure aborts the rest."""
        results: list[PipelineResult] = []
        for index, query in enumerate(queries):
            try:
                results.append(await self.execute_query(query.sql, query.params, is_raw))
            except Exception:
                if index:
                    logger.warning(
                        f"Transaction statement {index + 1}/{len(queries)} failed; "
                        f"{index} earlier statement(s) already applied"
                    )
                raise
        return results

    async def execute(
        self, request: QueryRequest, is_raw: bool = False
    ) -> PipelineResult | list[PipelineResult]:
        """Run a validated request: a single statement or a batch."""
        if isinstance(request, TransactionBatch):
            return await self.execute_transaction(request.queries, is_raw)
        return await self.execute_query(request.sql, request.params, is_raw)
