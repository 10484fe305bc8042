"""Tests for the query pipeline and the gateway that owns it."""

from __future__ import annotations

from collections.abc import Callable

import pytest
from pytest_httpserver import HTTPServer

from sqlgate.engine import (
    AllowlistPolicy,
    BackendExecutionError,
    Configuration,
    ConfigurationError,
    DataSource,
    EngineCacheStore,
    ExternalSource,
    FeatureFlags,
    Gateway,
    GatewaySettings,
    InternalEngine,
    MemoryCacheStore,
    QueryDescriptor,
    RawResult,
    RlsPolicy,
    SecurityRejection,
    TransactionBatch,
)
from sqlgate.engine.hosted import HOSTED_QUERY_PATH

GatewayFactory = Callable[..., Gateway]

RLS_CONFIG = Configuration(subject="42", features=FeatureFlags(rls=True))
ORDERS_POLICY = RlsPolicy(table="orders", column="user_id", value="context.id()")


def spy_dispatch(gateway: Gateway) -> list[str]:
    """Record every statement that reaches the dispatcher."""
    calls: list[str] = []
    original = gateway.dispatcher.dispatch

    async def dispatch(sql, params=None, is_raw=False):  # type: ignore[no-untyped-def]
        calls.append(sql)
        return await original(sql, params, is_raw)

    gateway.dispatcher.dispatch = dispatch  # type: ignore[method-assign]
    return calls


class TestQueryPipelineCache:
    """Tests for when results are cached."""

    async def test_repeated_read_is_served_from_cache(self, make_gateway: GatewayFactory) -> None:
        gateway = make_gateway()
        calls = spy_dispatch(gateway)

        first = await gateway.query("SELECT name FROM users WHERE id = ?", [1])
        second = await gateway.query("SELECT name FROM users\n WHERE id = ?", [1])

        assert first == second == [{"name": "alice"}]
        assert len(calls) == 1

    async def test_cached_result_survives_until_expiry(
        self, make_gateway: GatewayFactory, engine: InternalEngine
    ) -> None:
        """Writes do not invalidate; a cached read stays stale until its TTL passes."""
        gateway = make_gateway()
        await gateway.query("SELECT name FROM users WHERE id = 1")
        await engine.execute_query("UPDATE users SET name = 'alicia' WHERE id = 1")

        assert await gateway.query("SELECT name FROM users WHERE id = 1") == [{"name": "alice"}]

    async def test_different_params_miss(self, make_gateway: GatewayFactory) -> None:
        gateway = make_gateway()
        calls = spy_dispatch(gateway)
        await gateway.query("SELECT name FROM users WHERE id = ?", [1])
        await gateway.query("SELECT name FROM users WHERE id = ?", [2])
        assert len(calls) == 2

    async def test_raw_mode_is_never_cached(self, make_gateway: GatewayFactory) -> None:
        gateway = make_gateway()
        calls = spy_dispatch(gateway)

        raw = await gateway.query("SELECT id FROM users", is_raw=True)
        await gateway.query("SELECT id FROM users", is_raw=True)

        assert isinstance(raw, RawResult)
        assert len(calls) == 2
        assert len(gateway.cache.store_backend) == 0  # type: ignore[arg-type]

    async def test_writes_are_never_cached(self, make_gateway: GatewayFactory) -> None:
        gateway = make_gateway()
        await gateway.query("UPDATE users SET age = 1 WHERE id = 3")
        assert len(gateway.cache.store_backend) == 0  # type: ignore[arg-type]

    async def test_cache_disabled(self, make_gateway: GatewayFactory) -> None:
        gateway = make_gateway(cache=False)
        calls = spy_dispatch(gateway)
        await gateway.query("SELECT 1")
        await gateway.query("SELECT 1")
        assert len(calls) == 2

    async def test_rls_rewritten_results_are_never_cached(
        self, make_gateway: GatewayFactory
    ) -> None:
        gateway = make_gateway(config=RLS_CONFIG, rls=[ORDERS_POLICY])
        calls = spy_dispatch(gateway)

        rows = await gateway.query("SELECT id FROM orders ORDER BY id")
        await gateway.query("SELECT id FROM orders ORDER BY id")

        assert rows == [{"id": 1}, {"id": 2}]
        assert calls[0] == """SELECT id FROM orders WHERE orders."user_id" = '42' ORDER BY id"""
        assert len(calls) == 2
        assert len(gateway.cache.store_backend) == 0  # type: ignore[arg-type]

    async def test_engine_cache_store(
        self, make_gateway: GatewayFactory, engine: InternalEngine
    ) -> None:
        gateway = make_gateway(cache_store=EngineCacheStore(engine))
        calls = spy_dispatch(gateway)

        await gateway.query("SELECT COUNT(*) AS n FROM users")
        rows = await gateway.query("SELECT COUNT(*) AS n FROM users")

        assert rows == [{"n": 3}]
        assert len(calls) == 1
        assert await engine.execute_query("SELECT COUNT(*) AS n FROM tmp_cache") == [{"n": 1}]


class TestQueryPipelineSecurity:
    """Tests for security running before cache and dispatch."""

    async def test_rejected_statement_never_dispatches(
        self, make_gateway: GatewayFactory
    ) -> None:
        config = Configuration(features=FeatureFlags(allowlist=True))
        policy = AllowlistPolicy(tables={"users": ["select"]})
        gateway = make_gateway(config=config, allowlist=policy)
        calls = spy_dispatch(gateway)

        with pytest.raises(SecurityRejection, match="Query not allowed"):
            await gateway.query("DELETE FROM users")

        assert calls == []

    async def test_admin_sees_every_row(self, make_gateway: GatewayFactory) -> None:
        config = Configuration(role="admin", subject="42", features=FeatureFlags(rls=True))
        gateway = make_gateway(config=config, rls=[ORDERS_POLICY])
        rows = await gateway.query("SELECT id FROM orders ORDER BY id")
        assert rows == [{"id": 1}, {"id": 2}, {"id": 3}]

    async def test_parenthesized_table_cannot_escape_rls(
        self, make_gateway: GatewayFactory
    ) -> None:
        gateway = make_gateway(config=RLS_CONFIG, rls=[ORDERS_POLICY])
        calls = spy_dispatch(gateway)

        with pytest.raises(SecurityRejection):
            await gateway.query("SELECT id, user_id FROM (orders) ORDER BY id")

        assert calls == []

    async def test_raw_rows_keep_duplicate_columns(self, make_gateway: GatewayFactory) -> None:
        gateway = make_gateway(cache=False)
        raw = await gateway.query("SELECT 1 AS a, 2 AS a", is_raw=True)
        assert raw.rows == [[1, 2]]  # type: ignore[union-attr]

    async def test_rls_confines_updates(
        self, make_gateway: GatewayFactory, engine: InternalEngine
    ) -> None:
        gateway = make_gateway(config=RLS_CONFIG, rls=[ORDERS_POLICY], cache=False)
        await gateway.query("UPDATE orders SET status = 'void'")
        rows = await engine.execute_query("SELECT id, status FROM orders ORDER BY id")
        assert rows == [
            {"id": 1, "status": "void"},
            {"id": 2, "status": "void"},
            {"id": 3, "status": "open"},
        ]


class TestTransactions:
    """Tests for ordered, non-atomic batches."""

    async def test_results_in_order(self, make_gateway: GatewayFactory) -> None:
        gateway = make_gateway(cache=False)
        batch = TransactionBatch(
            queries=[
                QueryDescriptor("INSERT INTO users (id, name) VALUES (?, ?)", [4, "dave"]),
                QueryDescriptor("SELECT name FROM users WHERE id = ?", [4]),
            ]
        )

        results = await gateway.execute(batch)

        assert results == [[], [{"name": "dave"}]]

    async def test_raw_results(self, make_gateway: GatewayFactory) -> None:
        gateway = make_gateway(cache=False)
        batch = TransactionBatch(queries=[QueryDescriptor("SELECT 1 AS n")])
        results = await gateway.execute(batch, is_raw=True)
        assert isinstance(results, list)
        assert isinstance(results[0], RawResult)

    async def test_failure_keeps_earlier_writes(
        self, make_gateway: GatewayFactory, engine: InternalEngine
    ) -> None:
        """There is no rollback: statements before the failing one stay applied."""
        gateway = make_gateway(cache=False)
        batch = TransactionBatch(
            queries=[
                QueryDescriptor("INSERT INTO users (id, name) VALUES (5, 'eve')"),
                QueryDescriptor("INSERT INTO missing_table (id) VALUES (1)"),
                QueryDescriptor("INSERT INTO users (id, name) VALUES (6, 'frank')"),
            ]
        )

        with pytest.raises(BackendExecutionError, match="no such table"):
            await gateway.execute(batch)

        rows = await engine.execute_query("SELECT id FROM users WHERE id >= 5 ORDER BY id")
        assert rows == [{"id": 5}]


class TestGateway:
    """Tests for gateway construction and lifecycle."""

    def test_external_without_descriptor(self) -> None:
        with pytest.raises(ConfigurationError, match="No external data sources available."):
            Gateway(DataSource(source="external"))

    def test_memory_store_by_default(self, make_gateway: GatewayFactory) -> None:
        assert isinstance(make_gateway().cache.store_backend, MemoryCacheStore)

    def test_engine_store_from_data_source(self) -> None:
        gateway = Gateway(DataSource(cache_store="engine"))
        assert isinstance(gateway.cache.store_backend, EngineCacheStore)

    def test_cache_ttl_from_data_source(self, make_gateway: GatewayFactory) -> None:
        assert make_gateway(cache_ttl=5).cache.default_ttl == 5

    async def test_lifecycle(self) -> None:
        async with Gateway(DataSource()) as gateway:
            assert gateway.engine is not None
            assert gateway.engine.is_open
            assert gateway.sweeper.running
            assert await gateway.query("SELECT 1 AS one") == [{"one": 1}]
        assert not gateway.engine.is_open
        assert not gateway.sweeper.running

    def test_from_settings(self) -> None:
        settings = GatewaySettings(
            config=Configuration(role="admin"), sweep_interval=5, hosted_api_url="https://h"
        )
        gateway = Gateway.from_settings(settings)
        assert gateway.config.role == "admin"
        assert gateway.sweeper.interval == 5

    async def test_hosted_path(self, httpserver: HTTPServer) -> None:
        """An external source with a hosted key executes through the hosted API."""
        httpserver.expect_request(
            HOSTED_QUERY_PATH,
            headers={"X-Source-Token": "hosted-key"},
            json={"query": "SELECT * FROM users WHERE id = :param0", "params": {"param0": 1}},
        ).respond_with_json({"response": {"results": {"items": [{"id": 1, "name": "alice"}]}}})

        source = DataSource(
            source="external",
            cache=False,
            external=ExternalSource(dialect="postgres", host="db", database="app"),
        )
        gateway = Gateway(
            source,
            Configuration(outerbase_api_key="hosted-key"),
            hosted_api_url=httpserver.url_for("/"),
        )

        raw = await gateway.query("SELECT * FROM users WHERE id = ?", [1], is_raw=True)

        assert isinstance(raw, RawResult)
        assert raw.columns == ["id", "name"]
        assert raw.rows == [[1, "alice"]]
        assert gateway.engine is None
        await gateway.sweeper.stop()
