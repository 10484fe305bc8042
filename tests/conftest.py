"""Shared test configuration for sqlgate tests.

Provides:
- An in-memory internal engine
- A gateway factory over the in-memory engine
- A fake external driver for dispatcher tests (no database server needed)
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from sqlgate.engine import (
    AdapterRegistry,
    Configuration,
    DataSource,
    DriverConnection,
    ExternalSource,
    Gateway,
    InternalEngine,
)
from sqlgate.engine.sql import QueryResult

USERS_SCHEMA = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT,
    age INTEGER
);
INSERT INTO users (id, name, email, age) VALUES (1, 'alice', 'alice@example.com', 31);
INSERT INTO users (id, name, email, age) VALUES (2, 'bob', 'bob@example.com', 25);
INSERT INTO users (id, name, email, age) VALUES (3, 'carol', NULL, 42);
"""

ORDERS_SCHEMA = """
CREATE TABLE orders (
    id INTEGER PRIMARY KEY,
    user_id TEXT NOT NULL,
    total REAL NOT NULL,
    status TEXT NOT NULL DEFAULT 'open'
);
INSERT INTO orders (id, user_id, total, status) VALUES (1, '42', 10.0, 'open');
INSERT INTO orders (id, user_id, total, status) VALUES (2, '42', 25.5, 'paid');
INSERT INTO orders (id, user_id, total, status) VALUES (3, '7', 99.0, 'open');
"""


@pytest.fixture
async def engine() -> AsyncIterator[InternalEngine]:
    """Open in-memory internal engine with users and orders tables."""
    engine = InternalEngine(":memory:")
    await engine.open()
    await engine.execute_script(USERS_SCHEMA + ORDERS_SCHEMA)
    yield engine
    await engine.close()


@pytest.fixture
async def make_gateway(engine: InternalEngine) -> AsyncIterator[Callable[..., Gateway]]:
    """Factory for gateways sharing the seeded in-memory engine.

    Usage:
        gateway = make_gateway(config=Configuration(role="client"), cache=False)
    """
    created: list[Gateway] = []

    def _make(
        config: Configuration | None = None,
        cache: bool = True,
        cache_ttl: int = 60,
        **kwargs: Any,
    ) -> Gateway:
        data_source = DataSource(source="internal", cache=cache, cache_ttl=cache_ttl)
        gateway = Gateway(data_source, config or Configuration(), engine=engine, **kwargs)
        created.append(gateway)
        return gateway

    yield _make

    for gateway in created:
        await gateway.sweeper.stop()


class FakeBackend:
    """Records statements and answers with canned rows."""

    def __init__(self, rows: list[dict[str, Any]] | None = None, error: Exception | None = None):
        self.rows = rows if rows is not None else [{"id": 1, "name": "alice"}]
        self.error = error
        self.calls: list[tuple[str, Any]] = []
        self.connected = False
        self.connect_count = 0
        self.disconnect_count = 0

    async def connect(self, config: Any = None) -> None:
        self.connected = True
        self.connect_count += 1

    async def disconnect(self) -> None:
        self.connected = False
        self.disconnect_count += 1

    async def execute(self, sql: str, params: Any = None) -> QueryResult:
        self.calls.append((sql, params))
        if self.error is not None:
            raise self.error
        return QueryResult(
            rows=list(self.rows),
            columns=list(self.rows[0].keys()) if self.rows else [],
            row_count=len(self.rows),
        )


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def fake_registry(fake_backend: FakeBackend) -> AdapterRegistry:
    """Registry whose postgres adapter is the fake backend."""
    registry = AdapterRegistry()

    def factory(_source: ExternalSource) -> DriverConnection:
        return DriverConnection(fake_backend)

    registry.register("postgres", factory)
    return registry
