"""Tests for the driver layer: parameter conversion and direct backends.

Tests focus on the SQLite backend since it doesn't require external dependencies.
PostgreSQL and MySQL backends are covered through their pure helpers.
"""

from __future__ import annotations

import tempfile
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from sqlgate.engine.sql import (
    ConnectionConfig,
    DatabaseEngine,
    ParamConverter,
    PostgresBackend,
    QueryResult,
    SqliteBackend,
    convert_sql_for_engine,
    named_to_positional,
    positional_to_named,
)
from sqlgate.engine.sql.param_converter import detect_format

# ============================================================================
# ParamConverter Tests
# ============================================================================


class TestParamConverter:
    """Tests for SQL parameter placeholder conversion."""

    def test_qmark_to_numeric(self) -> None:
        """Convert ? placeholders to $1, $2 for PostgreSQL."""
        converter = ParamConverter(DatabaseEngine.POSTGRESQL)
        sql = "SELECT * FROM users WHERE id = ? AND status = ?"
        assert converter.convert(sql) == "SELECT * FROM users WHERE id = $1 AND status = $2"

    def test_qmark_to_format(self) -> None:
        """Convert ? placeholders to %s for MySQL."""
        converter = ParamConverter(DatabaseEngine.MYSQL)
        sql = "SELECT * FROM users WHERE id = ? AND status = ?"
        assert converter.convert(sql) == "SELECT * FROM users WHERE id = %s AND status = %s"

    def test_numeric_to_qmark(self) -> None:
        """Convert $1, $2 placeholders to ? for SQLite."""
        converter = ParamConverter(DatabaseEngine.SQLITE)
        assert converter.convert("SELECT * FROM users WHERE id = $1") == (
            "SELECT * FROM users WHERE id = ?"
        )

    def test_named_to_numeric_reuses_index(self) -> None:
        """Repeated :name maps to the same $n for PostgreSQL."""
        converter = ParamConverter(DatabaseEngine.POSTGRESQL)
        sql = "SELECT * FROM t WHERE a = :x OR b = :y OR c = :x"
        assert converter.convert(sql) == "SELECT * FROM t WHERE a = $1 OR b = $2 OR c = $1"

    def test_named_to_mysql_pyformat(self) -> None:
        """:name becomes %(name)s for MySQL."""
        converter = ParamConverter(DatabaseEngine.MYSQL)
        assert converter.convert("SELECT * FROM t WHERE a = :x") == (
            "SELECT * FROM t WHERE a = %(x)s"
        )

    def test_postgres_cast_is_not_a_placeholder(self) -> None:
        """::type casts are left alone."""
        assert detect_format("SELECT '1'::int") == "none"

    def test_no_placeholders(self) -> None:
        """SQL without placeholders is unchanged."""
        converter = ParamConverter(DatabaseEngine.POSTGRESQL)
        assert converter.convert("SELECT 1") == "SELECT 1"

    def test_convert_params_dict_ordered_by_appearance(self) -> None:
        """Named params become a tuple ordered by first appearance in SQL."""
        converter = ParamConverter(DatabaseEngine.POSTGRESQL)
        params = converter.convert_params({"b": 2, "a": 1}, "SELECT :a, :b, :a")
        assert params == (1, 2)

    def test_convert_params_list_to_tuple(self) -> None:
        converter = ParamConverter(DatabaseEngine.POSTGRESQL)
        assert converter.convert_params([1, "x"]) == (1, "x")

    def test_convert_params_none(self) -> None:
        converter = ParamConverter(DatabaseEngine.POSTGRESQL)
        assert converter.convert_params(None) is None

    def test_convenience_function(self) -> None:
        """convert_sql_for_engine wraps ParamConverter."""
        assert convert_sql_for_engine("SELECT ?", DatabaseEngine.POSTGRESQL) == "SELECT $1"


class TestPositionalToNamed:
    """Tests for the hosted-proxy placeholder rewrite."""

    def test_rewrites_in_source_order(self) -> None:
        """Each ? becomes :paramN by zero-based occurrence."""
        sql, params = positional_to_named("SELECT * FROM t WHERE a=? AND b=?", [1, "x"])
        assert sql == "SELECT * FROM t WHERE a=:param0 AND b=:param1"
        assert params == {"param0": 1, "param1": "x"}

    def test_every_question_mark_is_numbered(self) -> None:
        """Adjacent or prefixed ? still count, so numbering matches the params list."""
        sql, params = positional_to_named("SELECT ?, ??, $?", [1, 2, 3, 4])
        assert sql == "SELECT :param0, :param1:param2, $:param3"
        assert params == {"param0": 1, "param1": 2, "param2": 3, "param3": 4}

    def test_mapping_passes_through(self) -> None:
        """Named params and their SQL are untouched."""
        sql, params = positional_to_named("SELECT * FROM t WHERE a=:a", {"a": 1})
        assert sql == "SELECT * FROM t WHERE a=:a"
        assert params == {"a": 1}

    def test_no_params(self) -> None:
        sql, params = positional_to_named("SELECT 1", None)
        assert sql == "SELECT 1"
        assert params is None

    def test_named_to_positional_repeats_values(self) -> None:
        """Repeated names bind the same value at each occurrence."""
        sql, params = named_to_positional("SELECT :a, :b, :a", {"a": 1, "b": 2})
        assert sql == "SELECT ?, ?, ?"
        assert params == [1, 2, 1]

    def test_named_to_positional_missing_name(self) -> None:
        with pytest.raises(KeyError):
            named_to_positional("SELECT :missing", {"a": 1})


# ============================================================================
# Backend Tests
# ============================================================================


class TestSqliteBackend:
    """Tests for SQLite backend."""

    @pytest.fixture
    def db_path(self) -> str:
        """Create a temporary database path."""
        with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
            return f.name

    @pytest.fixture
    async def backend(self, db_path: str) -> AsyncGenerator[SqliteBackend, None]:
        """Create a connected SQLite backend."""
        backend = SqliteBackend()
        await backend.connect(ConnectionConfig(engine=DatabaseEngine.SQLITE, path=db_path))
        await backend.execute_script(
            "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT, age INTEGER);"
            "INSERT INTO users (name, age) VALUES ('alice', 30), ('bob', 25);"
        )
        yield backend
        await backend.disconnect()

    async def test_connect_disconnect(self, db_path: str) -> None:
        """Test basic connection and disconnection."""
        backend = SqliteBackend()
        await backend.connect(ConnectionConfig(engine=DatabaseEngine.SQLITE, path=db_path))
        assert backend._conn is not None

        await backend.disconnect()
        assert backend._conn is None

        # Second disconnect is a no-op
        await backend.disconnect()

    async def test_connect_creates_parent_dirs(self) -> None:
        """Test that connect creates parent directories."""
        with tempfile.TemporaryDirectory() as tmpdir:
            nested_path = Path(tmpdir) / "subdir" / "nested" / "test.db"

            backend = SqliteBackend()
            await backend.connect(
                ConnectionConfig(engine=DatabaseEngine.SQLITE, path=str(nested_path))
            )
            assert nested_path.parent.exists()
            await backend.disconnect()

    async def test_select_returns_rows_and_columns(self, backend: SqliteBackend) -> None:
        """SELECT fills rows, columns and row_count."""
        result = await backend.execute("SELECT name, age FROM users ORDER BY id")
        assert result.columns == ["name", "age"]
        assert result.rows == [{"name": "alice", "age": 30}, {"name": "bob", "age": 25}]
        assert result.row_count == 2

    async def test_positional_and_named_params(self, backend: SqliteBackend) -> None:
        """Both ? and :name bind natively."""
        by_position = await backend.execute("SELECT name FROM users WHERE age > ?", [26])
        by_name = await backend.execute("SELECT name FROM users WHERE age > :age", {"age": 26})
        assert by_position.rows == by_name.rows == [{"name": "alice"}]

    async def test_insert_reports_last_id(self, backend: SqliteBackend) -> None:
        result = await backend.execute("INSERT INTO users (name, age) VALUES (?, ?)", ("carol", 40))
        assert result.affected_rows == 1
        assert result.last_insert_id == 3
        assert result.rows == []

    async def test_update_reports_affected_rows(self, backend: SqliteBackend) -> None:
        result = await backend.execute("UPDATE users SET age = age + 1")
        assert result.affected_rows == 2

    async def test_execute_requires_connection(self) -> None:
        """Executing before connect raises."""
        backend = SqliteBackend()
        with pytest.raises(RuntimeError, match="Not connected"):
            await backend.execute("SELECT 1")

    async def test_query_result_dataclass(self) -> None:
        """QueryResult defaults are empty."""
        result = QueryResult()
        assert result.rows == []
        assert result.columns == []
        assert result.row_count == 0
        assert result.affected_rows == 0
        assert result.last_insert_id is None


class TestConnectionConfig:
    """Tests for ConnectionConfig validation."""

    def test_sqlite_requires_path(self) -> None:
        with pytest.raises(ValueError, match="path"):
            ConnectionConfig(engine=DatabaseEngine.SQLITE)

    def test_postgresql_requires_host(self) -> None:
        with pytest.raises(ValueError, match="host"):
            ConnectionConfig(engine=DatabaseEngine.POSTGRESQL, database="app")

    def test_postgresql_requires_database(self) -> None:
        with pytest.raises(ValueError, match="database"):
            ConnectionConfig(engine=DatabaseEngine.POSTGRESQL, host="localhost")

    def test_default_ports(self) -> None:
        pg = ConnectionConfig(engine=DatabaseEngine.POSTGRESQL, host="h", database="d")
        my = ConnectionConfig(engine=DatabaseEngine.MYSQL, host="h", database="d")
        assert pg.port == 5432
        assert my.port == 3306


class TestPostgresStatus:
    """Tests for PostgreSQL command status parsing."""

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            ("INSERT 0 3", 3),
            ("UPDATE 2", 2),
            ("DELETE 0", 0),
            ("SELECT 5", 0),
            (None, 0),
        ],
    )
    def test_parse_affected_rows(self, status: str | None, expected: int) -> None:
        assert PostgresBackend._parse_affected_rows(status) == expected
