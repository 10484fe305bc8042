"""Parameter placeholder normalization for cross-dialect SQL compatibility.

Callers write SQL against the gateway with SQLite-style placeholders (``?`` or
``:name``). This module rewrites those placeholders into whatever the target
engine expects before the statement leaves the gateway.

Supported placeholder formats:
    - ? (qmark) - SQLite native format, gateway canonical form
    - $1, $2, ... (numeric) - PostgreSQL native format
    - %s (format) - MySQL native format
    - :name (named) - SQLite native, hosted-proxy required format
"""

from __future__ import annotations

import re
from typing import Any

from .backend import DatabaseEngine, Params

# Regex patterns for detecting placeholder formats
QMARK_PATTERN = re.compile(r"(?<![:%$?])\?(?!\?)")  # ? but not ?? or :? or %? or $?
NUMERIC_PATTERN = re.compile(r"\$(\d+)")  # $1, $2, etc.
FORMAT_PATTERN = re.compile(r"(?<!%)%s(?!s)")  # %s but not %%s or %ss
NAMED_PATTERN = re.compile(r"(?<!:):([a-zA-Z_][a-zA-Z0-9_]*)")  # :name but not ::cast
ANY_QMARK_PATTERN = re.compile(r"\?")  # every ?, for hosted proxy numbering


class ParamConverter:
    """Converts SQL parameter placeholders between dialect formats.

    Example:
        converter = ParamConverter(DatabaseEngine.POSTGRESQL)
        sql = "SELECT * FROM users WHERE id = ? AND status = ?"
        converted_sql = converter.convert(sql)
        # Result: "SELECT * FROM users WHERE id = $1 AND status = $2"
    """

    def __init__(self, target_engine: DatabaseEngine):
        """Initialize converter for target engine.

        Args:
            target_engine: The engine to convert placeholders to
        """
        self.target_engine = target_engine

    def convert(self, sql: str) -> str:
        """Convert SQL placeholders to the target engine's format.

        Args:
            sql: SQL statement with any placeholder format

        Returns:
            SQL statement with placeholders in target format
        """
        source_format = detect_format(sql)

        if source_format == "none" or source_format == self._target_format():
            return sql

        target = self._target_format()
        if target == "qmark":
            return self._convert_to_qmark(sql, source_format)
        if target == "numeric":
            return self._convert_to_numeric(sql, source_format)
        if target == "format":
            return self._convert_to_format(sql, source_format)
        return sql

    def convert_params(self, params: Params, sql: str | None = None) -> Params:
        """Convert parameters to the shape expected by the target engine.

        Named parameters become positional for PostgreSQL, ordered by first
        appearance of each name in ``sql`` when it is given. MySQL and SQLite
        bind named parameters natively.

        Args:
            params: Statement parameters in any format
            sql: Original SQL, used to order named parameters

        Returns:
            Parameters in format expected by target engine
        """
        if params is None:
            return None

        if isinstance(params, dict):
            if self.target_engine == DatabaseEngine.POSTGRESQL:
                if sql is None:
                    return tuple(params.values())
                order: list[str] = []
                for name in NAMED_PATTERN.findall(sql):
                    if name not in order:
                        order.append(name)
                return tuple(params[name] for name in order)
            return params

        if isinstance(params, list):
            return tuple(params)

        return params

    def _target_format(self) -> str:
        """Get the native placeholder format for the target engine."""
        if self.target_engine == DatabaseEngine.POSTGRESQL:
            return "numeric"
        elif self.target_engine == DatabaseEngine.MYSQL:
            return "format"
        return "qmark"

    def _convert_to_qmark(self, sql: str, source_format: str) -> str:
        """Convert any format to SQLite ? placeholders."""
        if source_format == "numeric":
            return NUMERIC_PATTERN.sub("?", sql)
        elif source_format == "format":
            return FORMAT_PATTERN.sub("?", sql)
        # SQLite binds :name natively
        return sql

    def _convert_to_numeric(self, sql: str, source_format: str) -> str:
        """Convert any format to PostgreSQL $1, $2 placeholders."""
        if source_format in ("qmark", "format"):
            pattern = QMARK_PATTERN if source_format == "qmark" else FORMAT_PATTERN
            counter = [0]

            def replace(match: re.Match[str]) -> str:
                counter[0] += 1
                return f"${counter[0]}"

            return pattern.sub(replace, sql)

        if source_format == "named":
            seen: dict[str, int] = {}

            def replace_named(match: re.Match[str]) -> str:
                name = match.group(1)
                if name not in seen:
                    seen[name] = len(seen) + 1
                return f"${seen[name]}"

            return NAMED_PATTERN.sub(replace_named, sql)

        return sql

    def _convert_to_format(self, sql: str, source_format: str) -> str:
        """Convert any format to MySQL %s placeholders."""
        if source_format == "qmark":
            return QMARK_PATTERN.sub("%s", sql)
        elif source_format == "numeric":
            return NUMERIC_PATTERN.sub("%s", sql)
        elif source_format == "named":
            return NAMED_PATTERN.sub(r"%(\1)s", sql)
        return sql


def detect_format(sql: str) -> str:
    """Detect the placeholder format used in SQL.

    Returns:
        One of: "qmark", "numeric", "format", "named", "none"
    """
    if QMARK_PATTERN.search(sql):
        return "qmark"
    if NUMERIC_PATTERN.search(sql):
        return "numeric"
    if FORMAT_PATTERN.search(sql):
        return "format"
    if NAMED_PATTERN.search(sql):
        return "named"
    return "none"


def positional_to_named(
    sql: str, params: Params, prefix: str = "param"
) -> tuple[str, dict[str, Any] | None]:
    """Rewrite ``?`` placeholders into ``:param0``, ``:param1``, ...

    Each ``?`` is numbered by its zero-based occurrence in the statement and
    a positional params sequence becomes ``{param0: v0, param1: v1, ...}``.
    Mapping params pass through untouched along with the SQL.

    Example:
        >>> positional_to_named("SELECT * FROM t WHERE a=? AND b=?", [1, "x"])
        ("SELECT * FROM t WHERE a=:param0 AND b=:param1", {"param0": 1, "param1": "x"})
    """
    if params is None:
        return sql, None
    if isinstance(params, dict):
        return sql, params

    counter = [0]

    def replace(match: re.Match[str]) -> str:
        name = f":{prefix}{counter[0]}"
        counter[0] += 1
        return name

    named_sql = ANY_QMARK_PATTERN.sub(replace, sql)
    return named_sql, {f"{prefix}{index}": value for index, value in enumerate(params)}


def named_to_positional(sql: str, params: Params) -> tuple[str, list[Any]]:
    """Rewrite ``:name`` placeholders into ``?`` for positional-only APIs.

    Repeated names bind the same value at every occurrence.

    Raises:
        KeyError: If the SQL names a parameter missing from ``params``
    """
    if params is None:
        return sql, []
    if not isinstance(params, dict):
        return sql, list(params)

    ordered: list[Any] = []

    def replace(match: re.Match[str]) -> str:
        ordered.append(params[match.group(1)])
        return "?"

    return NAMED_PATTERN.sub(replace, sql), ordered


def convert_sql_for_engine(sql: str, engine: DatabaseEngine) -> str:
    """Convenience function to convert SQL placeholders for an engine.

    Example:
        >>> convert_sql_for_engine("SELECT * FROM users WHERE id = ?", DatabaseEngine.POSTGRESQL)
        "SELECT * FROM users WHERE id = $1"
    """
    return ParamConverter(engine).convert(sql)
