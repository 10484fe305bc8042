"""Query builder for resource-style CRUD operations.

This module generates parameterized SQL statements for select, insert,
update, replace and delete operations against an introspected table schema.

Example:
    builder = QueryBuilder(schema)

    sql, params = builder.insert({"name": "Task 1", "status": "pending"})
    # -> INSERT INTO "tasks" ("name", "status") VALUES (?, ?)
    # -> ["Task 1", "pending"]

    sql, params = builder.select(where={"status": {"eq": "running"}}, limit=10)
    # -> SELECT * FROM "tasks" WHERE "status" = ? LIMIT ?
    # -> ["running", 10]
"""

from __future__ import annotations

import json
from typing import Any

from .backend import DatabaseEngine
from .model import ModelSchema

OPERATORS: dict[str, str] = {
    "eq": "=",
    "ne": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "like": "LIKE",
    "in": "IN",
}


class QueryBuilder:
    """Builds parameterized SQL from a table schema.

    Attributes:
        schema: The introspected table schema
        engine: Target engine, selects the placeholder style
    """

    def __init__(self, schema: ModelSchema, engine: DatabaseEngine = DatabaseEngine.SQLITE):
        self.schema = schema
        self.engine = engine

    def _placeholder(self, index: int) -> str:
        """Get parameter placeholder for the engine (0-based index)."""
        if self.engine == DatabaseEngine.SQLITE:
            return "?"
        elif self.engine == DatabaseEngine.POSTGRESQL:
            return f"${index + 1}"
        else:
            return "%s"

    def _serialize_values(self, data: dict[str, Any]) -> dict[str, Any]:
        """JSON-encode dict/list values, which drivers cannot bind directly."""
        return {
            key: json.dumps(value) if isinstance(value, (dict, list)) else value
            for key, value in data.items()
        }

    def insert(self, data: dict[str, Any]) -> tuple[str, list[Any]]:
        """Generate INSERT statement.

        Args:
            data: Row data to insert

        Returns:
            Tuple of (SQL statement, parameter list)
        """
        if not data:
            raise ValueError("INSERT requires at least one column")

        row = self._serialize_values(data)
        col_list = ", ".join(f'"{c}"' for c in row)
        val_list = ", ".join(self._placeholder(i) for i in range(len(row)))

        sql = f'INSERT INTO "{self.schema.table}" ({col_list}) VALUES ({val_list})'
        return sql, list(row.values())

    def select(
        self,
        where: dict[str, Any] | None = None,
        order: list[str] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> tuple[str, list[Any]]:
        """Generate SELECT statement.

        Args:
            where: Filter conditions (optional)
            order: Sort order as list of "column" or "column:desc" strings
            limit: Maximum rows to return
            offset: Rows to skip

        Returns:
            Tuple of (SQL statement, parameter list)
        """
        sql = f'SELECT * FROM "{self.schema.table}"'
        params: list[Any] = []

        if where:
            where_sql, where_params = self._build_where(where, len(params))
            sql += f" WHERE {where_sql}"
            params.extend(where_params)

        if order:
            sql += f" ORDER BY {self._build_order(order)}"

        # SQLite requires LIMIT whenever OFFSET is present
        if limit is None and offset is not None:
            limit = -1

        if limit is not None:
            sql += f" LIMIT {self._placeholder(len(params))}"
            params.append(limit)

        if offset is not None:
            sql += f" OFFSET {self._placeholder(len(params))}"
            params.append(offset)

        return sql, params

    def update(self, where: dict[str, Any], data: dict[str, Any]) -> tuple[str, list[Any]]:
        """Generate UPDATE statement for the provided columns only."""
        if not where:
            raise ValueError("UPDATE requires a WHERE clause for safety")
        if not data:
            raise ValueError("UPDATE requires data to update")

        row = self._serialize_values(data)
        set_parts = []
        params: list[Any] = []
        for col, value in row.items():
            set_parts.append(f'"{col}" = {self._placeholder(len(params))}')
            params.append(value)

        where_sql, where_params = self._build_where(where, len(params))
        params.extend(where_params)

        sql = f'UPDATE "{self.schema.table}" SET {", ".join(set_parts)} WHERE {where_sql}'
        return sql, params

    def replace(self, where: dict[str, Any], data: dict[str, Any]) -> tuple[str, list[Any]]:
        """Generate UPDATE that sets every non-key column, NULL when absent from ``data``."""
        keys = set(self.schema.primary_keys())
        full = {
            col: data.get(col) for col in self.schema.column_names() if col not in keys
        }
        return self.update(where, full)

    def delete(self, where: dict[str, Any]) -> tuple[str, list[Any]]:
        """Generate DELETE statement."""
        if not where:
            raise ValueError("DELETE requires a WHERE clause for safety")

        where_sql, params = self._build_where(where, 0)
        sql = f'DELETE FROM "{self.schema.table}" WHERE {where_sql}'
        return sql, params

    def _build_where(self, where: dict[str, Any], param_offset: int = 0) -> tuple[str, list[Any]]:
        """Build WHERE clause from conditions.

        Supports:
        - Simple equality: {"status": "running"}
        - Operators: {"priority": {"gt": 5}}
        - IN: {"type": {"in": ["a", "b"]}}
        - NULL: {"deleted": None}

        Returns:
            Tuple of (WHERE clause SQL, parameter list)
        """
        conditions = []
        params: list[Any] = []

        for col, value in where.items():
            if isinstance(value, dict):
                for op, operand in value.items():
                    sql_op = self._map_operator(op)
                    if sql_op == "IN":
                        if not isinstance(operand, list):
                            operand = [operand]
                        placeholders = [
                            self._placeholder(param_offset + len(params) + i)
                            for i in range(len(operand))
                        ]
                        conditions.append(f'"{col}" IN ({", ".join(placeholders)})')
                        params.extend(operand)
                    else:
                        conditions.append(
                            f'"{col}" {sql_op} {self._placeholder(param_offset + len(params))}'
                        )
                        params.append(operand)
            elif value is None:
                conditions.append(f'"{col}" IS NULL')
            else:
                conditions.append(f'"{col}" = {self._placeholder(param_offset + len(params))}')
                params.append(value)

        return " AND ".join(conditions), params

    def _map_operator(self, op: str) -> str:
        """Map a REST operator name to its SQL operator.

        Raises:
            ValueError: If the operator is unknown
        """
        try:
            return OPERATORS[op.lower()]
        except KeyError:
            raise ValueError(
                f"Unsupported operator '{op}'. Use one of: {', '.join(OPERATORS)}"
            ) from None

    def _build_order(self, order: list[str]) -> str:
        """Build ORDER BY clause from "column" or "column:desc" specs."""
        parts = []
        for term in order:
            if ":" in term:
                col, direction = term.split(":", 1)
                direction = direction.upper()
                if direction not in ("ASC", "DESC"):
                    raise ValueError(f"Invalid sort direction '{direction}'")
                parts.append(f'"{col}" {direction}')
            else:
                parts.append(f'"{term}"')
        return ", ".join(parts)
