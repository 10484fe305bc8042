"""Resource-style REST access to tables of the internal engine.

    GET    /rest/{table}          list rows (filters, sort_by, order, limit, offset)
    GET    /rest/{table}/{id}     one row by primary key
    POST   /rest/{table}          insert the JSON body
    PATCH  /rest/{table}/{id}     update the columns in the body
    PUT    /rest/{table}/{id}     replace the row; absent columns become NULL
    DELETE /rest/{table}/{id}     delete by primary key

Filters come from the query string: ``status=open`` or ``priority.gte=3``
(``in`` takes a comma-separated list). Every statement, schema
introspection included, goes through the query pipeline, so allowlist and
row-level security apply exactly as for raw SQL.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from .config import DataSource
from .exceptions import InternalSourceOnlyError, RestError
from .pipeline import QueryPipeline
from .sql.model import ModelSchema, is_identifier
from .sql.query_builder import OPERATORS, QueryBuilder
from .transform import ObjectResult

logger = logging.getLogger(__name__)

RESERVED_PARAMS = frozenset({"sort_by", "order", "limit", "offset"})


class RestTranslator:
    """Translates REST verbs into SQL driven through the pipeline."""

    def __init__(self, pipeline: QueryPipeline, data_source: DataSource):
        self.pipeline = pipeline
        self.data_source = data_source

    def _guard(self) -> None:
        if self.data_source.source != "internal":
            raise InternalSourceOnlyError()

    async def handle(
        self,
        method: str,
        table: str,
        record_id: str | None = None,
        query: Iterable[tuple[str, str]] = (),
        body: Any = None,
    ) -> ObjectResult | dict[str, Any]:
        """Run one REST request.

        Returns:
            Row list for reads, ``{"message", "data"}`` for writes

        Raises:
            InternalSourceOnlyError: When the gateway targets an external source
            RestError: Bad table, column, id, body, or method
        """
        self._guard()

        method = method.upper()
        handler = {
            "GET": self._get,
            "POST": self._post,
            "PATCH": self._patch,
            "PUT": self._put,
            "DELETE": self._delete,
        }.get(method)
        if handler is None:
            raise RestError(f"Method {method} not allowed", status_code=405)

        schema = await self.describe(table)
        builder = QueryBuilder(schema)
        try:
            return await handler(schema, builder, record_id, list(query), body)
        except ValueError as e:
            raise RestError(str(e)) from e

    async def describe(self, table: str) -> ModelSchema:
        """Introspect a table's columns.

        Raises:
            RestError: 400 for a malformed name, 404 for an unknown table
        """
        if not is_identifier(table):
            raise RestError(f"Invalid table name '{table}'")
        rows = await self.pipeline.execute_query(f'PRAGMA table_info("{table}")', None, False)
        if not rows:
            raise RestError(f"Table '{table}' not found", status_code=404)
        return ModelSchema.from_table_info(table, rows)  # type: ignore[arg-type]

    # ------------------------------------------------------------------
    # Verbs
    # ------------------------------------------------------------------

    async def _get(self, schema, builder, record_id, query, body) -> ObjectResult:
        if record_id is not None:
            sql, params = builder.select(where=self._key_filter(schema, record_id))
            rows = await self._run(sql, params)
            if not rows:
                raise RestError("Record not found", status_code=404)
            return rows

        where: dict[str, dict[str, Any]] = {}
        options: dict[str, str] = {}
        for key, value in query:
            if key in RESERVED_PARAMS:
                options[key] = value
                continue
            column, _, op = key.partition(".")
            op = op or "eq"
            if op not in OPERATORS:
                raise RestError(f"Unsupported operator '{op}'")
            operand: Any = value.split(",") if op == "in" else value
            where.setdefault(column, {})[op] = operand

        self._check_columns(schema, list(where))

        order = None
        if "sort_by" in options:
            self._check_columns(schema, [options["sort_by"]])
            order = [f"{options['sort_by']}:{options.get('order', 'asc')}"]

        sql, params = builder.select(
            where=where or None,
            order=order,
            limit=self._int_option(options, "limit"),
            offset=self._int_option(options, "offset"),
        )
        return await self._run(sql, params)

    async def _post(self, schema, builder, record_id, query, body) -> dict[str, Any]:
        data = self._body(schema, body)
        sql, params = builder.insert(data)
        await self._run(sql, params)
        return {"message": "Data inserted successfully", "data": data}

    async def _patch(self, schema, builder, record_id, query, body) -> dict[str, Any]:
        data = self._body(schema, body)
        sql, params = builder.update(self._key_filter(schema, record_id), data)
        await self._run(sql, params)
        return {"message": "Data updated successfully", "data": data}

    async def _put(self, schema, builder, record_id, query, body) -> dict[str, Any]:
        data = self._body(schema, body)
        sql, params = builder.replace(self._key_filter(schema, record_id), data)
        await self._run(sql, params)
        return {"message": "Data replaced successfully", "data": data}

    async def _delete(self, schema, builder, record_id, query, body) -> dict[str, Any]:
        sql, params = builder.delete(self._key_filter(schema, record_id))
        await self._run(sql, params)
        return {"message": "Data deleted successfully", "data": {"id": record_id}}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _run(self, sql: str, params: list[Any]) -> ObjectResult:
        logger.debug(f"REST statement: {sql}")
        return await self.pipeline.execute_query(sql, params, False)  # type: ignore[return-value]

    @staticmethod
    def _key_filter(schema: ModelSchema, record_id: str | None) -> dict[str, Any]:
        if record_id is None:
            raise RestError("Record id is required")
        keys = schema.primary_keys()
        if len(keys) > 1:
            raise RestError(f"Table '{schema.table}' has a composite primary key")
        return {keys[0]: record_id}

    @staticmethod
    def _check_columns(schema: ModelSchema, names: list[str]) -> None:
        unknown = schema.unknown_columns(names)
        if unknown:
            raise RestError(f"Unknown column(s): {', '.join(unknown)}")

    def _body(self, schema: ModelSchema, body: Any) -> dict[str, Any]:
        if not isinstance(body, dict) or not body:
            raise RestError("Request body must be a non-empty JSON object")
        self._check_columns(schema, list(body))
        return body

    @staticmethod
    def _int_option(options: dict[str, str], name: str) -> int | None:
        if name not in options:
            return None
        try:
            return int(options[name])
        except ValueError:
            raise RestError(f"Invalid {name} '{options[name]}'") from None
