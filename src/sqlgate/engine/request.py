"""Inbound request normalization.

A query request body is either a single statement::

    {"sql": "SELECT * FROM users WHERE id = ?", "params": [1]}

or an ordered batch::

    {"transaction": [{"sql": "INSERT ..."}, {"sql": "SELECT ..."}]}

Every element of a batch is validated before anything executes, so one bad
element rejects the whole batch without side effects.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from .exceptions import RequestValidationError
from .sql.backend import Params


@dataclass(frozen=True)
class QueryDescriptor:
    """One SQL statement with optional parameters."""

    sql: str
    params: Params = None

    @classmethod
    def parse(cls, data: Any, in_transaction: bool = False) -> QueryDescriptor:
        """Validate a ``{sql, params}`` mapping.

        Raises:
            RequestValidationError: If sql is empty or params has the wrong shape
        """
        suffix = " in transaction" if in_transaction else ""
        if not isinstance(data, dict):
            raise RequestValidationError(f'Invalid or empty "sql" field{suffix}.')

        sql = data.get("sql")
        if not isinstance(sql, str) or not sql.strip():
            raise RequestValidationError(f'Invalid or empty "sql" field{suffix}.')

        params = data.get("params")
        if params is not None and not isinstance(params, (list, dict)):
            raise RequestValidationError(
                f'Invalid "params" field{suffix}. Must be an array or object.'
            )

        return cls(sql=sql, params=params)


@dataclass(frozen=True)
class TransactionBatch:
    """Ordered statements executed one after another, without rollback."""

    queries: list[QueryDescriptor] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.queries:
            raise RequestValidationError('Invalid "transaction" field. Must be a non-empty array.')

    @classmethod
    def parse(cls, items: Any) -> TransactionBatch:
        if not isinstance(items, list) or not items:
            raise RequestValidationError('Invalid "transaction" field. Must be a non-empty array.')
        return cls(queries=[QueryDescriptor.parse(item, in_transaction=True) for item in items])


QueryRequest = QueryDescriptor | TransactionBatch


def parse_query_request(content_type: str | None, body: bytes | str | Any) -> QueryRequest:
    """Validate a query endpoint request.

    Args:
        content_type: The request's Content-Type header
        body: Raw body bytes/text, or an already-decoded JSON value

    Returns:
        A QueryDescriptor or TransactionBatch

    Raises:
        RequestValidationError: For any shape violation
    """
    if not content_type or "application/json" not in content_type.lower():
        raise RequestValidationError("Content-Type must be application/json.")

    if isinstance(body, (bytes, str)):
        try:
            data = json.loads(body or "null")
        except ValueError as e:
            raise RequestValidationError(f"Invalid JSON body: {e}") from e
    else:
        data = body

    return parse_payload(data)


def parse_payload(data: Any) -> QueryRequest:
    """Validate an already-decoded request payload."""
    if isinstance(data, dict) and "transaction" in data:
        return TransactionBatch.parse(data["transaction"])
    return QueryDescriptor.parse(data)
