"""MCP tool implementations for gateway queries.

Each tool drives the same pipeline as the HTTP routes, so allowlist, row-level
security and caching apply unchanged. Failures come back as
``{"error": message}`` instead of raising, like the HTTP error bodies.
"""

from typing import Annotated, Any

from mcp.types import ToolAnnotations
from pydantic import Field

from .context import AppContextType
from .engine import GatewayError, QueryDescriptor, TransactionBatch, serialize
from .server import mcp

Params = list[Any] | dict[str, Any] | None


async def _run(
    ctx: AppContextType, request: QueryDescriptor | TransactionBatch, is_raw: bool
) -> dict[str, Any]:
    gateway = ctx.request_context.lifespan_context.gateway
    try:
        result = await gateway.execute(request, is_raw=is_raw)
    except GatewayError as e:
        return {"error": e.message}
    if isinstance(request, TransactionBatch):
        return {"response": [serialize(item) for item in result]}  # type: ignore[union-attr]
    return {"response": serialize(result)}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Query",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=False,
        openWorldHint=False,
    )
)
async def query(
    sql: Annotated[
        str,
        Field(
            description="SQL statement with ? or :name placeholders",
            min_length=1,
        ),
    ],
    params: Annotated[
        Params,
        Field(description="Positional list or named mapping"),
    ] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Run one SQL statement and return rows as column-keyed objects."""
    try:
        request = QueryDescriptor.parse({"sql": sql, "params": params})
    except GatewayError as e:
        return {"error": e.message}
    return await _run(ctx, request, is_raw=False)


@mcp.tool(
    annotations=ToolAnnotations(
        title="Raw Query",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=False,
        openWorldHint=False,
    )
)
async def raw_query(
    sql: Annotated[
        str,
        Field(
            description="SQL statement with ? or :name placeholders",
            min_length=1,
        ),
    ],
    params: Annotated[
        Params,
        Field(description="Positional list or named mapping"),
    ] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Run one SQL statement and return {columns, rows, meta}."""
    try:
        request = QueryDescriptor.parse({"sql": sql, "params": params})
    except GatewayError as e:
        return {"error": e.message}
    return await _run(ctx, request, is_raw=True)


@mcp.tool(
    annotations=ToolAnnotations(
        title="Transaction",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=False,
        openWorldHint=False,
    )
)
async def transaction(
    statements: Annotated[
        list[dict[str, Any]],
        Field(
            description="Ordered [{sql, params}] statements; no rollback on failure",
            min_length=1,
        ),
    ],
    raw: Annotated[bool, Field(description="Return {columns, rows, meta} per statement")] = False,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Run statements one after another. Earlier statements stay applied if a later one fails."""
    try:
        request = TransactionBatch.parse(statements)
    except GatewayError as e:
        return {"error": e.message}
    return await _run(ctx, request, is_raw=raw)
