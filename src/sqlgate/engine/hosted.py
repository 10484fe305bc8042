"""Hosted execution proxy.

When a hosted execution key is configured, external statements are sent to
the hosted API instead of a direct driver. The API only takes named
parameters, so ``?`` placeholders become ``:param0``, ``:param1``, ... and a
positional params list becomes ``{"param0": ..., "param1": ...}``.

Request:
    POST {api_url}/api/v1/ezql/raw
    X-Source-Token: <key>
    {"query": "SELECT * FROM t WHERE a=:param0", "params": {"param0": 1}}

Response (validated):
    {"response": {"results": {"items": [{"a": 1}]}}}
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import BackendExecutionError, HostedResponseError
from .sql.backend import Params
from .sql.param_converter import positional_to_named
from .transform import ObjectResult

logger = logging.getLogger(__name__)

HOSTED_QUERY_PATH = "/api/v1/ezql/raw"


class HostedResults(BaseModel):
    model_config = ConfigDict(extra="allow")

    items: list[dict[str, Any]] = Field(default_factory=list)


class HostedPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    results: HostedResults


class HostedResponse(BaseModel):
    """Hosted API response envelope, version 1."""

    model_config = ConfigDict(extra="allow")

    response: HostedPayload


def prepare_statement(sql: str, params: Params) -> tuple[str, dict[str, Any] | None]:
    """Rewrite placeholders and collapse newlines for transmission."""
    named_sql, named_params = positional_to_named(sql, params)
    return named_sql.replace("\n", " "), named_params


class HostedProxyClient:
    """Sends statements to the hosted execution API.

    Example:
        client = HostedProxyClient("https://app.outerbase.com", api_key)
        rows = await client.execute("SELECT * FROM t WHERE a=?", [1])
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.api_url}{HOSTED_QUERY_PATH}"

    async def execute(self, sql: str, params: Params = None) -> ObjectResult:
        """Run one statement remotely and return its result items.

        Raises:
            BackendExecutionError: Network failure or non-2xx status
            HostedResponseError: Response outside the expected envelope
        """
        query, named = prepare_statement(sql, params)
        body: dict[str, Any] = {"query": query, "params": named if named is not None else {}}

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    self.endpoint,
                    json=body,
                    headers={
                        "Content-Type": "application/json",
                        "X-Source-Token": self._api_key,
                    },
                )
            except httpx.HTTPError as e:
                raise BackendExecutionError(f"Hosted query request failed: {e}") from e

        if response.is_error:
            raise BackendExecutionError(
                f"Hosted query failed with status {response.status_code}: {response.text[:500]}"
            )

        try:
            envelope = HostedResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise HostedResponseError(f"Hosted query returned an unexpected payload: {e}") from e

        items = envelope.response.results.items
        logger.debug(f"Hosted query returned {len(items)} rows")
        return items
