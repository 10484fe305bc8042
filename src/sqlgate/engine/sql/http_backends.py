"""HTTP API backed SQL providers.

Some hosted SQL services expose no wire protocol reachable from the gateway,
only an authenticated HTTP API. These backends speak those APIs with httpx
and validate every response against a pydantic schema before trusting it.

Providers:
    - CloudflareD1Backend: D1 ``/query`` REST endpoint
    - TursoBackend: libSQL ``/v2/pipeline`` endpoint (replicated SQLite)
    - StarbaseBackend: another gateway's ``/query/raw`` endpoint
"""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from typing import Any, Literal

import httpx
from pydantic import BaseModel, Field, ValidationError

from .backend import Params, QueryResult
from .param_converter import named_to_positional

logger = logging.getLogger(__name__)


class HttpBackendError(Exception):
    """Provider API call failed or returned an unexpected payload."""

    pass


class HttpBackend(ABC):
    """Base class for HTTP API backed providers.

    Lifecycle mirrors the direct drivers: ``connect()`` opens an
    ``httpx.AsyncClient``, ``execute()`` runs one statement, and
    ``disconnect()`` closes the client.
    """

    provider: str

    def __init__(self, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None):
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Open the HTTP client."""
        self._client = httpx.AsyncClient(
            timeout=self._timeout, headers=self._headers(), transport=self._transport
        )

    async def disconnect(self) -> None:
        """Close the HTTP client. Safe to call multiple times."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def execute(self, sql: str, params: Params = None) -> QueryResult:
        """POST one statement to the provider and parse its result."""
        if self._client is None:
            raise RuntimeError("Not connected. Call connect() first.")

        try:
            response = await self._client.post(self._endpoint(), json=self._payload(sql, params))
        except httpx.HTTPError as e:
            raise HttpBackendError(f"{self.provider} request failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise HttpBackendError(
                f"{self.provider} returned non-JSON response (status {response.status_code})"
            ) from e

        try:
            return self._parse(body, response.status_code)
        except ValidationError as e:
            raise HttpBackendError(f"{self.provider} returned an unexpected payload: {e}") from e

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    @abstractmethod
    def _endpoint(self) -> str: ...

    @abstractmethod
    def _payload(self, sql: str, params: Params) -> dict[str, Any]: ...

    @abstractmethod
    def _parse(self, body: Any, status_code: int) -> QueryResult: ...


# ============================================================================
# Cloudflare D1
# ============================================================================


class D1Meta(BaseModel):
    changes: int = 0
    last_row_id: int | None = None


class D1StatementResult(BaseModel):
    results: list[dict[str, Any]] = Field(default_factory=list)
    success: bool = True
    meta: D1Meta = Field(default_factory=D1Meta)


class D1ApiMessage(BaseModel):
    code: int | None = None
    message: str = ""


class D1Response(BaseModel):
    success: bool
    result: list[D1StatementResult] = Field(default_factory=list)
    errors: list[D1ApiMessage] = Field(default_factory=list)


class CloudflareD1Backend(HttpBackend):
    """Cloudflare D1 via the account-scoped query API."""

    provider = "cloudflare-d1"
    API_URL = "https://api.cloudflare.com/client/v4"

    def __init__(
        self,
        api_key: str,
        account_id: str,
        database_id: str,
        api_url: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self._api_key = api_key
        self._account_id = account_id
        self._database_id = database_id
        self._api_url = (api_url or self.API_URL).rstrip("/")

    def _headers(self) -> dict[str, str]:
        return {**super()._headers(), "Authorization": f"Bearer {self._api_key}"}

    def _endpoint(self) -> str:
        return (
            f"{self._api_url}/accounts/{self._account_id}"
            f"/d1/database/{self._database_id}/query"
        )

    def _payload(self, sql: str, params: Params) -> dict[str, Any]:
        # D1 binds positional parameters only
        sql, positional = named_to_positional(sql, params)
        return {"sql": sql, "params": positional}

    def _parse(self, body: Any, status_code: int) -> QueryResult:
        parsed = D1Response.model_validate(body)
        if not parsed.success or not parsed.result:
            message = "; ".join(err.message for err in parsed.errors) or f"status {status_code}"
            raise HttpBackendError(f"cloudflare-d1 query failed: {message}")

        statement = parsed.result[0]
        columns = list(statement.results[0].keys()) if statement.results else []
        return QueryResult(
            rows=statement.results,
            columns=columns,
            row_count=len(statement.results),
            affected_rows=statement.meta.changes,
            last_insert_id=statement.meta.last_row_id,
        )


# ============================================================================
# Turso / libSQL
# ============================================================================


class LibsqlColumn(BaseModel):
    name: str | None = None
    decltype: str | None = None


class LibsqlValue(BaseModel):
    type: Literal["null", "integer", "float", "text", "blob"]
    value: Any = None
    base64: str | None = None

    def to_python(self) -> Any:
        if self.type == "null":
            return None
        if self.type == "integer":
            return int(self.value)
        if self.type == "float":
            return float(self.value)
        if self.type == "blob":
            return base64.b64decode(self.base64 or "")
        return self.value


class LibsqlExecuteResult(BaseModel):
    cols: list[LibsqlColumn] = Field(default_factory=list)
    rows: list[list[LibsqlValue]] = Field(default_factory=list)
    affected_row_count: int = 0
    last_insert_rowid: str | None = None


class LibsqlStreamResponse(BaseModel):
    type: str
    result: LibsqlExecuteResult | None = None


class LibsqlStreamError(BaseModel):
    message: str
    code: str | None = None


class LibsqlStreamResult(BaseModel):
    type: Literal["ok", "error"]
    response: LibsqlStreamResponse | None = None
    error: LibsqlStreamError | None = None


class LibsqlPipelineResponse(BaseModel):
    results: list[LibsqlStreamResult]


def _libsql_value(value: Any) -> dict[str, Any]:
    """Encode a Python value as a libSQL Hrana value."""
    if value is None:
        return {"type": "null"}
    if isinstance(value, bool):
        return {"type": "integer", "value": str(int(value))}
    if isinstance(value, int):
        return {"type": "integer", "value": str(value)}
    if isinstance(value, float):
        return {"type": "float", "value": value}
    if isinstance(value, bytes):
        return {"type": "blob", "base64": base64.b64encode(value).decode("ascii")}
    return {"type": "text", "value": str(value)}


class TursoBackend(HttpBackend):
    """Turso (libSQL) via the Hrana-over-HTTP pipeline API."""

    provider = "turso"

    def __init__(self, url: str, token: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        if url.startswith("libsql://"):
            url = "https://" + url[len("libsql://") :]
        self._url = url.rstrip("/")
        self._token = token

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _endpoint(self) -> str:
        return f"{self._url}/v2/pipeline"

    def _payload(self, sql: str, params: Params) -> dict[str, Any]:
        stmt: dict[str, Any] = {"sql": sql}
        if isinstance(params, dict):
            stmt["named_args"] = [
                {"name": f":{name}", "value": _libsql_value(value)}
                for name, value in params.items()
            ]
        elif params:
            stmt["args"] = [_libsql_value(value) for value in params]
        return {"requests": [{"type": "execute", "stmt": stmt}, {"type": "close"}]}

    def _parse(self, body: Any, status_code: int) -> QueryResult:
        parsed = LibsqlPipelineResponse.model_validate(body)
        if not parsed.results:
            raise HttpBackendError(f"turso returned no results (status {status_code})")

        first = parsed.results[0]
        if first.type == "error" or first.response is None or first.response.result is None:
            message = first.error.message if first.error else f"status {status_code}"
            raise HttpBackendError(f"turso query failed: {message}")

        result = first.response.result
        columns = [col.name or "" for col in result.cols]
        rows = [
            dict(zip(columns, (value.to_python() for value in row), strict=False))
            for row in result.rows
        ]
        return QueryResult(
            rows=rows,
            columns=columns,
            row_count=len(rows),
            affected_rows=result.affected_row_count,
            last_insert_id=int(result.last_insert_rowid) if result.last_insert_rowid else None,
        )


# ============================================================================
# Starbase (another gateway instance)
# ============================================================================


class StarbaseRawMeta(BaseModel):
    rows_read: int = 0
    rows_written: int = 0


class StarbaseRawResult(BaseModel):
    columns: list[str] = Field(default_factory=list)
    rows: list[list[Any]] = Field(default_factory=list)
    meta: StarbaseRawMeta = Field(default_factory=StarbaseRawMeta)


class StarbaseResponse(BaseModel):
    response: StarbaseRawResult | None = None
    error: str | None = None


class StarbaseBackend(HttpBackend):
    """A remote gateway instance reached through its raw query endpoint."""

    provider = "starbase"

    def __init__(self, url: str, api_key: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self._url = url.rstrip("/")
        self._api_key = api_key

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _endpoint(self) -> str:
        return f"{self._url}/query/raw"

    def _payload(self, sql: str, params: Params) -> dict[str, Any]:
        payload: dict[str, Any] = {"sql": sql}
        if params is not None:
            payload["params"] = params if isinstance(params, dict) else list(params)
        return payload

    def _parse(self, body: Any, status_code: int) -> QueryResult:
        parsed = StarbaseResponse.model_validate(body)
        if parsed.error or parsed.response is None:
            raise HttpBackendError(
                f"starbase query failed: {parsed.error or f'status {status_code}'}"
            )

        raw = parsed.response
        rows = [dict(zip(raw.columns, row, strict=False)) for row in raw.rows]
        return QueryResult(
            rows=rows,
            columns=raw.columns,
            row_count=len(rows),
            affected_rows=raw.meta.rows_written,
        )
