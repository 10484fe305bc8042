"""FastAPI application factory for the HTTP transport.

Routes:
    POST   /query                  object-mode query or transaction
    POST   /query/raw              raw-mode query or transaction
    *      /rest/{table}[/{id}]    resource access (features.rest, internal source)
    WS     /socket                 {sql, params, action: query|raw} messages (features.websocket)
    GET    /health                 liveness

Every error body is ``{"error": message}``; successes are ``{"response": ...}``.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .engine import (
    Gateway,
    GatewayConfigLoader,
    GatewayError,
    GatewaySettings,
    RestError,
    TransactionBatch,
    parse_payload,
    parse_query_request,
    serialize,
)

logger = logging.getLogger(__name__)

REST_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def gateway_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, GatewayError)
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}")
    return _error(exc.message, exc.status_code)


async def http_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, StarletteHTTPException)
    message = "Not found" if exc.status_code == 404 else str(exc.detail)
    return _error(message, exc.status_code)


async def unhandled_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error: {exc}")
    return _error(str(exc) or type(exc).__name__, 500)


def create_app(
    *,
    settings: GatewaySettings | None = None,
    gateway: Gateway | None = None,
) -> FastAPI:
    """Build the HTTP application around one gateway.

    Args:
        settings: Gateway settings; loaded from sqlgate.yml when omitted
        gateway: Prebuilt gateway (useful for testing); overrides ``settings``
    """
    if gateway is None:
        settings = settings or GatewayConfigLoader().load()
        gateway = Gateway.from_settings(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        await gateway.start()
        try:
            yield
        finally:
            await gateway.stop()

    app = FastAPI(title="sqlgate", version=__version__, lifespan=lifespan)
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Starbase-Source", "X-Data-Source"],
    )

    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    async def run_query(request: Request, is_raw: bool) -> JSONResponse:
        body = await request.body()
        parsed = parse_query_request(request.headers.get("content-type"), body)
        result = await gateway.execute(parsed, is_raw=is_raw)
        if isinstance(parsed, TransactionBatch):
            return JSONResponse({"response": [serialize(item) for item in result]})
        return JSONResponse({"response": serialize(result)})

    @app.post("/query")
    async def query(request: Request) -> JSONResponse:
        return await run_query(request, is_raw=False)

    @app.post("/query/raw")
    async def query_raw(request: Request) -> JSONResponse:
        return await run_query(request, is_raw=True)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "source": gateway.data_source.source,
            "dialect": gateway.data_source.dialect,
        }

    if gateway.feature("rest"):

        async def rest(request: Request, table: str, record_id: str | None) -> JSONResponse:
            body = None
            if request.method in ("POST", "PUT", "PATCH"):
                try:
                    body = await request.json()
                except ValueError:
                    raise RestError("Request body must be valid JSON") from None
            result = await gateway.handle_rest(
                request.method, table, record_id, request.query_params.multi_items(), body
            )
            return JSONResponse({"response": result})

        @app.api_route("/rest/{table}", methods=REST_METHODS)
        async def rest_collection(request: Request, table: str) -> JSONResponse:
            return await rest(request, table, None)

        @app.api_route("/rest/{table}/{record_id}", methods=REST_METHODS)
        async def rest_item(request: Request, table: str, record_id: str) -> JSONResponse:
            return await rest(request, table, record_id)

    if gateway.feature("websocket"):

        @app.websocket("/socket")
        async def socket(websocket: WebSocket) -> None:
            await websocket.accept()
            try:
                while True:
                    text = await websocket.receive_text()
                    await websocket.send_json(await _socket_reply(gateway, text))
            except WebSocketDisconnect:
                logger.debug("WebSocket client disconnected")

    return app


async def _socket_reply(gateway: Gateway, text: str) -> dict[str, Any]:
    try:
        message = json.loads(text)
    except ValueError:
        return {"error": "Invalid JSON"}

    try:
        action = message.get("action", "query") if isinstance(message, dict) else "query"
        if action not in ("query", "raw"):
            return {"error": f"Unknown action '{action}'"}
        parsed = parse_payload(message)
        result = await gateway.execute(parsed, is_raw=action == "raw")
    except GatewayError as e:
        return {"error": e.message}
    except Exception as e:
        logger.exception(f"Unhandled WebSocket error: {e}")
        return {"error": str(e) or type(e).__name__}
    if isinstance(parsed, TransactionBatch):
        return {"response": [serialize(item) for item in result]}
    return {"response": serialize(result)}


def run() -> None:
    """Serve the HTTP transport with uvicorn."""
    import uvicorn

    from .server import configure_logging

    configure_logging()
    host = os.getenv("SQLGATE_HOST", "127.0.0.1")
    try:
        port = int(os.getenv("SQLGATE_PORT", "8787"))
    except ValueError:
        logger.warning("Invalid SQLGATE_PORT, using 8787")
        port = 8787

    logger.info(f"Starting HTTP server on {host}:{port}")
    uvicorn.run(create_app(), host=host, port=port, log_config=None)
