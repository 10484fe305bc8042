"""FastMCP server initialization for sqlgate.

This module initializes the MCP server and manages the gateway via lifespan
context. Tool implementations are in the tools module.

Following the official Anthropic Python SDK patterns:
- Lifespan context manager for resource initialization and cleanup
- Context injection for tool access to shared resources
- FastMCP server with stdio transport
"""

import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from .context import AppContext, AppContextType
from .engine import Gateway, GatewayConfigLoader

logger = logging.getLogger(__name__)

# =============================================================================
# Logging
# =============================================================================


def configure_logging() -> None:
    """Configure root logging from SQLGATE_LOG_LEVEL.

    Logs go to stderr: stdout carries the MCP protocol on the stdio transport.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    log_level_str = os.getenv("SQLGATE_LOG_LEVEL", "INFO").upper()

    if log_level_str not in valid_log_levels:
        print(
            f"Warning: Invalid SQLGATE_LOG_LEVEL '{log_level_str}'. "
            f"Valid levels: {', '.join(sorted(valid_log_levels))}. "
            "Using INFO.",
            file=sys.stderr,
        )
        log_level_str = "INFO"

    logging.basicConfig(
        level=getattr(logging, log_level_str),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


# =============================================================================
# Shared Resources and Lifespan Management
# =============================================================================


@asynccontextmanager
async def app_lifespan(_server: FastMCP) -> AsyncIterator[AppContext]:
    """Build the gateway from sqlgate.yml, start it, and stop it on shutdown.

    Environment Variables:
        SQLGATE_CONFIG: Path to the gateway config file
        SQLGATE_SWEEP_INTERVAL: Seconds between cache sweeps
        SQLGATE_HOSTED_API_URL: Hosted execution API base URL

    Yields:
        AppContext holding the running gateway
    """
    logger.info("Initializing MCP server resources...")

    settings = GatewayConfigLoader().load()
    gateway = Gateway.from_settings(settings)
    await gateway.start()

    try:
        yield AppContext(gateway=gateway, settings=settings)
    finally:
        logger.info("Shutting down MCP server...")
        await gateway.stop()


# Initialize MCP server with lifespan management
mcp = FastMCP("sqlgate", lifespan=app_lifespan)


# =============================================================================
# Server Entry Point
# =============================================================================


def main() -> None:
    """Run the MCP server over stdio."""
    configure_logging()
    logger.info("Starting MCP server (press Ctrl+C to stop)...")

    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
    except Exception as e:
        logger.exception(f"Server error: {e}")
        sys.exit(1)

    logger.info("Server shutdown complete")


__all__ = [
    "mcp",
    "main",
    "configure_logging",
    "AppContext",
    "AppContextType",
]
