"""Shared context types for the MCP server.

Separated from server and tools modules to avoid circular imports.
"""

from dataclasses import dataclass

from mcp.server.fastmcp import Context
from mcp.server.session import ServerSession

from .engine import Gateway, GatewaySettings


@dataclass
class AppContext:
    """Resources shared by MCP tools, created during server startup."""

    gateway: Gateway
    settings: GatewaySettings


# Type alias for MCP tool context parameter
AppContextType = Context[ServerSession, AppContext]


__all__ = ["AppContext", "AppContextType"]
