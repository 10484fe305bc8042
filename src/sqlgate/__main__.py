"""Entry point for sqlgate.

SQLGATE_TRANSPORT selects the surface:
- http (default): FastAPI app served by uvicorn
- mcp: FastMCP server over stdio
"""

import os
import sys


def main() -> None:
    """Start the transport named by SQLGATE_TRANSPORT."""
    transport = os.getenv("SQLGATE_TRANSPORT", "http").lower()

    if transport == "mcp":
        # Import tools first to register @mcp.tool() decorators
        from . import tools  # noqa: F401 - imported for side effects (decorator registration)
        from .server import main as server_main

        server_main()
    elif transport == "http":
        from .app import run

        run()
    else:
        print(f"Unknown SQLGATE_TRANSPORT '{transport}'. Use 'http' or 'mcp'.", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
