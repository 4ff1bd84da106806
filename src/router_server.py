#!/usr/bin/env python3
"""
Entry point for the MCP Session Router.

Serves an MCP server over:
- stdio (default)
- GET /sse + POST /message for Server-Sent Events sessions (--sse)
- GET /health and CORS preflight on the HTTP listener (--http or --sse)

Usage:
    mcp-session-router
    mcp-session-router --sse --port 3000
    mcp-session-router --sse --no-stdio --max-connections 50
    python src/router_server.py --help
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

# Add src to path for imports (must be before local imports)
src_path = Path(__file__).parent
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

# ruff: noqa: E402
import fastmcp
from fastmcp import FastMCP
from mcp.server.lowlevel import Server

from core.config import TransportConfig
from core.engine import McpServerEngine
from transport.manager import TransportManager, TransportStartError
from transport.security import DefaultSecurityGate, SecurityConfig

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Configure logging. Always stderr: stdout belongs to the stdio transport."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="MCP Session Router",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  MCP_HTTP_PORT: HTTP listen port (default: 3000)
  MCP_HTTP_HOST: HTTP listen host (default: 127.0.0.1)
  MCP_MAX_CONNECTIONS: Maximum simultaneous SSE sessions (default: 10)

Command line options take precedence over environment variables.
        """,
    )

    parser.add_argument("--sse", action="store_true", help="Enable the SSE session endpoint")
    parser.add_argument("--http", action="store_true", help="Enable the HTTP listener")
    parser.add_argument("--no-stdio", action="store_true", help="Disable the stdio transport")
    parser.add_argument("--host", help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, help="Port to bind to (default: 3000)")
    parser.add_argument(
        "--max-connections", type=int, help="Maximum simultaneous SSE sessions (default: 10)"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--inspect",
        action="store_true",
        help="Debug mode: DEBUG logging and print the resolved configuration",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> TransportConfig:
    """Merge command line options over environment and defaults."""
    return TransportConfig.load(
        support_stdio=not args.no_stdio,
        support_http=args.http,
        support_sse=args.sse,
        http_host=args.host,
        http_port=args.port,
        max_connections=args.max_connections,
    )


def create_mcp_app(manager_status: dict[str, Any]) -> FastMCP:
    """Create the MCP server the transports are connected to."""
    app = FastMCP("mcp-session-router")

    @app.tool()
    def transport_status() -> dict[str, Any]:
        """Report open SSE sessions and HTTP listener state."""
        manager: TransportManager | None = manager_status.get("manager")
        if manager is None:
            return {"status": "starting"}
        return {
            "status": "running",
            "active_sse_sessions": manager.active_session_count,
            "max_sse_sessions": manager.config.max_connections,
            "http_listening": manager.http_listening,
        }

    return app


def low_level_server(app: FastMCP) -> Server:
    """Return the mcp low-level Server that a FastMCP app wraps."""
    server = getattr(app, "_mcp_server", None)
    if server is None:
        raise RuntimeError(
            f"fastmcp {fastmcp.__version__} no longer exposes its low-level server"
        )
    return server


async def run(config: TransportConfig) -> None:
    """Start the transports and serve until the channel or listener ends."""
    holder: dict[str, Any] = {}
    app = create_mcp_app(holder)
    engine = McpServerEngine(low_level_server(app))

    manager = TransportManager(engine, DefaultSecurityGate(SecurityConfig()), config)
    holder["manager"] = manager

    await manager.start_transport()
    try:
        await manager.wait_closed()
    finally:
        await manager.shutdown()


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the session router."""
    args = parse_args(argv)
    setup_logging("DEBUG" if args.inspect else args.log_level)

    try:
        config = build_config(args)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    if not (config.support_stdio or config.http_enabled):
        logger.error("No transport enabled: pass --sse or --http with --no-stdio")
        sys.exit(2)

    if args.inspect:
        logger.debug(f"Resolved transport configuration: {config}")

    logger.info("Starting MCP Session Router")
    logger.info(f"  stdio: {'enabled' if config.support_stdio else 'disabled'}")
    if config.http_enabled:
        logger.info(f"  HTTP:  http://{config.http_host}:{config.http_port}")
        logger.info(f"  SSE:   {'enabled' if config.support_sse else 'disabled'}")
        logger.info(f"  Max SSE sessions: {config.max_connections}")

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except TransportStartError as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
