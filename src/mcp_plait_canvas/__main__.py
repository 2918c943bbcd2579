#!/usr/bin/env python3
"""
MCP Plait Canvas - Entry Point

Two processes share one canvas:
- canvas: the canvas server (element repository, HTTP API, push channel)
- mcp: the MCP tool server that draws on it, over one of
    - stdio: Standard I/O (default)
    - sse: Server-Sent Events over HTTP
    - http: Streamable HTTP transport
"""

import argparse
import logging
import sys

from .config import TRANSPORT_MODES, configure_logging, load_settings

logger = logging.getLogger("mcp_plait_canvas")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-plait-canvas",
        description="Shared Plait canvas with an MCP drawing bridge",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the canvas server on port 3000
  mcp-plait-canvas canvas --port 3000

  # Run the MCP server over stdio, writing to that canvas
  mcp-plait-canvas mcp --canvas-url http://localhost:3000

  # Run the MCP server over SSE without touching any canvas
  mcp-plait-canvas mcp --transport sse --port 8080 --no-sync

Settings can also come from the environment or a .env file:
  CANVAS_SERVER_URL, ENABLE_CANVAS_SYNC, MCP_TRANSPORT_MODE, HOST, PORT,
  CANVAS_RECONNECT_DELAY, SYNC_TIMEOUT, LOG_LEVEL, DEBUG
"""
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__import__('mcp_plait_canvas').__version__}"
    )
    parser.add_argument("--log-level", type=str, default=None, help="Logging level (default: INFO)")
    sub = parser.add_subparsers(dest="command")

    mcp_parser = sub.add_parser("mcp", help="Run the MCP tool server (default)")
    mcp_parser.add_argument(
        "--transport",
        choices=TRANSPORT_MODES,
        default=None,
        help="Transport mode (default: stdio)"
    )
    mcp_parser.add_argument("--host", type=str, default=None, help="Host to bind for SSE/HTTP transport")
    mcp_parser.add_argument("--port", type=int, default=None, help="Port for SSE/HTTP transport")
    mcp_parser.add_argument("--canvas-url", type=str, default=None, help="Canvas server base URL")
    mcp_parser.add_argument(
        "--no-sync",
        action="store_true",
        help="Validate and return elements without writing to the canvas"
    )

    canvas_parser = sub.add_parser("canvas", help="Run the canvas server")
    canvas_parser.add_argument("--host", type=str, default=None, help="Host to bind (default: localhost)")
    canvas_parser.add_argument("--port", type=int, default=None, help="Port to bind (default: 3000)")
    return parser


def run_canvas(settings) -> None:
    import uvicorn

    from .app import create_app

    logger.info("Starting canvas server on %s:%s", settings.host, settings.port)
    uvicorn.run(create_app(), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


def run_mcp(settings) -> None:
    from .server import create_server

    mcp = create_server(settings)
    logger.info(
        "Starting Plait MCP server on %s (canvas %s, sync %s)",
        settings.transport_mode,
        settings.canvas_server_url,
        "enabled" if settings.enable_canvas_sync else "disabled",
    )

    if settings.transport_mode == "stdio":
        mcp.run()
        return

    import uvicorn

    if settings.transport_mode == "sse":
        app = mcp.sse_app()
        logger.info("SSE endpoint: http://%s:%s/sse", settings.host, settings.port)
    else:
        app = mcp.streamable_http_app()
        logger.info("MCP endpoint: http://%s:%s/mcp", settings.host, settings.port)

    uvicorn.run(app, host=settings.host, port=settings.port)


def main(argv=None):
    parser = _build_parser()
    args = parser.parse_args(argv)
    command = args.command or "mcp"

    try:
        if command == "canvas":
            settings = load_settings(host=args.host, port=args.port, log_level=args.log_level)
        else:
            settings = load_settings(
                transport_mode=getattr(args, "transport", None),
                host=getattr(args, "host", None),
                port=getattr(args, "port", None),
                canvas_server_url=getattr(args, "canvas_url", None),
                enable_canvas_sync=False if getattr(args, "no_sync", False) else None,
                log_level=args.log_level,
            )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    configure_logging(settings.log_level)

    try:
        if command == "canvas":
            run_canvas(settings)
        else:
            run_mcp(settings)
    except Exception as e:
        logger.exception("Failed to start %s server", command)
        print(f"Failed to start {command} server: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
