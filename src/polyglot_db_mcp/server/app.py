"""
MCP transports for the dispatch gateway.

Both transports share one low-level :class:`mcp.server.Server` whose tool list
is the gateway catalogue and whose ``tools/call`` handler answers with a single
text block holding the JSON envelope. Argument validation is left to the
operation handlers so that malformed input still produces an envelope.
"""

from __future__ import annotations

import contextlib
from typing import Any, AsyncIterator, Dict, List, Optional

import mcp.types as types
import uvicorn
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route
from starlette.types import Receive, Scope, Send

from .. import __version__
from ..config import DEFAULT_HTTP_PATH
from ..core.gateway import DispatchGateway
from ..core.logging import get_logger, log_progress

SERVER_NAME = "polyglot-db-mcp"
PROTOCOL_VERSION = "2025-06-18"
DOCUMENTATION_URL = "https://github.com/hyperpolymath/polyglot-db-mcp"

LOGGER = get_logger(__name__)


def tool_catalogue(gateway: DispatchGateway) -> List[types.Tool]:
    return [
        types.Tool(name=descriptor.name, description=descriptor.description, inputSchema=descriptor.input_schema())
        for descriptor in gateway.operations()
    ]


def build_server(gateway: DispatchGateway) -> Server:
    """Create the MCP server bound to ``gateway``."""

    server: Server = Server(SERVER_NAME, version=__version__)
    tools = tool_catalogue(gateway)

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        return tools

    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: Optional[Dict[str, Any]]) -> List[types.TextContent]:
        envelope = await gateway.invoke(name, arguments or {})
        return [types.TextContent(type="text", text=envelope.to_json())]

    return server


async def serve_stdio(gateway: DispatchGateway) -> None:
    """Serve MCP over stdin/stdout until the client disconnects."""

    server = build_server(gateway)
    log_progress(LOGGER, "Serving MCP over stdio", phase="serve", status="start", extra={"transport": "stdio"})
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        await gateway.shutdown()


def build_http_app(gateway: DispatchGateway, *, path: str = DEFAULT_HTTP_PATH) -> Starlette:
    """
    Build the Streamable HTTP application.

    Routes
    ------
    ``GET /health``
        Liveness summary: status, version and adapter count.
    ``GET /`` and ``GET /info``
        Server description and the MCP endpoint path.
    ``<path>``
        The MCP Streamable HTTP endpoint.
    """

    server = build_server(gateway)
    session_manager = StreamableHTTPSessionManager(app=server, json_response=False, stateless=True)

    async def handle_mcp(scope: Scope, receive: Receive, send: Send) -> None:
        await session_manager.handle_request(scope, receive, send)

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "version": __version__, "databases": len(gateway.registry)})

    async def info(request: Request) -> JSONResponse:
        return JSONResponse(
            {
                "name": SERVER_NAME,
                "version": __version__,
                "protocol": "MCP Streamable HTTP",
                "protocolVersion": PROTOCOL_VERSION,
                "endpoint": path,
                "databases": gateway.registry.names(),
                "documentation": DOCUMENTATION_URL,
            }
        )

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with session_manager.run():
            log_progress(LOGGER, "Serving MCP over HTTP", phase="serve", status="start", extra={"transport": "http", "url": path})
            try:
                yield
            finally:
                await gateway.shutdown()

    return Starlette(
        routes=[
            Route("/health", health, methods=["GET"]),
            Route("/", info, methods=["GET"]),
            Route("/info", info, methods=["GET"]),
            Mount(path, app=handle_mcp),
        ],
        lifespan=lifespan,
    )


def serve_http(gateway: DispatchGateway, *, host: str, port: int, path: str = DEFAULT_HTTP_PATH, log_level: str = "info") -> None:
    """Run the Streamable HTTP application under uvicorn (blocking)."""

    app = build_http_app(gateway, path=path)
    uvicorn.run(app, host=host, port=port, log_level=log_level.lower())
