"""
MCP server transports (stdio and Streamable HTTP).
"""

from .app import build_http_app, build_server, serve_http, serve_stdio, tool_catalogue

__all__ = ["build_http_app", "build_server", "serve_http", "serve_stdio", "tool_catalogue"]
