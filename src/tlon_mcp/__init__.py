"""Top-level package for the Tlon MCP server."""

from __future__ import annotations

from typing import Any


def build_mcp_server(*args: Any, **kwargs: Any) -> Any:
    """Lazily import and build the FastMCP server to keep package import light."""
    from .app import build_mcp_server as _build_mcp_server
    return _build_mcp_server(*args, **kwargs)


__all__ = ["build_mcp_server"]
