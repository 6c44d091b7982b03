"""MCP (Model Context Protocol) server for voxlayout.

Exposes layout generation to LLM clients.

Example:
    # Start server in STDIO mode
    >>> from voxlayout.mcp import run_server
    >>> run_server()

    # Start server in HTTP mode
    >>> from voxlayout.mcp import run_server, TransportType
    >>> run_server(transport=TransportType.HTTP, port=18090)

Available Tools:
    - generate_layout: Text description → canonical layout
    - generate_layout_from_audio: Recording → canonical layout
    - load_layout: Persisted layout by session id
    - list_components: Component catalog and templates
    - status: Backend service health
"""

from .lib import (
    SERVER_NAME,
    TOOL_NAMES,
    ServerConfig,
    TransportType,
    get_server_capabilities,
    get_server_version,
)
from .server import create_server, mcp, run_server

__all__ = [
    # Server instance
    "mcp",
    "create_server",
    "run_server",
    # Configuration
    "SERVER_NAME",
    "TOOL_NAMES",
    "ServerConfig",
    "TransportType",
    # Utilities
    "get_server_version",
    "get_server_capabilities",
]
