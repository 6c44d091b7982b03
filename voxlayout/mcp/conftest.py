"""Pytest fixtures for MCP server tests.

This module provides:
- Tool runtime wired to the fake backend
- Server and client fixtures for protocol testing
"""

from __future__ import annotations

from typing import AsyncGenerator

import pytest
from fastmcp import Client, FastMCP

from voxlayout.services import ServiceBundle

from . import tools


@pytest.fixture
def tool_services(services, monkeypatch) -> ServiceBundle:
    """Point the tool runtime at the fake-backend service bundle."""
    monkeypatch.setattr(tools, "get_services", lambda: services)
    return services


@pytest.fixture
def mcp_server() -> FastMCP:
    """MCP server instance for testing."""
    from .server import create_server

    return create_server()


@pytest.fixture
async def mcp_client(mcp_server: FastMCP, tool_services) -> AsyncGenerator[Client, None]:
    """Connected in-memory MCP client."""
    async with Client(mcp_server) as client:
        yield client
