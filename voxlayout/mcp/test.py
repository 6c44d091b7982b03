"""Unit tests for MCP server module.

Tests cover:
- Server configuration
- Tool functions against the fake backend
- Tool registration over the MCP client protocol
"""

import base64

import pytest

from . import tools
from .lib import (
    TOOL_NAMES,
    ServerConfig,
    TransportType,
    get_server_capabilities,
    get_server_version,
)
from .server import create_server, mcp, run_server

SCENARIO_TEXT = "создай заголовок и кнопку"

# =============================================================================
# Configuration Tests
# =============================================================================


class TestServerConfig:
    """Tests for ServerConfig dataclass."""

    @pytest.mark.unit
    def test_default_config(self):
        """Default config has expected values."""
        config = ServerConfig()

        assert config.name == "voxlayout"
        assert config.transport == TransportType.STDIO
        assert config.port == 18090
        assert config.path == "/mcp"

    @pytest.mark.unit
    def test_from_env(self, monkeypatch):
        """from_env reads host and port."""
        monkeypatch.setenv("MCP_PORT", "19999")
        config = ServerConfig.from_env(transport=TransportType.HTTP)

        assert config.transport == TransportType.HTTP
        assert config.port == 19999

    @pytest.mark.unit
    def test_stdio_run_kwargs(self):
        """STDIO runs with FastMCP defaults and has no URL."""
        config = ServerConfig()
        assert config.run_kwargs() == {}
        assert config.url is None

    @pytest.mark.unit
    def test_http_run_kwargs(self):
        """HTTP passes host, port and path."""
        config = ServerConfig(transport=TransportType.HTTP, host="127.0.0.1", port=9000)

        assert config.run_kwargs() == {
            "transport": "http",
            "host": "127.0.0.1",
            "port": 9000,
            "path": "/mcp",
        }
        assert config.url == "http://127.0.0.1:9000/mcp"

    @pytest.mark.unit
    def test_sse_has_no_path(self):
        """SSE does not take an HTTP path."""
        config = ServerConfig(transport=TransportType.SSE, host="localhost", port=9001)

        assert "path" not in config.run_kwargs()
        assert config.url == "http://localhost:9001/sse"


class TestServerUtilities:
    """Tests for server utility functions."""

    @pytest.mark.unit
    def test_version(self):
        """Server version is a semver-like string."""
        assert len(get_server_version().split(".")) >= 2

    @pytest.mark.unit
    def test_capabilities(self):
        """Only tools are offered."""
        caps = get_server_capabilities()
        assert caps["tools"] is True
        assert caps["resources"] is False
        assert caps["tool_names"] == list(TOOL_NAMES)

    @pytest.mark.unit
    def test_create_server_returns_mcp(self):
        """create_server returns the module instance."""
        assert create_server() is mcp
        assert mcp.name == "voxlayout"

    @pytest.mark.unit
    def test_run_server_http(self, tool_services, monkeypatch):
        """run_server logs startup health then runs with the config's kwargs."""
        import voxlayout.health

        runs = []
        monkeypatch.setattr(mcp, "run", lambda **kwargs: runs.append(kwargs))
        monkeypatch.setattr(voxlayout.health, "log_startup_status", lambda services: None)

        run_server(TransportType.HTTP, host="127.0.0.1", port=9100)

        assert runs == [
            {"transport": "http", "host": "127.0.0.1", "port": 9100, "path": "/mcp"}
        ]


# =============================================================================
# Tool Functionality Tests (no MCP protocol)
# =============================================================================


class TestGenerateTools:
    """Tests for the generation tools."""

    @pytest.mark.unit
    def test_generate_layout(self, tool_services, fake_backend):
        """Text generation returns a complete, persisted layout."""
        result = tools.generate_layout(SCENARIO_TEXT, session_id="mcp-session")

        assert result["state"] == "complete"
        assert result["session_id"] == "mcp-session"
        assert result["persisted"] is True
        assert result["layout"]["metadata"]["sessionId"] == "mcp-session"
        assert result["stats"]["total"] == 2
        assert "mcp-session" in fake_backend.saved

    @pytest.mark.unit
    def test_generate_layout_rejects_empty(self, tool_services):
        """Validation errors surface as ValueError."""
        with pytest.raises(ValueError, match="empty"):
            tools.generate_layout("   ")

    @pytest.mark.unit
    def test_generate_from_audio(self, tool_services, audio_bytes):
        """Base64 audio is decoded and transcribed."""
        result = tools.generate_layout_from_audio(base64.b64encode(audio_bytes).decode())

        assert result["state"] == "complete"
        assert result["transcript"] == SCENARIO_TEXT

    @pytest.mark.unit
    def test_audio_too_short_is_failed_result(self, tool_services):
        """Short audio is a failed result with a hint, not an exception."""
        result = tools.generate_layout_from_audio(base64.b64encode(b"\x00" * 100).decode())

        assert result["state"] == "failed"
        assert result["failure_reason"] == "too-short"
        assert result["hint"]

    @pytest.mark.unit
    def test_invalid_base64(self, tool_services):
        """Malformed base64 is rejected."""
        with pytest.raises(ValueError, match="base64"):
            tools.generate_layout_from_audio("not base64!!")


class TestLayoutTools:
    """Tests for load_layout and list_components."""

    @pytest.mark.unit
    def test_load_layout(self, tool_services):
        """A generated layout can be loaded back."""
        generated = tools.generate_layout(SCENARIO_TEXT, session_id="reload-me")
        loaded = tools.load_layout("reload-me")
        assert loaded["layout"]["sections"] == generated["layout"]["sections"]
        assert loaded["stats"] == generated["stats"]

    @pytest.mark.unit
    def test_load_layout_not_found(self, tool_services):
        """Unknown session raises."""
        with pytest.raises(ValueError, match="not found"):
            tools.load_layout("nobody")

    @pytest.mark.unit
    def test_list_components(self, tool_services, fake_backend):
        """Catalog is fetched once, then served from cache."""
        first = tools.list_components()
        second = tools.list_components()

        assert first["count"] == 3
        assert first["cached"] is False
        assert second["cached"] is True
        assert first["templates"] == ["hero-main-footer", "one-column"]
        assert len(fake_backend.requests_for("components")) == 1


class TestStatusTool:
    """Tests for status tool logic."""

    @pytest.mark.unit
    def test_healthy(self, tool_services):
        """All services up gives next steps and no actions."""
        result = tools.status()

        assert result["status"] == "healthy"
        assert "action_required" not in result
        assert result["next_steps"]
        assert set(result["services"]) == {"transcription", "extraction", "mapping", "layout_store"}

    @pytest.mark.unit
    def test_unhealthy(self, tool_services, fake_backend):
        """Failing probes produce action items."""
        fake_backend.failures["health"] = 503
        result = tools.status()

        assert result["status"] == "unhealthy"
        assert result["action_required"]


# =============================================================================
# MCP Protocol Integration Tests
# =============================================================================


@pytest.mark.mcp
class TestMCPProtocol:
    """Integration tests using the MCP client protocol."""

    @pytest.mark.asyncio
    async def test_client_can_list_tools(self, mcp_client):
        """Exactly the five public tools are registered."""
        tool_names = {t.name for t in await mcp_client.list_tools()}
        assert tool_names == set(TOOL_NAMES)

    @pytest.mark.asyncio
    async def test_client_can_call_status(self, mcp_client):
        """Client can call status tool."""
        result = await mcp_client.call_tool("status", {})
        assert result is not None

    @pytest.mark.asyncio
    async def test_load_layout_not_found(self, mcp_client):
        """Tool errors are reported to the client."""
        with pytest.raises(Exception, match="not found"):
            await mcp_client.call_tool("load_layout", {"session_id": "nonexistent-id"})
