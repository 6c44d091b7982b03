"""Server settings and metadata for the voxlayout MCP server."""

from dataclasses import dataclass
from enum import Enum
from importlib.metadata import PackageNotFoundError, version
from typing import Any

from voxlayout.config import EnvVar, get_environment

SERVER_NAME = "voxlayout"

# Public tool surface, in the order clients should discover it
TOOL_NAMES: tuple[str, ...] = (
    "status",
    "generate_layout",
    "generate_layout_from_audio",
    "load_layout",
    "list_components",
)


class TransportType(str, Enum):
    """Supported MCP transport types."""

    STDIO = "stdio"
    HTTP = "http"
    SSE = "sse"


@dataclass
class ServerConfig:
    """Where and how the MCP server listens.

    Attributes:
        name: Server display name.
        transport: Transport type for communication.
        host: Bind address for HTTP/SSE transports.
        port: Port for HTTP/SSE transports.
        path: URL path for the HTTP transport.
    """

    name: str = SERVER_NAME
    transport: TransportType = TransportType.STDIO
    host: str = "0.0.0.0"
    port: int = 18090
    path: str = "/mcp"

    @classmethod
    def from_env(cls, transport: TransportType | None = None) -> "ServerConfig":
        """Read MCP_HOST and MCP_PORT; transport defaults to STDIO."""
        return cls(
            transport=transport or TransportType.STDIO,
            host=get_environment(EnvVar.MCP_HOST),
            port=get_environment(EnvVar.MCP_PORT),
        )

    @property
    def url(self) -> str | None:
        """Client-facing URL, None for STDIO."""
        if self.transport == TransportType.STDIO:
            return None
        suffix = self.path if self.transport == TransportType.HTTP else "/sse"
        return f"http://{self.host}:{self.port}{suffix}"

    def run_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``FastMCP.run``."""
        if self.transport == TransportType.STDIO:
            return {}
        kwargs: dict[str, Any] = {
            "transport": self.transport.value,
            "host": self.host,
            "port": self.port,
        }
        if self.transport == TransportType.HTTP:
            kwargs["path"] = self.path
        return kwargs


def get_server_version() -> str:
    """Installed package version, or the source tree version when not installed."""
    try:
        return version(SERVER_NAME)
    except PackageNotFoundError:
        return "0.1.0"


def get_server_capabilities() -> dict[str, Any]:
    """Capability flags advertised by ``mcp info`` and the status tool."""
    return {
        "tools": True,
        "resources": False,
        "prompts": False,
        "logging": True,
        "tool_names": list(TOOL_NAMES),
    }


__all__ = [
    "SERVER_NAME",
    "TOOL_NAMES",
    "ServerConfig",
    "TransportType",
    "get_server_capabilities",
    "get_server_version",
]
