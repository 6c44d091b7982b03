"""FastMCP server instance for voxlayout.

Exposes the generation pipeline to LLM clients:

    1. generate_layout: text description → canonical page layout
    2. generate_layout_from_audio: recorded description → canonical page layout
    3. load_layout: fetch a persisted layout by session
    4. list_components: visual-mapping component catalog
    5. status: service health

Usage:
    # STDIO mode
    python -m voxlayout.mcp.server

    # HTTP mode
    python -m voxlayout.mcp.server --transport http --port 18090

    # Via CLI
    python . mcp serve
"""

import argparse
import logging
import sys
from typing import Any

from fastmcp import FastMCP

from voxlayout.core.log import setup_logging

from . import tools
from .lib import SERVER_NAME, ServerConfig, TransportType, get_server_version

logger = logging.getLogger(__name__)


# =============================================================================
# Server Instructions (LLM Guidance)
# =============================================================================

SERVER_INSTRUCTIONS = """\
## voxlayout MCP Server

Turns a spoken or typed page description into a structured page layout with
hero, main and footer sections of `ui.*` components.

### Quick Start
1. `status()` → check which backend services are reachable
2. `generate_layout("создай заголовок и кнопку")` → layout JSON
3. `load_layout(session_id)` → fetch it again later

### Reading Results
- `state` is "complete" or "failed".
- `warnings` lists degraded stages (e.g. "map-visual: ..."); the layout is
  still usable.
- `failure_reason` + `hint` explain a failed audio transcription.
- Every component carries `confidence` and `matchType`.

### Service Status
| Service | Required For | If Missing |
|---------|-------------|------------|
| Extraction | Generation | Set EXTRACT_URL |
| Mapping | Component matching | Layouts fall back to extraction guesses |
| Transcription | Audio input | Set TRANSCRIBE_URL |
| Layout store | Saving | Set LAYOUT_STORE |
"""

# =============================================================================
# Server Instance
# =============================================================================

mcp = FastMCP(
    name=SERVER_NAME,
    instructions=SERVER_INSTRUCTIONS,
)


# =============================================================================
# Generation Tools
# =============================================================================


@mcp.tool
def generate_layout(
    text: str,
    language: str | None = None,
    template: str | None = None,
    skip_visual_mapping: bool = False,
    persist: bool = True,
    session_id: str | None = None,
) -> dict[str, Any]:
    """Generate a page layout from a text description.

    Args:
        text: Description of the page, e.g. "создай заголовок и кнопку".
        language: BCP-47 language tag (default from DEFAULT_LANGUAGE).
        template: Page template: hero-main-footer, one-column,
            cards-landing or ecommerce-landing.
        skip_visual_mapping: Use the extraction service's own layout guess.
        persist: Save the layout to the layout store.
        session_id: Reuse an existing session (optional).

    Returns:
        Dictionary with state, session_id, layout, warnings, persisted,
        failure_reason, hint, stages and stats.
    """
    return tools.generate_layout(
        text,
        language=language,
        template=template,
        skip_visual_mapping=skip_visual_mapping,
        persist=persist,
        session_id=session_id,
    )


@mcp.tool
def generate_layout_from_audio(
    audio_base64: str,
    content_type: str = "audio/webm",
    language: str | None = None,
    template: str | None = None,
    skip_visual_mapping: bool = False,
    persist: bool = True,
    session_id: str | None = None,
) -> dict[str, Any]:
    """Generate a page layout from a recorded description.

    Args:
        audio_base64: Base64-encoded recording (at least ~5 KB).
        content_type: Audio MIME type, e.g. "audio/webm" or "audio/wav".
        language: BCP-47 language tag (default from DEFAULT_LANGUAGE).
        template: Page template name.
        skip_visual_mapping: Use the extraction service's own layout guess.
        persist: Save the layout to the layout store.
        session_id: Reuse an existing session (optional).

    Returns:
        Same shape as generate_layout, plus the transcript.
    """
    return tools.generate_layout_from_audio(
        audio_base64,
        content_type=content_type,
        language=language,
        template=template,
        skip_visual_mapping=skip_visual_mapping,
        persist=persist,
        session_id=session_id,
    )


@mcp.tool
def load_layout(session_id: str) -> dict[str, Any]:
    """Load the persisted layout for a session.

    Args:
        session_id: Session id returned by a generate tool.
    """
    return tools.load_layout(session_id)


# =============================================================================
# Catalog & Status Tools
# =============================================================================


@mcp.tool
def list_components(refresh: bool = False) -> dict[str, Any]:
    """List components the visual-mapping service can place.

    Args:
        refresh: Bypass the catalog cache.
    """
    return tools.list_components(refresh=refresh)


@mcp.tool
def status() -> dict[str, Any]:
    """Check backend service health.

    Use this FIRST to verify the services are reachable.

    Returns:
        Dictionary with status ("healthy", "degraded" or "unhealthy"),
        services, capabilities, action_required and next_steps.
    """
    return tools.status()


# =============================================================================
# Server Factory & Runner
# =============================================================================


def create_server() -> FastMCP:
    """Create and configure the MCP server instance.

    Returns:
        Configured FastMCP server instance.
    """
    return mcp


def run_server(
    transport: TransportType = TransportType.STDIO,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the MCP server with specified transport.

    Args:
        transport: Transport type (stdio, http, sse).
        host: Bind address for HTTP/SSE (default: MCP_HOST).
        port: Port for HTTP/SSE (default: MCP_PORT).
    """
    from voxlayout.health import log_startup_status

    config = ServerConfig.from_env(transport)
    if host:
        config.host = host
    if port:
        config.port = port

    logger.info(f"Starting voxlayout server v{get_server_version()}")
    logger.info(f"Transport: {config.transport.value}")

    log_startup_status(tools.get_services())

    if config.url:
        logger.info(f"Running in {config.transport.value.upper()} mode at {config.url}")
    else:
        logger.info("Running in STDIO mode")
    mcp.run(**config.run_kwargs())


# =============================================================================
# CLI Entry Point
# =============================================================================


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for MCP server.

    Args:
        argv: Command line arguments (uses sys.argv if None).

    Returns:
        Exit code (0 for success).
    """
    parser = argparse.ArgumentParser(
        prog="voxlayout-mcp",
        description="MCP server for voice/text page-layout generation",
    )
    parser.add_argument(
        "--transport",
        "-t",
        type=str,
        choices=["stdio", "http", "sse"],
        default="stdio",
        help="Transport type (default: stdio)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Bind address for HTTP/SSE (default: MCP_HOST)",
    )
    parser.add_argument(
        "--port",
        "-p",
        type=int,
        default=None,
        help="Port for HTTP/SSE (default: MCP_PORT)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, stream=sys.stderr)

    try:
        run_server(
            transport=TransportType(args.transport),
            host=args.host,
            port=args.port,
        )
        return 0
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        return 0
    except Exception as e:
        logger.error(f"Server error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
