"""CLI entry point for voxlayout.

This module acts as the central entry point for the project's CLI tools.
It delegates commands to the pipeline, the service adapters and the MCP server.
"""

import argparse
import json
import mimetypes
import sys
from pathlib import Path

from dotenv import load_dotenv

from voxlayout.config import EnvVar, get_data_dir, get_environment, get_service_urls
from voxlayout.core.log import get_logger, setup_logging

# Load environment variables from .env file
load_dotenv()

logger = get_logger("cli")

SESSION_FILE = "session.json"

# Containers recorded by browsers; mimetypes maps .webm to video/webm
AUDIO_TYPES = {
    ".webm": "audio/webm",
    ".ogg": "audio/ogg",
    ".wav": "audio/wav",
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
}


def _create_services():
    from voxlayout.services import create_services

    return create_services()


def _session(new_session: bool = False):
    """Session persisted under the data directory across CLI invocations."""
    from voxlayout.session import FileSessionStore, SessionContext

    store = FileSessionStore(get_data_dir() / SESSION_FILE)
    session = SessionContext(store, client_id=get_environment(EnvVar.CLIENT_ID))
    if new_session:
        session_id = session.reset()
        logger.info(f"Started new session {session_id}")
    return session


def _write_output(text: str, output: Path | None) -> None:
    if output:
        output.write_text(text, encoding="utf-8")
        logger.info(f"Layout saved to {output}")
    else:
        print(text)


# =============================================================================
# Generate Command
# =============================================================================


def _run_generation(request, args: argparse.Namespace) -> int:
    from voxlayout.layout import layout_stats
    from voxlayout.pipeline import GenerationOptions, LayoutPipeline
    from voxlayout.progress import ProgressReporter, logging_subscriber

    services = _create_services()
    try:
        reporter = ProgressReporter()
        reporter.subscribe(logging_subscriber)
        pipeline = LayoutPipeline.from_services(
            services,
            reporter=reporter,
            default_template=get_environment(EnvVar.DEFAULT_TEMPLATE),
            default_language=get_environment(EnvVar.DEFAULT_LANGUAGE),
        )
        options = GenerationOptions(
            skip_visual_mapping=args.skip_mapping,
            template=args.template,
            persist=not args.no_persist,
            language=args.language,
        )
        result = pipeline.generate(request, options, session=_session(args.new_session))
    finally:
        services.close()

    for warning in result.warnings:
        logger.warning(warning)

    if not result.ok:
        logger.error(f"Generation failed: {result.failure_reason.value}")
        logger.info(result.failure_reason.hint)
        return 1

    if args.format == "result":
        text = json.dumps(result.to_dict(), ensure_ascii=False, indent=2)
    else:
        text = json.dumps(result.layout.to_wire(), ensure_ascii=False, indent=2)
    _write_output(text, args.output)

    stats = layout_stats(result.layout)
    logger.info(
        f"Stats: {stats.total} component(s), "
        f"avg confidence {stats.average_confidence:.2f}, "
        f"session={result.session_id}, persisted={result.persisted}"
    )
    return 0


def cmd_generate_text(args: argparse.Namespace) -> int:
    """Handle the generate text command."""
    from voxlayout.pipeline import TextInput

    text = " ".join(args.text)
    logger.info(f"Generating layout for: {text}")
    return _run_generation(TextInput(text, args.language), args)


def cmd_generate_audio(args: argparse.Namespace) -> int:
    """Handle the generate audio command."""
    from voxlayout.pipeline import AudioInput

    path: Path = args.file
    if not path.is_file():
        logger.error(f"Audio file not found: {path}")
        return 1

    content_type = (
        args.content_type
        or AUDIO_TYPES.get(path.suffix.lower())
        or mimetypes.guess_type(path.name)[0]
    )
    if content_type is None:
        logger.error(f"Cannot guess audio type of {path.name}; pass --content-type")
        return 1

    data = path.read_bytes()
    logger.info(f"Generating layout from {path} ({len(data)} bytes, {content_type})")
    audio = AudioInput(
        data=data,
        content_type=content_type,
        filename=path.name,
        language=args.language,
    )
    return _run_generation(audio, args)


def _add_generation_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--language",
        "-l",
        type=str,
        default=None,
        help="Language tag (default: DEFAULT_LANGUAGE)",
    )
    parser.add_argument(
        "--template",
        "-t",
        type=str,
        default=None,
        help="Page template (default: DEFAULT_TEMPLATE)",
    )
    parser.add_argument(
        "--skip-mapping",
        action="store_true",
        help="Use the extraction service's layout, skip visual mapping",
    )
    parser.add_argument(
        "--no-persist",
        action="store_true",
        help="Do not save the layout",
    )
    parser.add_argument(
        "--new-session",
        action="store_true",
        help="Start a new session instead of reusing the stored one",
    )
    parser.add_argument(
        "--format",
        "-f",
        type=str,
        default="layout",
        choices=["layout", "result"],
        help="Print the layout only or the full result (default: layout)",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=None,
        help="Output file path (prints to stdout if not specified)",
    )


def handle_generate_command(argv: list[str]) -> int:
    """Handle generate-specific commands."""
    parser = argparse.ArgumentParser(
        prog="python . generate",
        description="Generate page layouts from text or recorded audio",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    text_parser = subparsers.add_parser("text", help="Generate from a text description")
    text_parser.add_argument("text", nargs="+", help="Description of the page")
    _add_generation_options(text_parser)
    text_parser.set_defaults(func=cmd_generate_text)

    audio_parser = subparsers.add_parser("audio", help="Generate from an audio recording")
    audio_parser.add_argument("file", type=Path, help="Recording (webm, ogg, wav, ...)")
    audio_parser.add_argument(
        "--content-type",
        "-c",
        type=str,
        default=None,
        help="Audio MIME type (guessed from the extension if omitted)",
    )
    _add_generation_options(audio_parser)
    audio_parser.set_defaults(func=cmd_generate_audio)

    # Default to text if a description is passed directly
    if argv and not argv[0].startswith("-") and argv[0] not in ("text", "audio"):
        argv = ["text"] + argv

    if not argv:
        parser.print_help()
        return 1

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1
    return args.func(args)


# =============================================================================
# Layout Command
# =============================================================================


def cmd_layout_load(args: argparse.Namespace) -> int:
    """Handle the layout load command."""
    session_id = args.session_id or _session().session.id
    services = _create_services()
    try:
        layout = services.store.load(session_id)
    finally:
        services.close()

    if layout is None:
        logger.error(f"No layout stored for session {session_id}")
        return 1
    _write_output(json.dumps(layout.to_wire(), ensure_ascii=False, indent=2), args.output)
    return 0


def cmd_layout_list(args: argparse.Namespace) -> int:
    """Handle the layout list command."""
    services = _create_services()
    try:
        list_sessions = getattr(services.store, "list_sessions", None)
        if list_sessions is None:
            logger.error("The configured layout store cannot list sessions (LAYOUT_STORE=sqlite only)")
            return 1
        rows = list_sessions(limit=args.limit)
    finally:
        services.close()

    if not rows:
        logger.info("No stored layouts")
        return 0
    for row in rows:
        print(f"{row['session_id']}  {row['updated_at']}")
    return 0


def handle_layout_command(argv: list[str]) -> int:
    """Handle persisted layout commands."""
    parser = argparse.ArgumentParser(
        prog="python . layout",
        description="Inspect persisted layouts",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    load_parser = subparsers.add_parser("load", help="Print the layout stored for a session")
    load_parser.add_argument(
        "session_id",
        nargs="?",
        default=None,
        help="Session id (default: the CLI's current session)",
    )
    load_parser.add_argument("--output", "-o", type=Path, default=None, help="Output file path")
    load_parser.set_defaults(func=cmd_layout_load)

    list_parser = subparsers.add_parser("list", help="List stored sessions")
    list_parser.add_argument("--limit", "-n", type=int, default=20, help="Max rows (default: 20)")
    list_parser.set_defaults(func=cmd_layout_list)

    if not argv:
        parser.print_help()
        return 1

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1
    return args.func(args)


# =============================================================================
# Health & Catalog Commands
# =============================================================================


def cmd_health(argv: list[str]) -> int:
    """Print the service status banner.

    Returns 0 unless the system is unhealthy.
    """
    from voxlayout.health import HealthStatus, format_status_banner, get_system_health

    parser = argparse.ArgumentParser(prog="python . health", description="Check backend services")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = parser.parse_args(argv)

    services = _create_services()
    try:
        health = get_system_health(services)
    finally:
        services.close()

    if args.json:
        print(json.dumps(health.to_dict(), indent=2))
    else:
        print(format_status_banner(health))
        for name, url in get_service_urls().items():
            print(f"  {name:<14} {url}")
    return 1 if health.status == HealthStatus.UNHEALTHY else 0


def cmd_catalog(argv: list[str]) -> int:
    """List the visual-mapping component catalog and templates."""
    parser = argparse.ArgumentParser(prog="python . catalog", description="Component catalog")
    parser.add_argument("--json", action="store_true", help="Print the catalog as JSON")
    args = parser.parse_args(argv)

    services = _create_services()
    try:
        components = services.mapping.list_components(refresh=True)
        templates = services.mapping.get_templates()
    finally:
        services.close()

    if args.json:
        print(
            json.dumps(
                {
                    "components": [entry.model_dump() for entry in components],
                    "templates": templates,
                },
                ensure_ascii=False,
                indent=2,
            )
        )
        return 0

    if not components:
        logger.warning("Component catalog is empty or the mapping service is unreachable")
    print(f"Components ({len(components)}):")
    for entry in components:
        print(f"  {entry.name:<24} {entry.description or ''}")
    print(f"\nTemplates: {', '.join(templates)}")
    return 0


# =============================================================================
# MCP Server Command
# =============================================================================


def handle_mcp_command(argv: list[str]) -> int:
    """Handle MCP server commands.

    Usage:
        python . mcp run              # Start in STDIO mode
        python . mcp serve            # Start in HTTP mode
        python . mcp serve --port 8080
        python . mcp info             # Show server info
    """
    if not argv:
        print("MCP Server Commands")
        print("\nUsage: python . mcp {command} [options]")
        print("\nCommands:")
        print("  run                 Start server in STDIO mode")
        print("  serve               Start server in HTTP mode")
        print("  info                Show server information")
        print("\nOptions for 'serve':")
        print("  --host HOST         Bind address (default: MCP_HOST)")
        print("  --port PORT         Port number (default: MCP_PORT)")
        print("  --transport TYPE    Transport: http or sse (default: http)")
        print("\nClient Configuration:")
        print("  {")
        print('    "mcpServers": {')
        print('      "voxlayout": {')
        print('        "command": "python",')
        print('        "args": [".", "mcp", "run"],')
        print('        "cwd": "/path/to/voxlayout"')
        print("      }")
        print("    }")
        print("  }")
        return 1

    subcommand = argv[0]
    subargs = argv[1:]

    if subcommand == "run":
        from voxlayout.mcp import TransportType, run_server

        logger.info("Starting MCP server in STDIO mode...")
        run_server(transport=TransportType.STDIO)
        return 0

    elif subcommand == "serve":
        from voxlayout.mcp import TransportType, run_server

        parser = argparse.ArgumentParser(prog="python . mcp serve")
        parser.add_argument("--host", type=str, default=None)
        parser.add_argument("--port", type=int, default=None)
        parser.add_argument("--transport", type=str, choices=["http", "sse"], default="http")
        args = parser.parse_args(subargs)

        run_server(transport=TransportType(args.transport), host=args.host, port=args.port)
        return 0

    elif subcommand == "info":
        from voxlayout.mcp import TOOL_NAMES, get_server_capabilities, get_server_version

        print("voxlayout MCP Server")
        print("=" * 40)
        print(f"Version: {get_server_version()}")
        print("\nCapabilities:")
        for cap, enabled in get_server_capabilities().items():
            if isinstance(enabled, bool):
                print(f"  {cap}: {'enabled' if enabled else 'disabled'}")
        print("\nAvailable Tools:")
        for name in TOOL_NAMES:
            print(f"  - {name}")
        return 0

    else:
        logger.error(f"Unknown mcp command: {subcommand}")
        return handle_mcp_command([])


def show_help() -> None:
    """Display CLI help message."""
    print("Usage: python . {command} [args]")
    print("\n=== Layout Generation ===")
    print("  generate   Generate a page layout from text or audio")
    print("  layout     Load or list persisted layouts")
    print("\n=== Services ===")
    print("  health     Check backend service health")
    print("  catalog    List visual-mapping components and templates")
    print("\n=== MCP Server ===")
    print("  mcp        Run MCP server (STDIO or HTTP mode)")
    print("\nExamples:")
    print("  python . generate text 'создай заголовок и кнопку'")
    print("  python . generate audio recording.webm --new-session")
    print("  python . layout load                # Current CLI session")
    print("  python . layout list                # sqlite store only")
    print("  python . health")
    print("  python . mcp serve --port 18090")


def main() -> int:
    """Main entry point for the CLI."""
    if len(sys.argv) < 2:
        show_help()
        return 1

    command = sys.argv[1]
    rest_args = sys.argv[2:]

    if command in ("-h", "--help"):
        show_help()
        return 0

    commands = {
        "generate": lambda: handle_generate_command(rest_args),
        "layout": lambda: handle_layout_command(rest_args),
        "health": lambda: cmd_health(rest_args),
        "catalog": lambda: cmd_catalog(rest_args),
        "mcp": lambda: handle_mcp_command(rest_args),
    }

    if command not in commands:
        logger.error(f"Unknown command: {command}")
        show_help()
        return 1

    setup_logging()
    try:
        return commands[command]()
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except Exception as e:
        logger.error(f"{command} failed: {e}")
        logger.debug("Traceback", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
