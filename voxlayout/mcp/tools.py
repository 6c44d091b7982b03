"""Tool implementations behind the MCP server.

Each tool is a plain function over a process-wide ServiceBundle so it can be
called directly (tests, CLI) or through FastMCP.
"""

import base64
import binascii
import logging
from dataclasses import asdict
from functools import lru_cache
from typing import Any

from voxlayout.config import EnvVar, get_environment
from voxlayout.invoker import ValidationError
from voxlayout.layout import layout_stats
from voxlayout.pipeline import (
    AudioInput,
    GenerationOptions,
    GenerationResult,
    LayoutPipeline,
    TextInput,
)
from voxlayout.progress import ProgressReporter, logging_subscriber
from voxlayout.services import ServiceBundle, create_services
from voxlayout.session import SessionContext

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_services() -> ServiceBundle:
    """Service bundle shared by all tool calls."""
    return create_services()


def get_pipeline() -> LayoutPipeline:
    services = get_services()
    reporter = ProgressReporter()
    reporter.subscribe(logging_subscriber)
    return LayoutPipeline.from_services(
        services,
        reporter=reporter,
        default_template=get_environment(EnvVar.DEFAULT_TEMPLATE),
        default_language=get_environment(EnvVar.DEFAULT_LANGUAGE),
    )


def _session(session_id: str | None) -> SessionContext:
    client_id = get_environment(EnvVar.CLIENT_ID)
    if session_id:
        return SessionContext.with_id(session_id, client_id)
    return SessionContext(client_id=client_id)


def _response(result: GenerationResult) -> dict[str, Any]:
    response = result.to_dict()
    if result.layout is not None:
        response["stats"] = asdict(layout_stats(result.layout))
    return response


def _run(
    request: AudioInput | TextInput,
    options: GenerationOptions,
    session_id: str | None,
) -> dict[str, Any]:
    try:
        result = get_pipeline().generate(request, options, session=_session(session_id))
    except ValidationError as e:
        raise ValueError(str(e)) from e
    return _response(result)


def generate_layout(
    text: str,
    language: str | None = None,
    template: str | None = None,
    skip_visual_mapping: bool = False,
    persist: bool = True,
    session_id: str | None = None,
) -> dict[str, Any]:
    """Generate a page layout from a text description.

    Returns:
        GenerationResult as a dict, plus layout stats.

    Raises:
        ValueError: If the text is empty or the template unknown.
    """
    options = GenerationOptions(
        skip_visual_mapping=skip_visual_mapping,
        template=template,
        persist=persist,
        language=language,
    )
    logger.info(f"Generating layout from {len(text)} chars of text")
    return _run(TextInput(text, language), options, session_id)


def generate_layout_from_audio(
    audio_base64: str,
    content_type: str = "audio/webm",
    language: str | None = None,
    template: str | None = None,
    skip_visual_mapping: bool = False,
    persist: bool = True,
    session_id: str | None = None,
) -> dict[str, Any]:
    """Generate a page layout from a base64-encoded recording.

    Raises:
        ValueError: If the audio is not valid base64, not audio, or empty.
    """
    try:
        data = base64.b64decode(audio_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"audio_base64 is not valid base64: {e}") from e

    extension = content_type.split("/", 1)[-1].split(";", 1)[0] or "bin"
    options = GenerationOptions(
        skip_visual_mapping=skip_visual_mapping,
        template=template,
        persist=persist,
        language=language,
    )
    audio = AudioInput(
        data=data,
        content_type=content_type,
        filename=f"recording.{extension}",
        language=language,
    )
    logger.info(f"Generating layout from {len(data)} bytes of {content_type}")
    return _run(audio, options, session_id)


def load_layout(session_id: str) -> dict[str, Any]:
    """Load the persisted layout for a session.

    Raises:
        ValueError: If no layout is stored for the session.
    """
    layout = get_services().store.load(session_id)
    if layout is None:
        raise ValueError(f"Layout for session '{session_id}' not found")
    return {
        "session_id": session_id,
        "layout": layout.to_wire(),
        "stats": asdict(layout_stats(layout)),
    }


def list_components(refresh: bool = False) -> dict[str, Any]:
    """List the visual-mapping component catalog and templates."""
    services = get_services()
    cached = not refresh and services.catalog.get() is not None
    components = services.mapping.list_components(refresh=refresh)
    return {
        "components": [entry.model_dump() for entry in components],
        "count": len(components),
        "cached": cached,
        "templates": services.mapping.get_templates(),
    }


def status() -> dict[str, Any]:
    """Health report with action items and next steps."""
    from voxlayout.health import HealthStatus, get_system_health

    health = get_system_health(get_services())
    result = health.to_dict()

    actions = health.action_items()
    if actions:
        result["action_required"] = actions

    if health.status == HealthStatus.HEALTHY:
        next_steps = [
            "Ready! Call generate_layout(text) to create a page layout.",
            "Example: generate_layout('создай заголовок и кнопку')",
        ]
    elif health.can_generate:
        next_steps = [
            "Generation available. Some stages will fall back.",
            "Call generate_layout(text) to create a page layout.",
        ]
    else:
        next_steps = [
            "Not ready. Review action_required items above.",
            "Most common: the extraction service is not running (EXTRACT_URL).",
        ]
    result["next_steps"] = next_steps
    return result


__all__ = [
    "generate_layout",
    "generate_layout_from_audio",
    "get_pipeline",
    "get_services",
    "list_components",
    "load_layout",
    "status",
]
