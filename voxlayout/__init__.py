"""voxlayout: voice/text to page-layout generation pipeline."""

from voxlayout.layout import CanonicalLayout, ComponentInstance, Section, normalize
from voxlayout.pipeline import (
    AudioInput,
    GenerationOptions,
    GenerationResult,
    LayoutPipeline,
    PipelineState,
    TextInput,
)
from voxlayout.session import SessionContext

__all__ = [
    # Layout
    "CanonicalLayout",
    "ComponentInstance",
    "Section",
    "normalize",
    # Pipeline
    "LayoutPipeline",
    "GenerationOptions",
    "GenerationResult",
    "PipelineState",
    "AudioInput",
    "TextInput",
    # Session
    "SessionContext",
]
