"""Generation pipeline: stage state machine, fallback policy and aggregation."""

from voxlayout.services import AudioInput, TextInput

from .lib import (
    FailureReason,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    LayoutPipeline,
    PipelineState,
)
from .stages import STAGE_PROGRESS, StageOrderError, StageResult, StageTracker

__all__ = [
    # Orchestrator
    "LayoutPipeline",
    "PipelineState",
    "FailureReason",
    "GenerationOptions",
    "GenerationRequest",
    "GenerationResult",
    # Requests
    "AudioInput",
    "TextInput",
    # Stages
    "STAGE_PROGRESS",
    "StageOrderError",
    "StageResult",
    "StageTracker",
]
