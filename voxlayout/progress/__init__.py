"""Progress reporter: typed stage transition events."""

from .lib import (
    STAGE_ORDER,
    ProgressReporter,
    RecordingSubscriber,
    Stage,
    StageStatus,
    StageTransition,
    Subscriber,
    logging_subscriber,
)

__all__ = [
    "STAGE_ORDER",
    "ProgressReporter",
    "RecordingSubscriber",
    "Stage",
    "StageStatus",
    "StageTransition",
    "Subscriber",
    "logging_subscriber",
]
