"""Progress reporting for generation requests.

The orchestrator publishes a typed `StageTransition` after every stage
transition. Delivery is synchronous, on the orchestrator's thread, in
publish order.

Example:
    >>> reporter = ProgressReporter()
    >>> recorder = RecordingSubscriber()
    >>> unsubscribe = reporter.subscribe(recorder)
    >>> reporter.publish(StageTransition("s1", Stage.TRANSCRIBE, StageStatus.IN_PROGRESS, 10))
    >>> [e.stage for e in recorder.events]
    [<Stage.TRANSCRIBE: 'transcribe'>]
    >>> unsubscribe()
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    """Pipeline stages in their fixed order."""

    TRANSCRIBE = "transcribe"
    EXTRACT_ENTITIES = "extract-entities"
    MAP_VISUAL = "map-visual"
    PERSIST = "persist"


STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)


class StageStatus(str, Enum):
    """Lifecycle of a single stage."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class StageTransition:
    """A stage status change.

    Attributes:
        session_id: Session the request belongs to.
        stage: Stage that changed.
        status: New status.
        progress: Overall request progress, 0-100.
        message: Human-readable description.
        payload: Optional stage output (transcript, entity set, layout).
        error: Optional error that caused a failure or degradation.
        timestamp: When the transition happened (UTC).
    """

    session_id: str
    stage: Stage
    status: StageStatus
    progress: int = 0
    message: str = ""
    payload: Any = None
    error: Exception | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "stage": self.stage.value,
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
            "error": str(self.error) if self.error else None,
            "timestamp": self.timestamp.isoformat(),
        }


Subscriber = Callable[[StageTransition], None]


class ProgressReporter:
    """Observer channel for stage transitions.

    Subscribers are called in subscription order for every event. A failing
    subscriber is logged and does not affect other subscribers or the
    publishing request.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber.

        Returns:
            Function that removes the subscriber.
        """
        with self._lock:
            self._subscribers.append(subscriber)
        return lambda: self.unsubscribe(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: StageTransition) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.exception(
                    f"Progress subscriber failed on {event.stage.value}/{event.status.value}"
                )


class RecordingSubscriber:
    """Subscriber that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[StageTransition] = []

    def __call__(self, event: StageTransition) -> None:
        self.events.append(event)

    def statuses(self, stage: Stage) -> list[StageStatus]:
        return [e.status for e in self.events if e.stage == stage]


def logging_subscriber(event: StageTransition) -> None:
    """Subscriber that writes each transition to the log."""
    level = logging.WARNING if event.status == StageStatus.FAILED else logging.INFO
    logger.log(
        level,
        f"[{event.progress:3d}%] {event.stage.value}: {event.status.value}"
        + (f" - {event.message}" if event.message else ""),
        extra={"session_id": event.session_id},
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
