"""Stage bookkeeping for one generation request.

The tracker is the only writer of a request's stage results. Every status
change is published to the progress reporter in the order it happens.
"""

import logging
from dataclasses import dataclass
from typing import Any

from voxlayout.progress import STAGE_ORDER, ProgressReporter, Stage, StageStatus, StageTransition

logger = logging.getLogger(__name__)

# (start, end) overall progress for each stage
STAGE_PROGRESS: dict[Stage, tuple[int, int]] = {
    Stage.TRANSCRIBE: (10, 25),
    Stage.EXTRACT_ENTITIES: (40, 60),
    Stage.MAP_VISUAL: (70, 85),
    Stage.PERSIST: (90, 100),
}


class StageOrderError(RuntimeError):
    """A stage transition would break the fixed stage order.

    Attributes:
        stage: Stage whose transition was rejected.
        blocking: Earlier required stage that is not completed.
    """

    def __init__(self, stage: Stage, blocking: Stage):
        self.stage = stage
        self.blocking = blocking
        super().__init__(
            f"Cannot complete '{stage.value}' before required stage "
            f"'{blocking.value}' is completed"
        )


@dataclass
class StageResult:
    """Current state of one stage.

    Attributes:
        stage: Stage identifier.
        status: Lifecycle status.
        progress: Overall progress at the last transition.
        payload: Stage output, if any.
        error: Error that failed or degraded the stage.
        message: Last transition message.
    """

    stage: Stage
    status: StageStatus = StageStatus.PENDING
    progress: int = 0
    payload: Any = None
    error: Exception | None = None
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
            "error": str(self.error) if self.error else None,
        }


class StageTracker:
    """Owns the stage results of a single request.

    Args:
        session_id: Session the request belongs to.
        reporter: Progress channel; events are dropped if None.
        required: Stages that must complete before any later stage can.
    """

    def __init__(
        self,
        session_id: str,
        reporter: ProgressReporter | None = None,
        required: tuple[Stage, ...] = (Stage.EXTRACT_ENTITIES,),
    ):
        self.session_id = session_id
        self.reporter = reporter
        self.required = frozenset(required)
        self.results: dict[Stage, StageResult] = {stage: StageResult(stage) for stage in STAGE_ORDER}

    def __getitem__(self, stage: Stage) -> StageResult:
        return self.results[stage]

    def start(self, stage: Stage, message: str = "") -> None:
        self._transition(stage, StageStatus.IN_PROGRESS, STAGE_PROGRESS[stage][0], message)

    def complete(
        self,
        stage: Stage,
        message: str = "",
        *,
        payload: Any = None,
        error: Exception | None = None,
    ) -> None:
        """Mark a stage completed.

        ``error`` records a degradation the stage recovered from.

        Raises:
            StageOrderError: If an earlier required stage is not completed.
        """
        for earlier in STAGE_ORDER[: STAGE_ORDER.index(stage)]:
            if earlier in self.required and self.results[earlier].status != StageStatus.COMPLETED:
                raise StageOrderError(stage, earlier)
        self._transition(
            stage, StageStatus.COMPLETED, STAGE_PROGRESS[stage][1], message, payload, error
        )

    def fail(self, stage: Stage, error: Exception, message: str = "") -> None:
        progress = self.results[stage].progress or STAGE_PROGRESS[stage][0]
        self._transition(stage, StageStatus.FAILED, progress, message or str(error), error=error)

    def _transition(
        self,
        stage: Stage,
        status: StageStatus,
        progress: int,
        message: str,
        payload: Any = None,
        error: Exception | None = None,
    ) -> None:
        result = self.results[stage]
        result.status = status
        result.progress = progress
        result.message = message
        if payload is not None:
            result.payload = payload
        if error is not None:
            result.error = error
        logger.debug(f"{self.session_id}: {stage.value} -> {status.value} ({progress}%)")

        if self.reporter is not None:
            self.reporter.publish(
                StageTransition(
                    session_id=self.session_id,
                    stage=stage,
                    status=status,
                    progress=progress,
                    message=message,
                    payload=payload,
                    error=error,
                )
            )


__all__ = ["STAGE_PROGRESS", "StageOrderError", "StageResult", "StageTracker"]
