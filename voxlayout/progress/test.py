"""Tests for the progress reporter."""

import logging

import pytest

from .lib import (
    ProgressReporter,
    RecordingSubscriber,
    Stage,
    StageStatus,
    StageTransition,
    logging_subscriber,
)


def event(stage=Stage.EXTRACT_ENTITIES, status=StageStatus.IN_PROGRESS, progress=40):
    return StageTransition("s1", stage, status, progress)


class TestProgressReporter:
    """Tests for subscribe/publish."""

    @pytest.mark.unit
    def test_delivers_in_publish_order(self):
        """Subscribers see events in the order published."""
        reporter = ProgressReporter()
        recorder = RecordingSubscriber()
        reporter.subscribe(recorder)

        reporter.publish(event(Stage.EXTRACT_ENTITIES, StageStatus.IN_PROGRESS, 30))
        reporter.publish(event(Stage.EXTRACT_ENTITIES, StageStatus.COMPLETED, 50))
        reporter.publish(event(Stage.PERSIST, StageStatus.COMPLETED, 100))

        assert [e.progress for e in recorder.events] == [30, 50, 100]
        assert recorder.statuses(Stage.EXTRACT_ENTITIES) == [
            StageStatus.IN_PROGRESS,
            StageStatus.COMPLETED,
        ]

    @pytest.mark.unit
    def test_unsubscribe(self):
        """Unsubscribed callbacks receive nothing further."""
        reporter = ProgressReporter()
        recorder = RecordingSubscriber()
        unsubscribe = reporter.subscribe(recorder)
        reporter.publish(event())
        unsubscribe()
        reporter.publish(event())
        assert len(recorder.events) == 1
        assert reporter.subscriber_count == 0

    @pytest.mark.unit
    def test_failing_subscriber_isolated(self):
        """One failing subscriber does not block others."""
        reporter = ProgressReporter()
        recorder = RecordingSubscriber()

        def broken(_event):
            raise RuntimeError("boom")

        reporter.subscribe(broken)
        reporter.subscribe(recorder)
        reporter.publish(event())
        assert len(recorder.events) == 1

    @pytest.mark.unit
    def test_to_dict(self):
        """Events serialize with string enums."""
        data = event(Stage.MAP_VISUAL, StageStatus.FAILED).to_dict()
        assert data["stage"] == "map-visual"
        assert data["status"] == "failed"

    @pytest.mark.unit
    def test_logging_subscriber(self, caplog):
        """Logging subscriber writes failures as warnings."""
        with caplog.at_level(logging.INFO, logger="voxlayout.progress.lib"):
            logging_subscriber(event(Stage.MAP_VISUAL, StageStatus.FAILED, 70))
        assert any(
            r.levelno == logging.WARNING and "map-visual" in r.getMessage() for r in caplog.records
        )
