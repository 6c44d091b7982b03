"""Tests for the generation pipeline."""

import json

import httpx
import pytest

from voxlayout.catalog import CatalogEntry
from voxlayout.invoker import CancellationToken, ValidationError
from voxlayout.layout import normalize
from voxlayout.progress import ProgressReporter, RecordingSubscriber, Stage, StageStatus

from . import (
    AudioInput,
    FailureReason,
    GenerationOptions,
    LayoutPipeline,
    PipelineState,
    StageOrderError,
    StageTracker,
    TextInput,
)

SCENARIO_TEXT = "создай заголовок и кнопку"


@pytest.fixture
def recorder() -> RecordingSubscriber:
    return RecordingSubscriber()


@pytest.fixture
def pipeline(services, recorder) -> LayoutPipeline:
    reporter = ProgressReporter()
    reporter.subscribe(recorder)
    return LayoutPipeline.from_services(services, reporter=reporter)


# =============================================================================
# Text generation
# =============================================================================


class TestTextGeneration:
    """Tests for text requests on the happy and fallback paths."""

    @pytest.mark.unit
    def test_scenario(self, pipeline, fake_backend, session):
        """Two exact matches land in hero/main; footer is empty."""
        result = pipeline.generate(TextInput(SCENARIO_TEXT), session=session)

        assert result.state == PipelineState.COMPLETE
        assert result.ok
        layout = result.layout
        assert layout.sections.hero or layout.sections.main
        assert layout.sections.footer == []
        assert [c.match_type for _, c in layout.components()] == ["exact", "exact"]
        assert [c.type for _, c in layout.components()] == ["ui.heading", "ui.button"]
        assert layout.metadata.session_id == "test-session"
        assert layout.metadata.source_stage == "map-visual"
        assert result.persisted is True
        assert result.warnings == []
        assert fake_backend.routes() == ["ingest", "entities", "map", "save"]

    @pytest.mark.unit
    def test_entities_reach_mapping(self, pipeline, fake_backend, session):
        """Extracted entities and template are sent to mapping."""
        pipeline.generate(
            TextInput(SCENARIO_TEXT), GenerationOptions(template="one-column"), session=session
        )
        body = json.loads(fake_backend.requests_for("map")[0].content)
        assert body["entities"] == ["заголовок", "кнопка"]
        assert body["template"] == "one-column"

    @pytest.mark.unit
    def test_empty_entities_fall_back(self, pipeline, fake_backend, session):
        """Empty entities use the extraction layout and never call mapping."""
        fake_backend.entities["entities"] = []
        result = pipeline.generate(TextInput(SCENARIO_TEXT), session=session)

        assert result.state == PipelineState.COMPLETE
        assert "map" not in fake_backend.routes()
        assert "extract-layout" in fake_backend.routes()
        assert result.layout.metadata.source_stage == "extract-entities"
        hero = result.layout.sections.hero[0]
        assert hero.type == "ui.heading"
        assert hero.confidence == pytest.approx(0.7)
        main = result.layout.sections.main[0]
        assert (main.confidence, main.match_type) == (1.0, "unknown")
        assert result.stages[Stage.MAP_VISUAL].status == StageStatus.PENDING

    @pytest.mark.unit
    def test_skip_visual_mapping(self, pipeline, fake_backend, session):
        """skip_visual_mapping takes the fallback path."""
        result = pipeline.generate(
            TextInput(SCENARIO_TEXT), GenerationOptions(skip_visual_mapping=True), session=session
        )
        assert result.ok
        assert "map" not in fake_backend.routes()
        assert result.layout.metadata.source_stage == "extract-entities"

    @pytest.mark.unit
    def test_extraction_failure_degrades(self, pipeline, fake_backend, session):
        """Entity retrieval failure is a warning, not a failure."""
        fake_backend.failures["entities"] = 503
        result = pipeline.generate(TextInput(SCENARIO_TEXT), session=session)

        assert result.ok
        assert result.entities.failed
        assert any(w.startswith("extract-entities") for w in result.warnings)
        assert result.stages[Stage.EXTRACT_ENTITIES].status == StageStatus.COMPLETED
        assert "map" not in fake_backend.routes()

    @pytest.mark.unit
    def test_layout_round_trips_through_normalize(self, pipeline, session):
        """A pipeline layout is a fixed point of normalize."""
        layout = pipeline.generate(TextInput(SCENARIO_TEXT), session=session).layout
        again = normalize(layout)
        assert again == layout
        assert again.model_dump_json(by_alias=True) == layout.model_dump_json(by_alias=True)

    @pytest.mark.unit
    def test_match_metadata_fills_bare_sections(self, pipeline, fake_backend, session):
        """Sections that carry only component names take confidence and type from matches."""
        fake_backend.mapping["layout"]["sections"] = {
            "hero": [{"component": "heading"}],
            "main": ["button"],
            "footer": [],
        }
        result = pipeline.generate(TextInput(SCENARIO_TEXT), session=session)

        components = [c for _, c in result.layout.components()]
        assert [c.match_type for c in components] == ["exact", "exact"]
        assert [c.confidence for c in components] == [0.95, 0.9]
        assert [m.term for m in result.matches] == ["заголовок", "кнопка"]
        assert result.to_dict()["matches"][1]["component"] == "ui.button"

    @pytest.mark.unit
    def test_non_numeric_confidence_completes(self, pipeline, fake_backend, session):
        """A non-numeric confidence does not fail the request."""
        hero = fake_backend.mapping["layout"]["sections"]["hero"][0]
        del hero["confidence"], hero["match_type"]
        hero["metadata"] = {"confidence": "high"}
        result = pipeline.generate(TextInput(SCENARIO_TEXT), session=session)

        assert result.state == PipelineState.COMPLETE
        heading = result.layout.sections.hero[0]
        assert (heading.confidence, heading.match_type) == (0.95, "exact")

    @pytest.mark.unit
    def test_allocates_session(self, pipeline):
        """Without a session a fresh one is allocated."""
        result = pipeline.generate(TextInput(SCENARIO_TEXT))
        assert result.session_id
        assert result.layout.metadata.session_id == result.session_id


# =============================================================================
# Visual mapping degradation
# =============================================================================


class TestMappingFallback:
    """Tests for visual-mapping failures."""

    @pytest.mark.unit
    def test_timeout_falls_back_with_warning(self, pipeline, fake_backend, session, sleeps):
        """Mapping timeout after retries completes via the extraction layout."""
        fake_backend.failures["map"] = httpx.ReadTimeout("mapping too slow")
        result = pipeline.generate(TextInput(SCENARIO_TEXT), session=session)

        assert result.state == PipelineState.COMPLETE
        assert len(fake_backend.requests_for("map")) == 3
        assert sleeps == [1.0, 2.0]
        assert any(w.startswith("map-visual") for w in result.warnings)
        assert result.layout.metadata.source_stage == "extract-entities"
        assert result.stages[Stage.MAP_VISUAL].status == StageStatus.FAILED
        assert result.persisted

    @pytest.mark.unit
    def test_both_layouts_unavailable(self, pipeline, fake_backend, session):
        """With no layout from either service the result is an empty page."""
        fake_backend.failures["map"] = 500
        fake_backend.failures["extract-layout"] = 500
        result = pipeline.generate(TextInput(SCENARIO_TEXT), session=session)

        assert result.ok
        assert list(result.layout.components()) == []
        stages = {w.split(":", 1)[0] for w in result.warnings}
        assert stages == {"map-visual", "extract-entities"}

    @pytest.mark.unit
    def test_low_confidence_kept(self, pipeline, fake_backend, session):
        """Low-confidence matches are preserved."""
        fake_backend.mapping["layout"]["sections"]["main"][0]["confidence"] = 0.05
        fake_backend.mapping["layout"]["sections"]["main"][0]["match_type"] = "fuzzy"
        result = pipeline.generate(TextInput(SCENARIO_TEXT), session=session)
        button = result.layout.sections.main[0]
        assert (button.confidence, button.match_type) == (0.05, "fuzzy")

    @pytest.mark.unit
    def test_catalog_warning_with_warm_cache(self, pipeline, services, session):
        """Types missing from a fresh catalog are flagged, not dropped."""
        services.catalog.set([CatalogEntry(name="ui.heading")])
        result = pipeline.generate(TextInput(SCENARIO_TEXT), session=session)

        assert len(result.layout.sections.main) == 1
        assert result.warnings == ["map-visual: component 'ui.button' in main is not in the catalog"]

    @pytest.mark.unit
    def test_cold_catalog_is_not_fetched(self, pipeline, fake_backend, session):
        """The pipeline never fetches the catalog itself."""
        pipeline.generate(TextInput(SCENARIO_TEXT), session=session)
        assert "components" not in fake_backend.routes()


# =============================================================================
# Persistence
# =============================================================================


class TestPersistStage:
    """Tests for the persist stage."""

    @pytest.mark.unit
    def test_save_failure_completes_unpersisted(self, pipeline, fake_backend, session):
        """Exhausted save retries still complete with persisted=False."""
        fake_backend.failures["save"] = 500
        result = pipeline.generate(TextInput(SCENARIO_TEXT), session=session)

        assert result.state == PipelineState.COMPLETE
        assert result.persisted is False
        assert result.layout is not None
        assert any(w.startswith("persist") for w in result.warnings)
        assert len(fake_backend.requests_for("save")) == 3

    @pytest.mark.unit
    def test_persist_disabled(self, pipeline, fake_backend, session):
        """persist=False leaves the stage pending."""
        result = pipeline.generate(
            TextInput(SCENARIO_TEXT), GenerationOptions(persist=False), session=session
        )
        assert result.ok
        assert result.persisted is False
        assert "save" not in fake_backend.routes()
        assert result.stages[Stage.PERSIST].status == StageStatus.PENDING

    @pytest.mark.unit
    def test_saved_layout_loads(self, pipeline, services, session):
        """The persisted layout can be loaded back."""
        result = pipeline.generate(TextInput(SCENARIO_TEXT), session=session)
        assert services.store.load("test-session") == result.layout


# =============================================================================
# Audio generation
# =============================================================================


class TestAudioGeneration:
    """Tests for audio requests."""

    @pytest.mark.unit
    def test_audio_success(self, pipeline, fake_backend, session, audio_bytes):
        """Audio is transcribed and then follows the text path."""
        result = pipeline.generate(AudioInput(audio_bytes), session=session)

        assert result.ok
        assert result.transcript.text == SCENARIO_TEXT
        assert fake_backend.routes() == ["transcribe", "ingest", "entities", "map", "save"]
        assert result.stages[Stage.TRANSCRIBE].status == StageStatus.COMPLETED

    @pytest.mark.unit
    def test_too_short(self, pipeline, fake_backend, session):
        """5000 bytes of audio fails without reaching extraction."""
        result = pipeline.generate(AudioInput(b"\x00" * 5000), session=session)

        assert result.state == PipelineState.FAILED
        assert result.failure_reason == FailureReason.TOO_SHORT
        assert result.failure_reason.hint
        assert result.layout is None
        assert not any(r.startswith("ingest") for r in fake_backend.routes())

    @pytest.mark.unit
    def test_silence(self, pipeline, fake_backend, session, audio_bytes):
        """Empty transcription is reported as silence."""
        fake_backend.transcript["text"] = ""
        result = pipeline.generate(AudioInput(audio_bytes), session=session)

        assert result.failure_reason == FailureReason.SILENCE_DETECTED
        assert fake_backend.routes() == ["transcribe"]

    @pytest.mark.unit
    def test_service_unavailable(self, pipeline, fake_backend, session, audio_bytes):
        """Transcription outage is a service-error failure."""
        fake_backend.failures["transcribe"] = 503
        result = pipeline.generate(AudioInput(audio_bytes), session=session)

        assert result.failure_reason == FailureReason.SERVICE_ERROR
        assert len(fake_backend.requests_for("transcribe")) == 3
        assert result.stages[Stage.TRANSCRIBE].status == StageStatus.FAILED
        assert result.to_dict()["error"]["kind"] == "http-status"


# =============================================================================
# Validation
# =============================================================================


class TestValidation:
    """Tests for synchronous request validation."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "request_, options",
        [
            (AudioInput(b"data", content_type="video/mp4"), GenerationOptions()),
            (AudioInput(b""), GenerationOptions()),
            (TextInput("  \n "), GenerationOptions()),
            (TextInput(SCENARIO_TEXT), GenerationOptions(template="no-such-template")),
        ],
    )
    def test_rejected_before_any_stage(self, pipeline, fake_backend, recorder, request_, options):
        """Invalid input raises before any call or progress event."""
        with pytest.raises(ValidationError):
            pipeline.generate(request_, options)
        assert fake_backend.calls == []
        assert recorder.events == []

    @pytest.mark.unit
    def test_unsupported_request_type(self, pipeline):
        """Only AudioInput and TextInput are accepted."""
        with pytest.raises(ValidationError, match="Unsupported request type"):
            pipeline.generate({"text": SCENARIO_TEXT})


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:
    """Tests for cancellation at stage boundaries."""

    @pytest.mark.unit
    def test_cancelled_before_start(self, pipeline, fake_backend, session):
        """A cancelled token fails the request without calls."""
        token = CancellationToken()
        token.cancel()
        result = pipeline.generate(TextInput(SCENARIO_TEXT), session=session, cancel=token)

        assert result.state == PipelineState.FAILED
        assert result.failure_reason == FailureReason.CANCELLED
        assert fake_backend.calls == []

    @pytest.mark.unit
    def test_cancelled_during_mapping(self, services, fake_backend, session):
        """Cancelling when mapping starts stops before the mapping call."""
        token = CancellationToken()
        reporter = ProgressReporter()
        reporter.subscribe(
            lambda event: token.cancel()
            if event.stage == Stage.MAP_VISUAL and event.status == StageStatus.IN_PROGRESS
            else None
        )
        pipeline = LayoutPipeline.from_services(services, reporter=reporter)
        result = pipeline.generate(TextInput(SCENARIO_TEXT), session=session, cancel=token)

        assert result.failure_reason == FailureReason.CANCELLED
        assert result.stages[Stage.MAP_VISUAL].status == StageStatus.FAILED
        assert "map" not in fake_backend.routes()
        assert "save" not in fake_backend.routes()


# =============================================================================
# Progress
# =============================================================================


class TestProgress:
    """Tests for progress events."""

    @pytest.mark.unit
    def test_event_order(self, pipeline, recorder, session):
        """Events arrive in transition order with rising progress."""
        pipeline.generate(TextInput(SCENARIO_TEXT), session=session)

        assert [(e.stage, e.status) for e in recorder.events] == [
            (Stage.EXTRACT_ENTITIES, StageStatus.IN_PROGRESS),
            (Stage.EXTRACT_ENTITIES, StageStatus.COMPLETED),
            (Stage.MAP_VISUAL, StageStatus.IN_PROGRESS),
            (Stage.MAP_VISUAL, StageStatus.COMPLETED),
            (Stage.PERSIST, StageStatus.IN_PROGRESS),
            (Stage.PERSIST, StageStatus.COMPLETED),
        ]
        progress = [e.progress for e in recorder.events]
        assert progress == sorted(progress)
        assert progress[-1] == 100
        assert {e.session_id for e in recorder.events} == {"test-session"}

    @pytest.mark.unit
    def test_failing_subscriber_does_not_break_run(self, services, session):
        """A raising subscriber is isolated from the request."""
        reporter = ProgressReporter()

        def broken(event):
            raise RuntimeError("subscriber bug")

        reporter.subscribe(broken)
        pipeline = LayoutPipeline.from_services(services, reporter=reporter)
        assert pipeline.generate(TextInput(SCENARIO_TEXT), session=session).ok


class TestStageTracker:
    """Tests for stage ordering."""

    @pytest.mark.unit
    def test_rejects_completion_before_required(self):
        """Persist cannot complete before extraction."""
        tracker = StageTracker("s1")
        with pytest.raises(StageOrderError) as exc_info:
            tracker.complete(Stage.PERSIST)
        assert exc_info.value.blocking == Stage.EXTRACT_ENTITIES

    @pytest.mark.unit
    def test_audio_requires_transcription(self):
        """With transcription required, extraction waits for it."""
        tracker = StageTracker("s1", required=(Stage.TRANSCRIBE, Stage.EXTRACT_ENTITIES))
        with pytest.raises(StageOrderError):
            tracker.complete(Stage.EXTRACT_ENTITIES)
        tracker.complete(Stage.TRANSCRIBE)
        tracker.complete(Stage.EXTRACT_ENTITIES)
        assert tracker[Stage.EXTRACT_ENTITIES].progress == 60

    @pytest.mark.unit
    def test_optional_stage_may_fail(self):
        """A failed map-visual does not block persist."""
        tracker = StageTracker("s1")
        tracker.complete(Stage.EXTRACT_ENTITIES)
        tracker.fail(Stage.MAP_VISUAL, ValidationError("x"))
        tracker.complete(Stage.PERSIST)
        assert tracker[Stage.PERSIST].status == StageStatus.COMPLETED


# =============================================================================
# Concurrency
# =============================================================================


class TestRunConcurrent:
    """Tests for concurrent sessions."""

    @pytest.mark.unit
    def test_independent_sessions(self, pipeline, fake_backend):
        """Each request runs under its own session."""
        results = pipeline.run_concurrent(
            [TextInput(SCENARIO_TEXT), TextInput("добавь подвал")], max_workers=2
        )

        assert [r.state for r in results] == [PipelineState.COMPLETE] * 2
        session_ids = {r.session_id for r in results}
        assert len(session_ids) == 2
        assert set(fake_backend.saved) == session_ids

    @pytest.mark.unit
    def test_validates_all_first(self, pipeline, fake_backend):
        """One invalid request prevents the whole batch."""
        with pytest.raises(ValidationError):
            pipeline.run_concurrent([TextInput(SCENARIO_TEXT), TextInput("")])
        assert fake_backend.calls == []


class TestFailureReason:
    """Tests for FailureReason."""

    @pytest.mark.unit
    def test_unknown_reason_is_service_error(self):
        """Errors without a known reason map to service-error."""
        assert FailureReason.from_error(ValidationError("x", reason="other")) == FailureReason.SERVICE_ERROR

    @pytest.mark.unit
    def test_every_reason_has_hint(self):
        """Each reason carries a user hint."""
        assert all(reason.hint for reason in FailureReason)
