"""LayoutPipeline orchestrator for voice and text layout generation.

Sequences the transcription, extraction, mapping and persistence adapters
for one generation request and converges on a CanonicalLayout.

Only transcription can fail a request. Every later stage degrades:
an empty entity set or a failed visual mapping falls back to the
extraction service's own layout, and a failed save still completes with
``persisted=False``.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from voxlayout.catalog import ComponentCatalogCache
from voxlayout.invoker import CancellationToken, CancelledError, InvokeError, ValidationError
from voxlayout.layout import (
    DEFAULT_TEMPLATE,
    KNOWN_TEMPLATES,
    CanonicalLayout,
    ComponentMatch,
    ExtractionLayout,
    normalize,
)
from voxlayout.progress import ProgressReporter, Stage
from voxlayout.services import (
    AudioInput,
    EntitySet,
    ExtractionAdapter,
    LayoutStore,
    MappingAdapter,
    ServiceBundle,
    TextInput,
    Transcript,
    TranscriptionAdapter,
    normalize_text,
)
from voxlayout.session import SessionContext

from .stages import StageResult, StageTracker

logger = logging.getLogger(__name__)

GenerationRequest = AudioInput | TextInput


class PipelineState(str, Enum):
    """Orchestrator state for one request."""

    IDLE = "idle"
    TRANSCRIBING = "transcribing"
    EXTRACTING_ENTITIES = "extracting-entities"
    MAPPING_VISUAL = "mapping-visual"
    PERSISTING = "persisting"
    COMPLETE = "complete"
    FAILED = "failed"


class FailureReason(str, Enum):
    """Why a request reached FAILED."""

    SILENCE_DETECTED = "silence-detected"
    TOO_SHORT = "too-short"
    SERVICE_ERROR = "service-error"
    CANCELLED = "cancelled"

    @property
    def hint(self) -> str:
        """Instruction to show the end user."""
        return _HINTS[self]

    @classmethod
    def from_error(cls, error: InvokeError) -> "FailureReason":
        if isinstance(error, CancelledError):
            return cls.CANCELLED
        try:
            return cls(error.reason)
        except ValueError:
            return cls.SERVICE_ERROR


_HINTS = {
    FailureReason.SILENCE_DETECTED: (
        "No speech was recognized. Check the microphone and speak louder."
    ),
    FailureReason.TOO_SHORT: "The recording is too short. Record at least 2-3 seconds.",
    FailureReason.SERVICE_ERROR: "The transcription service is unavailable. Try again later.",
    FailureReason.CANCELLED: "Generation was cancelled.",
}


@dataclass
class GenerationOptions:
    """Per-request options.

    Attributes:
        skip_visual_mapping: Use the extraction layout without calling mapping.
        template: Page template; the pipeline default if None.
        persist: Save the layout after generation.
        language: Language tag overriding the request and pipeline defaults.
    """

    skip_visual_mapping: bool = False
    template: str | None = None
    persist: bool = True
    language: str | None = None


@dataclass
class GenerationResult:
    """Outcome of one generation request.

    Attributes:
        state: COMPLETE or FAILED.
        session_id: Session the request ran under.
        layout: Canonical layout; None only when FAILED.
        warnings: Degradations, each prefixed with the stage that degraded.
        persisted: Whether the layout store acknowledged the save.
        failure_reason: Set when FAILED.
        error: Error that failed the request.
        transcript: Transcription output for audio requests.
        entities: Extraction output.
        matches: Term-to-component matches from visual mapping.
        stages: Final result of every stage.
    """

    state: PipelineState
    session_id: str
    layout: CanonicalLayout | None = None
    warnings: list[str] = field(default_factory=list)
    persisted: bool = False
    failure_reason: FailureReason | None = None
    error: InvokeError | None = None
    transcript: Transcript | None = None
    entities: EntitySet | None = None
    matches: list[ComponentMatch] = field(default_factory=list)
    stages: dict[Stage, StageResult] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.state == PipelineState.COMPLETE

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "session_id": self.session_id,
            "layout": self.layout.to_wire() if self.layout else None,
            "warnings": list(self.warnings),
            "persisted": self.persisted,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "hint": self.failure_reason.hint if self.failure_reason else None,
            "error": self.error.to_dict() if self.error else None,
            "transcript": self.transcript.text if self.transcript else None,
            "entities": self.entities.to_dict() if self.entities else None,
            "matches": [match.model_dump() for match in self.matches],
            "stages": [result.to_dict() for result in self.stages.values()],
        }


@dataclass
class _Run:
    """Mutable state of one in-flight request."""

    session: SessionContext
    tracker: StageTracker
    result: GenerationResult
    template: str
    language: str | None
    cancel: CancellationToken | None

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.cancelled

    def enter(self, state: PipelineState) -> None:
        logger.debug(f"{self.result.session_id}: {self.result.state.value} -> {state.value}")
        self.result.state = state

    def warn(self, stage: Stage, message: str) -> None:
        warning = f"{stage.value}: {message}"
        logger.warning(f"{self.result.session_id}: {warning}")
        self.result.warnings.append(warning)

    def fail(self, stage: Stage, error: InvokeError) -> None:
        self.tracker.fail(stage, error)
        self.result.failure_reason = FailureReason.from_error(error)
        self.result.error = error
        self.enter(PipelineState.FAILED)
        logger.info(
            f"Generation failed for {self.result.session_id} at {stage.value}: "
            f"{self.result.failure_reason.value}"
        )


class LayoutPipeline:
    """Orchestrates one voice or text generation request end to end.

    Pipeline:
        1. Transcribe audio (audio requests only)
        2. Ingest text and fetch entities
        3. Map entities to components, or fall back to the extraction layout
        4. Normalize into a CanonicalLayout
        5. Persist

    Example:
        >>> services = create_services()
        >>> pipeline = LayoutPipeline.from_services(services)
        >>> result = pipeline.generate(TextInput("создай заголовок и кнопку"))
        >>> result.state
        <PipelineState.COMPLETE: 'complete'>
    """

    def __init__(
        self,
        transcription: TranscriptionAdapter,
        extraction: ExtractionAdapter,
        mapping: MappingAdapter,
        store: LayoutStore | None = None,
        *,
        catalog: ComponentCatalogCache | None = None,
        reporter: ProgressReporter | None = None,
        templates: tuple[str, ...] = KNOWN_TEMPLATES,
        default_template: str = DEFAULT_TEMPLATE,
        default_language: str | None = None,
        client_id: str = "voxlayout",
    ):
        """Initialize LayoutPipeline.

        Args:
            transcription: Transcription adapter.
            extraction: Entity-extraction adapter.
            mapping: Visual-mapping adapter.
            store: Layout store; nothing is persisted if None.
            catalog: Catalog cache consulted for unknown component warnings.
                Defaults to the mapping adapter's cache.
            reporter: Progress channel for stage transitions.
            templates: Template names accepted in GenerationOptions.
            default_template: Template used when options name none.
            default_language: Language used when neither options nor request set one.
            client_id: Client id for sessions the pipeline allocates.
        """
        self.transcription = transcription
        self.extraction = extraction
        self.mapping = mapping
        self.store = store
        self.catalog = catalog if catalog is not None else mapping.catalog
        self.reporter = reporter or ProgressReporter()
        self.templates = tuple(templates)
        self.default_template = default_template
        self.default_language = default_language
        self.client_id = client_id

    @classmethod
    def from_services(
        cls,
        services: ServiceBundle,
        reporter: ProgressReporter | None = None,
        **kwargs: Any,
    ) -> "LayoutPipeline":
        """Build a pipeline over a ServiceBundle."""
        return cls(
            services.transcription,
            services.extraction,
            services.mapping,
            services.store,
            catalog=services.catalog,
            reporter=reporter,
            client_id=services.extraction.invoker.client_id,
            **kwargs,
        )

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self, request: GenerationRequest, options: GenerationOptions) -> None:
        """Reject invalid caller input before any stage begins.

        Raises:
            ValidationError: For non-audio uploads, empty audio or text, or
                an unknown template.
        """
        if isinstance(request, AudioInput):
            if not request.content_type.startswith("audio/"):
                raise ValidationError(
                    f"Unsupported content type '{request.content_type}', expected audio/*",
                    reason="unsupported-format",
                )
            if not request.data:
                raise ValidationError("Audio recording is empty", reason="empty-input")
        elif isinstance(request, TextInput):
            if not normalize_text(request.text):
                raise ValidationError("Text description is empty", reason="empty-input")
        else:
            raise ValidationError(
                f"Unsupported request type {type(request).__name__}; "
                "expected AudioInput or TextInput"
            )

        if options.template is not None and options.template not in self.templates:
            raise ValidationError(
                f"Unknown template '{options.template}'. "
                f"Available: {', '.join(self.templates)}",
                reason="unknown-template",
            )

    # =========================================================================
    # Generation
    # =========================================================================

    def generate(
        self,
        request: GenerationRequest,
        options: GenerationOptions | None = None,
        *,
        session: SessionContext | None = None,
        cancel: CancellationToken | None = None,
    ) -> GenerationResult:
        """Run one generation request to COMPLETE or FAILED.

        Args:
            request: Audio or text input.
            options: Per-request options.
            session: Session context; a fresh one is allocated if None.
            cancel: Token checked at every stage boundary and backoff sleep.

        Returns:
            GenerationResult. Degradations are listed in ``warnings``.

        Raises:
            ValidationError: If the request is invalid.
        """
        options = options or GenerationOptions()
        self.validate(request, options)

        session = session or SessionContext(client_id=self.client_id)
        session_id = session.ensure_session_id()
        is_audio = isinstance(request, AudioInput)
        required = (Stage.TRANSCRIBE, Stage.EXTRACT_ENTITIES) if is_audio else (Stage.EXTRACT_ENTITIES,)
        tracker = StageTracker(session_id, self.reporter, required=required)
        run = _Run(
            session=session,
            tracker=tracker,
            result=GenerationResult(
                state=PipelineState.IDLE, session_id=session_id, stages=tracker.results
            ),
            template=options.template or self.default_template,
            language=options.language or request.language or self.default_language,
            cancel=cancel,
        )
        logger.info(
            f"Starting {'audio' if is_audio else 'text'} generation for session {session_id}"
        )

        if is_audio:
            text = self._transcribe(run, request)
            if text is None:
                return run.result
        else:
            text = request.text

        entities = self._extract(run, text)
        if entities is None:
            return run.result

        if options.skip_visual_mapping:
            layout = self._fallback(run, "visual mapping skipped by request")
        elif entities.is_empty:
            layout = self._fallback(run, "no entities extracted")
        else:
            layout = self._map(run, entities)
        if layout is None:
            return run.result
        run.result.layout = layout

        if self._persist(run, layout, options) is None:
            return run.result

        run.enter(PipelineState.COMPLETE)
        logger.info(
            f"Generation complete for {session_id}: "
            f"{sum(1 for _ in layout.components())} component(s), "
            f"{len(run.result.warnings)} warning(s), persisted={run.result.persisted}"
        )
        return run.result

    def run_concurrent(
        self,
        requests: list[GenerationRequest],
        options: GenerationOptions | None = None,
        *,
        max_workers: int = 4,
        cancel: CancellationToken | None = None,
    ) -> list[GenerationResult]:
        """Run independent requests in parallel, one session each.

        Results are returned in request order. Requests share only the
        catalog cache.

        Raises:
            ValidationError: If any request is invalid; nothing is started.
        """
        options = options or GenerationOptions()
        for request in requests:
            self.validate(request, options)

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [
                executor.submit(
                    self.generate,
                    request,
                    options,
                    session=SessionContext(client_id=self.client_id),
                    cancel=cancel,
                )
                for request in requests
            ]
            return [future.result() for future in futures]

    # =========================================================================
    # Stages
    # =========================================================================

    def _transcribe(self, run: _Run, audio: AudioInput) -> str | None:
        if run.cancelled:
            run.fail(Stage.TRANSCRIBE, CancelledError())
            return None

        run.enter(PipelineState.TRANSCRIBING)
        run.tracker.start(Stage.TRANSCRIBE, f"Transcribing {len(audio.data)} bytes of audio")
        result = self.transcription.transcribe(
            audio, run.session, run.language, cancel=run.cancel
        )
        if not result.ok:
            run.fail(Stage.TRANSCRIBE, result.error)
            return None

        run.result.transcript = result.value
        run.tracker.complete(Stage.TRANSCRIBE, "Transcription complete", payload=result.value)
        return result.value.text

    def _extract(self, run: _Run, text: str) -> EntitySet | None:
        if run.cancelled:
            run.fail(Stage.EXTRACT_ENTITIES, CancelledError())
            return None

        run.enter(PipelineState.EXTRACTING_ENTITIES)
        run.tracker.start(Stage.EXTRACT_ENTITIES, "Extracting entities")

        ack = self.extraction.ingest(run.session, text, run.language, cancel=run.cancel)
        if ack.ok:
            entities = self.extraction.get_entities(run.session, cancel=run.cancel)
        else:
            entities = EntitySet(error=ack.error)

        if isinstance(entities.error, CancelledError):
            run.fail(Stage.EXTRACT_ENTITIES, entities.error)
            return None
        if entities.failed:
            run.warn(Stage.EXTRACT_ENTITIES, f"entity extraction failed: {entities.error}")

        run.result.entities = entities
        run.tracker.complete(
            Stage.EXTRACT_ENTITIES,
            f"Extracted {len(entities.entities)} entities",
            payload=entities,
            error=entities.error,
        )
        return entities

    def _map(self, run: _Run, entities: EntitySet) -> CanonicalLayout | None:
        if run.cancelled:
            run.fail(Stage.MAP_VISUAL, CancelledError())
            return None

        run.enter(PipelineState.MAPPING_VISUAL)
        run.tracker.start(Stage.MAP_VISUAL, f"Mapping {len(entities.entities)} entities")
        mapped = self.mapping.map_entities(
            run.session,
            entities.entities,
            entities.keyphrases,
            run.template,
            cancel=run.cancel,
        )

        if isinstance(mapped.error, CancelledError):
            run.fail(Stage.MAP_VISUAL, mapped.error)
            return None

        if mapped.failed:
            run.tracker.fail(Stage.MAP_VISUAL, mapped.error)
            run.warn(Stage.MAP_VISUAL, f"visual mapping failed, using extraction layout: {mapped.error}")
            fallback = self.extraction.get_layout(
                run.session, template=run.template, cancel=run.cancel
            )
            if isinstance(fallback.error, CancelledError):
                run.fail(Stage.MAP_VISUAL, fallback.error)
                return None
            if fallback.failed:
                run.warn(Stage.EXTRACT_ENTITIES, f"extraction layout unavailable: {fallback.error}")
                return normalize(mapped, session_id=run.result.session_id)
            return normalize(fallback, session_id=run.result.session_id)

        layout = normalize(mapped, session_id=run.result.session_id)
        run.result.matches = list(mapped.matches)
        self._check_catalog(run, layout)
        run.tracker.complete(
            Stage.MAP_VISUAL, f"Mapped {len(mapped.matches)} matches", payload=layout
        )
        return layout

    def _fallback(self, run: _Run, why: str) -> CanonicalLayout | None:
        if run.cancelled:
            run.fail(Stage.EXTRACT_ENTITIES, CancelledError())
            return None

        logger.info(f"{run.result.session_id}: {why}, using extraction layout")
        layout: ExtractionLayout = self.extraction.get_layout(
            run.session, template=run.template, cancel=run.cancel
        )
        if isinstance(layout.error, CancelledError):
            run.fail(Stage.EXTRACT_ENTITIES, layout.error)
            return None
        if layout.failed:
            run.warn(Stage.EXTRACT_ENTITIES, f"extraction layout unavailable: {layout.error}")
        return normalize(layout, session_id=run.result.session_id)

    def _persist(
        self, run: _Run, layout: CanonicalLayout, options: GenerationOptions
    ) -> CanonicalLayout | None:
        if run.cancelled:
            run.fail(Stage.PERSIST, CancelledError())
            return None
        if not options.persist or self.store is None:
            return layout

        run.enter(PipelineState.PERSISTING)
        run.tracker.start(Stage.PERSIST, "Saving layout")
        ack = self.store.save(run.session, layout, cancel=run.cancel)
        if ack.ok:
            run.result.persisted = True
            run.tracker.complete(Stage.PERSIST, f"Saved to {ack.value.backend}", payload=ack.value)
        elif isinstance(ack.error, CancelledError):
            run.fail(Stage.PERSIST, ack.error)
            return None
        else:
            run.tracker.fail(Stage.PERSIST, ack.error)
            run.warn(Stage.PERSIST, f"layout not saved: {ack.error}")
        return layout

    def _check_catalog(self, run: _Run, layout: CanonicalLayout) -> None:
        """Warn about mapped types missing from a fresh catalog snapshot."""
        if self.catalog is None:
            return
        for section, component in layout.components():
            if self.catalog.contains(component.type) is False:
                run.warn(
                    Stage.MAP_VISUAL,
                    f"component '{component.type}' in {section} is not in the catalog",
                )


__all__ = [
    "FailureReason",
    "GenerationOptions",
    "GenerationRequest",
    "GenerationResult",
    "LayoutPipeline",
    "PipelineState",
]
