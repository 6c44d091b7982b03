"""Speech transcription adapter."""

import logging

from voxlayout.invoker import (
    CancellationToken,
    ResilientInvoker,
    Result,
    ServiceLogicError,
    ValidationError,
)
from voxlayout.progress import Stage
from voxlayout.session import SessionContext, content_digest

from .base import ServiceAdapter
from .models import AudioInput, Transcript

logger = logging.getLogger(__name__)

MIN_AUDIO_BYTES = 5 * 1024
DEFAULT_FORMATS = ["audio/webm", "audio/wav", "audio/mp3"]
TRANSCRIBE_TIMEOUT = 30.0


class TranscriptionAdapter(ServiceAdapter):
    """Typed wrapper over the transcription service.

    Wire call: ``POST /v1/transcribe?session_id=&lang=&chunk_id=`` with the
    audio in multipart field ``file``.

    Args:
        invoker: Invoker bound to the transcription base URL.
        min_audio_bytes: Smaller uploads are rejected as too short.
        default_language: Language used when neither audio nor caller sets one.
        timeout: Per-attempt timeout for transcription calls.
    """

    name = "transcription"

    def __init__(
        self,
        invoker: ResilientInvoker,
        *,
        min_audio_bytes: int = MIN_AUDIO_BYTES,
        default_language: str = "ru-RU",
        timeout: float = TRANSCRIBE_TIMEOUT,
        health_timeout: float = 5.0,
    ):
        super().__init__(invoker, health_timeout=health_timeout)
        self.min_audio_bytes = min_audio_bytes
        self.default_language = default_language
        self.timeout = timeout

    def transcribe(
        self,
        audio: AudioInput,
        session: SessionContext,
        language: str | None = None,
        *,
        chunk_id: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> Result[Transcript]:
        """Transcribe recorded audio.

        Args:
            audio: Audio upload.
            session: Session context.
            language: Language tag; defaults to audio.language, then the
                adapter default.
            chunk_id: Chunk identifier; derived from the audio digest if omitted.
            cancel: Cancellation token.

        Returns:
            Result with a Transcript, or ValidationError (non-audio input,
            reason "too-short"), ServiceLogicError (reason "service-error" or
            "silence-detected") or a transport error.
        """
        if not audio.content_type.startswith("audio/"):
            return Result.failure(
                ValidationError(
                    f"Unsupported content type '{audio.content_type}', expected audio/*",
                    reason="unsupported-format",
                    service=self.name,
                )
            )
        if len(audio.data) < self.min_audio_bytes:
            logger.info(
                f"Rejecting {len(audio.data)} byte recording "
                f"(minimum {self.min_audio_bytes})"
            )
            return Result.failure(
                ValidationError(
                    f"Recording too short: {len(audio.data)} bytes "
                    f"(minimum {self.min_audio_bytes})",
                    reason="too-short",
                    service=self.name,
                )
            )

        digest = content_digest(audio.data)
        lang = language or audio.language or self.default_language
        chunk_id = chunk_id or f"chunk_{digest[:12]}"
        session_id = session.ensure_session_id()

        result = self.invoker.invoke(
            "/v1/transcribe",
            method="POST",
            session=session,
            stage=Stage.TRANSCRIBE.value,
            discriminator=digest,
            params={"session_id": session_id, "lang": lang, "chunk_id": chunk_id},
            files={"file": (audio.filename, audio.data, audio.content_type)},
            timeout_s=self.timeout,
            cancel=cancel,
        )
        payload = self._payload(result)
        if not payload.ok:
            return Result.failure(payload.error)

        text = str(payload.value.get("text") or "").strip()
        if not text:
            return Result.failure(
                ServiceLogicError(
                    "No speech detected in recording",
                    reason="silence-detected",
                    service=self.name,
                )
            )

        confidence = payload.value.get("confidence")
        return Result.success(
            Transcript(
                text=text,
                confidence=float(confidence) if confidence is not None else None,
                language=payload.value.get("language") or lang,
                chunk_id=payload.value.get("chunk_id") or chunk_id,
            )
        )

    def supported_formats(self) -> list[str]:
        """List audio MIME types the service accepts, with a static fallback."""
        result = self.invoker.invoke(
            "/v1/formats",
            session=SessionContext.with_id("formats", self.invoker.client_id),
            timeout_s=self.health_timeout,
            max_retries=0,
        )
        payload = self._payload(result)
        if payload.ok and isinstance(payload.value.get("formats"), list):
            return [str(f) for f in payload.value["formats"]]
        return list(DEFAULT_FORMATS)


__all__ = ["DEFAULT_FORMATS", "MIN_AUDIO_BYTES", "TranscriptionAdapter"]
