"""Request and response types shared by the service adapters."""

from dataclasses import dataclass, field
from typing import Any

from voxlayout.invoker.errors import InvokeError


@dataclass(frozen=True)
class AudioInput:
    """Recorded audio to transcribe.

    Attributes:
        data: Raw audio bytes.
        content_type: MIME type; must be ``audio/*``.
        filename: Upload file name.
        language: BCP-47 language tag, or None for the configured default.
    """

    data: bytes
    content_type: str = "audio/webm"
    filename: str = "recording.webm"
    language: str | None = None


@dataclass(frozen=True)
class TextInput:
    """Typed page description.

    Attributes:
        text: Free-form description.
        language: BCP-47 language tag, or None for the configured default.
    """

    text: str
    language: str | None = None


@dataclass
class Transcript:
    """Transcription service output."""

    text: str
    confidence: float | None = None
    language: str | None = None
    chunk_id: str | None = None


@dataclass
class Ack:
    """Acknowledgment of a write accepted by a service."""

    session_id: str
    status: str = "ok"
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass
class EntitySet:
    """Entities and keyphrases extracted for one session.

    An empty set is a legitimate outcome and triggers the fallback path.

    Attributes:
        entities: Extracted entity terms.
        keyphrases: Extracted keyphrases.
        chunks_processed: Number of ingested chunks the service processed.
        error: Error that caused an empty result, if any.
    """

    entities: list[str] = field(default_factory=list)
    keyphrases: list[str] = field(default_factory=list)
    chunks_processed: int = 0
    error: InvokeError | None = None

    @property
    def is_empty(self) -> bool:
        return not self.entities

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entities": list(self.entities),
            "keyphrases": list(self.keyphrases),
            "chunks_processed": self.chunks_processed,
            "error": str(self.error) if self.error else None,
        }


@dataclass
class SaveAck:
    """Acknowledgment of a persisted layout."""

    session_id: str
    backend: str
    updated_at: str | None = None


__all__ = ["Ack", "AudioInput", "EntitySet", "SaveAck", "TextInput", "Transcript"]
