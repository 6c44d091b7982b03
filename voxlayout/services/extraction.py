"""Entity-extraction (NLP) adapter."""

import logging
import re

from pydantic import ValidationError as PydanticValidationError

from voxlayout.invoker import (
    CancellationToken,
    ResilientInvoker,
    Result,
    ServiceLogicError,
    ValidationError,
)
from voxlayout.layout import DEFAULT_TEMPLATE, ExtractionLayout, parse_extraction_layout
from voxlayout.progress import Stage
from voxlayout.session import SessionContext, content_digest

from .base import ServiceAdapter
from .models import Ack, EntitySet

logger = logging.getLogger(__name__)

INGEST_TIMEOUT = 15.0

_INLINE_WHITESPACE = re.compile(r"[^\S\n]+")


def normalize_text(text: str) -> str:
    """Trim, drop blank lines and collapse runs of whitespace.

    Example:
        >>> normalize_text("  создай   заголовок\\n\\n\\n и  кнопку ")
        'создай заголовок\\nи кнопку'
    """
    lines = (_INLINE_WHITESPACE.sub(" ", line).strip() for line in text.strip().splitlines())
    return "\n".join(line for line in lines if line)


class ExtractionAdapter(ServiceAdapter):
    """Typed wrapper over the entity-extraction service.

    Args:
        invoker: Invoker bound to the extraction base URL.
        default_language: Language used when the caller sets none.
        timeout: Per-attempt timeout for ingestion calls.
    """

    name = "extraction"

    def __init__(
        self,
        invoker: ResilientInvoker,
        *,
        default_language: str = "ru-RU",
        timeout: float = INGEST_TIMEOUT,
        health_timeout: float = 5.0,
    ):
        super().__init__(invoker, health_timeout=health_timeout)
        self.default_language = default_language
        self.timeout = timeout

    # =========================================================================
    # Ingestion
    # =========================================================================

    def ingest(
        self,
        session: SessionContext,
        text: str,
        language: str | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> Result[Ack]:
        """Submit the full text for a session.

        The text is normalized before submission; the idempotency key is
        derived from the normalized text.

        Returns:
            Result with an Ack, or ValidationError for empty text.
        """
        normalized = normalize_text(text)
        if not normalized:
            return Result.failure(
                ValidationError("Text is empty after normalization", service=self.name)
            )

        session_id = session.ensure_session_id()
        result = self.invoker.invoke(
            "/v2/ingest/full",
            method="POST",
            session=session,
            stage=Stage.EXTRACT_ENTITIES.value,
            discriminator=content_digest(normalized),
            json={
                "session_id": session_id,
                "lang": language or self.default_language,
                "text_full": normalized,
            },
            timeout_s=self.timeout,
            cancel=cancel,
        )
        payload = self._payload(result)
        if not payload.ok:
            return Result.failure(payload.error)
        logger.debug(f"Ingested {len(normalized)} chars for session {session_id}")
        return Result.success(Ack(session_id=session_id, detail=payload.value))

    def ingest_chunk(
        self,
        session: SessionContext,
        chunk_id: str,
        seq: int,
        text: str,
        language: str | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> Result[Ack]:
        """Submit one incremental chunk of text (streaming transcription)."""
        normalized = normalize_text(text)
        if not normalized:
            return Result.failure(
                ValidationError(f"Chunk {chunk_id}:{seq} is empty", service=self.name)
            )

        session_id = session.ensure_session_id()
        result = self.invoker.invoke(
            "/v2/ingest/chunk",
            method="POST",
            session=session,
            stage=Stage.EXTRACT_ENTITIES.value,
            discriminator=f"{chunk_id}:{seq}",
            json={
                "session_id": session_id,
                "chunk_id": chunk_id,
                "seq": seq,
                "lang": language or self.default_language,
                "text": normalized,
            },
            timeout_s=self.timeout,
            cancel=cancel,
        )
        payload = self._payload(result)
        if not payload.ok:
            return Result.failure(payload.error)
        return Result.success(Ack(session_id=session_id, detail=payload.value))

    # =========================================================================
    # Retrieval
    # =========================================================================

    def get_entities(
        self, session: SessionContext, *, cancel: CancellationToken | None = None
    ) -> EntitySet:
        """Fetch entities for a session.

        Returns:
            EntitySet; on any failure an empty set with the error attached.
        """
        session_id = session.ensure_session_id()
        result = self.invoker.invoke(
            f"/v2/session/{session_id}/entities", session=session, cancel=cancel
        )
        payload = self._payload(result)
        if not payload.ok:
            logger.warning(f"Entity retrieval failed for {session_id}: {payload.error}")
            return EntitySet(error=payload.error)

        data = payload.value
        try:
            return EntitySet(
                entities=[str(e) for e in data.get("entities") or []],
                keyphrases=[str(k) for k in data.get("keyphrases") or []],
                chunks_processed=max(0, int(data.get("chunks_processed") or 0)),
            )
        except (TypeError, ValueError) as e:
            return EntitySet(
                error=ServiceLogicError(
                    f"Malformed entities response: {e}",
                    reason="service-error",
                    service=self.name,
                )
            )

    def get_layout(
        self,
        session: SessionContext,
        *,
        template: str = DEFAULT_TEMPLATE,
        cancel: CancellationToken | None = None,
    ) -> ExtractionLayout:
        """Fetch the service's own layout guess for a session.

        Returns:
            ExtractionLayout; on failure an empty layout with the error attached.
        """
        session_id = session.ensure_session_id()
        result = self.invoker.invoke(
            f"/v2/session/{session_id}/layout", session=session, cancel=cancel
        )
        payload = self._payload(result)
        if not payload.ok:
            logger.warning(f"Extraction layout failed for {session_id}: {payload.error}")
            return ExtractionLayout.empty(template, error=payload.error)
        try:
            return parse_extraction_layout(payload.value)
        except (PydanticValidationError, TypeError, ValueError) as e:
            return ExtractionLayout.empty(
                template,
                error=ServiceLogicError(
                    f"Malformed layout response: {e}",
                    reason="service-error",
                    service=self.name,
                ),
            )


__all__ = ["ExtractionAdapter", "normalize_text"]
