"""Tests for service adapters."""

import json
import sqlite3

import httpx
import pytest

from voxlayout.invoker import (
    HttpStatusError,
    ServiceLogicError,
    ServiceTimeoutError,
    ValidationError,
)
from voxlayout.layout import CanonicalLayout, normalize
from voxlayout.session import SessionContext, content_digest, make_idempotency_key

from .extraction import normalize_text
from .factory import create_services
from .models import AudioInput
from .persistence import SqliteLayoutStore, layout_digest
from .transcription import DEFAULT_FORMATS

# =============================================================================
# Health
# =============================================================================


class TestHealthCheck:
    """Tests for health probes."""

    @pytest.mark.unit
    def test_all_healthy(self, services):
        """Every service reports healthy against the fake backend."""
        assert services.health() == {
            "transcription": True,
            "extraction": True,
            "mapping": True,
            "layout_store": True,
        }

    @pytest.mark.unit
    def test_unhealthy_without_retries(self, services, fake_backend, sleeps):
        """A 503 health probe is false and never retried."""
        fake_backend.failures["health"] = 503
        assert services.extraction.health_check() is False
        assert len(fake_backend.requests_for("health")) == 1
        assert sleeps == []

    @pytest.mark.unit
    def test_unreachable(self, services, fake_backend):
        """Connection failures are unhealthy, not raised."""
        fake_backend.failures["health"] = httpx.ConnectError("refused")
        assert services.mapping.health_check() is False

    @pytest.mark.unit
    def test_store_uses_health_path(self, services, fake_backend):
        """Persistence backend is probed on /health."""
        services.store.health_check()
        assert fake_backend.requests_for("health")[0].url.path == "/health"


# =============================================================================
# Transcription
# =============================================================================


class TestTranscriptionAdapter:
    """Tests for TranscriptionAdapter."""

    @pytest.mark.unit
    def test_transcribe(self, services, fake_backend, session, audio_bytes):
        """Successful upload returns a transcript."""
        result = services.transcription.transcribe(AudioInput(audio_bytes), session)
        assert result.ok
        assert result.value.text == "создай заголовок и кнопку"
        assert result.value.confidence == pytest.approx(0.93)

        request = fake_backend.requests_for("transcribe")[0]
        assert request.url.params["lang"] == "ru-RU"
        assert request.url.params["session_id"] == session.ensure_session_id()
        assert request.url.params["chunk_id"].startswith("chunk_")
        assert request.headers["content-type"].startswith("multipart/form-data")

    @pytest.mark.unit
    def test_rejects_non_audio(self, services, fake_backend, session, audio_bytes):
        """Non-audio content type fails before any network call."""
        result = services.transcription.transcribe(
            AudioInput(audio_bytes, content_type="video/mp4"), session
        )
        assert isinstance(result.error, ValidationError)
        assert fake_backend.calls == []

    @pytest.mark.unit
    def test_too_short(self, services, fake_backend, session):
        """Audio under 5 KiB is rejected as too short."""
        result = services.transcription.transcribe(AudioInput(b"\x00" * 5000), session)
        assert result.error.reason == "too-short"
        assert fake_backend.calls == []

    @pytest.mark.unit
    def test_silence(self, services, fake_backend, session, audio_bytes):
        """Empty transcript is reported as silence."""
        fake_backend.transcript["text"] = "   "
        result = services.transcription.transcribe(AudioInput(audio_bytes), session)
        assert isinstance(result.error, ServiceLogicError)
        assert result.error.reason == "silence-detected"

    @pytest.mark.unit
    def test_status_error(self, services, fake_backend, session, audio_bytes):
        """status != ok is a service logic error."""
        fake_backend.transcript["status"] = "error"
        fake_backend.transcript["error"] = "decoder failed"
        result = services.transcription.transcribe(AudioInput(audio_bytes), session)
        assert isinstance(result.error, ServiceLogicError)
        assert result.error.message == "decoder failed"

    @pytest.mark.unit
    def test_supported_formats(self, services):
        """Formats come from the service when available."""
        assert services.transcription.supported_formats() == ["audio/webm", "audio/ogg"]

    @pytest.mark.unit
    def test_supported_formats_fallback(self, services, fake_backend):
        """Static list is used when the service fails."""
        fake_backend.failures["formats"] = 500
        assert services.transcription.supported_formats() == DEFAULT_FORMATS


# =============================================================================
# Extraction
# =============================================================================


class TestNormalizeText:
    """Tests for text normalization."""

    @pytest.mark.unit
    def test_collapses_whitespace_and_blank_lines(self):
        """Whitespace runs and blank lines are collapsed."""
        assert normalize_text("  создай   заголовок\n\n\n и \t кнопку ") == "создай заголовок\nи кнопку"

    @pytest.mark.unit
    def test_empty(self):
        """Whitespace-only text normalizes to empty."""
        assert normalize_text(" \n\t ") == ""


class TestExtractionAdapter:
    """Tests for ExtractionAdapter."""

    @pytest.mark.unit
    def test_ingest_sends_normalized_text(self, services, fake_backend, session):
        """Ingest posts normalized text with a content-derived key."""
        result = services.extraction.ingest(session, "  создай   кнопку ")
        assert result.ok

        request = fake_backend.requests_for("ingest")[0]
        assert json.loads(request.content)["text_full"] == "создай кнопку"
        expected = make_idempotency_key(
            session.ensure_session_id(), "extract-entities", content_digest("создай кнопку")
        )
        assert request.headers["Idempotency-Key"] == expected

    @pytest.mark.unit
    def test_ingest_empty_text(self, services, fake_backend, session):
        """Empty text is a validation error without network traffic."""
        result = services.extraction.ingest(session, "   ")
        assert isinstance(result.error, ValidationError)
        assert fake_backend.calls == []

    @pytest.mark.unit
    def test_ingest_chunk_key(self, services, fake_backend, session):
        """Chunk ingestion keys on chunk id and sequence."""
        services.extraction.ingest_chunk(session, "c1", 3, "кнопка")
        request = fake_backend.requests_for("ingest-chunk")[0]
        expected = make_idempotency_key(session.ensure_session_id(), "extract-entities", "c1:3")
        assert request.headers["Idempotency-Key"] == expected

    @pytest.mark.unit
    def test_get_entities(self, services, session):
        """Entities parse into an EntitySet."""
        entities = services.extraction.get_entities(session)
        assert entities.entities == ["заголовок", "кнопка"]
        assert entities.chunks_processed == 1
        assert not entities.failed

    @pytest.mark.unit
    def test_get_entities_failure(self, services, fake_backend, session):
        """Failures yield an empty set with the error attached."""
        fake_backend.failures["entities"] = 503
        entities = services.extraction.get_entities(session)
        assert entities.is_empty
        assert isinstance(entities.error, HttpStatusError)
        assert len(fake_backend.requests_for("entities")) == 3

    @pytest.mark.unit
    def test_get_layout(self, services, session):
        """Extraction layout parses from the service."""
        layout = services.extraction.get_layout(session)
        assert layout.sections["hero"][0].name == "heading"

    @pytest.mark.unit
    def test_get_layout_failure(self, services, fake_backend, session):
        """Failure gives an empty hero-main-footer layout."""
        fake_backend.failures["extract-layout"] = 404
        layout = services.extraction.get_layout(session)
        assert layout.failed
        assert layout.template == "hero-main-footer"
        assert layout.component_count() == 0


# =============================================================================
# Mapping
# =============================================================================


class TestMappingAdapter:
    """Tests for MappingAdapter."""

    @pytest.mark.unit
    def test_map_entities(self, services, fake_backend, session):
        """Mapping returns the service layout with matches."""
        layout = services.mapping.map_entities(session, ["заголовок", "кнопка"])
        assert not layout.failed
        assert [m.match_type for m in layout.matches] == ["exact", "exact"]

        body = json.loads(fake_backend.requests_for("map")[0].content)
        assert body["template"] == "hero-main-footer"

    @pytest.mark.unit
    def test_keyphrases_default_to_entities(self, services, fake_backend, session):
        """Missing keyphrases reuse the entities."""
        services.mapping.map_entities(session, ["кнопка"])
        body = json.loads(fake_backend.requests_for("map")[0].content)
        assert body["keyphrases"] == ["кнопка"]

    @pytest.mark.unit
    def test_empty_entities_raise(self, services, fake_backend, session):
        """Empty entities are a programming error."""
        with pytest.raises(ValidationError):
            services.mapping.map_entities(session, [])
        assert fake_backend.calls == []

    @pytest.mark.unit
    def test_timeout_gives_empty_layout(self, services, fake_backend, session, sleeps):
        """Timeouts after retries give an empty layout with the error."""
        fake_backend.failures["map"] = httpx.ReadTimeout("slow")
        layout = services.mapping.map_entities(session, ["кнопка"])
        assert isinstance(layout.error, ServiceTimeoutError)
        assert layout.count == 0
        assert layout.component_count() == 0
        assert sleeps == [1.0, 2.0]

    @pytest.mark.unit
    def test_list_components_reads_through_cache(self, services, fake_backend):
        """Second call is served from the cache."""
        first = services.mapping.list_components()
        second = services.mapping.list_components()
        assert [c.name for c in first] == ["ui.heading", "ui.button", "ui.text"]
        assert second == first
        assert len(fake_backend.requests_for("components")) == 1
        assert services.catalog.contains("button") is True

    @pytest.mark.unit
    def test_list_components_failure(self, services, fake_backend):
        """Catalog failure returns an empty list."""
        fake_backend.failures["components"] = httpx.ConnectError("down")
        assert services.mapping.list_components() == []

    @pytest.mark.unit
    def test_templates(self, services, fake_backend):
        """Templates come from the service, with a fallback."""
        assert services.mapping.get_templates() == ["hero-main-footer", "one-column"]
        fake_backend.failures["templates"] = 500
        assert services.mapping.get_templates() == ["hero-main-footer"]

    @pytest.mark.unit
    def test_get_layout(self, services, session):
        """Last mapped layout is retrievable."""
        layout = services.mapping.get_layout(session)
        assert layout.count == 2


# =============================================================================
# Persistence
# =============================================================================


@pytest.fixture
def mapped_layout(services, session) -> CanonicalLayout:
    layout = services.mapping.map_entities(session, ["кнопка"])
    return normalize(layout, session_id=session.ensure_session_id())


class TestHttpLayoutStore:
    """Tests for the web backend store."""

    @pytest.mark.unit
    def test_save_and_load(self, services, fake_backend, session, mapped_layout):
        """Saved layout loads back unchanged."""
        ack = services.store.save(session, mapped_layout)
        assert ack.ok
        assert ack.value.backend == "http"

        body = fake_backend.saved[session.ensure_session_id()]
        assert body["metadata"]["source"] == "voxlayout"
        assert body["metadata"]["sessionId"] == session.ensure_session_id()

        loaded = services.store.load(session.ensure_session_id())
        assert loaded == mapped_layout

    @pytest.mark.unit
    def test_load_missing(self, services):
        """Unknown session loads as None."""
        assert services.store.load("nobody") is None

    @pytest.mark.unit
    def test_save_failure(self, services, fake_backend, session, mapped_layout):
        """Exhausted retries return an error result."""
        fake_backend.failures["save"] = 502
        ack = services.store.save(session, mapped_layout)
        assert isinstance(ack.error, HttpStatusError)
        keys = {r.headers["Idempotency-Key"] for r in fake_backend.requests_for("save")}
        assert len(keys) == 1


class TestSqliteLayoutStore:
    """Tests for the local SQLite store."""

    @pytest.mark.unit
    def test_round_trip(self, tmp_path, mapped_layout, session):
        """Layout round-trips through SQLite."""
        store = SqliteLayoutStore(tmp_path / "layouts.db")
        try:
            ack = store.save(session, mapped_layout)
            assert ack.ok
            assert ack.value.backend == "sqlite"
            assert store.load(session.ensure_session_id()) == mapped_layout
            assert store.list_sessions()[0]["session_id"] == session.ensure_session_id()
            assert store.health_check() is True
        finally:
            store.close()

    @pytest.mark.unit
    def test_upsert(self, tmp_path, mapped_layout, session):
        """Saving twice keeps one row with the latest layout."""
        store = SqliteLayoutStore(tmp_path / "layouts.db")
        try:
            store.save(session, mapped_layout)
            changed = mapped_layout.model_copy(update={"template": "one-column"})
            store.save(session, changed)
            assert store.load(session.ensure_session_id()).template == "one-column"
            assert len(store.list_sessions()) == 1
        finally:
            store.close()

    @pytest.mark.unit
    def test_missing(self, tmp_path):
        """Unknown session is None."""
        store = SqliteLayoutStore(tmp_path / "layouts.db")
        assert store.load("x") is None
        store.close()

    @pytest.mark.unit
    def test_corrupt_row_loads_as_none(self, tmp_path):
        """A row that is not a valid layout reads as missing."""
        db_path = tmp_path / "layouts.db"
        store = SqliteLayoutStore(db_path)
        store.initialize()
        conn = sqlite3.connect(db_path)
        conn.execute(
            "INSERT INTO layouts VALUES (?, ?, ?, ?, ?)",
            ("bad-json", "{not json", "d", "t", "t"),
        )
        conn.execute(
            "INSERT INTO layouts VALUES (?, ?, ?, ?, ?)",
            ("bad-shape", json.dumps({"sections": "nope"}), "d", "t", "t"),
        )
        conn.commit()
        conn.close()
        try:
            assert store.load("bad-json") is None
            assert store.load("bad-shape") is None
        finally:
            store.close()

    @pytest.mark.unit
    def test_database_error_loads_as_none(self, tmp_path):
        """SQLite failures on load are logged and read as missing."""
        db_path = tmp_path / "layouts.db"
        store = SqliteLayoutStore(db_path)
        store.initialize()
        conn = sqlite3.connect(db_path)
        conn.execute("DROP TABLE layouts")
        conn.commit()
        conn.close()
        try:
            assert store.load("anyone") is None
        finally:
            store.close()

    @pytest.mark.unit
    def test_digest_ignores_metadata(self, mapped_layout):
        """Layout digest depends only on template and sections."""
        other = mapped_layout.model_copy(deep=True)
        other.metadata.updated_at = "2030-01-01T00:00:00+00:00"
        assert layout_digest(other) == layout_digest(mapped_layout)


# =============================================================================
# Factory
# =============================================================================


class TestCreateServices:
    """Tests for create_services."""

    @pytest.mark.unit
    def test_default_store_is_sqlite(self, service_env, monkeypatch, tmp_path):
        """Without LAYOUT_STORE=http the local store is used."""
        monkeypatch.delenv("LAYOUT_STORE", raising=False)
        bundle = create_services()
        try:
            assert isinstance(bundle.store, SqliteLayoutStore)
            assert bundle.store.db_path == tmp_path / "layouts.db"
        finally:
            bundle.close()

    @pytest.mark.unit
    def test_unknown_store(self, service_env):
        """Unknown backend names are rejected."""
        with pytest.raises(ValueError, match="Unknown layout store"):
            create_services(layout_store="redis")

    @pytest.mark.unit
    def test_urls_from_env(self, services):
        """Adapters use configured base URLs."""
        assert services.extraction.base_url == "http://extract.test"
        assert services.mapping.base_url == "http://mapping.test"

    @pytest.mark.unit
    def test_client_header(self, services, fake_backend):
        """Configured client id is sent as X-Client."""
        services.extraction.get_entities(SessionContext.with_id("s"))
        assert fake_backend.requests_for("entities")[0].headers["X-Client"] == "voxlayout-test"
