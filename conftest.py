"""Root pytest configuration and fixtures.

This module provides:
- Environment setup (loads .env)
- A fake backend serving all four services through httpx.MockTransport
- Service bundle and session fixtures wired to the fake backend
"""

from __future__ import annotations

import json
import re
from typing import Any, Generator

import httpx
import pytest
from dotenv import load_dotenv

from voxlayout.catalog import ComponentCatalogCache
from voxlayout.services import ServiceBundle, create_services
from voxlayout.session import SessionContext

# Load environment variables from .env file
load_dotenv()


# =============================================================================
# Configuration Constants
# =============================================================================

TRANSCRIBE_HOST = "transcribe.test"
EXTRACT_HOST = "extract.test"
MAPPING_HOST = "mapping.test"
STORE_HOST = "store.test"

TEST_SESSION_ID = "test-session"

SERVICE_ENV = {
    "TRANSCRIBE_URL": f"http://{TRANSCRIBE_HOST}",
    "EXTRACT_URL": f"http://{EXTRACT_HOST}",
    "MAPPING_URL": f"http://{MAPPING_HOST}",
    "LAYOUT_STORE_URL": f"http://{STORE_HOST}",
    "LAYOUT_STORE": "http",
    "INVOKER_MAX_RETRIES": "2",
    "INVOKER_BACKOFF_BASE": "1.0",
    "CATALOG_TTL": "60",
    "CLIENT_ID": "voxlayout-test",
}


# =============================================================================
# Fake Backend
# =============================================================================


class FakeBackend:
    """In-process stand-in for the transcription, extraction, mapping and
    layout-store services.

    Responses are plain attributes so tests can reshape them. ``failures``
    maps a route name to an HTTP status or an exception to raise instead.

    Routes:
        transcribe, formats, ingest, ingest-chunk, entities, extract-layout,
        map, mapping-layout, components, templates, save, load, health
    """

    _SESSION_PATH = re.compile(r"^/v2/session/(?P<sid>[^/]+)/(?P<kind>entities|layout)$")
    _STORE_PATH = re.compile(r"^/api/web/v1/session/(?P<sid>[^/]+)/layout$")

    def __init__(self) -> None:
        self.calls: list[tuple[str, httpx.Request]] = []
        self.failures: dict[str, int | Exception] = {}
        self.saved: dict[str, dict[str, Any]] = {}
        self.transcript: dict[str, Any] = {
            "status": "ok",
            "text": "создай заголовок и кнопку",
            "confidence": 0.93,
            "language": "ru-RU",
        }
        self.entities: dict[str, Any] = {
            "status": "ok",
            "entities": ["заголовок", "кнопка"],
            "keyphrases": ["заголовок", "кнопка"],
            "chunks_processed": 1,
        }
        self.extraction_layout: dict[str, Any] = {
            "status": "ok",
            "layout": {
                "template": "hero-main-footer",
                "sections": {
                    "hero": [{"component": "heading", "confidence": 0.7}],
                    "main": [{"component": "text"}],
                    "footer": [],
                },
                "count": 2,
            },
        }
        self.mapping: dict[str, Any] = {
            "status": "ok",
            "layout": {
                "template": "hero-main-footer",
                "sections": {
                    "hero": [
                        {"component": "ui.heading", "confidence": 0.95, "match_type": "exact"}
                    ],
                    "main": [
                        {"component": "ui.button", "confidence": 0.9, "match_type": "exact"}
                    ],
                    "footer": [],
                },
                "count": 2,
            },
            "matches": [
                {"term": "заголовок", "component": "ui.heading", "confidence": 0.95, "match_type": "exact"},
                {"term": "кнопка", "component": "ui.button", "confidence": 0.9, "match_type": "exact"},
            ],
        }
        self.components: dict[str, Any] = {
            "status": "ok",
            "components": [
                {"name": "ui.heading", "component_type": "heading", "description": "Heading"},
                {"name": "ui.button", "component_type": "button", "description": "Button"},
                {"name": "ui.text", "component_type": "text", "description": "Paragraph"},
            ],
        }
        self.templates: dict[str, Any] = {
            "status": "ok",
            "templates": ["hero-main-footer", "one-column"],
        }

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def routes(self) -> list[str]:
        """Route names in call order."""
        return [route for route, _ in self.calls]

    def requests_for(self, route: str) -> list[httpx.Request]:
        return [request for name, request in self.calls if name == route]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    # -------------------------------------------------------------------------
    # Handler
    # -------------------------------------------------------------------------

    def __call__(self, request: httpx.Request) -> httpx.Response:
        route, sid = self._route(request)
        self.calls.append((route, request))

        failure = self.failures.get(route)
        if isinstance(failure, Exception):
            raise failure
        if isinstance(failure, int):
            return httpx.Response(failure, json={"status": "error", "error": "injected"})

        if route == "health":
            return httpx.Response(200, json={"status": "ok"})
        if route == "transcribe":
            return httpx.Response(200, json={**self.transcript, "session_id": sid})
        if route == "formats":
            return httpx.Response(200, json={"status": "ok", "formats": ["audio/webm", "audio/ogg"]})
        if route in ("ingest", "ingest-chunk"):
            return httpx.Response(200, json={"status": "ok", "session_id": sid})
        if route == "entities":
            return httpx.Response(200, json={**self.entities, "session_id": sid})
        if route == "extract-layout":
            return httpx.Response(200, json={**self.extraction_layout, "session_id": sid})
        if route in ("map", "mapping-layout"):
            return httpx.Response(200, json={**self.mapping, "session_id": sid})
        if route == "components":
            return httpx.Response(200, json=self.components)
        if route == "templates":
            return httpx.Response(200, json=self.templates)
        if route == "save":
            body = json.loads(request.content)
            self.saved[sid] = body
            return httpx.Response(
                200,
                json={
                    "status": "ok",
                    "session_id": sid,
                    "updated_at": body["metadata"]["updatedAt"],
                },
            )
        if route == "load":
            if sid not in self.saved:
                return httpx.Response(404, json={"status": "error", "error": "not found"})
            return httpx.Response(
                200,
                json={"status": "ok", "session_id": sid, "layout_data": self.saved[sid]["layout"]},
            )
        return httpx.Response(404, json={"status": "error", "error": f"no route {request.url}"})

    def _route(self, request: httpx.Request) -> tuple[str, str | None]:
        host, method, path = request.url.host, request.method, request.url.path
        sid = request.url.params.get("session_id")

        if path in ("/healthz", "/health"):
            return "health", None
        if host == TRANSCRIBE_HOST:
            return ("transcribe" if path == "/v1/transcribe" else "formats"), sid
        if host == EXTRACT_HOST:
            if path == "/v2/ingest/full":
                return "ingest", json.loads(request.content).get("session_id")
            if path == "/v2/ingest/chunk":
                return "ingest-chunk", json.loads(request.content).get("session_id")
            match = self._SESSION_PATH.match(path)
            if match:
                kind = "entities" if match["kind"] == "entities" else "extract-layout"
                return kind, match["sid"]
        if host == MAPPING_HOST:
            if path == "/v1/map":
                return "map", json.loads(request.content).get("session_id")
            if path == "/v1/components":
                return "components", None
            if path == "/v1/templates":
                return "templates", None
            if path.startswith("/v1/layout/"):
                return "mapping-layout", path.rsplit("/", 1)[-1]
        if host == STORE_HOST:
            match = self._STORE_PATH.match(path)
            if match:
                return ("save" if method == "POST" else "load"), match["sid"]
        return "unknown", None


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_backend() -> FakeBackend:
    """Fresh fake backend for each test."""
    return FakeBackend()


@pytest.fixture
def service_env(monkeypatch, tmp_path) -> dict[str, str]:
    """Point configuration at the fake backend hosts."""
    for name, value in SERVICE_ENV.items():
        monkeypatch.setenv(name, value)
    monkeypatch.setenv("VOXLAYOUT_DATA_DIR", str(tmp_path))
    return dict(SERVICE_ENV)


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff delays requested by invokers (no real sleeping)."""
    return []


@pytest.fixture
def catalog() -> ComponentCatalogCache:
    return ComponentCatalogCache(ttl=60)


@pytest.fixture
def services(
    service_env, fake_backend, sleeps, catalog
) -> Generator[ServiceBundle, None, None]:
    """Service bundle wired to the fake backend through MockTransport."""
    bundle = create_services(
        catalog=catalog,
        transport=fake_backend.transport(),
        sleep=sleeps.append,
    )
    yield bundle
    bundle.close()


@pytest.fixture
def session() -> SessionContext:
    """Session bound to a fixed id."""
    return SessionContext.with_id(TEST_SESSION_ID)


@pytest.fixture
def audio_bytes() -> bytes:
    """Audio payload comfortably above the minimum size."""
    return b"\x1a\x45\xdf\xa3" + b"\x00" * 8192
