"""Layout persistence.

Two backends share the `LayoutStore` protocol:

- HttpLayoutStore: the web backend (``/api/web/v1/session/{id}/layout``).
- SqliteLayoutStore: a local database, used when no web backend is configured.
"""

import json
import logging
import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError as PydanticValidationError

from voxlayout.invoker import (
    CancellationToken,
    CancelledError,
    ResilientInvoker,
    Result,
    ServiceLogicError,
)
from voxlayout.layout import CanonicalLayout, normalize
from voxlayout.progress import Stage
from voxlayout.session import SessionContext, content_digest

from .base import ServiceAdapter
from .models import SaveAck

logger = logging.getLogger(__name__)

SAVE_TIMEOUT = 15.0
LOAD_TIMEOUT = 10.0
SAVE_SOURCE = "voxlayout"


def layout_digest(layout: CanonicalLayout) -> str:
    """Digest of template and sections; metadata timestamps are excluded."""
    body = layout.model_dump(mode="json", by_alias=True, include={"template", "sections"})
    return content_digest(json.dumps(body, ensure_ascii=False, sort_keys=True))


class LayoutStore(Protocol):
    """Storage collaborator for generated layouts."""

    def save(
        self,
        session: SessionContext,
        layout: CanonicalLayout,
        *,
        cancel: CancellationToken | None = None,
    ) -> Result[SaveAck]:
        """Persist a layout for the session."""
        ...

    def load(self, session_id: str) -> CanonicalLayout | None:
        """Load the layout for a session, or None if not found."""
        ...

    def health_check(self) -> bool:
        """Whether the store is usable."""
        ...


# =============================================================================
# HTTP backend
# =============================================================================


class HttpLayoutStore(ServiceAdapter):
    """Layout store backed by the web backend."""

    name = "layout_store"
    health_path = "/health"

    def __init__(self, invoker: ResilientInvoker, *, health_timeout: float = 5.0):
        super().__init__(invoker, health_timeout=health_timeout)

    @staticmethod
    def _path(session_id: str) -> str:
        return f"/api/web/v1/session/{session_id}/layout"

    def save(
        self,
        session: SessionContext,
        layout: CanonicalLayout,
        *,
        cancel: CancellationToken | None = None,
    ) -> Result[SaveAck]:
        session_id = session.ensure_session_id()
        updated_at = layout.metadata.updated_at or datetime.now(UTC).isoformat()
        result = self.invoker.invoke(
            self._path(session_id),
            method="POST",
            session=session,
            stage=Stage.PERSIST.value,
            discriminator=layout_digest(layout),
            json={
                "layout": layout.to_wire(),
                "metadata": {
                    "sessionId": session_id,
                    "updatedAt": updated_at,
                    "source": SAVE_SOURCE,
                },
            },
            timeout_s=SAVE_TIMEOUT,
            cancel=cancel,
        )
        payload = self._payload(result)
        if not payload.ok:
            return Result.failure(payload.error)
        return Result.success(
            SaveAck(
                session_id=session_id,
                backend="http",
                updated_at=payload.value.get("updated_at") or updated_at,
            )
        )

    def load(self, session_id: str) -> CanonicalLayout | None:
        result = self.invoker.invoke(
            self._path(session_id),
            session=SessionContext.with_id(session_id, self.invoker.client_id),
            timeout_s=LOAD_TIMEOUT,
        )
        if not result.ok and result.error.status == 404:
            return None
        payload = self._payload(result)
        if not payload.ok:
            logger.warning(f"Layout load failed for {session_id}: {payload.error}")
            return None

        data = payload.value.get("layout_data") or payload.value.get("layout")
        if not isinstance(data, dict):
            return None
        try:
            return normalize(CanonicalLayout.from_wire(data), session_id=session_id)
        except PydanticValidationError as e:
            logger.warning(f"Stored layout for {session_id} is malformed: {e.error_count()} error(s)")
            return None


# =============================================================================
# SQLite backend
# =============================================================================

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS layouts (
    session_id TEXT PRIMARY KEY,
    layout TEXT NOT NULL,  -- JSON, camelCase wire form
    digest TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_layouts_updated ON layouts(updated_at);
"""


class SqliteLayoutStore:
    """SQLite-based layout store.

    Args:
        db_path: Path to SQLite database file.
    """

    name = "layout_store"

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection, creating if needed."""
        if self._conn is None:
            self.initialize()
        return self._conn

    def initialize(self) -> None:
        """Initialize storage (create database and tables)."""
        if self._conn is not None:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()
        logger.info(f"Initialized SQLite layout store at {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def health_check(self) -> bool:
        try:
            self._get_conn().execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error as e:
            logger.warning(f"SQLite layout store unavailable: {e}")
            return False

    def save(
        self,
        session: SessionContext,
        layout: CanonicalLayout,
        *,
        cancel: CancellationToken | None = None,
    ) -> Result[SaveAck]:
        if cancel is not None and cancel.cancelled:
            return Result.failure(CancelledError("Save cancelled", service=self.name))

        session_id = session.ensure_session_id()
        now = datetime.now(UTC).isoformat()
        try:
            with self._lock:
                conn = self._get_conn()
                conn.execute(
                    """
                    INSERT INTO layouts (session_id, layout, digest, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(session_id) DO UPDATE SET
                        layout = excluded.layout,
                        digest = excluded.digest,
                        updated_at = excluded.updated_at
                    """,
                    (
                        session_id,
                        layout.model_dump_json(by_alias=True),
                        layout_digest(layout),
                        now,
                        now,
                    ),
                )
                conn.commit()
        except sqlite3.Error as e:
            return Result.failure(
                ServiceLogicError(f"SQLite save failed: {e}", reason="service-error", service=self.name)
            )
        return Result.success(SaveAck(session_id=session_id, backend="sqlite", updated_at=now))

    def load(self, session_id: str) -> CanonicalLayout | None:
        try:
            with self._lock:
                row = (
                    self._get_conn()
                    .execute("SELECT layout FROM layouts WHERE session_id = ?", (session_id,))
                    .fetchone()
                )
        except sqlite3.Error as e:
            logger.warning(f"Layout load failed for {session_id}: {e}")
            return None
        if row is None:
            return None
        try:
            return CanonicalLayout.model_validate_json(row["layout"])
        except PydanticValidationError as e:
            logger.warning(f"Stored layout for {session_id} is malformed: {e.error_count()} error(s)")
            return None

    def list_sessions(self, limit: int = 20) -> list[dict[str, str]]:
        """Most recently updated stored sessions."""
        with self._lock:
            rows = (
                self._get_conn()
                .execute(
                    "SELECT session_id, updated_at FROM layouts ORDER BY updated_at DESC LIMIT ?",
                    (limit,),
                )
                .fetchall()
            )
        return [dict(row) for row in rows]


__all__ = ["HttpLayoutStore", "LayoutStore", "SqliteLayoutStore", "layout_digest"]
