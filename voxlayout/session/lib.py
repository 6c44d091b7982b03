"""Session and request correlation.

A session id identifies one generation attempt from a client context. It is
allocated on first use, persisted through a `SessionStore`, and never mutated
afterwards. Request ids are fresh per logical call; idempotency keys are
derived from content so a retried or resumed write carries the same key.

Example:
    >>> ctx = SessionContext()  # in-memory store
    >>> sid = ctx.ensure_session_id()
    >>> ctx.ensure_session_id() == sid
    True
    >>> key = ctx.idempotency_key("extract-entities", content_digest("hello"))
    >>> len(key)
    64
"""

import hashlib
import json
import logging
import secrets
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
REQUEST_ID_SUFFIX_LEN = 9


# =============================================================================
# Models
# =============================================================================


@dataclass(frozen=True)
class Session:
    """An allocated client session.

    Attributes:
        id: Opaque session identifier (UUID4 string).
        created_at: Allocation time (UTC).
    """

    id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "created_at": self.created_at.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> "Session":
        return cls(id=data["id"], created_at=datetime.fromisoformat(data["created_at"]))


# =============================================================================
# Stores
# =============================================================================


class SessionStore(Protocol):
    """Persistence for the current client session."""

    def load(self) -> Session | None:
        """Return the stored session, or None if there is none."""
        ...

    def save(self, session: Session) -> None:
        """Persist the session."""
        ...

    def clear(self) -> None:
        """Forget the stored session."""
        ...


class MemorySessionStore:
    """Process-local session store, used by tests and isolated requests."""

    def __init__(self, session: Session | None = None):
        self._session = session

    def load(self) -> Session | None:
        return self._session

    def save(self, session: Session) -> None:
        self._session = session

    def clear(self) -> None:
        self._session = None


class FileSessionStore:
    """JSON file session store, used by the CLI.

    Args:
        path: File holding ``{"id": ..., "created_at": ...}``.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> Session | None:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return Session.from_dict(data)
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Ignoring unreadable session file {self.path}: {e}")
            return None

    def save(self, session: Session) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(session.to_dict()), encoding="utf-8")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


# =============================================================================
# Id helpers
# =============================================================================


def new_request_id(now_ms: int | None = None) -> str:
    """Create a request id of the form ``req_<epoch-ms>_<9 base36 chars>``.

    Args:
        now_ms: Epoch milliseconds (defaults to current time).

    Returns:
        Request id string.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(REQUEST_ID_SUFFIX_LEN))
    return f"req_{now_ms}_{suffix}"


def content_digest(content: str | bytes) -> str:
    """SHA-256 hex digest of text (UTF-8) or raw bytes."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def make_idempotency_key(session_id: str, stage: str, discriminator: str) -> str:
    """Derive a stable idempotency key.

    The key depends only on its inputs, so every retry of the same write,
    and a resumed write after cancellation, sends an identical key.

    Args:
        session_id: Owning session.
        stage: Pipeline stage id (e.g. "extract-entities").
        discriminator: Content digest or other call-specific token.

    Returns:
        64-char hex string.
    """
    return content_digest(f"{session_id}|{stage}|{discriminator}")


# =============================================================================
# Context
# =============================================================================


class SessionContext:
    """Explicit session value threaded through pipeline and adapter calls.

    Args:
        store: Backing session store. Defaults to a fresh MemorySessionStore.
        client_id: Client identifier sent as X-Client.
    """

    def __init__(self, store: SessionStore | None = None, client_id: str = "voxlayout"):
        self._store = store if store is not None else MemorySessionStore()
        self._lock = threading.Lock()
        self.client_id = client_id

    @classmethod
    def with_id(cls, session_id: str, client_id: str = "voxlayout") -> "SessionContext":
        """Build a context bound to an existing session id."""
        return cls(MemorySessionStore(Session(id=session_id)), client_id=client_id)

    @property
    def session(self) -> Session:
        """Current session, allocated on first access."""
        with self._lock:
            session = self._store.load()
            if session is None:
                session = Session(id=str(uuid.uuid4()))
                self._store.save(session)
                logger.debug(f"Allocated session {session.id}")
            return session

    def ensure_session_id(self) -> str:
        """Return the stored session id, creating and persisting one if absent."""
        return self.session.id

    def new_request_id(self) -> str:
        return new_request_id()

    def idempotency_key(self, stage: str, discriminator: str) -> str:
        return make_idempotency_key(self.ensure_session_id(), stage, discriminator)

    def reset(self) -> str:
        """Drop the stored session and allocate a new one."""
        with self._lock:
            self._store.clear()
        return self.ensure_session_id()


__all__ = [
    "FileSessionStore",
    "MemorySessionStore",
    "Session",
    "SessionContext",
    "SessionStore",
    "content_digest",
    "make_idempotency_key",
    "new_request_id",
]
