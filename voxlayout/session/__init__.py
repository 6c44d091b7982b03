"""Session context: session ids, request ids, idempotency keys."""

from .lib import (
    FileSessionStore,
    MemorySessionStore,
    Session,
    SessionContext,
    SessionStore,
    content_digest,
    make_idempotency_key,
    new_request_id,
)

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
