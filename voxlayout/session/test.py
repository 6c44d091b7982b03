"""Tests for session context."""

import re

import pytest

from .lib import (
    FileSessionStore,
    MemorySessionStore,
    Session,
    SessionContext,
    content_digest,
    make_idempotency_key,
    new_request_id,
)

REQUEST_ID_RE = re.compile(r"^req_\d+_[0-9a-z]{9}$")


class TestRequestId:
    """Tests for request id allocation."""

    @pytest.mark.unit
    def test_format(self):
        """Request ids follow req_<ms>_<base36>."""
        assert REQUEST_ID_RE.match(new_request_id())

    @pytest.mark.unit
    def test_uses_given_timestamp(self):
        """Explicit timestamp is embedded."""
        assert new_request_id(now_ms=1700000000000).startswith("req_1700000000000_")

    @pytest.mark.unit
    def test_unique(self):
        """Consecutive ids differ."""
        ids = {new_request_id(now_ms=1) for _ in range(50)}
        assert len(ids) == 50


class TestIdempotencyKey:
    """Tests for derived idempotency keys."""

    @pytest.mark.unit
    def test_stable(self):
        """Same inputs yield the same key."""
        a = make_idempotency_key("s1", "extract-entities", "abc")
        b = make_idempotency_key("s1", "extract-entities", "abc")
        assert a == b
        assert len(a) == 64

    @pytest.mark.unit
    def test_varies_by_input(self):
        """Each component changes the key."""
        base = make_idempotency_key("s1", "persist", "x")
        assert make_idempotency_key("s2", "persist", "x") != base
        assert make_idempotency_key("s1", "map-visual", "x") != base
        assert make_idempotency_key("s1", "persist", "y") != base

    @pytest.mark.unit
    def test_content_digest_text_and_bytes(self):
        """Text digests match digests of its UTF-8 bytes."""
        assert content_digest("привет") == content_digest("привет".encode())


class TestSessionContext:
    """Tests for SessionContext."""

    @pytest.mark.unit
    def test_ensure_session_id_is_stable(self):
        """Session id is allocated once."""
        ctx = SessionContext()
        sid = ctx.ensure_session_id()
        assert ctx.ensure_session_id() == sid

    @pytest.mark.unit
    def test_uses_stored_session(self):
        """Existing stored session is reused."""
        store = MemorySessionStore(Session(id="existing"))
        assert SessionContext(store).ensure_session_id() == "existing"

    @pytest.mark.unit
    def test_with_id(self):
        """with_id binds to a known session."""
        assert SessionContext.with_id("abc").ensure_session_id() == "abc"

    @pytest.mark.unit
    def test_reset_allocates_new_id(self):
        """reset() forgets the old session."""
        ctx = SessionContext()
        old = ctx.ensure_session_id()
        assert ctx.reset() != old

    @pytest.mark.unit
    def test_idempotency_key_uses_session(self):
        """Context key matches the free function for its session."""
        ctx = SessionContext.with_id("s1")
        assert ctx.idempotency_key("persist", "d") == make_idempotency_key("s1", "persist", "d")


class TestFileSessionStore:
    """Tests for the JSON file store."""

    @pytest.mark.unit
    def test_round_trip(self, tmp_path):
        """Saved session loads back."""
        store = FileSessionStore(tmp_path / "session.json")
        sid = SessionContext(store).ensure_session_id()
        loaded = FileSessionStore(tmp_path / "session.json").load()
        assert loaded is not None
        assert loaded.id == sid

    @pytest.mark.unit
    def test_missing_file(self, tmp_path):
        """Missing file means no session."""
        assert FileSessionStore(tmp_path / "nope.json").load() is None

    @pytest.mark.unit
    def test_corrupt_file_ignored(self, tmp_path):
        """Unreadable file is treated as absent."""
        path = tmp_path / "session.json"
        path.write_text("{not json")
        assert FileSessionStore(path).load() is None

    @pytest.mark.unit
    def test_clear(self, tmp_path):
        """clear() removes the file."""
        path = tmp_path / "session.json"
        store = FileSessionStore(path)
        store.save(Session(id="x"))
        store.clear()
        assert not path.exists()
