"""Tests for the resilient invoker."""

import gzip
import socket
import threading
import time

import httpx
import pytest

from voxlayout.session import SessionContext, content_digest, make_idempotency_key

from .errors import (
    CancelledError,
    HttpStatusError,
    NetworkError,
    Result,
    ServiceTimeoutError,
    is_retryable_status,
)
from .lib import ResilientInvoker
from .retry import CancellationToken, RetryPolicy

# =============================================================================
# Helpers
# =============================================================================


class Recorder:
    """MockTransport handler that replays canned outcomes and records requests."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, int):
            return httpx.Response(outcome, json={"status": "ok"})
        return outcome


def make_invoker(handler, sleeps=None, **kwargs) -> ResilientInvoker:
    sleeps = sleeps if sleeps is not None else []
    return ResilientInvoker(
        "http://svc.test",
        service="test",
        transport=httpx.MockTransport(handler),
        sleep=sleeps.append,
        **kwargs,
    )


class SlowStream(httpx.SyncByteStream):
    """Body that yields one byte per ``interval`` seconds."""

    def __init__(self, chunks: int, interval: float):
        self.chunks = chunks
        self.interval = interval

    def __iter__(self):
        for _ in range(self.chunks):
            time.sleep(self.interval)
            yield b"x"


@pytest.fixture
def trickle_server():
    """Local HTTP server that sends headers, then one body byte every 0.4s."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    listener.settimeout(5.0)
    stop = threading.Event()

    def serve():
        try:
            conn, _ = listener.accept()
        except OSError:
            return
        with conn:
            try:
                buffer = b""
                while b"\r\n\r\n" not in buffer:
                    data = conn.recv(4096)
                    if not data:
                        return
                    buffer += data
                conn.sendall(
                    b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\n"
                    b"Content-Length: 100\r\n\r\n"
                )
                for _ in range(100):
                    if stop.wait(0.4):
                        return
                    conn.sendall(b"x")
            except OSError:
                return

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    host, port = listener.getsockname()
    yield f"http://{host}:{port}"
    stop.set()
    listener.close()
    thread.join(timeout=2.0)


# =============================================================================
# Policy
# =============================================================================


class TestRetryPolicy:
    """Tests for backoff and retry decisions."""

    @pytest.mark.unit
    def test_exponential_delays(self):
        """Delay doubles per retry."""
        policy = RetryPolicy()
        assert [policy.get_backoff_delay(n) for n in range(3)] == [1.0, 2.0, 4.0]

    @pytest.mark.unit
    def test_delay_capped(self):
        """Delay never exceeds max_delay."""
        policy = RetryPolicy(max_delay=3.0)
        assert policy.get_backoff_delay(5) == 3.0

    @pytest.mark.unit
    def test_should_retry_respects_budget(self):
        """No retry once the budget is spent."""
        policy = RetryPolicy(max_retries=1)
        err = NetworkError("down")
        assert policy.should_retry(err, 0) is True
        assert policy.should_retry(err, 1) is False

    @pytest.mark.unit
    def test_should_retry_call_budget_overrides_policy(self):
        """An explicit budget replaces the policy's max_retries."""
        policy = RetryPolicy(max_retries=0)
        err = NetworkError("down")
        assert policy.should_retry(err, 1, max_retries=3) is True
        assert policy.should_retry(err, 3, max_retries=3) is False

    @pytest.mark.unit
    def test_should_retry_skips_terminal_errors(self):
        """Non-retryable errors never retry, whatever the budget."""
        policy = RetryPolicy(max_retries=5)
        assert policy.should_retry(HttpStatusError("gone", 404), 0) is False

    @pytest.mark.unit
    def test_negative_retries_rejected(self):
        """Negative budget is invalid."""
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=-1)

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "status,expected",
        [(429, True), (500, True), (503, True), (599, True), (400, False), (404, False), (409, False)],
    )
    def test_retryable_status(self, status, expected):
        """Only 429 and 5xx are transient."""
        assert is_retryable_status(status) is expected


class TestResult:
    """Tests for the Result type."""

    @pytest.mark.unit
    def test_unwrap_raises_error(self):
        """unwrap() raises the carried error."""
        with pytest.raises(NetworkError):
            Result.failure(NetworkError("x")).unwrap()

    @pytest.mark.unit
    def test_success(self):
        """Successful result exposes value."""
        assert Result.success(3).unwrap() == 3


# =============================================================================
# Invoker
# =============================================================================


class TestInvokeRetries:
    """Tests for retry behavior."""

    @pytest.mark.unit
    def test_503_makes_three_attempts(self):
        """Always-503 service: 3 attempts with 1s and 2s backoff."""
        handler = Recorder(503)
        sleeps: list[float] = []
        invoker = make_invoker(handler, sleeps)

        result = invoker.invoke("/x", session=SessionContext())

        assert not result.ok
        assert isinstance(result.error, HttpStatusError)
        assert result.error.status == 503
        assert result.error.retryable is True
        assert len(handler.requests) == 3
        assert sleeps == [1.0, 2.0]

    @pytest.mark.unit
    def test_404_is_terminal(self):
        """4xx other than 429 is not retried."""
        handler = Recorder(404)
        sleeps: list[float] = []
        result = make_invoker(handler, sleeps).invoke("/x", session=SessionContext())
        assert result.error.status == 404
        assert len(handler.requests) == 1
        assert sleeps == []

    @pytest.mark.unit
    def test_recovers_after_transient_failure(self):
        """429 then 200 succeeds on the second attempt."""
        handler = Recorder(429, 200)
        result = make_invoker(handler).invoke("/x", session=SessionContext())
        assert result.ok
        assert result.value.status_code == 200
        assert len(handler.requests) == 2

    @pytest.mark.unit
    def test_timeout_is_retried(self):
        """Timeouts become ServiceTimeoutError and are retried."""
        handler = Recorder(httpx.ReadTimeout("slow"))
        result = make_invoker(handler).invoke("/x", session=SessionContext(), max_retries=1)
        assert isinstance(result.error, ServiceTimeoutError)
        assert len(handler.requests) == 2

    @pytest.mark.unit
    def test_connection_error_is_network_error(self):
        """Connection failures become NetworkError."""
        handler = Recorder(httpx.ConnectError("refused"))
        result = make_invoker(handler).invoke("/x", session=SessionContext(), max_retries=0)
        assert isinstance(result.error, NetworkError)
        assert result.error.service == "test"

    @pytest.mark.unit
    def test_zero_retries_single_attempt(self):
        """max_retries=0 means exactly one attempt."""
        handler = Recorder(500)
        make_invoker(handler).invoke("/x", session=SessionContext(), max_retries=0)
        assert len(handler.requests) == 1

    @pytest.mark.unit
    def test_policy_decides_retries(self):
        """The retry loop defers to the policy's should_retry."""

        class NeverRetry(RetryPolicy):
            def should_retry(self, error, attempt, max_retries=None):
                return False

        handler = Recorder(503)
        sleeps: list[float] = []
        result = make_invoker(handler, sleeps, policy=NeverRetry(max_retries=5)).invoke(
            "/x", session=SessionContext()
        )
        assert result.error.status == 503
        assert len(handler.requests) == 1
        assert sleeps == []


class TestInvokeDeadline:
    """Tests for the whole-attempt timeout."""

    @pytest.mark.unit
    def test_slow_body_times_out(self):
        """A body still arriving at the deadline is a ServiceTimeoutError."""
        handler = Recorder(httpx.Response(200, stream=SlowStream(chunks=20, interval=0.1)))
        started = time.monotonic()
        result = make_invoker(handler, timeout=0.3).invoke(
            "/x", session=SessionContext(), max_retries=0
        )

        assert isinstance(result.error, ServiceTimeoutError)
        assert result.error.retryable is True
        assert time.monotonic() - started < 1.5

    @pytest.mark.unit
    def test_body_within_deadline(self):
        """A body that completes in time is returned whole."""
        handler = Recorder(httpx.Response(200, stream=SlowStream(chunks=3, interval=0.01)))
        result = make_invoker(handler, timeout=5.0).invoke("/x", session=SessionContext())
        assert result.ok
        assert result.value.content == b"xxx"

    @pytest.mark.unit
    def test_compressed_body_decoded(self):
        """Content-encoding is decoded once on the returned response."""
        handler = Recorder(
            httpx.Response(
                200,
                content=gzip.compress(b'{"status": "ok"}'),
                headers={"Content-Encoding": "gzip", "Content-Type": "application/json"},
            )
        )
        result = make_invoker(handler).invoke("/x", session=SessionContext())
        assert result.value.json() == {"status": "ok"}

    @pytest.mark.integration
    def test_trickling_server_times_out(self, trickle_server):
        """A real server dripping bytes cannot hold an attempt past its timeout."""
        invoker = ResilientInvoker(trickle_server, service="trickle", timeout=1.0)
        started = time.monotonic()
        with invoker:
            result = invoker.invoke("/slow", session=SessionContext(), max_retries=0)
        elapsed = time.monotonic() - started

        assert isinstance(result.error, ServiceTimeoutError)
        assert result.error.service == "trickle"
        assert elapsed < 3.0


class TestInvokeHeaders:
    """Tests for correlation headers."""

    @pytest.mark.unit
    def test_correlation_headers(self):
        """Every call carries request, session and client headers."""
        handler = Recorder(200)
        session = SessionContext.with_id("sess-1")
        make_invoker(handler, client_id="web").invoke("/x", session=session)

        request = handler.requests[0]
        assert request.headers["X-Session-Id"] == "sess-1"
        assert request.headers["X-Client"] == "web"
        assert request.headers["X-Request-Id"].startswith("req_")
        assert "Idempotency-Key" not in request.headers

    @pytest.mark.unit
    def test_idempotency_key_stable_across_retries(self):
        """Write calls reuse one derived key on every attempt."""
        handler = Recorder(503)
        session = SessionContext.with_id("sess-1")
        digest = content_digest("hello")
        make_invoker(handler).invoke(
            "/ingest",
            method="POST",
            session=session,
            stage="extract-entities",
            discriminator=digest,
            json={"text": "hello"},
        )

        keys = {r.headers["Idempotency-Key"] for r in handler.requests}
        assert keys == {make_idempotency_key("sess-1", "extract-entities", digest)}
        request_ids = {r.headers["X-Request-Id"] for r in handler.requests}
        assert len(request_ids) == 1

    @pytest.mark.unit
    def test_fresh_request_id_per_call(self):
        """Separate logical calls get separate request ids."""
        handler = Recorder(200)
        invoker = make_invoker(handler)
        session = SessionContext()
        invoker.invoke("/a", session=session)
        invoker.invoke("/b", session=session)
        ids = [r.headers["X-Request-Id"] for r in handler.requests]
        assert ids[0] != ids[1]

    @pytest.mark.unit
    def test_api_key_sent_as_bearer(self):
        """Configured api key becomes an Authorization header."""
        handler = Recorder(200)
        make_invoker(handler, api_key="secret").invoke("/x", session=SessionContext())
        assert handler.requests[0].headers["Authorization"] == "Bearer secret"

    @pytest.mark.unit
    def test_multipart_body(self):
        """files/data bodies are sent as multipart."""
        handler = Recorder(200)
        make_invoker(handler).invoke(
            "/upload",
            method="POST",
            session=SessionContext(),
            files={"file": ("a.webm", b"\x00" * 10, "audio/webm")},
            data={"lang": "ru-RU"},
        )
        assert handler.requests[0].headers["content-type"].startswith("multipart/form-data")


class TestInvokeCancellation:
    """Tests for cancellation."""

    @pytest.mark.unit
    def test_cancel_before_call(self):
        """Cancelled token short-circuits with no network call."""
        handler = Recorder(200)
        token = CancellationToken()
        token.cancel()
        result = make_invoker(handler).invoke("/x", session=SessionContext(), cancel=token)
        assert isinstance(result.error, CancelledError)
        assert result.error.retryable is False
        assert handler.requests == []

    @pytest.mark.unit
    def test_cancel_during_backoff(self):
        """Cancelling while sleeping stops the retry loop."""
        handler = Recorder(503)
        token = CancellationToken()
        invoker = ResilientInvoker(
            "http://svc.test",
            transport=httpx.MockTransport(handler),
            sleep=lambda _delay: token.cancel(),
        )
        result = invoker.invoke("/x", session=SessionContext(), cancel=token)
        assert isinstance(result.error, CancelledError)
        assert len(handler.requests) == 1

    @pytest.mark.unit
    def test_token_wait_wakes_on_cancel(self):
        """Token wait returns immediately once cancelled."""
        token = CancellationToken()
        token.cancel()
        assert token.wait(10.0) is True
