"""Resilient HTTP invoker.

Every call to a backend service goes through `ResilientInvoker.invoke`, which
adds correlation headers, enforces a per-attempt timeout, retries transient
failures with exponential backoff and returns a `Result` instead of raising.

Example:
    >>> invoker = ResilientInvoker("http://localhost:8001", service="extraction")
    >>> session = SessionContext()
    >>> result = invoker.invoke(
    ...     "/v2/ingest/full",
    ...     method="POST",
    ...     session=session,
    ...     stage="extract-entities",
    ...     discriminator=content_digest("создай кнопку"),
    ...     json={"text": "создай кнопку"},
    ... )
    >>> if result.ok:
    ...     print(result.value.json())
"""

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from voxlayout.session import SessionContext, make_idempotency_key

from .errors import (
    CancelledError,
    HttpStatusError,
    InvokeError,
    NetworkError,
    Result,
    ServiceTimeoutError,
)
from .retry import CancellationToken, RetryPolicy

logger = logging.getLogger(__name__)

WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

HEADER_REQUEST_ID = "X-Request-Id"
HEADER_SESSION_ID = "X-Session-Id"
HEADER_CLIENT = "X-Client"
HEADER_IDEMPOTENCY_KEY = "Idempotency-Key"


class ResilientInvoker:
    """HTTP caller with timeout, bounded retry and backoff.

    Args:
        base_url: Service base URL; targets are joined onto it.
        service: Service name used in logs and errors.
        policy: Retry policy (defaults: 2 retries, 1s initial delay).
        timeout: Default per-attempt timeout in seconds.
        client_id: Value of the X-Client header.
        api_key: Optional bearer token.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
        sleep: Optional sleep function replacing the cancellable wait.
    """

    def __init__(
        self,
        base_url: str,
        *,
        service: str = "service",
        policy: RetryPolicy | None = None,
        timeout: float = 10.0,
        client_id: str = "voxlayout",
        api_key: str | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.service = service
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self.client_id = client_id
        self._sleep = sleep
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
        self._client = httpx.Client(
            timeout=timeout, transport=transport, headers=headers
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ResilientInvoker":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # =========================================================================
    # Public API
    # =========================================================================

    def invoke(
        self,
        target: str,
        method: str = "GET",
        *,
        session: SessionContext,
        stage: str | None = None,
        discriminator: str | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
        files: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        timeout_s: float | None = None,
        max_retries: int | None = None,
        cancel: CancellationToken | None = None,
    ) -> Result[httpx.Response]:
        """Call ``target`` and return the 2xx response or a typed error.

        Args:
            target: Path relative to base_url (or an absolute URL).
            method: HTTP method.
            session: Session context supplying X-Session-Id.
            stage: Pipeline stage, part of the idempotency key for writes.
            discriminator: Content token, part of the idempotency key for writes.
            headers: Extra headers.
            params: Query parameters.
            json: JSON body.
            files: Multipart files (for audio upload).
            data: Multipart form fields.
            timeout_s: Per-attempt timeout; defaults to the invoker timeout.
            max_retries: Overrides the policy retry budget for this call.
            cancel: Cancellation token checked before attempts and during backoff.

        Returns:
            Result holding the httpx.Response on success, or one of
            NetworkError, ServiceTimeoutError, HttpStatusError, CancelledError.
        """
        method = method.upper()
        url = target if target.startswith(("http://", "https://")) else f"{self.base_url}{target}"
        session_id = session.ensure_session_id()
        request_id = session.new_request_id()
        timeout = self.timeout if timeout_s is None else timeout_s
        retries = self.policy.max_retries if max_retries is None else max_retries

        request_headers = {
            HEADER_REQUEST_ID: request_id,
            HEADER_SESSION_ID: session_id,
            HEADER_CLIENT: self.client_id,
        }
        if method in WRITE_METHODS:
            request_headers[HEADER_IDEMPOTENCY_KEY] = make_idempotency_key(
                session_id, stage or target, discriminator or ""
            )
        if headers:
            request_headers.update(headers)

        log_extra = {
            "session_id": session_id,
            "request_id": request_id,
            "method": method,
            "target": url,
        }

        attempt = 0
        while True:
            if cancel is not None and cancel.cancelled:
                return Result.failure(self._cancelled(url))

            error, response = self._attempt(
                method, url, request_headers, params, json, files, data, timeout,
                attempt, retries, log_extra,
            )
            if error is None:
                return Result.success(response)

            if not self.policy.should_retry(error, attempt, retries):
                return Result.failure(error)

            delay = self.policy.get_backoff_delay(attempt)
            logger.info(
                f"Retrying {method} {url} in {delay:.1f}s after {error.kind}",
                extra=log_extra,
            )
            if self._wait(delay, cancel):
                return Result.failure(self._cancelled(url))
            attempt += 1

    # =========================================================================
    # Internal
    # =========================================================================

    def _attempt(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        params: dict[str, Any] | None,
        json: Any,
        files: dict[str, Any] | None,
        data: dict[str, Any] | None,
        timeout: float,
        attempt: int,
        retries: int,
        log_extra: dict[str, Any],
    ) -> tuple[InvokeError | None, httpx.Response | None]:
        """Run one attempt and classify its outcome."""
        started = time.monotonic()
        status: int | None = None
        error: InvokeError | None = None
        response: httpx.Response | None = None

        try:
            request = self._client.build_request(
                method,
                url,
                headers=headers,
                params=params,
                json=json,
                files=files,
                data=data,
                timeout=timeout,
            )
            response = self._send(request, started + timeout)
            status = response.status_code
            if not 200 <= status < 300:
                error = HttpStatusError(
                    f"{self.service} returned {status}",
                    status,
                    response_body=response.text[:500],
                    service=self.service,
                )
        except httpx.TimeoutException as e:
            error = ServiceTimeoutError(
                f"{self.service} request timed out after {timeout}s: {e}",
                service=self.service,
            )
        except httpx.RequestError as e:
            error = NetworkError(
                f"{self.service} request failed: {e}", service=self.service
            )

        elapsed_ms = int((time.monotonic() - started) * 1000)
        extra = {**log_extra, "status": status, "elapsed_ms": elapsed_ms, "attempt": attempt + 1}
        level = logging.INFO if error is None else logging.WARNING
        outcome = status if status is not None else error.kind if error else "-"
        logger.log(
            level,
            f"{log_extra['method']} {url} -> {outcome} in {elapsed_ms}ms "
            f"(attempt {attempt + 1}/{retries + 1})",
            extra=extra,
        )
        return error, response if error is None else None

    def _send(self, request: httpx.Request, deadline: float) -> httpx.Response:
        """Send ``request`` and read the whole body before ``deadline``.

        httpx timeouts apply per connect/read/write phase; the deadline bounds
        the attempt as a whole, so a server trickling bytes still times out.

        Raises:
            httpx.ReadTimeout: If the body is still arriving at the deadline.
        """
        streamed = self._client.send(request, stream=True)
        try:
            chunks: list[bytes] = []
            for chunk in streamed.iter_bytes():
                if time.monotonic() > deadline:
                    raise httpx.ReadTimeout("attempt deadline exceeded", request=request)
                chunks.append(chunk)
        finally:
            streamed.close()
        # Body is already decoded; drop the headers that describe the wire encoding
        headers = [
            (key, value)
            for key, value in streamed.headers.multi_items()
            if key.lower() not in ("content-encoding", "content-length")
        ]
        return httpx.Response(
            streamed.status_code,
            headers=headers,
            content=b"".join(chunks),
            request=request,
            extensions=streamed.extensions,
        )

    def _wait(self, delay: float, cancel: CancellationToken | None) -> bool:
        """Sleep before a retry; return True if cancelled."""
        if self._sleep is not None:
            self._sleep(delay)
            return cancel is not None and cancel.cancelled
        if cancel is not None:
            return cancel.wait(delay)
        time.sleep(delay)
        return False

    def _cancelled(self, url: str) -> CancelledError:
        logger.info(f"Cancelled call to {url}")
        return CancelledError(f"{self.service} call cancelled", service=self.service)


__all__ = [
    "HEADER_CLIENT",
    "HEADER_IDEMPOTENCY_KEY",
    "HEADER_REQUEST_ID",
    "HEADER_SESSION_ID",
    "ResilientInvoker",
    "WRITE_METHODS",
]
