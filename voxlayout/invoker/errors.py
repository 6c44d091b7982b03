"""Error taxonomy and Result type shared by the invoker and service adapters.

Every failure that crosses an adapter boundary is one of the InvokeError
subclasses below, returned inside a `Result` rather than raised. Only
`ValidationError` is ever raised, and only for invalid caller input.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class InvokeError(Exception):
    """Base error for service invocation.

    Attributes:
        message: Human-readable description.
        kind: Short machine-readable category.
        status: HTTP status code, when one was received.
        retryable: Whether another attempt may succeed.
        reason: Optional domain reason (e.g. "too-short", "silence-detected").
        service: Name of the service that produced the error.
    """

    kind = "error"
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        retryable: bool | None = None,
        reason: str | None = None,
        service: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.retryable = self.default_retryable if retryable is None else retryable
        self.reason = reason
        self.service = service

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind,
            "message": self.message,
            "status": self.status,
            "retryable": self.retryable,
            "reason": self.reason,
            "service": self.service,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.message!r}, status={self.status}, "
            f"retryable={self.retryable}, reason={self.reason!r})"
        )


# Adapters document their failures as ServiceError; it is the taxonomy root.
ServiceError = InvokeError


class NetworkError(InvokeError):
    """Connection-level failure (refused, DNS, reset)."""

    kind = "network"
    default_retryable = True


class ServiceTimeoutError(InvokeError):
    """Per-attempt deadline exceeded; the in-flight request was aborted."""

    kind = "timeout"
    default_retryable = True


class HttpStatusError(InvokeError):
    """Non-2xx HTTP response. Retryable only for 429 and 5xx.

    Attributes:
        response_body: First 500 chars of the response body.
    """

    kind = "http-status"

    def __init__(
        self,
        message: str,
        status: int,
        response_body: str | None = None,
        *,
        reason: str | None = None,
        service: str | None = None,
    ):
        super().__init__(
            message,
            status=status,
            retryable=is_retryable_status(status),
            reason=reason,
            service=service,
        )
        self.response_body = response_body


class ServiceLogicError(InvokeError):
    """The service was reachable but reported a domain failure."""

    kind = "service-logic"


class ValidationError(InvokeError):
    """Invalid caller input. Never retried, never sent to the network."""

    kind = "validation"


class CancelledError(InvokeError):
    """The caller cancelled the request."""

    kind = "cancelled"

    def __init__(self, message: str = "Request cancelled", **kwargs):
        kwargs.setdefault("reason", "cancelled")
        super().__init__(message, **kwargs)


def is_retryable_status(status: int) -> bool:
    """HTTP 429 and any 5xx are transient; every other status is terminal."""
    return status == 429 or 500 <= status <= 599


# =============================================================================
# Result
# =============================================================================


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an invocation: either a value or an InvokeError.

    Example:
        >>> r = Result.success(42)
        >>> r.ok, r.value
        (True, 42)
        >>> Result.failure(NetworkError("refused")).ok
        False
    """

    value: T | None = None
    error: InvokeError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: InvokeError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


__all__ = [
    "CancelledError",
    "HttpStatusError",
    "InvokeError",
    "NetworkError",
    "Result",
    "ServiceError",
    "ServiceLogicError",
    "ServiceTimeoutError",
    "ValidationError",
    "is_retryable_status",
]
