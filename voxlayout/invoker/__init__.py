"""Resilient invoker: HTTP calls with timeout, retry, backoff and cancellation."""

from .errors import (
    CancelledError,
    HttpStatusError,
    InvokeError,
    NetworkError,
    Result,
    ServiceError,
    ServiceLogicError,
    ServiceTimeoutError,
    ValidationError,
    is_retryable_status,
)
from .lib import (
    HEADER_CLIENT,
    HEADER_IDEMPOTENCY_KEY,
    HEADER_REQUEST_ID,
    HEADER_SESSION_ID,
    WRITE_METHODS,
    ResilientInvoker,
)
from .retry import CancellationToken, RetryPolicy

__all__ = [
    # Invoker
    "ResilientInvoker",
    "RetryPolicy",
    "CancellationToken",
    "WRITE_METHODS",
    "HEADER_CLIENT",
    "HEADER_IDEMPOTENCY_KEY",
    "HEADER_REQUEST_ID",
    "HEADER_SESSION_ID",
    # Results and errors
    "Result",
    "InvokeError",
    "ServiceError",
    "NetworkError",
    "ServiceTimeoutError",
    "HttpStatusError",
    "ServiceLogicError",
    "ValidationError",
    "CancelledError",
    "is_retryable_status",
]
