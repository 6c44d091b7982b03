"""Retry policy for service invocation.

Backoff before retry n (0-based) is ``initial_delay * 2**n``, capped at
``max_delay``.
"""

import threading
from dataclasses import dataclass

from .errors import InvokeError


@dataclass
class RetryPolicy:
    """Configuration for the retry loop.

    Attributes:
        max_retries: Retries after the first attempt (2 = at most 3 attempts).
        exponential_backoff: Use exponential backoff between attempts.
        initial_delay: Delay before the first retry (seconds).
        max_delay: Maximum delay between retries (seconds).
    """

    max_retries: int = 2
    exponential_backoff: bool = True
    initial_delay: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_delay < 0:
            raise ValueError(f"initial_delay must be >= 0, got {self.initial_delay}")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def get_backoff_delay(self, attempt: int) -> float:
        """Calculate backoff delay for retry attempt.

        Args:
            attempt: Retry number (0-based).

        Returns:
            Delay in seconds before the next attempt.
        """
        if not self.exponential_backoff:
            return self.initial_delay

        delay = self.initial_delay * (2**attempt)
        return min(delay, self.max_delay)

    def should_retry(
        self, error: InvokeError, attempt: int, max_retries: int | None = None
    ) -> bool:
        """Determine if an error should trigger another attempt.

        Args:
            error: Error from the attempt that just failed.
            attempt: Attempt number that failed (0-based).
            max_retries: Per-call retry budget; defaults to the policy's.

        Returns:
            True if a retry is allowed and worthwhile.
        """
        budget = self.max_retries if max_retries is None else max_retries
        if attempt >= budget:
            return False
        return error.retryable


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a request.

    Backoff sleeps wait on the token, so cancelling wakes them immediately.

    Example:
        >>> token = CancellationToken()
        >>> token.cancel()
        >>> token.cancelled
        True
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True if cancelled meanwhile."""
        return self._event.wait(timeout)


__all__ = ["CancellationToken", "RetryPolicy"]
