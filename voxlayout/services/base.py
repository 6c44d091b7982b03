"""Base class for service adapters.

An adapter wraps one ResilientInvoker and turns raw HTTP outcomes into typed
results. No transport exception escapes an adapter: every failure is an
InvokeError subclass carried in a Result or attached to a fallback value.
"""

import logging
from typing import Any

import httpx

from voxlayout.invoker import ResilientInvoker, Result, ServiceLogicError
from voxlayout.session import SessionContext

logger = logging.getLogger(__name__)

HEALTH_PROBE_SESSION = "health-probe"


class ServiceAdapter:
    """Common behavior for backend service adapters.

    Subclasses set ``name`` and, where the backend differs, ``health_path``.

    Args:
        invoker: Invoker bound to the service base URL.
        health_timeout: Timeout for health probes in seconds.
    """

    name = "service"
    health_path = "/healthz"

    def __init__(self, invoker: ResilientInvoker, *, health_timeout: float = 5.0):
        self.invoker = invoker
        self.health_timeout = health_timeout

    @property
    def base_url(self) -> str:
        return self.invoker.base_url

    def close(self) -> None:
        self.invoker.close()

    def health_check(self) -> bool:
        """Best-effort probe of the service health endpoint.

        Returns:
            True only for HTTP 200 with a JSON body whose status is "ok".
            Never raises.
        """
        result = self.invoker.invoke(
            self.health_path,
            session=SessionContext.with_id(HEALTH_PROBE_SESSION, self.invoker.client_id),
            timeout_s=self.health_timeout,
            max_retries=0,
        )
        if not result.ok or result.value.status_code != 200:
            logger.debug(f"{self.name} health probe failed: {result.error}")
            return False
        payload = self._json(result.value)
        return payload.ok and isinstance(payload.value, dict) and payload.value.get("status") == "ok"

    # =========================================================================
    # Response helpers
    # =========================================================================

    def _json(self, response: httpx.Response) -> Result[Any]:
        """Decode a JSON body, mapping decode failures to ServiceLogicError."""
        try:
            return Result.success(response.json())
        except ValueError as e:
            return Result.failure(
                ServiceLogicError(
                    f"{self.name} returned invalid JSON: {e}",
                    status=response.status_code,
                    reason="service-error",
                    service=self.name,
                )
            )

    def _payload(self, result: Result[httpx.Response]) -> Result[dict[str, Any]]:
        """Decode an invoker result into a JSON object with ``status`` checked.

        A body whose ``status`` is present and not "ok" is a domain failure.
        """
        if not result.ok:
            return Result.failure(result.error)
        decoded = self._json(result.value)
        if not decoded.ok:
            return decoded
        payload = decoded.value
        if not isinstance(payload, dict):
            return Result.failure(
                ServiceLogicError(
                    f"{self.name} returned {type(payload).__name__}, expected object",
                    reason="service-error",
                    service=self.name,
                )
            )
        status = payload.get("status")
        if status is not None and status != "ok":
            return Result.failure(
                ServiceLogicError(
                    payload.get("error") or f"{self.name} reported status '{status}'",
                    status=result.value.status_code,
                    reason="service-error",
                    service=self.name,
                )
            )
        return Result.success(payload)


__all__ = ["HEALTH_PROBE_SESSION", "ServiceAdapter"]
