"""Factory wiring service adapters from environment configuration.

Example:
    >>> services = create_services()
    >>> status = services.health()  # {"transcription": True, ...}
    >>> services.close()
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from voxlayout.catalog import ComponentCatalogCache
from voxlayout.config import EnvVar, get_environment, get_layout_db_path, get_service_urls
from voxlayout.invoker import ResilientInvoker, RetryPolicy

from .extraction import ExtractionAdapter
from .mapping import MappingAdapter
from .persistence import HttpLayoutStore, LayoutStore, SqliteLayoutStore
from .transcription import TranscriptionAdapter

logger = logging.getLogger(__name__)

LAYOUT_STORE_BACKENDS = ("sqlite", "http")


@dataclass
class ServiceBundle:
    """The adapters one pipeline needs.

    Attributes:
        transcription: Speech transcription adapter.
        extraction: Entity-extraction adapter.
        mapping: Visual-mapping adapter.
        store: Layout persistence backend.
        catalog: Shared component catalog cache.
    """

    transcription: TranscriptionAdapter
    extraction: ExtractionAdapter
    mapping: MappingAdapter
    store: LayoutStore
    catalog: ComponentCatalogCache

    def health(self) -> dict[str, bool]:
        """Probe every service; never raises."""
        return {
            "transcription": self.transcription.health_check(),
            "extraction": self.extraction.health_check(),
            "mapping": self.mapping.health_check(),
            "layout_store": self.store.health_check(),
        }

    def close(self) -> None:
        for adapter in (self.transcription, self.extraction, self.mapping, self.store):
            close = getattr(adapter, "close", None)
            if close is not None:
                close()


def create_services(
    *,
    catalog: ComponentCatalogCache | None = None,
    store: LayoutStore | None = None,
    layout_store: str | None = None,
    transport: httpx.BaseTransport | None = None,
    sleep: Callable[[float], None] | None = None,
    max_retries: int | None = None,
) -> ServiceBundle:
    """Build adapters from environment configuration.

    Args:
        catalog: Shared catalog cache; a new one with CATALOG_TTL if omitted.
        store: Explicit layout store, bypassing LAYOUT_STORE.
        layout_store: Backend name override ("sqlite" or "http").
        transport: httpx transport for every invoker (tests use MockTransport).
        sleep: Backoff sleep override for every invoker.
        max_retries: Retry budget override.

    Returns:
        ServiceBundle with all adapters.

    Raises:
        ValueError: If the layout store backend name is unknown.
    """
    urls = get_service_urls()
    policy = RetryPolicy(
        max_retries=get_environment(EnvVar.INVOKER_MAX_RETRIES, override=max_retries),
        initial_delay=get_environment(EnvVar.INVOKER_BACKOFF_BASE),
    )
    timeout = get_environment(EnvVar.INVOKER_TIMEOUT)
    health_timeout = get_environment(EnvVar.HEALTH_TIMEOUT)
    client_id = get_environment(EnvVar.CLIENT_ID)
    api_key = get_environment(EnvVar.SERVICE_API_KEY)
    language = get_environment(EnvVar.DEFAULT_LANGUAGE)

    def invoker(service: str) -> ResilientInvoker:
        return ResilientInvoker(
            urls[service],
            service=service,
            policy=policy,
            timeout=timeout,
            client_id=client_id,
            api_key=api_key,
            transport=transport,
            sleep=sleep,
        )

    if catalog is None:
        catalog = ComponentCatalogCache(ttl=get_environment(EnvVar.CATALOG_TTL))

    if store is None:
        backend = layout_store or get_environment(EnvVar.LAYOUT_STORE)
        if backend not in LAYOUT_STORE_BACKENDS:
            raise ValueError(
                f"Unknown layout store '{backend}'. Available: {', '.join(LAYOUT_STORE_BACKENDS)}"
            )
        if backend == "http":
            store = HttpLayoutStore(invoker("layout_store"), health_timeout=health_timeout)
        else:
            store = SqliteLayoutStore(get_layout_db_path())

    logger.debug(f"Created services: {urls}")
    return ServiceBundle(
        transcription=TranscriptionAdapter(
            invoker("transcription"),
            min_audio_bytes=get_environment(EnvVar.MIN_AUDIO_BYTES),
            default_language=language,
            health_timeout=health_timeout,
        ),
        extraction=ExtractionAdapter(
            invoker("extraction"), default_language=language, health_timeout=health_timeout
        ),
        mapping=MappingAdapter(
            invoker("mapping"), catalog=catalog, health_timeout=health_timeout
        ),
        store=store,
        catalog=catalog,
    )


__all__ = ["LAYOUT_STORE_BACKENDS", "ServiceBundle", "create_services"]
