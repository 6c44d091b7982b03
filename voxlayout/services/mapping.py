"""Visual component mapping adapter."""

import json
import logging

from voxlayout.catalog import CatalogEntry, ComponentCatalogCache
from voxlayout.invoker import (
    CancellationToken,
    ResilientInvoker,
    ServiceLogicError,
    ValidationError,
)
from voxlayout.layout import DEFAULT_TEMPLATE, MappingLayout, parse_mapping_layout
from voxlayout.progress import Stage
from voxlayout.session import SessionContext, content_digest

from .base import ServiceAdapter

logger = logging.getLogger(__name__)

CATALOG_SESSION = "catalog"


class MappingAdapter(ServiceAdapter):
    """Typed wrapper over the visual-mapping service.

    Args:
        invoker: Invoker bound to the mapping base URL.
        catalog: Shared component catalog cache.
    """

    name = "mapping"

    def __init__(
        self,
        invoker: ResilientInvoker,
        *,
        catalog: ComponentCatalogCache | None = None,
        health_timeout: float = 5.0,
    ):
        super().__init__(invoker, health_timeout=health_timeout)
        self.catalog = catalog if catalog is not None else ComponentCatalogCache()

    def map_entities(
        self,
        session: SessionContext,
        entities: list[str],
        keyphrases: list[str] | None = None,
        template: str = DEFAULT_TEMPLATE,
        *,
        cancel: CancellationToken | None = None,
    ) -> MappingLayout:
        """Map extracted terms to UI components.

        Args:
            session: Session context.
            entities: Extracted entities; must be non-empty.
            keyphrases: Extracted keyphrases; defaults to entities.
            template: Page template.
            cancel: Cancellation token.

        Returns:
            MappingLayout; on failure a layout with empty sections and
            count 0, with the error attached.

        Raises:
            ValidationError: If entities is empty.
        """
        if not entities:
            raise ValidationError("map_entities requires at least one entity", service=self.name)

        keyphrases = list(keyphrases) if keyphrases else list(entities)
        session_id = session.ensure_session_id()
        body = {
            "session_id": session_id,
            "entities": list(entities),
            "keyphrases": keyphrases,
            "template": template,
        }
        discriminator = content_digest(
            json.dumps([body["entities"], keyphrases, template], ensure_ascii=False)
        )

        result = self.invoker.invoke(
            "/v1/map",
            method="POST",
            session=session,
            stage=Stage.MAP_VISUAL.value,
            discriminator=discriminator,
            json=body,
            cancel=cancel,
        )
        payload = self._payload(result)
        if not payload.ok:
            logger.warning(f"Visual mapping failed for {session_id}: {payload.error}")
            return MappingLayout.empty(template, error=payload.error)
        return self._parse_layout(payload.value, template)

    def get_layout(
        self,
        session: SessionContext,
        *,
        template: str = DEFAULT_TEMPLATE,
        cancel: CancellationToken | None = None,
    ) -> MappingLayout:
        """Fetch the last mapped layout for a session."""
        session_id = session.ensure_session_id()
        result = self.invoker.invoke(f"/v1/layout/{session_id}", session=session, cancel=cancel)
        payload = self._payload(result)
        if not payload.ok:
            return MappingLayout.empty(template, error=payload.error)
        return self._parse_layout(payload.value, template)

    def list_components(self, *, refresh: bool = False) -> list[CatalogEntry]:
        """Component catalog, read through the cache.

        Args:
            refresh: Bypass a fresh cached snapshot.

        Returns:
            Catalog entries; [] if the service cannot be reached.
        """
        if not refresh:
            cached = self.catalog.get()
            if cached is not None:
                return cached

        result = self.invoker.invoke(
            "/v1/components",
            session=SessionContext.with_id(CATALOG_SESSION, self.invoker.client_id),
        )
        payload = self._payload(result)
        if not payload.ok:
            logger.warning(f"Component catalog unavailable: {payload.error}")
            return []

        entries = [
            CatalogEntry.from_wire(item)
            for item in payload.value.get("components") or []
            if isinstance(item, dict)
        ]
        self.catalog.set(entries)
        return entries

    def get_templates(self) -> list[str]:
        """Available page templates, falling back to the default template."""
        result = self.invoker.invoke(
            "/v1/templates",
            session=SessionContext.with_id(CATALOG_SESSION, self.invoker.client_id),
            max_retries=0,
        )
        payload = self._payload(result)
        if not payload.ok:
            return [DEFAULT_TEMPLATE]

        templates: list[str] = []
        for item in payload.value.get("templates") or []:
            if isinstance(item, str):
                templates.append(item)
            elif isinstance(item, dict) and (item.get("name") or item.get("id")):
                templates.append(str(item.get("name") or item.get("id")))
        return templates or [DEFAULT_TEMPLATE]

    def _parse_layout(self, payload: dict, template: str) -> MappingLayout:
        try:
            return parse_mapping_layout(payload)
        except (TypeError, ValueError) as e:
            return MappingLayout.empty(
                template,
                error=ServiceLogicError(
                    f"Malformed mapping response: {e}",
                    reason="service-error",
                    service=self.name,
                ),
            )


__all__ = ["MappingAdapter"]
