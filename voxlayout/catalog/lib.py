"""Component catalog cache.

Process-wide TTL cache of the visual-mapping service's component catalog.
Refresh is last-writer-wins with no lock; readers tolerate races. The cache
is a latency optimization only: a permanently empty cache must not change
pipeline results.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_TTL = 60.0
UI_PREFIX = "ui."


class CatalogEntry(BaseModel):
    """A component the visual-mapping service can emit."""

    name: str = Field(..., description="Component name, e.g. 'ui.button'")
    display_name: str = Field(default="", description="Human-readable name")
    description: str = Field(default="", description="What the component is for")
    example_props: dict[str, Any] = Field(
        default_factory=dict, description="Example props for the component"
    )

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "CatalogEntry":
        """Build from the mapping service's component JSON.

        Accepts both the camelCase catalog shape and the service's
        ``{name, component_type, description, props}`` shape.
        """
        props = data.get("exampleProps") or data.get("example_props") or data.get("props")
        return cls(
            name=str(data.get("name") or data.get("component_type") or ""),
            display_name=str(data.get("displayName") or data.get("display_name") or ""),
            description=str(data.get("description") or ""),
            example_props=dict(props or {}),
        )


def _bare_name(component_type: str) -> str:
    return component_type[len(UI_PREFIX):] if component_type.startswith(UI_PREFIX) else component_type


class ComponentCatalogCache:
    """TTL cache holding one catalog snapshot.

    Args:
        ttl: Snapshot lifetime in seconds.
        clock: Monotonic clock, injectable for tests.

    Example:
        >>> cache = ComponentCatalogCache(ttl=60)
        >>> cache.get() is None
        True
        >>> cache.set([CatalogEntry(name="ui.button")])
        >>> cache.contains("button")
        True
    """

    def __init__(self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._snapshot: tuple[float, list[CatalogEntry]] | None = None

    def get(self) -> list[CatalogEntry] | None:
        """Return the snapshot if set within ttl, otherwise None."""
        snapshot = self._snapshot
        if snapshot is None:
            return None
        stamped_at, entries = snapshot
        if self._clock() - stamped_at >= self.ttl:
            return None
        return list(entries)

    def set(self, catalog: list[CatalogEntry]) -> None:
        self._snapshot = (self._clock(), list(catalog))
        logger.debug(f"Catalog cache refreshed with {len(catalog)} entries")

    def invalidate(self) -> None:
        self._snapshot = None

    @property
    def age(self) -> float | None:
        """Seconds since the snapshot was stored, or None if empty."""
        snapshot = self._snapshot
        if snapshot is None:
            return None
        return self._clock() - snapshot[0]

    def contains(self, component_type: str) -> bool | None:
        """Check whether a component type is in the fresh catalog.

        Accepts names with or without the ``ui.`` prefix.

        Returns:
            True/False against a fresh snapshot, None when the cache is cold.
        """
        entries = self.get()
        if entries is None:
            return None
        wanted = _bare_name(component_type)
        return any(_bare_name(entry.name) == wanted for entry in entries)


__all__ = ["DEFAULT_TTL", "CatalogEntry", "ComponentCatalogCache"]
