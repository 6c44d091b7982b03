"""Component catalog cache."""

from .lib import DEFAULT_TTL, CatalogEntry, ComponentCatalogCache

__all__ = ["DEFAULT_TTL", "CatalogEntry", "ComponentCatalogCache"]
