"""Layout models and the normalizer that reconciles upstream layouts."""

from .lib import (
    LayoutIssue,
    LayoutSource,
    LayoutStats,
    clamp_confidence,
    empty_layout,
    layout_stats,
    normalize,
    parse_extraction_layout,
    parse_mapping_layout,
    prefix_component_type,
    validate_layout,
)
from .models import (
    DEFAULT_TEMPLATE,
    KNOWN_TEMPLATES,
    SECTION_ORDER,
    CanonicalLayout,
    ComponentInstance,
    ComponentMatch,
    ExtractionLayout,
    LayoutMetadata,
    LayoutSections,
    MappingLayout,
    MatchType,
    Section,
    UpstreamComponent,
)

__all__ = [
    # Models
    "CanonicalLayout",
    "ComponentInstance",
    "ComponentMatch",
    "ExtractionLayout",
    "LayoutMetadata",
    "LayoutSections",
    "MappingLayout",
    "MatchType",
    "Section",
    "UpstreamComponent",
    "DEFAULT_TEMPLATE",
    "KNOWN_TEMPLATES",
    "SECTION_ORDER",
    # Normalizer
    "LayoutSource",
    "normalize",
    "parse_extraction_layout",
    "parse_mapping_layout",
    "empty_layout",
    "prefix_component_type",
    "clamp_confidence",
    # Inspection
    "LayoutIssue",
    "LayoutStats",
    "layout_stats",
    "validate_layout",
]
