"""Layout normalizer.

Pure conversion of the upstream layout shapes into the CanonicalLayout.

Rules:
    - The result always has hero, main and footer. Components in any other
      upstream section are appended to main in their original order.
    - Component types get a ``ui.`` prefix; an empty name becomes ``ui.unknown``.
    - A mapping layout's matches fill in confidence and match type for
      components that carry neither, keyed by the prefixed component type.
    - Missing confidence defaults to 1.0 and is clamped to [0, 1].
    - Missing match type defaults to ``unknown``.
    - normalize(normalize(x)) == normalize(x).

Example:
    >>> raw = {"layout": {"template": "hero-main-footer",
    ...        "sections": {"hero": [{"component": "heading", "confidence": 0.9}]}}}
    >>> layout = normalize(parse_mapping_layout(raw), session_id="s1")
    >>> layout.sections.hero[0].type
    'ui.heading'
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .models import (
    DEFAULT_TEMPLATE,
    SECTION_ORDER,
    UI_PREFIX,
    UNKNOWN_COMPONENT,
    UNKNOWN_MATCH_TYPE,
    CanonicalLayout,
    ComponentInstance,
    ComponentMatch,
    ExtractionLayout,
    LayoutMetadata,
    LayoutSections,
    MappingLayout,
    UpstreamComponent,
)

logger = logging.getLogger(__name__)

LayoutSource = ExtractionLayout | MappingLayout | CanonicalLayout

SOURCE_STAGES = {
    ExtractionLayout: "extract-entities",
    MappingLayout: "map-visual",
}


# =============================================================================
# Component helpers
# =============================================================================


def prefix_component_type(name: str | None) -> str:
    """Return ``name`` with the ``ui.`` prefix, or ``ui.unknown`` if empty."""
    name = (name or "").strip()
    if not name or name == UI_PREFIX:
        return UNKNOWN_COMPONENT
    if name.startswith(UI_PREFIX):
        return name
    return f"{UI_PREFIX}{name}"


def clamp_confidence(value: float | None) -> float:
    """Default missing or NaN confidence to 1.0 and clamp to [0, 1]."""
    if value is None or math.isnan(value):
        return 1.0
    return min(1.0, max(0.0, float(value)))


def _from_upstream(
    item: UpstreamComponent, matches: dict[str, ComponentMatch] | None = None
) -> ComponentInstance:
    component_type = prefix_component_type(item.name)
    confidence = item.resolved_confidence
    match_type = item.resolved_match_type
    match = (matches or {}).get(component_type)
    if match is not None:
        if confidence is None:
            confidence = match.confidence
        if not match_type:
            match_type = match.match_type
    return ComponentInstance(
        type=component_type,
        props=dict(item.props or {}),
        confidence=clamp_confidence(confidence),
        match_type=match_type or UNKNOWN_MATCH_TYPE,
    )


def _match_index(matches: list[ComponentMatch]) -> dict[str, ComponentMatch]:
    """First match per prefixed component type."""
    index: dict[str, ComponentMatch] = {}
    for match in matches:
        index.setdefault(prefix_component_type(match.component), match)
    return index


def _renormalize(item: ComponentInstance) -> ComponentInstance:
    return ComponentInstance(
        type=prefix_component_type(item.type),
        props=dict(item.props),
        confidence=clamp_confidence(item.confidence),
        match_type=item.match_type or UNKNOWN_MATCH_TYPE,
    )


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


# =============================================================================
# Normalize
# =============================================================================


def normalize(
    source: LayoutSource,
    *,
    session_id: str | None = None,
    timestamp: str | None = None,
) -> CanonicalLayout:
    """Convert an upstream layout into the canonical layout.

    Args:
        source: ExtractionLayout, MappingLayout or CanonicalLayout.
        session_id: Session id recorded in metadata (upstream sources, or a
            canonical layout that has none).
        timestamp: ISO timestamp for createdAt/updatedAt; defaults to now.

    Returns:
        CanonicalLayout with exactly hero, main and footer.

    Raises:
        TypeError: If source is not one of the accepted layout types.
    """
    if isinstance(source, CanonicalLayout):
        return _normalize_canonical(source, session_id)

    if not isinstance(source, (ExtractionLayout, MappingLayout)):
        raise TypeError(
            f"Cannot normalize {type(source).__name__}; expected "
            "ExtractionLayout, MappingLayout or CanonicalLayout"
        )

    buckets: dict[str, list[ComponentInstance]] = {name: [] for name in SECTION_ORDER}
    overflow: list[ComponentInstance] = []
    matches = _match_index(source.matches) if isinstance(source, MappingLayout) else None
    for section_name, items in source.sections.items():
        converted = [_from_upstream(item, matches) for item in items or []]
        if section_name in buckets:
            buckets[section_name].extend(converted)
        elif converted:
            logger.debug(
                f"Appending {len(converted)} component(s) from section "
                f"'{section_name}' to main"
            )
            overflow.extend(converted)
    buckets["main"].extend(overflow)

    stamp = timestamp or _now_iso()
    return CanonicalLayout(
        template=source.template or DEFAULT_TEMPLATE,
        sections=LayoutSections(**buckets),
        metadata=LayoutMetadata(
            session_id=session_id,
            created_at=stamp,
            updated_at=stamp,
            source_stage=SOURCE_STAGES[type(source)],
        ),
    )


def _normalize_canonical(layout: CanonicalLayout, session_id: str | None) -> CanonicalLayout:
    metadata = layout.metadata.model_copy()
    if metadata.session_id is None and session_id is not None:
        metadata.session_id = session_id
    return CanonicalLayout(
        template=layout.template or DEFAULT_TEMPLATE,
        sections=LayoutSections(
            **{name: [_renormalize(item) for item in items] for name, items in layout.sections.items()}
        ),
        metadata=metadata,
    )


# =============================================================================
# Wire parsing
# =============================================================================


def _layout_body(data: dict[str, Any]) -> dict[str, Any]:
    """Accept either a full service response or the bare layout object."""
    body = data.get("layout")
    return body if isinstance(body, dict) else data


def _parse_sections(raw: Any) -> dict[str, list[UpstreamComponent]]:
    if not isinstance(raw, dict):
        return {name: [] for name in SECTION_ORDER}
    sections: dict[str, list[UpstreamComponent]] = {}
    for name, items in raw.items():
        parsed: list[UpstreamComponent] = []
        for item in items or []:
            if isinstance(item, str):
                parsed.append(UpstreamComponent(component=item))
            elif isinstance(item, dict):
                try:
                    parsed.append(UpstreamComponent.model_validate(item))
                except PydanticValidationError as e:
                    logger.warning(
                        f"Skipping invalid component in '{name}': {e.error_count()} error(s)"
                    )
            else:
                logger.warning(f"Skipping malformed component in '{name}': {item!r}")
        sections[str(name)] = parsed
    return sections


def parse_extraction_layout(data: dict[str, Any]) -> ExtractionLayout:
    """Build an ExtractionLayout from extraction service JSON."""
    body = _layout_body(data)
    sections = _parse_sections(body.get("sections"))
    return ExtractionLayout(
        template=body.get("template") or DEFAULT_TEMPLATE,
        sections=sections,
        count=int(body.get("count") or sum(len(v) for v in sections.values())),
    )


def parse_mapping_layout(data: dict[str, Any]) -> MappingLayout:
    """Build a MappingLayout from visual-mapping service JSON.

    Matches are read from the top-level ``matches`` list; entries that fail
    validation are skipped.
    """
    body = _layout_body(data)
    sections = _parse_sections(body.get("sections"))
    matches: list[ComponentMatch] = []
    for raw in data.get("matches") or []:
        try:
            matches.append(ComponentMatch.model_validate(raw))
        except PydanticValidationError as e:
            logger.warning(f"Skipping malformed match {raw!r}: {e.error_count()} error(s)")
    return MappingLayout(
        template=body.get("template") or DEFAULT_TEMPLATE,
        sections=sections,
        count=int(body.get("count") or sum(len(v) for v in sections.values())),
        matches=matches,
    )


def empty_layout(
    template: str = DEFAULT_TEMPLATE,
    *,
    session_id: str | None = None,
    source_stage: str | None = None,
    timestamp: str | None = None,
) -> CanonicalLayout:
    """Canonical layout with every section empty."""
    stamp = timestamp or _now_iso()
    return CanonicalLayout(
        template=template,
        metadata=LayoutMetadata(
            session_id=session_id,
            created_at=stamp,
            updated_at=stamp,
            source_stage=source_stage,
        ),
    )


# =============================================================================
# Inspection
# =============================================================================


@dataclass
class LayoutStats:
    """Summary counts for a canonical layout.

    Attributes:
        sections: Component count per section.
        total: Total component count.
        average_confidence: Mean confidence (0.0 for an empty layout).
        match_types: Component count per match type.
    """

    sections: dict[str, int] = field(default_factory=dict)
    total: int = 0
    average_confidence: float = 0.0
    match_types: dict[str, int] = field(default_factory=dict)


def layout_stats(layout: CanonicalLayout) -> LayoutStats:
    counts = {name: len(items) for name, items in layout.sections.items()}
    components = [item for _, item in layout.components()]
    total = len(components)
    average = sum(c.confidence for c in components) / total if total else 0.0
    return LayoutStats(
        sections=counts,
        total=total,
        average_confidence=round(average, 4),
        match_types=dict(Counter(c.match_type for c in components)),
    )


@dataclass
class LayoutIssue:
    """A structural problem found in a layout.

    Attributes:
        path: Location, e.g. "sections.main[2].type".
        message: Description.
        severity: "error" or "warning".
    """

    path: str
    message: str
    severity: str = "error"


def validate_layout(layout: CanonicalLayout | dict[str, Any]) -> list[LayoutIssue]:
    """Report structural issues in a canonical layout.

    Accepts a model or wire JSON. For JSON, the section set is checked
    before parsing.

    Returns:
        List of issues; empty if the layout is valid.
    """
    issues: list[LayoutIssue] = []

    if isinstance(layout, dict):
        sections = layout.get("sections")
        if not isinstance(sections, dict):
            return [LayoutIssue("sections", "sections must be an object")]
        keys = set(sections)
        for missing in sorted(set(SECTION_ORDER) - keys):
            issues.append(LayoutIssue(f"sections.{missing}", "required section is missing"))
        for extra in sorted(keys - set(SECTION_ORDER)):
            issues.append(LayoutIssue(f"sections.{extra}", "unknown section"))
        if issues:
            return issues
        try:
            layout = CanonicalLayout.from_wire(layout)
        except PydanticValidationError as e:
            return [
                LayoutIssue(".".join(str(p) for p in err["loc"]), err["msg"])
                for err in e.errors()
            ]

    if not layout.template:
        issues.append(LayoutIssue("template", "template is empty"))

    for name, items in layout.sections.items():
        for index, item in enumerate(items):
            path = f"sections.{name}[{index}]"
            if not item.type.startswith(UI_PREFIX) or item.type == UI_PREFIX:
                issues.append(LayoutIssue(f"{path}.type", f"type '{item.type}' lacks ui. prefix"))
            if not 0.0 <= item.confidence <= 1.0:
                issues.append(
                    LayoutIssue(f"{path}.confidence", f"confidence {item.confidence} outside [0, 1]")
                )
            if not item.match_type:
                issues.append(LayoutIssue(f"{path}.matchType", "match type is empty", "warning"))

    if layout.metadata.session_id is None:
        issues.append(LayoutIssue("metadata.sessionId", "session id is missing", "warning"))

    return issues


__all__ = [
    "LayoutIssue",
    "LayoutSource",
    "LayoutStats",
    "clamp_confidence",
    "empty_layout",
    "layout_stats",
    "normalize",
    "parse_extraction_layout",
    "parse_mapping_layout",
    "prefix_component_type",
    "validate_layout",
]
