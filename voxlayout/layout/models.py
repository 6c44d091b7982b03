"""Layout models.

Two upstream shapes arrive from the backend services:

- ExtractionLayout: the entity-extraction service's own template/section guess.
- MappingLayout: the visual-mapping service's component placement, with the
  term-to-component matches that produced it.

Both are reconciled into the CanonicalLayout, which always carries exactly
the hero, main and footer sections. Canonical models use snake_case field
names in Python and camelCase aliases on the wire (``by_alias=True``).
"""

import logging
from collections.abc import Iterator
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from voxlayout.invoker.errors import InvokeError

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = "hero-main-footer"
KNOWN_TEMPLATES: tuple[str, ...] = (
    "hero-main-footer",
    "one-column",
    "cards-landing",
    "ecommerce-landing",
)
UI_PREFIX = "ui."
UNKNOWN_COMPONENT = "ui.unknown"
UNKNOWN_MATCH_TYPE = "unknown"


class Section(str, Enum):
    """Canonical page sections, in render order."""

    HERO = "hero"
    MAIN = "main"
    FOOTER = "footer"


SECTION_ORDER: tuple[str, ...] = tuple(s.value for s in Section)


class MatchType(str, Enum):
    """How a term was matched to a component."""

    EXACT = "exact"
    SYNONYM = "synonym"
    FUZZY = "fuzzy"
    FALLBACK = "fallback"

    @classmethod
    def parse(cls, value: str | None) -> "MatchType":
        """Parse a wire match type.

        The legacy ``default`` and any unrecognized value read as fallback.
        """
        try:
            return cls(value)
        except ValueError:
            return cls.FALLBACK


# =============================================================================
# Upstream shapes
# =============================================================================


def coerce_confidence(value: Any) -> float | None:
    """Read a wire confidence as a float; non-numeric values count as missing."""
    if value is None or isinstance(value, float):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric confidence {value!r}")
        return None


class UpstreamComponent(BaseModel):
    """A component as emitted by either upstream service.

    Services disagree on the name field (``component``, ``type`` or
    ``component_type``) and may nest confidence under ``metadata``.
    """

    model_config = ConfigDict(extra="allow")

    component: str | None = None
    type: str | None = None
    component_type: str | None = None
    props: dict[str, Any] | None = None
    confidence: float | None = None
    match_type: str | None = Field(
        default=None, validation_alias=AliasChoices("match_type", "matchType")
    )
    metadata: dict[str, Any] | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _numeric_confidence(cls, value: Any) -> float | None:
        return coerce_confidence(value)

    @field_validator("metadata", mode="after")
    @classmethod
    def _numeric_metadata_confidence(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        if value and "confidence" in value:
            value = {**value, "confidence": coerce_confidence(value["confidence"])}
        return value

    @property
    def name(self) -> str:
        return self.component or self.type or self.component_type or ""

    @property
    def resolved_confidence(self) -> float | None:
        if self.confidence is not None:
            return self.confidence
        if self.metadata and self.metadata.get("confidence") is not None:
            return self.metadata["confidence"]
        return None

    @property
    def resolved_match_type(self) -> str | None:
        if self.match_type:
            return self.match_type
        if self.metadata:
            return self.metadata.get("match_type") or self.metadata.get("matchType")
        return None


class ComponentMatch(BaseModel):
    """Relation between an extracted term and the component it mapped to."""

    term: str = ""
    component: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    match_type: MatchType = MatchType.FALLBACK

    model_config = {"use_enum_values": True}

    @field_validator("match_type", mode="before")
    @classmethod
    def _legacy_match_type(cls, value: Any) -> Any:
        if isinstance(value, MatchType):
            return value
        return MatchType.parse(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> Any:
        if value is None:
            return 1.0
        return min(1.0, max(0.0, float(value)))


class _UpstreamLayout(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    template: str = DEFAULT_TEMPLATE
    sections: dict[str, list[UpstreamComponent]] = Field(default_factory=dict)
    count: int = 0
    error: InvokeError | None = Field(default=None, exclude=True)

    @property
    def failed(self) -> bool:
        return self.error is not None

    def component_count(self) -> int:
        return sum(len(items) for items in self.sections.values())


class ExtractionLayout(_UpstreamLayout):
    """Entity-extraction service layout (its own template/section guess)."""

    @classmethod
    def empty(
        cls, template: str = DEFAULT_TEMPLATE, error: InvokeError | None = None
    ) -> "ExtractionLayout":
        return cls(template=template, sections={s: [] for s in SECTION_ORDER}, error=error)


class MappingLayout(_UpstreamLayout):
    """Visual-mapping service layout with its term matches."""

    matches: list[ComponentMatch] = Field(default_factory=list)

    @classmethod
    def empty(
        cls, template: str = DEFAULT_TEMPLATE, error: InvokeError | None = None
    ) -> "MappingLayout":
        return cls(
            template=template,
            sections={s: [] for s in SECTION_ORDER},
            count=0,
            error=error,
        )


# =============================================================================
# Canonical layout
# =============================================================================


class ComponentInstance(BaseModel):
    """A placed component in the canonical layout."""

    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(..., description="Component type with 'ui.' prefix")
    props: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(default=1.0, description="Match confidence in [0, 1]")
    match_type: str = Field(
        default=UNKNOWN_MATCH_TYPE, alias="matchType", description="How it was matched"
    )


class LayoutSections(BaseModel):
    """Exactly the three canonical sections."""

    model_config = ConfigDict(extra="forbid")

    hero: list[ComponentInstance] = Field(default_factory=list)
    main: list[ComponentInstance] = Field(default_factory=list)
    footer: list[ComponentInstance] = Field(default_factory=list)

    def items(self) -> Iterator[tuple[str, list[ComponentInstance]]]:
        for name in SECTION_ORDER:
            yield name, getattr(self, name)


class LayoutMetadata(BaseModel):
    """Provenance of a canonical layout. Timestamps are ISO-8601 strings."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(default=None, alias="sessionId")
    created_at: str | None = Field(default=None, alias="createdAt")
    updated_at: str | None = Field(default=None, alias="updatedAt")
    source_stage: str | None = Field(default=None, alias="sourceStage")


class CanonicalLayout(BaseModel):
    """The single output structure every successful generation converges on.

    Example:
        >>> layout = CanonicalLayout(template="hero-main-footer")
        >>> [name for name, _ in layout.sections.items()]
        ['hero', 'main', 'footer']
        >>> layout.model_dump_json(by_alias=True)  # camelCase wire form
    """

    model_config = ConfigDict(populate_by_name=True)

    template: str = DEFAULT_TEMPLATE
    sections: LayoutSections = Field(default_factory=LayoutSections)
    metadata: LayoutMetadata = Field(default_factory=LayoutMetadata)

    def components(self) -> Iterator[tuple[str, ComponentInstance]]:
        """Yield (section, component) pairs in render order."""
        for name, items in self.sections.items():
            for item in items:
                yield name, item

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "CanonicalLayout":
        return cls.model_validate(data)


__all__ = [
    "DEFAULT_TEMPLATE",
    "KNOWN_TEMPLATES",
    "SECTION_ORDER",
    "UI_PREFIX",
    "UNKNOWN_COMPONENT",
    "UNKNOWN_MATCH_TYPE",
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
    "coerce_confidence",
]
