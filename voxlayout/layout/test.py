"""Tests for layout models and the normalizer."""

import pytest

from voxlayout.invoker.errors import ServiceTimeoutError

from .lib import (
    empty_layout,
    layout_stats,
    normalize,
    parse_extraction_layout,
    parse_mapping_layout,
    prefix_component_type,
    validate_layout,
)
from .models import (
    CanonicalLayout,
    ComponentInstance,
    ComponentMatch,
    ExtractionLayout,
    MappingLayout,
    MatchType,
    UpstreamComponent,
)

TS = "2026-01-01T00:00:00+00:00"

MAPPING_RESPONSE = {
    "status": "ok",
    "session_id": "s1",
    "layout": {
        "template": "hero-main-footer",
        "sections": {
            "hero": [{"component": "ui.heading", "confidence": 0.95, "match_type": "exact"}],
            "main": [{"component": "button", "confidence": 0.9, "match_type": "exact"}],
            "footer": [],
        },
        "count": 2,
    },
    "matches": [
        {"term": "заголовок", "component": "ui.heading", "confidence": 0.95, "match_type": "exact"},
        {"term": "кнопка", "component": "ui.button", "confidence": 0.9, "match_type": "default"},
    ],
}


# =============================================================================
# Helpers
# =============================================================================


class TestComponentHelpers:
    """Tests for component type and confidence helpers."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("button", "ui.button"),
            ("ui.button", "ui.button"),
            ("", "ui.unknown"),
            (None, "ui.unknown"),
            ("  hero  ", "ui.hero"),
            ("ui.", "ui.unknown"),
        ],
    )
    def test_prefix(self, name, expected):
        """Types get ui. prefix exactly once."""
        assert prefix_component_type(name) == expected


# =============================================================================
# Parsing
# =============================================================================


class TestParsing:
    """Tests for wire parsing."""

    @pytest.mark.unit
    def test_parse_mapping_response(self):
        """Full mapping response parses layout and matches."""
        layout = parse_mapping_layout(MAPPING_RESPONSE)
        assert isinstance(layout, MappingLayout)
        assert layout.count == 2
        assert layout.sections["hero"][0].name == "ui.heading"
        assert [m.match_type for m in layout.matches] == ["exact", "fallback"]

    @pytest.mark.unit
    def test_parse_extraction_bare_layout(self):
        """Bare layout object is accepted."""
        layout = parse_extraction_layout(
            {"template": "landing", "sections": {"hero": ["heading"], "main": []}}
        )
        assert isinstance(layout, ExtractionLayout)
        assert layout.template == "landing"
        assert layout.sections["hero"][0].name == "heading"
        assert layout.count == 1

    @pytest.mark.unit
    def test_parse_missing_sections(self):
        """Missing sections become three empty ones."""
        layout = parse_extraction_layout({"status": "ok"})
        assert set(layout.sections) == {"hero", "main", "footer"}

    @pytest.mark.unit
    def test_bad_match_skipped(self):
        """Malformed matches are dropped."""
        layout = parse_mapping_layout({"layout": {}, "matches": [{"term": "x"}]})
        assert layout.matches == []

    @pytest.mark.unit
    def test_component_match_clamps(self):
        """Match confidence is clamped and legacy type mapped."""
        match = ComponentMatch(component="ui.x", confidence=1.7, match_type="default")
        assert match.confidence == 1.0
        assert match.match_type == MatchType.FALLBACK.value

    @pytest.mark.unit
    def test_upstream_metadata_confidence(self):
        """Confidence nested in metadata is used."""
        item = UpstreamComponent.model_validate(
            {"type": "card", "metadata": {"confidence": 0.4, "match_type": "fuzzy"}}
        )
        assert item.resolved_confidence == 0.4
        assert item.resolved_match_type == "fuzzy"

    @pytest.mark.unit
    def test_non_numeric_confidence_is_missing(self):
        """Confidence that is not a number reads as absent; numeric strings parse."""
        top = UpstreamComponent.model_validate({"component": "x", "confidence": "high"})
        nested = UpstreamComponent.model_validate(
            {"component": "x", "metadata": {"confidence": "high", "match_type": "exact"}}
        )
        numeric = UpstreamComponent.model_validate({"component": "x", "confidence": "0.7"})

        assert top.resolved_confidence is None
        assert nested.resolved_confidence is None
        assert nested.resolved_match_type == "exact"
        assert numeric.resolved_confidence == 0.7

    @pytest.mark.unit
    def test_invalid_component_skipped(self):
        """A component that fails validation is dropped, its siblings kept."""
        layout = parse_mapping_layout(
            {"layout": {"sections": {"hero": [{"component": "heading", "props": "bad"}, "text"]}}}
        )
        assert [item.name for item in layout.sections["hero"]] == ["text"]


# =============================================================================
# Normalize
# =============================================================================


class TestNormalize:
    """Tests for normalize."""

    @pytest.mark.unit
    def test_mapping_layout(self):
        """Mapping layout converts to canonical form."""
        layout = normalize(parse_mapping_layout(MAPPING_RESPONSE), session_id="s1", timestamp=TS)
        assert layout.sections.hero[0].type == "ui.heading"
        assert layout.sections.main[0].type == "ui.button"
        assert layout.sections.footer == []
        assert layout.metadata.session_id == "s1"
        assert layout.metadata.source_stage == "map-visual"
        assert layout.metadata.created_at == TS

    @pytest.mark.unit
    def test_defaults_and_clamping(self):
        """Missing fields get defaults; confidence is clamped."""
        source = ExtractionLayout(
            sections={
                "hero": [UpstreamComponent(component="a")],
                "main": [UpstreamComponent(component="b", confidence=-2.0)],
                "footer": [UpstreamComponent(component="c", confidence=5.0)],
            }
        )
        layout = normalize(source, timestamp=TS)
        assert layout.sections.hero[0].confidence == 1.0
        assert layout.sections.hero[0].match_type == "unknown"
        assert layout.sections.main[0].confidence == 0.0
        assert layout.sections.footer[0].confidence == 1.0
        assert layout.metadata.source_stage == "extract-entities"

    @pytest.mark.unit
    def test_unknown_sections_go_to_main(self):
        """Unknown sections are appended to main in order."""
        source = ExtractionLayout(
            sections={
                "sidebar": [UpstreamComponent(component="nav")],
                "main": [UpstreamComponent(component="text")],
                "aside": [UpstreamComponent(component="card")],
            }
        )
        layout = normalize(source, timestamp=TS)
        assert [c.type for c in layout.sections.main] == ["ui.text", "ui.nav", "ui.card"]
        assert layout.sections.hero == []

    @pytest.mark.unit
    def test_matches_fill_missing_confidence_and_type(self):
        """Components without their own metadata take it from the matches."""
        response = {
            "layout": {"sections": {"hero": ["heading"], "main": [{"component": "ui.button"}]}},
            "matches": MAPPING_RESPONSE["matches"],
        }
        layout = normalize(parse_mapping_layout(response), timestamp=TS)

        components = [item for _, item in layout.components()]
        assert [c.confidence for c in components] == [0.95, 0.9]
        assert [c.match_type for c in components] == ["exact", "fallback"]

    @pytest.mark.unit
    def test_component_values_win_over_matches(self):
        """Matches only fill what the component lacks."""
        response = {
            "layout": {"sections": {"main": [{"component": "heading", "confidence": 0.3}]}},
            "matches": MAPPING_RESPONSE["matches"],
        }
        item = normalize(parse_mapping_layout(response), timestamp=TS).sections.main[0]
        assert item.confidence == 0.3
        assert item.match_type == "exact"

    @pytest.mark.unit
    def test_non_numeric_confidence_defaults(self):
        """A non-numeric confidence normalizes like a missing one."""
        response = {
            "layout": {
                "sections": {
                    "hero": [{"component": "card", "metadata": {"confidence": "high"}}],
                    "main": [{"component": "heading", "confidence": "very"}],
                }
            },
            "matches": MAPPING_RESPONSE["matches"],
        }
        layout = normalize(parse_mapping_layout(response), timestamp=TS)
        assert layout.sections.hero[0].confidence == 1.0
        assert layout.sections.hero[0].match_type == "unknown"
        assert layout.sections.main[0].confidence == 0.95

    @pytest.mark.unit
    def test_always_three_sections(self):
        """Empty upstream still yields hero/main/footer."""
        layout = normalize(ExtractionLayout(), timestamp=TS)
        assert [name for name, _ in layout.sections.items()] == ["hero", "main", "footer"]

    @pytest.mark.unit
    def test_idempotent(self):
        """normalize(normalize(x)) is byte-equal to normalize(x)."""
        once = normalize(parse_mapping_layout(MAPPING_RESPONSE), session_id="s1", timestamp=TS)
        twice = normalize(once)
        assert twice == once
        assert twice.model_dump_json(by_alias=True) == once.model_dump_json(by_alias=True)

    @pytest.mark.unit
    def test_canonical_round_trip_through_wire(self):
        """Wire JSON of a canonical layout normalizes to itself."""
        once = normalize(parse_mapping_layout(MAPPING_RESPONSE), session_id="s1", timestamp=TS)
        wire = once.to_wire()
        assert "matchType" in wire["sections"]["hero"][0]
        assert wire["metadata"]["sessionId"] == "s1"
        assert normalize(CanonicalLayout.from_wire(wire)) == once

    @pytest.mark.unit
    def test_canonical_fixes_unprefixed(self):
        """Hand-built canonical layouts are repaired."""
        layout = CanonicalLayout()
        layout.sections.main.append(ComponentInstance(type="button", confidence=3.0))
        fixed = normalize(layout, session_id="s9")
        assert fixed.sections.main[0].type == "ui.button"
        assert fixed.sections.main[0].confidence == 1.0
        assert fixed.metadata.session_id == "s9"

    @pytest.mark.unit
    def test_rejects_other_types(self):
        """Plain dicts are not accepted."""
        with pytest.raises(TypeError):
            normalize({"sections": {}})

    @pytest.mark.unit
    def test_error_not_serialized(self):
        """Attached service errors stay out of dumps."""
        layout = MappingLayout.empty(error=ServiceTimeoutError("slow"))
        assert layout.failed
        assert "error" not in layout.model_dump()


# =============================================================================
# Inspection
# =============================================================================


class TestInspection:
    """Tests for empty_layout, layout_stats and validate_layout."""

    @pytest.mark.unit
    def test_empty_layout(self):
        """Empty layout has no components."""
        layout = empty_layout("landing", session_id="s1")
        assert layout.template == "landing"
        assert list(layout.components()) == []

    @pytest.mark.unit
    def test_stats(self):
        """Stats count sections and average confidence."""
        layout = normalize(parse_mapping_layout(MAPPING_RESPONSE), timestamp=TS)
        stats = layout_stats(layout)
        assert stats.sections == {"hero": 1, "main": 1, "footer": 0}
        assert stats.total == 2
        assert stats.average_confidence == pytest.approx(0.925)
        assert stats.match_types == {"exact": 2}

    @pytest.mark.unit
    def test_stats_empty(self):
        """Empty layout averages to zero."""
        assert layout_stats(empty_layout()).average_confidence == 0.0

    @pytest.mark.unit
    def test_valid_layout_has_no_errors(self):
        """Normalized layout passes validation."""
        layout = normalize(parse_mapping_layout(MAPPING_RESPONSE), session_id="s1", timestamp=TS)
        assert validate_layout(layout) == []

    @pytest.mark.unit
    def test_reports_prefix_and_confidence(self):
        """Invalid components are reported with paths."""
        layout = CanonicalLayout()
        layout.metadata.session_id = "s1"
        layout.sections.hero.append(ComponentInstance(type="button", confidence=1.5))
        paths = {issue.path for issue in validate_layout(layout)}
        assert paths == {"sections.hero[0].type", "sections.hero[0].confidence"}

    @pytest.mark.unit
    def test_reports_section_set(self):
        """Wire JSON with wrong sections is reported."""
        issues = validate_layout({"sections": {"hero": [], "main": [], "sidebar": []}})
        paths = {issue.path for issue in issues}
        assert paths == {"sections.footer", "sections.sidebar"}
