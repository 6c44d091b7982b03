"""Tests for the component catalog cache."""

import pytest

from .lib import CatalogEntry, ComponentCatalogCache


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ComponentCatalogCache(ttl=60, clock=clock)


class TestComponentCatalogCache:
    """Tests for TTL behavior."""

    @pytest.mark.unit
    def test_empty_cache_misses(self, cache):
        """Fresh cache has nothing."""
        assert cache.get() is None
        assert cache.age is None

    @pytest.mark.unit
    def test_hit_within_ttl(self, cache, clock):
        """Snapshot is returned before expiry."""
        cache.set([CatalogEntry(name="ui.button")])
        clock.now += 59
        entries = cache.get()
        assert [e.name for e in entries] == ["ui.button"]
        assert cache.age == 59

    @pytest.mark.unit
    def test_miss_after_ttl(self, cache, clock):
        """Snapshot expires at ttl."""
        cache.set([CatalogEntry(name="ui.button")])
        clock.now += 60
        assert cache.get() is None

    @pytest.mark.unit
    def test_invalidate(self, cache):
        """invalidate() forces a miss."""
        cache.set([CatalogEntry(name="ui.button")])
        cache.invalidate()
        assert cache.get() is None

    @pytest.mark.unit
    def test_get_returns_copy(self, cache):
        """Callers cannot mutate the stored snapshot."""
        cache.set([CatalogEntry(name="ui.button")])
        cache.get().clear()
        assert len(cache.get()) == 1


class TestContains:
    """Tests for catalog membership."""

    @pytest.mark.unit
    def test_cold_cache_is_unknown(self, cache):
        """Cold cache cannot answer."""
        assert cache.contains("ui.button") is None

    @pytest.mark.unit
    def test_prefix_insensitive(self, cache):
        """Names match with or without ui. prefix."""
        cache.set([CatalogEntry(name="button"), CatalogEntry(name="ui.heading")])
        assert cache.contains("ui.button") is True
        assert cache.contains("heading") is True
        assert cache.contains("ui.carousel") is False


class TestCatalogEntry:
    """Tests for wire parsing."""

    @pytest.mark.unit
    def test_from_wire_camel_case(self):
        """camelCase fields map onto the model."""
        entry = CatalogEntry.from_wire(
            {"name": "ui.button", "displayName": "Button", "exampleProps": {"text": "OK"}}
        )
        assert entry.display_name == "Button"
        assert entry.example_props == {"text": "OK"}
