"""Unit tests for health checking module."""

import pytest

from voxlayout.catalog import CatalogEntry, ComponentCatalogCache

from .lib import (
    HealthStatus,
    ServiceStatus,
    check_catalog,
    check_service,
    format_status_banner,
    get_system_health,
)


class TestHealthStatus:
    """Tests for HealthStatus enum."""

    @pytest.mark.unit
    def test_status_is_string_enum(self):
        """HealthStatus inherits from str for JSON serialization."""
        assert isinstance(HealthStatus.HEALTHY, str)
        assert HealthStatus.DEGRADED == "degraded"


class TestServiceStatus:
    """Tests for ServiceStatus dataclass."""

    @pytest.mark.unit
    def test_to_dict_flattens_details(self):
        """Details are merged into the dict form."""
        status = ServiceStatus(True, "OK", details={"url": "http://x"})
        assert status.to_dict() == {"available": True, "message": "OK", "url": "http://x"}


class TestCheckService:
    """Tests for check_service."""

    @pytest.mark.unit
    def test_available(self, services):
        """Healthy adapter reports its URL."""
        status = check_service(services.mapping)
        assert status.available is True
        assert status.details["url"] == "http://mapping.test"

    @pytest.mark.unit
    def test_unavailable(self):
        """A false probe is reported, not raised."""

        class DownAdapter:
            name = "mapping"
            base_url = "http://down"

            def health_check(self):
                return False

        status = check_service(DownAdapter())
        assert status.available is False
        assert "not responding" in status.message


class TestCheckCatalog:
    """Tests for check_catalog."""

    @pytest.mark.unit
    def test_cold(self):
        """Cold cache is reported unavailable."""
        assert check_catalog(ComponentCatalogCache()).available is False

    @pytest.mark.unit
    def test_warm(self):
        """Warm cache reports its size."""
        cache = ComponentCatalogCache(clock=lambda: 100.0)
        cache.set([CatalogEntry(name="ui.button")])
        status = check_catalog(cache)
        assert status.available is True
        assert status.details["entries"] == 1


class TestGetSystemHealth:
    """Tests for get_system_health."""

    @pytest.mark.unit
    def test_healthy(self, services):
        """All services up is healthy."""
        health = get_system_health(services, version="9.9.9")
        assert health.status == HealthStatus.HEALTHY
        assert health.action_items() == []
        assert health.to_dict()["version"] == "9.9.9"

    @pytest.mark.unit
    def test_mapping_down_is_degraded(self, services, fake_backend, monkeypatch):
        """Mapping outage degrades but generation still works."""
        monkeypatch.setattr(services.mapping, "health_check", lambda: False)
        health = get_system_health(services)

        assert health.status == HealthStatus.DEGRADED
        assert health.can_generate is True
        assert health.to_dict()["capabilities"]["visual_mapping"] is False
        assert any("mapping" in action for action in health.action_items())

    @pytest.mark.unit
    def test_extraction_down_is_unhealthy(self, services, monkeypatch):
        """Without extraction nothing useful can be generated."""
        monkeypatch.setattr(services.extraction, "health_check", lambda: False)
        health = get_system_health(services)

        assert health.status == HealthStatus.UNHEALTHY
        assert health.to_dict()["capabilities"]["generate_layout"] is False

    @pytest.mark.unit
    def test_banner(self, services):
        """Banner lists every service."""
        banner = format_status_banner(get_system_health(services))
        for name in ("transcription", "extraction", "mapping", "layout_store", "catalog"):
            assert name in banner
        assert "HEALTHY" in banner
