"""Tests for configuration management."""

from pathlib import Path

import pytest

from .lib import (
    EnvConfig,
    EnvVar,
    get_data_dir,
    get_environment,
    get_environment_info,
    get_layout_db_path,
    get_service_urls,
    list_environment_variables,
)

# =============================================================================
# Tests for get_environment (main interface)
# =============================================================================


class TestGetEnvironment:
    """Tests for the unified get_environment interface."""

    @pytest.mark.unit
    def test_returns_default_when_not_set(self, monkeypatch):
        """Returns default value when env var is not set."""
        monkeypatch.delenv("INVOKER_MAX_RETRIES", raising=False)
        assert get_environment(EnvVar.INVOKER_MAX_RETRIES) == 2

    @pytest.mark.unit
    def test_override_takes_priority(self, monkeypatch):
        """Override parameter takes highest priority."""
        monkeypatch.setenv("INVOKER_MAX_RETRIES", "5")
        assert get_environment(EnvVar.INVOKER_MAX_RETRIES, override=0) == 0

    @pytest.mark.unit
    def test_env_var_overrides_default(self, monkeypatch):
        """Environment variable overrides default value."""
        monkeypatch.setenv("MAPPING_URL", "http://mapper:9100")
        assert get_environment(EnvVar.MAPPING_URL) == "http://mapper:9100"

    @pytest.mark.unit
    def test_float_type_conversion(self, monkeypatch):
        """Float type conversion from string."""
        monkeypatch.setenv("CATALOG_TTL", "12.5")
        result = get_environment(EnvVar.CATALOG_TTL)
        assert result == 12.5
        assert isinstance(result, float)

    @pytest.mark.unit
    def test_int_type_conversion(self, monkeypatch):
        """Integer type conversion from string."""
        monkeypatch.setenv("MCP_PORT", "8080")
        result = get_environment(EnvVar.MCP_PORT)
        assert result == 8080
        assert isinstance(result, int)

    @pytest.mark.unit
    def test_invalid_int_returns_default(self, monkeypatch):
        """Invalid integer value returns default."""
        monkeypatch.setenv("MIN_AUDIO_BYTES", "lots")
        assert get_environment(EnvVar.MIN_AUDIO_BYTES) == 5120

    @pytest.mark.unit
    def test_none_default_for_api_key(self, monkeypatch):
        """API key defaults to None when not set."""
        monkeypatch.delenv("SERVICE_API_KEY", raising=False)
        assert get_environment(EnvVar.SERVICE_API_KEY) is None

    @pytest.mark.unit
    def test_empty_string_uses_default(self, monkeypatch):
        """Empty env value is treated as unset."""
        monkeypatch.setenv("DEFAULT_LANGUAGE", "")
        assert get_environment(EnvVar.DEFAULT_LANGUAGE) == "ru-RU"


class TestGetEnvironmentInfo:
    """Tests for environment variable metadata."""

    @pytest.mark.unit
    def test_returns_env_config(self):
        """Returns EnvConfig dataclass."""
        info = get_environment_info(EnvVar.TRANSCRIBE_URL)
        assert isinstance(info, EnvConfig)
        assert info.name == "TRANSCRIBE_URL"
        assert info.default == "http://localhost:8080"
        assert info.var_type is str
        assert info.category == "service"

    @pytest.mark.unit
    def test_description_present(self):
        """Description field is populated."""
        info = get_environment_info(EnvVar.CLIENT_ID)
        assert "X-Client" in info.description


class TestListEnvironmentVariables:
    """Tests for listing environment variables."""

    @pytest.mark.unit
    def test_returns_all_variables(self):
        """Returns all EnvVar members when no category."""
        result = list_environment_variables()
        assert len(result) == len(EnvVar)

    @pytest.mark.unit
    def test_filter_by_category(self):
        """Filters by category correctly."""
        service_vars = list_environment_variables("service")
        assert EnvVar.EXTRACT_URL in service_vars
        assert EnvVar.MAPPING_URL in service_vars
        assert EnvVar.CATALOG_TTL not in service_vars


# =============================================================================
# Tests for convenience functions
# =============================================================================


class TestGetServiceUrls:
    """Tests for service URL resolution."""

    @pytest.mark.unit
    def test_defaults(self, monkeypatch):
        """Default URLs point at localhost ports."""
        for name in ("TRANSCRIBE_URL", "EXTRACT_URL", "MAPPING_URL", "LAYOUT_STORE_URL"):
            monkeypatch.delenv(name, raising=False)
        assert get_service_urls() == {
            "transcription": "http://localhost:8080",
            "extraction": "http://localhost:8001",
            "mapping": "http://localhost:9001",
            "layout_store": "http://localhost:3002",
        }

    @pytest.mark.unit
    def test_strips_trailing_slash(self, monkeypatch):
        """Trailing slashes are removed."""
        monkeypatch.setenv("EXTRACT_URL", "http://nlp.local/")
        assert get_service_urls()["extraction"] == "http://nlp.local"


class TestDataPaths:
    """Tests for local storage paths."""

    @pytest.mark.unit
    def test_data_dir_override(self):
        """Override parameter takes priority."""
        assert get_data_dir("/tmp/vox") == Path("/tmp/vox")

    @pytest.mark.unit
    def test_data_dir_env(self, monkeypatch, tmp_path):
        """VOXLAYOUT_DATA_DIR env var is used when set."""
        monkeypatch.setenv("VOXLAYOUT_DATA_DIR", str(tmp_path))
        assert get_data_dir() == tmp_path

    @pytest.mark.unit
    def test_db_path_under_data_dir(self, monkeypatch, tmp_path):
        """Layout database defaults to a file inside the data directory."""
        monkeypatch.delenv("LAYOUT_DB_PATH", raising=False)
        monkeypatch.setenv("VOXLAYOUT_DATA_DIR", str(tmp_path))
        assert get_layout_db_path() == tmp_path / "layouts.db"
