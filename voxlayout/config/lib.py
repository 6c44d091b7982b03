"""Centralized environment configuration management for voxlayout.

Provides a unified interface for all environment variables with:
- Single `get_environment()` function for all configuration
- Type-safe enum with metadata (default, type, description)
- Consistent resolution: override > environment > default

Example:
    >>> from voxlayout.config import EnvVar, get_environment
    >>>
    >>> # Get values with automatic type conversion
    >>> retries = get_environment(EnvVar.INVOKER_MAX_RETRIES)  # Returns int
    >>> url = get_environment(EnvVar.MAPPING_URL)  # Returns str
    >>>
    >>> # Override at runtime
    >>> retries = get_environment(EnvVar.INVOKER_MAX_RETRIES, override=0)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, overload

# =============================================================================
# Environment Variable Configuration
# =============================================================================


@dataclass(frozen=True)
class EnvConfig:
    """Metadata for an environment variable.

    Attributes:
        name: Environment variable name (e.g., "MAPPING_URL").
        default: Default value if not set in environment.
        var_type: Python type for value conversion (str, int, float, bool, Path).
        description: Human-readable description.
        category: Grouping category for documentation.
    """

    name: str
    default: Any
    var_type: type
    description: str = ""
    category: str = "general"


class EnvVar(Enum):
    """All environment variables used by voxlayout.

    Each member contains an EnvConfig with name, default, type, and description.
    Use with `get_environment()` for type-safe access.

    Categories:
        - service: Backend service base URLs
        - invoker: Timeouts, retry budget, client identity
        - pipeline: Generation defaults
        - catalog: Component catalog cache
        - storage: Local data paths
        - mcp: MCP server bind settings
    """

    # -------------------------------------------------------------------------
    # Backend Services
    # -------------------------------------------------------------------------
    TRANSCRIBE_URL = EnvConfig(
        name="TRANSCRIBE_URL",
        default="http://localhost:8080",
        var_type=str,
        description="Speech transcription service base URL",
        category="service",
    )
    EXTRACT_URL = EnvConfig(
        name="EXTRACT_URL",
        default="http://localhost:8001",
        var_type=str,
        description="Entity extraction (NLP) service base URL",
        category="service",
    )
    MAPPING_URL = EnvConfig(
        name="MAPPING_URL",
        default="http://localhost:9001",
        var_type=str,
        description="Visual component mapping service base URL",
        category="service",
    )
    LAYOUT_STORE_URL = EnvConfig(
        name="LAYOUT_STORE_URL",
        default="http://localhost:3002",
        var_type=str,
        description="Layout persistence web backend URL",
        category="service",
    )
    SERVICE_API_KEY = EnvConfig(
        name="SERVICE_API_KEY",
        default=None,
        var_type=str,
        description="Optional bearer token sent to every backend service",
        category="service",
    )

    # -------------------------------------------------------------------------
    # Invoker
    # -------------------------------------------------------------------------
    INVOKER_MAX_RETRIES = EnvConfig(
        name="INVOKER_MAX_RETRIES",
        default=2,
        var_type=int,
        description="Retries after the first attempt (2 = up to 3 attempts)",
        category="invoker",
    )
    INVOKER_TIMEOUT = EnvConfig(
        name="INVOKER_TIMEOUT",
        default=10.0,
        var_type=float,
        description="Default per-attempt timeout in seconds",
        category="invoker",
    )
    INVOKER_BACKOFF_BASE = EnvConfig(
        name="INVOKER_BACKOFF_BASE",
        default=1.0,
        var_type=float,
        description="Backoff base delay in seconds (delay n = base * 2^n)",
        category="invoker",
    )
    HEALTH_TIMEOUT = EnvConfig(
        name="HEALTH_TIMEOUT",
        default=5.0,
        var_type=float,
        description="Timeout for health probes in seconds",
        category="invoker",
    )
    CLIENT_ID = EnvConfig(
        name="CLIENT_ID",
        default="voxlayout",
        var_type=str,
        description="Client identifier sent as X-Client",
        category="invoker",
    )

    # -------------------------------------------------------------------------
    # Pipeline Defaults
    # -------------------------------------------------------------------------
    DEFAULT_LANGUAGE = EnvConfig(
        name="DEFAULT_LANGUAGE",
        default="ru-RU",
        var_type=str,
        description="Language tag used when a request does not specify one",
        category="pipeline",
    )
    DEFAULT_TEMPLATE = EnvConfig(
        name="DEFAULT_TEMPLATE",
        default="hero-main-footer",
        var_type=str,
        description="Page template requested from the mapping service",
        category="pipeline",
    )
    MIN_AUDIO_BYTES = EnvConfig(
        name="MIN_AUDIO_BYTES",
        default=5 * 1024,
        var_type=int,
        description="Audio smaller than this is rejected as too short",
        category="pipeline",
    )

    # -------------------------------------------------------------------------
    # Catalog Cache
    # -------------------------------------------------------------------------
    CATALOG_TTL = EnvConfig(
        name="CATALOG_TTL",
        default=60.0,
        var_type=float,
        description="Component catalog cache lifetime in seconds",
        category="catalog",
    )

    # -------------------------------------------------------------------------
    # Local Storage
    # -------------------------------------------------------------------------
    DATA_DIR = EnvConfig(
        name="VOXLAYOUT_DATA_DIR",
        default=None,  # Computed from home directory
        var_type=Path,
        description="Directory for session file and local layout database",
        category="storage",
    )
    LAYOUT_STORE = EnvConfig(
        name="LAYOUT_STORE",
        default="sqlite",
        var_type=str,
        description="Layout persistence backend: 'sqlite' (local) or 'http'",
        category="storage",
    )
    LAYOUT_DB_PATH = EnvConfig(
        name="LAYOUT_DB_PATH",
        default=None,  # Computed from data directory
        var_type=Path,
        description="SQLite database path for local layout storage",
        category="storage",
    )

    # -------------------------------------------------------------------------
    # MCP Server
    # -------------------------------------------------------------------------
    MCP_HOST = EnvConfig(
        name="MCP_HOST",
        default="0.0.0.0",
        var_type=str,
        description="MCP server bind address",
        category="mcp",
    )
    MCP_PORT = EnvConfig(
        name="MCP_PORT",
        default=18090,
        var_type=int,
        description="MCP server port",
        category="mcp",
    )


# =============================================================================
# Type Conversion Helpers
# =============================================================================


def _parse_bool(value: str) -> bool | None:
    """Parse string to boolean.

    Recognizes: true/false, 1/0, yes/no (case-insensitive).
    Returns None for unrecognized values.
    """
    normalized = value.lower().strip()
    if normalized in ("true", "1", "yes"):
        return True
    if normalized in ("false", "0", "no"):
        return False
    return None


def _convert_value(value: str | None, var_type: type, default: Any) -> Any:
    """Convert string value to target type.

    Args:
        value: Raw string value from environment (or None).
        var_type: Target Python type.
        default: Default value if conversion fails or value is None.

    Returns:
        Converted value or default.
    """
    if value is None or value == "":
        return default

    if var_type is str:
        return value

    if var_type is int:
        try:
            return int(value)
        except ValueError:
            return default

    if var_type is float:
        try:
            return float(value)
        except ValueError:
            return default

    if var_type is bool:
        result = _parse_bool(value)
        return result if result is not None else default

    if var_type is Path:
        return Path(value).expanduser()

    return value


# =============================================================================
# Main Interface
# =============================================================================


@overload
def get_environment(env_var: EnvVar, override: int) -> int: ...
@overload
def get_environment(env_var: EnvVar, override: float) -> float: ...
@overload
def get_environment(env_var: EnvVar, override: str) -> str: ...
@overload
def get_environment(env_var: EnvVar, override: Path) -> Path: ...
@overload
def get_environment(env_var: EnvVar, override: None = None) -> Any: ...


def get_environment(env_var: EnvVar, override: Any = None) -> Any:
    """Get environment variable value with type conversion.

    Resolution priority:
        1. Explicit override parameter (highest)
        2. Environment variable value
        3. Default from EnvConfig (lowest)

    Args:
        env_var: Environment variable enum member.
        override: Optional override value (bypasses env lookup).

    Returns:
        Value converted to the appropriate type.
    """
    config: EnvConfig = env_var.value

    if override is not None:
        return override

    raw_value = os.environ.get(config.name)
    return _convert_value(raw_value, config.var_type, config.default)


def get_environment_info(env_var: EnvVar) -> EnvConfig:
    """Get metadata for an environment variable."""
    return env_var.value


def list_environment_variables(category: str | None = None) -> list[EnvVar]:
    """List all environment variables, optionally filtered by category.

    Args:
        category: Filter by category (service, invoker, pipeline, catalog,
            storage, mcp). None returns all variables.

    Returns:
        List of EnvVar enum members.
    """
    if category is None:
        return list(EnvVar)

    return [var for var in EnvVar if var.value.category == category]


# =============================================================================
# Convenience Functions
# =============================================================================


def get_service_urls() -> dict[str, str | None]:
    """Get base URLs for every backend service, trailing slashes removed.

    Returns:
        Dict mapping service name to base URL (None if not configured).
    """
    urls = {
        "transcription": get_environment(EnvVar.TRANSCRIBE_URL),
        "extraction": get_environment(EnvVar.EXTRACT_URL),
        "mapping": get_environment(EnvVar.MAPPING_URL),
        "layout_store": get_environment(EnvVar.LAYOUT_STORE_URL),
    }
    return {name: url.rstrip("/") if url else None for name, url in urls.items()}


def get_data_dir(override: Path | str | None = None) -> Path:
    """Get local data directory.

    Resolution: override > VOXLAYOUT_DATA_DIR > ~/.voxlayout
    """
    if override is not None:
        return Path(override)

    env_path = get_environment(EnvVar.DATA_DIR)
    if env_path:
        return env_path

    return Path.home() / ".voxlayout"


def get_layout_db_path(override: Path | str | None = None) -> Path:
    """Get SQLite path for local layout storage.

    Resolution: override > LAYOUT_DB_PATH > <data_dir>/layouts.db
    """
    if override is not None:
        return Path(override)

    env_path = get_environment(EnvVar.LAYOUT_DB_PATH)
    if env_path:
        return env_path

    return get_data_dir() / "layouts.db"


__all__ = [
    # Core types
    "EnvConfig",
    "EnvVar",
    # Main interface
    "get_environment",
    "get_environment_info",
    # Convenience functions
    "get_service_urls",
    "get_data_dir",
    "get_layout_db_path",
    # Introspection
    "list_environment_variables",
]
