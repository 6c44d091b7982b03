"""Centralized configuration management for voxlayout.

Provides unified access to all configuration via the `get_environment()` function.

Example:
    >>> from voxlayout.config import EnvVar, get_environment
    >>>
    >>> url = get_environment(EnvVar.EXTRACT_URL)  # Returns str
    >>> ttl = get_environment(EnvVar.CATALOG_TTL)  # Returns float: 60.0
    >>>
    >>> # List available variables by category
    >>> for var in list_environment_variables("invoker"):
    ...     info = get_environment_info(var)
    ...     print(f"{info.name}: {info.description}")

Environment Variable Categories:
    service: Backend service base URLs and credentials
    invoker: Timeouts, retry budget, client identity
    pipeline: Default language, template, audio threshold
    catalog: Component catalog cache lifetime
    storage: Data directory and local layout database
    mcp: MCP server bind address and port
"""

from .lib import (
    # Core types
    EnvConfig,
    EnvVar,
    # Main interface
    get_data_dir,
    get_environment,
    get_environment_info,
    get_layout_db_path,
    get_service_urls,
    # Introspection
    list_environment_variables,
)

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
