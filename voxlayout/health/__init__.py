"""Aggregated health report for the backend services."""

from .lib import (
    HealthStatus,
    ServiceStatus,
    SystemHealth,
    check_catalog,
    check_service,
    format_status_banner,
    get_system_health,
    log_startup_status,
)

__all__ = [
    "HealthStatus",
    "ServiceStatus",
    "SystemHealth",
    "check_catalog",
    "check_service",
    "format_status_banner",
    "get_system_health",
    "log_startup_status",
]
