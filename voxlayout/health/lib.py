"""Health checking for the backend services.

Provides centralized status checking for every pipeline dependency:
- Transcription service
- Entity-extraction service
- Visual-mapping service
- Layout store
- Component catalog cache
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from voxlayout.catalog import ComponentCatalogCache
from voxlayout.services import ServiceBundle

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Overall health status."""

    HEALTHY = "healthy"  # All dependencies available
    DEGRADED = "degraded"  # Generation works on a fallback path
    UNHEALTHY = "unhealthy"  # Extraction down, no usable layouts


@dataclass
class ServiceStatus:
    """Status of a single service/dependency."""

    available: bool
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"available": self.available, "message": self.message, **self.details}


@dataclass
class SystemHealth:
    """Complete health report."""

    status: HealthStatus
    version: str
    checked_at: datetime

    # Service statuses
    transcription: ServiceStatus
    extraction: ServiceStatus
    mapping: ServiceStatus
    layout_store: ServiceStatus
    catalog: ServiceStatus

    # Capability summary
    can_transcribe: bool  # Audio input accepted
    can_generate: bool  # Extraction available
    can_map: bool  # Visual mapping available, otherwise fallback layouts
    can_persist: bool  # Layout store available

    @property
    def services(self) -> dict[str, ServiceStatus]:
        return {
            "transcription": self.transcription,
            "extraction": self.extraction,
            "mapping": self.mapping,
            "layout_store": self.layout_store,
        }

    def action_items(self) -> list[str]:
        """What to fix when not healthy."""
        actions = []
        if not self.can_generate:
            actions.append(f"Start the extraction service at {self.extraction.details.get('url')}")
        if not self.can_map:
            actions.append(
                f"Start the mapping service at {self.mapping.details.get('url')} "
                "(layouts fall back to extraction guesses)"
            )
        if not self.can_transcribe:
            actions.append(
                f"Start the transcription service at {self.transcription.details.get('url')} "
                "(audio input unavailable)"
            )
        if not self.can_persist:
            actions.append("Check LAYOUT_STORE settings (layouts will not be saved)")
        return actions

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "status": self.status.value,
            "version": self.version,
            "checked_at": self.checked_at.isoformat(),
            "services": {name: status.to_dict() for name, status in self.services.items()},
            "catalog": self.catalog.to_dict(),
            "capabilities": {
                "generate_layout": self.can_generate,
                "generate_layout_from_audio": self.can_generate and self.can_transcribe,
                "visual_mapping": self.can_map,
                "persist_layout": self.can_persist,
            },
        }


def check_service(adapter: Any) -> ServiceStatus:
    """Probe one adapter's health endpoint."""
    name = getattr(adapter, "name", type(adapter).__name__)
    details: dict[str, Any] = {}
    if hasattr(adapter, "base_url"):
        details["url"] = adapter.base_url
    elif hasattr(adapter, "db_path"):
        details["path"] = str(adapter.db_path)

    if adapter.health_check():
        return ServiceStatus(available=True, message=f"{name} is running", details=details)
    return ServiceStatus(available=False, message=f"{name} not responding", details=details)


def check_catalog(catalog: ComponentCatalogCache) -> ServiceStatus:
    """Report catalog cache state. A cold cache is not a failure."""
    entries = catalog.get()
    if entries is None:
        return ServiceStatus(
            available=False,
            message="Catalog cache is cold",
            details={"ttl": catalog.ttl},
        )
    return ServiceStatus(
        available=True,
        message=f"Catalog cached with {len(entries)} components",
        details={"ttl": catalog.ttl, "age": round(catalog.age or 0.0, 1), "entries": len(entries)},
    )


def get_system_health(services: ServiceBundle, version: str | None = None) -> SystemHealth:
    """Get comprehensive health status.

    Checks all dependencies and returns overall health assessment.

    Args:
        services: Service bundle to probe.
        version: Version string to report; the package version if None.

    Returns:
        SystemHealth with status of all services.
    """
    if version is None:
        from voxlayout.mcp.lib import get_server_version

        version = get_server_version()

    transcription = check_service(services.transcription)
    extraction = check_service(services.extraction)
    mapping = check_service(services.mapping)
    layout_store = check_service(services.store)
    catalog = check_catalog(services.catalog)

    can_generate = extraction.available
    if not can_generate:
        status = HealthStatus.UNHEALTHY
    elif transcription.available and mapping.available and layout_store.available:
        status = HealthStatus.HEALTHY
    else:
        status = HealthStatus.DEGRADED

    return SystemHealth(
        status=status,
        version=version,
        checked_at=datetime.now(UTC),
        transcription=transcription,
        extraction=extraction,
        mapping=mapping,
        layout_store=layout_store,
        catalog=catalog,
        can_transcribe=transcription.available,
        can_generate=can_generate,
        can_map=mapping.available,
        can_persist=layout_store.available,
    )


def format_status_banner(health: SystemHealth) -> str:
    """Format a status banner for logging or the terminal.

    Args:
        health: Health report.

    Returns:
        Formatted multi-line banner string.
    """
    status_icon = {
        HealthStatus.HEALTHY: "[OK]",
        HealthStatus.DEGRADED: "[!!]",
        HealthStatus.UNHEALTHY: "[XX]",
    }

    def svc_icon(available: bool) -> str:
        return "[OK]" if available else "[--]"

    lines = [
        "",
        "=" * 60,
        f"  voxlayout v{health.version}",
        "=" * 60,
        f"  Status: {status_icon[health.status]} {health.status.value.upper()}",
        "",
        "  Services:",
    ]
    for name, status in health.services.items():
        lines.append(f"    {svc_icon(status.available)} {name:<14} {status.message}")
    lines.append(f"    {svc_icon(health.catalog.available)} {'catalog':<14} {health.catalog.message}")

    actions = health.action_items()
    if actions:
        lines.append("")
        lines.append("  Action Required:")
        lines.extend(f"    - {action}" for action in actions)

    lines.extend(["", "=" * 60, ""])
    return "\n".join(lines)


def log_startup_status(services: ServiceBundle) -> SystemHealth:
    """Log health status on startup.

    Outputs a formatted banner showing service status and capabilities.
    """
    health = get_system_health(services)

    for line in format_status_banner(health).split("\n"):
        if line.strip():
            logger.info(line)

    if health.status == HealthStatus.UNHEALTHY:
        logger.error("UNHEALTHY - extraction is unreachable, generation will yield empty layouts.")
    elif health.status == HealthStatus.DEGRADED:
        logger.warning("DEGRADED - generation works but some stages will fall back.")
    else:
        logger.info("Ready - all services available.")
    return health


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
