"""Container Telemetry - derived CPU, memory and network metrics for containers and hosts."""

from __future__ import annotations

from container_telemetry.core.schemas import (
    DerivedMetrics,
    EntityType,
    RawContainerStats,
    RawHostStats,
    SuppressionReason,
    TelemetryConfig,
)

__version__ = "0.1.0"

__all__ = [
    "DerivedMetrics",
    "EntityType",
    "RawContainerStats",
    "RawHostStats",
    "SuppressionReason",
    "TelemetryConfig",
    "__version__",
]
