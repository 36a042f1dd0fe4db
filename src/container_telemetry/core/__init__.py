"""Core module - configuration, schemas and error taxonomy."""

from __future__ import annotations

from container_telemetry.core.config import load_config
from container_telemetry.core.constants import NANOSECONDS_PER_SECOND
from container_telemetry.core.errors import (
    MetricsError,
    MissingFieldError,
    SnapshotValidationError,
    SourceUnavailableError,
)
from container_telemetry.core.schemas import (
    CgroupCpuCounters,
    CgroupMemoryCounters,
    CoreTimes,
    CpuStats,
    CpuUsage,
    CpuUsageRates,
    DerivedMetrics,
    EntityType,
    HostCpuStrategy,
    InterfaceRates,
    MemoryStats,
    NetworkCounters,
    RawContainerStats,
    RawHostStats,
    SuppressionReason,
    TelemetryConfig,
)

__all__ = [
    "NANOSECONDS_PER_SECOND",
    "CgroupCpuCounters",
    "CgroupMemoryCounters",
    "CoreTimes",
    "CpuStats",
    "CpuUsage",
    "CpuUsageRates",
    "DerivedMetrics",
    "EntityType",
    "HostCpuStrategy",
    "InterfaceRates",
    "load_config",
    "MemoryStats",
    "MetricsError",
    "MissingFieldError",
    "NetworkCounters",
    "RawContainerStats",
    "RawHostStats",
    "SnapshotValidationError",
    "SourceUnavailableError",
    "SuppressionReason",
    "TelemetryConfig",
]
