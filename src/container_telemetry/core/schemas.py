"""Pydantic schemas for container telemetry.

This module defines the data contracts of the derivation core: the raw
snapshots that enter it (validated at the boundary), the derived per-tick
metrics it produces, and the runtime configuration.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from container_telemetry.core import signals as signal_names
from container_telemetry.core.constants import (
    DEFAULT_CGROUP_ROOT,
    DEFAULT_EXCLUDED_INTERFACE_PATTERN,
    DEFAULT_NET_CLASS_ROOT,
    DEFAULT_SCHEDULER_DIVISOR,
    DEFAULT_TICK_INTERVAL_SECONDS,
    LEGACY_NETWORK_INTERFACE,
)


class EntityType(str, Enum):
    """Kind of tracked entity."""

    CONTAINER = "container"
    HOST = "host"


class SuppressionReason(str, Enum):
    """Why a signal was not produced for a tick."""

    FIRST_OBSERVATION = "first_observation"  # No previous value to diff against
    COUNTER_RESET = "counter_reset"  # Cumulative counter went backwards
    SOURCE_UNAVAILABLE = "source_unavailable"  # External read failed
    MISSING_FIELD = "missing_field"  # Snapshot lacked the input


class HostCpuStrategy(str, Enum):
    """How host CPU usage rates are sourced."""

    AUTO = "auto"  # cgroup counters when present, scheduler ticks otherwise
    CGROUP = "cgroup"
    SCHEDULER = "scheduler"


# =============================================================================
# RAW CONTAINER SNAPSHOT (Docker stats API payload)
# =============================================================================


class CpuUsage(BaseModel):
    """Cumulative CPU usage counters in nanoseconds."""

    model_config = ConfigDict(extra="ignore")

    total_usage: int | None = None
    usage_in_kernelmode: int | None = None
    usage_in_usermode: int | None = None
    percpu_usage: list[int] | None = None


class CpuStats(BaseModel):
    """One side (current or embedded previous) of the Docker CPU stats pair."""

    model_config = ConfigDict(extra="ignore")

    cpu_usage: CpuUsage | None = None
    system_cpu_usage: int | None = None
    online_cpus: int | None = None


class MemoryStats(BaseModel):
    """Container memory gauges and memory.stat sub-counters."""

    model_config = ConfigDict(extra="ignore")

    usage: int | None = None
    limit: int | None = None
    stats: dict[str, int] = Field(default_factory=dict)

    @property
    def inactive_anon(self) -> int:
        """Inactive anonymous bytes (cgroup v1 total_ key preferred), 0 when absent."""
        return _first_present(self.stats, ("total_inactive_anon", "inactive_anon"))

    @property
    def inactive_file(self) -> int:
        """Inactive file-backed bytes (cgroup v1 total_ key preferred), 0 when absent."""
        return _first_present(self.stats, ("total_inactive_file", "inactive_file"))


class NetworkCounters(BaseModel):
    """Cumulative counters of one network interface.

    A None value means that counter could not be read for this tick.
    """

    model_config = ConfigDict(extra="ignore")

    rx_bytes: int | None = None
    tx_bytes: int | None = None
    rx_errors: int | None = None
    tx_errors: int | None = None


class RawContainerStats(BaseModel):
    """One container stats payload.

    The runtime ships the current sample (cpu_stats) and the preceding one
    (precpu_stats) together, so CPU percentage needs no retained history.
    """

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    name: str | None = None
    read: datetime | None = None
    cpu_stats: CpuStats | None = None
    precpu_stats: CpuStats | None = None
    memory_stats: MemoryStats | None = None
    networks: dict[str, NetworkCounters] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def normalize_legacy_network(cls, data: Any) -> Any:
        """File the single "network" object of old API versions under one interface."""
        if isinstance(data, dict) and data.get("network") and not data.get("networks"):
            data = dict(data)
            data["networks"] = {LEGACY_NETWORK_INTERFACE: data.pop("network")}
        return data

    @field_validator("name")
    @classmethod
    def strip_name_slash(cls, v: str | None) -> str | None:
        """Docker reports names with a leading slash."""
        if v is None:
            return v
        return v.lstrip("/")


# =============================================================================
# RAW HOST SNAPSHOT
# =============================================================================


class CoreTimes(BaseModel):
    """Cumulative OS scheduler times of one core, in seconds."""

    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0

    @property
    def busy(self) -> float:
        return self.user + self.system

    @property
    def total(self) -> float:
        return (
            self.user
            + self.nice
            + self.system
            + self.idle
            + self.iowait
            + self.irq
            + self.softirq
            + self.steal
        )


class CgroupCpuCounters(BaseModel):
    """Host-wide cumulative CPU usage from cgroup counter files, in nanoseconds."""

    total_ns: int = Field(ge=0)
    kernel_ns: int | None = Field(default=None, ge=0)
    user_ns: int | None = Field(default=None, ge=0)
    per_core_ns: list[int] | None = None


class CgroupMemoryCounters(BaseModel):
    """Host-wide memory usage and reclaimable sub-counters from cgroup files."""

    usage: int = Field(ge=0)
    inactive_anon: int = Field(default=0, ge=0)
    inactive_file: int = Field(default=0, ge=0)


class RawHostStats(BaseModel):
    """One host-wide snapshot.

    Every optional source is None when the platform does not provide it or
    the read failed for this tick.
    """

    hostname: str = "localhost"
    platform: str | None = None
    architecture: str | None = None
    cores: list[CoreTimes] = Field(default_factory=list)
    memory_total: int | None = Field(default=None, ge=0)
    memory_free: int | None = Field(default=None, ge=0)
    cgroup_cpu: CgroupCpuCounters | None = None
    cgroup_memory: CgroupMemoryCounters | None = None
    networks: dict[str, NetworkCounters] = Field(default_factory=dict)


# =============================================================================
# DERIVED METRICS
# =============================================================================


class CpuUsageRates(BaseModel):
    """CPU time consumed during the tick, in seconds of CPU time."""

    total: float | None = None
    kernel: float | None = None
    user: float | None = None
    cores: list[float | None] = Field(default_factory=list)


class InterfaceRates(BaseModel):
    """Per-tick counter deltas of one interface (raw units, no scaling)."""

    rx_bytes: int | None = None
    tx_bytes: int | None = None
    rx_errors: int | None = None
    tx_errors: int | None = None


class DerivedMetrics(BaseModel):
    """Everything derived for one entity on one tick.

    A None value means the signal was not produced; the reason is recorded in
    ``suppressed`` (per signal) or ``errors`` (per metric family).
    """

    entity_id: str
    entity_type: EntityType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    cpu_percentage: float | None = Field(default=None, ge=0)
    cpu_usage: CpuUsageRates = Field(default_factory=CpuUsageRates)

    memory_usage: int | None = Field(default=None, ge=0)
    memory_limit: int | None = None
    memory_percentage: float | None = Field(default=None, ge=0)
    memory_working_set: int | None = Field(default=None, ge=0)

    network: dict[str, InterfaceRates] = Field(default_factory=dict)

    suppressed: dict[str, SuppressionReason] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)

    def signals(self) -> Iterator[tuple[str, float | int]]:
        """Yield (signal name, value) for every produced signal."""
        scalar_signals = [
            (signal_names.CPU_PERCENTAGE, self.cpu_percentage),
            (signal_names.CPU_USAGE, self.cpu_usage.total),
            (signal_names.CPU_KERNEL_USAGE, self.cpu_usage.kernel),
            (signal_names.CPU_USER_USAGE, self.cpu_usage.user),
        ]
        scalar_signals.extend(
            (signal_names.core_signal(i), value) for i, value in enumerate(self.cpu_usage.cores)
        )
        scalar_signals.extend(
            [
                (signal_names.MEMORY_USAGE, self.memory_usage),
                (signal_names.MEMORY_LIMIT, self.memory_limit),
                (signal_names.MEMORY_PERCENTAGE, self.memory_percentage),
                (signal_names.MEMORY_WORKING_SET, self.memory_working_set),
            ]
        )
        for name, value in scalar_signals:
            if value is not None:
                yield name, value

        for interface, rates in self.network.items():
            for counter, value in rates.model_dump().items():
                if value is not None:
                    yield signal_names.network_signal(interface, counter), value

    def to_flat_dict(self) -> dict[str, Any]:
        """Flatten to signal-name columns for tabular output."""
        data: dict[str, Any] = {
            "entity_id": self.entity_id,
            "entity_type": self.entity_type.value,
            "timestamp": self.timestamp.isoformat(),
        }
        data.update(self.signals())
        return data


# =============================================================================
# CONFIGURATION
# =============================================================================


class TelemetryConfig(BaseModel):
    """Runtime configuration loaded from YAML/JSON files."""

    tick_interval_seconds: float = Field(
        default=DEFAULT_TICK_INTERVAL_SECONDS, ge=0.1, le=60, description="Scheduler tick length"
    )
    host_cpu_strategy: HostCpuStrategy = Field(default=HostCpuStrategy.AUTO)
    scheduler_divisor: float = Field(
        default=DEFAULT_SCHEDULER_DIVISOR,
        gt=0,
        description="Divisor converting scheduler time deltas into seconds",
    )
    cgroup_root: Path = Field(default=Path(DEFAULT_CGROUP_ROOT))
    net_class_root: Path = Field(default=Path(DEFAULT_NET_CLASS_ROOT))
    excluded_interface_pattern: str = Field(
        default=DEFAULT_EXCLUDED_INTERFACE_PATTERN,
        description="Interfaces whose name matches are not reported for the host",
    )
    log_level: str = Field(default="INFO")

    @field_validator("excluded_interface_pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid interface pattern {v!r}: {e}") from e
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level


def _first_present(stats: dict[str, int], keys: tuple[str, ...]) -> int:
    for key in keys:
        value = stats.get(key)
        if value is not None:
            return value
    return 0
