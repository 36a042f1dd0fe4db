"""Shared arithmetic for derived gauges.

These helpers are used by both the container and the host calculator and
never touch retained state.

Functions:
    compute_cpu_percent: CPU percentage from a matched current/previous pair
    compute_memory_percent: Memory usage as a percentage of the limit
    compute_working_set: Usage minus reclaimable inactive pages, clamped at 0
    compute_cpu_average: Rolling idle/total average across cores
    compute_busy_percent: Busy percentage between two rolling averages
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from container_telemetry.core.schemas import CoreTimes


@dataclass(frozen=True)
class CpuAverage:
    """Per-core average of idle and total scheduler time."""

    idle: float
    total: float


def compute_cpu_percent(total_delta: float, system_delta: float, num_cores: int) -> float:
    """Compute CPU percentage of a container.

    Args:
        total_delta: Container CPU time consumed between the two samples
        system_delta: Host CPU time elapsed between the two samples
        num_cores: Number of cores the container can use

    Returns:
        (total_delta / system_delta) * num_cores * 100, or 0.0 when either
        delta is not positive (cold start or no progress)
    """
    if total_delta <= 0 or system_delta <= 0:
        return 0.0
    return (total_delta / system_delta) * num_cores * 100.0


def compute_memory_percent(usage: int, limit: int | None) -> float:
    """Compute memory usage percentage.

    Args:
        usage: Memory usage in bytes
        limit: Memory limit in bytes; unset or non-positive limits are common
            when no memory cap is configured

    Returns:
        usage / limit * 100, 0.0 if limit is unset or <= 0
    """
    if limit is None or limit <= 0:
        return 0.0
    return usage / limit * 100


def compute_working_set(usage: int, inactive_anon: int = 0, inactive_file: int = 0) -> int:
    """Estimate the working set (memory that is not easily reclaimable).

    Inactive anonymous pages are subtracted first, then inactive file pages;
    each subtraction clamps at 0.

    Args:
        usage: Memory usage in bytes
        inactive_anon: Inactive anonymous bytes
        inactive_file: Inactive file-backed bytes

    Returns:
        Working set in bytes (never negative)
    """
    working_set = usage
    for inactive in (inactive_anon, inactive_file):
        if working_set < inactive:
            working_set = 0
        else:
            working_set -= inactive
    return max(0, working_set)


def compute_cpu_average(cores: Sequence[CoreTimes]) -> CpuAverage | None:
    """Average idle and total time across cores, None when no cores are known."""
    if not cores:
        return None
    total_idle = sum(core.idle for core in cores)
    total_tick = sum(core.total for core in cores)
    return CpuAverage(idle=total_idle / len(cores), total=total_tick / len(cores))


def compute_busy_percent(previous: CpuAverage, current: CpuAverage) -> float:
    """Busy percentage between two rolling averages.

    Returns:
        100 - 100 * idle_delta / total_delta, 0.0 if no time elapsed
    """
    idle_delta = current.idle - previous.idle
    total_delta = current.total - previous.total
    if total_delta <= 0:
        return 0.0
    percent = 100.0 - (100.0 * idle_delta / total_delta)
    return min(100.0, max(0.0, percent))
