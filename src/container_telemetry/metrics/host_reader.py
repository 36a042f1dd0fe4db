"""Host counter reader.

Reads the raw host-wide counters the host calculator consumes:
- Per-core scheduler times and memory totals via psutil
- Aggregate CPU usage from cgroup counter files (cgroup v1 cpuacct or the
  cgroup v2 root cpu.stat), when the platform provides them
- Memory working-set inputs from cgroup memory files
- Per-interface network counters from /sys/class/net/<iface>/statistics

Every optional source is capability-detected: a missing or unreadable file
yields None for that source rather than an error for the whole snapshot.
"""

from __future__ import annotations

import asyncio
import logging
import platform
import re
import socket
from pathlib import Path

import psutil

from container_telemetry.core.constants import NANOSECONDS_PER_MICROSECOND, NETWORK_COUNTERS
from container_telemetry.core.errors import SourceUnavailableError
from container_telemetry.core.schemas import (
    CgroupCpuCounters,
    CgroupMemoryCounters,
    CoreTimes,
    NetworkCounters,
    RawHostStats,
    TelemetryConfig,
)

logger = logging.getLogger(__name__)


class HostCounterReader:
    """Reads host-wide cumulative counters for one tick.

    Example:
        ```python
        reader = HostCounterReader(TelemetryConfig())
        snapshot = reader.snapshot()
        counters = await reader.read_interface("eth0")
        ```
    """

    def __init__(self, config: TelemetryConfig | None = None) -> None:
        """Initialize the reader.

        Args:
            config: Telemetry configuration (filesystem roots, interface filter)
        """
        self._config = config or TelemetryConfig()
        self._cgroup_root = Path(self._config.cgroup_root)
        self._net_root = Path(self._config.net_class_root)
        self._excluded = re.compile(self._config.excluded_interface_pattern)

    # -------------------------------------------------------------------------
    # OS introspection (psutil)
    # -------------------------------------------------------------------------

    def read_core_times(self) -> list[CoreTimes]:
        """Cumulative scheduler times per core, in seconds.

        Raises:
            SourceUnavailableError: If psutil cannot read CPU times
        """
        try:
            per_core = psutil.cpu_times(percpu=True)
        except (OSError, RuntimeError) as e:
            raise SourceUnavailableError("cpu_times", str(e)) from e

        return [
            CoreTimes(**{field: getattr(times, field, 0.0) for field in CoreTimes.model_fields})
            for times in per_core
        ]

    def read_memory(self) -> tuple[int, int]:
        """Total and free (available) physical memory in bytes.

        Raises:
            SourceUnavailableError: If psutil cannot read memory information
        """
        try:
            vm = psutil.virtual_memory()
        except (OSError, RuntimeError) as e:
            raise SourceUnavailableError("virtual_memory", str(e)) from e
        return vm.total, vm.available

    # -------------------------------------------------------------------------
    # cgroup counters
    # -------------------------------------------------------------------------

    def read_cgroup_cpu(self) -> CgroupCpuCounters | None:
        """Aggregate cumulative CPU usage in nanoseconds, None if unavailable.

        cgroup v1 cpuacct files:
            cpuacct.usage         123456789
            cpuacct.usage_sys     23456789
            cpuacct.usage_user    100000000
            cpuacct.usage_percpu  61728394 61728395

        cgroup v2 cpu.stat (microseconds):
            usage_usec 123456
            user_usec 100000
            system_usec 23456
        """
        cpuacct = self._cgroup_root / "cpuacct"
        total = _read_single_value(cpuacct / "cpuacct.usage")
        if total is not None:
            return CgroupCpuCounters(
                total_ns=total,
                kernel_ns=_read_single_value(cpuacct / "cpuacct.usage_sys"),
                user_ns=_read_single_value(cpuacct / "cpuacct.usage_user"),
                per_core_ns=_read_value_list(cpuacct / "cpuacct.usage_percpu"),
            )

        cpu_stat = _read_key_values(self._cgroup_root / "cpu.stat")
        if "usage_usec" in cpu_stat:
            return CgroupCpuCounters(
                total_ns=cpu_stat["usage_usec"] * NANOSECONDS_PER_MICROSECOND,
                kernel_ns=_usec_to_ns(cpu_stat.get("system_usec")),
                user_ns=_usec_to_ns(cpu_stat.get("user_usec")),
            )

        return None

    def read_cgroup_memory(self) -> CgroupMemoryCounters | None:
        """Host-wide memory usage and inactive page counters, None if unavailable.

        Tries cgroup v1 (memory.usage_in_bytes, total_inactive_* keys) first,
        then cgroup v2 (memory.current, inactive_* keys). The v2 root cgroup has
        memory.stat but no memory.current; there usage is total minus free
        physical memory.
        """
        v1_dir = self._cgroup_root / "memory"
        usage = _read_single_value(v1_dir / "memory.usage_in_bytes")
        if usage is not None:
            stat = _read_key_values(v1_dir / "memory.stat")
            return CgroupMemoryCounters(
                usage=usage,
                inactive_anon=stat.get("total_inactive_anon", 0),
                inactive_file=stat.get("total_inactive_file", 0),
            )

        stat = _read_key_values(self._cgroup_root / "memory.stat")
        usage = _read_single_value(self._cgroup_root / "memory.current")
        if usage is None and ("inactive_anon" in stat or "inactive_file" in stat):
            usage = self._read_used_memory()
        if usage is not None:
            return CgroupMemoryCounters(
                usage=usage,
                inactive_anon=stat.get("inactive_anon", 0),
                inactive_file=stat.get("inactive_file", 0),
            )

        return None

    def _read_used_memory(self) -> int | None:
        """Physical memory in use including page cache (total - free)."""
        try:
            vm = psutil.virtual_memory()
        except (OSError, RuntimeError) as e:
            logger.debug(f"Memory totals unavailable for cgroup v2 root: {e}")
            return None
        return max(0, vm.total - vm.free)

    # -------------------------------------------------------------------------
    # Network counters
    # -------------------------------------------------------------------------

    def list_interfaces(self) -> list[str]:
        """Non-virtual interfaces, sorted by name."""
        if not self._net_root.exists():
            logger.debug(f"No {self._net_root} directory found, no interfaces reported")
            return []
        try:
            names = [entry.name for entry in self._net_root.iterdir()]
        except OSError as e:
            logger.debug(f"Error listing interfaces in {self._net_root}: {e}")
            return []
        return sorted(name for name in names if not self._excluded.match(name))

    def read_interface_counter(self, interface: str, counter: str) -> int:
        """Read one cumulative counter file of one interface.

        Raises:
            SourceUnavailableError: If the file is missing, unreadable or malformed
        """
        path = self._net_root / interface / "statistics" / counter
        try:
            return int(path.read_text().strip())
        except (OSError, ValueError) as e:
            raise SourceUnavailableError(str(path), str(e)) from e

    async def read_interface(self, interface: str) -> NetworkCounters:
        """Read all counters of one interface concurrently.

        A counter whose read fails is None; the other counters are unaffected.
        """
        results = await asyncio.gather(
            *(
                asyncio.to_thread(self.read_interface_counter, interface, counter)
                for counter in NETWORK_COUNTERS
            ),
            return_exceptions=True,
        )
        values: dict[str, int | None] = {}
        for counter, result in zip(NETWORK_COUNTERS, results, strict=True):
            if isinstance(result, SourceUnavailableError):
                logger.debug(f"{interface}: {result}")
                values[counter] = None
            elif isinstance(result, BaseException):
                raise result
            else:
                values[counter] = result
        return NetworkCounters(**values)

    def read_networks(self) -> dict[str, NetworkCounters]:
        """Read every interface's counters sequentially."""
        networks: dict[str, NetworkCounters] = {}
        for interface in self.list_interfaces():
            values: dict[str, int | None] = {}
            for counter in NETWORK_COUNTERS:
                try:
                    values[counter] = self.read_interface_counter(interface, counter)
                except SourceUnavailableError as e:
                    logger.debug(f"{interface}: {e}")
                    values[counter] = None
            networks[interface] = NetworkCounters(**values)
        return networks

    # -------------------------------------------------------------------------
    # Snapshot
    # -------------------------------------------------------------------------

    def snapshot(self, include_networks: bool = False) -> RawHostStats:
        """Assemble one host snapshot.

        Args:
            include_networks: Also read interface counters (sequentially). The
                async sampler reads them separately and concurrently instead.
        """
        cores: list[CoreTimes] = []
        try:
            cores = self.read_core_times()
        except SourceUnavailableError as e:
            logger.debug(f"Scheduler times unavailable: {e}")

        memory_total: int | None = None
        memory_free: int | None = None
        try:
            memory_total, memory_free = self.read_memory()
        except SourceUnavailableError as e:
            logger.debug(f"Memory totals unavailable: {e}")

        return RawHostStats(
            hostname=socket.gethostname(),
            platform=platform.system().lower() or None,
            architecture=platform.machine() or None,
            cores=cores,
            memory_total=memory_total,
            memory_free=memory_free,
            cgroup_cpu=self.read_cgroup_cpu(),
            cgroup_memory=self.read_cgroup_memory(),
            networks=self.read_networks() if include_networks else {},
        )

    def capabilities(self) -> dict[str, bool]:
        """Report which optional counter sources are available on this host."""
        try:
            scheduler_ticks = bool(self.read_core_times())
        except SourceUnavailableError:
            scheduler_ticks = False
        return {
            "scheduler_ticks": scheduler_ticks,
            "cgroup_cpu": self.read_cgroup_cpu() is not None,
            "cgroup_memory": self.read_cgroup_memory() is not None,
            "network": bool(self.list_interfaces()),
        }


def _read_single_value(path: Path) -> int | None:
    """Read a single integer value from a counter file."""
    try:
        return int(path.read_text().strip())
    except (OSError, ValueError):
        return None


def _read_value_list(path: Path) -> list[int] | None:
    """Read a whitespace-separated list of integers (e.g. cpuacct.usage_percpu)."""
    try:
        values = [int(v) for v in path.read_text().split()]
    except (OSError, ValueError):
        return None
    return values or None


def _read_key_values(path: Path) -> dict[str, int]:
    """Read a flat "key value" file such as cpu.stat or memory.stat."""
    result: dict[str, int] = {}
    try:
        content = path.read_text()
    except OSError:
        return result
    for line in content.strip().split("\n"):
        parts = line.split()
        if len(parts) == 2:
            try:
                result[parts[0]] = int(parts[1])
            except ValueError:
                continue
    return result


def _usec_to_ns(value: int | None) -> int | None:
    if value is None:
        return None
    return value * NANOSECONDS_PER_MICROSECOND
