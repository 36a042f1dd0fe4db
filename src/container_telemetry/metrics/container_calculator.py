"""Container metrics calculator.

Turns one container's raw stats payload per tick into derived metrics:
- CPU percentage and CPU time rates from the matched current/previous pair
  the runtime embeds in every payload (no retained history needed)
- Memory usage, limit, percentage and working set (instantaneous gauges)
- Network byte/error deltas against the previous tick's counters, which the
  calculator retains itself

Metric families are computed independently: a payload missing its memory
section still yields CPU and network values.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from container_telemetry.core import signals
from container_telemetry.core.constants import NANOSECONDS_PER_SECOND, NETWORK_COUNTERS
from container_telemetry.core.errors import MissingFieldError, SnapshotValidationError
from container_telemetry.core.schemas import (
    CpuUsage,
    CpuUsageRates,
    DerivedMetrics,
    EntityType,
    InterfaceRates,
    RawContainerStats,
    SuppressionReason,
)
from container_telemetry.metrics.base import RegisterCallback
from container_telemetry.metrics.metric_utils import (
    compute_cpu_percent,
    compute_memory_percent,
    compute_working_set,
)
from container_telemetry.metrics.rates import CounterBaseline, scaled_rate, suppression_reason

logger = logging.getLogger(__name__)


class ContainerMetricsCalculator:
    """Stateful calculator for one container.

    One instance per tracked container; state is never shared across
    containers. Calls to calculate() are serialized per instance so that the
    network baseline is replaced exactly once per tick, after every rate of
    that tick has read it.

    Example:
        ```python
        calculator = ContainerMetricsCalculator("3f2a9c1b7d4e")
        metrics = calculator.calculate(stats_payload)
        print(metrics.cpu_percentage, metrics.memory_working_set)
        ```
    """

    def __init__(self, entity_id: str, name: str | None = None) -> None:
        """Initialize the calculator.

        Args:
            entity_id: Container ID (usually the 12 character short ID)
            name: Human-readable container name
        """
        self._entity_id = entity_id
        self.name = name
        self._network_baseline = CounterBaseline()
        self._last_snapshot: RawContainerStats | None = None
        self._known_interfaces: set[str] = set()
        self._register: RegisterCallback | None = None
        self._lock = threading.Lock()

    @property
    def entity_id(self) -> str:
        return self._entity_id

    @property
    def last_snapshot(self) -> RawContainerStats | None:
        """The most recent validated snapshot (previous reference point)."""
        return self._last_snapshot

    def init(self, register: RegisterCallback) -> None:
        """Register the fixed CPU and memory signals.

        Network signals are registered the first time an interface is seen.
        """
        self._register = register
        for signal in (*signals.CPU_SIGNALS, *signals.MEMORY_SIGNALS):
            register(signal)
        for interface in sorted(self._known_interfaces):
            for signal in signals.network_signals(interface):
                register(signal)

    def update(self, snapshot: RawContainerStats | dict[str, Any]) -> DerivedMetrics:
        return self.calculate(snapshot)

    def reset(self) -> None:
        """Discard all retained state."""
        with self._lock:
            self._network_baseline.clear()
            self._last_snapshot = None

    @staticmethod
    def validate(snapshot: RawContainerStats | dict[str, Any]) -> RawContainerStats:
        """Validate a raw payload at the boundary.

        Raises:
            SnapshotValidationError: If the payload is not a valid stats object
        """
        if isinstance(snapshot, RawContainerStats):
            return snapshot
        try:
            return RawContainerStats.model_validate(snapshot)
        except ValidationError as e:
            raise SnapshotValidationError(f"Invalid container stats payload: {e}") from e

    def calculate(self, snapshot: RawContainerStats | dict[str, Any]) -> DerivedMetrics:
        """Derive all metrics for one tick and advance the retained state.

        Args:
            snapshot: Raw stats payload (validated here if given as a dict)

        Returns:
            DerivedMetrics for this tick

        Raises:
            SnapshotValidationError: If the payload cannot be validated
        """
        stats = self.validate(snapshot)
        if stats.name and self.name is None:
            self.name = stats.name

        metrics = DerivedMetrics(
            entity_id=self._entity_id,
            entity_type=EntityType.CONTAINER,
            timestamp=stats.read or datetime.now(UTC),
        )

        with self._lock:
            try:
                for family, derive in (
                    ("cpu", self._derive_cpu),
                    ("memory", self._derive_memory),
                    ("network", self._derive_network),
                ):
                    try:
                        derive(stats, metrics)
                    except MissingFieldError as e:
                        logger.warning(f"Container {self._entity_id}: {e}")
                        metrics.errors[family] = str(e)
            except Exception:
                self._network_baseline.discard_staged()
                raise

            # Every rate of this tick has read the old baseline; replace it once
            self._network_baseline.commit()
            self._last_snapshot = stats

        return metrics

    # -------------------------------------------------------------------------
    # CPU
    # -------------------------------------------------------------------------

    def calculate_cpu_percent(self, snapshot: RawContainerStats) -> float:
        """CPU percentage from the embedded current/previous pair.

        Returns:
            (total_delta / system_delta) * cores * 100; 0.0 when either delta
            is not positive or the previous sample is not populated yet

        Raises:
            MissingFieldError: If current usage, system usage or core count is absent
        """
        current = _require_cpu_usage(snapshot)
        cpu_stats = snapshot.cpu_stats
        assert cpu_stats is not None
        if cpu_stats.system_cpu_usage is None:
            raise MissingFieldError("cpu", "cpu_stats.system_cpu_usage")
        num_cores = _core_count(snapshot)

        precpu = snapshot.precpu_stats
        previous = _embedded_previous(snapshot)
        if previous is None or precpu is None or precpu.system_cpu_usage is None:
            return 0.0

        total_delta = current.total_usage - previous.total_usage
        system_delta = cpu_stats.system_cpu_usage - precpu.system_cpu_usage
        return compute_cpu_percent(total_delta, system_delta, num_cores)

    def calculate_cpu_rates(
        self,
        snapshot: RawContainerStats,
        suppressed: dict[str, SuppressionReason] | None = None,
    ) -> CpuUsageRates:
        """CPU seconds consumed between the embedded previous and current samples.

        Args:
            snapshot: Validated snapshot
            suppressed: Optional mapping that receives the reason for each
                suppressed signal

        Raises:
            MissingFieldError: If the current CPU usage counters are absent
        """
        current = _require_cpu_usage(snapshot)
        previous = _embedded_previous(snapshot)

        def _rate(signal: str, prev: int | None, curr: int | None) -> float | None:
            value = scaled_rate(prev, curr, NANOSECONDS_PER_SECOND)
            if value is None and suppressed is not None:
                reason = suppression_reason(prev, curr)
                suppressed[signal] = reason or SuppressionReason.MISSING_FIELD
            return value

        prev_usage = previous or CpuUsage()
        rates = CpuUsageRates(
            total=_rate(signals.CPU_USAGE, prev_usage.total_usage, current.total_usage),
            kernel=_rate(
                signals.CPU_KERNEL_USAGE,
                prev_usage.usage_in_kernelmode,
                current.usage_in_kernelmode,
            ),
            user=_rate(
                signals.CPU_USER_USAGE, prev_usage.usage_in_usermode, current.usage_in_usermode
            ),
        )

        current_cores = current.percpu_usage or []
        previous_cores = prev_usage.percpu_usage or []
        if current_cores and len(previous_cores) == len(current_cores):
            rates.cores = [
                _rate(signals.core_signal(i), prev, curr)
                for i, (prev, curr) in enumerate(zip(previous_cores, current_cores, strict=True))
            ]
        elif current_cores and previous and previous_cores:
            logger.debug(
                f"Container {self._entity_id}: core count changed "
                f"({len(previous_cores)} -> {len(current_cores)}), skipping per-core rates"
            )

        return rates

    def _derive_cpu(self, stats: RawContainerStats, metrics: DerivedMetrics) -> None:
        _require_cpu_usage(stats)
        try:
            metrics.cpu_percentage = self.calculate_cpu_percent(stats)
        except MissingFieldError as e:
            # Usage rates do not need system usage or the core count
            logger.warning(f"Container {self._entity_id}: cpu.percentage unavailable: {e}")
            metrics.suppressed[signals.CPU_PERCENTAGE] = SuppressionReason.MISSING_FIELD
        metrics.cpu_usage = self.calculate_cpu_rates(stats, metrics.suppressed)

    # -------------------------------------------------------------------------
    # Memory
    # -------------------------------------------------------------------------

    def calculate_memory_percent(self, snapshot: RawContainerStats) -> float:
        """Memory usage as a percentage of the limit, 0.0 when no limit is set.

        Raises:
            MissingFieldError: If memory usage is absent
        """
        usage = _require_memory_usage(snapshot)
        assert snapshot.memory_stats is not None
        return compute_memory_percent(usage, snapshot.memory_stats.limit)

    def calculate_memory_working_set(self, snapshot: RawContainerStats) -> int:
        """Usage minus inactive anon then inactive file pages, never below 0.

        Raises:
            MissingFieldError: If memory usage is absent
        """
        usage = _require_memory_usage(snapshot)
        memory_stats = snapshot.memory_stats
        assert memory_stats is not None
        return compute_working_set(usage, memory_stats.inactive_anon, memory_stats.inactive_file)

    def _derive_memory(self, stats: RawContainerStats, metrics: DerivedMetrics) -> None:
        metrics.memory_percentage = self.calculate_memory_percent(stats)
        metrics.memory_working_set = self.calculate_memory_working_set(stats)
        assert stats.memory_stats is not None
        metrics.memory_usage = stats.memory_stats.usage
        metrics.memory_limit = stats.memory_stats.limit

    # -------------------------------------------------------------------------
    # Network
    # -------------------------------------------------------------------------

    def calculate_network_rates(
        self,
        snapshot: RawContainerStats,
        suppressed: dict[str, SuppressionReason] | None = None,
    ) -> dict[str, InterfaceRates]:
        """Per-interface counter deltas against the previous tick's counters.

        Reads the retained baseline and stages the new values; calculate()
        commits them once the tick is complete.
        """
        rates: dict[str, InterfaceRates] = {}
        for interface, counters in snapshot.networks.items():
            self._register_interface(interface)
            values: dict[str, int | None] = {}
            for counter in NETWORK_COUNTERS:
                key = f"{interface}.{counter}"
                current = getattr(counters, counter)
                delta, reason = self._network_baseline.delta(key, current)
                if reason is not None and suppressed is not None:
                    suppressed[signals.network_signal(interface, counter)] = reason
                values[counter] = int(delta) if delta is not None else None
                self._network_baseline.stage(key, current)
            rates[interface] = InterfaceRates(**values)
        return rates

    def calculate_rates_since_last_sample(
        self,
        snapshot: RawContainerStats,
        suppressed: dict[str, SuppressionReason] | None = None,
    ) -> tuple[CpuUsageRates, dict[str, InterfaceRates]]:
        """CPU time rates and network deltas for one tick.

        CPU rates come from the embedded pair; network deltas from the
        retained previous tick. Network baselines are staged, not committed.
        """
        return (
            self.calculate_cpu_rates(snapshot, suppressed),
            self.calculate_network_rates(snapshot, suppressed),
        )

    def _derive_network(self, stats: RawContainerStats, metrics: DerivedMetrics) -> None:
        metrics.network = self.calculate_network_rates(stats, metrics.suppressed)

    def _register_interface(self, interface: str) -> None:
        if interface in self._known_interfaces:
            return
        self._known_interfaces.add(interface)
        if self._register is not None:
            for signal in signals.network_signals(interface):
                self._register(signal)


def _require_cpu_usage(snapshot: RawContainerStats) -> CpuUsage:
    cpu_stats = snapshot.cpu_stats
    if cpu_stats is None or cpu_stats.cpu_usage is None:
        raise MissingFieldError("cpu", "cpu_stats.cpu_usage")
    if cpu_stats.cpu_usage.total_usage is None:
        raise MissingFieldError("cpu", "cpu_stats.cpu_usage.total_usage")
    return cpu_stats.cpu_usage


def _embedded_previous(snapshot: RawContainerStats) -> CpuUsage | None:
    """The embedded previous sample, None while the runtime has not populated it.

    The first payload of a stats stream carries a zeroed previous sample with no
    system usage; diffing against it would report the container's whole lifetime
    as one tick. A previous total of 0 with system usage set is a real sample.
    """
    precpu = snapshot.precpu_stats
    if precpu is None or precpu.cpu_usage is None or not precpu.system_cpu_usage:
        return None
    if precpu.cpu_usage.total_usage is None:
        return None
    return precpu.cpu_usage


def _core_count(snapshot: RawContainerStats) -> int:
    """Length of the per-core array, falling back to online_cpus (cgroup v2 hosts)."""
    cpu_stats = snapshot.cpu_stats
    assert cpu_stats is not None and cpu_stats.cpu_usage is not None
    percpu = cpu_stats.cpu_usage.percpu_usage
    if percpu:
        return len(percpu)
    if cpu_stats.online_cpus:
        return cpu_stats.online_cpus
    raise MissingFieldError("cpu", "cpu_stats.cpu_usage.percpu_usage")


def _require_memory_usage(snapshot: RawContainerStats) -> int:
    if snapshot.memory_stats is None or snapshot.memory_stats.usage is None:
        raise MissingFieldError("memory", "memory_stats.usage")
    return snapshot.memory_stats.usage
