"""Host metrics calculator.

Host analogue of the container calculator. Unlike a container payload, host
counters carry no embedded previous sample, so every CPU and network rate is
computed against values retained from the previous tick.

CPU usage rates come from one of two strategies:
- cgroup: aggregate cumulative nanosecond counters (cpuacct / cpu.stat),
  scaled to seconds exactly like container counters
- scheduler: per-core OS scheduler times, scaled by a configurable divisor

CPU percentage always comes from a rolling idle/total average across cores
and is produced from the second tick on.
"""

from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError

from container_telemetry.core import signals
from container_telemetry.core.constants import NANOSECONDS_PER_SECOND, NETWORK_COUNTERS
from container_telemetry.core.errors import MissingFieldError, SnapshotValidationError
from container_telemetry.core.schemas import (
    CpuUsageRates,
    DerivedMetrics,
    EntityType,
    HostCpuStrategy,
    InterfaceRates,
    NetworkCounters,
    RawHostStats,
    SuppressionReason,
    TelemetryConfig,
)
from container_telemetry.metrics.base import RegisterCallback
from container_telemetry.metrics.metric_utils import (
    CpuAverage,
    compute_busy_percent,
    compute_cpu_average,
    compute_memory_percent,
    compute_working_set,
)
from container_telemetry.metrics.rates import CounterBaseline

logger = logging.getLogger(__name__)

Number = int | float


class HostMetricsCalculator:
    """Stateful calculator for the host entity.

    Example:
        ```python
        reader = HostCounterReader(config)
        calculator = HostMetricsCalculator(config)
        calculator.calculate(reader.snapshot(include_networks=True))  # seeds baselines
        metrics = calculator.calculate(reader.snapshot(include_networks=True))
        print(metrics.cpu_percentage, metrics.cpu_usage.total)
        ```
    """

    def __init__(self, config: TelemetryConfig | None = None, entity_id: str | None = None) -> None:
        """Initialize the host calculator.

        Args:
            config: Telemetry configuration (CPU strategy, scheduler divisor)
            entity_id: Entity identifier, defaults to the local hostname
        """
        self._config = config or TelemetryConfig()
        self._entity_id = entity_id or socket.gethostname()
        self.hostname: str | None = None
        self.platform: str | None = None
        self.architecture: str | None = None

        self._cpu_baseline = CounterBaseline()
        self._network_baseline = CounterBaseline()
        self._last_cpu_average: CpuAverage | None = None
        self._pending_cpu_average: CpuAverage | None = None
        self._core_counts: dict[str, int] = {}
        self._last_snapshot: RawHostStats | None = None

        self._register: RegisterCallback | None = None
        self._registered: list[str] = []
        self._lock = threading.Lock()

    @property
    def entity_id(self) -> str:
        return self._entity_id

    @property
    def last_snapshot(self) -> RawHostStats | None:
        return self._last_snapshot

    @property
    def last_cpu_average(self) -> CpuAverage | None:
        """The retained rolling-average sample."""
        return self._last_cpu_average

    def init(self, register: RegisterCallback) -> None:
        """Register CPU and memory signals plus any per-core/interface signals already seen."""
        self._register = register
        for signal in self._registered:
            register(signal)
        for signal in (*signals.CPU_SIGNALS, *signals.MEMORY_SIGNALS):
            self._register_signal(signal)

    def update(self, snapshot: RawHostStats | dict[str, Any]) -> DerivedMetrics:
        return self.calculate(snapshot)

    def reset(self) -> None:
        """Discard all retained state."""
        with self._lock:
            self._cpu_baseline.clear()
            self._network_baseline.clear()
            self._last_cpu_average = None
            self._pending_cpu_average = None
            self._core_counts.clear()
            self._last_snapshot = None

    @staticmethod
    def validate(snapshot: RawHostStats | dict[str, Any]) -> RawHostStats:
        """Validate a raw host snapshot at the boundary.

        Raises:
            SnapshotValidationError: If the snapshot is not a valid host stats object
        """
        if isinstance(snapshot, RawHostStats):
            return snapshot
        try:
            return RawHostStats.model_validate(snapshot)
        except ValidationError as e:
            raise SnapshotValidationError(f"Invalid host stats snapshot: {e}") from e

    def select_strategy(self, snapshot: RawHostStats) -> HostCpuStrategy:
        """Resolve the CPU usage strategy for this snapshot.

        Raises:
            MissingFieldError: If the cgroup strategy is forced but the snapshot
                carries no cgroup counters
        """
        configured = self._config.host_cpu_strategy
        if configured is HostCpuStrategy.SCHEDULER:
            return HostCpuStrategy.SCHEDULER
        if snapshot.cgroup_cpu is not None:
            return HostCpuStrategy.CGROUP
        if configured is HostCpuStrategy.CGROUP:
            raise MissingFieldError("cpu", "cgroup_cpu")
        return HostCpuStrategy.SCHEDULER

    def calculate(self, snapshot: RawHostStats | dict[str, Any]) -> DerivedMetrics:
        """Derive all host metrics for one tick and advance retained state.

        Raises:
            SnapshotValidationError: If the snapshot cannot be validated
        """
        stats = self.validate(snapshot)
        self.hostname = stats.hostname
        self.platform = stats.platform
        self.architecture = stats.architecture

        metrics = DerivedMetrics(entity_id=self._entity_id, entity_type=EntityType.HOST)

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
                        logger.warning(f"Host {self._entity_id}: {e}")
                        metrics.errors[family] = str(e)
            except Exception:
                self._discard_staged()
                raise

            self._commit()
            self._last_snapshot = stats

        return metrics

    def calculate_interface(
        self,
        interface: str,
        counters: NetworkCounters,
        suppressed: dict[str, SuppressionReason] | None = None,
    ) -> InterfaceRates:
        """Rate one interface's counters and advance only that interface's baseline.

        Used when interface reads resolve independently of the rest of the tick.
        """
        with self._lock:
            rates = self._interface_rates(interface, counters, suppressed)
            self._network_baseline.commit()
        return rates

    def forget_interface(self, interface: str) -> None:
        """Drop the retained counters of an interface that no longer exists."""
        with self._lock:
            self._network_baseline.forget(f"{interface}.")

    # -------------------------------------------------------------------------
    # CPU
    # -------------------------------------------------------------------------

    def calculate_cpu_percent(
        self,
        snapshot: RawHostStats,
        suppressed: dict[str, SuppressionReason] | None = None,
    ) -> float | None:
        """Busy percentage between the retained and the current rolling average.

        The first tick only seeds the rolling average. The new average becomes
        the retained sample when the tick commits.

        Returns:
            Percentage in [0, 100], or None on the first tick or without core times
        """
        current = compute_cpu_average(snapshot.cores)
        if current is None:
            _suppress(suppressed, signals.CPU_PERCENTAGE, SuppressionReason.MISSING_FIELD)
            return None

        self._pending_cpu_average = current
        if self._last_cpu_average is None:
            _suppress(suppressed, signals.CPU_PERCENTAGE, SuppressionReason.FIRST_OBSERVATION)
            return None
        return compute_busy_percent(self._last_cpu_average, current)

    def calculate_cpu_rates(
        self,
        snapshot: RawHostStats,
        strategy: HostCpuStrategy | None = None,
        suppressed: dict[str, SuppressionReason] | None = None,
    ) -> CpuUsageRates:
        """CPU seconds consumed since the previous tick.

        Raises:
            MissingFieldError: If the selected strategy's counters are absent
        """
        strategy = strategy or self.select_strategy(snapshot)
        if strategy is HostCpuStrategy.CGROUP:
            return self._cgroup_rates(snapshot, suppressed)
        return self._scheduler_rates(snapshot, suppressed)

    def _cgroup_rates(
        self, snapshot: RawHostStats, suppressed: dict[str, SuppressionReason] | None
    ) -> CpuUsageRates:
        counters = snapshot.cgroup_cpu
        if counters is None:
            raise MissingFieldError("cpu", "cgroup_cpu")

        ns = NANOSECONDS_PER_SECOND
        rates = CpuUsageRates(
            total=self._track(signals.CPU_USAGE, "cgroup.total", counters.total_ns, ns, suppressed),
            kernel=self._track(
                signals.CPU_KERNEL_USAGE, "cgroup.kernel", counters.kernel_ns, ns, suppressed
            ),
            user=self._track(
                signals.CPU_USER_USAGE, "cgroup.user", counters.user_ns, ns, suppressed
            ),
        )

        if counters.per_core_ns:
            rates.cores = self._core_rates("cgroup.core", counters.per_core_ns, ns, suppressed)
        elif snapshot.cores:
            # cgroup v2 has no per-core counter file
            rates.cores = self._core_rates(
                "sched.core",
                [core.busy for core in snapshot.cores],
                self._config.scheduler_divisor,
                suppressed,
            )
        return rates

    def _scheduler_rates(
        self, snapshot: RawHostStats, suppressed: dict[str, SuppressionReason] | None
    ) -> CpuUsageRates:
        if not snapshot.cores:
            raise MissingFieldError("cpu", "cores")

        divisor = self._config.scheduler_divisor
        cores = snapshot.cores
        busy = sum(c.busy for c in cores)
        system = sum(c.system for c in cores)
        user = sum(c.user for c in cores)
        rates = CpuUsageRates(
            total=self._track(signals.CPU_USAGE, "sched.total", busy, divisor, suppressed),
            kernel=self._track(
                signals.CPU_KERNEL_USAGE, "sched.kernel", system, divisor, suppressed
            ),
            user=self._track(signals.CPU_USER_USAGE, "sched.user", user, divisor, suppressed),
        )
        rates.cores = self._core_rates("sched.core", [c.busy for c in cores], divisor, suppressed)
        return rates

    def _core_rates(
        self,
        prefix: str,
        values: Sequence[Number],
        divisor: float,
        suppressed: dict[str, SuppressionReason] | None,
    ) -> list[float | None]:
        for i in range(len(values)):
            self._register_signal(signals.core_signal(i))

        previous_count = self._core_counts.get(prefix)
        self._core_counts[prefix] = len(values)
        if previous_count is not None and previous_count != len(values):
            # Hot-plugged cores: the new count becomes the baseline
            logger.warning(
                f"Host {self._entity_id}: core count changed from {previous_count} to "
                f"{len(values)}, per-core rates skipped this tick"
            )
            self._cpu_baseline.forget(f"{prefix}.")
            for i, value in enumerate(values):
                self._cpu_baseline.stage(f"{prefix}.{i}", value)
                _suppress(suppressed, signals.core_signal(i), SuppressionReason.MISSING_FIELD)
            return []

        return [
            self._track(signals.core_signal(i), f"{prefix}.{i}", value, divisor, suppressed)
            for i, value in enumerate(values)
        ]

    def _track(
        self,
        signal: str,
        key: str,
        current: Number | None,
        divisor: float,
        suppressed: dict[str, SuppressionReason] | None,
    ) -> float | None:
        """Rate one CPU counter against the retained baseline and stage the new value."""
        delta, reason = self._cpu_baseline.delta(key, current)
        self._cpu_baseline.stage(key, current)
        if delta is None:
            _suppress(suppressed, signal, reason or SuppressionReason.MISSING_FIELD)
            return None
        return delta / divisor

    def _derive_cpu(self, stats: RawHostStats, metrics: DerivedMetrics) -> None:
        strategy = self.select_strategy(stats)
        metrics.cpu_usage = self.calculate_cpu_rates(stats, strategy, metrics.suppressed)
        metrics.cpu_percentage = self.calculate_cpu_percent(stats, metrics.suppressed)

    # -------------------------------------------------------------------------
    # Memory
    # -------------------------------------------------------------------------

    def _derive_memory(self, stats: RawHostStats, metrics: DerivedMetrics) -> None:
        if stats.cgroup_memory is not None:
            cgroup_memory = stats.cgroup_memory
            metrics.memory_working_set = compute_working_set(
                cgroup_memory.usage, cgroup_memory.inactive_anon, cgroup_memory.inactive_file
            )
        else:
            metrics.suppressed[signals.MEMORY_WORKING_SET] = SuppressionReason.SOURCE_UNAVAILABLE

        if stats.memory_total is None:
            raise MissingFieldError("memory", "memory_total")
        if stats.memory_free is None:
            raise MissingFieldError("memory", "memory_free")

        usage = max(0, stats.memory_total - stats.memory_free)
        metrics.memory_usage = usage
        metrics.memory_limit = stats.memory_total
        metrics.memory_percentage = compute_memory_percent(usage, stats.memory_total)

    # -------------------------------------------------------------------------
    # Network
    # -------------------------------------------------------------------------

    def _interface_rates(
        self,
        interface: str,
        counters: NetworkCounters,
        suppressed: dict[str, SuppressionReason] | None,
    ) -> InterfaceRates:
        values: dict[str, int | None] = {}
        for counter in NETWORK_COUNTERS:
            signal = signals.network_signal(interface, counter)
            self._register_signal(signal)
            key = f"{interface}.{counter}"
            current = getattr(counters, counter)
            delta, reason = self._network_baseline.delta(key, current)
            if reason is not None:
                if reason is SuppressionReason.SOURCE_UNAVAILABLE:
                    logger.debug(f"Host {self._entity_id}: {key} unreadable, keeping baseline")
                _suppress(suppressed, signal, reason)
            values[counter] = int(delta) if delta is not None else None
            self._network_baseline.stage(key, current)
        return InterfaceRates(**values)

    def _derive_network(self, stats: RawHostStats, metrics: DerivedMetrics) -> None:
        for interface, counters in stats.networks.items():
            metrics.network[interface] = self._interface_rates(
                interface, counters, metrics.suppressed
            )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def _commit(self) -> None:
        self._cpu_baseline.commit()
        self._network_baseline.commit()
        if self._pending_cpu_average is not None:
            self._last_cpu_average = self._pending_cpu_average
            self._pending_cpu_average = None

    def _discard_staged(self) -> None:
        self._cpu_baseline.discard_staged()
        self._network_baseline.discard_staged()
        self._pending_cpu_average = None

    def _register_signal(self, signal: str) -> None:
        if signal in self._registered:
            return
        self._registered.append(signal)
        if self._register is not None:
            self._register(signal)


def _suppress(
    suppressed: dict[str, SuppressionReason] | None, signal: str, reason: SuppressionReason
) -> None:
    if suppressed is not None:
        suppressed[signal] = reason
