"""Tests for HostMetricsCalculator."""

import pytest

from container_telemetry.core import signals
from container_telemetry.core.errors import SnapshotValidationError
from container_telemetry.core.schemas import (
    CgroupCpuCounters,
    CgroupMemoryCounters,
    CoreTimes,
    EntityType,
    HostCpuStrategy,
    NetworkCounters,
    RawHostStats,
    SuppressionReason,
    TelemetryConfig,
)
from container_telemetry.metrics.base import RecordingSink
from container_telemetry.metrics.host_calculator import HostMetricsCalculator


def make_snapshot(
    cores: list[CoreTimes] | None = None,
    memory_total: int | None = 1000,
    memory_free: int | None = 250,
    cgroup_cpu: CgroupCpuCounters | None = None,
    cgroup_memory: CgroupMemoryCounters | None = None,
    networks: dict[str, NetworkCounters] | None = None,
) -> RawHostStats:
    return RawHostStats(
        hostname="node-1",
        platform="linux",
        architecture="x86_64",
        cores=cores if cores is not None else [CoreTimes(user=10.0, system=5.0, idle=85.0)],
        memory_total=memory_total,
        memory_free=memory_free,
        cgroup_cpu=cgroup_cpu,
        cgroup_memory=cgroup_memory,
        networks=networks or {},
    )


def counters(rx_bytes: int | None, tx_bytes: int | None = 0) -> NetworkCounters:
    return NetworkCounters(rx_bytes=rx_bytes, tx_bytes=tx_bytes, rx_errors=0, tx_errors=0)


def scheduler_calculator() -> HostMetricsCalculator:
    config = TelemetryConfig(host_cpu_strategy=HostCpuStrategy.SCHEDULER)
    return HostMetricsCalculator(config, entity_id="node-1")


class TestHostCpu:
    """Tests for host CPU derivation."""

    def test_first_tick_seeds_only(self) -> None:
        """Test the first tick emits no CPU percentage or usage rate."""
        calculator = scheduler_calculator()
        metrics = calculator.calculate(make_snapshot())

        assert metrics.entity_type is EntityType.HOST
        assert metrics.cpu_percentage is None
        assert metrics.cpu_usage.total is None
        assert metrics.suppressed[signals.CPU_PERCENTAGE] is SuppressionReason.FIRST_OBSERVATION
        assert metrics.suppressed[signals.CPU_USAGE] is SuppressionReason.FIRST_OBSERVATION
        assert calculator.last_cpu_average is not None

    def test_scheduler_strategy(self) -> None:
        """Test rolling-average percentage and scheduler usage rates."""
        calculator = scheduler_calculator()
        calculator.calculate(make_snapshot())

        metrics = calculator.calculate(
            make_snapshot(cores=[CoreTimes(user=12.0, system=6.0, idle=102.0)])
        )

        # idle delta 17 over total delta 20
        assert metrics.cpu_percentage == pytest.approx(15.0)
        assert metrics.cpu_usage.total == pytest.approx(3.0)
        assert metrics.cpu_usage.kernel == pytest.approx(1.0)
        assert metrics.cpu_usage.user == pytest.approx(2.0)
        assert metrics.cpu_usage.cores == [pytest.approx(3.0)]

    def test_scheduler_divisor(self) -> None:
        config = TelemetryConfig(host_cpu_strategy=HostCpuStrategy.SCHEDULER, scheduler_divisor=2)
        calculator = HostMetricsCalculator(config, entity_id="node-1")
        calculator.calculate(make_snapshot())

        metrics = calculator.calculate(
            make_snapshot(cores=[CoreTimes(user=12.0, system=6.0, idle=102.0)])
        )

        assert metrics.cpu_usage.total == pytest.approx(1.5)

    def test_cgroup_strategy(self) -> None:
        """Test nanosecond cgroup counters convert to CPU seconds."""
        calculator = HostMetricsCalculator(entity_id="node-1")
        calculator.calculate(
            make_snapshot(
                cgroup_cpu=CgroupCpuCounters(
                    total_ns=1_000_000_000,
                    kernel_ns=200_000_000,
                    user_ns=800_000_000,
                    per_core_ns=[500_000_000, 500_000_000],
                )
            )
        )

        metrics = calculator.calculate(
            make_snapshot(
                cores=[CoreTimes(user=12.0, system=6.0, idle=102.0)],
                cgroup_cpu=CgroupCpuCounters(
                    total_ns=3_000_000_000,
                    kernel_ns=700_000_000,
                    user_ns=2_300_000_000,
                    per_core_ns=[1_500_000_000, 1_500_000_000],
                ),
            )
        )

        assert metrics.cpu_usage.total == pytest.approx(2.0)
        assert metrics.cpu_usage.kernel == pytest.approx(0.5)
        assert metrics.cpu_usage.user == pytest.approx(1.5)
        assert metrics.cpu_usage.cores == [pytest.approx(1.0), pytest.approx(1.0)]
        assert metrics.cpu_percentage == pytest.approx(15.0)

    def test_strategy_selection(self) -> None:
        cgroup = CgroupCpuCounters(total_ns=1)
        auto = HostMetricsCalculator(entity_id="node-1")
        forced = scheduler_calculator()

        assert auto.select_strategy(make_snapshot(cgroup_cpu=cgroup)) is HostCpuStrategy.CGROUP
        assert auto.select_strategy(make_snapshot()) is HostCpuStrategy.SCHEDULER
        assert forced.select_strategy(make_snapshot(cgroup_cpu=cgroup)) is HostCpuStrategy.SCHEDULER

    def test_forced_cgroup_without_counters(self) -> None:
        """Test a forced cgroup strategy fails only the CPU family."""
        config = TelemetryConfig(host_cpu_strategy=HostCpuStrategy.CGROUP)
        metrics = HostMetricsCalculator(config, entity_id="node-1").calculate(make_snapshot())

        assert "cpu" in metrics.errors
        assert metrics.memory_usage == 750

    def test_core_count_change(self) -> None:
        """Test per-core rates are skipped for one tick when the core count changes."""
        calculator = scheduler_calculator()
        two = [CoreTimes(user=1.0, idle=9.0), CoreTimes(user=1.0, idle=9.0)]
        three = [CoreTimes(user=2.0, idle=18.0) for _ in range(3)]
        later = [CoreTimes(user=3.0, idle=27.0) for _ in range(3)]

        calculator.calculate(make_snapshot(cores=two))
        changed = calculator.calculate(make_snapshot(cores=three))
        settled = calculator.calculate(make_snapshot(cores=later))

        assert changed.cpu_usage.cores == []
        assert changed.suppressed[signals.core_signal(2)] is SuppressionReason.MISSING_FIELD
        assert settled.cpu_usage.cores == [pytest.approx(1.0)] * 3

    def test_no_cores(self) -> None:
        calculator = scheduler_calculator()
        metrics = calculator.calculate(make_snapshot(cores=[]))

        assert metrics.cpu_percentage is None
        assert "cpu" in metrics.errors


class TestHostMemory:
    """Tests for host memory derivation."""

    def test_usage_and_percentage(self) -> None:
        metrics = scheduler_calculator().calculate(make_snapshot())

        assert metrics.memory_usage == 750
        assert metrics.memory_limit == 1000
        assert metrics.memory_percentage == pytest.approx(75.0)
        assert (
            metrics.suppressed[signals.MEMORY_WORKING_SET] is SuppressionReason.SOURCE_UNAVAILABLE
        )

    def test_working_set_from_cgroup(self) -> None:
        snapshot = make_snapshot(
            cgroup_memory=CgroupMemoryCounters(usage=900, inactive_anon=100, inactive_file=300)
        )
        metrics = scheduler_calculator().calculate(snapshot)

        assert metrics.memory_working_set == 500

    def test_missing_totals(self) -> None:
        metrics = scheduler_calculator().calculate(make_snapshot(memory_total=None))

        assert "memory" in metrics.errors
        assert metrics.memory_usage is None


class TestHostNetwork:
    """Tests for host network derivation."""

    def test_partial_interface_failure(self) -> None:
        """Test one unreadable counter leaves other counters and interfaces intact."""
        calculator = scheduler_calculator()
        rx_eth0 = signals.network_signal("eth0", "rx_bytes")

        calculator.calculate(
            make_snapshot(networks={"eth0": counters(1000, 10), "eth1": counters(50)})
        )
        failed = calculator.calculate(
            make_snapshot(networks={"eth0": counters(None, 15), "eth1": counters(80)})
        )
        recovered = calculator.calculate(
            make_snapshot(networks={"eth0": counters(1600, 15), "eth1": counters(80)})
        )

        assert failed.network["eth0"].rx_bytes is None
        assert failed.suppressed[rx_eth0] is SuppressionReason.SOURCE_UNAVAILABLE
        assert failed.network["eth0"].tx_bytes == 5
        assert failed.network["eth1"].rx_bytes == 30
        # Delta spans the failed tick
        assert recovered.network["eth0"].rx_bytes == 600

    def test_calculate_interface_commits_independently(self) -> None:
        calculator = scheduler_calculator()

        first = calculator.calculate_interface("eth0", counters(100))
        second = calculator.calculate_interface("eth0", counters(175))

        assert first.rx_bytes is None
        assert second.rx_bytes == 75

    def test_forget_interface(self) -> None:
        calculator = scheduler_calculator()
        calculator.calculate_interface("eth0", counters(100))
        calculator.forget_interface("eth0")

        assert calculator.calculate_interface("eth0", counters(175)).rx_bytes is None


class TestHostLifecycle:
    """Tests for validation, registration and descriptive attributes."""

    def test_descriptive_attributes(self) -> None:
        calculator = scheduler_calculator()
        calculator.calculate(make_snapshot())

        assert calculator.hostname == "node-1"
        assert calculator.platform == "linux"
        assert calculator.architecture == "x86_64"

    def test_validate_dict(self) -> None:
        stats = HostMetricsCalculator.validate({"hostname": "h", "memory_total": 10})
        assert stats.memory_total == 10

        with pytest.raises(SnapshotValidationError):
            HostMetricsCalculator.validate({"memory_total": -1})

    def test_registration(self) -> None:
        """Test static signals register on init and per-core/interface signals on first sight."""
        sink = RecordingSink()
        calculator = scheduler_calculator()
        calculator.init(sink.register("node-1"))

        assert signals.CPU_PERCENTAGE in sink.registered["node-1"]
        calculator.calculate(make_snapshot(networks={"eth0": counters(1)}))

        assert signals.core_signal(0) in sink.registered["node-1"]
        assert signals.network_signal("eth0", "rx_bytes") in sink.registered["node-1"]

    def test_reset(self) -> None:
        calculator = scheduler_calculator()
        calculator.calculate(make_snapshot())
        calculator.reset()

        metrics = calculator.calculate(make_snapshot())

        assert metrics.cpu_percentage is None
        assert calculator.last_cpu_average is not None
