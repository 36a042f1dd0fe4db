"""Tests for metric calculation helpers."""

import pytest

from container_telemetry.core.schemas import CoreTimes
from container_telemetry.metrics.metric_utils import (
    CpuAverage,
    compute_busy_percent,
    compute_cpu_average,
    compute_cpu_percent,
    compute_memory_percent,
    compute_working_set,
)


class TestComputeCpuPercent:
    """Tests for compute_cpu_percent."""

    def test_four_cores(self) -> None:
        """Test (50 / 100) * 4 cores * 100 = 200%."""
        assert compute_cpu_percent(50, 100, 4) == pytest.approx(200.0)

    @pytest.mark.parametrize(
        "total_delta,system_delta",
        [(0, 100), (-5, 100), (50, 0), (50, -1)],
    )
    def test_non_positive_delta_is_zero(self, total_delta: int, system_delta: int) -> None:
        assert compute_cpu_percent(total_delta, system_delta, 4) == 0.0


class TestComputeMemory:
    """Tests for memory helpers."""

    def test_memory_percent(self) -> None:
        assert compute_memory_percent(256, 1024) == pytest.approx(25.0)

    @pytest.mark.parametrize("limit", [0, -1, None])
    def test_memory_percent_without_limit(self, limit: int | None) -> None:
        assert compute_memory_percent(256, limit) == 0.0

    def test_working_set_clamps_to_zero(self) -> None:
        """Test anon is subtracted first, then file, each clamped at zero."""
        assert compute_working_set(5_000_000, 2_000_000, 4_000_000) == 0

    def test_working_set_defaults(self) -> None:
        assert compute_working_set(5_000_000) == 5_000_000
        assert compute_working_set(5_000_000, inactive_file=1_000_000) == 4_000_000

    def test_working_set_never_negative(self) -> None:
        assert compute_working_set(100, 10_000, 10_000) >= 0


class TestCpuAverage:
    """Tests for the rolling idle/total average."""

    def test_average_across_cores(self) -> None:
        cores = [
            CoreTimes(user=10.0, system=10.0, idle=80.0),
            CoreTimes(user=30.0, system=10.0, idle=60.0),
        ]
        average = compute_cpu_average(cores)

        assert average is not None
        assert average.idle == pytest.approx(70.0)
        assert average.total == pytest.approx(100.0)

    def test_no_cores(self) -> None:
        assert compute_cpu_average([]) is None

    def test_busy_percent(self) -> None:
        """Test 100 - 100 * idle_delta / total_delta."""
        previous = CpuAverage(idle=70.0, total=100.0)
        current = CpuAverage(idle=85.0, total=120.0)
        assert compute_busy_percent(previous, current) == pytest.approx(25.0)

    def test_busy_percent_without_progress(self) -> None:
        average = CpuAverage(idle=70.0, total=100.0)
        assert compute_busy_percent(average, average) == 0.0
