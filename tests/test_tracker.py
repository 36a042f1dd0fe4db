"""Tests for MetricsTracker."""

import pytest

from container_telemetry.core import signals
from container_telemetry.core.errors import SnapshotValidationError
from container_telemetry.metrics.base import RecordingSink
from container_telemetry.metrics.tracker import MetricsTracker
from tests.test_container_calculator import eth0, make_payload


class TestMetricsTracker:
    """Tests for per-container calculator lifecycle."""

    def test_observe_creates_calculator(self) -> None:
        sink = RecordingSink()
        tracker = MetricsTracker(sink=sink)

        metrics = tracker.observe("c1", make_payload())

        assert metrics is not None
        assert "c1" in tracker
        assert len(tracker) == 1
        assert sink.latest("c1", signals.CPU_PERCENTAGE) == pytest.approx(200.0)

    def test_failure_isolated_per_container(self) -> None:
        """Test one invalid payload does not affect another container."""
        sink = RecordingSink()
        tracker = MetricsTracker(sink=sink)
        tracker.observe("good", make_payload(networks=eth0(100)))

        bad = tracker.observe("bad", {"cpu_stats": "garbage"})
        good = tracker.observe("good", make_payload(networks=eth0(160)))

        assert bad is None
        assert good is not None
        assert good.network["eth0"].rx_bytes == 60
        assert sink.signals("bad") == []

    def test_state_not_shared(self) -> None:
        tracker = MetricsTracker()
        tracker.observe("a", make_payload(networks=eth0(100)))

        metrics = tracker.observe("b", make_payload(networks=eth0(500)))

        assert metrics is not None
        assert metrics.network["eth0"].rx_bytes is None

    def test_observe_payload_uses_short_id(self) -> None:
        tracker = MetricsTracker()
        tracker.observe_payload(make_payload())

        assert tracker.entity_ids == ["3f2a9c1b7d4e"]
        calculator = tracker.get("3f2a9c1b7d4e")
        assert calculator is not None
        assert calculator.name == "web"

    def test_observe_payload_without_id(self) -> None:
        payload = make_payload()
        del payload["id"]

        with pytest.raises(SnapshotValidationError):
            MetricsTracker().observe_payload(payload)

    @pytest.mark.parametrize("payload", [42, [1, 2], "payload", None])
    def test_observe_payload_not_an_object(self, payload) -> None:
        """Test non-object payloads are a validation error, not a crash."""
        tracker = MetricsTracker()

        with pytest.raises(SnapshotValidationError, match="must be an object"):
            tracker.observe_payload(payload)
        assert len(tracker) == 0

    def test_remove_discards_state(self) -> None:
        """Test a removed container starts from a fresh baseline."""
        tracker = MetricsTracker()
        tracker.observe("c1", make_payload(networks=eth0(100)))

        assert tracker.remove("c1") is True
        assert tracker.remove("c1") is False
        assert "c1" not in tracker

        metrics = tracker.observe("c1", make_payload(networks=eth0(200)))
        assert metrics is not None
        assert metrics.network["eth0"].rx_bytes is None

    def test_register_callback(self) -> None:
        registered: list[str] = []
        tracker = MetricsTracker(register=registered.append)

        tracker.observe("c1", make_payload(networks=eth0(1)))

        assert signals.CPU_USAGE in registered
        assert signals.network_signal("eth0", "rx_bytes") in registered

    def test_clear(self) -> None:
        tracker = MetricsTracker()
        tracker.observe("a", make_payload())
        tracker.observe("b", make_payload())

        tracker.clear()

        assert len(tracker) == 0
