"""Per-container calculator lifecycle.

The tracker owns one ContainerMetricsCalculator per container. A calculator
is created the first time a container is observed and discarded when the
container is removed; a failure for one container never affects the others.
"""

from __future__ import annotations

import logging
from typing import Any

from container_telemetry.core.errors import MetricsError, SnapshotValidationError
from container_telemetry.core.schemas import DerivedMetrics, RawContainerStats
from container_telemetry.metrics.base import MetricSink, RegisterCallback, emit
from container_telemetry.metrics.container_calculator import ContainerMetricsCalculator

logger = logging.getLogger(__name__)

SHORT_ID_LENGTH = 12


class MetricsTracker:
    """Tracks every observed container.

    Example:
        ```python
        tracker = MetricsTracker(sink=RecordingSink())
        for payload in stats_payloads:
            tracker.observe_payload(payload)
        tracker.remove("3f2a9c1b7d4e")
        ```
    """

    def __init__(
        self,
        sink: MetricSink | None = None,
        register: RegisterCallback | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            sink: Destination for derived values (optional)
            register: Capability registration callback passed to each new calculator
        """
        self._sink = sink
        self._register = register
        self._calculators: dict[str, ContainerMetricsCalculator] = {}

    @property
    def entity_ids(self) -> list[str]:
        return list(self._calculators)

    def get(self, entity_id: str) -> ContainerMetricsCalculator | None:
        return self._calculators.get(entity_id)

    def observe(
        self, entity_id: str, snapshot: RawContainerStats | dict[str, Any]
    ) -> DerivedMetrics | None:
        """Derive and emit one container's metrics for this tick.

        Returns:
            Derived metrics, or None if this container's snapshot could not be processed
        """
        calculator = self._calculators.get(entity_id)
        if calculator is None:
            calculator = ContainerMetricsCalculator(entity_id)
            if self._register is not None:
                calculator.init(self._register)
            self._calculators[entity_id] = calculator
            logger.info(f"Tracking container {entity_id}")

        try:
            metrics = calculator.update(snapshot)
        except MetricsError as e:
            logger.warning(f"Container {entity_id}: skipping tick: {e}")
            return None

        emit(metrics, self._sink)
        return metrics

    def observe_payload(self, payload: dict[str, Any]) -> DerivedMetrics | None:
        """Observe a raw stats payload keyed by its own container ID.

        Raises:
            SnapshotValidationError: If the payload is not an object or carries no
                container ID
        """
        if not isinstance(payload, dict):
            raise SnapshotValidationError(
                f"Stats payload must be an object, got {type(payload).__name__}"
            )
        container_id = payload.get("id")
        if not container_id:
            raise SnapshotValidationError("Stats payload has no container id")
        return self.observe(str(container_id)[:SHORT_ID_LENGTH], payload)

    def remove(self, entity_id: str) -> bool:
        """Discard a container's calculator and retained state.

        Returns:
            True if the container was tracked
        """
        calculator = self._calculators.pop(entity_id, None)
        if calculator is None:
            return False
        calculator.reset()
        logger.info(f"Stopped tracking container {entity_id}")
        return True

    def clear(self) -> None:
        for entity_id in list(self._calculators):
            self.remove(entity_id)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._calculators

    def __len__(self) -> int:
        return len(self._calculators)
