"""Contracts between the derivation core and its surroundings.

A tracked entity (container or host) is anything that can be initialized with
a capability-registration callback and updated with a new snapshot. No base
class is required: the calculators satisfy TrackedEntity structurally.

Derived values leave the core through a write-only MetricSink.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from container_telemetry.core.schemas import DerivedMetrics

logger = logging.getLogger(__name__)

RegisterCallback = Callable[[str], None]


@runtime_checkable
class TrackedEntity(Protocol):
    """An entity whose raw snapshots are turned into derived metrics each tick."""

    @property
    def entity_id(self) -> str: ...

    def init(self, register: RegisterCallback) -> None:
        """Declare every signal this entity can produce."""
        ...

    def update(self, snapshot: Any) -> DerivedMetrics:
        """Derive this tick's metrics from a new raw snapshot."""
        ...


@runtime_checkable
class MetricSink(Protocol):
    """Write-only destination for derived signal values."""

    def write(self, entity_id: str, signal: str, value: float | int) -> None: ...


class RecordingSink:
    """In-memory sink keeping every written value.

    Example:
        ```python
        sink = RecordingSink()
        emit(metrics, sink)
        print(sink.latest("abc123", "cpu.percentage"))
        ```
    """

    def __init__(self) -> None:
        self._series: dict[tuple[str, str], list[float | int]] = defaultdict(list)
        self.registered: dict[str, list[str]] = defaultdict(list)

    def write(self, entity_id: str, signal: str, value: float | int) -> None:
        self._series[(entity_id, signal)].append(value)

    def register(self, entity_id: str) -> RegisterCallback:
        """Build a registration callback that records signal names for an entity."""

        def _register(signal: str) -> None:
            if signal not in self.registered[entity_id]:
                self.registered[entity_id].append(signal)

        return _register

    def values(self, entity_id: str, signal: str) -> list[float | int]:
        return list(self._series.get((entity_id, signal), []))

    def latest(self, entity_id: str, signal: str) -> float | int | None:
        series = self._series.get((entity_id, signal))
        return series[-1] if series else None

    def signals(self, entity_id: str) -> list[str]:
        return [signal for (eid, signal) in self._series if eid == entity_id]

    def clear(self) -> None:
        self._series.clear()


class LoggingSink:
    """Sink that writes each value to the log at DEBUG level."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def write(self, entity_id: str, signal: str, value: float | int) -> None:
        self._log.debug(f"{entity_id} {signal}={value}")


def emit(metrics: DerivedMetrics, sink: MetricSink | None) -> int:
    """Write every produced signal of one tick to a sink.

    Returns:
        Number of values written
    """
    if sink is None:
        return 0
    count = 0
    for signal, value in metrics.signals():
        sink.write(metrics.entity_id, signal, value)
        count += 1
    return count