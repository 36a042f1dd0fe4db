"""Async host sampler.

Drives one host tick: the CPU/memory snapshot is read and derived first, then
every interface is read concurrently and each interface's rates are derived
and emitted as soon as its reads resolve. Ticks for the host are serialized,
so a slow interface can delay the next tick but never interleave with it.
"""

from __future__ import annotations

import asyncio
import logging

from container_telemetry.core import signals
from container_telemetry.core.constants import NETWORK_COUNTERS
from container_telemetry.core.errors import MetricsError
from container_telemetry.core.schemas import (
    DerivedMetrics,
    InterfaceRates,
    NetworkCounters,
    SuppressionReason,
)
from container_telemetry.metrics.base import MetricSink, emit
from container_telemetry.metrics.host_calculator import HostMetricsCalculator
from container_telemetry.metrics.host_reader import HostCounterReader

logger = logging.getLogger(__name__)


class HostSampler:
    """Samples the host entity once per tick.

    Example:
        ```python
        sampler = HostSampler(HostCounterReader(config), HostMetricsCalculator(config), sink)
        metrics = await sampler.tick()
        sampler.close()
        ```
    """

    def __init__(
        self,
        reader: HostCounterReader,
        calculator: HostMetricsCalculator,
        sink: MetricSink | None = None,
    ) -> None:
        """Initialize the sampler.

        Args:
            reader: Source of raw host counters
            calculator: Host calculator holding the retained state
            sink: Destination for derived values (optional)
        """
        self._reader = reader
        self._calculator = calculator
        self._sink = sink
        self._lock = asyncio.Lock()
        self._closed = False
        self._ticks = 0
        self._interfaces: set[str] = set()

    @property
    def calculator(self) -> HostMetricsCalculator:
        return self._calculator

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def ticks(self) -> int:
        """Number of completed ticks."""
        return self._ticks

    def close(self) -> None:
        """Stop accepting results; interface reads still in flight are discarded."""
        if not self._closed:
            logger.debug(f"Closing host sampler for {self._calculator.entity_id}")
        self._closed = True

    async def tick(self) -> DerivedMetrics | None:
        """Run one host tick.

        Returns:
            The tick's derived metrics, or None if the sampler is closed or the
            CPU/memory snapshot could not be derived
        """
        if self._closed:
            return None

        async with self._lock:
            snapshot = await asyncio.to_thread(self._reader.snapshot)
            if self._closed:
                return None

            try:
                metrics = self._calculator.calculate(snapshot)
            except MetricsError as e:
                logger.warning(f"Host {self._calculator.entity_id}: tick failed: {e}")
                return None
            emit(metrics, self._sink)

            interfaces = await asyncio.to_thread(self._reader.list_interfaces)
            self._prune_interfaces(interfaces)

            pending = [asyncio.create_task(self._read(name)) for name in interfaces]
            for next_read in asyncio.as_completed(pending):
                interface, counters = await next_read
                if self._closed:
                    logger.debug(f"Discarding late counters for {interface}")
                    continue
                if counters is None:
                    for signal in signals.network_signals(interface):
                        metrics.suppressed[signal] = SuppressionReason.SOURCE_UNAVAILABLE
                    continue
                rates = self._calculator.calculate_interface(
                    interface, counters, metrics.suppressed
                )
                metrics.network[interface] = rates
                self._emit_interface(interface, rates)

            self._ticks += 1
            return metrics

    async def _read(self, interface: str) -> tuple[str, NetworkCounters | None]:
        """Read one interface; a failed read yields None for that interface only."""
        try:
            return interface, await self._reader.read_interface(interface)
        except Exception as e:
            logger.warning(f"Interface {interface}: read failed: {e}")
            return interface, None

    def _prune_interfaces(self, interfaces: list[str]) -> None:
        current = set(interfaces)
        for gone in self._interfaces - current:
            logger.info(f"Interface {gone} disappeared, dropping its counters")
            self._calculator.forget_interface(gone)
        self._interfaces = current

    def _emit_interface(self, interface: str, rates: InterfaceRates) -> None:
        if self._sink is None:
            return
        entity_id = self._calculator.entity_id
        for counter in NETWORK_COUNTERS:
            value = getattr(rates, counter)
            if value is not None:
                self._sink.write(entity_id, signals.network_signal(interface, counter), value)
