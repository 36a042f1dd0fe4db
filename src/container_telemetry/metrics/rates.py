"""Rate/Delta primitive shared by the container and host calculators.

Functions:
    rate: Non-negative delta between two cumulative values, or None when suppressed
    suppression_reason: Why rate() suppressed a value
    scaled_rate: rate() divided by a unit conversion factor

Classes:
    CounterBaseline: Previous cumulative values retained across ticks, with
        read-then-commit updates so every rate of a tick sees the same baseline
"""

from __future__ import annotations

import logging

from container_telemetry.core.schemas import SuppressionReason

logger = logging.getLogger(__name__)

Number = int | float


def rate(previous: Number | None, current: Number | None) -> Number | None:
    """Compute the delta between two readings of a cumulative counter.

    The primitive is unit-agnostic; callers scale the result.

    Args:
        previous: Previous cumulative value, None on first observation
        current: Current cumulative value, None when the source was unavailable

    Returns:
        current - previous, or None when no rate can be computed
        (first observation, unavailable source, or counter reset)
    """
    if previous is None or current is None:
        return None
    delta = current - previous
    if delta < 0:
        return None
    return delta


def suppression_reason(
    previous: Number | None, current: Number | None
) -> SuppressionReason | None:
    """Classify why rate() would return None for these inputs.

    Returns:
        The reason, or None if rate() produces a value
    """
    if current is None:
        return SuppressionReason.SOURCE_UNAVAILABLE
    if previous is None:
        return SuppressionReason.FIRST_OBSERVATION
    if current < previous:
        return SuppressionReason.COUNTER_RESET
    return None


def scaled_rate(previous: Number | None, current: Number | None, divisor: float) -> float | None:
    """rate() converted into another unit (e.g. nanoseconds to seconds).

    Args:
        previous: Previous cumulative value
        current: Current cumulative value
        divisor: Raw counter units per target unit (must be > 0)

    Returns:
        Scaled delta, or None when suppressed
    """
    if divisor <= 0:
        raise ValueError(f"divisor must be positive, got {divisor}")
    delta = rate(previous, current)
    if delta is None:
        return None
    return delta / divisor


class CounterBaseline:
    """Previous cumulative values of one entity, keyed by counter name.

    Reads (delta) never mutate. Updates are staged during a tick and applied
    together by commit() once every rate for the tick has been computed.
    A missing current value is never staged, so the next successful read
    computes a delta across the gap.
    """

    def __init__(self) -> None:
        self._values: dict[str, Number] = {}
        self._staged: dict[str, Number] = {}

    def previous(self, key: str) -> Number | None:
        return self._values.get(key)

    def delta(
        self, key: str, current: Number | None
    ) -> tuple[Number | None, SuppressionReason | None]:
        """Compute the raw delta of one counter against its retained value.

        Returns:
            Tuple of (delta or None, suppression reason or None)
        """
        previous = self._values.get(key)
        reason = suppression_reason(previous, current)
        if reason is SuppressionReason.COUNTER_RESET:
            logger.debug(f"Counter reset on {key}: {previous} -> {current}")
        return rate(previous, current), reason

    def stage(self, key: str, current: Number | None) -> None:
        """Record the value that becomes the baseline at the next commit()."""
        if current is None:
            return
        self._staged[key] = current

    def commit(self) -> None:
        """Apply all staged values at once."""
        self._values.update(self._staged)
        self._staged.clear()

    def discard_staged(self) -> None:
        self._staged.clear()

    def forget(self, prefix: str) -> None:
        """Drop every retained value whose key starts with prefix."""
        for key in [k for k in self._values if k.startswith(prefix)]:
            del self._values[key]

    def clear(self) -> None:
        self._values.clear()
        self._staged.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)
