"""Fixed-interval tick scheduling.

Ticks start on a fixed grid measured from the first tick, so a slow tick
shortens the following sleep instead of shifting every later tick. A tick
that overruns one or more whole intervals skips the missed grid points.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[Any]]


class TickRunner:
    """Calls an async callback once per interval until stopped.

    Example:
        ```python
        runner = TickRunner(sampler.tick, interval_seconds=1.0)
        results = await runner.run(count=10)
        ```
    """

    def __init__(self, callback: TickCallback, interval_seconds: float = 1.0) -> None:
        """Initialize the runner.

        Args:
            callback: Coroutine function invoked once per tick
            interval_seconds: Tick length in seconds (must be > 0)
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self._callback = callback
        self._interval_seconds = interval_seconds
        self._running = False
        self._ticks = 0
        self._skipped = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def skipped(self) -> int:
        """Grid points skipped because a tick overran the interval."""
        return self._skipped

    def stop(self) -> None:
        """Stop after the tick currently in progress."""
        self._running = False

    async def run(self, count: int | None = None) -> list[Any]:
        """Run ticks until stopped or until count ticks have completed.

        Args:
            count: Number of ticks to run, None for no limit

        Returns:
            The callback's result for every completed tick
        """
        if self._running:
            logger.warning("Tick runner already running")
            return []

        self._running = True
        results: list[Any] = []
        start = time.monotonic()
        next_tick = 0

        try:
            while self._running and (count is None or self._ticks < count):
                results.append(await self._callback())
                self._ticks += 1
                if count is not None and self._ticks >= count:
                    break

                next_tick += 1
                elapsed = time.monotonic() - start
                due = next_tick * self._interval_seconds
                if elapsed > due:
                    missed = int((elapsed - due) // self._interval_seconds) + 1
                    logger.warning(
                        f"Tick {self._ticks} overran the {self._interval_seconds}s interval, "
                        f"skipping {missed} tick(s)"
                    )
                    self._skipped += missed
                    next_tick += missed
                    due = next_tick * self._interval_seconds
                await asyncio.sleep(max(0.0, due - (time.monotonic() - start)))
        finally:
            self._running = False

        return results


async def run_ticks(
    callback: TickCallback, interval_seconds: float = 1.0, count: int | None = None
) -> list[Any]:
    """Run callback on a fixed interval; convenience wrapper around TickRunner."""
    return await TickRunner(callback, interval_seconds).run(count)
