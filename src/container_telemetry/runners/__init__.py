"""Runners module - fixed-interval tick scheduling."""

from __future__ import annotations

from container_telemetry.runners.tick_runner import TickRunner, run_ticks

__all__ = ["TickRunner", "run_ticks"]
