"""Metrics module - rate primitive, calculators, host reader and sampler."""

from __future__ import annotations

from container_telemetry.metrics.base import (
    LoggingSink,
    MetricSink,
    RecordingSink,
    TrackedEntity,
    emit,
)
from container_telemetry.metrics.container_calculator import ContainerMetricsCalculator
from container_telemetry.metrics.host_calculator import HostMetricsCalculator
from container_telemetry.metrics.host_reader import HostCounterReader
from container_telemetry.metrics.host_sampler import HostSampler
from container_telemetry.metrics.rates import CounterBaseline, rate, scaled_rate
from container_telemetry.metrics.tracker import MetricsTracker

__all__ = [
    "ContainerMetricsCalculator",
    "CounterBaseline",
    "emit",
    "HostCounterReader",
    "HostMetricsCalculator",
    "HostSampler",
    "LoggingSink",
    "MetricSink",
    "MetricsTracker",
    "rate",
    "RecordingSink",
    "scaled_rate",
    "TrackedEntity",
]
