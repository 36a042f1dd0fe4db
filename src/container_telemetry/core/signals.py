"""Signal names written to emission sinks.

Container and host entities share one naming scheme. "PerSecond" signals are
per-tick deltas, which equal per-second values at the conventional 1s tick.
"""

from __future__ import annotations

CPU_PERCENTAGE = "cpu.percentage"
CPU_USAGE = "cpu.usagePerSecond"
CPU_KERNEL_USAGE = "cpu.kernelUsagePerSecond"
CPU_USER_USAGE = "cpu.userUsagePerSecond"

MEMORY_USAGE = "memory.usage"
MEMORY_LIMIT = "memory.limit"
MEMORY_PERCENTAGE = "memory.percentage"
MEMORY_WORKING_SET = "memory.workingSet"

# Raw counter name -> signal suffix
NETWORK_SIGNAL_SUFFIXES = {
    "rx_bytes": "rxBytesPerSecond",
    "tx_bytes": "txBytesPerSecond",
    "rx_errors": "rxErrorsPerSecond",
    "tx_errors": "txErrorsPerSecond",
}

CPU_SIGNALS = (CPU_PERCENTAGE, CPU_USAGE, CPU_KERNEL_USAGE, CPU_USER_USAGE)
MEMORY_SIGNALS = (MEMORY_USAGE, MEMORY_LIMIT, MEMORY_PERCENTAGE, MEMORY_WORKING_SET)


def core_signal(index: int) -> str:
    """Signal name for the usage rate of one CPU core."""
    return f"cpu.core{index}.usagePerSecond"


def network_signal(interface: str, counter: str) -> str:
    """Signal name for one network counter of one interface."""
    return f"networks.{interface}.{NETWORK_SIGNAL_SUFFIXES[counter]}"


def network_signals(interface: str) -> list[str]:
    """All signal names produced for one interface."""
    return [network_signal(interface, counter) for counter in NETWORK_SIGNAL_SUFFIXES]
