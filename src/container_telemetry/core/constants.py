"""Shared constants for container telemetry.

Centralized unit conversion factors and defaults so the container and host
calculators agree on how counters are scaled.
"""

from __future__ import annotations

# Docker stats and cgroup cpuacct counters are cumulative nanoseconds of CPU time.
NANOSECONDS_PER_SECOND = 1_000_000_000

# cgroup v2 cpu.stat reports microseconds
NANOSECONDS_PER_MICROSECOND = 1_000

# psutil already reports scheduler times in seconds, so no further scaling is needed.
DEFAULT_SCHEDULER_DIVISOR = 1.0

# Conventional tick length of the external scheduler.
DEFAULT_TICK_INTERVAL_SECONDS = 1.0

# Virtual, loopback and container-bridge interfaces are not reported for the host.
DEFAULT_EXCLUDED_INTERFACE_PATTERN = r"^(veth|docker|br-|lo)"

DEFAULT_CGROUP_ROOT = "/sys/fs/cgroup"
DEFAULT_NET_CLASS_ROOT = "/sys/class/net"

# Per-interface counter files under /sys/class/net/<iface>/statistics
NETWORK_COUNTERS = ("rx_bytes", "tx_bytes", "rx_errors", "tx_errors")

# Docker exposes a single "network" object on old API versions; it is filed under this name.
LEGACY_NETWORK_INTERFACE = "eth0"
