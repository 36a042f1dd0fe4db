"""CLI for Container Telemetry.

Provides a rich command-line interface using Typer for:
- Sampling the local host every tick
- Replaying recorded container stats payloads
- Reporting which host counter sources are available
- Generating a sample configuration
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from container_telemetry.core.config import load_config
from container_telemetry.core.errors import MetricsError
from container_telemetry.core.schemas import DerivedMetrics, TelemetryConfig
from container_telemetry.metrics.base import LoggingSink
from container_telemetry.metrics.host_calculator import HostMetricsCalculator
from container_telemetry.metrics.host_reader import HostCounterReader
from container_telemetry.metrics.host_sampler import HostSampler
from container_telemetry.metrics.tracker import MetricsTracker
from container_telemetry.runners.tick_runner import TickRunner
from container_telemetry.utils.logging import setup_logging

app = typer.Typer(
    name="container-telemetry",
    help="Derived CPU, memory and network metrics for containers and hosts",
    add_completion=False,
)

console = Console()


@app.command()
def host(
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to configuration file (YAML/JSON)"
    ),
    ticks: int = typer.Option(5, "--ticks", "-n", help="Number of ticks to run (0 = forever)"),
    log_level: str | None = typer.Option(
        None, "--log-level", "-l", help="Logging level (overrides config)"
    ),
    log_file: Path | None = typer.Option(
        None, "--log-file", help="Write logs to file in addition to console"
    ),
    json_logs: bool = typer.Option(
        False, "--json-logs", help="Output logs in JSON format (for programmatic parsing)"
    ),
) -> None:
    """Sample the local host and print derived metrics every tick."""
    telemetry_config = _load_config_or_exit(config)
    setup_logging(
        level=log_level or telemetry_config.log_level,
        log_file=log_file,
        json_format=json_logs,
        rich_console=not json_logs,
    )

    calculator = HostMetricsCalculator(telemetry_config)
    registered: list[str] = []
    calculator.init(registered.append)
    sampler = HostSampler(HostCounterReader(telemetry_config), calculator, LoggingSink())

    async def _tick() -> DerivedMetrics | None:
        metrics = await sampler.tick()
        if metrics is not None:
            _show_metrics_table(metrics)
        return metrics

    runner = TickRunner(_tick, telemetry_config.tick_interval_seconds)
    console.print(
        f"[bold blue]Sampling host {calculator.entity_id} every "
        f"{telemetry_config.tick_interval_seconds}s[/]"
    )

    try:
        asyncio.run(runner.run(count=ticks or None))
    except KeyboardInterrupt:
        console.print("[bold yellow]Interrupted[/]")
    finally:
        sampler.close()

    console.print(
        f"[bold green]Completed {sampler.ticks} ticks, "
        f"{len(registered)} signals registered[/]"
    )


@app.command()
def replay(
    stats_file: Path = typer.Argument(..., help="JSON-lines file of container stats payloads"),
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to configuration file (YAML/JSON)"
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write derived metrics as JSON lines"
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Do not print per-payload tables"),
) -> None:
    """Feed recorded container stats payloads through the container calculators."""
    telemetry_config = _load_config_or_exit(config)
    setup_logging(level=telemetry_config.log_level)

    if not stats_file.exists():
        console.print(f"[bold red]Stats file not found: {stats_file}[/]")
        raise typer.Exit(1)

    tracker = MetricsTracker(sink=LoggingSink())
    derived: list[DerivedMetrics] = []
    skipped = 0

    with open(stats_file, encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
                metrics = tracker.observe_payload(payload)
            except (json.JSONDecodeError, MetricsError) as e:
                console.print(f"[yellow]Line {line_number}: skipped ({escape(str(e))})[/]")
                skipped += 1
                continue
            if metrics is None:
                skipped += 1
                continue
            derived.append(metrics)
            if not quiet:
                _show_metrics_table(metrics)

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w", encoding="utf-8") as f:
            for metrics in derived:
                f.write(json.dumps(metrics.to_flat_dict()) + "\n")
        console.print(f"[bold green]Derived metrics written to {output}[/]")

    console.print(
        f"[bold green]Processed {len(derived)} payloads for {len(tracker)} containers[/]"
        + (f" [yellow]({skipped} skipped)[/]" if skipped else "")
    )


@app.command()
def capabilities(
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to configuration file (YAML/JSON)"
    ),
) -> None:
    """Show which host counter sources are available."""
    telemetry_config = _load_config_or_exit(config)
    reader = HostCounterReader(telemetry_config)

    table = Table(title="Host Counter Sources")
    table.add_column("Source", style="cyan")
    table.add_column("Available", style="white")
    for source, available in reader.capabilities().items():
        table.add_row(source, "[green]yes[/]" if available else "[red]no[/]")
    console.print(table)

    interfaces = reader.list_interfaces()
    console.print(f"Interfaces: {', '.join(interfaces) if interfaces else 'none'}")


@app.command()
def init_config(
    output: Path = typer.Option(
        Path("telemetry.yaml"), "--output", "-o", help="Output configuration file"
    ),
) -> None:
    """Generate a sample configuration file."""
    sample_config = """\
# Container Telemetry Configuration

# Tick length in seconds (0.1 - 60)
tick_interval_seconds: 1.0

# Host CPU usage source: auto, cgroup or scheduler
#   auto      - cgroup counters when present, scheduler times otherwise
#   cgroup    - cgroup cpuacct / cpu.stat nanosecond counters only
#   scheduler - per-core OS scheduler times
host_cpu_strategy: auto

# Scheduler time units per second (psutil reports seconds)
scheduler_divisor: 1.0

# Counter source locations
cgroup_root: /sys/fs/cgroup
net_class_root: /sys/class/net

# Host interfaces matching this pattern are not reported
excluded_interface_pattern: "^(veth|docker|br-|lo)"

log_level: INFO
"""
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(sample_config)
    console.print(f"[bold green]Sample configuration written to {output}[/]")


def _load_config_or_exit(path: Path | None) -> TelemetryConfig:
    try:
        return load_config(path)
    except Exception as e:
        console.print(f"[bold red]Error loading config: {e}[/]")
        raise typer.Exit(1) from e


def _show_metrics_table(metrics: DerivedMetrics) -> None:
    """Display one tick's derived signals, suppressions and errors."""
    table = Table(
        title=f"{metrics.entity_type.value} {metrics.entity_id} @ {metrics.timestamp:%H:%M:%S}"
    )
    table.add_column("Signal", style="cyan")
    table.add_column("Value", style="white")

    for signal, value in metrics.signals():
        table.add_row(signal, f"{value:,.4f}" if isinstance(value, float) else f"{value:,}")

    for signal, reason in sorted(metrics.suppressed.items()):
        table.add_row(f"[dim]{signal}[/]", f"[dim]suppressed: {reason.value}[/]")

    for family, error in sorted(metrics.errors.items()):
        table.add_row(f"[red]{family}[/]", f"[red]{error}[/]")

    console.print(table)


if __name__ == "__main__":
    app()
