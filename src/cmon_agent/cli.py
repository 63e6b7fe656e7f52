"""CLI for cmon-agent.

Provides a command-line interface using Typer for:
- Serving metrics over HTTP
- Taking an ad-hoc JSON snapshot of GZ and guest kstats
- Generating a sample configuration
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from cmon_agent.core.config import load_config
from cmon_agent.core.errors import CmonAgentError, ConfigurationError, PartialCollectionFailure
from cmon_agent.core.schemas import AgentConfig
from cmon_agent.engine import CollectionRequest, build_engine
from cmon_agent.exposition import format_snapshot_json
from cmon_agent.utils.logging import setup_logging

app = typer.Typer(
    name="cmon-agent",
    help="Host telemetry collector for zones and the global zone",
    add_completion=False,
)

# stdout is reserved for the snapshot document
console = Console(stderr=True)


@app.command()
def serve(
    config: Path = typer.Option(
        ..., "--config", "-c", help="Path to agent configuration file (YAML/JSON)"
    ),
    log_file: Path | None = typer.Option(
        None, "--log-file", help="Write logs to file in addition to console"
    ),
    json_logs: bool = typer.Option(
        False, "--json-logs", help="Output logs in JSON format (for programmatic parsing)"
    ),
) -> None:
    """Serve GZ and guest metrics over HTTP."""
    try:
        agent_config = load_config(config)
    except ConfigurationError as e:
        console.print(f"[bold red]Error loading config: {e}[/]")
        raise typer.Exit(1) from e

    setup_logging(
        level=agent_config.log_level,
        log_file=log_file,
        json_format=json_logs,
        rich_console=not json_logs,
    )
    if not json_logs:
        _show_config_summary(agent_config)

    from cmon_agent.api.app import serve as serve_app

    serve_app(agent_config)


@app.command()
def snapshot(
    gz: bool = typer.Option(False, "--gz", help="Include global zone kstats"),
    vms: bool = typer.Option(False, "--vms", help="Include guests (all running guests unless --vm)"),
    vm: list[str] | None = typer.Option(
        None, "--vm", help="Guest UUID to include; repeatable, implies --vms"
    ),
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Agent configuration for command paths and limits"
    ),
    strict: bool = typer.Option(
        False, "--strict", help="Exit non-zero if any guest or collector failed"
    ),
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="Logging level"),
    json_logs: bool = typer.Option(
        False, "--json-logs", help="Output logs in JSON format (for programmatic parsing)"
    ),
) -> None:
    """Print a JSON snapshot of raw kstats, filesystem usage and NTP state."""
    setup_logging(level=log_level, json_format=json_logs, rich_console=not json_logs)

    guest_uuids: frozenset[str] | None
    if vm:
        guest_uuids = frozenset(vm)
    elif vms:
        guest_uuids = None
    else:
        guest_uuids = frozenset()

    if not gz and guest_uuids is not None and not guest_uuids:
        console.print("[bold red]Error:[/] Specify at least one of '--gz', '--vms' or '--vm'.")
        raise typer.Exit(2)

    agent_config: AgentConfig | None = None
    if config is not None:
        try:
            agent_config = load_config(config)
        except ConfigurationError as e:
            console.print(f"[bold red]Error loading config: {e}[/]")
            raise typer.Exit(1) from e

    engine = build_engine(agent_config)
    request = CollectionRequest(include_gz=gz, guest_uuids=guest_uuids)
    try:
        result = asyncio.run(engine.collect(request))
    except CmonAgentError as e:
        console.print(f"[bold red]Collection failed:[/] {e}")
        raise typer.Exit(1) from e

    typer.echo(json.dumps(format_snapshot_json(result), indent=2, default=str))

    if strict:
        try:
            result.raise_for_failures()
        except PartialCollectionFailure as e:
            for key, reason in sorted(e.failures.items()):
                console.print(f"[bold yellow]{key}:[/] {reason}")
            raise typer.Exit(1) from e


@app.command()
def init_config(
    output: Path = typer.Option(
        Path("cmon-agent.yaml"), "--output", "-o", help="Output configuration file"
    ),
) -> None:
    """Generate a sample configuration file."""
    sample_config = """\
# cmon-agent configuration

# DEBUG, INFO, WARNING, ERROR, CRITICAL or FATAL
log_level: INFO

# HTTP listener
ip: 0.0.0.0
port: 9163

# Owner of the global zone metrics
ufds_admin_uuid: 930896af-bf8c-48d4-885c-6573a94b1853

# Upper bound on concurrent per-guest work in one collection pass
max_concurrency: 16

# Pool holding each guest's dataset (<pool>/<vm_uuid>)
zfs_pool: zones

# Timeout applied to every external command (seconds)
command_timeout_seconds: 10

commands:
  kstat: /usr/bin/kstat
  zoneadm: /usr/sbin/zoneadm
  zfs: /usr/sbin/zfs
  ntpq: /usr/sbin/ntpq
"""
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(sample_config)
    console.print(f"[bold green]Sample configuration written to {output}[/]")


def _show_config_summary(config: AgentConfig) -> None:
    """Display a summary of the agent configuration."""
    table = Table(title="Agent Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Listen", f"{config.ip}:{config.port}")
    table.add_row("Log Level", config.log_level)
    table.add_row("GZ Owner", str(config.ufds_admin_uuid))
    table.add_row("Max Concurrency", str(config.max_concurrency))
    table.add_row("ZFS Pool", config.zfs_pool)

    console.print(table)


if __name__ == "__main__":
    app()
