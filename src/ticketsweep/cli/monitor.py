# Copyright (c) Syntropy Systems
"""ticketsweep monitor command."""
from __future__ import annotations

import signal
from pathlib import Path
from threading import Event

import typer
from rich.console import Console

from ticketsweep.cli.common import parse_seconds
from ticketsweep.config import load_config
from ticketsweep.liveness import LivenessMonitor, SweepReport
from ticketsweep.tickets import TicketStore

console = Console()

_shutdown_event = Event()


def _signal_handler(signum, frame):
    """Handle SIGINT/SIGTERM for graceful shutdown."""
    console.print("\n[yellow]Shutdown requested[/yellow]")
    _shutdown_event.set()


def _print_report(report: SweepReport) -> None:
    for ticket_id in report.closed:
        console.print(f"  [green]closed:[/green] {ticket_id}")
    if not report.dead:
        console.print("[dim]No simulations found to reclaim[/dim]")
        return
    for ticket_id in report.requeued:
        console.print(f"  [yellow]requeued:[/yellow] {ticket_id}")
    for ticket_id in report.failed:
        console.print(f"  [red]failed to requeue:[/red] {ticket_id}")


def monitor(
    ticket_root: Path = typer.Argument(
        Path("tickets"),
        help="Ticket directory whose tickets are reclaimed",
    ),
    target_dir: Path = typer.Option(
        Path(),
        "--target-dir", "-d",
        help="Directory holding the run directories",
    ),
    interval: str | None = typer.Option(
        None,
        "--interval",
        help="Time between sweeps (e.g. 300, 5min; default from config)",
    ),
    threshold: str | None = typer.Option(
        None,
        "--threshold",
        help="Heartbeat age after which a run is dead (default from config)",
    ),
    once: bool = typer.Option(
        False,
        "--once",
        help="Sweep once and exit",
    ),
) -> None:
    """Reclaim tickets of runs whose heartbeat went stale."""
    store = TicketStore(ticket_root)
    if not store.open_dir.is_dir():
        console.print(f"[red]Error:[/red] No ticket queue at {ticket_root}. Run 'ticketsweep init' first.")
        raise typer.Exit(1)

    config = load_config(ticket_root)
    sweep_interval = parse_seconds(interval, "--interval") if interval else config.sweep_interval
    death_threshold = parse_seconds(threshold, "--threshold") if threshold else config.death_threshold

    liveness_monitor = LivenessMonitor(
        store,
        target_dir,
        threshold_ms=int(death_threshold * 1000),
    )

    if once:
        _print_report(liveness_monitor.sweep())
        return

    _shutdown_event.clear()
    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    console.print(f"[green]Monitoring[/green] {target_dir.resolve()}")
    console.print(f"[dim]Sweeping every {sweep_interval:g}s, death threshold {death_threshold:g}s[/dim]")
    liveness_monitor.run(sweep_interval, stop_event=_shutdown_event, on_sweep=_print_report)
    console.print("[dim]Monitor stopped[/dim]")
