# Copyright (c) Syntropy Systems
"""ticketsweep worker command."""
from __future__ import annotations

import signal
from pathlib import Path
from threading import Event

import typer
from rich.console import Console

from ticketsweep.cli.common import resolve_engine
from ticketsweep.config import load_config
from ticketsweep.errors import TicketSweepError
from ticketsweep.models.ticket import Ticket
from ticketsweep.tickets import TicketStore
from ticketsweep.worker import TicketWorker

console = Console()

# Shutdown event for graceful termination
_shutdown_event = Event()


def _signal_handler(signum, frame):
    """Handle SIGINT/SIGTERM for graceful shutdown."""
    console.print("\n[yellow]Shutdown requested, finishing current ticket...[/yellow]")
    _shutdown_event.set()


def _announce(ticket: Ticket) -> None:
    console.print(f"\n[blue]Running ticket[/blue] {ticket.identifier} [dim]({ticket.simulation})[/dim]")
    console.print(f"  [dim]variation:[/dim] {ticket.variation_set().describe()}")


def worker(
    ticket_root: Path = typer.Argument(
        Path("tickets"),
        help="Ticket directory to pull tickets from",
    ),
    target_dir: Path = typer.Option(
        Path(),
        "--target-dir", "-d",
        help="Directory receiving the run directories",
    ),
    setup_dir: Path | None = typer.Option(
        None,
        "--setup-dir",
        help="Directory holding the setup documents (default: parent of the ticket directory)",
    ),
    engine: str | None = typer.Option(
        None,
        "--engine", "-e",
        envvar="TICKETSWEEP_ENGINE",
        help="Simulation engine as package.module:attribute",
    ),
) -> None:
    """Process tickets until the open queue is empty.

    Any number of workers may share one ticket directory, on one machine or
    across machines with a common filesystem.
    """
    store = TicketStore(ticket_root)
    if not store.open_dir.is_dir():
        console.print(f"[red]Error:[/red] No ticket queue at {ticket_root}. Run 'ticketsweep init' first.")
        raise typer.Exit(1)

    config = load_config(ticket_root)
    try:
        simulation_engine = resolve_engine(engine, config)
    except TicketSweepError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    _shutdown_event.clear()
    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    ticket_worker = TicketWorker(
        store,
        target_dir,
        simulation_engine,
        setup_dir=setup_dir,
        heartbeat_interval=config.heartbeat_interval,
        poll_interval=config.poll_interval,
        max_idle_polls=config.max_idle_polls,
        stop_event=_shutdown_event,
        on_ticket=_announce,
    )

    console.print(f"[green]Worker started[/green] on {store.root}")
    try:
        report = ticket_worker.run()
    except TicketSweepError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(
        f"\n[bold]{len(report.completed)} completed[/bold], "
        f"{len(report.failed)} failed, {len(report.unredeemable)} unredeemable"
    )
    for backup in report.backed_up:
        console.print(f"  [yellow]backed up:[/yellow] {backup}")
    console.print("[dim]Worker stopped[/dim]")
