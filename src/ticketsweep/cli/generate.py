# Copyright (c) Syntropy Systems
"""ticketsweep generate command."""
from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from ticketsweep.cli.common import parse_time, resolve_engine
from ticketsweep.config import load_config
from ticketsweep.errors import TicketSweepError
from ticketsweep.generator import build_configuration, generate_tickets
from ticketsweep.tickets import TicketStore

console = Console()

# Rows shown before the table is truncated
MAX_PREVIEW_ROWS = 20


def generate(
    setup: Path = typer.Argument(
        ...,
        help="JSON file with the simulation setup",
        exists=True,
        dir_okay=False,
    ),
    ticket_root: Path = typer.Argument(
        Path("tickets"),
        help="Ticket directory receiving the tickets",
    ),
    termination_time: str = typer.Option(
        "1s",
        "--termination-time", "-t",
        help="Simulated time per run (e.g. 10s, 0.5min, 1.5h)",
    ),
    observations: float = typer.Option(
        100.0,
        "--observation-number", "-n",
        help="Number of observations during a run",
    ),
    observed_time: str = typer.Option(
        "s",
        "--observed-time", "-i",
        help="Unit in which times are recorded (e.g. ms)",
    ),
    observed_concentration: str = typer.Option(
        "nM",
        "--observed-concentration", "-c",
        help="Unit in which concentrations are recorded (e.g. mol/L)",
    ),
    limit: int | None = typer.Option(
        None,
        "--limit", "-l",
        help="Generate at most this many tickets",
    ),
    skip_processed: Path | None = typer.Option(
        None,
        "--skip-processed",
        help="Target directory of an earlier sweep; skip variations already run there",
    ),
    engine: str | None = typer.Option(
        None,
        "--engine", "-e",
        envvar="TICKETSWEEP_ENGINE",
        help="Simulation engine as package.module:attribute",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Preview tickets without writing them",
    ),
) -> None:
    """Generate one ticket per variation of a simulation setup."""
    total_time = parse_time(termination_time, "--termination-time")
    config = load_config(ticket_root)

    try:
        configuration = build_configuration(
            total_time,
            observations=observations,
            observed_time_unit=observed_time,
            observed_concentration_unit=observed_concentration,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--observation-number") from e

    try:
        report = generate_tickets(
            setup,
            TicketStore(ticket_root),
            resolve_engine(engine, config),
            configuration,
            limit=limit,
            skip_processed=skip_processed,
            dry_run=dry_run,
        )
    except TicketSweepError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    for dimension in report.dimensions:
        console.print(f"[dim]varying[/dim] {dimension}")

    if report.tickets:
        table = Table(title=f"Tickets: {setup.name}")
        table.add_column("#", style="dim")
        table.add_column("Ticket")
        table.add_column("Variation")
        for i, ticket in enumerate(report.tickets[:MAX_PREVIEW_ROWS]):
            table.add_row(str(i), ticket.identifier, ticket.variation_set().describe())
        console.print(table)
        if report.written > MAX_PREVIEW_ROWS:
            console.print(f"[dim]... and {report.written - MAX_PREVIEW_ROWS} more[/dim]")

    console.print(
        f"\n[bold]{report.written} of {report.space_size} variations[/bold] "
        f"(observation every {configuration.observation_time})"
    )
    if report.skipped:
        console.print(f"[dim]Skipped {len(report.skipped)} already processed variation(s)[/dim]")

    if dry_run:
        console.print("\n[yellow]Dry run - no tickets written[/yellow]")
        return

    console.print(f"[green]Wrote {report.written} tickets[/green] to {TicketStore(ticket_root).open_dir}")
