# Copyright (c) Syntropy Systems
"""ticketsweep status command."""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from ticketsweep.tickets import DONE, OPEN, PROCESSING, TicketStore

console = Console()

STATE_STYLES = {
    OPEN: "yellow",
    PROCESSING: "blue",
    DONE: "green",
}


def status(
    ticket_root: Path = typer.Argument(
        Path("tickets"),
        help="Ticket directory to inspect",
    ),
) -> None:
    """Show how many tickets are open, processing and done."""
    store = TicketStore(ticket_root)
    if not store.open_dir.is_dir():
        console.print(f"[red]Error:[/red] No ticket queue at {ticket_root}. Run 'ticketsweep init' first.")
        raise typer.Exit(1)

    counts = store.counts()
    if counts.total == 0:
        console.print("[dim]No tickets[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("State")
    table.add_column("Tickets", justify="right")
    table.add_column("Share", justify="right")

    for state, count in ((OPEN, counts.open), (PROCESSING, counts.processing), (DONE, counts.done)):
        style = STATE_STYLES[state]
        table.add_row(
            f"[{style}]{state}[/{style}]",
            str(count),
            f"{100 * count / counts.total:.0f}%",
        )

    console.print(table)
    console.print(f"[bold]{counts.done} of {counts.total}[/bold] tickets done")
