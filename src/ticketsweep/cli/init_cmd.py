# Copyright (c) Syntropy Systems
"""ticketsweep init command."""

from pathlib import Path

import typer
from rich.console import Console

from ticketsweep.config import CONFIG_FILE, write_default_config
from ticketsweep.tickets import TicketStore

console = Console()


def init(
    ticket_root: Path = typer.Argument(
        Path("tickets"),
        help="Ticket directory to initialize (default: ./tickets)",
    ),
) -> None:
    """Initialize a ticket directory.

    Creates the open/, processing/ and done/ queues and a default config.yaml.
    """
    target = ticket_root.resolve()
    config_path = target / CONFIG_FILE

    if config_path.exists():
        console.print(f"[yellow]Already initialized:[/yellow] {target}")
        return

    store = TicketStore(target)
    store.create_directories()
    _ = write_default_config(target)

    console.print(f"[green]Initialized ticket directory:[/green] {target}")
    console.print(f"  [dim]config:[/dim] {config_path}")
    for directory in (store.open_dir, store.processing_dir, store.done_dir):
        console.print(f"  [dim]{directory.name}:[/dim] {directory}")
