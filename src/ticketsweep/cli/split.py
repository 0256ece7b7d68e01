# Copyright (c) Syntropy Systems
"""ticketsweep split command."""
from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from ticketsweep.errors import SplitError
from ticketsweep.splitter import write_shards

console = Console()


def _read_names(names_file: Path) -> list[str]:
    return [line.strip() for line in names_file.read_text().splitlines() if line.strip()]


def split(
    setup: Path = typer.Argument(
        ...,
        help="JSON file with the simulation setup",
        exists=True,
        dir_okay=False,
    ),
    shards: int = typer.Option(
        2,
        "--shards", "-s",
        help="Number of setup documents to produce",
    ),
    output_dir: Path | None = typer.Option(
        None,
        "--output", "-o",
        help="Directory receiving the shards (default: next to the setup)",
    ),
    names: Path | None = typer.Option(
        None,
        "--names",
        help="File with one shard name per line, e.g. one per machine",
        exists=True,
        dir_okay=False,
    ),
) -> None:
    """Split a setup's alternative values into disjoint shards.

    Each shard is a complete setup document; generating tickets from all of
    them covers every variation of the original exactly once.
    """
    shard_names = _read_names(names) if names is not None else None
    try:
        written = write_shards(setup, output_dir or setup.parent, shards, shard_names)
    except SplitError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(f"[green]Split {setup.name} into {len(written)} shard(s)[/green]")
    for path in written:
        console.print(f"  {path}")
