# Copyright (c) Syntropy Systems
"""Main CLI entry point for ticketsweep."""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from ticketsweep.cli.generate import generate
from ticketsweep.cli.init_cmd import init
from ticketsweep.cli.monitor import monitor
from ticketsweep.cli.split import split
from ticketsweep.cli.status import status
from ticketsweep.cli.worker import worker

app = typer.Typer(
    name="ticketsweep",
    help=(
        "Parameter-sweep ticket scheduler. Generate tickets, run them on "
        "any number of workers, reclaim what dies."
    ),
    no_args_is_help=True,
    add_completion=False,
)


def configure_logging(verbose: bool = False) -> None:
    """Route library logging through rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def main(
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Log debug messages, including lock contention",
    ),
) -> None:
    """Parameter-sweep ticket scheduler."""
    configure_logging(verbose)


# Register commands
_ = app.callback()(main)
_ = app.command()(init)
_ = app.command()(generate)
_ = app.command()(worker)
_ = app.command()(monitor)
_ = app.command()(split)
_ = app.command()(status)


if __name__ == "__main__":
    app()
