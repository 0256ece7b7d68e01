# Copyright (c) Syntropy Systems
"""Helpers shared by the ticketsweep commands."""
from __future__ import annotations

from typing import TYPE_CHECKING

import typer

from ticketsweep.engine import load_engine
from ticketsweep.models.ticket import Quantity

if TYPE_CHECKING:
    from ticketsweep.config import TicketSweepConfig
    from ticketsweep.engine import SimulationEngine


def parse_time(value: str, option: str) -> Quantity:
    """Parse a ``<number><unit>`` time option."""
    try:
        return Quantity.parse_time(value)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint=option) from e


def parse_seconds(value: str, option: str) -> float:
    """Parse a time option into seconds; bare numbers are seconds."""
    try:
        return float(value)
    except ValueError:
        return parse_time(value, option).in_seconds()


def resolve_engine(spec: str | None, config: TicketSweepConfig) -> SimulationEngine:
    """Load the engine named on the command line, else the configured one."""
    return load_engine(spec or config.engine)
