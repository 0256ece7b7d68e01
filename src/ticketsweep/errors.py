# Copyright (c) Syntropy Systems
"""Exceptions raised by ticketsweep."""

from __future__ import annotations


class TicketSweepError(Exception):
    """Base class for ticketsweep errors."""


class TicketFormatError(TicketSweepError):
    """A ticket payload could not be parsed."""


class RedemptionError(TicketSweepError):
    """A ticket references a feature or value the registry does not know."""

    def __init__(self, ticket_id: str, message: str) -> None:
        super().__init__(f"Ticket {ticket_id}: {message}")
        self.ticket_id = ticket_id


class SetupError(TicketSweepError):
    """The simulation setup could not be read, parsed or loaded."""


class SplitError(TicketSweepError):
    """A setup document cannot be split as requested."""
