# Copyright (c) Syntropy Systems
"""File-system ticket queue with exclusive-claim semantics.

Tickets live in one of three directories below the ticket root::

    open/<uuid>        pending
    processing/<uuid>  claimed by a worker
    done/<uuid>        completed

The directories are the only source of truth. Claims use a non-blocking
``flock`` on the ticket file and copy to ``processing/`` before deleting from
``open/``, so a worker that dies mid-claim leaves the ticket recoverable.
"""
from __future__ import annotations

import fcntl
import logging
import os
import re
import shutil
from typing import TYPE_CHECKING

from pydantic import ValidationError

from ticketsweep.errors import RedemptionError, TicketFormatError
from ticketsweep.models.ticket import QueueCounts, Ticket

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from ticketsweep.features import FeatureRegistry

logger = logging.getLogger(__name__)

TICKET_ID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

OPEN = "open"
PROCESSING = "processing"
DONE = "done"
STATES = (OPEN, PROCESSING, DONE)


def is_ticket_id(name: str) -> bool:
    """Return whether name has the shape of a ticket identifier."""
    return TICKET_ID_PATTERN.match(name) is not None


def parse_ticket(payload: bytes | str, ticket_id: str) -> Ticket:
    """Parse a ticket file stored under ticket_id.

    Raises:
        TicketFormatError: If the payload is not a valid ticket or names a
            different identifier than its file.

    """
    try:
        ticket = Ticket.model_validate_json(payload)
    except ValidationError as exc:
        msg = f"Ticket {ticket_id} is malformed: {exc}"
        raise TicketFormatError(msg) from exc
    if ticket.identifier != ticket_id:
        msg = f"Ticket file {ticket_id} carries identifier {ticket.identifier}"
        raise TicketFormatError(msg)
    return ticket


class TicketStore:
    """Ticket queue rooted at a shared directory.

    Safe to use from many processes at once. Per-instance state is limited to
    the set of ticket ids this process found malformed, so they are not
    retried in a tight loop.
    """

    root: Path
    open_dir: Path
    processing_dir: Path
    done_dir: Path
    _rejected: set[str]

    def __init__(self, root: Path) -> None:
        self.root = root
        self.open_dir = root / OPEN
        self.processing_dir = root / PROCESSING
        self.done_dir = root / DONE
        self._rejected = set()

    def create_directories(self) -> None:
        """Create the queue directories if they do not exist."""
        for directory in (self.open_dir, self.processing_dir, self.done_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def state_dir(self, state: str) -> Path:
        """Return the directory for a queue state."""
        if state not in STATES:
            msg = f"Unknown ticket state: {state}"
            raise ValueError(msg)
        return self.root / state

    # --- Queries ---

    def _candidates(self) -> Iterator[os.DirEntry[str]]:
        with os.scandir(self.open_dir) as entries:
            for entry in entries:
                if is_ticket_id(entry.name) and entry.name not in self._rejected:
                    yield entry

    def tickets_available(self) -> bool:
        """Return whether open/ holds at least one complete ticket file."""
        try:
            for entry in self._candidates():
                try:
                    if entry.is_file() and entry.stat().st_size > 0:
                        return True
                except FileNotFoundError:
                    continue
        except OSError as exc:
            logger.warning("Unable to list open tickets in %s: %s", self.open_dir, exc)
        return False

    def ticket_ids(self, state: str) -> list[str]:
        """Return the sorted ticket ids currently in a state directory."""
        directory = self.state_dir(state)
        try:
            return sorted(path.name for path in directory.iterdir() if is_ticket_id(path.name))
        except OSError as exc:
            logger.warning("Unable to list tickets in %s: %s", directory, exc)
            return []

    def counts(self) -> QueueCounts:
        """Count tickets per state."""
        return QueueCounts(
            open=len(self.ticket_ids(OPEN)),
            processing=len(self.ticket_ids(PROCESSING)),
            done=len(self.ticket_ids(DONE)),
        )

    def locate(self, ticket_id: str) -> str | None:
        """Return the state a ticket is in, checking done, processing, open."""
        for state in (DONE, PROCESSING, OPEN):
            if (self.root / state / ticket_id).is_file():
                return state
        return None

    # --- Generation ---

    def write_ticket(self, ticket: Ticket) -> Path:
        """Write a new ticket into open/.

        The payload is written under a hidden temporary name and renamed into
        place, so claimers never observe a partially written ticket.
        """
        if not is_ticket_id(ticket.identifier):
            msg = f"Invalid ticket identifier: {ticket.identifier}"
            raise ValueError(msg)
        target = self.open_dir / ticket.identifier
        temporary = self.open_dir / f".{ticket.identifier}.tmp"
        _ = temporary.write_text(ticket.model_dump_json(indent=2))
        os.replace(temporary, target)
        return target

    # --- Claiming ---

    def pull_ticket(self) -> Ticket | None:
        """Claim one open ticket, moving it to processing/.

        Returns None if no ticket could be claimed. Losing a lock race is
        normal and the candidate is simply skipped.
        """
        try:
            candidates = list(self._candidates())
        except OSError as exc:
            logger.warning("Unable to retrieve any ticket from %s: %s", self.open_dir, exc)
            return None

        for entry in candidates:
            ticket = self._try_claim(entry.name)
            if ticket is not None:
                return ticket
        return None

    def _try_claim(self, ticket_id: str) -> Ticket | None:
        path = self.open_dir / ticket_id
        try:
            handle = path.open("r+b")
        except FileNotFoundError:
            # Claimed and removed by another worker since the listing
            return None
        except OSError as exc:
            logger.warning("Unable to open ticket %s: %s", ticket_id, exc)
            return None

        with handle:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError:
                logger.debug("Ticket %s is locked by another worker, skipping", ticket_id)
                return None

            # The lock is on the inode. If another worker finished its claim
            # between our open() and flock(), we now hold a deleted file.
            try:
                if os.fstat(handle.fileno()).st_ino != path.stat().st_ino:
                    return None
            except FileNotFoundError:
                return None

            payload = handle.read()
            if not payload:
                return None
            try:
                ticket = parse_ticket(payload, ticket_id)
            except TicketFormatError as exc:
                logger.error("%s; leaving it in %s", exc, OPEN)
                self._rejected.add(ticket_id)
                return None

            claimed = self.processing_dir / ticket_id
            try:
                _ = shutil.copyfile(path, claimed)
            except OSError as exc:
                logger.warning("Unable to copy ticket %s to %s: %s", ticket_id, PROCESSING, exc)
                return None
            try:
                path.unlink()
            except OSError as exc:
                logger.warning("Unable to remove claimed ticket %s from %s: %s", ticket_id, OPEN, exc)
                claimed.unlink(missing_ok=True)
                return None

        logger.info("Claimed ticket %s", ticket_id)
        return ticket

    def redeem_ticket(self, ticket: Ticket, registry: FeatureRegistry) -> None:
        """Apply the ticket's feature values to a registry.

        All assignments are resolved before any is applied, so a stale or
        malformed ticket leaves the registry untouched.

        Raises:
            RedemptionError: If a feature is unknown or a value is not one of
                its alternatives.

        """
        selections: list[tuple[int, int]] = []
        for assignment in ticket.features:
            if assignment.identifier not in registry:
                raise RedemptionError(
                    ticket.identifier, f"unknown feature identifier {assignment.identifier}"
                )
            feature = registry.get(assignment.identifier)
            index = feature.index_of(assignment.content)
            if index is None:
                raise RedemptionError(
                    ticket.identifier,
                    f"value {assignment.content} is not an alternative of feature "
                    f"{feature.name} [{feature.identifier}]",
                )
            selections.append((assignment.identifier, index))

        for feature_id, index in selections:
            registry.get(feature_id).select(index)
        logger.info("Redeemed ticket %s (%d features)", ticket.identifier, len(selections))

    # --- Transitions ---

    def _move(self, ticket_id: str, source_state: str, target_state: str) -> bool:
        source = self.state_dir(source_state) / ticket_id
        target = self.state_dir(target_state) / ticket_id
        if target.exists():
            logger.warning(
                "Unable to move ticket %s to %s: destination already exists",
                ticket_id,
                target_state,
            )
            return False
        try:
            os.rename(source, target)
        except OSError as exc:
            logger.warning("Unable to move ticket %s to %s: %s", ticket_id, target_state, exc)
            return False
        return True

    def close_ticket(self, ticket: Ticket | str) -> bool:
        """Move a ticket, or the ticket with this id, from processing/ to done/.

        On failure the ticket stays where it is for the liveness monitor or
        manual recovery.
        """
        ticket_id = ticket if isinstance(ticket, str) else ticket.identifier
        closed = self._move(ticket_id, PROCESSING, DONE)
        if closed:
            logger.info("Closed ticket %s", ticket_id)
        return closed

    def reopen_ticket(self, ticket_id: str) -> bool:
        """Return a ticket from processing/ (or done/) to open/.

        If open/ already holds the ticket, which happens when a claim crashed
        between copy and delete, the other copy is dropped instead so the
        ticket ends up in exactly one place.
        """
        for state in (PROCESSING, DONE):
            source = self.state_dir(state) / ticket_id
            if not source.exists():
                continue
            if (self.open_dir / ticket_id).exists():
                try:
                    source.unlink()
                except OSError as exc:
                    logger.warning("Unable to drop duplicate ticket %s in %s: %s", ticket_id, state, exc)
                    return False
                logger.info("Dropped duplicate of open ticket %s from %s", ticket_id, state)
                return True
            if self._move(ticket_id, state, OPEN):
                self._rejected.discard(ticket_id)
                logger.info("Reopened ticket %s from %s", ticket_id, state)
                return True
            return False
        logger.debug("No ticket %s to reopen", ticket_id)
        return False
