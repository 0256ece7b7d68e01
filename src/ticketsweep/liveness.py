# Copyright (c) Syntropy Systems
"""Detect stalled runs and return their tickets to the open queue.

A run is judged by the ``alive`` file in its run directory:

- missing or unreadable: dead
- ``done``: finished, never reclaimed; a ticket left in processing is closed
- an epoch-millisecond timestamp older than the death threshold: dead

Reclaiming is a heuristic lease, not a fence. A worker that was only slow
is not told that its ticket went back to the queue.
"""
from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass, field
from enum import Enum
from threading import Event
from typing import TYPE_CHECKING, Callable

from ticketsweep.heartbeat import ALIVE_FILE, DONE_SENTINEL
from ticketsweep.tickets import DONE, PROCESSING, is_ticket_id
from ticketsweep.variations import VARIATION_LOG

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from ticketsweep.tickets import TicketStore

logger = logging.getLogger(__name__)

# 5 minutes without a heartbeat
DEATH_THRESHOLD_MS = 5 * 60 * 1000


class Liveness(str, Enum):
    """Classification of a run's heartbeat."""

    ALIVE = "alive"
    FINISHED = "finished"
    DEAD = "dead"


def classify_heartbeat(
    alive_path: Path,
    now_ms: int,
    threshold_ms: int = DEATH_THRESHOLD_MS,
) -> Liveness:
    """Classify a run from its heartbeat file."""
    if not alive_path.exists():
        return Liveness.DEAD
    try:
        content = alive_path.read_text().strip()
    except OSError as exc:
        logger.warning("Unable to read heartbeat %s: %s", alive_path, exc)
        return Liveness.DEAD

    if content == DONE_SENTINEL:
        return Liveness.FINISHED
    try:
        last_sign_of_life = int(content)
    except ValueError:
        logger.warning("Unparsable heartbeat %r in %s", content, alive_path)
        return Liveness.DEAD

    if now_ms - last_sign_of_life > threshold_ms:
        return Liveness.DEAD
    return Liveness.ALIVE


@dataclass
class DeadRun:
    """A run judged dead by a sweep."""

    ticket_id: str
    run_dir: Path | None
    reason: str


@dataclass
class SweepReport:
    """Outcome of one liveness sweep."""

    dead: list[DeadRun] = field(default_factory=list)
    requeued: list[str] = field(default_factory=list)
    closed: list[str] = field(default_factory=list)
    cleaned: list[Path] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class LivenessMonitor:
    """Periodically reclaims tickets whose runs stopped sending heartbeats."""

    store: TicketStore
    target_root: Path
    threshold_ms: int
    _clock: Callable[[], float]

    def __init__(
        self,
        store: TicketStore,
        target_root: Path,
        threshold_ms: int = DEATH_THRESHOLD_MS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize a monitor.

        Args:
            store: Ticket queue to requeue into
            target_root: Directory holding the run directories
            threshold_ms: Heartbeat age after which a run is dead
            clock: Returns the current time in epoch seconds

        """
        self.store = store
        self.target_root = target_root
        self.threshold_ms = threshold_ms
        self._clock = clock

    def now_ms(self) -> int:
        """Current time in epoch milliseconds."""
        return int(self._clock() * 1000)

    def iter_run_directories(self) -> Iterator[Path]:
        """Yield run directories, directly below the root or one setup level down."""
        for entry in sorted(self.target_root.iterdir()):
            if not entry.is_dir():
                continue
            if is_ticket_id(entry.name):
                yield entry
                continue
            for nested in sorted(entry.iterdir()):
                if nested.is_dir() and is_ticket_id(nested.name):
                    yield nested

    def find_dead_runs(self) -> list[DeadRun]:
        """Classify every in-flight run and return the dead ones."""
        dead, _ = self._classify_runs()
        return dead

    def _classify_runs(self) -> tuple[list[DeadRun], list[str]]:
        """Return the dead runs and the ids of finished runs.

        A failure to list the target root yields nothing for this pass.
        """
        now = self.now_ms()
        dead: list[DeadRun] = []
        finished: list[str] = []
        seen: set[str] = set()

        if self.target_root.is_dir():
            try:
                run_dirs = list(self.iter_run_directories())
            except OSError as exc:
                logger.warning("Unable to retrieve run directories from %s: %s", self.target_root, exc)
                return [], []

            for run_dir in run_dirs:
                seen.add(run_dir.name)
                liveness = classify_heartbeat(run_dir / ALIVE_FILE, now, self.threshold_ms)
                if liveness is Liveness.DEAD:
                    dead.append(DeadRun(run_dir.name, run_dir, "heartbeat missing or stale"))
                elif liveness is Liveness.FINISHED:
                    finished.append(run_dir.name)

        # Claimed tickets whose worker died before creating a run directory
        for ticket_id in self.store.ticket_ids(PROCESSING):
            if ticket_id in seen:
                continue
            try:
                claimed_at = int(
                    (self.store.processing_dir / ticket_id).stat().st_mtime * 1000
                )
            except FileNotFoundError:
                continue
            if now - claimed_at > self.threshold_ms:
                dead.append(DeadRun(ticket_id, None, "claimed without a run directory"))

        return dead, finished

    def _remove_run_directory(self, run_dir: Path) -> bool:
        try:
            (run_dir / VARIATION_LOG).unlink(missing_ok=True)
            (run_dir / ALIVE_FILE).unlink(missing_ok=True)
            shutil.rmtree(run_dir)
        except OSError as exc:
            logger.warning("Unable to remove dead run directory %s: %s", run_dir, exc)
            return False
        return True

    def sweep(self) -> SweepReport:
        """Requeue the tickets of dead runs and delete their partial output."""
        dead, finished = self._classify_runs()
        report = SweepReport(dead=dead)

        for run in report.dead:
            location = self.store.locate(run.ticket_id)
            if location in (PROCESSING, DONE):
                if not self.store.reopen_ticket(run.ticket_id):
                    logger.warning(
                        "Unable to reopen ticket %s, retrying next sweep", run.ticket_id
                    )
                    report.failed.append(run.ticket_id)
                    continue
                report.requeued.append(run.ticket_id)
            elif location is None:
                logger.info("Dead run %s has no ticket to reopen", run.ticket_id)

            if run.run_dir is not None:
                logger.info("Simulation %s seems to be dead (%s), removing it", run.run_dir, run.reason)
                if self._remove_run_directory(run.run_dir):
                    report.cleaned.append(run.run_dir)

        # Finished runs whose worker could not close the ticket
        for ticket_id in finished:
            if self.store.locate(ticket_id) == PROCESSING and self.store.close_ticket(ticket_id):
                logger.info("Closed ticket %s of finished run", ticket_id)
                report.closed.append(ticket_id)

        if not report.dead:
            logger.info("No simulations found to reclaim in %s", self.target_root)
        else:
            logger.info(
                "Reclaimed %d of %d dead run(s): %s",
                len(report.requeued),
                len(report.dead),
                ", ".join(report.requeued) or "-",
            )
        return report

    def run(
        self,
        interval: float,
        stop_event: Event | None = None,
        on_sweep: Callable[[SweepReport], None] | None = None,
    ) -> None:
        """Sweep now and then every interval seconds until stop_event is set."""
        if stop_event is None:
            stop_event = Event()

        while True:
            try:
                report = self.sweep()
            except Exception as exc:
                logger.exception("Liveness sweep failed", exc_info=exc)
            else:
                counts = self.store.counts()
                logger.info(
                    "Queue: %d open, %d processing, %d done",
                    counts.open,
                    counts.processing,
                    counts.done,
                )
                if on_sweep is not None:
                    on_sweep(report)

            if stop_event.wait(timeout=interval):
                break
