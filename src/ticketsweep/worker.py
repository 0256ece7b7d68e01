# Copyright (c) Syntropy Systems
"""Worker loop: claim a ticket, redeem it, run it, close it."""
from __future__ import annotations

import json
import logging
import tempfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from threading import Event
from typing import TYPE_CHECKING, Callable

from ticketsweep.engine import RunRequest
from ticketsweep.errors import RedemptionError, SetupError
from ticketsweep.features import FeatureRegistry
from ticketsweep.heartbeat import Heartbeat, create_run_directory
from ticketsweep.tickets import PROCESSING
from ticketsweep.variations import write_variation_log

if TYPE_CHECKING:
    from ticketsweep.engine import SimulationEngine
    from ticketsweep.models.ticket import JSONValue
    from ticketsweep.models.ticket import Ticket
    from ticketsweep.tickets import TicketStore

logger = logging.getLogger(__name__)

TRAJECTORY_FILE = "trajectory.json"
BACKUP_DIR_NAME = "ticketsweep_backup_results"


@dataclass
class WorkerReport:
    """Tickets handled by one worker session."""

    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    unredeemable: list[str] = field(default_factory=list)
    backed_up: list[Path] = field(default_factory=list)


def backup_directory(ticket: Ticket) -> Path:
    """Fallback output location for a run whose directory vanished."""
    return Path(tempfile.gettempdir()) / BACKUP_DIR_NAME / ticket.simulation_stem / ticket.identifier


class TicketWorker:
    """Processes tickets until open/ is empty.

    Each ticket gets a fresh feature registry. The simulation runs on a
    single-thread executor while a heartbeat thread keeps the run directory's
    ``alive`` file fresh; the worker waits for the result before it persists
    output, marks the run done and closes the ticket.
    """

    store: TicketStore
    target_root: Path
    engine: SimulationEngine
    setup_dir: Path
    heartbeat_interval: float
    poll_interval: float
    max_idle_polls: int
    _stop_event: Event
    _on_ticket: Callable[[Ticket], None] | None
    _documents: dict[str, str]

    def __init__(
        self,
        store: TicketStore,
        target_root: Path,
        engine: SimulationEngine,
        setup_dir: Path | None = None,
        heartbeat_interval: float = 30.0,
        poll_interval: float = 5.0,
        max_idle_polls: int = 12,
        stop_event: Event | None = None,
        on_ticket: Callable[[Ticket], None] | None = None,
    ) -> None:
        """Initialize a worker.

        Args:
            store: Queue to claim tickets from
            target_root: Directory receiving run directories
            engine: Engine that parses, builds and runs simulations
            setup_dir: Directory that holds the setup documents tickets refer
                to (default: the parent of the ticket root)
            heartbeat_interval: Seconds between heartbeats
            poll_interval: Seconds to wait after a failed claim
            max_idle_polls: Failed claims in a row before giving up
            stop_event: Set to stop after the current ticket
            on_ticket: Called with each claimed ticket

        """
        self.store = store
        self.target_root = target_root
        self.engine = engine
        self.setup_dir = setup_dir if setup_dir is not None else store.root.parent
        self.heartbeat_interval = heartbeat_interval
        self.poll_interval = poll_interval
        self.max_idle_polls = max_idle_polls
        self._stop_event = stop_event if stop_event is not None else Event()
        self._on_ticket = on_ticket
        self._documents = {}

    def run_directory(self, ticket: Ticket) -> Path:
        """Run directory of a ticket: ``<target>/<setup stem>/<ticket id>``."""
        return self.target_root / ticket.simulation_stem / ticket.identifier

    def _setup_document(self, simulation: str) -> str:
        if simulation not in self._documents:
            setup_path = self.setup_dir / simulation
            try:
                self._documents[simulation] = setup_path.read_text()
            except OSError as exc:
                msg = f"Unable to read simulation setup {setup_path}: {exc}"
                raise SetupError(msg) from exc
        return self._documents[simulation]

    def run(self) -> WorkerReport:
        """Claim and process tickets until none are left or a stop is requested.

        Raises:
            SetupError: If a ticket's setup document cannot be read or parsed.

        """
        report = WorkerReport()
        idle_polls = 0
        self.target_root.mkdir(parents=True, exist_ok=True)

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="simulation") as executor:
            while not self._stop_event.is_set() and self.store.tickets_available():
                ticket = self.store.pull_ticket()
                if ticket is None:
                    idle_polls += 1
                    if idle_polls >= self.max_idle_polls:
                        logger.warning(
                            "Unable to claim a ticket after %d attempts, stopping", idle_polls
                        )
                        break
                    _ = self._stop_event.wait(timeout=self.poll_interval)
                    continue

                idle_polls = 0
                if self._on_ticket is not None:
                    self._on_ticket(ticket)
                self.process(ticket, executor, report)

        logger.info(
            "Worker finished: %d completed, %d failed, %d unredeemable",
            len(report.completed),
            len(report.failed),
            len(report.unredeemable),
        )
        return report

    def process(self, ticket: Ticket, executor: ThreadPoolExecutor, report: WorkerReport) -> None:
        """Redeem, run and close one claimed ticket."""
        document = self._setup_document(ticket.simulation)
        registry = FeatureRegistry()
        representation = self.engine.parse_setup(document)
        self.engine.load_features(representation, registry)

        logger.info("Applying variation for ticket %s", ticket.identifier)
        try:
            self.store.redeem_ticket(ticket, registry)
        except RedemptionError as exc:
            logger.error("%s; leaving it in %s", exc, PROCESSING)
            report.unredeemable.append(ticket.identifier)
            return
        simulation = self.engine.build_simulation(representation, registry)

        run_dir = self.run_directory(ticket)
        heartbeat = Heartbeat(run_dir, interval=self.heartbeat_interval)
        try:
            _ = create_run_directory(run_dir)
            heartbeat.start()
        except OSError as exc:
            # Left in processing/ for the liveness monitor
            heartbeat.stop()
            logger.error("Unable to start run %s: %s", run_dir, exc)
            report.failed.append(ticket.identifier)
            return
        logger.info("Writing to %s", run_dir)

        try:
            _ = write_variation_log(ticket.variation_set(), run_dir)
        except OSError as exc:
            logger.error("Unable to write variations to %s: %s", run_dir, exc)

        request = RunRequest(ticket=ticket, run_dir=run_dir, configuration=ticket.configuration)
        future = executor.submit(self.engine.run, simulation, request)
        try:
            trajectory = future.result()
        except Exception:
            # The stale heartbeat lets the monitor reclaim the ticket
            heartbeat.stop()
            logger.exception("Simulation for ticket %s failed", ticket.identifier)
            report.failed.append(ticket.identifier)
            return

        heartbeat.stop()
        try:
            output_dir = self._persist(ticket, run_dir, trajectory)
            if output_dir == run_dir:
                heartbeat.finish()
        except OSError as exc:
            logger.error("Unable to store results of ticket %s: %s", ticket.identifier, exc)
            report.failed.append(ticket.identifier)
            return
        if output_dir != run_dir:
            report.backed_up.append(output_dir)

        if self.store.close_ticket(ticket):
            report.completed.append(ticket.identifier)
            logger.info("Finished ticket %s", ticket.identifier)
        else:
            report.failed.append(ticket.identifier)

    def _persist(self, ticket: Ticket, run_dir: Path, trajectory: JSONValue) -> Path:
        """Write the trajectory, falling back to a backup directory."""
        payload = json.dumps(trajectory, indent=2)
        if run_dir.is_dir():
            _ = (run_dir / TRAJECTORY_FILE).write_text(payload)
            return run_dir

        backup = backup_directory(ticket)
        backup.mkdir(parents=True, exist_ok=True)
        logger.warning(
            "Run directory %s disappeared, backing up results in %s", run_dir, backup
        )
        _ = write_variation_log(ticket.variation_set(), backup)
        _ = (backup / TRAJECTORY_FILE).write_text(payload)
        return backup
