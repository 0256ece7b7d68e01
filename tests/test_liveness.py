# Copyright (c) Syntropy Systems
"""Tests for heartbeat classification and the liveness monitor."""

from __future__ import annotations

import os
import shutil
import threading
from typing import TYPE_CHECKING

import pytest

from ticketsweep.heartbeat import ALIVE_FILE, Heartbeat, create_run_directory, write_alive, write_done
from ticketsweep.liveness import (
    DEATH_THRESHOLD_MS,
    Liveness,
    LivenessMonitor,
    SweepReport,
    classify_heartbeat,
)
from ticketsweep.tickets import DONE, OPEN, PROCESSING, TicketStore
from ticketsweep.variations import VARIATION_LOG

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path

    from ticketsweep.models.ticket import Ticket

NOW_MS = 1_700_000_000_000


def _clock() -> float:
    return NOW_MS / 1000


class TestClassifyHeartbeat:
    """Tests for classify_heartbeat."""

    def test_threshold_is_strict(self, temp_dir: Path) -> None:
        alive = write_alive(temp_dir, NOW_MS - 299_999)
        assert classify_heartbeat(alive, NOW_MS, 300_000) is Liveness.ALIVE

        write_alive(temp_dir, NOW_MS - 300_000)
        assert classify_heartbeat(alive, NOW_MS, 300_000) is Liveness.ALIVE

        write_alive(temp_dir, NOW_MS - 300_001)
        assert classify_heartbeat(alive, NOW_MS, 300_000) is Liveness.DEAD

    def test_default_threshold_is_five_minutes(self) -> None:
        assert DEATH_THRESHOLD_MS == 300_000

    def test_done_is_never_dead(self, temp_dir: Path) -> None:
        alive = write_done(temp_dir)
        assert classify_heartbeat(alive, NOW_MS * 10, 1) is Liveness.FINISHED

    def test_done_with_trailing_newline(self, temp_dir: Path) -> None:
        alive = temp_dir / ALIVE_FILE
        alive.write_text("done\n")
        assert classify_heartbeat(alive, NOW_MS) is Liveness.FINISHED

    def test_missing_file_is_dead(self, temp_dir: Path) -> None:
        assert classify_heartbeat(temp_dir / ALIVE_FILE, NOW_MS) is Liveness.DEAD

    def test_unparsable_file_is_dead(self, temp_dir: Path) -> None:
        alive = temp_dir / ALIVE_FILE
        alive.write_text("garbage")
        assert classify_heartbeat(alive, NOW_MS) is Liveness.DEAD

    def test_unreadable_file_is_dead(self, temp_dir: Path) -> None:
        alive = temp_dir / ALIVE_FILE
        alive.mkdir()
        assert classify_heartbeat(alive, NOW_MS) is Liveness.DEAD


class TestHeartbeat:
    """Tests for the heartbeat thread."""

    def test_start_writes_first_beat(self, temp_dir: Path) -> None:
        heartbeat = Heartbeat(temp_dir, interval=60.0)
        heartbeat.start()
        try:
            assert heartbeat.alive_path.read_text().isdigit()
        finally:
            heartbeat.stop()

    def test_finish_writes_done(self, temp_dir: Path) -> None:
        heartbeat = Heartbeat(temp_dir, interval=0.01)
        heartbeat.start()
        heartbeat.finish()

        assert heartbeat.alive_path.read_text() == "done"

    def test_no_temporary_files_left(self, temp_dir: Path) -> None:
        write_alive(temp_dir)
        write_done(temp_dir)
        assert [p.name for p in temp_dir.iterdir()] == [ALIVE_FILE]

    def test_create_run_directory(self, temp_dir: Path) -> None:
        run_dir = temp_dir / "setup" / "0b9d3d52-3c1f-4f0e-9f55-6d1c2b0b6a11"

        create_run_directory(run_dir)

        assert (run_dir / ALIVE_FILE).read_text().isdigit()
        assert [p.name for p in run_dir.parent.iterdir()] == [run_dir.name]

    def test_create_existing_run_directory_refreshes_heartbeat(self, temp_dir: Path) -> None:
        write_alive(temp_dir, 0)

        create_run_directory(temp_dir)

        assert int((temp_dir / ALIVE_FILE).read_text()) > 0


def _claimed_run(
    store: TicketStore,
    target: Path,
    make_ticket: Callable[..., Ticket],
    heartbeat_ms: int | None,
) -> tuple[Ticket, Path]:
    ticket = make_ticket()
    store.write_ticket(ticket)
    claimed = store.pull_ticket()
    assert claimed is not None
    run_dir = target / claimed.simulation_stem / claimed.identifier
    run_dir.mkdir(parents=True)
    (run_dir / VARIATION_LOG).write_text(claimed.variation_set().model_dump_json())
    (run_dir / "partial.out").write_text("half a trajectory")
    if heartbeat_ms is not None:
        write_alive(run_dir, heartbeat_ms)
    return claimed, run_dir


class TestLivenessMonitor:
    """Tests for sweeps."""

    def test_stale_run_is_requeued_and_cleaned(
        self, store: TicketStore, temp_dir: Path, make_ticket: Callable[..., Ticket]
    ) -> None:
        target = temp_dir / "results"
        ticket, run_dir = _claimed_run(store, target, make_ticket, NOW_MS - 400_000)
        monitor = LivenessMonitor(store, target, clock=_clock)

        report = monitor.sweep()

        assert report.requeued == [ticket.identifier]
        assert report.cleaned == [run_dir]
        assert store.locate(ticket.identifier) == OPEN
        assert not run_dir.exists()

    def test_alive_run_is_left_alone(
        self, store: TicketStore, temp_dir: Path, make_ticket: Callable[..., Ticket]
    ) -> None:
        target = temp_dir / "results"
        ticket, run_dir = _claimed_run(store, target, make_ticket, NOW_MS - 1_000)

        report = LivenessMonitor(store, target, clock=_clock).sweep()

        assert report.dead == []
        assert store.locate(ticket.identifier) == PROCESSING
        assert run_dir.exists()

    def test_finished_run_is_never_reclaimed(
        self, store: TicketStore, temp_dir: Path, make_ticket: Callable[..., Ticket]
    ) -> None:
        target = temp_dir / "results"
        ticket, run_dir = _claimed_run(store, target, make_ticket, None)
        write_done(run_dir)
        store.close_ticket(ticket)

        report = LivenessMonitor(store, target, clock=lambda: _clock() * 2).sweep()

        assert report.dead == []
        assert store.locate(ticket.identifier) == DONE

    def test_dead_run_with_closed_ticket_is_reopened(
        self, store: TicketStore, temp_dir: Path, make_ticket: Callable[..., Ticket]
    ) -> None:
        target = temp_dir / "results"
        ticket, _ = _claimed_run(store, target, make_ticket, NOW_MS - 400_000)
        store.close_ticket(ticket)

        report = LivenessMonitor(store, target, clock=_clock).sweep()

        assert report.requeued == [ticket.identifier]
        assert store.locate(ticket.identifier) == OPEN

    def test_missing_heartbeat_is_dead(
        self, store: TicketStore, temp_dir: Path, make_ticket: Callable[..., Ticket]
    ) -> None:
        target = temp_dir / "results"
        ticket, _ = _claimed_run(store, target, make_ticket, None)

        report = LivenessMonitor(store, target, clock=_clock).sweep()

        assert report.requeued == [ticket.identifier]

    def test_run_directory_directly_below_target(
        self, store: TicketStore, temp_dir: Path, make_ticket: Callable[..., Ticket]
    ) -> None:
        target = temp_dir / "results"
        ticket, nested = _claimed_run(store, target, make_ticket, NOW_MS - 400_000)
        flat = target / ticket.identifier
        shutil.move(str(nested), str(flat))

        report = LivenessMonitor(store, target, clock=_clock).sweep()

        assert report.requeued == [ticket.identifier]
        assert not flat.exists()

    def test_orphaned_dead_run_is_cleaned_without_ticket(self, store: TicketStore, temp_dir: Path) -> None:
        run_dir = temp_dir / "results" / "setup" / "0b9d3d52-3c1f-4f0e-9f55-6d1c2b0b6a11"
        run_dir.mkdir(parents=True)
        write_alive(run_dir, NOW_MS - 400_000)

        report = LivenessMonitor(store, temp_dir / "results", clock=_clock).sweep()

        assert report.requeued == []
        assert report.cleaned == [run_dir]

    def test_claim_without_run_directory(
        self, store: TicketStore, temp_dir: Path, make_ticket: Callable[..., Ticket]
    ) -> None:
        """A worker that died right after claiming leaves only processing/<id>."""
        store.write_ticket(make_ticket())
        ticket = store.pull_ticket()
        assert ticket is not None
        claimed_path = store.processing_dir / ticket.identifier
        target = temp_dir / "results"
        target.mkdir()

        monitor = LivenessMonitor(store, target, clock=_clock)
        stale = (NOW_MS - 400_000) / 1000
        os.utime(claimed_path, (stale, stale))
        report = monitor.sweep()

        assert report.requeued == [ticket.identifier]
        assert store.locate(ticket.identifier) == OPEN

    def test_fresh_claim_without_run_directory_is_kept(
        self, store: TicketStore, temp_dir: Path, make_ticket: Callable[..., Ticket]
    ) -> None:
        store.write_ticket(make_ticket())
        ticket = store.pull_ticket()
        assert ticket is not None
        fresh = (NOW_MS - 1_000) / 1000
        os.utime(store.processing_dir / ticket.identifier, (fresh, fresh))

        report = LivenessMonitor(store, temp_dir / "results", clock=_clock).sweep()

        assert report.dead == []
        assert store.locate(ticket.identifier) == PROCESSING

    def test_crash_between_copy_and_delete_converges(
        self, store: TicketStore, temp_dir: Path, make_ticket: Callable[..., Ticket]
    ) -> None:
        ticket = make_ticket()
        path = store.write_ticket(ticket)
        shutil.copyfile(path, store.processing_dir / ticket.identifier)
        stale = (NOW_MS - 400_000) / 1000
        os.utime(store.processing_dir / ticket.identifier, (stale, stale))

        LivenessMonitor(store, temp_dir / "results", clock=_clock).sweep()

        counts = store.counts()
        assert (counts.open, counts.processing, counts.done) == (1, 0, 0)

    def test_new_run_directory_is_alive_immediately(
        self, store: TicketStore, temp_dir: Path, make_ticket: Callable[..., Ticket]
    ) -> None:
        store.write_ticket(make_ticket())
        ticket = store.pull_ticket()
        assert ticket is not None
        target = temp_dir / "results"
        run_dir = create_run_directory(target / ticket.simulation_stem / ticket.identifier)

        report = LivenessMonitor(store, target).sweep()

        assert report.dead == []
        assert run_dir.is_dir()
        assert store.locate(ticket.identifier) == PROCESSING

    def test_finished_run_with_unclosed_ticket_is_closed(
        self, store: TicketStore, temp_dir: Path, make_ticket: Callable[..., Ticket]
    ) -> None:
        """The worker finished the run but could not move the ticket to done/."""
        target = temp_dir / "results"
        ticket, run_dir = _claimed_run(store, target, make_ticket, None)
        write_done(run_dir)
        stale = (NOW_MS - 400_000) / 1000
        os.utime(store.processing_dir / ticket.identifier, (stale, stale))

        report = LivenessMonitor(store, target, clock=_clock).sweep()

        assert report.dead == []
        assert report.closed == [ticket.identifier]
        assert store.locate(ticket.identifier) == DONE
        assert run_dir.exists()

    def test_listing_error_yields_no_dead_runs(
        self,
        store: TicketStore,
        temp_dir: Path,
        make_ticket: Callable[..., Ticket],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        target = temp_dir / "results"
        _claimed_run(store, target, make_ticket, NOW_MS - 400_000)
        store.write_ticket(make_ticket())
        orphan = store.pull_ticket()
        assert orphan is not None
        stale = (NOW_MS - 400_000) / 1000
        os.utime(store.processing_dir / orphan.identifier, (stale, stale))

        def unreadable(self: LivenessMonitor) -> Iterator[Path]:
            raise PermissionError(13, "Permission denied", str(target))

        monkeypatch.setattr(LivenessMonitor, "iter_run_directories", unreadable)
        monitor = LivenessMonitor(store, target, clock=_clock)

        assert monitor.find_dead_runs() == []
        report = monitor.sweep()
        assert report.requeued == []
        assert store.counts().processing == 2

    def test_nothing_to_reclaim(self, store: TicketStore, temp_dir: Path) -> None:
        report = LivenessMonitor(store, temp_dir / "missing", clock=_clock).sweep()
        assert report == SweepReport()

    def test_run_stops_on_event(self, store: TicketStore, temp_dir: Path) -> None:
        stop = threading.Event()
        reports: list[SweepReport] = []

        def on_sweep(report: SweepReport) -> None:
            reports.append(report)
            stop.set()

        monitor = LivenessMonitor(store, temp_dir, clock=_clock)
        thread = threading.Thread(target=monitor.run, args=(60.0, stop, on_sweep))
        thread.start()
        thread.join(timeout=5.0)

        assert not thread.is_alive()
        assert len(reports) == 1
