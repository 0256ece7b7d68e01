# Copyright (c) Syntropy Systems
"""Heartbeat files that tell the liveness monitor a run is still going."""
from __future__ import annotations

import logging
import os
import time
from threading import Event, Thread
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

ALIVE_FILE = "alive"
DONE_SENTINEL = "done"


def now_millis() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _write_atomic(path: Path, content: str) -> None:
    temporary = path.with_name(f".{path.name}.tmp")
    _ = temporary.write_text(content)
    os.replace(temporary, path)


def write_alive(run_dir: Path, timestamp_ms: int | None = None) -> Path:
    """Write a liveness timestamp into the run directory."""
    alive_path = run_dir / ALIVE_FILE
    _write_atomic(alive_path, str(now_millis() if timestamp_ms is None else timestamp_ms))
    return alive_path


def create_run_directory(run_dir: Path) -> Path:
    """Create run_dir with its first heartbeat already inside.

    A new directory is assembled under a hidden name and renamed into place,
    so the liveness monitor never sees it without an ``alive`` file. An
    existing directory just gets a fresh heartbeat.
    """
    if run_dir.is_dir():
        _ = write_alive(run_dir)
        return run_dir

    run_dir.parent.mkdir(parents=True, exist_ok=True)
    staging = run_dir.with_name(f".{run_dir.name}.staging")
    staging.mkdir(exist_ok=True)
    _ = write_alive(staging)
    os.replace(staging, run_dir)
    return run_dir


def write_done(run_dir: Path) -> Path:
    """Mark a run as finished; finished runs are never reclaimed."""
    alive_path = run_dir / ALIVE_FILE
    _write_atomic(alive_path, DONE_SENTINEL)
    return alive_path


class Heartbeat:
    """Background thread that refreshes a run's ``alive`` file.

    ``start()`` writes the first beat synchronously. Create the directory
    with ``create_run_directory`` so it never appears without one.
    """

    _run_dir: Path
    _interval: float
    _stop_event: Event
    _thread: Thread | None

    def __init__(self, run_dir: Path, interval: float = 30.0) -> None:
        """Initialize a heartbeat.

        Args:
            run_dir: Run directory that receives the ``alive`` file
            interval: Seconds between beats

        """
        self._run_dir = run_dir
        self._interval = interval
        self._stop_event = Event()
        self._thread = None

    @property
    def alive_path(self) -> Path:
        """Path of the heartbeat file."""
        return self._run_dir / ALIVE_FILE

    def beat(self) -> None:
        """Write one heartbeat now."""
        _ = write_alive(self._run_dir)

    def start(self) -> None:
        """Write the first beat and start beating in the background."""
        if self._thread is not None:
            return

        self.beat()
        self._stop_event.clear()
        self._thread = Thread(target=self._beat_loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop beating; the last timestamp stays on disk and goes stale."""
        if self._thread is None:
            return

        self._stop_event.set()
        self._thread.join(timeout=2.0)
        self._thread = None

    def finish(self) -> None:
        """Stop beating and mark the run as done."""
        self.stop()
        _ = write_done(self._run_dir)

    def _beat_loop(self) -> None:
        while not self._stop_event.wait(timeout=self._interval):
            try:
                self.beat()
            except OSError as exc:
                logger.warning("Heartbeat for %s failed: %s", self._run_dir, exc)
