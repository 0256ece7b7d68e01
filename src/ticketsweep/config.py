# Copyright (c) Syntropy Systems
"""Configuration management for ticketsweep."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

CONFIG_FILE = "config.yaml"

DEFAULT_CONFIG_YAML = """\
# ticketsweep configuration

# Heartbeat age after which a run is considered dead (seconds)
death_threshold: 300

# Pause between liveness sweeps (seconds)
sweep_interval: 300

# Pause between heartbeats of a running simulation (seconds)
heartbeat_interval: 30

# Pause between claim attempts while other workers hold the open tickets (seconds)
poll_interval: 5

# Claim attempts without success before a worker gives up
max_idle_polls: 12

# Simulation engine as package.module:attribute
# engine: mysim.engine:Engine
"""


@dataclass
class TicketSweepConfig:
    """Configuration for ticketsweep."""

    # Heartbeat age after which a run is considered dead (seconds)
    death_threshold: int = 300

    # Interval between liveness sweeps (seconds)
    sweep_interval: int = 300

    # Interval between heartbeats (seconds)
    heartbeat_interval: int = 30

    # Poll interval for a worker whose claims keep failing (seconds)
    poll_interval: int = 5

    # Failed polls before a worker stops
    max_idle_polls: int = 12

    # Engine spec, package.module:attribute
    engine: str | None = None

    @property
    def death_threshold_ms(self) -> int:
        """Death threshold in milliseconds."""
        return self.death_threshold * 1000


def get_global_config_dir() -> Path:
    """Get the global ticketsweep config directory (~/.ticketsweep)."""
    return Path.home() / ".ticketsweep"


def find_config_file(ticket_root: Path | None = None) -> Path | None:
    """Return the config file that applies to a ticket root, if any.

    Looks for config in:
    1. <ticket_root>/config.yaml
    2. ~/.ticketsweep/config.yaml
    """
    if ticket_root is not None:
        local = ticket_root / CONFIG_FILE
        if local.exists():
            return local

    global_config = get_global_config_dir() / CONFIG_FILE
    if global_config.exists():
        return global_config
    return None


def load_config(ticket_root: Path | None = None) -> TicketSweepConfig:
    """Load configuration from config.yaml or defaults."""
    config = TicketSweepConfig()

    config_path = find_config_file(ticket_root)
    if config_path is None:
        return config

    with config_path.open() as f:
        data = cast("dict[str, object]", yaml.safe_load(f) or {})

    death_threshold = data.get("death_threshold")
    if isinstance(death_threshold, (int, float)):
        config.death_threshold = int(death_threshold)
    sweep_interval = data.get("sweep_interval")
    if isinstance(sweep_interval, (int, float)):
        config.sweep_interval = int(sweep_interval)
    heartbeat_interval = data.get("heartbeat_interval")
    if isinstance(heartbeat_interval, (int, float)):
        config.heartbeat_interval = int(heartbeat_interval)
    poll_interval = data.get("poll_interval")
    if isinstance(poll_interval, (int, float)):
        config.poll_interval = int(poll_interval)
    max_idle_polls = data.get("max_idle_polls")
    if isinstance(max_idle_polls, int):
        config.max_idle_polls = max_idle_polls
    engine = data.get("engine")
    if isinstance(engine, str):
        config.engine = engine

    return config


def write_default_config(ticket_root: Path) -> Path:
    """Write the default config.yaml into a ticket root."""
    config_path = ticket_root / CONFIG_FILE
    _ = config_path.write_text(DEFAULT_CONFIG_YAML)
    return config_path
