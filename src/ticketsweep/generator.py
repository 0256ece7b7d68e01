# Copyright (c) Syntropy Systems
"""Materialize every variation of a setup document as an open ticket."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ticketsweep.errors import SetupError
from ticketsweep.features import FeatureRegistry
from ticketsweep.models.ticket import (
    FeatureAssignment,
    Quantity,
    RunConfiguration,
    Ticket,
    VariationSet,
)
from ticketsweep.variations import VariationSpace, find_processed, load_processed_variations

if TYPE_CHECKING:
    from pathlib import Path

    from ticketsweep.engine import SimulationEngine
    from ticketsweep.models.ticket import FeatureContent
    from ticketsweep.tickets import TicketStore

logger = logging.getLogger(__name__)


def build_configuration(
    total_time: Quantity,
    observations: float = 100.0,
    observed_time_unit: str = "s",
    observed_concentration_unit: str = "nM",
) -> RunConfiguration:
    """Derive the observation interval from the total time and observation count."""
    if observations <= 0:
        msg = f"Number of observations must be positive, got {observations}"
        raise ValueError(msg)
    return RunConfiguration(
        total_time=total_time,
        observation_time=total_time.divided_by(observations),
        observed_time_unit=observed_time_unit,
        observed_concentration_unit=observed_concentration_unit,
    )


@dataclass
class GenerationReport:
    """Outcome of a generation run."""

    space_size: int = 0
    dimensions: list[str] = field(default_factory=list)
    tickets: list[Ticket] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)

    @property
    def written(self) -> int:
        """Number of tickets generated."""
        return len(self.tickets)


def _assignments(variation: VariationSet, registry: FeatureRegistry) -> list[FeatureAssignment]:
    return [
        FeatureAssignment(
            identifier=feature.identifier,
            name=feature.name,
            content=feature.content,
            alternative_index=registry.get(feature.identifier).selected,
        )
        for feature in variation.features
    ]


def generate_tickets(
    setup_path: Path,
    store: TicketStore,
    engine: SimulationEngine,
    configuration: RunConfiguration,
    limit: int | None = None,
    skip_processed: Path | None = None,
    dry_run: bool = False,
) -> GenerationReport:
    """Write one ticket per variation of the setup document into open/.

    Args:
        setup_path: Setup document; tickets refer to it by file name
        store: Queue receiving the tickets
        engine: Engine that parses the setup and registers its features
        configuration: Run configuration copied into every ticket
        limit: Stop after this many tickets
        skip_processed: Target root of an earlier sweep; variations with a
            matching ``variations.json`` below ``<root>/<setup stem>`` are skipped
        dry_run: Build the tickets without writing them

    Raises:
        SetupError: If the setup document cannot be read or parsed.

    """
    try:
        document = setup_path.read_text()
    except OSError as exc:
        msg = f"Unable to read simulation setup {setup_path}: {exc}"
        raise SetupError(msg) from exc

    registry = FeatureRegistry()
    representation = engine.parse_setup(document)
    engine.load_features(representation, registry)
    # Building once surfaces setup errors before any ticket is written
    _ = engine.build_simulation(representation, registry)

    space = VariationSpace(registry).build()
    report = GenerationReport(space_size=space.size, dimensions=space.describe())
    logger.info("Setup %s spans %d variation(s)", setup_path.name, space.size)

    processed: dict[str, dict[int, FeatureContent]] = {}
    if skip_processed is not None:
        processed = load_processed_variations(skip_processed / setup_path.stem)
        logger.info("Found %d processed run(s) below %s", len(processed), skip_processed)

    if not dry_run:
        store.create_directories()

    for variation in space.variations():
        if limit is not None and report.written >= limit:
            break
        run_id = find_processed(variation, processed) if processed else None
        if run_id is not None:
            logger.debug("Variation %s already processed in %s", variation.describe(), run_id)
            report.skipped[variation.describe()] = run_id
            continue

        ticket = Ticket(
            identifier=str(uuid.uuid4()),
            simulation=setup_path.name,
            features=_assignments(variation, registry),
            configuration=configuration,
        )
        if not dry_run:
            _ = store.write_ticket(ticket)
        report.tickets.append(ticket)

    logger.info(
        "Generated %d ticket(s), skipped %d processed variation(s)",
        report.written,
        len(report.skipped),
    )
    return report
