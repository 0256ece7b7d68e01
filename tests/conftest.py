# Copyright (c) Syntropy Systems
"""Pytest fixtures for ticketsweep tests."""

import json
import tempfile
import uuid
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from ticketsweep.features import Feature, FeatureKind, FeatureRegistry
from ticketsweep.models.ticket import FeatureAssignment, Quantity, RunConfiguration, Ticket
from ticketsweep.tickets import TicketStore

SETUP_DOCUMENT = {
    "name": "vesicle transport",
    "features": [
        {
            "identifier": 1,
            "name": "membrane model",
            "kind": "qualitative",
            "content": "flat",
            "alternative-values": ["flat", "curved"],
        },
        {
            "identifier": 2,
            "name": "diffusivity",
            "kind": "quantitative",
            "content": 1.0,
            "unit": "um^2/s",
            "alternative-values": [0.5, 1.0, 2.0],
        },
        {
            "identifier": 3,
            "name": "temperature",
            "kind": "quantitative",
            "content": 310.0,
            "unit": "K",
        },
    ],
}


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def ticket_root(temp_dir: Path) -> Path:
    """Create a ticket directory with empty queues."""
    root = temp_dir / "tickets"
    TicketStore(root).create_directories()
    return root


@pytest.fixture
def store(ticket_root: Path) -> TicketStore:
    """Ticket store on the temporary ticket directory."""
    return TicketStore(ticket_root)


@pytest.fixture
def setup_path(temp_dir: Path) -> Path:
    """Write the sample setup document next to the ticket directory."""
    path = temp_dir / "setup.json"
    path.write_text(json.dumps(SETUP_DOCUMENT, indent=2))
    return path


@pytest.fixture
def registry() -> FeatureRegistry:
    """Registry with one qualitative and two quantitative features."""
    registry = FeatureRegistry()
    registry.register(
        Feature(
            identifier=1,
            name="membrane model",
            kind=FeatureKind.QUALITATIVE,
            content="flat",
            alternatives=["flat", "curved"],
        )
    )
    registry.register(
        Feature(
            identifier=2,
            name="diffusivity",
            kind=FeatureKind.QUANTITATIVE,
            content=1.0,
            unit="um^2/s",
            alternatives=[0.5, 1.0, 2.0],
        )
    )
    registry.register(
        Feature(
            identifier=3,
            name="temperature",
            kind=FeatureKind.QUANTITATIVE,
            content=310.0,
            unit="K",
        )
    )
    return registry


def build_ticket(
    membrane: str = "curved",
    diffusivity: float = 2.0,
    simulation: str = "setup.json",
) -> Ticket:
    """Build a ticket for the sample setup."""
    return Ticket(
        identifier=str(uuid.uuid4()),
        simulation=simulation,
        features=[
            FeatureAssignment(identifier=1, name="membrane model", content=membrane),
            FeatureAssignment(
                identifier=2,
                name="diffusivity",
                content=Quantity(value=diffusivity, unit="um^2/s"),
            ),
        ],
        configuration=RunConfiguration(
            total_time=Quantity(value=1.0, unit="s"),
            observation_time=Quantity(value=0.01, unit="s"),
        ),
    )


@pytest.fixture
def make_ticket() -> Callable[..., Ticket]:
    """Factory for tickets of the sample setup."""
    return build_ticket


@pytest.fixture
def setup_document() -> dict:
    """The sample setup document as parsed JSON."""
    return json.loads(json.dumps(SETUP_DOCUMENT))
