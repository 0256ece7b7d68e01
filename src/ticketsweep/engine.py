# Copyright (c) Syntropy Systems
"""Boundary to the numerical simulation engine.

The scheduler never looks inside a setup document or a trajectory. It asks
an engine to parse the setup, register its features, build a simulation
from the selected values and run it.
"""
from __future__ import annotations

import importlib
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ticketsweep.errors import SetupError
from ticketsweep.features import register_document_features

if TYPE_CHECKING:
    from pathlib import Path

    from ticketsweep.features import FeatureRegistry
    from ticketsweep.models.ticket import JSONObject, JSONValue
    from ticketsweep.models.ticket import FeatureContent, RunConfiguration, Ticket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunRequest:
    """Everything an engine needs to run one ticket."""

    ticket: Ticket
    run_dir: Path
    configuration: RunConfiguration


@runtime_checkable
class SimulationEngine(Protocol):
    def parse_setup(self, document: str) -> object:
        ...

    def load_features(self, representation: object, registry: FeatureRegistry) -> None:
        ...

    def build_simulation(self, representation: object, registry: FeatureRegistry) -> object:
        ...

    def run(self, simulation: object, request: RunRequest) -> JSONValue:
        ...


@dataclass
class SetupSimulation:
    """A parsed setup together with the feature values selected for one run."""

    representation: JSONObject
    values: dict[int, FeatureContent] = field(default_factory=dict)


class JsonSetupEngine:
    """Engine front end for JSON setup documents with a ``features`` array.

    Parses and builds simulations but cannot run them. Concrete engines
    subclass it and implement ``run``.
    """

    def parse_setup(self, document: str) -> JSONObject:
        try:
            representation = json.loads(document)
        except json.JSONDecodeError as exc:
            msg = f"Setup document is not valid JSON: {exc}"
            raise SetupError(msg) from exc
        if not isinstance(representation, dict):
            msg = "Setup document must be a JSON object"
            raise SetupError(msg)
        return representation

    def load_features(self, representation: object, registry: FeatureRegistry) -> None:
        if not isinstance(representation, dict):
            msg = "Setup representation must be a JSON object"
            raise SetupError(msg)
        try:
            features = register_document_features(representation, registry)
        except ValueError as exc:
            raise SetupError(str(exc)) from exc
        logger.debug("Registered %d feature(s)", len(features))

    def build_simulation(self, representation: object, registry: FeatureRegistry) -> SetupSimulation:
        if not isinstance(representation, dict):
            msg = "Setup representation must be a JSON object"
            raise SetupError(msg)
        return SetupSimulation(
            representation=representation,
            values={feature.identifier: feature.value for feature in registry},
        )

    def run(self, simulation: object, request: RunRequest) -> JSONValue:
        msg = f"{type(self).__name__} cannot run simulations"
        raise NotImplementedError(msg)


def load_engine(spec: str | None = None) -> SimulationEngine:
    """Load an engine from ``package.module:attribute``.

    The attribute may be an engine instance, a class or a zero-argument
    factory. Without a spec the plain ``JsonSetupEngine`` is returned.

    Raises:
        SetupError: If the engine cannot be imported or does not look like
            an engine.

    """
    if not spec:
        return JsonSetupEngine()

    module_name, _, attribute = spec.partition(":")
    if not module_name or not attribute:
        msg = f"Invalid engine '{spec}' (expected package.module:attribute)"
        raise SetupError(msg)

    try:
        module = importlib.import_module(module_name)
        target = getattr(module, attribute)
    except (ImportError, AttributeError) as exc:
        msg = f"Could not load engine '{spec}': {exc}"
        raise SetupError(msg) from exc

    engine: object = target
    # Classes pass the protocol check too, so instantiate them explicitly
    if isinstance(target, type) or not isinstance(target, SimulationEngine):
        if not callable(target):
            msg = f"Engine '{spec}' is neither an engine nor a factory"
            raise SetupError(msg)
        try:
            engine = target()
        except TypeError as exc:
            msg = f"Could not create engine '{spec}': {exc}"
            raise SetupError(msg) from exc
    if isinstance(engine, type) or not isinstance(engine, SimulationEngine):
        msg = f"Engine '{spec}' does not implement parse_setup/load_features/build_simulation/run"
        raise SetupError(msg)
    return engine
