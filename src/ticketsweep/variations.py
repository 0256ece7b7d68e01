# Copyright (c) Syntropy Systems
"""Variation spaces and run-level idempotence."""
from __future__ import annotations

import itertools
import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, cast

from pydantic import ValidationError

from ticketsweep.models.ticket import (
    FeatureContent,
    FeatureValue,
    VariationSet,
    contents_match,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from ticketsweep.features import FeatureRegistry

logger = logging.getLogger(__name__)

VARIATION_LOG = "variations.json"

Combination = tuple[int, ...]


@dataclass(frozen=True)
class Dimension:
    """One feature contributing alternatives to a variation space."""

    feature_id: int
    size: int


class VariationSpace:
    """Cartesian product over every feature that carries alternatives.

    Combinations are enumerated lexicographically over the dimension order
    established by ``build()``. Realized variations are always reported by
    feature identifier, never by position.
    """

    registry: FeatureRegistry
    dimensions: list[Dimension]
    ordinals: dict[int, int]
    current_index: int
    _iterator: Iterator[Combination] | None
    _pending: Combination | None

    def __init__(self, registry: FeatureRegistry) -> None:
        self.registry = registry
        self.dimensions = []
        self.ordinals = {}
        self.current_index = 0
        self._iterator = None
        self._pending = None

    def build(self) -> VariationSpace:
        """Collect the variable features of the registry."""
        self.dimensions = [
            Dimension(feature_id=feature.identifier, size=len(feature.alternatives))
            for feature in self.registry.variable_features()
        ]
        self.ordinals = {
            ordinal: dimension.feature_id for ordinal, dimension in enumerate(self.dimensions)
        }
        self.current_index = 0
        self._iterator = self.enumerate()
        self._pending = None
        return self

    @property
    def size(self) -> int:
        """Number of combinations in the space."""
        return math.prod(dimension.size for dimension in self.dimensions)

    def enumerate(self) -> Iterator[Combination]:
        """Lazily yield every combination in lexicographic order.

        Without dimensions this yields the single empty combination, which
        stands for the base configuration.
        """
        return itertools.product(*(range(dimension.size) for dimension in self.dimensions))

    def mapping(self, combination: Combination) -> dict[int, int]:
        """Translate a combination into ``{feature identifier: alternative index}``."""
        if len(combination) != len(self.dimensions):
            msg = (
                f"Combination has {len(combination)} indices, "
                f"space has {len(self.dimensions)} dimensions"
            )
            raise ValueError(msg)
        return {self.ordinals[ordinal]: index for ordinal, index in enumerate(combination)}

    def apply(self, combination: Combination) -> VariationSet:
        """Select the combination's alternatives in the registry."""
        features: list[FeatureValue] = []
        for feature_id, index in self.mapping(combination).items():
            feature = self.registry.get(feature_id)
            feature.select(index)
            features.append(
                FeatureValue(identifier=feature.identifier, name=feature.name, content=feature.value)
            )
        return VariationSet(features=features)

    def has_variations_left(self) -> bool:
        """Return whether ``apply_next`` would produce another variation."""
        if self._iterator is None:
            return False
        if self._pending is None:
            self._pending = next(self._iterator, None)
        return self._pending is not None

    def apply_next(self) -> VariationSet | None:
        """Apply the next combination, or return None once the space is exhausted."""
        if not self.has_variations_left():
            return None
        combination, self._pending = self._pending, None
        self.current_index += 1
        return self.apply(cast("Combination", combination))

    def variations(self) -> Iterator[VariationSet]:
        """Apply and yield every remaining variation."""
        while (variation := self.apply_next()) is not None:
            yield variation

    def describe(self) -> list[str]:
        """One line per dimension, for console output."""
        lines: list[str] = []
        for dimension in self.dimensions:
            feature = self.registry.get(dimension.feature_id)
            lines.append(f"{feature.name} [{feature.identifier}]: {dimension.size} alternatives")
        return lines


def write_variation_log(variation_set: VariationSet, run_dir: Path) -> Path:
    """Write ``variations.json`` into a run directory."""
    log_path = run_dir / VARIATION_LOG
    _ = log_path.write_text(variation_set.model_dump_json(indent=2))
    return log_path


def read_variation_log(log_path: Path) -> VariationSet:
    """Read a ``variations.json`` file."""
    return VariationSet.model_validate_json(log_path.read_text())


def load_processed_variations(search_root: Path) -> dict[str, dict[int, FeatureContent]]:
    """Map every run directory under search_root to its recorded feature values.

    Directories without a variation log are ignored; unreadable logs are
    skipped with a warning.
    """
    processed: dict[str, dict[int, FeatureContent]] = {}
    if not search_root.is_dir():
        return processed

    try:
        run_dirs = sorted(path for path in search_root.iterdir() if path.is_dir())
    except OSError as exc:
        logger.warning("Unable to list run directories in %s: %s", search_root, exc)
        return processed

    for run_dir in run_dirs:
        log_path = run_dir / VARIATION_LOG
        if not log_path.is_file():
            continue
        try:
            processed[run_dir.name] = read_variation_log(log_path).as_mapping()
        except (OSError, ValidationError) as exc:
            logger.warning("Skipping unreadable variation log %s: %s", log_path, exc)
    return processed


def find_processed(
    candidate: VariationSet,
    processed: dict[str, dict[int, FeatureContent]],
) -> str | None:
    """Return the first run whose recorded values match every candidate value."""
    for run_id, recorded in processed.items():
        if all(
            feature.identifier in recorded
            and contents_match(feature.content, recorded[feature.identifier])
            for feature in candidate.features
        ):
            return run_id
    return None


def already_processed(candidate: VariationSet, search_root: Path) -> str | None:
    """Return the run directory name that already holds candidate, if any."""
    return find_processed(candidate, load_processed_variations(search_root))
