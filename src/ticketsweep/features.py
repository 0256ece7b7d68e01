# Copyright (c) Syntropy Systems
"""Simulation features and the parameter store that holds them.

A feature is a named simulation parameter with a base value and an optional
list of alternative values. Exactly one alternative can be active at a time;
ticket redemption and variation enumeration select alternatives by index.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, cast

from ticketsweep.models.ticket import FeatureContent, Quantity, contents_match

if TYPE_CHECKING:
    from collections.abc import Iterator

    from ticketsweep.models.ticket import JSONValue


class FeatureKind(str, Enum):
    """Kinds of features, in the order variation spaces visit them."""

    QUALITATIVE = "qualitative"
    QUANTITATIVE = "quantitative"
    SCALABLE = "scalable"


@dataclass
class Feature:
    """A simulation parameter with alternative values."""

    identifier: int
    name: str
    kind: FeatureKind = FeatureKind.QUALITATIVE
    content: JSONValue = None
    unit: str | None = None
    alternatives: list[JSONValue] = field(default_factory=list)
    selected: int | None = None

    def _realize(self, raw: JSONValue) -> FeatureContent:
        if self.kind is FeatureKind.QUALITATIVE or not isinstance(raw, (int, float)):
            return cast("FeatureContent", raw)
        return Quantity(value=float(raw), unit=self.unit or "")

    @property
    def value(self) -> FeatureContent:
        """The active alternative if one is selected, else the base content."""
        if self.selected is None:
            return self._realize(self.content)
        return self._realize(self.alternatives[self.selected])

    def alternative_values(self) -> list[FeatureContent]:
        """Alternatives realized as they would appear in a run."""
        return [self._realize(raw) for raw in self.alternatives]

    def index_of(self, content: FeatureContent) -> int | None:
        """Find the alternative equal to content (quantities by magnitude)."""
        for index, candidate in enumerate(self.alternative_values()):
            if contents_match(candidate, content):
                return index
        return None

    def select(self, index: int) -> None:
        """Make the alternative at index the active value."""
        if not 0 <= index < len(self.alternatives):
            msg = (
                f"Alternative index {index} out of range for feature "
                f"{self.identifier} ({len(self.alternatives)} alternatives)"
            )
            raise IndexError(msg)
        self.selected = index

    @property
    def is_variable(self) -> bool:
        """True when the feature contributes a dimension to a variation space."""
        return len(self.alternatives) > 1

    def __str__(self) -> str:
        return f"{self.name} [{self.identifier}] = {self.value}"


class FeatureRegistry:
    """Insertion-ordered store of features, keyed by identifier.

    One registry belongs to one simulation setup. Workers build a fresh
    registry per ticket, so nothing here is shared between runs.
    """

    _features: dict[int, Feature]

    def __init__(self) -> None:
        self._features = {}

    def register(self, feature: Feature) -> Feature:
        """Add a feature, replacing any feature with the same identifier."""
        self._features[feature.identifier] = feature
        return feature

    def get(self, identifier: int) -> Feature:
        """Return the feature with the given identifier.

        Raises:
            KeyError: If no such feature is registered.

        """
        try:
            return self._features[identifier]
        except KeyError:
            msg = f"Unknown feature identifier {identifier}"
            raise KeyError(msg) from None

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._features

    def __iter__(self) -> Iterator[Feature]:
        return iter(self._features.values())

    def __len__(self) -> int:
        return len(self._features)

    def features_of(self, kind: FeatureKind) -> list[Feature]:
        """Return features of one kind in registration order."""
        return [feature for feature in self._features.values() if feature.kind is kind]

    def variable_features(self) -> list[Feature]:
        """Features with more than one alternative, in a stable order.

        Ordered by kind (qualitative, quantitative, scalable), then by
        registration order. The order only depends on the setup document, so
        every process derives the same variation space.
        """
        ordered: list[Feature] = []
        for kind in FeatureKind:
            ordered.extend(feature for feature in self.features_of(kind) if feature.is_variable)
        return ordered


def register_document_features(
    document: dict[str, JSONValue],
    registry: FeatureRegistry,
) -> list[Feature]:
    """Register the ``features`` section of a JSON setup document.

    Each entry needs ``identifier`` and may carry ``name``, ``kind``,
    ``content``, ``unit`` and ``alternative-values``.

    Raises:
        ValueError: If the section or one of its entries is malformed.

    """
    entries = document.get("features", [])
    if not isinstance(entries, list):
        msg = "'features' must be a list"
        raise ValueError(msg)

    registered: list[Feature] = []
    for position, entry in enumerate(entries):
        if not isinstance(entry, dict):
            msg = f"Feature entry {position} must be an object"
            raise ValueError(msg)
        identifier = entry.get("identifier")
        if not isinstance(identifier, int) or isinstance(identifier, bool):
            msg = f"Feature entry {position} needs an integer 'identifier'"
            raise ValueError(msg)
        alternatives = entry.get("alternative-values", [])
        if not isinstance(alternatives, list):
            msg = f"Feature {identifier}: 'alternative-values' must be a list"
            raise ValueError(msg)
        kind_name = entry.get("kind", FeatureKind.QUALITATIVE.value)
        try:
            kind = FeatureKind(kind_name)
        except ValueError:
            msg = f"Feature {identifier}: unknown kind {kind_name!r}"
            raise ValueError(msg) from None
        unit = entry.get("unit")
        registered.append(
            registry.register(
                Feature(
                    identifier=identifier,
                    name=str(entry.get("name", f"feature-{identifier}")),
                    kind=kind,
                    content=entry.get("content"),
                    unit=unit if isinstance(unit, str) else None,
                    alternatives=list(alternatives),
                )
            )
        )
    return registered
