# Copyright (c) Syntropy Systems
"""Pydantic models for tickets, variation logs and queue state."""

from __future__ import annotations

import re
from pathlib import PurePath
from typing import ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, JsonValue
from typing_extensions import TypeAlias

JSONPrimitive: TypeAlias = Union[str, int, float, bool, None]
JSONValue: TypeAlias = JsonValue
JSONObject: TypeAlias = dict[str, JSONValue]

_QUANTITY_PATTERN = re.compile(r"^\s*([-+]?[0-9]*\.?[0-9]+(?:[eE][-+]?[0-9]+)?)\s*([A-Za-z]+)\s*$")

# Seconds per supported time unit
TIME_UNITS: dict[str, float] = {
    "us": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "min": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}


class TicketSweepBaseModel(BaseModel):
    """Shared config: unknown keys in ticket and log files are ignored."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
    )


class Quantity(TicketSweepBaseModel):
    """A numeric value paired with the unit it was expressed in."""

    value: float
    unit: str = ""

    @classmethod
    def parse_time(cls, text: str) -> Quantity:
        """Parse a time such as ``10s``, ``0.5min`` or ``1.5h``."""
        match = _QUANTITY_PATTERN.match(text)
        if match is None or match.group(2) not in TIME_UNITS:
            units = ", ".join(TIME_UNITS)
            msg = f"Invalid time '{text}' (expected <number><unit> with unit one of {units})"
            raise ValueError(msg)
        return cls(value=float(match.group(1)), unit=match.group(2))

    def in_seconds(self) -> float:
        """Convert a time quantity to seconds."""
        if self.unit not in TIME_UNITS:
            msg = f"'{self.unit}' is not a time unit"
            raise ValueError(msg)
        return self.value * TIME_UNITS[self.unit]

    def divided_by(self, divisor: float) -> Quantity:
        """Return this quantity divided by a plain number, keeping the unit."""
        return Quantity(value=self.value / divisor, unit=self.unit)

    def __str__(self) -> str:
        return f"{self.value:g} {self.unit}".rstrip()


FeatureContent: TypeAlias = Union[Quantity, JSONPrimitive]


def magnitude(content: FeatureContent) -> JSONPrimitive:
    """Strip the unit from a quantity so values compare by scalar magnitude."""
    if isinstance(content, Quantity):
        return content.value
    return content


def contents_match(left: FeatureContent, right: FeatureContent) -> bool:
    """Compare two feature contents, quantities by magnitude only."""
    left_value = magnitude(left)
    right_value = magnitude(right)
    if isinstance(left_value, (int, float)) and isinstance(right_value, (int, float)):
        return float(left_value) == float(right_value)
    return left_value == right_value


class FeatureValue(TicketSweepBaseModel):
    """The concrete value a feature took in one variation."""

    identifier: int
    name: Optional[str] = None
    content: FeatureContent = None


class VariationSet(TicketSweepBaseModel):
    """Concrete feature values applied to a single run (``variations.json``)."""

    features: list[FeatureValue] = Field(default_factory=list)

    def as_mapping(self) -> dict[int, FeatureContent]:
        """Return ``{feature identifier: content}``."""
        return {feature.identifier: feature.content for feature in self.features}

    def describe(self) -> str:
        """Return a short human readable summary."""
        if not self.features:
            return "(base configuration)"
        return ", ".join(
            f"{feature.name or feature.identifier}={feature.content}"
            for feature in self.features
        )


class FeatureAssignment(FeatureValue):
    """A feature value carried by a ticket, with the index it was drawn from."""

    alternative_index: Optional[int] = None


class RunConfiguration(TicketSweepBaseModel):
    """How long to simulate, how often to observe and in which units to record."""

    total_time: Quantity
    observation_time: Quantity
    observed_time_unit: str = "s"
    observed_concentration_unit: str = "nM"


class Ticket(TicketSweepBaseModel):
    """A persisted unit of work: one variation plus its run configuration."""

    identifier: str
    simulation: str
    features: list[FeatureAssignment] = Field(default_factory=list)
    configuration: RunConfiguration

    def variation_set(self) -> VariationSet:
        """Return the feature values of this ticket as a variation log."""
        return VariationSet(
            features=[
                FeatureValue(
                    identifier=feature.identifier,
                    name=feature.name,
                    content=feature.content,
                )
                for feature in self.features
            ]
        )

    @property
    def simulation_stem(self) -> str:
        """Setup document name without its extension."""
        return PurePath(self.simulation).stem


class QueueCounts(TicketSweepBaseModel):
    """Number of ticket files per queue state."""

    open: int = 0
    processing: int = 0
    done: int = 0

    @property
    def total(self) -> int:
        """Total tickets across all states."""
        return self.open + self.processing + self.done
