"""Bus registry: per-bus parameter arrays and layout."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

from nodalflow.network.labels import LabelRegistry


class BusType(IntEnum):
    PQ = 1
    PV = 2
    SLACK = 3


@dataclass
class BusDemand:
    active: list[float] = field(default_factory=list)
    reactive: list[float] = field(default_factory=list)


@dataclass
class BusShunt:
    conductance: list[float] = field(default_factory=list)
    susceptance: list[float] = field(default_factory=list)


@dataclass
class BusVoltage:
    magnitude: list[float] = field(default_factory=list)
    angle: list[float] = field(default_factory=list)
    min_magnitude: list[float] = field(default_factory=list)
    max_magnitude: list[float] = field(default_factory=list)


@dataclass
class BusLayout:
    type: list[BusType] = field(default_factory=list)
    area: list[int] = field(default_factory=list)
    loss_zone: list[int] = field(default_factory=list)
    slack: int = -1  # dense index, -1 when no slack is designated
    pattern: int = 0  # bumped on every bus type change


@dataclass
class BusSupply:
    """Aggregated output of in-service generators, per bus.

    ``generator[i]`` holds the sorted indices of in-service generators at
    bus ``i``. Kept consistent by every generator mutation.
    """
    active: list[float] = field(default_factory=list)
    reactive: list[float] = field(default_factory=list)
    generator: list[list[int]] = field(default_factory=list)


@dataclass
class Bus:
    label: LabelRegistry = field(default_factory=lambda: LabelRegistry("bus"))
    demand: BusDemand = field(default_factory=BusDemand)
    supply: BusSupply = field(default_factory=BusSupply)
    shunt: BusShunt = field(default_factory=BusShunt)
    voltage: BusVoltage = field(default_factory=BusVoltage)
    layout: BusLayout = field(default_factory=BusLayout)

    @property
    def number(self) -> int:
        return len(self.layout.type)

    def index(self, label: int | str) -> int:
        return self.label.index(label)
