"""Branch registry: π-model parameters, ratings and layout."""

from __future__ import annotations

from dataclasses import dataclass, field

from nodalflow.network.labels import LabelRegistry


@dataclass
class BranchParameter:
    resistance: list[float] = field(default_factory=list)
    reactance: list[float] = field(default_factory=list)
    conductance: list[float] = field(default_factory=list)
    susceptance: list[float] = field(default_factory=list)
    # 0.0 is accepted and read as a nominal ratio of 1.0
    turns_ratio: list[float] = field(default_factory=list)
    shift_angle: list[float] = field(default_factory=list)


@dataclass
class BranchRating:
    long_term: list[float] = field(default_factory=list)
    short_term: list[float] = field(default_factory=list)
    emergency: list[float] = field(default_factory=list)


@dataclass
class BranchVoltage:
    min_diff_angle: list[float] = field(default_factory=list)
    max_diff_angle: list[float] = field(default_factory=list)


@dataclass
class BranchLayout:
    from_bus: list[int] = field(default_factory=list)
    to_bus: list[int] = field(default_factory=list)
    status: list[int] = field(default_factory=list)
    in_service: int = 0


@dataclass
class Branch:
    label: LabelRegistry = field(default_factory=lambda: LabelRegistry("branch"))
    parameter: BranchParameter = field(default_factory=BranchParameter)
    rating: BranchRating = field(default_factory=BranchRating)
    voltage: BranchVoltage = field(default_factory=BranchVoltage)
    layout: BranchLayout = field(default_factory=BranchLayout)

    @property
    def number(self) -> int:
        return len(self.layout.status)

    def index(self, label: int | str) -> int:
        return self.label.index(label)

    def turns_ratio(self, idx: int) -> float:
        """Effective turns ratio of branch ``idx``."""
        ratio = self.parameter.turns_ratio[idx]
        return 1.0 if ratio == 0.0 else ratio
