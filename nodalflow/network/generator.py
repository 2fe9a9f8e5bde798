"""Generator registry: outputs, capability limits and layout."""

from __future__ import annotations

from dataclasses import dataclass, field

from nodalflow.network.labels import LabelRegistry


@dataclass
class GeneratorOutput:
    active: list[float] = field(default_factory=list)
    reactive: list[float] = field(default_factory=list)


@dataclass
class GeneratorCapability:
    min_active: list[float] = field(default_factory=list)
    max_active: list[float] = field(default_factory=list)
    # Reactive bounds may be infinite
    min_reactive: list[float] = field(default_factory=list)
    max_reactive: list[float] = field(default_factory=list)


@dataclass
class GeneratorVoltage:
    magnitude: list[float] = field(default_factory=list)


@dataclass
class GeneratorLayout:
    bus: list[int] = field(default_factory=list)
    area: list[int] = field(default_factory=list)
    status: list[int] = field(default_factory=list)
    in_service: int = 0


@dataclass
class Generator:
    label: LabelRegistry = field(default_factory=lambda: LabelRegistry("generator"))
    output: GeneratorOutput = field(default_factory=GeneratorOutput)
    capability: GeneratorCapability = field(default_factory=GeneratorCapability)
    voltage: GeneratorVoltage = field(default_factory=GeneratorVoltage)
    layout: GeneratorLayout = field(default_factory=GeneratorLayout)

    @property
    def number(self) -> int:
        return len(self.layout.status)

    def index(self, label: int | str) -> int:
        return self.label.index(label)
