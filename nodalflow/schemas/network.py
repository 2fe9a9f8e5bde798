"""Configuration schemas for building a power system from plain dictionaries.

Powers are given in MW / MVAr, angles in degrees and impedances in per-unit,
as in Matpower case tables. ``build_system_from_config`` converts them to
per-unit on ``base_power_mva`` and to radians.
"""

import math

from pydantic import BaseModel, Field, model_validator


class BusConfig(BaseModel):
    label: int | str
    bus_type: str = Field(default="pq", pattern="^(slack|pv|pq)$")
    active_mw: float = 0.0
    reactive_mvar: float = 0.0
    conductance_mw: float = 0.0
    susceptance_mvar: float = 0.0
    magnitude_pu: float = Field(default=1.0, gt=0)
    angle_deg: float = 0.0
    min_magnitude_pu: float = Field(default=0.0, ge=0)
    max_magnitude_pu: float = math.inf
    area: int = 1
    loss_zone: int = 1


class BranchConfig(BaseModel):
    label: int | str | None = None
    from_bus: int | str
    to_bus: int | str
    status: int = Field(default=1, ge=0, le=1)
    resistance_pu: float = 0.0
    reactance_pu: float = 0.0
    conductance_pu: float = 0.0
    susceptance_pu: float = 0.0
    turns_ratio: float = Field(default=1.0, ge=0)
    shift_angle_deg: float = 0.0
    rating_mva: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def check_impedance(self) -> "BranchConfig":
        if self.resistance_pu == 0.0 and self.reactance_pu == 0.0:
            raise ValueError("At least one of resistance_pu or reactance_pu is required.")
        if self.from_bus == self.to_bus:
            raise ValueError("from_bus and to_bus must differ.")
        return self


class GeneratorConfig(BaseModel):
    label: int | str | None = None
    bus: int | str
    status: int = Field(default=1, ge=0, le=1)
    active_mw: float = 0.0
    reactive_mvar: float = 0.0
    magnitude_pu: float = Field(default=1.0, gt=0)
    min_active_mw: float = 0.0
    max_active_mw: float = math.inf
    min_reactive_mvar: float = -math.inf
    max_reactive_mvar: float = math.inf


class NetworkConfig(BaseModel):
    base_power_mva: float | None = Field(default=None, gt=0)
    buses: list[BusConfig] = Field(min_length=1)
    branches: list[BranchConfig] = Field(default_factory=list)
    generators: list[GeneratorConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_single_slack(self) -> "NetworkConfig":
        slacks = [bus.label for bus in self.buses if bus.bus_type == "slack"]
        if len(slacks) > 1:
            raise ValueError(f"Exactly one slack bus is allowed, got {slacks}.")
        return self
