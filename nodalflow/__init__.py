"""nodalflow: steady-state power flow with incrementally maintained nodal models."""

from .network.bus import BusType
from .network.network_model import PowerSystem
from .network.builder import build_system_from_config
from .power_flow import (
    Algorithm,
    ac_current,
    ac_power,
    dc_power,
    reactive_limits,
    solve_power_flow,
)

__version__ = "0.1.0"

__all__ = [
    "BusType",
    "PowerSystem",
    "build_system_from_config",
    "Algorithm",
    "ac_current",
    "ac_power",
    "dc_power",
    "reactive_limits",
    "solve_power_flow",
]
