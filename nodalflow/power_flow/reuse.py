"""Network updates that keep an existing solver usable.

Each function applies the corresponding ``PowerSystem`` mutation and then
brings the solver's voltage iterate in line with the new data, so the
driving loop can continue from the previous solution instead of starting
over. Changes a solver cannot absorb raise ``ModelStateError`` before the
network is touched:

- any bus type conversion for the AC solvers, since their index partition
  is fixed at set-up
- slack bus changes for DC power flow
- branch and shunt changes for fast decoupled power flow, whose B′ and B″
  factors are never recomputed
"""

from __future__ import annotations

from typing import Any

import numpy as np

from nodalflow.exceptions import ModelStateError
from nodalflow.network.bus import BusType
from nodalflow.network.network_model import Label, PowerSystem, check_bus_type, check_status
from nodalflow.power_flow.base import PowerFlowSolver
from nodalflow.power_flow.dc_power_flow import DCPowerFlow
from nodalflow.power_flow.fast_decoupled import FastNewtonRaphson
from nodalflow.power_flow.gauss_seidel import GaussSeidel

BRANCH_MODEL_PARAMETERS = (
    "status",
    "resistance",
    "reactance",
    "conductance",
    "susceptance",
    "turns_ratio",
    "shift_angle",
)


def _type_conversion(solver: PowerFlowSolver) -> ModelStateError:
    return ModelStateError(
        f"The {solver.name} model cannot be reused due to required bus type conversion."
    )


def _sync_bus(solver: PowerFlowSolver, idx: int) -> None:
    if isinstance(solver, GaussSeidel):
        solver.complex_voltage[idx] = solver.voltage.magnitude[idx] * np.exp(1j * solver.voltage.angle[idx])


def _seed_generator_bus(system: PowerSystem, solver: PowerFlowSolver, bus_idx: int) -> None:
    """Take the magnitude at a generator bus from its first in-service generator."""
    if isinstance(solver, DCPowerFlow):
        return
    bus = system.bus
    if bus.layout.type[bus_idx] == BusType.PQ or not bus.supply.generator[bus_idx]:
        return
    first = bus.supply.generator[bus_idx][0]
    solver.voltage.magnitude[bus_idx] = system.generator.voltage.magnitude[first]
    _sync_bus(solver, bus_idx)


# ======================================================================
# Bus
# ======================================================================

def add_bus(system: PowerSystem, solver: PowerFlowSolver, **params: Any) -> int:
    """Always refused: a new bus changes every matrix dimension."""
    raise ModelStateError(f"The {solver.name} model cannot be reused when adding a bus.")


def update_bus(system: PowerSystem, solver: PowerFlowSolver, label: Label, **params: Any) -> int:
    """Update a bus and carry new magnitude or angle values into the iterate.

    A magnitude is only taken over at demand buses; at generator buses the
    generator setpoint governs.
    """
    solver.check_model()
    bus = system.bus
    idx = bus.index(label)

    bus_type = params.get("bus_type")
    if bus_type is not None:
        bus_type = check_bus_type(bus_type)
        if isinstance(solver, DCPowerFlow):
            if (idx == bus.layout.slack) != (bus_type == BusType.SLACK):
                raise _type_conversion(solver)
        elif bus_type != bus.layout.type[idx]:
            raise _type_conversion(solver)

    if isinstance(solver, FastNewtonRaphson) and (
        params.get("conductance") is not None or params.get("susceptance") is not None
    ):
        raise ModelStateError(
            f"The {solver.name} model cannot be reused when the shunt element is altered."
        )

    system.update_bus(label, **params)

    if isinstance(solver, DCPowerFlow):
        return idx

    changed = False
    if params.get("magnitude") is not None and bus.layout.type[idx] == BusType.PQ:
        solver.voltage.magnitude[idx] = bus.voltage.magnitude[idx]
        changed = True
    if params.get("angle") is not None:
        solver.voltage.angle[idx] = bus.voltage.angle[idx]
        changed = True
    if changed:
        _sync_bus(solver, idx)

    return idx


# ======================================================================
# Branch
# ======================================================================

def add_branch(
    system: PowerSystem,
    solver: PowerFlowSolver,
    from_bus: Label,
    to_bus: Label,
    **params: Any,
) -> int:
    solver.check_model()
    if isinstance(solver, FastNewtonRaphson):
        raise ModelStateError(f"The {solver.name} model cannot be reused when adding a new branch.")
    return system.add_branch(from_bus, to_bus, **params)


def update_branch(system: PowerSystem, solver: PowerFlowSolver, label: Label, **params: Any) -> int:
    """Update a branch; the nodal model is patched by ``PowerSystem``.

    Rating and angle limit changes are accepted by every solver.
    """
    solver.check_model()
    if isinstance(solver, FastNewtonRaphson) and any(
        params.get(name) is not None for name in BRANCH_MODEL_PARAMETERS
    ):
        raise ModelStateError(
            f"The {solver.name} model cannot be reused when the branch status or parameters are altered."
        )
    return system.update_branch(label, **params)


# ======================================================================
# Generator
# ======================================================================

def add_generator(system: PowerSystem, solver: PowerFlowSolver, bus: Label, **params: Any) -> int:
    """Add a generator; an in-service one may not turn a demand bus into a generator bus."""
    solver.check_model()
    bus_idx = system.bus.index(bus)
    status = check_status(params.get("status", 1))
    if (
        status == 1
        and system.bus.layout.type[bus_idx] == BusType.PQ
        and not isinstance(solver, DCPowerFlow)
    ):
        raise _type_conversion(solver)

    idx = system.add_generator(bus, **params)
    _seed_generator_bus(system, solver, bus_idx)
    return idx


def update_generator(system: PowerSystem, solver: PowerFlowSolver, label: Label, **params: Any) -> int:
    """Update a generator and re-seed the magnitude of its bus.

    Taking the last in-service generator of a generator bus out of service
    (for DC power flow, of the slack bus) is refused, and so is bringing a
    generator into service at a demand bus of an AC solver.
    """
    solver.check_model()
    bus = system.bus
    generator = system.generator
    idx = generator.index(label)
    bus_idx = generator.layout.bus[idx]

    status = params.get("status")
    if status is not None:
        status = check_status(status)
        status_old = generator.layout.status[idx]
        last = bus.supply.generator[bus_idx] == [idx]
        if isinstance(solver, DCPowerFlow):
            if status == 0 and status_old == 1 and last and bus_idx == bus.layout.slack:
                raise _type_conversion(solver)
        elif status == 0 and status_old == 1 and last and bus.layout.type[bus_idx] != BusType.PQ:
            raise _type_conversion(solver)
        elif status == 1 and status_old == 0 and bus.layout.type[bus_idx] == BusType.PQ:
            raise _type_conversion(solver)

    system.update_generator(label, **params)
    _seed_generator_bus(system, solver, bus_idx)
    return idx
