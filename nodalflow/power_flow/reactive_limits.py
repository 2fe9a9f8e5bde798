"""Generator reactive power limits and slack angle adjustment."""

from __future__ import annotations

import logging

import numpy as np

from nodalflow.exceptions import StructureError
from nodalflow.network.bus import BusType
from nodalflow.network.network_model import Label, PowerSystem
from nodalflow.power_flow.analysis import check_voltage, generator_power
from nodalflow.power_flow.base import PowerFlowSolver, power_injection
from nodalflow.power_flow.gauss_seidel import GaussSeidel

logger = logging.getLogger(__name__)


def reactive_limits(system: PowerSystem, solver: PowerFlowSolver) -> list[int]:
    """Enforce generator reactive limits after an AC power flow solution.

    Generator outputs and bus supplies are reset to the powers implied by
    the solution. Every in-service generator with ``min_reactive <
    max_reactive`` at a generator or slack bus that lies outside its limits
    is fixed at the violated limit and its bus becomes a demand bus. A
    converted slack bus hands its role to the first generator bus.

    Returns one flag per generator: -1 below minimum, 1 above maximum, 0
    otherwise. The network is modified, so a new solver must be set up to
    solve again.
    """
    check_voltage(system, solver, solver.voltage.magnitude)

    bus = system.bus
    generator = system.generator
    capability = generator.capability
    labels = bus.label.labels()

    injection = power_injection(system.model.ac.nodal_matrix, solver.voltage.complex())
    power = generator_power(system, injection)

    bus.supply.active = [0.0] * bus.number
    bus.supply.reactive = [0.0] * bus.number
    for k in range(generator.number):
        if generator.layout.status[k] == 1:
            i = generator.layout.bus[k]
            generator.output.active[k] = float(power.active[k])
            generator.output.reactive[k] = float(power.reactive[k])
            bus.supply.active[i] += generator.output.active[k]
            bus.supply.reactive[i] += generator.output.reactive[k]

    violate = [0] * generator.number
    for k in range(generator.number):
        if generator.layout.status[k] != 1 or capability.min_reactive[k] >= capability.max_reactive[k]:
            continue

        j = generator.layout.bus[k]
        output = generator.output.reactive[k]
        below = output < capability.min_reactive[k]
        above = output > capability.max_reactive[k]
        if bus.layout.type[j] == BusType.PQ or not (below or above):
            continue

        if below:
            violate[k] = -1
            limit = capability.min_reactive[k]
        else:
            violate[k] = 1
            limit = capability.max_reactive[k]

        was_slack = j == bus.layout.slack
        system.change_bus_type(j, BusType.PQ)
        bus.supply.reactive[j] += limit - output
        generator.output.reactive[k] = limit
        logger.info(
            "Generator at bus %s reached its reactive limit; the bus becomes a demand bus.",
            labels[j], extra={"bus": labels[j]},
        )

        if was_slack:
            for i in range(bus.number):
                if bus.layout.type[i] == BusType.PV:
                    system.change_bus_type(i, BusType.SLACK)
                    logger.info(
                        "The slack bus %s is converted to a demand bus; bus %s is the new slack bus.",
                        labels[j], labels[i], extra={"bus": labels[i]},
                    )
                    break

    if bus.layout.slack == -1:
        raise StructureError(
            "Reactive limits converted every generator bus to a demand bus; "
            "no bus is left to serve as the slack bus."
        )

    return violate


def adjust_angle(system: PowerSystem, solver: PowerFlowSolver, slack: Label) -> None:
    """Shift all angles so bus ``slack`` has its configured angle."""
    idx = system.bus.index(slack)
    offset = system.bus.voltage.angle[idx] - solver.voltage.angle[idx]
    solver.voltage.angle += offset
    if isinstance(solver, GaussSeidel):
        solver.complex_voltage = solver.complex_voltage * np.exp(1j * offset)
