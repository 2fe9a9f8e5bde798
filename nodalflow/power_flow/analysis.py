"""Power and current post-processing for solved AC and DC power flow.

All functions read the voltage held by a solver together with the nodal
model it was solved on, and return per-bus, per-branch and per-generator
arrays indexed like the corresponding registries.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from nodalflow.exceptions import ModelStateError
from nodalflow.network.bus import BusType
from nodalflow.network.network_model import PowerSystem
from nodalflow.power_flow.base import PowerFlowSolver, power_injection
from nodalflow.power_flow.dc_power_flow import DCPowerFlow


@dataclass
class Cartesian:
    active: np.ndarray
    reactive: np.ndarray


@dataclass
class PolarCurrent:
    magnitude: np.ndarray
    angle: np.ndarray


@dataclass
class ACPower:
    """Per-unit AC powers.

    ``charging`` is the reactive power produced by the branch shunt
    susceptance and ``series`` the losses in the series impedance.
    """
    injection: Cartesian
    supply: Cartesian
    shunt: Cartesian
    from_bus: Cartesian
    to_bus: Cartesian
    charging: np.ndarray
    series: Cartesian
    generator: Cartesian


@dataclass
class ACCurrent:
    injection: PolarCurrent
    from_bus: PolarCurrent
    to_bus: PolarCurrent
    series: PolarCurrent


@dataclass
class DCPower:
    injection: np.ndarray
    supply: np.ndarray
    from_bus: np.ndarray
    to_bus: np.ndarray
    generator: np.ndarray


def check_voltage(system: PowerSystem, solver: PowerFlowSolver, values: np.ndarray) -> None:
    solver.check_model()
    if values.size != system.bus.number:
        raise ModelStateError(
            "The voltage values are missing; solve the power flow before computing powers or currents."
        )


def _polar(values: np.ndarray) -> PolarCurrent:
    return PolarCurrent(magnitude=np.abs(values), angle=np.angle(values))


# ======================================================================
# AC
# ======================================================================

def _branch_currents(system: PowerSystem, voltage: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """From-end, to-end and series currents; zero for out-of-service branches."""
    ac = system.model.ac
    layout = system.branch.layout
    in_service = np.asarray(layout.status, dtype=int) == 1

    voltage_from = voltage[np.asarray(layout.from_bus, dtype=int)]
    voltage_to = voltage[np.asarray(layout.to_bus, dtype=int)]

    current_from = (
        np.asarray(ac.nodal_from_from, dtype=complex) * voltage_from
        + np.asarray(ac.nodal_from_to, dtype=complex) * voltage_to
    )
    current_to = (
        np.asarray(ac.nodal_to_from, dtype=complex) * voltage_from
        + np.asarray(ac.nodal_to_to, dtype=complex) * voltage_to
    )
    current_series = np.asarray(ac.admittance, dtype=complex) * (
        np.asarray(ac.transformer_ratio, dtype=complex) * voltage_from - voltage_to
    )
    current_series[~in_service] = 0.0
    return current_from, current_to, current_series


def ac_power(system: PowerSystem, solver: PowerFlowSolver) -> ACPower:
    """Bus, branch and generator powers at the solver's voltage."""
    voltage_state = solver.voltage
    check_voltage(system, solver, voltage_state.magnitude)

    bus = system.bus
    branch = system.branch
    ac = system.model.ac
    slack = bus.layout.slack
    voltage = voltage_state.complex()

    injection = power_injection(ac.nodal_matrix, voltage)

    supply_active = np.asarray(bus.supply.active, dtype=float).copy()
    supply_reactive = np.asarray(bus.supply.reactive, dtype=float).copy()
    bus_type = np.asarray(bus.layout.type, dtype=int)
    demand_reactive = np.asarray(bus.demand.reactive, dtype=float)
    generator_bus = bus_type != BusType.PQ
    supply_reactive[generator_bus] = injection.imag[generator_bus] + demand_reactive[generator_bus]
    supply_active[slack] = injection.real[slack] + bus.demand.active[slack]

    shunt_admittance = (
        np.asarray(bus.shunt.conductance, dtype=float)
        + 1j * np.asarray(bus.shunt.susceptance, dtype=float)
    )
    shunt = np.abs(voltage) ** 2 * np.conj(shunt_admittance)

    current_from, current_to, current_series = _branch_currents(system, voltage)
    voltage_from = voltage[np.asarray(branch.layout.from_bus, dtype=int)]
    voltage_to = voltage[np.asarray(branch.layout.to_bus, dtype=int)]
    power_from = voltage_from * np.conj(current_from)
    power_to = voltage_to * np.conj(current_to)

    ratio = np.asarray(ac.transformer_ratio, dtype=complex)
    in_service = np.asarray(branch.layout.status, dtype=int) == 1
    charging = 0.5 * np.asarray(branch.parameter.susceptance, dtype=float) * (
        np.abs(ratio * voltage_from) ** 2 + np.abs(voltage_to) ** 2
    )
    charging[~in_service] = 0.0
    series_sq = np.abs(current_series) ** 2

    return ACPower(
        injection=Cartesian(injection.real, injection.imag),
        supply=Cartesian(supply_active, supply_reactive),
        shunt=Cartesian(shunt.real, shunt.imag),
        from_bus=Cartesian(power_from.real, power_from.imag),
        to_bus=Cartesian(power_to.real, power_to.imag),
        charging=charging,
        series=Cartesian(
            series_sq * np.asarray(branch.parameter.resistance, dtype=float),
            series_sq * np.asarray(branch.parameter.reactance, dtype=float),
        ),
        generator=generator_power(system, injection),
    )


def ac_current(system: PowerSystem, solver: PowerFlowSolver) -> ACCurrent:
    """Bus injection and branch currents at the solver's voltage."""
    check_voltage(system, solver, solver.voltage.magnitude)
    voltage = solver.voltage.complex()

    injection = system.model.ac.nodal_matrix @ voltage
    current_from, current_to, current_series = _branch_currents(system, voltage)
    return ACCurrent(
        injection=_polar(injection),
        from_bus=_polar(current_from),
        to_bus=_polar(current_to),
        series=_polar(current_series),
    )


def generator_power(system: PowerSystem, injection: np.ndarray) -> Cartesian:
    """Generator outputs implied by bus injections.

    A lone generator takes the whole bus reactive supply. Several in-service
    generators at one bus share it in proportion to their reactive ranges;
    infinite bounds are replaced by ±(|Q| + |Qmin total| + |Qmax total|).
    The first generator at the slack bus absorbs the slack active power not
    produced by the other generators there.
    """
    generator = system.generator
    bus = system.bus
    capability = generator.capability
    slack = bus.layout.slack

    active = np.zeros(generator.number)
    reactive = np.zeros(generator.number)
    bus_reactive = injection.imag + np.asarray(bus.demand.reactive, dtype=float)

    for j, members in enumerate(bus.supply.generator):
        if not members:
            continue
        if len(members) == 1:
            reactive[members[0]] = bus_reactive[j]
            continue

        q_total = bus_reactive[j]
        q_min_total = sum(capability.min_reactive[i] for i in members if not math.isinf(capability.min_reactive[i]))
        q_max_total = sum(capability.max_reactive[i] for i in members if not math.isinf(capability.max_reactive[i]))
        bound = abs(q_total) + abs(q_min_total) + abs(q_max_total)

        q_min = {}
        q_max = {}
        for i in members:
            q_min[i] = math.copysign(bound, capability.min_reactive[i]) if math.isinf(capability.min_reactive[i]) else capability.min_reactive[i]
            q_max[i] = math.copysign(bound, capability.max_reactive[i]) if math.isinf(capability.max_reactive[i]) else capability.max_reactive[i]
        q_min_total += sum(q_min[i] for i in members if math.isinf(capability.min_reactive[i]))
        q_max_total += sum(q_max[i] for i in members if math.isinf(capability.max_reactive[i]))

        spread = q_max_total - q_min_total
        for i in members:
            if system.base_power_mva * abs(spread) > 10 * np.finfo(float).eps:
                reactive[i] = q_min[i] + (q_total - q_min_total) / spread * (q_max[i] - q_min[i])
            else:
                reactive[i] = q_min[i] + (q_total - q_min_total) / len(members)

    for i in range(generator.number):
        if generator.layout.status[i] == 1:
            active[i] = generator.output.active[i]

    members = bus.supply.generator[slack]
    if members:
        first = members[0]
        active[first] = injection.real[slack] + bus.demand.active[slack]
        for i in members[1:]:
            active[first] -= active[i]

    return Cartesian(active, reactive)


# ======================================================================
# DC
# ======================================================================

def dc_power(system: PowerSystem, solver: DCPowerFlow) -> DCPower:
    """Bus, branch and generator active powers of a DC power flow solution."""
    angle = solver.voltage.angle
    check_voltage(system, solver, angle)

    bus = system.bus
    dc = system.model.dc
    slack = bus.layout.slack
    nodal = dc.nodal_matrix

    injection = np.asarray(bus.supply.active, dtype=float) - np.asarray(bus.demand.active, dtype=float)
    start, end = nodal.indptr[slack], nodal.indptr[slack + 1]
    injection[slack] = (
        bus.shunt.conductance[slack]
        + dc.shift_power[slack]
        + float(np.dot(nodal.data[start:end], angle[nodal.indices[start:end]]))
    )
    supply = np.asarray(bus.supply.active, dtype=float).copy()
    supply[slack] = bus.demand.active[slack] + injection[slack]

    layout = system.branch.layout
    power_from = np.asarray(dc.admittance, dtype=float) * (
        angle[np.asarray(layout.from_bus, dtype=int)]
        - angle[np.asarray(layout.to_bus, dtype=int)]
        - np.asarray(system.branch.parameter.shift_angle, dtype=float)
    )

    generator = system.generator
    output = np.zeros(generator.number)
    for i in range(generator.number):
        if generator.layout.status[i] == 1:
            output[i] = generator.output.active[i]
    members = bus.supply.generator[slack]
    if members:
        output[members[0]] = supply[slack]
        for i in members[1:]:
            output[members[0]] -= output[i]

    return DCPower(
        injection=injection,
        supply=supply,
        from_bus=power_from,
        to_bus=-power_from,
        generator=output,
    )
