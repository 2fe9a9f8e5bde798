"""Gauss-Seidel AC power flow over complex bus voltages."""

from __future__ import annotations

import numpy as np

from nodalflow.network.network_model import PowerSystem
from nodalflow.power_flow.base import (
    ConvergenceMetrics,
    PolarVoltage,
    PowerFlowSolver,
    initialize_ac,
    partition_buses,
)


class GaussSeidel(PowerFlowSolver):
    """Sequential sweep solver.

    Demand buses are swept first, then generator buses, in bus index order;
    each update sees the values already refreshed in the same sweep.
    Generator bus magnitudes are held at the generator setpoint.
    """

    name = "Gauss-Seidel"

    def __init__(self, system: PowerSystem) -> None:
        system.ac_model()
        voltage = initialize_ac(system)
        super().__init__(system, voltage)
        index = partition_buses(system)
        self.pq = index.pq_bus
        self.pv = index.pv_bus
        self.complex_voltage = voltage.complex()

    def _current(self, i: int) -> complex:
        # Column i of the transpose holds row i of the nodal matrix
        transpose = self.system.model.ac.nodal_matrix_transpose
        start, end = transpose.indptr[i], transpose.indptr[i + 1]
        rows = transpose.indices[start:end]
        return complex(np.dot(transpose.data[start:end], self.complex_voltage[rows]))

    def _diagonal(self, i: int) -> complex:
        transpose = self.system.model.ac.nodal_matrix_transpose
        start, end = transpose.indptr[i], transpose.indptr[i + 1]
        position = start + int(np.searchsorted(transpose.indices[start:end], i))
        return complex(transpose.data[position])

    def mismatch(self) -> ConvergenceMetrics:
        self.check_model()
        bus = self.system.bus
        voltage = self.complex_voltage

        stop_active = 0.0
        stop_reactive = 0.0
        for i in self.pq:
            apparent = voltage[i] * np.conj(self._current(i))
            stop_active = max(stop_active, abs(apparent.real - bus.supply.active[i] + bus.demand.active[i]))
            stop_reactive = max(stop_reactive, abs(apparent.imag - bus.supply.reactive[i] + bus.demand.reactive[i]))
        for i in self.pv:
            apparent = voltage[i] * np.conj(self._current(i))
            stop_active = max(stop_active, abs(apparent.real - bus.supply.active[i] + bus.demand.active[i]))

        self._metrics = ConvergenceMetrics(active=stop_active, reactive=stop_reactive)
        return self._metrics

    def solve(self) -> None:
        self.check_model()
        bus = self.system.bus
        voltage = self.complex_voltage
        self.iteration += 1

        for i in self.pq:
            injection = complex(
                bus.supply.active[i] - bus.demand.active[i],
                -(bus.supply.reactive[i] - bus.demand.reactive[i]),
            )
            current = injection / np.conj(voltage[i]) - self._current(i)
            voltage[i] += current / self._diagonal(i)

        for i in self.pv:
            current = self._current(i)
            conj_voltage = np.conj(voltage[i])
            injection = complex(
                bus.supply.active[i] - bus.demand.active[i],
                (conj_voltage * current).imag,
            )
            voltage[i] += (injection / conj_voltage - current) / self._diagonal(i)

        for i in self.pv:
            setpoint = self.system.generator.voltage.magnitude[bus.supply.generator[i][0]]
            voltage[i] = setpoint * voltage[i] / abs(voltage[i])

        self._sync_polar()

    def _sync_polar(self) -> None:
        buses = np.concatenate([self.pq, self.pv])
        self.voltage.magnitude[buses] = np.abs(self.complex_voltage[buses])
        self.voltage.angle[buses] = np.angle(self.complex_voltage[buses])

    def set_voltage(self, voltage: PolarVoltage) -> None:
        """Replace the iterate, keeping the complex form in step."""
        self.voltage = voltage
        self.complex_voltage = voltage.complex()


def gauss_seidel(system: PowerSystem) -> GaussSeidel:
    """Set up Gauss-Seidel power flow for ``system``."""
    return GaussSeidel(system)
