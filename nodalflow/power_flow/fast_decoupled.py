"""Fast decoupled Newton-Raphson AC power flow (BX and XB schemes).

The active and reactive subproblems use two constant matrices:

- B′ relates angle increments to active mismatches P/V over non-slack buses
- B″ relates magnitude increments to reactive mismatches Q/V over demand buses

Both are assembled once from branch parameters and factorised once; every
iteration reuses the LU factors. BX and XB differ in which series term each
matrix keeps:

=======  ==========================  ==========================
scheme   B′ series term              B″ series term
=======  ==========================  ==========================
BX       g = R/(R²+X²), b = -X/(R²+X²)  b = -1/X
XB       g = 0, b = -1/X             b = -X/(R²+X²)
=======  ==========================  ==========================

The factors depend on the AC model at construction time, so the solver
refuses to continue once the AC model has changed.
"""

from __future__ import annotations

import math

import numpy as np
import scipy.sparse as sp

from nodalflow.exceptions import ModelStateError, SingularMatrixError
from nodalflow.network.bus import BusType
from nodalflow.network.network_model import PowerSystem
from nodalflow.power_flow.base import (
    ConvergenceMetrics,
    IndexPartition,
    PowerFlowSolver,
    factorize,
    initialize_ac,
    max_abs,
    partition_buses,
    power_injection,
    solve_factorized,
    specified_power,
)

BX = "BX"
XB = "XB"


def decoupled_matrices(system: PowerSystem, index: IndexPartition, scheme: str) -> tuple[sp.csc_matrix, sp.csc_matrix]:
    """Assemble B′ (active) and B″ (reactive) for ``scheme``."""
    branch = system.branch
    param = branch.parameter
    for i in range(branch.number):
        if branch.layout.status[i] == 1 and param.reactance[i] == 0.0:
            raise SingularMatrixError(
                f"The fast decoupled matrices require a nonzero reactance; branch "
                f"{branch.label.labels()[i]!r} has none."
            )

    layout = system.bus.layout
    slack = layout.slack

    rows_a: list[int] = []
    cols_a: list[int] = []
    data_a: list[float] = []
    rows_r: list[int] = []
    cols_r: list[int] = []
    data_r: list[float] = []

    for i in range(branch.number):
        if branch.layout.status[i] != 1:
            continue

        from_bus = branch.layout.from_bus[i]
        to_bus = branch.layout.to_bus[i]
        resistance = param.resistance[i]
        reactance = param.reactance[i]
        susceptance = param.susceptance[i]
        shift_cos = math.cos(param.shift_angle[i])
        shift_sin = math.sin(param.shift_angle[i])
        shift_norm = shift_cos ** 2 + shift_sin ** 2
        impedance_sq = resistance ** 2 + reactance ** 2

        # B′
        if scheme == BX:
            gmk = resistance / impedance_sq
            bmk = -reactance / impedance_sq
        else:
            gmk = 0.0
            bmk = -1.0 / reactance

        m = index.pvpq[from_bus]
        n = index.pvpq[to_bus]
        if from_bus != slack and to_bus != slack:
            rows_a += [m, n]
            cols_a += [n, m]
            data_a += [
                (-gmk * shift_sin - bmk * shift_cos) / shift_norm,
                (gmk * shift_sin - bmk * shift_cos) / shift_norm,
            ]
        if from_bus != slack:
            rows_a.append(m)
            cols_a.append(m)
            data_a.append(bmk / shift_norm)
        if to_bus != slack:
            rows_a.append(n)
            cols_a.append(n)
            data_a.append(bmk)

        # B″
        if scheme == BX:
            bmk = -1.0 / reactance
        else:
            bmk = -reactance / impedance_sq
        ratio = branch.turns_ratio(i)

        m = index.pq[from_bus]
        n = index.pq[to_bus]
        if m != -1 and n != -1:
            rows_r += [m, n]
            cols_r += [n, m]
            data_r += [-bmk / ratio, -bmk / ratio]
        if layout.type[from_bus] == BusType.PQ:
            rows_r.append(m)
            cols_r.append(m)
            data_r.append((bmk + 0.5 * susceptance) / ratio ** 2)
        if layout.type[to_bus] == BusType.PQ:
            rows_r.append(n)
            cols_r.append(n)
            data_r.append(bmk + 0.5 * susceptance)

    for i in index.pq_bus:
        rows_r.append(index.pq[i])
        cols_r.append(index.pq[i])
        data_r.append(system.bus.shunt.susceptance[i])

    active = sp.coo_matrix(
        (data_a, (rows_a, cols_a)), shape=(index.n_pvpq, index.n_pvpq)
    ).tocsc()
    reactive = sp.coo_matrix(
        (data_r, (rows_r, cols_r)), shape=(index.n_pq, index.n_pq)
    ).tocsc()
    return active, reactive


class FastNewtonRaphson(PowerFlowSolver):
    """Fast decoupled solver with constant, once-factorised B′ and B″."""

    def __init__(self, system: PowerSystem, scheme: str = BX) -> None:
        if scheme not in (BX, XB):
            raise ValueError(f"Unknown fast decoupled scheme {scheme!r}; expected 'BX' or 'XB'.")
        system.ac_model()
        voltage = initialize_ac(system)
        super().__init__(system, voltage)
        self.scheme = scheme
        self.name = f"Fast Newton-Raphson {scheme}"
        self.index = partition_buses(system)
        self._ac_model = system.model.ac.model

        self.active_jacobian, self.reactive_jacobian = decoupled_matrices(system, self.index, scheme)
        self.active_factor = (
            factorize(self.active_jacobian, "active decoupled matrix") if self.index.n_pvpq else None
        )
        self.reactive_factor = (
            factorize(self.reactive_jacobian, "reactive decoupled matrix") if self.index.n_pq else None
        )

        self.active_mismatch = np.zeros(self.index.n_pvpq)
        self.reactive_mismatch = np.zeros(self.index.n_pq)
        self.active_increment = np.zeros(self.index.n_pvpq)
        self.reactive_increment = np.zeros(self.index.n_pq)

    def check_model(self) -> None:
        super().check_model()
        if self.system.model.ac.model != self._ac_model:
            raise ModelStateError(
                f"The {self.name} model cannot be reused after the AC model changed."
            )

    def _scaled_mismatch(self) -> np.ndarray:
        difference = (
            power_injection(self.system.model.ac.nodal_matrix, self.voltage.complex())
            - specified_power(self.system)
        )
        return difference / self.voltage.magnitude

    def mismatch(self) -> ConvergenceMetrics:
        self.check_model()
        scaled = self._scaled_mismatch()
        self.active_mismatch = scaled.real[self.index.pvpq_bus]
        self.reactive_mismatch = scaled.imag[self.index.pq_bus]

        self._metrics = ConvergenceMetrics(
            active=max_abs(self.active_mismatch), reactive=max_abs(self.reactive_mismatch)
        )
        return self._metrics

    def solve(self) -> None:
        self.check_model()
        index = self.index
        self.iteration += 1

        if self.active_factor is not None:
            self.active_increment = solve_factorized(
                self.active_factor, self.active_mismatch, "active decoupled matrix"
            )
            self.voltage.angle[index.pvpq_bus] += self.active_increment

        if self.reactive_factor is not None:
            self.reactive_mismatch = self._scaled_mismatch().imag[index.pq_bus]
            self.reactive_increment = solve_factorized(
                self.reactive_factor, self.reactive_mismatch, "reactive decoupled matrix"
            )
            self.voltage.magnitude[index.pq_bus] += self.reactive_increment


def fast_newton_raphson_bx(system: PowerSystem) -> FastNewtonRaphson:
    """Set up fast decoupled power flow with the BX scheme."""
    return FastNewtonRaphson(system, BX)


def fast_newton_raphson_xb(system: PowerSystem) -> FastNewtonRaphson:
    """Set up fast decoupled power flow with the XB scheme."""
    return FastNewtonRaphson(system, XB)
