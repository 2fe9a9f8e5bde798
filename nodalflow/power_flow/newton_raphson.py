"""Newton-Raphson AC power flow.

Unknowns are the angles of all non-slack buses and the magnitudes of
demand buses. With the mismatch f(x) = S_calc - S_spec, each iteration
solves J·Δx = f(x) and updates x ← x - Δx.

The Jacobian is assembled from the complex power derivatives

    dS/dθ = j·diag(V)·conj(diag(I) - Y·diag(V))
    dS/d|V| = diag(V)·conj(Y·diag(V/|V|)) + conj(diag(I))·diag(V/|V|)

restricted to the reduced index spaces, so its sparsity follows the nodal
matrix. The pattern is laid out once per nodal pattern; each iteration only
refreshes the stored values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import scipy.sparse as sp

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

logger = logging.getLogger(__name__)

# Jacobian blocks: dP/dθ, dP/d|V|, dQ/dθ, dQ/d|V|
ACTIVE_ANGLE, ACTIVE_MAGNITUDE, REACTIVE_ANGLE, REACTIVE_MAGNITUDE = range(4)


@dataclass
class JacobianPattern:
    """Jacobian storage with, per stored value, the nodal entry it derives from.

    ``row_bus``, ``col_bus`` and ``position`` give the bus pair and the index
    into ``nodal_matrix.data`` of every slot of ``matrix.data``; ``block``
    says which derivative fills it.
    """
    matrix: sp.csc_matrix
    row_bus: np.ndarray
    col_bus: np.ndarray
    position: np.ndarray
    block: np.ndarray

    @classmethod
    def from_nodal(cls, nodal_matrix: sp.csc_matrix, index: IndexPartition) -> JacobianPattern:
        n = nodal_matrix.shape[0]
        col = np.repeat(np.arange(n), np.diff(nodal_matrix.indptr))
        row = np.asarray(nodal_matrix.indices)
        position = np.arange(nodal_matrix.nnz)
        n_pvpq = index.n_pvpq

        rows, cols, buses_r, buses_c, positions, blocks = [], [], [], [], [], []
        for block, row_map, col_map, row_offset, col_offset in (
            (ACTIVE_ANGLE, index.pvpq, index.pvpq, 0, 0),
            (ACTIVE_MAGNITUDE, index.pvpq, index.pq, 0, n_pvpq),
            (REACTIVE_ANGLE, index.pq, index.pvpq, n_pvpq, 0),
            (REACTIVE_MAGNITUDE, index.pq, index.pq, n_pvpq, n_pvpq),
        ):
            keep = (row_map[row] != -1) & (col_map[col] != -1)
            rows.append(row_map[row[keep]] + row_offset)
            cols.append(col_map[col[keep]] + col_offset)
            buses_r.append(row[keep])
            buses_c.append(col[keep])
            positions.append(position[keep])
            blocks.append(np.full(int(keep.sum()), block))

        size = n_pvpq + index.n_pq
        entry = np.concatenate(positions).size
        # Slot ids ride through the conversion to find each value's place
        matrix = sp.coo_matrix(
            (np.arange(1, entry + 1, dtype=float), (np.concatenate(rows), np.concatenate(cols))),
            shape=(size, size),
        ).tocsc()
        matrix.sort_indices()
        order = matrix.data.astype(int) - 1
        matrix.data = np.zeros(entry)

        return cls(
            matrix=matrix,
            row_bus=np.concatenate(buses_r)[order],
            col_bus=np.concatenate(buses_c)[order],
            position=np.concatenate(positions)[order],
            block=np.concatenate(blocks)[order],
        )

    def refresh(self, nodal_matrix: sp.csc_matrix, voltage: np.ndarray) -> sp.csc_matrix:
        """Write the derivatives at ``voltage`` into ``matrix.data``."""
        current = nodal_matrix @ voltage
        row_voltage = voltage[self.row_bus]
        col_voltage = voltage[self.col_bus]
        admittance_voltage = nodal_matrix.data[self.position] * col_voltage
        diagonal = self.row_bus == self.col_bus

        d_angle = -1j * row_voltage * np.conj(admittance_voltage)
        d_angle[diagonal] += 1j * row_voltage[diagonal] * np.conj(current[self.row_bus[diagonal]])
        d_magnitude = row_voltage * np.conj(admittance_voltage / np.abs(col_voltage))
        d_magnitude[diagonal] += (
            np.conj(current[self.row_bus[diagonal]]) * row_voltage[diagonal] / np.abs(row_voltage[diagonal])
        )

        self.matrix.data[:] = np.select(
            [self.block == ACTIVE_ANGLE, self.block == ACTIVE_MAGNITUDE, self.block == REACTIVE_ANGLE],
            [d_angle.real, d_magnitude.real, d_angle.imag],
            d_magnitude.imag,
        )
        return self.matrix


def build_jacobian(nodal_matrix: sp.csc_matrix, voltage: np.ndarray, index: IndexPartition) -> sp.csc_matrix:
    """Jacobian at ``voltage`` on a freshly laid out pattern."""
    return JacobianPattern.from_nodal(nodal_matrix, index).refresh(nodal_matrix, voltage)


class NewtonRaphson(PowerFlowSolver):
    """Newton-Raphson solver over polar voltages."""

    name = "Newton-Raphson"

    def __init__(self, system: PowerSystem) -> None:
        ac = system.ac_model()
        voltage = initialize_ac(system)
        super().__init__(system, voltage)
        self.index = partition_buses(system)
        size = self.index.n_pvpq + self.index.n_pq
        self.mismatch_vector = np.zeros(size)
        self.increment = np.zeros(size)
        self.pattern = JacobianPattern.from_nodal(ac.nodal_matrix, self.index)
        self._ac_pattern = ac.pattern

    @property
    def jacobian(self) -> sp.csc_matrix:
        return self.pattern.matrix

    def mismatch(self) -> ConvergenceMetrics:
        self.check_model()
        index = self.index
        nodal_matrix = self.system.model.ac.nodal_matrix

        difference = power_injection(nodal_matrix, self.voltage.complex()) - specified_power(self.system)
        active = difference.real[index.pvpq_bus]
        reactive = difference.imag[index.pq_bus]
        self.mismatch_vector = np.concatenate([active, reactive])

        self._metrics = ConvergenceMetrics(active=max_abs(active), reactive=max_abs(reactive))
        return self._metrics

    def solve(self) -> None:
        self.check_model()
        index = self.index
        self.iteration += 1
        if self.mismatch_vector.size == 0:
            return

        ac = self.system.model.ac
        if ac.pattern != self._ac_pattern:
            self.pattern = JacobianPattern.from_nodal(ac.nodal_matrix, index)
            self._ac_pattern = ac.pattern
            logger.debug("Jacobian pattern rebuilt (nodal pattern %d)", ac.pattern)

        jacobian = self.pattern.refresh(ac.nodal_matrix, self.voltage.complex())
        factor = factorize(jacobian, "Jacobian matrix")
        self.increment = solve_factorized(factor, self.mismatch_vector, "Jacobian")

        n_pvpq = index.n_pvpq
        self.voltage.angle[index.pvpq_bus] -= self.increment[:n_pvpq]
        self.voltage.magnitude[index.pq_bus] -= self.increment[n_pvpq:]


def newton_raphson(system: PowerSystem) -> NewtonRaphson:
    """Set up Newton-Raphson power flow for ``system``."""
    return NewtonRaphson(system)
