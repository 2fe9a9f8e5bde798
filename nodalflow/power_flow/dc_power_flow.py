"""DC power flow: one linear solve B·θ = P on the DC nodal matrix.

The slack row and column are zeroed with a unit diagonal while the matrix
is factorised, then restored, so the shared DC model keeps its shape and
values. The factorisation is reused until the DC model counter changes.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy.sparse.linalg import SuperLU

from nodalflow.exceptions import ModelStateError, StructureError
from nodalflow.network.network_model import PowerSystem
from nodalflow.power_flow.base import (
    ConvergenceMetrics,
    PolarVoltage,
    PowerFlowSolver,
    factorize,
    max_abs,
    solve_factorized,
)

logger = logging.getLogger(__name__)


class DCPowerFlow(PowerFlowSolver):
    """Linear solver for bus voltage angles; magnitudes are fixed at 1 pu."""

    name = "DC power flow"

    def __init__(self, system: PowerSystem) -> None:
        if system.bus.layout.slack == -1:
            raise StructureError("The slack bus is missing.")
        system.dc_model()
        super().__init__(system, PolarVoltage(magnitude=np.array([]), angle=np.array([])))
        self.factor: SuperLU | None = None
        self._dc_model = -1
        self._slack = system.bus.layout.slack

    def check_model(self) -> None:
        """Angles depend on the slack bus only, so other bus type changes are allowed."""
        if self.system.bus.number != self._bus_number:
            raise ModelStateError(
                f"The {self.name} model cannot be reused after a bus was added."
            )
        if self.system.bus.layout.slack != self._slack:
            raise ModelStateError(
                f"The {self.name} model cannot be reused after the slack bus changed."
            )

    def _injection(self) -> np.ndarray:
        bus = self.system.bus
        return (
            np.asarray(bus.supply.active, dtype=float)
            - np.asarray(bus.demand.active, dtype=float)
            - np.asarray(bus.shunt.conductance, dtype=float)
            - np.asarray(self.system.model.dc.shift_power, dtype=float)
        )

    def _factorize(self) -> None:
        dc = self.system.model.dc
        nodal = dc.nodal_matrix
        slack = self.system.bus.layout.slack

        column = np.arange(nodal.indptr[slack], nodal.indptr[slack + 1])
        positions = np.union1d(column, np.flatnonzero(nodal.indices == slack))
        diagonal = column[nodal.indices[column] == slack]
        removed = nodal.data[positions].copy()

        nodal.data[positions] = 0.0
        nodal.data[diagonal] = 1.0
        try:
            self.factor = factorize(nodal, "DC nodal matrix")
        finally:
            nodal.data[positions] = removed

        logger.debug("DC nodal matrix factorised (model %d)", dc.model)
        self._dc_model = dc.model

    def solve(self) -> None:
        self.check_model()
        bus = self.system.bus
        slack = bus.layout.slack

        if self.system.model.dc.model != self._dc_model:
            self._factorize()

        angle = solve_factorized(self.factor, self._injection(), "DC nodal matrix")
        angle[slack] = 0.0
        angle += bus.voltage.angle[slack]

        self.voltage = PolarVoltage(magnitude=np.ones(bus.number), angle=angle)
        self.iteration += 1

    def mismatch(self) -> ConvergenceMetrics:
        """Residual of B·θ = P at non-slack buses; infinite before the first solve."""
        self.check_model()
        if self.voltage.angle.size == 0:
            self._metrics = ConvergenceMetrics()
            return self._metrics

        residual = self.system.model.dc.nodal_matrix @ self.voltage.angle - self._injection()
        residual[self.system.bus.layout.slack] = 0.0
        self._metrics = ConvergenceMetrics(active=max_abs(residual), reactive=0.0)
        return self._metrics


def dc_power_flow(system: PowerSystem) -> DCPowerFlow:
    """Set up DC power flow for ``system``."""
    return DCPowerFlow(system)
