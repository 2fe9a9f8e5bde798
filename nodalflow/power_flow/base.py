"""Solver contract, bus index partition and AC state initialisation.

Every power flow solver exposes the same single-step contract:

- ``mismatch()`` evaluates power mismatches at the current voltage and
  returns the ``ConvergenceMetrics`` pair (max active, max reactive).
- ``solve()`` performs exactly one iteration (one linear solve and voltage
  update).
- ``step()`` is ``solve()`` followed by ``mismatch()``.

Iteration caps and tolerances belong to the driving loop, see
``nodalflow.power_flow.runner``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import SuperLU, splu

from nodalflow.exceptions import ModelStateError, SingularMatrixError, StructureError
from nodalflow.network.bus import BusType
from nodalflow.network.network_model import PowerSystem

logger = logging.getLogger(__name__)


class Algorithm(str, Enum):
    NEWTON_RAPHSON = "newton_raphson"
    FAST_NEWTON_RAPHSON_BX = "fast_newton_raphson_bx"
    FAST_NEWTON_RAPHSON_XB = "fast_newton_raphson_xb"
    GAUSS_SEIDEL = "gauss_seidel"
    DC = "dc_power_flow"


@dataclass
class ConvergenceMetrics:
    """Largest absolute active and reactive power mismatch."""
    active: float = np.inf
    reactive: float = np.inf

    def converged(self, tolerance: float) -> bool:
        return self.active < tolerance and self.reactive < tolerance


@dataclass
class PolarVoltage:
    """Bus voltage magnitudes (pu) and angles (rad), indexed by bus."""
    magnitude: np.ndarray
    angle: np.ndarray

    def complex(self) -> np.ndarray:
        return self.magnitude * np.exp(1j * self.angle)


@dataclass
class IndexPartition:
    """Map buses to rows of the reduced system.

    ``pvpq[i]`` is the angle/active row of non-slack bus ``i`` and
    ``pq[i]`` the magnitude/reactive row of demand bus ``i`` counted from
    zero; both are -1 where the bus has no such row. ``pvpq_bus`` and
    ``pq_bus`` list the buses in row order.
    """
    pvpq: np.ndarray
    pq: np.ndarray
    pvpq_bus: np.ndarray
    pq_bus: np.ndarray
    pv_bus: np.ndarray

    @property
    def n_pvpq(self) -> int:
        return len(self.pvpq_bus)

    @property
    def n_pq(self) -> int:
        return len(self.pq_bus)


def partition_buses(system: PowerSystem) -> IndexPartition:
    bus_type = np.asarray(system.bus.layout.type, dtype=int)
    n = system.bus.number

    pvpq_bus = np.flatnonzero(bus_type != BusType.SLACK)
    pq_bus = np.flatnonzero(bus_type == BusType.PQ)
    pv_bus = np.flatnonzero(bus_type == BusType.PV)

    pvpq = np.full(n, -1, dtype=int)
    pvpq[pvpq_bus] = np.arange(len(pvpq_bus))
    pq = np.full(n, -1, dtype=int)
    pq[pq_bus] = np.arange(len(pq_bus))

    return IndexPartition(pvpq=pvpq, pq=pq, pvpq_bus=pvpq_bus, pq_bus=pq_bus, pv_bus=pv_bus)


# ======================================================================
# AC initialisation
# ======================================================================

def initialize_ac(system: PowerSystem) -> PolarVoltage:
    """Prepare the system for AC power flow and seed the voltage.

    A generator bus without an in-service generator becomes a demand bus.
    Magnitudes at generator and slack buses come from the setpoint of the
    first in-service generator. When the slack bus hosts no in-service
    generator, the first generator bus that does takes over the slack role.
    """
    bus = system.bus
    if bus.layout.slack == -1:
        raise StructureError("The slack bus is missing.")

    magnitude = np.asarray(bus.voltage.magnitude, dtype=float).copy()
    angle = np.asarray(bus.voltage.angle, dtype=float).copy()
    labels = bus.label.labels()

    for i in range(bus.number):
        generators = bus.supply.generator[i]
        if not generators and bus.layout.type[i] == BusType.PV:
            system.change_bus_type(i, BusType.PQ)
            logger.info(
                "Bus %s has no in-service generator and is treated as a demand bus.",
                labels[i], extra={"bus": labels[i]},
            )
        if generators and bus.layout.type[i] != BusType.PQ:
            magnitude[i] = system.generator.voltage.magnitude[generators[0]]

    if not bus.supply.generator[bus.layout.slack]:
        change_slack_bus(system)

    return PolarVoltage(magnitude=magnitude, angle=angle)


def change_slack_bus(system: PowerSystem) -> int:
    """Hand the slack role to the first generator bus with an in-service generator."""
    bus = system.bus
    labels = bus.label.labels()
    old = bus.layout.slack
    system.change_bus_type(old, BusType.PQ)

    for i in range(bus.number):
        if bus.layout.type[i] == BusType.PV and bus.supply.generator[i]:
            system.change_bus_type(i, BusType.SLACK)
            logger.info(
                "The slack bus %s did not have an in-service generator; bus %s is the new slack bus.",
                labels[old], labels[i], extra={"bus": labels[i]},
            )
            return i

    raise StructureError(
        "No generator buses with an in-service generator found in the power system. "
        "Slack bus definition not possible."
    )


# ======================================================================
# Solver contract
# ======================================================================

class PowerFlowSolver(ABC):
    """Base class holding the voltage state and the model guard."""

    name: str = ""

    def __init__(self, system: PowerSystem, voltage: PolarVoltage) -> None:
        self.system = system
        self.voltage = voltage
        self.iteration = 0
        self._metrics = ConvergenceMetrics()
        self._bus_number = system.bus.number
        self._bus_pattern = system.bus.layout.pattern

    @property
    def metrics(self) -> ConvergenceMetrics:
        return self._metrics

    def check_model(self) -> None:
        """Raise ModelStateError if the network changed under the solver."""
        if self.system.bus.number != self._bus_number:
            raise ModelStateError(
                f"The {self.name} model cannot be reused after a bus was added."
            )
        if self.system.bus.layout.pattern != self._bus_pattern:
            raise ModelStateError(
                f"The {self.name} model cannot be reused after a bus type change."
            )

    @abstractmethod
    def mismatch(self) -> ConvergenceMetrics:
        """Evaluate mismatches at the current voltage."""

    @abstractmethod
    def solve(self) -> None:
        """Perform one iteration."""

    def step(self) -> ConvergenceMetrics:
        self.solve()
        return self.mismatch()


def factorize(matrix: sp.spmatrix, name: str) -> SuperLU:
    """Sparse LU factorisation, raising SingularMatrixError on failure."""
    try:
        return splu(sp.csc_matrix(matrix))
    except RuntimeError as exc:
        raise SingularMatrixError(f"The {name} is singular: {exc}") from exc


def solve_factorized(factor: SuperLU, rhs: np.ndarray, name: str) -> np.ndarray:
    solution = factor.solve(rhs)
    if not np.all(np.isfinite(solution)):
        raise SingularMatrixError(f"The {name} solve produced non-finite values.")
    return solution


# ======================================================================
# Shared power evaluation
# ======================================================================

def specified_power(system: PowerSystem) -> np.ndarray:
    """Complex bus injection set by generators minus demand."""
    bus = system.bus
    return (
        np.asarray(bus.supply.active, dtype=float) - np.asarray(bus.demand.active, dtype=float)
        + 1j * (np.asarray(bus.supply.reactive, dtype=float) - np.asarray(bus.demand.reactive, dtype=float))
    )


def power_injection(nodal_matrix: sp.spmatrix, voltage: np.ndarray) -> np.ndarray:
    """Complex bus injection S = V·conj(Y·V)."""
    return voltage * np.conj(nodal_matrix @ voltage)


def max_abs(values: np.ndarray) -> float:
    return float(np.max(np.abs(values))) if values.size else 0.0
