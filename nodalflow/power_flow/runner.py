"""Driving loop for the single-step power flow solvers."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from nodalflow.config import settings
from nodalflow.core.logging import solver_context
from nodalflow.network.network_model import PowerSystem
from nodalflow.power_flow.base import Algorithm, ConvergenceMetrics, PowerFlowSolver
from nodalflow.power_flow.dc_power_flow import dc_power_flow
from nodalflow.power_flow.fast_decoupled import fast_newton_raphson_bx, fast_newton_raphson_xb
from nodalflow.power_flow.gauss_seidel import gauss_seidel
from nodalflow.power_flow.newton_raphson import newton_raphson

logger = logging.getLogger(__name__)

SOLVERS = {
    Algorithm.NEWTON_RAPHSON: newton_raphson,
    Algorithm.FAST_NEWTON_RAPHSON_BX: fast_newton_raphson_bx,
    Algorithm.FAST_NEWTON_RAPHSON_XB: fast_newton_raphson_xb,
    Algorithm.GAUSS_SEIDEL: gauss_seidel,
    Algorithm.DC: dc_power_flow,
}


@dataclass
class PowerFlowResult:
    """Results of a power flow solution."""
    converged: bool
    iterations: int
    stopping: ConvergenceMetrics
    # Per-bus results (indexed by bus index)
    voltage_magnitude: np.ndarray
    voltage_angle: np.ndarray
    solver: PowerFlowSolver

    def voltage_at(self, bus_idx: int) -> complex:
        """Complex voltage at bus."""
        return complex(self.voltage_magnitude[bus_idx] * np.exp(1j * self.voltage_angle[bus_idx]))

    def bus_voltage_dict(self, system: PowerSystem) -> dict[str, float]:
        """Map bus label → voltage magnitude pu."""
        return {
            label: float(self.voltage_magnitude[idx])
            for idx, label in enumerate(system.bus.label.labels())
        }


def solve_power_flow(
    system: PowerSystem,
    algorithm: Algorithm | str = Algorithm.NEWTON_RAPHSON,
    max_iterations: int | None = None,
    tolerance: float | None = None,
) -> PowerFlowResult:
    """Set up a solver and iterate it to convergence.

    Each pass evaluates the mismatch, stops once both metrics are below
    ``tolerance`` and otherwise performs one iteration. DC power flow is a
    single linear solve.

    Args:
        system: power system to solve
        algorithm: one of ``Algorithm`` (or its string value)
        max_iterations: iteration cap (default from settings)
        tolerance: mismatch tolerance in per-unit (default from settings)
    """
    algorithm = Algorithm(algorithm)
    max_iterations = settings.max_iterations if max_iterations is None else max_iterations
    tolerance = settings.tolerance if tolerance is None else tolerance

    with solver_context(algorithm.value):
        solver = SOLVERS[algorithm](system)

        if algorithm == Algorithm.DC:
            solver.solve()
            stopping = solver.mismatch()
            logger.info("DC power flow solved: %d buses", system.bus.number)
            return PowerFlowResult(
                converged=True,
                iterations=1,
                stopping=stopping,
                voltage_magnitude=solver.voltage.magnitude.copy(),
                voltage_angle=solver.voltage.angle.copy(),
                solver=solver,
            )

        converged = False
        stopping = solver.metrics
        for iteration in range(max_iterations + 1):
            stopping = solver.mismatch()
            logger.debug(
                "Iteration %d: active %.3e, reactive %.3e",
                iteration, stopping.active, stopping.reactive,
                extra={
                    "iteration": iteration,
                    "stop_active": stopping.active,
                    "stop_reactive": stopping.reactive,
                },
            )
            if stopping.converged(tolerance):
                converged = True
                break
            if iteration == max_iterations:
                break
            solver.solve()

        if converged:
            logger.info(
                "%s converged in %d iterations", solver.name, solver.iteration,
                extra={"iteration": solver.iteration},
            )
        else:
            logger.warning(
                "%s did not converge in %d iterations (active %.3e, reactive %.3e)",
                solver.name, solver.iteration, stopping.active, stopping.reactive,
                extra={
                    "iteration": solver.iteration,
                    "stop_active": stopping.active,
                    "stop_reactive": stopping.reactive,
                },
            )

    return PowerFlowResult(
        converged=converged,
        iterations=solver.iteration,
        stopping=stopping,
        voltage_magnitude=solver.voltage.magnitude.copy(),
        voltage_angle=solver.voltage.angle.copy(),
        solver=solver,
    )
