"""AC and DC power flow for nodalflow.

Available solvers:

* **newton_raphson** -- full Jacobian, quadratic convergence.
* **fast_newton_raphson_bx** / **fast_newton_raphson_xb** -- constant
  decoupled matrices factorised once.
* **gauss_seidel** -- sequential complex voltage sweeps.
* **dc_power_flow** -- single linear solve for bus angles.

Every solver performs one iteration per ``solve()``; ``solve_power_flow``
drives the loop.
"""

from .base import Algorithm, ConvergenceMetrics, PolarVoltage, PowerFlowSolver
from .newton_raphson import NewtonRaphson, newton_raphson
from .fast_decoupled import FastNewtonRaphson, fast_newton_raphson_bx, fast_newton_raphson_xb
from .gauss_seidel import GaussSeidel, gauss_seidel
from .dc_power_flow import DCPowerFlow, dc_power_flow
from .runner import PowerFlowResult, solve_power_flow
from .analysis import ac_current, ac_power, dc_power
from .reactive_limits import adjust_angle, reactive_limits

__all__ = [
    "Algorithm",
    "ConvergenceMetrics",
    "PolarVoltage",
    "PowerFlowSolver",
    "NewtonRaphson",
    "newton_raphson",
    "FastNewtonRaphson",
    "fast_newton_raphson_bx",
    "fast_newton_raphson_xb",
    "GaussSeidel",
    "gauss_seidel",
    "DCPowerFlow",
    "dc_power_flow",
    "PowerFlowResult",
    "solve_power_flow",
    "ac_current",
    "ac_power",
    "dc_power",
    "adjust_angle",
    "reactive_limits",
]
