"""Shared test fixtures for nodalflow network and power flow tests."""

from __future__ import annotations

import numpy as np
import pytest

from nodalflow.network.builder import build_system_from_config
from nodalflow.network.bus import BusType
from nodalflow.network.network_model import PowerSystem


# ======================================================================
# Small systems (per-unit)
# ======================================================================

@pytest.fixture
def two_bus() -> PowerSystem:
    """Slack bus with a generator feeding a 0.1 + j0.02 pu load over one line."""
    system = PowerSystem()
    system.add_bus(label=1, bus_type=BusType.SLACK)
    system.add_bus(label=2, active=0.1, reactive=0.02)
    system.add_branch(from_bus=1, to_bus=2, label=1, resistance=0.01, reactance=0.1)
    system.add_generator(bus=1, label=1, magnitude=1.0)
    return system


@pytest.fixture
def three_bus() -> PowerSystem:
    """Meshed 3-bus system: slack, generator bus and demand bus."""
    system = PowerSystem()
    system.add_bus(label=1, bus_type=BusType.SLACK)
    system.add_bus(label=2, bus_type=BusType.PV)
    system.add_bus(label=3, active=0.9, reactive=0.3)

    system.add_branch(from_bus=1, to_bus=2, label=1, resistance=0.02, reactance=0.06, susceptance=0.03)
    system.add_branch(from_bus=1, to_bus=3, label=2, resistance=0.08, reactance=0.24, susceptance=0.025)
    system.add_branch(from_bus=2, to_bus=3, label=3, resistance=0.06, reactance=0.18, susceptance=0.02)

    system.add_generator(bus=1, label=1, magnitude=1.02)
    system.add_generator(bus=2, label=2, active=0.5, magnitude=1.01)
    return system


# ======================================================================
# IEEE 14-bus test case
# ======================================================================

# label, type, Pd (MW), Qd (MVAr), Bs (MVAr)
IEEE14_BUSES = [
    (1, "slack", 0.0, 0.0, 0.0),
    (2, "pv", 21.7, 12.7, 0.0),
    (3, "pv", 94.2, 19.0, 0.0),
    (4, "pq", 47.8, -3.9, 0.0),
    (5, "pq", 7.6, 1.6, 0.0),
    (6, "pv", 11.2, 7.5, 0.0),
    (7, "pq", 0.0, 0.0, 0.0),
    (8, "pv", 0.0, 0.0, 0.0),
    (9, "pq", 29.5, 16.6, 19.0),
    (10, "pq", 9.0, 5.8, 0.0),
    (11, "pq", 3.5, 1.8, 0.0),
    (12, "pq", 6.1, 1.6, 0.0),
    (13, "pq", 13.5, 5.8, 0.0),
    (14, "pq", 14.9, 5.0, 0.0),
]

# from, to, R, X, B, ratio
IEEE14_BRANCHES = [
    (1, 2, 0.01938, 0.05917, 0.0528, 0.0),
    (1, 5, 0.05403, 0.22304, 0.0492, 0.0),
    (2, 3, 0.04699, 0.19797, 0.0438, 0.0),
    (2, 4, 0.05811, 0.17632, 0.034, 0.0),
    (2, 5, 0.05695, 0.17388, 0.0346, 0.0),
    (3, 4, 0.06701, 0.17103, 0.0128, 0.0),
    (4, 5, 0.01335, 0.04211, 0.0, 0.0),
    (4, 7, 0.0, 0.20912, 0.0, 0.978),
    (4, 9, 0.0, 0.55618, 0.0, 0.969),
    (5, 6, 0.0, 0.25202, 0.0, 0.932),
    (6, 11, 0.09498, 0.1989, 0.0, 0.0),
    (6, 12, 0.12291, 0.25581, 0.0, 0.0),
    (6, 13, 0.06615, 0.13027, 0.0, 0.0),
    (7, 8, 0.0, 0.17615, 0.0, 0.0),
    (7, 9, 0.0, 0.11001, 0.0, 0.0),
    (9, 10, 0.03181, 0.0845, 0.0, 0.0),
    (9, 14, 0.12711, 0.27038, 0.0, 0.0),
    (10, 11, 0.08205, 0.19207, 0.0, 0.0),
    (12, 13, 0.22092, 0.19988, 0.0, 0.0),
    (13, 14, 0.17093, 0.34802, 0.0, 0.0),
]

# bus, Pg (MW), Qg (MVAr), Qmax, Qmin, Vg
IEEE14_GENERATORS = [
    (1, 232.4, -16.9, 10.0, 0.0, 1.06),
    (2, 40.0, 42.4, 50.0, -40.0, 1.045),
    (3, 0.0, 23.4, 40.0, 0.0, 1.01),
    (6, 0.0, 12.2, 24.0, -6.0, 1.07),
    (8, 0.0, 17.4, 24.0, -6.0, 1.09),
]


@pytest.fixture
def ieee14_config() -> dict:
    return {
        "base_power_mva": 100.0,
        "buses": [
            {
                "label": label,
                "bus_type": bus_type,
                "active_mw": pd,
                "reactive_mvar": qd,
                "susceptance_mvar": bs,
            }
            for label, bus_type, pd, qd, bs in IEEE14_BUSES
        ],
        "branches": [
            {
                "label": k + 1,
                "from_bus": f,
                "to_bus": t,
                "resistance_pu": r,
                "reactance_pu": x,
                "susceptance_pu": b,
                "turns_ratio": ratio,
            }
            for k, (f, t, r, x, b, ratio) in enumerate(IEEE14_BRANCHES)
        ],
        "generators": [
            {
                "bus": bus,
                "active_mw": pg,
                "reactive_mvar": qg,
                "max_reactive_mvar": qmax,
                "min_reactive_mvar": qmin,
                "magnitude_pu": vg,
            }
            for bus, pg, qg, qmax, qmin, vg in IEEE14_GENERATORS
        ],
    }


@pytest.fixture
def ieee14(ieee14_config) -> PowerSystem:
    return build_system_from_config(ieee14_config)


@pytest.fixture
def ieee14_solution() -> dict[str, np.ndarray]:
    """Reference AC power flow solution (magnitude pu, angle rad)."""
    magnitude = np.array([
        1.0600, 1.0450, 1.0100, 1.0177, 1.0195, 1.0700, 1.0615,
        1.0900, 1.0559, 1.0510, 1.0569, 1.0552, 1.0504, 1.0355,
    ])
    angle_deg = np.array([
        0.0, -4.9826, -12.7251, -10.3129, -8.7739, -14.2209, -13.3596,
        -13.3596, -14.9385, -15.0973, -14.7906, -15.0756, -15.1563, -16.0336,
    ])
    return {"magnitude": magnitude, "angle": np.radians(angle_deg)}
