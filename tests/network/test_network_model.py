"""Tests for nodalflow.network.network_model — PowerSystem mutation API."""

from __future__ import annotations

import logging
import math

import numpy as np
import pytest

from nodalflow.exceptions import LabelError, StructureError
from nodalflow.network.bus import BusType
from nodalflow.network.network_model import PowerSystem


def _supply_from_generators(system: PowerSystem) -> tuple[np.ndarray, np.ndarray]:
    active = np.zeros(system.bus.number)
    reactive = np.zeros(system.bus.number)
    for i in range(system.generator.number):
        if system.generator.layout.status[i] == 1:
            active[system.generator.layout.bus[i]] += system.generator.output.active[i]
            reactive[system.generator.layout.bus[i]] += system.generator.output.reactive[i]
    return active, reactive


def _assert_supply_consistent(system: PowerSystem) -> None:
    active, reactive = _supply_from_generators(system)
    np.testing.assert_allclose(system.bus.supply.active, active, atol=1e-12)
    np.testing.assert_allclose(system.bus.supply.reactive, reactive, atol=1e-12)
    for j, members in enumerate(system.bus.supply.generator):
        expected = [
            i for i in range(system.generator.number)
            if system.generator.layout.bus[i] == j and system.generator.layout.status[i] == 1
        ]
        assert members == expected


# ======================================================================
# Bus
# ======================================================================


class TestBus:
    """Bus creation, update and slack bookkeeping."""

    def test_add_bus_returns_dense_index(self):
        system = PowerSystem()
        assert system.add_bus(label="A", bus_type=BusType.SLACK) == 0
        assert system.add_bus(label="B") == 1
        assert system.bus.number == 2
        assert system.bus.layout.slack == 0
        assert system.bus.layout.type == [BusType.SLACK, BusType.PQ]

    def test_second_slack_rejected(self):
        system = PowerSystem()
        system.add_bus(label=1, bus_type=BusType.SLACK)
        with pytest.raises(StructureError, match="already been designated"):
            system.add_bus(label=2, bus_type=BusType.SLACK)
        assert system.bus.number == 1

    def test_duplicate_label_leaves_system_unchanged(self):
        system = PowerSystem()
        system.add_bus(label=1)
        with pytest.raises(LabelError):
            system.add_bus(label="1", active=0.5)
        assert system.bus.number == 1
        assert system.bus.demand.active == [0.0]

    def test_illegal_bus_type(self):
        system = PowerSystem()
        with pytest.raises(StructureError, match="bus type value"):
            system.add_bus(label=1, bus_type=7)
        assert system.bus.number == 0

    def test_update_bus_to_slack_requires_demoting_current(self, three_bus):
        with pytest.raises(StructureError, match="reassign the current slack bus"):
            three_bus.update_bus(2, bus_type=BusType.SLACK)
        three_bus.update_bus(1, bus_type=BusType.PV)
        assert three_bus.bus.layout.slack == -1
        three_bus.update_bus(2, bus_type=BusType.SLACK)
        assert three_bus.bus.layout.slack == 1

    def test_bus_type_change_bumps_pattern(self, three_bus):
        before = three_bus.bus.layout.pattern
        three_bus.update_bus(3, bus_type=BusType.PQ)
        assert three_bus.bus.layout.pattern == before
        three_bus.update_bus(2, bus_type=BusType.PQ)
        assert three_bus.bus.layout.pattern == before + 1

    def test_update_shunt_patches_diagonal(self, three_bus):
        three_bus.ac_model()
        before = three_bus.model.ac.nodal_matrix.toarray()
        three_bus.update_bus(3, conductance=0.01, susceptance=0.2)
        after = three_bus.model.ac.nodal_matrix.toarray()
        assert after[2, 2] - before[2, 2] == pytest.approx(0.01 + 0.2j)
        three_bus.update_bus(3, susceptance=0.0)
        assert three_bus.model.ac.nodal_matrix.toarray()[2, 2] - before[2, 2] == pytest.approx(0.01)

    def test_non_numeric_value_leaves_bus_unchanged(self, three_bus):
        pattern = three_bus.bus.layout.pattern
        with pytest.raises(StructureError, match="active value 'heavy' is not a number"):
            three_bus.update_bus(2, bus_type=BusType.PQ, active="heavy")
        assert three_bus.bus.layout.type[1] == BusType.PV
        assert three_bus.bus.layout.pattern == pattern
        with pytest.raises(StructureError):
            three_bus.add_bus(label=4, magnitude="one")
        assert three_bus.bus.number == 3
        assert "4" not in three_bus.bus.label.labels()

    def test_add_bus_empties_built_models(self, three_bus, caplog):
        three_bus.ac_model()
        three_bus.dc_model()
        with caplog.at_level(logging.INFO, logger="nodalflow"):
            three_bus.add_bus(label=4)
        assert three_bus.model.ac.is_empty
        assert three_bus.model.dc.is_empty
        assert "The AC model has been completely erased." in caplog.text
        assert "The DC model has been completely erased." in caplog.text
        assert three_bus.ac_model().nodal_matrix.shape == (4, 4)


# ======================================================================
# Branch
# ======================================================================


class TestBranch:
    """Branch creation and validation before mutation."""

    def test_unknown_bus_rejected(self, two_bus):
        with pytest.raises(LabelError):
            two_bus.add_branch(from_bus=1, to_bus=9, reactance=0.1)
        assert two_bus.branch.number == 1
        assert two_bus.branch.label.labels() == ["1"]

    def test_same_bus_rejected(self, two_bus):
        with pytest.raises(StructureError, match="two distinct buses"):
            two_bus.add_branch(from_bus=2, to_bus=2, reactance=0.1)
        assert two_bus.branch.number == 1

    def test_zero_impedance_rejected(self, two_bus):
        with pytest.raises(StructureError, match="resistance or reactance"):
            two_bus.add_branch(from_bus=1, to_bus=2)
        with pytest.raises(StructureError, match="resistance or reactance"):
            two_bus.update_branch(1, resistance=0.0, reactance=0.0)
        assert two_bus.branch.parameter.reactance == [0.1]

    def test_illegal_status_rejected(self, two_bus):
        with pytest.raises(StructureError, match="status value"):
            two_bus.update_branch(1, status=2)
        assert two_bus.branch.layout.status == [1]

    def test_in_service_counter(self, three_bus):
        assert three_bus.branch.layout.in_service == 3
        three_bus.set_branch_status(2, 0)
        assert three_bus.branch.layout.in_service == 2
        three_bus.set_branch_status(2, 0)
        assert three_bus.branch.layout.in_service == 2
        three_bus.set_branch_status(2, 1)
        assert three_bus.branch.layout.in_service == 3

    def test_zero_reactance_rejected_with_dc_model(self, two_bus):
        two_bus.dc_model()
        with pytest.raises(StructureError, match="nonzero reactance"):
            two_bus.add_branch(from_bus=1, to_bus=2, resistance=0.05)
        with pytest.raises(StructureError, match="nonzero reactance"):
            two_bus.update_branch(1, reactance=0.0)
        assert two_bus.branch.number == 1
        assert two_bus.branch.parameter.reactance == [0.1]

    def test_non_numeric_value_leaves_branch_unchanged(self, three_bus):
        ac = three_bus.ac_model()
        before = ac.nodal_matrix.toarray()
        with pytest.raises(StructureError, match="susceptance value"):
            three_bus.update_branch(1, reactance=0.08, susceptance="x")
        np.testing.assert_array_equal(ac.nodal_matrix.toarray(), before)
        assert three_bus.branch.parameter.reactance[0] == 0.06
        with pytest.raises(StructureError, match="turns_ratio value"):
            three_bus.add_branch(from_bus=1, to_bus=3, label="t", reactance=0.1, turns_ratio=[1.0])
        assert three_bus.branch.number == 3
        assert "t" not in three_bus.branch.label.labels()

    def test_ratings_do_not_touch_models(self, two_bus):
        ac = two_bus.ac_model()
        counter = ac.model
        two_bus.update_branch(1, long_term=1.5, min_diff_angle=-math.pi / 4)
        assert ac.model == counter
        assert two_bus.branch.rating.long_term == [1.5]


# ======================================================================
# Generator
# ======================================================================


class TestGenerator:
    """Generator registry and bus supply aggregates."""

    def test_supply_tracks_generators(self, three_bus):
        three_bus.add_generator(bus=2, label="g3", active=0.2, reactive=0.1)
        _assert_supply_consistent(three_bus)

        three_bus.update_generator("g3", active=0.3)
        _assert_supply_consistent(three_bus)

        three_bus.set_generator_status(2, 0)
        _assert_supply_consistent(three_bus)
        assert three_bus.bus.supply.generator[1] == [2]

        three_bus.set_generator_status(2, 1)
        _assert_supply_consistent(three_bus)
        assert three_bus.bus.supply.generator[1] == [1, 2]

    def test_out_of_service_generator_does_not_supply(self, three_bus):
        three_bus.add_generator(bus=3, label="off", status=0, active=0.4)
        _assert_supply_consistent(three_bus)
        assert three_bus.bus.supply.active[2] == 0.0
        assert three_bus.bus.layout.type[2] == BusType.PQ

    def test_generator_promotes_demand_bus(self, two_bus, caplog):
        pattern = two_bus.bus.layout.pattern
        with caplog.at_level(logging.INFO, logger="nodalflow"):
            two_bus.add_generator(bus=2, active=0.05, magnitude=1.01)
        assert two_bus.bus.layout.type[1] == BusType.PV
        assert two_bus.bus.layout.pattern == pattern + 1
        assert "becomes a generator bus" in caplog.text

    def test_enabling_generator_promotes_demand_bus(self, two_bus):
        two_bus.add_generator(bus=2, label="g", status=0)
        assert two_bus.bus.layout.type[1] == BusType.PQ
        two_bus.set_generator_status("g", 1)
        assert two_bus.bus.layout.type[1] == BusType.PV

    def test_last_generator_outage_bumps_pattern(self, three_bus):
        three_bus.add_generator(bus=2, label="b")
        pattern = three_bus.bus.layout.pattern
        three_bus.set_generator_status("b", 0)
        assert three_bus.bus.layout.pattern == pattern
        three_bus.set_generator_status(2, 0)
        assert three_bus.bus.layout.pattern == pattern + 1
        assert three_bus.bus.layout.type[1] == BusType.PV

    def test_non_numeric_value_leaves_generator_unchanged(self, three_bus):
        with pytest.raises(StructureError, match="magnitude value"):
            three_bus.update_generator(2, status=0, magnitude="high")
        assert three_bus.generator.layout.status[1] == 1
        assert three_bus.bus.supply.active[1] == 0.5
        _assert_supply_consistent(three_bus)

    def test_unknown_bus_rejected(self, two_bus):
        with pytest.raises(LabelError):
            two_bus.add_generator(bus=7)
        assert two_bus.generator.number == 1

    def test_default_capability(self, two_bus):
        capability = two_bus.generator.capability
        assert capability.min_active == [0.0]
        assert capability.max_active == [math.inf]
        assert capability.min_reactive == [-math.inf]
        assert capability.max_reactive == [math.inf]
