"""Tests for nodalflow.network.nodal_model — AC/DC nodal matrices."""

from __future__ import annotations

import math

import numpy as np
import pytest

from nodalflow.exceptions import StructureError
from nodalflow.network.nodal_model import build_ac_model, build_dc_model
from nodalflow.network.network_model import PowerSystem


def _ac_matrix(system: PowerSystem) -> np.ndarray:
    return system.model.ac.nodal_matrix.toarray()


def _dc_matrix(system: PowerSystem) -> np.ndarray:
    return system.model.dc.nodal_matrix.toarray()


def _apply_updates(system: PowerSystem) -> None:
    system.update_branch(3, resistance=0.02, reactance=0.12, susceptance=0.01)
    system.set_branch_status(5, 0)
    system.update_branch(8, turns_ratio=0.95, shift_angle=math.radians(3.0))
    system.set_branch_status(14, 0)
    system.set_branch_status(14, 1)
    system.add_branch(from_bus=1, to_bus=14, label="new", resistance=0.1, reactance=0.3, susceptance=0.02)
    system.add_branch(from_bus=6, to_bus=7, label="off", status=0, reactance=0.2)
    system.update_branch("off", status=1, shift_angle=math.radians(-2.0))
    system.update_bus(5, conductance=0.03, susceptance=-0.1)


# ======================================================================
# AC nodal matrix
# ======================================================================


class TestACModel:
    """AC nodal matrix construction."""

    def test_two_bus_entries(self, two_bus):
        ac = two_bus.ac_model()
        y = 1.0 / complex(0.01, 0.1)
        np.testing.assert_allclose(_ac_matrix(two_bus), [[y, -y], [-y, y]])
        assert ac.nodal_matrix.format == "csc"

    def test_symmetric_without_transformers(self, three_bus):
        matrix = three_bus.ac_model().nodal_matrix.toarray()
        np.testing.assert_allclose(matrix, matrix.T, rtol=1e-14)

    def test_transpose_matches(self, ieee14):
        ac = ieee14.ac_model()
        np.testing.assert_array_equal(ac.nodal_matrix_transpose.toarray(), ac.nodal_matrix.toarray().T)

    def test_row_sum_holds_shunt_and_transformer_terms(self, ieee14):
        ieee14.ac_model()
        # Row 9 sums to the 19 MVAr capacitor plus the off-nominal transformer 4-9
        row_sum = _ac_matrix(ieee14)[8].sum()
        assert row_sum.real == pytest.approx(0.0, abs=1e-9)
        assert row_sum.imag == pytest.approx(0.19 - (1.0 - 1.0 / 0.969) / 0.55618, rel=1e-9)

    def test_off_nominal_transformer(self):
        system = PowerSystem()
        system.add_bus(label=1)
        system.add_bus(label=2)
        system.add_branch(from_bus=1, to_bus=2, reactance=0.2, turns_ratio=0.9, shift_angle=0.1)
        system.ac_model()
        matrix = _ac_matrix(system)
        y = 1.0 / 0.2j
        t = (1.0 / 0.9) * np.exp(-0.1j)
        assert matrix[0, 0] == pytest.approx(y / 0.81)
        assert matrix[1, 1] == pytest.approx(y)
        assert matrix[0, 1] == pytest.approx(-np.conj(t) * y)
        assert matrix[1, 0] == pytest.approx(-t * y)

    def test_zero_turns_ratio_means_nominal(self, two_bus):
        two_bus.ac_model()
        before = _ac_matrix(two_bus)
        two_bus.update_branch(1, turns_ratio=0.0)
        np.testing.assert_allclose(_ac_matrix(two_bus), before, atol=1e-12)

    def test_out_of_service_branch_keeps_pattern(self, three_bus):
        three_bus.set_branch_status(3, 0)
        ac = three_bus.ac_model()
        assert ac.nodal_matrix.nnz == 9
        assert ac.nodal_matrix.toarray()[1, 2] == 0.0


class TestACIncremental:
    """Incremental AC updates agree with a full rebuild."""

    def test_incremental_equals_rebuild(self, ieee14):
        ieee14.ac_model()
        _apply_updates(ieee14)
        incremental = _ac_matrix(ieee14)
        incremental_transpose = ieee14.model.ac.nodal_matrix_transpose.toarray()

        build_ac_model(ieee14)
        np.testing.assert_allclose(incremental, _ac_matrix(ieee14), atol=1e-10)
        np.testing.assert_allclose(incremental_transpose, _ac_matrix(ieee14).T, atol=1e-10)

    def test_no_op_update_is_bit_identical(self, ieee14):
        ac = ieee14.ac_model()
        data = ac.nodal_matrix.data.copy()
        indices = ac.nodal_matrix.indices.copy()
        indptr = ac.nodal_matrix.indptr.copy()
        counter = ac.model

        ieee14.update_branch(4)

        np.testing.assert_array_equal(ac.nodal_matrix.data, data)
        np.testing.assert_array_equal(ac.nodal_matrix.indices, indices)
        np.testing.assert_array_equal(ac.nodal_matrix.indptr, indptr)
        assert ac.model == counter

    def test_status_round_trip(self, ieee14):
        ieee14.ac_model()
        original = _ac_matrix(ieee14)
        ieee14.set_branch_status(9, 0)
        assert not np.allclose(_ac_matrix(ieee14), original)
        ieee14.set_branch_status(9, 1)
        np.testing.assert_allclose(_ac_matrix(ieee14), original, atol=1e-12)

    def test_counters(self, three_bus):
        ac = three_bus.ac_model()
        model, pattern = ac.model, ac.pattern

        three_bus.set_branch_status(1, 0)
        assert ac.model > model
        assert ac.pattern == pattern

        three_bus.add_bus(label=4)
        three_bus.ac_model()
        pattern = ac.pattern
        three_bus.add_branch(from_bus=3, to_bus=4, reactance=0.1)
        assert ac.pattern == pattern + 1

    def test_cached_terms_cleared_when_out_of_service(self, three_bus):
        ac = three_bus.ac_model()
        assert ac.admittance[0] != 0
        three_bus.set_branch_status(1, 0)
        assert ac.admittance[0] == 0
        assert ac.nodal_from_from[0] == 0
        three_bus.set_branch_status(1, 1)
        assert ac.admittance[0] == pytest.approx(1.0 / complex(0.02, 0.06))


# ======================================================================
# DC nodal matrix
# ======================================================================


class TestDCModel:
    """DC nodal matrix and phase-shift injections."""

    def test_two_bus_entries(self, two_bus):
        two_bus.dc_model()
        np.testing.assert_allclose(_dc_matrix(two_bus), [[10.0, -10.0], [-10.0, 10.0]])

    def test_turns_ratio_scales_admittance(self, ieee14):
        dc = ieee14.dc_model()
        assert dc.admittance[7] == pytest.approx(1.0 / (0.978 * 0.20912))

    def test_phase_shift_injection(self):
        system = PowerSystem()
        system.add_bus(label=1)
        system.add_bus(label=2)
        system.add_branch(from_bus=1, to_bus=2, reactance=0.5, shift_angle=0.2)
        dc = system.dc_model()
        assert dc.shift_power == pytest.approx([-0.4, 0.4])

    def test_zero_reactance_rejected(self, two_bus):
        two_bus.add_branch(from_bus=1, to_bus=2, resistance=0.05)
        with pytest.raises(StructureError, match="nonzero reactance"):
            build_dc_model(two_bus)

    def test_incremental_equals_rebuild(self, ieee14):
        ieee14.dc_model()
        _apply_updates(ieee14)
        incremental = _dc_matrix(ieee14)
        shift = list(ieee14.model.dc.shift_power)

        build_dc_model(ieee14)
        np.testing.assert_allclose(incremental, _dc_matrix(ieee14), atol=1e-10)
        np.testing.assert_allclose(shift, ieee14.model.dc.shift_power, atol=1e-10)

    def test_status_round_trip(self, ieee14):
        dc = ieee14.dc_model()
        original = _dc_matrix(ieee14)
        model = dc.model
        ieee14.set_branch_status(2, 0)
        ieee14.set_branch_status(2, 1)
        np.testing.assert_allclose(_dc_matrix(ieee14), original, atol=1e-12)
        assert dc.model == model + 2

    def test_resistance_change_leaves_dc_model(self, ieee14):
        dc = ieee14.dc_model()
        model = dc.model
        ieee14.update_branch(1, resistance=0.03)
        assert dc.model == model
