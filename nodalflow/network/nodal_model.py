"""AC and DC nodal matrix construction and incremental maintenance.

The AC nodal matrix Y relates bus voltages to injected currents. For a
branch with series admittance y = 1/(R + jX), charging G + jB, turns ratio
τ and phase shift φ, with t = (1/τ)·e^(-jφ):

- Y_tt = y + (G + jB)/2
- Y_ff = Y_tt / τ²
- Y_ft = -conj(t)·y
- Y_tf = -t·y

The DC nodal matrix B uses b = 1/(τ·X) per branch, +b on both diagonals and
-b off-diagonal; phase shifters add a constant injection ∓φ·b.

Both matrices are kept in CSC form. Per-branch coefficients are cached in
lists aligned with the branch arrays, so a single branch change is patched
by subtracting its cached terms, recomputing them and adding them back,
instead of rebuilding the matrix.
"""

from __future__ import annotations

import cmath
import warnings
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
import scipy.sparse as sp

from nodalflow.exceptions import StructureError

if TYPE_CHECKING:
    from nodalflow.network.network_model import PowerSystem


def _empty_matrix(dtype: type) -> sp.csc_matrix:
    return sp.csc_matrix((0, 0), dtype=dtype)


@dataclass
class ACModel:
    """Complex nodal matrix, its transpose and per-branch π-model terms."""
    nodal_matrix: sp.csc_matrix = field(default_factory=lambda: _empty_matrix(complex))
    nodal_matrix_transpose: sp.csc_matrix = field(default_factory=lambda: _empty_matrix(complex))
    nodal_from_from: list[complex] = field(default_factory=list)
    nodal_from_to: list[complex] = field(default_factory=list)
    nodal_to_to: list[complex] = field(default_factory=list)
    nodal_to_from: list[complex] = field(default_factory=list)
    admittance: list[complex] = field(default_factory=list)
    transformer_ratio: list[complex] = field(default_factory=list)
    # model counts value changes, pattern counts nonzero-pattern changes
    model: int = 0
    pattern: int = 0

    @property
    def is_empty(self) -> bool:
        return self.nodal_matrix.shape[0] == 0


@dataclass
class DCModel:
    """Real nodal matrix, per-branch admittances and phase-shift injections."""
    nodal_matrix: sp.csc_matrix = field(default_factory=lambda: _empty_matrix(float))
    admittance: list[float] = field(default_factory=list)
    shift_power: list[float] = field(default_factory=list)
    model: int = 0
    pattern: int = 0

    @property
    def is_empty(self) -> bool:
        return self.nodal_matrix.shape[0] == 0


@dataclass
class Model:
    ac: ACModel = field(default_factory=ACModel)
    dc: DCModel = field(default_factory=DCModel)


# ======================================================================
# Sparse entry patching
# ======================================================================

def add_to_entry(matrix: sp.csc_matrix, row: int, col: int, value: complex) -> bool:
    """Add ``value`` to ``matrix[row, col]`` in place.

    Returns True when the position was not stored before, i.e. the nonzero
    pattern changed. Row indices must be sorted within each column.
    """
    start, end = matrix.indptr[col], matrix.indptr[col + 1]
    pos = start + int(np.searchsorted(matrix.indices[start:end], row))
    if pos < end and matrix.indices[pos] == row:
        matrix.data[pos] += value
        return False

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", sp.SparseEfficiencyWarning)
        matrix[row, col] = value
    matrix.sort_indices()
    return True


# ======================================================================
# AC model
# ======================================================================

def pi_model(system: PowerSystem, idx: int) -> tuple[complex, complex, complex, complex, complex, complex]:
    """π-model terms of branch ``idx`` from its current parameters.

    Returns (admittance, from_from, from_to, to_to, to_from, transformer_ratio).
    """
    param = system.branch.parameter
    admittance = 1.0 / complex(param.resistance[idx], param.reactance[idx])
    ratio_inv = 1.0 / system.branch.turns_ratio(idx)
    ratio = ratio_inv * cmath.exp(-1j * param.shift_angle[idx])

    to_to = admittance + 0.5 * complex(param.conductance[idx], param.susceptance[idx])
    from_from = ratio_inv ** 2 * to_to
    from_to = -ratio.conjugate() * admittance
    to_from = -ratio * admittance

    return admittance, from_from, from_to, to_to, to_from, ratio


def build_ac_model(system: PowerSystem) -> ACModel:
    """Build the AC nodal matrix from all in-service branches and bus shunts.

    Every branch contributes its (from, to) and (to, from) positions, zero
    valued when out of service, so status changes never alter the pattern.
    Parallel branches share positions and are summed during assembly.
    """
    ac = system.model.ac
    branch = system.branch
    layout = branch.layout
    n_bus = system.bus.number
    n_branch = branch.number

    ac.admittance = [0j] * n_branch
    ac.nodal_from_from = [0j] * n_branch
    ac.nodal_from_to = [0j] * n_branch
    ac.nodal_to_to = [0j] * n_branch
    ac.nodal_to_from = [0j] * n_branch
    ac.transformer_ratio = [0j] * n_branch

    diagonal = (
        np.asarray(system.bus.shunt.conductance, dtype=float)
        + 1j * np.asarray(system.bus.shunt.susceptance, dtype=float)
    )

    for i in range(n_branch):
        ac.transformer_ratio[i] = pi_model(system, i)[5]
        if layout.status[i] == 1:
            _store_pi_model(system, i)
            diagonal[layout.from_bus[i]] += ac.nodal_from_from[i]
            diagonal[layout.to_bus[i]] += ac.nodal_to_to[i]

    bus_index = np.arange(n_bus)
    from_bus = np.asarray(layout.from_bus, dtype=int)
    to_bus = np.asarray(layout.to_bus, dtype=int)
    rows = np.concatenate([bus_index, from_bus, to_bus])
    cols = np.concatenate([bus_index, to_bus, from_bus])
    data = np.concatenate([
        diagonal,
        np.asarray(ac.nodal_from_to, dtype=complex),
        np.asarray(ac.nodal_to_from, dtype=complex),
    ])

    nodal = sp.coo_matrix((data, (rows, cols)), shape=(n_bus, n_bus), dtype=complex).tocsc()
    nodal.sum_duplicates()
    ac.nodal_matrix = nodal
    ac.nodal_matrix_transpose = nodal.transpose().tocsc()
    ac.nodal_matrix_transpose.sort_indices()

    ac.model += 1
    ac.pattern += 1
    return ac


def _store_pi_model(system: PowerSystem, idx: int) -> None:
    ac = system.model.ac
    (
        ac.admittance[idx],
        ac.nodal_from_from[idx],
        ac.nodal_from_to[idx],
        ac.nodal_to_to[idx],
        ac.nodal_to_from[idx],
        ac.transformer_ratio[idx],
    ) = pi_model(system, idx)


def ac_parameter_update(system: PowerSystem, idx: int) -> None:
    """Recompute the cached π-model terms of branch ``idx``."""
    _store_pi_model(system, idx)


def ac_nodal_update(system: PowerSystem, idx: int, sign: float = 1.0) -> None:
    """Add (``sign=1``) or subtract (``sign=-1``) branch ``idx``'s cached terms.

    Touches four positions in the nodal matrix and the same four in its
    transpose.
    """
    ac = system.model.ac
    i = system.branch.layout.from_bus[idx]
    j = system.branch.layout.to_bus[idx]

    from_from = sign * ac.nodal_from_from[idx]
    from_to = sign * ac.nodal_from_to[idx]
    to_to = sign * ac.nodal_to_to[idx]
    to_from = sign * ac.nodal_to_from[idx]

    inserted = False
    for matrix in (ac.nodal_matrix, ac.nodal_matrix_transpose):
        inserted |= add_to_entry(matrix, i, i, from_from)
        inserted |= add_to_entry(matrix, j, j, to_to)
    inserted |= add_to_entry(ac.nodal_matrix, i, j, from_to)
    inserted |= add_to_entry(ac.nodal_matrix, j, i, to_from)
    inserted |= add_to_entry(ac.nodal_matrix_transpose, j, i, from_to)
    inserted |= add_to_entry(ac.nodal_matrix_transpose, i, j, to_from)

    ac.model += 1
    if inserted:
        ac.pattern += 1


def ac_shunt_update(system: PowerSystem, bus_idx: int, admittance: complex) -> None:
    """Add a shunt admittance change to the diagonal of bus ``bus_idx``."""
    ac = system.model.ac
    inserted = add_to_entry(ac.nodal_matrix, bus_idx, bus_idx, admittance)
    inserted |= add_to_entry(ac.nodal_matrix_transpose, bus_idx, bus_idx, admittance)
    ac.model += 1
    if inserted:
        ac.pattern += 1


def ac_push_zeros(ac: ACModel) -> None:
    """Append zero-valued cache entries for a newly added branch."""
    ac.admittance.append(0j)
    ac.nodal_from_from.append(0j)
    ac.nodal_from_to.append(0j)
    ac.nodal_to_to.append(0j)
    ac.nodal_to_from.append(0j)
    ac.transformer_ratio.append(0j)


def ac_set_zeros(ac: ACModel, idx: int) -> None:
    ac.admittance[idx] = 0j
    ac.nodal_from_from[idx] = 0j
    ac.nodal_from_to[idx] = 0j
    ac.nodal_to_to[idx] = 0j
    ac.nodal_to_from[idx] = 0j


def empty_ac_model(ac: ACModel) -> None:
    """Discard the AC model; required when the bus count changes."""
    ac.model += 1
    ac.pattern += 1

    ac.nodal_matrix = _empty_matrix(complex)
    ac.nodal_matrix_transpose = _empty_matrix(complex)
    ac.nodal_from_from = []
    ac.nodal_from_to = []
    ac.nodal_to_to = []
    ac.nodal_to_from = []
    ac.admittance = []
    ac.transformer_ratio = []


# ======================================================================
# DC model
# ======================================================================

def dc_admittance(system: PowerSystem, idx: int) -> float:
    """DC series admittance 1/(τ·X) of branch ``idx``, zero when out of service."""
    if system.branch.layout.status[idx] != 1:
        return 0.0
    reactance = system.branch.parameter.reactance[idx]
    if reactance == 0.0:
        raise StructureError(
            f"The DC model requires a nonzero reactance at branch index {idx}."
        )
    return 1.0 / (system.branch.turns_ratio(idx) * reactance)


def build_dc_model(system: PowerSystem) -> DCModel:
    """Build the DC nodal matrix and phase-shift injection vector."""
    dc = system.model.dc
    branch = system.branch
    layout = branch.layout
    n_bus = system.bus.number

    dc.shift_power = [0.0] * n_bus
    dc.admittance = [0.0] * branch.number
    diagonal = np.zeros(n_bus)

    for i in range(branch.number):
        if layout.status[i] == 1:
            dc.admittance[i] = dc_admittance(system, i)
            from_bus = layout.from_bus[i]
            to_bus = layout.to_bus[i]

            shift = branch.parameter.shift_angle[i] * dc.admittance[i]
            dc.shift_power[from_bus] -= shift
            dc.shift_power[to_bus] += shift

            diagonal[from_bus] += dc.admittance[i]
            diagonal[to_bus] += dc.admittance[i]

    bus_index = np.arange(n_bus)
    from_bus = np.asarray(layout.from_bus, dtype=int)
    to_bus = np.asarray(layout.to_bus, dtype=int)
    off_diagonal = -np.asarray(dc.admittance, dtype=float)
    rows = np.concatenate([bus_index, from_bus, to_bus])
    cols = np.concatenate([bus_index, to_bus, from_bus])
    data = np.concatenate([diagonal, off_diagonal, off_diagonal])

    nodal = sp.coo_matrix((data, (rows, cols)), shape=(n_bus, n_bus), dtype=float).tocsc()
    nodal.sum_duplicates()
    dc.nodal_matrix = nodal

    dc.model += 1
    dc.pattern += 1
    return dc


def dc_nodal_update(system: PowerSystem, idx: int, sign: float = 1.0) -> None:
    """Add or subtract branch ``idx``'s cached admittance at its four positions."""
    dc = system.model.dc
    i = system.branch.layout.from_bus[idx]
    j = system.branch.layout.to_bus[idx]
    admittance = sign * dc.admittance[idx]

    inserted = add_to_entry(dc.nodal_matrix, i, i, admittance)
    inserted |= add_to_entry(dc.nodal_matrix, j, j, admittance)
    inserted |= add_to_entry(dc.nodal_matrix, i, j, -admittance)
    inserted |= add_to_entry(dc.nodal_matrix, j, i, -admittance)

    dc.model += 1
    if inserted:
        dc.pattern += 1


def dc_shift_update(system: PowerSystem, idx: int, sign: float = 1.0) -> None:
    """Add or subtract branch ``idx``'s phase-shift injection."""
    dc = system.model.dc
    shift = sign * system.branch.parameter.shift_angle[idx] * dc.admittance[idx]
    dc.shift_power[system.branch.layout.from_bus[idx]] -= shift
    dc.shift_power[system.branch.layout.to_bus[idx]] += shift


def empty_dc_model(dc: DCModel) -> None:
    """Discard the DC model; required when the bus count changes."""
    dc.model += 1
    dc.pattern += 1

    dc.nodal_matrix = _empty_matrix(float)
    dc.admittance = []
    dc.shift_power = []
