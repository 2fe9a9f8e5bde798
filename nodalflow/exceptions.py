"""Error taxonomy for network mutation, call ordering and numerical failures."""

from __future__ import annotations

import numpy as np


class StructureError(ValueError):
    """Invalid network structure or parameter, raised before any mutation."""


class LabelError(StructureError, KeyError):
    """Unknown or duplicate element label."""

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return str(self.args[0]) if self.args else ""


class ModelStateError(RuntimeError):
    """An operation was called out of order or on an invalidated model."""


class SingularMatrixError(np.linalg.LinAlgError):
    """The Jacobian or nodal matrix could not be factorised."""
