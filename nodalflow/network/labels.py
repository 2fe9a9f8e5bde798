"""Label registry mapping external element labels to dense indices."""

from __future__ import annotations

from nodalflow.exceptions import LabelError


class LabelRegistry:
    """Ordered ``label -> index`` map for one element kind.

    Labels may be given as ``int`` or ``str`` and are stored as strings, so
    ``5`` and ``"5"`` refer to the same element. Indices are dense and
    0-based in insertion order.
    """

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._index: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, label: object) -> bool:
        return label is not None and str(label) in self._index

    def index(self, label: int | str) -> int:
        """Dense index of ``label``."""
        try:
            return self._index[str(label)]
        except KeyError:
            raise LabelError(
                f"The {self.kind} label {label!r} does not exist."
            ) from None

    def new_key(self, label: int | str | None) -> str:
        """Validate a label for the next element without registering it.

        ``None`` produces the next free numeric label.
        """
        if label is None:
            candidate = len(self._index) + 1
            while str(candidate) in self._index:
                candidate += 1
            return str(candidate)

        key = str(label)
        if key in self._index:
            raise LabelError(f"The {self.kind} label {label!r} is not unique.")
        return key

    def register(self, key: str) -> int:
        """Register a key produced by :meth:`new_key`; returns its index."""
        idx = len(self._index)
        self._index[key] = idx
        return idx

    def labels(self) -> list[str]:
        """Labels ordered by index."""
        return list(self._index)
