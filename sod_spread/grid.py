"""Raster grid primitive.

A thin wrapper around a 2D NumPy array that carries the cell resolution
(and, when read from disk, the affine transform and CRS). All grids in one
simulation share shape and resolution; arithmetic between grids checks this.

Infection counts are stored as int32. Ensemble statistics (mean, standard
deviation) are float64 so no per-cell truncation happens.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Union

import numpy as np

from sod_spread.errors import GridMismatchError


COUNT_DTYPE = np.int32
STAT_DTYPE = np.float64

Operand = Union["Grid", int, float, np.ndarray]


@dataclass
class Grid:
    """2D raster with west-east / north-south cell resolution."""
    values: np.ndarray
    ew_res: float = 1.0
    ns_res: float = 1.0
    transform: Optional[Any] = None   # rasterio Affine, when georeferenced
    crs: Optional[Any] = None

    def __post_init__(self):
        self.values = np.asarray(self.values)
        if self.values.ndim != 2:
            raise GridMismatchError(
                f"Grid values must be 2-D, got shape {self.values.shape}"
            )

    # ── shape & metadata ─────────────────────────────────────────────

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    @property
    def height(self) -> int:
        return self.values.shape[0]

    @property
    def width(self) -> int:
        return self.values.shape[1]

    @property
    def dtype(self):
        return self.values.dtype

    def same_shape(self, other: "Grid") -> bool:
        """True if both grids have identical dimensions and resolution."""
        return (
            self.shape == other.shape
            and np.isclose(self.ew_res, other.ew_res)
            and np.isclose(self.ns_res, other.ns_res)
        )

    def with_values(self, values: np.ndarray) -> "Grid":
        """New grid with the same georeferencing and the given values."""
        return Grid(values, self.ew_res, self.ns_res, self.transform, self.crs)

    # ── construction helpers ─────────────────────────────────────────

    def copy(self) -> "Grid":
        return self.with_values(self.values.copy())

    def astype(self, dtype) -> "Grid":
        return self.with_values(self.values.astype(dtype))

    def zeros_like(self, dtype=None) -> "Grid":
        return self.with_values(np.zeros(self.shape, dtype=dtype or self.dtype))

    def map(self, func: Callable[[np.ndarray], np.ndarray]) -> "Grid":
        """Apply a vectorized cell-wise transform, returning a new grid."""
        return self.with_values(np.asarray(func(self.values)))

    # ── indexing ─────────────────────────────────────────────────────

    def __getitem__(self, idx):
        return self.values[idx]

    def __setitem__(self, idx, value):
        self.values[idx] = value

    # ── arithmetic ───────────────────────────────────────────────────

    def _operand(self, other: Operand):
        if isinstance(other, Grid):
            if not self.same_shape(other):
                raise GridMismatchError(
                    f"Grid mismatch: {self.shape} @ ({self.ew_res}, {self.ns_res}) "
                    f"vs {other.shape} @ ({other.ew_res}, {other.ns_res})"
                )
            return other.values
        return other

    def __add__(self, other: Operand) -> "Grid":
        return self.with_values(self.values + self._operand(other))

    def __sub__(self, other: Operand) -> "Grid":
        return self.with_values(self.values - self._operand(other))

    def __mul__(self, other: Operand) -> "Grid":
        return self.with_values(self.values * self._operand(other))

    def __truediv__(self, other: Operand) -> "Grid":
        return self.with_values(self.values / self._operand(other))

    __radd__ = __add__
    __rmul__ = __mul__

    def __eq__(self, other) -> bool:
        if not isinstance(other, Grid):
            return NotImplemented
        return self.same_shape(other) and np.array_equal(self.values, other.values)

    __hash__ = None


def check_compatible(*grids: Grid) -> None:
    """Raise GridMismatchError unless all grids share shape and resolution."""
    if not grids:
        return
    first = grids[0]
    for i, g in enumerate(grids[1:], start=1):
        if not first.same_shape(g):
            raise GridMismatchError(
                f"grid {i} has shape {g.shape} and resolution "
                f"({g.ew_res}, {g.ns_res}); expected {first.shape} and "
                f"({first.ew_res}, {first.ns_res})"
            )
