"""Spore dispersal kernel.

One dispersal event = (distance, direction) drawn from:
  - Radial: |Cauchy(0, scale)|, or a two-component Cauchy mixture where a
    Bernoulli(gamma) draw picks scale_1 (success) or scale_2
  - Angular: von Mises(wind angle, kappa) when a prevailing wind is set,
    otherwise uniform on [0, 2π)

Directions are compass bearings in radians, clockwise from north. The
target cell is

    row = src_row − round(d · cos θ / ns_res)
    col = src_col + round(d · sin θ / ew_res)

so north is "up" (decreasing row). Targets off the grid are dropped
silently. All randomness comes from the caller's Generator.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from sod_spread.config import SporeSection
from sod_spread.errors import ConfigError


class Direction(Enum):
    """Prevailing wind direction as compass bearing in degrees."""
    N = 0
    NE = 45
    E = 90
    SE = 135
    S = 180
    SW = 225
    W = 270
    NW = 315
    NONE = None

    @classmethod
    def from_string(cls, text: str) -> "Direction":
        try:
            return cls[text.upper()]
        except KeyError:
            raise ConfigError(
                f"Invalid wind direction '{text}'; expected one of "
                f"{[d.name for d in cls]}"
            ) from None

    @property
    def radians(self) -> Optional[float]:
        if self.value is None:
            return None
        return np.deg2rad(self.value)


class RadialType(Enum):
    CAUCHY = 'cauchy'
    CAUCHY_MIX = 'cauchy_mix'

    @classmethod
    def from_string(cls, text: str) -> "RadialType":
        try:
            return cls(text)
        except ValueError:
            raise ConfigError(
                f"Invalid radial_type '{text}'; expected 'cauchy' or 'cauchy_mix'"
            ) from None


@dataclass(frozen=True)
class DispersalKernel:
    """Immutable dispersal parameters shared read-only by all runs."""
    radial_type: RadialType = RadialType.CAUCHY
    scale_1: float = 20.57
    kappa: float = 2.0
    wind: Direction = Direction.NONE
    scale_2: Optional[float] = None
    gamma: Optional[float] = None

    def __post_init__(self):
        if self.scale_1 <= 0:
            raise ConfigError(f"scale_1 must be positive, got {self.scale_1}")
        if self.kappa < 0:
            raise ConfigError(f"kappa must be >= 0, got {self.kappa}")
        if self.radial_type is RadialType.CAUCHY_MIX:
            if self.scale_2 is None:
                raise ConfigError(
                    "The option scale_2 is required for radial_type=cauchy_mix"
                )
            if self.gamma is None:
                raise ConfigError(
                    "The option gamma is required for radial_type=cauchy_mix"
                )
        if self.scale_2 is not None and self.scale_2 <= 0:
            raise ConfigError(f"scale_2 must be positive, got {self.scale_2}")
        if self.gamma is not None and not (0.0 <= self.gamma <= 1.0):
            raise ConfigError(f"gamma must be in [0, 1], got {self.gamma}")

    @classmethod
    def from_config(cls, spores: SporeSection) -> "DispersalKernel":
        return cls(
            radial_type=RadialType.from_string(spores.radial_type),
            scale_1=spores.scale_1,
            kappa=spores.kappa,
            wind=Direction.from_string(spores.wind),
            scale_2=spores.scale_2,
            gamma=spores.gamma,
        )

    # ── sampling ─────────────────────────────────────────────────────

    def sample_distances(self, rng: np.random.Generator, n: int) -> np.ndarray:
        """Draw n dispersal distances (map units)."""
        if self.radial_type is RadialType.CAUCHY_MIX:
            first = rng.random(n) < self.gamma
            scales = np.where(first, self.scale_1, self.scale_2)
        else:
            scales = self.scale_1
        return np.abs(scales * rng.standard_cauchy(n))

    def sample_directions(self, rng: np.random.Generator, n: int) -> np.ndarray:
        """Draw n compass bearings (radians)."""
        mu = self.wind.radians
        if mu is None:
            return rng.uniform(0.0, 2.0 * np.pi, n)
        return rng.vonmises(mu, self.kappa, n)

    def sample_targets(
        self,
        rng: np.random.Generator,
        row: int,
        col: int,
        n: int,
        shape: Tuple[int, int],
        ew_res: float = 1.0,
        ns_res: float = 1.0,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Disperse n spores from (row, col); return on-grid targets.

        Distances are drawn before directions for the whole batch. Returned
        arrays keep draw order with off-grid targets removed.
        """
        if n <= 0:
            empty = np.empty(0, dtype=np.intp)
            return empty, empty
        dist = self.sample_distances(rng, n)
        theta = self.sample_directions(rng, n)
        # Cauchy tails can exceed any grid; clamp before the integer cast
        limit = float(max(shape) + 1)
        with np.errstate(invalid='ignore', over='ignore'):
            drow = np.rint(dist * np.cos(theta) / ns_res)
            dcol = np.rint(dist * np.sin(theta) / ew_res)
        drow = np.clip(np.nan_to_num(drow, nan=limit, posinf=limit, neginf=-limit),
                       -limit, limit)
        dcol = np.clip(np.nan_to_num(dcol, nan=limit, posinf=limit, neginf=-limit),
                       -limit, limit)
        rows = row - drow.astype(np.intp)
        cols = col + dcol.astype(np.intp)
        height, width = shape
        on_grid = (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)
        return rows[on_grid], cols[on_grid]
