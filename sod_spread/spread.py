"""Spread engine: sporulation and dispersal for one ensemble run.

Two host species share each cell:
  - secondary host: bay laurel (UMCA); sporulates, spreads the pathogen
  - primary host:   oaks; gets infected and dies back, does not sporulate

Weekly step for one run:
  1. generate(): spores ~ Poisson(I_umca × spore_rate × weather) per cell
  2. disperse(): each spore travels via the DispersalKernel; at an on-grid
     target with susceptible trees, one uniform draw u decides:
        u < S_umca/L · w                 → one bay laurel infected
        u < (S_umca + S_oaks)/L · w      → one oak infected
        otherwise                        → no infection
     where L = live trees and w = weather multiplier at the target.

Infection only moves a tree from S to I, so S + I per cell is constant,
S ≥ 0, and I never decreases. Each run mutates only its own HostState.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np

from sod_spread.errors import HostDataError
from sod_spread.grid import COUNT_DTYPE
from sod_spread.kernel import DispersalKernel
from sod_spread.rng import create_run_rng
from sod_spread.weather import WeeklyWeather


# ═══════════════════════════════════════════════════════════════════════
# HOST STATE
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class HostState:
    """Susceptible / infected tree counts for both species in one run."""
    susceptible_umca: np.ndarray
    infected_umca: np.ndarray
    susceptible_oaks: np.ndarray
    infected_oaks: np.ndarray

    @property
    def shape(self):
        return self.infected_umca.shape

    def copy(self) -> "HostState":
        return HostState(
            susceptible_umca=self.susceptible_umca.copy(),
            infected_umca=self.infected_umca.copy(),
            susceptible_oaks=self.susceptible_oaks.copy(),
            infected_oaks=self.infected_oaks.copy(),
        )

    def oaks_exhausted(self) -> bool:
        """True when no susceptible oak is left anywhere."""
        return not np.any(self.susceptible_oaks > 0)


def initial_umca_infection(umca: np.ndarray, infected_oaks: np.ndarray) -> np.ndarray:
    """Seed bay laurel infection from the initially infected oaks.

    Where oaks are infected, bay laurel infection is twice the infected
    oaks, capped at the bay laurel present. Elsewhere it is zero.
    """
    umca = np.asarray(umca)
    infected_oaks = np.asarray(infected_oaks)
    out = np.minimum(umca, 2 * infected_oaks)
    out = np.where(infected_oaks > 0, out, 0)
    return out.astype(COUNT_DTYPE)


def _first_cell(mask: np.ndarray) -> Tuple[int, int]:
    row, col = np.argwhere(mask)[0]
    return int(row), int(col)


def check_host_counts(umca: np.ndarray, oaks: np.ndarray,
                      infected_oaks: np.ndarray,
                      live_trees: Optional[np.ndarray] = None) -> None:
    """Reject tree counts no landscape can hold.

    Every count must be non-negative, infected oaks can not exceed the
    oaks of their cell, and bay laurel plus oaks can not exceed the live
    trees of their cell.

    Raises:
        HostDataError: Naming the offending raster and its first bad cell.
    """
    counts = {'umca': np.asarray(umca), 'oaks': np.asarray(oaks),
              'ioaks': np.asarray(infected_oaks)}
    if live_trees is not None:
        counts['lvtree'] = np.asarray(live_trees)
    for name, values in counts.items():
        bad = values < 0
        if np.any(bad):
            cell = _first_cell(bad)
            raise HostDataError(
                f"Raster '{name}' has {np.count_nonzero(bad)} cell(s) with a "
                f"negative tree count, first at {cell}: {values[cell]}")

    umca, oaks, ioaks = counts['umca'], counts['oaks'], counts['ioaks']
    bad = ioaks > oaks
    if np.any(bad):
        cell = _first_cell(bad)
        raise HostDataError(
            f"Raster 'ioaks' has more infected oaks than 'oaks' has oaks in "
            f"{np.count_nonzero(bad)} cell(s), first at {cell}: "
            f"{ioaks[cell]} > {oaks[cell]}")

    if 'lvtree' in counts:
        lvtree = counts['lvtree']
        bad = umca.astype(np.int64) + oaks > lvtree
        if np.any(bad):
            cell = _first_cell(bad)
            raise HostDataError(
                f"Raster 'lvtree' has fewer live trees than 'umca' + 'oaks' in "
                f"{np.count_nonzero(bad)} cell(s), first at {cell}: "
                f"{lvtree[cell]} < {umca[cell]} + {oaks[cell]}")


def initial_host_state(umca: np.ndarray, oaks: np.ndarray,
                       infected_oaks: np.ndarray,
                       live_trees: Optional[np.ndarray] = None) -> HostState:
    """Build the week-0 state shared (as copies) by every run.

    Counts are checked with check_host_counts first; live_trees is only
    needed for the live-tree bound.
    """
    check_host_counts(umca, oaks, infected_oaks, live_trees)
    umca = np.asarray(umca).astype(COUNT_DTYPE)
    oaks = np.asarray(oaks).astype(COUNT_DTYPE)
    infected_oaks = np.asarray(infected_oaks).astype(COUNT_DTYPE)
    infected_umca = initial_umca_infection(umca, infected_oaks)
    return HostState(
        susceptible_umca=umca - infected_umca,
        infected_umca=infected_umca,
        susceptible_oaks=oaks - infected_oaks,
        infected_oaks=infected_oaks.copy(),
    )


# ═══════════════════════════════════════════════════════════════════════
# SPORULATION RUN
# ═══════════════════════════════════════════════════════════════════════

class SporulationRun:
    """One ensemble member: its host state and its own random stream."""

    def __init__(self, run_id: int, seed: int, state: HostState):
        self.run_id = run_id
        self.seed = seed
        self.state = state
        self.rng = create_run_rng(seed)

    def generate(self, weather: WeeklyWeather, spore_rate: float) -> np.ndarray:
        """Draw this week's spore counts from infected bay laurel."""
        infected = self.state.infected_umca
        spores = np.zeros(infected.shape, dtype=np.int64)
        sources = infected > 0
        if np.any(sources):
            lam = (infected[sources] * spore_rate
                   * weather.as_array(infected.shape)[sources])
            spores[sources] = self.rng.poisson(lam)
        return spores

    def disperse(
        self,
        spores: np.ndarray,
        live_trees: np.ndarray,
        kernel: DispersalKernel,
        weather: WeeklyWeather,
        ew_res: float = 1.0,
        ns_res: float = 1.0,
    ) -> int:
        """Disperse spores and infect hosts in place; return new infections."""
        st = self.state
        shape = st.shape
        new_infections = 0
        for row, col in zip(*np.nonzero(spores)):
            rows, cols = kernel.sample_targets(
                self.rng, int(row), int(col), int(spores[row, col]),
                shape, ew_res, ns_res,
            )
            draws = self.rng.random(len(rows))
            for r, c, u in zip(rows, cols, draws):
                s_umca = st.susceptible_umca[r, c]
                s_oaks = st.susceptible_oaks[r, c]
                if s_umca <= 0 and s_oaks <= 0:
                    continue
                live = live_trees[r, c]
                if live <= 0:
                    continue
                w = weather.multiplier_at(r, c)
                p_umca = s_umca / live * w
                p_oaks = s_oaks / live * w
                if u < p_umca:
                    st.susceptible_umca[r, c] -= 1
                    st.infected_umca[r, c] += 1
                    new_infections += 1
                elif u < p_umca + p_oaks:
                    st.susceptible_oaks[r, c] -= 1
                    st.infected_oaks[r, c] += 1
                    new_infections += 1
        return new_infections

    def step(self, weather: WeeklyWeather, spore_rate: float,
             live_trees: np.ndarray, kernel: DispersalKernel,
             ew_res: float = 1.0, ns_res: float = 1.0) -> int:
        """One simulated week: generate, then disperse."""
        spores = self.generate(weather, spore_rate)
        return self.disperse(spores, live_trees, kernel, weather,
                             ew_res, ns_res)

    def run_weeks(self, batch: Iterable[WeeklyWeather], spore_rate: float,
                  live_trees: np.ndarray, kernel: DispersalKernel,
                  ew_res: float = 1.0, ns_res: float = 1.0) -> int:
        """Process a batch of weeks in the given (chronological) order."""
        total = 0
        for weather in batch:
            total += self.step(weather, spore_rate, live_trees, kernel,
                               ew_res, ns_res)
        return total
