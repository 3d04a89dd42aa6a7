"""Ensemble aggregation and checkpoint recording.

ensemble_mean / ensemble_stddev combine the runs' infected-oak grids
cell by cell. Both results are float64: the population standard
deviation is sqrt(Σ (x_i − mean)² / N) without per-cell truncation.
``truncate=True`` reproduces the integer rasters written by the old
r.spread.sod module.

CheckpointRecorder keeps the dated aggregate grids produced during a run
and can persist them to a compressed npz:

    recorder = CheckpointRecorder()
    recorder.record(date, mean, stddev)
    recorder.save("checkpoints.npz")
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np

from sod_spread.grid import STAT_DTYPE, Grid, check_compatible


# ═══════════════════════════════════════════════════════════════════════
# ENSEMBLE STATISTICS
# ═══════════════════════════════════════════════════════════════════════

def ensemble_mean(grids: Sequence[Grid], truncate: bool = False) -> Grid:
    """Elementwise mean of the run grids."""
    if not grids:
        raise ValueError("ensemble_mean needs at least one grid")
    check_compatible(*grids)
    total = grids[0].zeros_like(STAT_DTYPE)
    for g in grids:
        total = total + g.values.astype(STAT_DTYPE)
    mean = total / len(grids)
    if truncate:
        mean = mean.map(np.trunc)
    return mean


def ensemble_stddev(grids: Sequence[Grid], mean: Grid,
                    truncate: bool = False) -> Grid:
    """Elementwise population standard deviation around ``mean``."""
    if not grids:
        raise ValueError("ensemble_stddev needs at least one grid")
    check_compatible(mean, *grids)
    acc = mean.zeros_like(STAT_DTYPE)
    for g in grids:
        diff = g.values.astype(STAT_DTYPE) - mean.values
        acc = acc + diff * diff
    variance = acc / len(grids)
    if truncate:
        variance = variance.map(np.trunc)
    std = variance.map(np.sqrt)
    if truncate:
        std = std.map(np.trunc)
    return std


# ═══════════════════════════════════════════════════════════════════════
# CHECKPOINT RECORDER
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class Checkpoint:
    """Aggregate state at one checkpoint date."""
    date: datetime.date
    mean: Grid
    stddev: Optional[Grid] = None


class CheckpointRecorder:
    """In-memory series of dated ensemble aggregates."""

    def __init__(self):
        self.checkpoints: List[Checkpoint] = []

    def __len__(self) -> int:
        return len(self.checkpoints)

    def record(self, date: datetime.date, mean: Grid,
               stddev: Optional[Grid] = None) -> Checkpoint:
        cp = Checkpoint(date=date, mean=mean, stddev=stddev)
        self.checkpoints.append(cp)
        return cp

    def get_dates(self) -> List[datetime.date]:
        return [cp.date for cp in self.checkpoints]

    def save(self, path: str) -> None:
        """Save all checkpoints to a compressed npz file.

        Arrays are stored as ``c{i}_mean`` / ``c{i}_std`` plus metadata
        arrays for dates (ISO strings) and resolution.
        """
        if not self.checkpoints:
            return
        arrays = {}
        for i, cp in enumerate(self.checkpoints):
            arrays[f"c{i}_mean"] = cp.mean.values
            if cp.stddev is not None:
                arrays[f"c{i}_std"] = cp.stddev.values
        first = self.checkpoints[0].mean
        arrays['meta_dates'] = np.array([cp.date.isoformat() for cp in self.checkpoints])
        arrays['meta_res'] = np.array([first.ew_res, first.ns_res], dtype=np.float64)

        Path(path).parent.mkdir(parents=True, exist_ok=True)
        np.savez_compressed(path, **arrays)

    @classmethod
    def load(cls, path: str) -> "CheckpointRecorder":
        """Load checkpoints from an npz file written by save()."""
        recorder = cls()
        with np.load(path) as data:
            ew_res, ns_res = (float(v) for v in data['meta_res'])
            for i, iso in enumerate(data['meta_dates']):
                mean = Grid(data[f"c{i}_mean"], ew_res, ns_res)
                std_key = f"c{i}_std"
                stddev = (Grid(data[std_key], ew_res, ns_res)
                          if std_key in data.files else None)
                recorder.record(datetime.date.fromisoformat(str(iso)), mean, stddev)
        return recorder
