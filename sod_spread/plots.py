"""Static matplotlib figures for sod-spread outputs.

Each function takes a Grid or a CheckpointRecorder and returns a matplotlib
Figure, ready for PNG export.

Usage:
    recorder = CheckpointRecorder.load("checkpoints.npz")
    fig = plot_infection_trajectory(recorder)
    fig.savefig("trajectory.png", dpi=150, bbox_inches="tight")

    python -m sod_spread.plots checkpoints.npz --out figures/
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

import matplotlib
matplotlib.use("Agg")  # Non-interactive backend
import matplotlib.pyplot as plt
import numpy as np

from sod_spread.aggregate import CheckpointRecorder
from sod_spread.grid import Grid


INFECTION_CMAP = "YlOrRd"
STDDEV_CMAP = "Blues"
MEAN_COLOR = "#d62728"


def _style_axis(ax, xlabel: str = "", ylabel: str = "", title: str = ""):
    """Apply consistent styling to an axis."""
    ax.set_xlabel(xlabel, fontsize=10)
    ax.set_ylabel(ylabel, fontsize=10)
    if title:
        ax.set_title(title, fontsize=12, fontweight="bold")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    ax.tick_params(labelsize=9)


def _extent(grid: Grid) -> List[float]:
    """Map-unit extent (left, right, bottom, top) for imshow."""
    if grid.transform is not None:
        left, top = grid.transform.c, grid.transform.f
    else:
        left, top = 0.0, grid.height * grid.ns_res
    return [left, left + grid.width * grid.ew_res,
            top - grid.height * grid.ns_res, top]


# ═══════════════════════════════════════════════════════════════════════
# PLOT FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════

def plot_infection_map(grid: Grid, title: str = "Mean infected oaks",
                       cmap: str = INFECTION_CMAP) -> plt.Figure:
    """Map of one aggregate grid (mean or stddev of infected oaks).

    Cells with zero value are left blank so the infected area stands out.
    """
    fig, ax = plt.subplots(figsize=(7, 6))
    values = grid.values.astype(np.float64)
    if values.any():
        values = np.ma.masked_equal(values, 0.0)
    im = ax.imshow(values, cmap=cmap, extent=_extent(grid),
                   interpolation="nearest")
    fig.colorbar(im, ax=ax, shrink=0.8, label="Trees per cell")
    _style_axis(ax, "Easting", "Northing", title)
    fig.tight_layout()
    return fig


def plot_infection_trajectory(recorder: CheckpointRecorder) -> plt.Figure:
    """Total mean infected oaks and infected area at each checkpoint.

    Args:
        recorder: Checkpoint series (in memory or loaded from npz).

    Returns:
        matplotlib Figure with two stacked panels.
    """
    dates = recorder.get_dates()
    totals = np.array([cp.mean.values.sum() for cp in recorder.checkpoints])
    cells = np.array([np.count_nonzero(cp.mean.values) for cp in recorder.checkpoints])

    fig, (ax_trees, ax_cells) = plt.subplots(2, 1, figsize=(10, 6), sharex=True)
    ax_trees.plot(dates, totals, marker="o", color=MEAN_COLOR, linewidth=1.5)
    _style_axis(ax_trees, "", "Infected oaks", "Ensemble mean infection")
    ax_cells.bar(dates, cells, width=200, color="#8da0cb", alpha=0.8)
    _style_axis(ax_cells, "Checkpoint", "Infected cells")
    fig.autofmt_xdate()
    fig.tight_layout()
    return fig


def save_figures(recorder: CheckpointRecorder, out_dir: Path,
                 dpi: int = 150) -> List[Path]:
    """Trajectory plus a map of the last checkpoint's mean (and stddev)."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    if not len(recorder):
        return []

    last = recorder.checkpoints[-1]
    figures = [
        ("trajectory.png", plot_infection_trajectory(recorder)),
        ("mean_map.png", plot_infection_map(
            last.mean, f"Mean infected oaks, {last.date.isoformat()}")),
    ]
    if last.stddev is not None:
        figures.append(("stddev_map.png", plot_infection_map(
            last.stddev, f"Std. dev. infected oaks, {last.date.isoformat()}",
            cmap=STDDEV_CMAP)))

    paths = []
    for name, fig in figures:
        path = out_dir / name
        fig.savefig(path, dpi=dpi, bbox_inches="tight")
        plt.close(fig)
        paths.append(path)
    return paths


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Plot a sod-spread checkpoint file")
    parser.add_argument("checkpoints", help="npz written with --checkpoint-file")
    parser.add_argument("--out", default="figures", help="Output directory")
    parser.add_argument("--dpi", type=int, default=150)
    args = parser.parse_args(argv)

    recorder = CheckpointRecorder.load(args.checkpoints)
    for path in save_figures(recorder, Path(args.out), dpi=args.dpi):
        print(f"  Saved {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
