"""Raster source and sink backed by rasterio.

RasterStore maps raster names to files in one directory
(``<directory>/<name>.tif``). Reads return single-band Grids carrying the
affine transform and CRS; writes persist them back with the same
georeferencing. Resolution is taken from the transform (|a|, |e|).
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import numpy as np
import rasterio
from rasterio import Affine
from rasterio.errors import RasterioIOError

from sod_spread.config import InputsSection
from sod_spread.errors import RasterIOError
from sod_spread.grid import Grid, check_compatible
from sod_spread.spread import check_host_counts

logger = logging.getLogger(__name__)

# Suppress NotGeoreferencedWarning for rasters without a transform
warnings.filterwarnings("ignore", category=UserWarning, module="rasterio")


class RasterStore:
    """Named rasters stored as files in one directory."""

    def __init__(self, directory: Union[str, Path] = '.',
                 driver: str = 'GTiff', suffix: str = '.tif'):
        self.directory = Path(directory)
        self.driver = driver
        self.suffix = suffix

    def path_for(self, name: str) -> Path:
        path = Path(name)
        if path.suffix:
            return path if path.is_absolute() else self.directory / path
        return self.directory / f"{name}{self.suffix}"

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def read(self, name: str) -> Grid:
        """Read band 1 of raster ``name`` as a Grid."""
        path = self.path_for(name)
        try:
            with rasterio.open(path) as src:
                values = src.read(1)
                transform = src.transform
                crs = src.crs
        except RasterioIOError as e:
            raise RasterIOError(f"Can not read raster '{name}' ({path}): {e}") from e
        logger.debug("Read raster %s %s from %s", name, values.shape, path)
        return Grid(values, abs(transform.a), abs(transform.e), transform, crs)

    def write(self, grid: Grid, name: str) -> Path:
        """Write ``grid`` as a single-band raster; return the file path."""
        path = self.path_for(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        transform = grid.transform
        if transform is None:
            transform = Affine.translation(0.0, grid.height * grid.ns_res) * \
                Affine.scale(grid.ew_res, -grid.ns_res)
        profile = {
            'driver': self.driver,
            'height': grid.height,
            'width': grid.width,
            'count': 1,
            'dtype': np.dtype(grid.dtype).name,
            'transform': transform,
        }
        if grid.crs is not None:
            profile['crs'] = grid.crs
        try:
            with rasterio.open(path, 'w', **profile) as dst:
                dst.write(grid.values, 1)
        except RasterioIOError as e:
            raise RasterIOError(f"Can not write raster '{name}' ({path}): {e}") from e
        logger.debug("Wrote raster %s to %s", name, path)
        return path


@dataclass
class HostRasters:
    """The four input rasters of a simulation."""
    umca: Grid
    oaks: Grid
    lvtree: Grid
    ioaks: Grid

    @property
    def shape(self):
        return self.umca.shape


def load_host_rasters(store: RasterStore, inputs: InputsSection) -> HostRasters:
    """Read bay laurel, oaks, live trees and infected oaks.

    Raises GridMismatchError when the rasters are not aligned and
    HostDataError when their tree counts are inconsistent.
    """
    hosts = HostRasters(
        umca=store.read(inputs.umca),
        oaks=store.read(inputs.oaks),
        lvtree=store.read(inputs.lvtree),
        ioaks=store.read(inputs.ioaks),
    )
    check_compatible(hosts.umca, hosts.oaks, hosts.lvtree, hosts.ioaks)
    check_host_counts(hosts.umca.values, hosts.oaks.values,
                      hosts.ioaks.values, hosts.lvtree.values)
    return hosts
