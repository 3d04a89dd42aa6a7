"""Weather coefficient providers.

Weather scales both spore production (at the source cell) and infection
probability (at the target cell). Three sources, chosen once at startup:

  - SpatialWeather:      NetCDF with moisture (Mcoef) and temperature
                         (Ccoef) coefficients, dims (week, row, col);
                         coefficient = Mcoef × Ccoef
  - ScalarSeriesWeather: one scalar per week, read from a text file of
                         "moisture temperature" pairs; coefficient = m × c
  - ConstantWeather:     one value for every cell and week (default 1)

All three expose ``fetch(week) -> WeeklyWeather``. Fetching is sequential;
the returned samples are read-only once handed to the ensemble.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import xarray as xr

from sod_spread.config import WeatherSection
from sod_spread.errors import WeatherError

logger = logging.getLogger(__name__)

MOISTURE_VAR = 'Mcoef'
TEMPERATURE_VAR = 'Ccoef'


@dataclass(frozen=True)
class WeeklyWeather:
    """Weather multiplier for one simulated week.

    grid: per-cell multiplier (None = spatially uniform)
    scalar: multiplier applied everywhere
    """
    week: int
    grid: Optional[np.ndarray] = None
    scalar: float = 1.0

    def multiplier_at(self, row: int, col: int) -> float:
        if self.grid is None:
            return self.scalar
        return float(self.grid[row, col]) * self.scalar

    def as_array(self, shape: Tuple[int, int]) -> np.ndarray:
        """Full multiplier surface for a grid of the given shape."""
        if self.grid is None:
            return np.full(shape, self.scalar, dtype=np.float64)
        return self.grid * self.scalar


class WeatherProvider:
    """Per-week weather multiplier source."""
    kind = 'abstract'
    n_weeks: Optional[int] = None    # None = any week index is available

    def fetch(self, week: int) -> WeeklyWeather:
        raise NotImplementedError

    def require_weeks(self, n_weeks: int) -> None:
        """Raise WeatherError unless weeks 0..n_weeks-1 can be fetched."""
        if self.n_weeks is not None and self.n_weeks < n_weeks:
            raise WeatherError(
                f"{self.kind} weather covers {self.n_weeks} weeks, "
                f"the simulation needs {n_weeks}"
            )

    def fetch_batch(self, weeks: Sequence[int]) -> List[WeeklyWeather]:
        """Fetch weeks one at a time, in order."""
        return [self.fetch(week) for week in weeks]


class ConstantWeather(WeatherProvider):
    kind = 'constant'

    def __init__(self, value: float = 1.0):
        self.value = float(value)

    def fetch(self, week: int) -> WeeklyWeather:
        return WeeklyWeather(week=week, scalar=self.value)


class ScalarSeriesWeather(WeatherProvider):
    """One spatially uniform coefficient per simulated week."""
    kind = 'series'

    def __init__(self, values: Sequence[float]):
        self.values = np.asarray(values, dtype=np.float64)
        self.n_weeks = len(self.values)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ScalarSeriesWeather":
        """Read "moisture temperature" pairs, one week per line."""
        path = Path(path)
        if not path.is_file():
            raise WeatherError(f"Weather file not found: {path}")
        values = []
        with open(path) as f:
            for lineno, line in enumerate(f, start=1):
                fields = line.split()
                if not fields:
                    continue
                if len(fields) < 2:
                    raise WeatherError(
                        f"{path}:{lineno}: expected 'moisture temperature', "
                        f"got {line.strip()!r}"
                    )
                try:
                    m, c = float(fields[0]), float(fields[1])
                except ValueError:
                    raise WeatherError(
                        f"{path}:{lineno}: non-numeric weather values "
                        f"{line.strip()!r}"
                    ) from None
                values.append(m * c)
        logger.debug("Read %d weekly weather coefficients from %s",
                     len(values), path)
        return cls(values)

    def __len__(self) -> int:
        return len(self.values)

    def fetch(self, week: int) -> WeeklyWeather:
        if not 0 <= week < len(self.values):
            raise WeatherError(
                f"No weather coefficient for week {week} "
                f"(series has {len(self.values)} weeks)"
            )
        return WeeklyWeather(week=week, scalar=float(self.values[week]))


class SpatialWeather(WeatherProvider):
    """Spatial weather coefficients from a NetCDF file (via xarray).

    The dataset is opened lazily by xarray; each ``fetch`` reads one
    week's slice of Mcoef and Ccoef. Not safe for concurrent reads, so
    the scheduler calls it from one thread only.
    """
    kind = 'spatial'

    def __init__(self, path: Union[str, Path],
                 shape: Optional[Tuple[int, int]] = None):
        self.path = Path(path)
        if not self.path.is_file():
            raise WeatherError(f"Weather coefficients file not found: {self.path}")
        try:
            self._dataset = xr.open_dataset(self.path)
        except (OSError, ValueError) as e:
            raise WeatherError(
                f"Can not open the weather coefficients file {self.path}: {e}"
            ) from e
        for var, label in ((MOISTURE_VAR, 'moisture'),
                           (TEMPERATURE_VAR, 'temperature')):
            if var not in self._dataset.variables:
                self._dataset.close()
                raise WeatherError(
                    f"Can not read the {label} coefficients ({var}) "
                    f"from {self.path}"
                )
        self._mcoef = self._dataset[MOISTURE_VAR]
        self._ccoef = self._dataset[TEMPERATURE_VAR]
        if self._mcoef.ndim != 3 or self._mcoef.shape != self._ccoef.shape:
            self._dataset.close()
            raise WeatherError(
                f"{MOISTURE_VAR} {self._mcoef.shape} and {TEMPERATURE_VAR} "
                f"{self._ccoef.shape} must be equal 3-D (week, row, col) arrays"
            )
        if shape is not None and tuple(self._mcoef.shape[1:]) != tuple(shape):
            self._dataset.close()
            raise WeatherError(
                f"Weather grid {tuple(self._mcoef.shape[1:])} does not match "
                f"host rasters {tuple(shape)}"
            )
        self.n_weeks = int(self._mcoef.shape[0])

    def fetch(self, week: int) -> WeeklyWeather:
        if not 0 <= week < self.n_weeks:
            raise WeatherError(
                f"Can not read weather for week {week} from {self.path} "
                f"({self.n_weeks} weeks available)"
            )
        mcf = np.asarray(self._mcoef[week].values, dtype=np.float64)
        ccf = np.asarray(self._ccoef[week].values, dtype=np.float64)
        return WeeklyWeather(week=week, grid=mcf * ccf)

    def close(self) -> None:
        self._dataset.close()


def build_weather(section: WeatherSection,
                  shape: Optional[Tuple[int, int]] = None) -> WeatherProvider:
    """Pick the weather strategy once: NetCDF > text file > value > 1."""
    if section.ncdf_weather is not None:
        provider = SpatialWeather(section.ncdf_weather, shape=shape)
    elif section.weather_file is not None:
        provider = ScalarSeriesWeather.from_file(section.weather_file)
    elif section.weather_value is not None:
        provider = ConstantWeather(section.weather_value)
    else:
        provider = ConstantWeather(1.0)
    logger.info("Weather source: %s", provider.kind)
    return provider
