"""Exception hierarchy for sod-spread.

Every fatal condition is detected before the weekly loop starts: bad
options, unreadable or misaligned rasters, impossible tree counts, and
weather sources that are unreadable or shorter than the simulated period.
Events that land off-grid or on cells without susceptible hosts are not
errors.
"""


class SodSpreadError(Exception):
    """Base class for all sod-spread errors."""


class ConfigError(SodSpreadError, ValueError):
    """Invalid or inconsistent configuration value."""


class RasterIOError(SodSpreadError, OSError):
    """A raster could not be read or written."""


class GridMismatchError(SodSpreadError, ValueError):
    """Grids participating in one simulation differ in shape or resolution."""


class HostDataError(SodSpreadError, ValueError):
    """Host rasters hold negative or mutually inconsistent tree counts."""


class WeatherError(SodSpreadError, ValueError):
    """The weather source is missing, unreadable, inconsistent or too short."""
