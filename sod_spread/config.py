"""Configuration system for sod-spread.

YAML configuration with deep-merge support:
  base.yaml → scenario override → command-line overrides

Every value the simulation consumes lives in one of the sections below.
Validation runs once, before any raster is read or any run is created;
all failures raise ConfigError naming the offending option.

Defaults follow the r.spread.sod module this model descends from:
spore_rate=4.4, radial_type='cauchy', scale_1=20.57, kappa=2,
seasonality on (January–September).
"""

from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from sod_spread.errors import ConfigError


# ═══════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

WIND_DIRECTIONS = ('N', 'NE', 'E', 'SE', 'S', 'SW', 'W', 'NW', 'NONE')
RADIAL_TYPES = ('cauchy', 'cauchy_mix')
TERMINATION_POLICIES = ('all_runs', 'any_run', 'never')


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Simulation timing, randomness and ensemble control.

    termination: early-exit rule when the primary host (oaks) has no
      susceptible trees left:
        "all_runs": stop once every ensemble run is exhausted
        "any_run":  stop as soon as one run is exhausted
        "never":    always run to the end date
    """
    start_year: int = 2000
    end_year: int = 2000
    seed: Optional[int] = 42
    generate_seed: bool = False      # draw a seed from OS entropy (-s flag)
    runs: int = 1                    # ensemble members; seeds seed, seed+1, ...
    threads: int = 1                 # max runs in flight
    seasonality: bool = True         # spread only within the season
    season_last_month: int = 9       # season = months 1..season_last_month
    termination: str = 'all_runs'
    profile: bool = False            # PerfMonitor phase timings


@dataclass
class InputsSection:
    """Input raster names (resolved by the raster store)."""
    directory: str = '.'
    umca: str = 'umca'               # bay laurel, secondary host, sporulating
    oaks: str = 'oaks'               # SOD-susceptible oaks, primary host
    lvtree: str = 'lvtree'           # all live trees (infection ceiling)
    ioaks: str = 'ioaks'             # initially infected oaks


@dataclass
class WeatherSection:
    """Weather coefficient source; first configured one wins.

    ncdf_weather: NetCDF with Mcoef/Ccoef (week, row, col)
    weather_file: text file, one "moisture temperature" pair per week
    weather_value: spatially and temporally constant coefficient
    None of them: constant 1 (no weather effect)
    """
    ncdf_weather: Optional[str] = None
    weather_file: Optional[str] = None
    weather_value: Optional[float] = None


@dataclass
class SporeSection:
    """Spore production and dispersal kernel parameters."""
    spore_rate: float = 4.4          # spores per infected tree per week
    radial_type: str = 'cauchy'      # 'cauchy' or 'cauchy_mix'
    scale_1: float = 20.57           # first Cauchy scale (map units)
    scale_2: Optional[float] = None  # second Cauchy scale (cauchy_mix only)
    gamma: Optional[float] = None    # P(first Cauchy) (cauchy_mix only)
    kappa: float = 2.0               # von Mises concentration
    wind: str = 'NONE'               # prevailing wind direction


@dataclass
class OutputSection:
    """Output raster names; only ``output`` is mandatory."""
    directory: str = '.'
    output: str = 'sod_mean'
    output_series: Optional[str] = None
    stddev: Optional[str] = None
    stddev_series: Optional[str] = None
    integer_stats: bool = False      # truncate mean/stddev like legacy rasters
    checkpoint_file: Optional[str] = None  # npz with all checkpoint grids


@dataclass
class SimulationConfig:
    """Complete simulation configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    inputs: InputsSection = field(default_factory=InputsSection)
    weather: WeatherSection = field(default_factory=WeatherSection)
    spores: SporeSection = field(default_factory=SporeSection)
    output: OutputSection = field(default_factory=OutputSection)


_SECTION_MAP = {
    'simulation': SimulationSection,
    'inputs': InputsSection,
    'weather': WeatherSection,
    'spores': SporeSection,
    'output': OutputSection,
}


# ═══════════════════════════════════════════════════════════════════════
# PARSING HELPERS
# ═══════════════════════════════════════════════════════════════════════

def parse_seasonality(value: Union[str, bool]) -> bool:
    """Accept True/False or the strings 'yes'/'no'."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ('yes', 'no'):
        return value.lower() == 'yes'
    raise ConfigError(
        f"simulation.seasonality must be 'yes' or 'no', got {value!r}"
    )


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, rejecting unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    unknown = set(data) - valid_fields
    if unknown:
        raise ConfigError(
            f"Unknown option(s) for {section_cls.__name__}: {sorted(unknown)}"
        )
    return section_cls(**data)


def config_from_dict(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig (not validated)."""
    unknown = set(data) - set(_SECTION_MAP)
    if unknown:
        raise ConfigError(f"Unknown configuration section(s): {sorted(unknown)}")
    sections = {}
    for key, cls in _SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    config = SimulationConfig(**sections)
    config.simulation.seasonality = parse_seasonality(config.simulation.seasonality)
    return config


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ConfigError on failure.

    Checks:
      - Enumerated options (wind, radial_type, termination)
      - cauchy_mix has both scale_2 and gamma
      - Year ordering, ensemble size, thread count
      - Exactly one seed source
    """
    sim = config.simulation
    sp = config.spores

    # Enumerations
    if sp.wind not in WIND_DIRECTIONS:
        raise ConfigError(
            f"spores.wind must be one of {WIND_DIRECTIONS}, got '{sp.wind}'"
        )
    if sp.radial_type not in RADIAL_TYPES:
        raise ConfigError(
            f"spores.radial_type must be one of {RADIAL_TYPES}, "
            f"got '{sp.radial_type}'"
        )
    if sim.termination not in TERMINATION_POLICIES:
        raise ConfigError(
            f"simulation.termination must be one of {TERMINATION_POLICIES}, "
            f"got '{sim.termination}'"
        )
    parse_seasonality(sim.seasonality)

    # Conditionally required kernel parameters
    if sp.radial_type == 'cauchy_mix':
        if sp.scale_2 is None:
            raise ConfigError(
                "The option scale_2 is required for radial_type=cauchy_mix"
            )
        if sp.gamma is None:
            raise ConfigError(
                "The option gamma is required for radial_type=cauchy_mix"
            )
    if sp.gamma is not None and not (0.0 <= sp.gamma <= 1.0):
        raise ConfigError(f"spores.gamma must be in [0, 1], got {sp.gamma}")
    if sp.scale_1 <= 0:
        raise ConfigError(f"spores.scale_1 must be positive, got {sp.scale_1}")
    if sp.scale_2 is not None and sp.scale_2 <= 0:
        raise ConfigError(f"spores.scale_2 must be positive, got {sp.scale_2}")
    if sp.kappa < 0:
        raise ConfigError(f"spores.kappa must be >= 0, got {sp.kappa}")
    if sp.spore_rate < 0:
        raise ConfigError(
            f"spores.spore_rate must be >= 0, got {sp.spore_rate}"
        )

    # Time
    if sim.start_year > sim.end_year:
        raise ConfigError(
            f"start_year ({sim.start_year}) must not be after "
            f"end_year ({sim.end_year})"
        )
    if not (1 <= sim.season_last_month <= 12):
        raise ConfigError(
            f"simulation.season_last_month must be in 1..12, "
            f"got {sim.season_last_month}"
        )

    # Ensemble
    if sim.runs < 1:
        raise ConfigError(f"simulation.runs must be >= 1, got {sim.runs}")
    if sim.threads < 1:
        raise ConfigError(f"simulation.threads must be >= 1, got {sim.threads}")

    # Seed: exactly one of seed / generate_seed
    if sim.seed is not None and sim.generate_seed:
        raise ConfigError(
            "simulation.seed and simulation.generate_seed are mutually exclusive"
        )
    if sim.seed is None and not sim.generate_seed:
        raise ConfigError(
            "one of simulation.seed or simulation.generate_seed is required"
        )
    if sim.seed is not None and sim.seed < 0:
        raise ConfigError("simulation.seed must be non-negative")

    # Weather
    w = config.weather
    sources = [name for name in ('ncdf_weather', 'weather_file', 'weather_value')
               if getattr(w, name) is not None]
    if len(sources) > 1:
        warnings.warn(
            f"Several weather sources configured ({', '.join(sources)}); "
            f"using {sources[0]}",
            UserWarning,
            stacklevel=2,
        )
    if w.weather_value is not None and w.weather_value < 0:
        raise ConfigError(
            f"weather.weather_value must be >= 0, got {w.weather_value}"
        )

    if not config.output.output:
        raise ConfigError("output.output name is required")


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge YAML configuration.

    Merge order: base → scenario → overrides.
    Each layer overrides only the fields it specifies.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ConfigError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if not scenario_path.exists():
            raise FileNotFoundError(f"Scenario file not found: {scenario_path}")
        with open(scenario_path) as f:
            deep_merge(config_dict, yaml.safe_load(f) or {})

    if overrides is not None:
        deep_merge(config_dict, overrides)

    config = config_from_dict(config_dict)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config


def config_to_dict(config: SimulationConfig) -> Dict:
    """Plain-dict view of a config (YAML-serializable)."""
    return dataclasses.asdict(config)
