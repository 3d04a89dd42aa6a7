"""Command-line entry point: ``sod-spread``.

Options mirror the r.spread.sod module (umca, oaks, lvtree, ioaks, wind,
radial_type, ...). A YAML file given with --config supplies defaults;
explicit options override it.

Example:
    sod-spread --umca umca --oaks oaks --lvtree lvtree --ioaks ioaks \\
        --output sod_mean --output-series sod --wind NE \\
        --start-time 2000 --end-time 2004 --random-seed 42 --runs 10 --nprocs 4
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Dict, List, Optional

import yaml

from sod_spread import __version__
from sod_spread.config import (
    RADIAL_TYPES,
    WIND_DIRECTIONS,
    SimulationConfig,
    config_from_dict,
    config_to_dict,
    deep_merge,
    default_config,
    load_config,
    validate_config,
)
from sod_spread.errors import SodSpreadError
from sod_spread.model import run_simulation
from sod_spread.raster_io import RasterStore, load_host_rasters
from sod_spread.weather import build_weather

logger = logging.getLogger('sod_spread')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='sod-spread',
        description="Stochastic landscape spread model of forest pathogen - "
                    "Sudden Oak Death (SOD)",
    )
    parser.add_argument('--version', action='version',
                        version=f'%(prog)s {__version__}')
    parser.add_argument('--config', type=str, default=None,
                        help="YAML configuration file")
    parser.add_argument('-v', '--verbose', action='count', default=0,
                        help="Increase log verbosity (-v info, -vv debug)")

    inp = parser.add_argument_group('Input')
    inp.add_argument('--input-dir', help="Directory holding input rasters")
    inp.add_argument('--umca', help="Input bay laurel (UMCA) raster map")
    inp.add_argument('--oaks', help="Input SOD-oaks raster map")
    inp.add_argument('--lvtree', help="Input live tree (all) raster map")
    inp.add_argument('--ioaks', help="Initial sources of infection raster map")

    out = parser.add_argument_group('Output')
    out.add_argument('--output-dir', help="Directory for output rasters")
    out.add_argument('--output', help="Name of the final mean raster")
    out.add_argument('--output-series', help="Basename for output series")
    out.add_argument('--stddev', help="Standard deviations")
    out.add_argument('--stddev-series',
                     help="Basename for output series of standard deviations")
    out.add_argument('--checkpoint-file',
                     help="npz file collecting every series checkpoint")

    wx = parser.add_argument_group('Weather')
    wx.add_argument('--wind', choices=WIND_DIRECTIONS,
                    help="Prevailing wind direction (NONE means no wind)")
    wx.add_argument('--ncdf-weather', help="Weather data (NetCDF, Mcoef/Ccoef)")
    wx.add_argument('--weather-file',
                    help="Text file with weather (moisture and temperature)")
    wx.add_argument('--weather-value', type=float,
                    help="Spatially and temporally constant weather coefficient")

    tm = parser.add_argument_group('Time')
    tm.add_argument('--start-time', type=int,
                    help="Start year for the simulation (January 1st)")
    tm.add_argument('--end-time', type=int,
                    help="End year for the simulation (December 31st)")
    tm.add_argument('--seasonality', choices=('yes', 'no'),
                    help="Spread limited to certain months (season)")

    sp = parser.add_argument_group('Spores')
    sp.add_argument('--spore-rate', type=float,
                    help="Spore production rate per week for each infected tree")
    sp.add_argument('--radial-type', choices=RADIAL_TYPES,
                    help="Radial distribution type")
    sp.add_argument('--scale-1', type=float,
                    help="Scale parameter for the first Cauchy distribution")
    sp.add_argument('--scale-2', type=float,
                    help="Scale parameter for the second Cauchy distribution")
    sp.add_argument('--kappa', type=float,
                    help="Concentration parameter for the von Mises distribution")
    sp.add_argument('--gamma', type=float,
                    help="Probability of using the first Cauchy distribution")

    rnd = parser.add_argument_group('Randomness')
    seed = rnd.add_mutually_exclusive_group()
    seed.add_argument('--random-seed', type=int,
                      help="Seed for random number generator")
    seed.add_argument('-s', dest='generate_seed', action='store_true',
                      help="Generate random seed (result is non-deterministic)")
    rnd.add_argument('--runs', type=int, help="Number of simulation runs")
    rnd.add_argument('--nprocs', type=int,
                     help="Number of threads for parallel computing")
    rnd.add_argument('--profile', action='store_true',
                     help="Log phase timings at the end of the run")
    return parser


# argparse dest → (section, key)
_OPTION_MAP = {
    'input_dir': ('inputs', 'directory'),
    'umca': ('inputs', 'umca'),
    'oaks': ('inputs', 'oaks'),
    'lvtree': ('inputs', 'lvtree'),
    'ioaks': ('inputs', 'ioaks'),
    'output_dir': ('output', 'directory'),
    'output': ('output', 'output'),
    'output_series': ('output', 'output_series'),
    'stddev': ('output', 'stddev'),
    'stddev_series': ('output', 'stddev_series'),
    'checkpoint_file': ('output', 'checkpoint_file'),
    'wind': ('spores', 'wind'),
    'ncdf_weather': ('weather', 'ncdf_weather'),
    'weather_file': ('weather', 'weather_file'),
    'weather_value': ('weather', 'weather_value'),
    'start_time': ('simulation', 'start_year'),
    'end_time': ('simulation', 'end_year'),
    'seasonality': ('simulation', 'seasonality'),
    'spore_rate': ('spores', 'spore_rate'),
    'radial_type': ('spores', 'radial_type'),
    'scale_1': ('spores', 'scale_1'),
    'scale_2': ('spores', 'scale_2'),
    'kappa': ('spores', 'kappa'),
    'gamma': ('spores', 'gamma'),
    'random_seed': ('simulation', 'seed'),
    'runs': ('simulation', 'runs'),
    'nprocs': ('simulation', 'threads'),
}


def args_to_overrides(args: argparse.Namespace) -> Dict:
    """Nested override dict from the options actually given."""
    overrides: Dict = {}
    for dest, (section, key) in _OPTION_MAP.items():
        value = getattr(args, dest, None)
        if value is not None:
            overrides.setdefault(section, {})[key] = value
    if args.generate_seed:
        overrides.setdefault('simulation', {}).update(seed=None, generate_seed=True)
    if args.profile:
        overrides.setdefault('simulation', {})['profile'] = True
    return overrides


def config_from_args(parser: argparse.ArgumentParser,
                     args: argparse.Namespace) -> SimulationConfig:
    overrides = args_to_overrides(args)
    if args.config is not None:
        return load_config(args.config, overrides=overrides)

    if args.random_seed is None and not args.generate_seed:
        parser.error("one of the arguments --random-seed -s is required")
    for dest in ('umca', 'oaks', 'lvtree', 'ioaks', 'output',
                 'start_time', 'end_time'):
        if getattr(args, dest) is None:
            parser.error(f"the following argument is required: "
                         f"--{dest.replace('_', '-')}")
    config = config_from_dict(deep_merge(config_to_dict(default_config()), overrides))
    validate_config(config)
    return config


def setup_logging(verbosity: int) -> None:
    level = {0: logging.WARNING, 1: logging.INFO}.get(verbosity, logging.DEBUG)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = config_from_args(parser, args)
        logger.debug("Configuration:\n%s",
                     yaml.safe_dump(config_to_dict(config), sort_keys=False))
        hosts = load_host_rasters(RasterStore(config.inputs.directory),
                                  config.inputs)
        weather = build_weather(config.weather, shape=hosts.shape)
    except (SodSpreadError, FileNotFoundError) as e:
        logger.error("%s", e)
        return 1

    def progress(year: int, end_year: int) -> None:
        logger.info("Year %d of %d done", year, end_year)

    try:
        result = run_simulation(config, hosts, weather,
                                store=RasterStore(config.output.directory),
                                progress_callback=progress)
    except SodSpreadError as e:
        logger.error("%s", e)
        return 1
    finally:
        close = getattr(weather, 'close', None)
        if close is not None:
            close()

    if result.terminated_early:
        logger.info("Stopped early on %s", result.termination_date)
    logger.info("Wrote %s (seed %d, %d runs)", config.output.output,
                result.seed, result.n_runs)
    return 0


if __name__ == "__main__":
    sys.exit(main())
