"""Weekly scheduler and ensemble driver.

Master loop (one tick per simulated week, Jan 1 of start_year onwards):

  ACCUMULATING  week before the end date and inside the season (or
                seasonality off) → queue the week index
  early exit    oaks exhausted per the termination policy → TERMINATED
  PROCESSING    at the last week of a year or at the end date, with weeks
                queued: fetch weather for every queued week (sequential,
                one call per week), then advance every run through the
                batch in week order; runs execute concurrently
  CHECKPOINT    if series outputs are configured: ensemble mean / stddev
                of infected oaks, written under dated names
  TERMINATED    end date reached (or early exit); final mean (and stddev
                if requested) produced exactly once

Weather samples are written once by the scheduler thread and only read by
workers. Each run owns its host grids and random stream; the live-tree
grid and dispersal kernel are shared read-only.
"""

from __future__ import annotations

import datetime
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from sod_spread.aggregate import (
    Checkpoint,
    CheckpointRecorder,
    ensemble_mean,
    ensemble_stddev,
)
from sod_spread.config import SimulationConfig
from sod_spread.grid import Grid
from sod_spread.kernel import DispersalKernel
from sod_spread.perf import PerfMonitor
from sod_spread.raster_io import HostRasters, RasterStore
from sod_spread.rng import generate_seed, run_seed
from sod_spread.spread import SporulationRun, initial_host_state
from sod_spread.timeline import (
    end_date,
    is_last_week_of_year,
    is_simulated,
    next_week,
    series_name,
    start_date,
    weeks_needed,
)
from sod_spread.weather import WeatherProvider, WeeklyWeather

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    ACCUMULATING = 'accumulating'
    PROCESSING = 'processing'
    CHECKPOINT = 'checkpoint'
    TERMINATED = 'terminated'


@dataclass
class SimulationResult:
    """Results from an ensemble simulation."""
    seed: int = 0
    n_runs: int = 0
    weeks_simulated: int = 0          # clock ticks, including off-season weeks
    weeks_processed: int = 0          # weeks actually run through the ensemble
    terminated_early: bool = False
    termination_date: Optional[datetime.date] = None
    final_mean: Optional[Grid] = None
    final_stddev: Optional[Grid] = None
    checkpoints: List[Checkpoint] = field(default_factory=list)
    runs: List[SporulationRun] = field(default_factory=list)
    perf: Optional[dict] = None


def resolve_seed(config: SimulationConfig) -> int:
    """Configured seed, or a freshly generated one for generate_seed."""
    sim = config.simulation
    if sim.seed is not None:
        logger.info("Read random seed from configuration: %d", sim.seed)
        return sim.seed
    seed = generate_seed()
    logger.info("Generated random seed: %d", seed)
    return seed


def build_runs(hosts: HostRasters, base_seed: int, n_runs: int) -> List[SporulationRun]:
    """Create the ensemble: identical initial state, seeds base_seed + i."""
    initial = initial_host_state(hosts.umca.values, hosts.oaks.values,
                                 hosts.ioaks.values, hosts.lvtree.values)
    return [
        SporulationRun(run_id=i, seed=run_seed(base_seed, i), state=initial.copy())
        for i in range(n_runs)
    ]


def oaks_exhausted(runs: Sequence[SporulationRun], policy: str) -> bool:
    """Early-termination test on the live per-run oak state."""
    if policy == 'never':
        return False
    exhausted = [run.state.oaks_exhausted() for run in runs]
    if policy == 'any_run':
        return any(exhausted)
    return all(exhausted)


def infected_oak_grids(runs: Sequence[SporulationRun], template: Grid) -> List[Grid]:
    return [template.with_values(run.state.infected_oaks) for run in runs]


class WeeklyScheduler:
    """Drives simulated time and the ensemble for one simulation."""

    def __init__(
        self,
        config: SimulationConfig,
        hosts: HostRasters,
        weather: WeatherProvider,
        runs: List[SporulationRun],
        kernel: DispersalKernel,
        store: Optional[RasterStore] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
        perf: Optional[PerfMonitor] = None,
    ):
        self.config = config
        self.hosts = hosts
        self.weather = weather
        self.runs = runs
        self.kernel = kernel
        self.store = store
        self.progress_callback = progress_callback
        self.perf = perf or PerfMonitor(enabled=False)
        self.recorder = CheckpointRecorder()
        self.state = SchedulerState.ACCUMULATING
        self.pending: List[int] = []
        self.weeks_processed = 0
        self._live_trees = hosts.lvtree.values

    # ── state transitions ────────────────────────────────────────────

    def _enter(self, state: SchedulerState, date: datetime.date) -> None:
        if state is not self.state:
            logger.debug("%s: %s -> %s", date, self.state.name, state.name)
        self.state = state

    # ── processing ───────────────────────────────────────────────────

    def _advance_run(self, run: SporulationRun, batch: Sequence[WeeklyWeather]) -> int:
        return run.run_weeks(
            batch,
            spore_rate=self.config.spores.spore_rate,
            live_trees=self._live_trees,
            kernel=self.kernel,
            ew_res=self.hosts.lvtree.ew_res,
            ns_res=self.hosts.lvtree.ns_res,
        )

    def process_pending(self, date: datetime.date,
                        executor: Optional[Executor] = None) -> None:
        """Fetch weather for the queued weeks, then run the ensemble."""
        if not self.pending:
            return
        self._enter(SchedulerState.PROCESSING, date)
        with self.perf.track('weather'):
            batch = self.weather.fetch_batch(self.pending)
        with self.perf.track('spread'):
            if executor is None:
                infections = [self._advance_run(run, batch) for run in self.runs]
            else:
                futures = [executor.submit(self._advance_run, run, batch)
                           for run in self.runs]
                infections = [f.result() for f in futures]
        logger.debug("%s: processed %d weeks, %d new infections across %d runs",
                     date, len(self.pending), sum(infections), len(self.runs))
        self.weeks_processed += len(self.pending)
        self.pending = []

    # ── aggregation & output ─────────────────────────────────────────

    def aggregate(self, with_stddev: bool):
        out = self.config.output
        grids = infected_oak_grids(self.runs, self.hosts.oaks)
        mean = ensemble_mean(grids, truncate=out.integer_stats)
        stddev = None
        if with_stddev:
            stddev = ensemble_stddev(grids, mean, truncate=out.integer_stats)
        return mean, stddev

    def checkpoint(self, date: datetime.date) -> None:
        """Write dated series outputs for the current ensemble state."""
        out = self.config.output
        self._enter(SchedulerState.CHECKPOINT, date)
        with self.perf.track('checkpoint'):
            mean, stddev = self.aggregate(with_stddev=out.stddev_series is not None)
            self.recorder.record(date, mean, stddev)
            if self.store is not None:
                if out.output_series:
                    self.store.write(mean, series_name(out.output_series, date))
                if stddev is not None:
                    self.store.write(stddev, series_name(out.stddev_series, date))

    # ── master loop ──────────────────────────────────────────────────

    def run(self) -> SimulationResult:
        sim = self.config.simulation
        out = self.config.output
        series_enabled = bool(out.output_series or out.stddev_series)

        date = start_date(sim.start_year)
        end = end_date(sim.end_year)
        week = 0
        terminated_early = False

        executor = None
        if sim.threads > 1 and len(self.runs) > 1:
            executor = ThreadPoolExecutor(max_workers=min(sim.threads, len(self.runs)))
        try:
            while True:
                self._enter(SchedulerState.ACCUMULATING, date)
                if is_simulated(date, end, sim.seasonality, sim.season_last_month):
                    self.pending.append(week)

                if oaks_exhausted(self.runs, sim.termination):
                    logger.warning("%s: all susceptible oaks are infected", date)
                    terminated_early = True
                    break

                year_end = is_last_week_of_year(date)
                at_end = date >= end or (year_end and date.year >= end.year)
                if year_end or at_end:
                    self.process_pending(date, executor)
                    if series_enabled:
                        self.checkpoint(date)
                    if self.progress_callback is not None:
                        self.progress_callback(date.year, end.year)

                if at_end:
                    break
                week += 1
                date = next_week(date)
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        self._enter(SchedulerState.TERMINATED, date)
        mean, stddev = self.aggregate(with_stddev=out.stddev is not None)
        if self.store is not None:
            self.store.write(mean, out.output)
            if stddev is not None:
                self.store.write(stddev, out.stddev)
        if out.checkpoint_file and len(self.recorder):
            self.recorder.save(out.checkpoint_file)

        return SimulationResult(
            n_runs=len(self.runs),
            weeks_simulated=week + 1,
            weeks_processed=self.weeks_processed,
            terminated_early=terminated_early,
            termination_date=date,
            final_mean=mean,
            final_stddev=stddev,
            checkpoints=list(self.recorder.checkpoints),
            runs=self.runs,
        )


def run_simulation(
    config: SimulationConfig,
    hosts: HostRasters,
    weather: WeatherProvider,
    store: Optional[RasterStore] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> SimulationResult:
    """Run the ensemble from Jan 1 of start_year to Dec 31 of end_year.

    Args:
        config: Validated SimulationConfig.
        hosts: Aligned input rasters (bay laurel, oaks, live trees,
            initially infected oaks).
        weather: Weather provider selected at configuration time.
        store: Output sink; None keeps results in memory only.
        progress_callback: Optional callable(year, end_year), called at
            every year boundary.

    Returns:
        SimulationResult with final aggregates and checkpoint series.

    Raises:
        WeatherError: If the weather source has fewer weeks than the
            simulation uses.
        HostDataError: If the host rasters hold impossible tree counts.
    """
    sim = config.simulation
    weather.require_weeks(weeks_needed(sim.start_year, sim.end_year,
                                       sim.seasonality, sim.season_last_month))
    kernel = DispersalKernel.from_config(config.spores)
    seed = resolve_seed(config)
    runs = build_runs(hosts, seed, config.simulation.runs)
    perf = PerfMonitor(enabled=config.simulation.profile)

    logger.info("Simulating %d run(s), %d-%d, %d thread(s)",
                len(runs), config.simulation.start_year,
                config.simulation.end_year, config.simulation.threads)
    scheduler = WeeklyScheduler(config, hosts, weather, runs, kernel,
                                store=store,
                                progress_callback=progress_callback,
                                perf=perf)
    result = scheduler.run()
    result.seed = seed
    if perf.enabled:
        logger.info(perf.report())
        result.perf = perf.summary()
    return result
