"""Phase timing for sod-spread simulations.

Tracks wall-clock time spent in the scheduler phases (weather fetch,
ensemble spread, checkpoint output). Zero overhead when disabled.

Usage:
    perf = PerfMonitor(enabled=True)

    with perf.track("weather"):
        batch = weather.fetch_batch(weeks)

    logger.info(perf.report())
"""

import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict


@dataclass
class PhaseStats:
    """Timing statistics for a single phase."""
    total_time: float = 0.0
    call_count: int = 0
    max_time: float = 0.0

    @property
    def mean_time(self) -> float:
        return self.total_time / self.call_count if self.call_count > 0 else 0.0


class PerfMonitor:
    """Lightweight phase-level performance monitor."""

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self._stats: Dict[str, PhaseStats] = defaultdict(PhaseStats)

    @contextmanager
    def track(self, phase: str):
        """Context manager timing one occurrence of ``phase``."""
        if not self.enabled:
            yield
            return

        t0 = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - t0
            stats = self._stats[phase]
            stats.total_time += elapsed
            stats.call_count += 1
            stats.max_time = max(stats.max_time, elapsed)

    def summary(self) -> dict:
        """Summary dict suitable for JSON serialization."""
        return {
            name: {
                'total_s': round(s.total_time, 4),
                'calls': s.call_count,
                'mean_ms': round(s.mean_time * 1000, 3),
                'max_ms': round(s.max_time * 1000, 3),
            }
            for name, s in sorted(self._stats.items(),
                                  key=lambda x: -x[1].total_time)
        }

    def report(self, title: str = "Phase timings") -> str:
        """Human-readable table of phase timings."""
        total = sum(s.total_time for s in self._stats.values())
        lines = [
            title,
            f"{'Phase':<14} {'Total (s)':>10} {'Calls':>7} {'Mean (ms)':>10} {'%':>6}",
        ]
        for name, s in sorted(self._stats.items(), key=lambda x: -x[1].total_time):
            pct = (s.total_time / total * 100) if total > 0 else 0
            lines.append(
                f"{name:<14} {s.total_time:>10.4f} {s.call_count:>7} "
                f"{s.mean_time * 1000:>10.3f} {pct:>5.1f}%"
            )
        lines.append(f"{'TOTAL':<14} {total:>10.4f}")
        return '\n'.join(lines)
