"""Simulated calendar helpers.

The simulation clock moves in whole weeks from Jan 1 of the start year.
Only the comparisons the scheduler needs live here: last week of a year,
active season membership, and dated output names.
"""

from __future__ import annotations

import datetime

WEEK = datetime.timedelta(days=7)

# Spread season: January through September
DEFAULT_SEASON_LAST_MONTH = 9


def is_last_week_of_year(date: datetime.date) -> bool:
    """True if the week starting at ``date`` reaches into the next year."""
    return date.month == 12 and date.day + 7 > 31


def start_date(year: int) -> datetime.date:
    """First simulated day: January 1 of the start year."""
    return datetime.date(year, 1, 1)


def end_date(year: int) -> datetime.date:
    """Last simulated day: December 31 of the end year."""
    return datetime.date(year, 12, 31)


def next_week(date: datetime.date) -> datetime.date:
    """Start of the following simulated week.

    The short last week of a year (starting Dec 25 or later) is followed by
    January 1, so every simulated year starts on Jan 1 and has 53 weeks.
    """
    if is_last_week_of_year(date):
        return datetime.date(date.year + 1, 1, 1)
    return date + WEEK


def in_season(date: datetime.date,
              last_month: int = DEFAULT_SEASON_LAST_MONTH) -> bool:
    """True if ``date`` falls within months 1..last_month."""
    return date.month <= last_month


def series_name(basename: str, date: datetime.date) -> str:
    """Dated raster name, e.g. ``spread_2004_12_30``."""
    return f"{basename}_{date.year:04d}_{date.month:02d}_{date.day:02d}"


def is_simulated(date: datetime.date, end: datetime.date, seasonality: bool,
                 last_month: int = DEFAULT_SEASON_LAST_MONTH) -> bool:
    """True if the week starting at ``date`` is run through the ensemble."""
    return date < end and (not seasonality or in_season(date, last_month))


def weeks_needed(start_year: int, end_year: int, seasonality: bool,
                 last_month: int = DEFAULT_SEASON_LAST_MONTH) -> int:
    """Number of week indices (0..n-1) a full simulation may ask weather for.

    Walks the same clock as the scheduler; 0 when no week is simulated.
    """
    date = start_date(start_year)
    end = end_date(end_year)
    week = 0
    needed = 0
    while True:
        if is_simulated(date, end, seasonality, last_month):
            needed = week + 1
        year_end = is_last_week_of_year(date)
        if date >= end or (year_end and date.year >= end.year):
            return needed
        week += 1
        date = next_week(date)
