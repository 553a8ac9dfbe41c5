"""
periods.py — Period bucketing for time series.

Labels: daily 2024-03-05, weekly 2024-W10 (ISO), monthly 2024-03,
quarterly 2024-Q1.
"""

from datetime import date

import pandas as pd

from core.records import Granularity

PERIOD_FREQ = {
    Granularity.DAILY: "D",
    Granularity.WEEKLY: "W-SUN",  # Monday-start weeks, matching ISO weeks
    Granularity.MONTHLY: "M",
    Granularity.QUARTERLY: "Q",
}


def to_periods(dates: pd.Series, granularity: Granularity) -> pd.Series:
    """Convert a datetime Series to pandas Periods. NaT stays NaT."""
    return dates.dt.to_period(PERIOD_FREQ[granularity])


def period_label(period: pd.Period, granularity: Granularity) -> str:
    if granularity == Granularity.DAILY:
        return period.strftime("%Y-%m-%d")
    if granularity == Granularity.WEEKLY:
        iso = period.start_time.isocalendar()
        return f"{iso[0]}-W{iso[1]:02d}"
    if granularity == Granularity.QUARTERLY:
        return f"{period.year}-Q{period.quarter}"
    return period.strftime("%Y-%m")


def period_start(period: pd.Period) -> date:
    return period.start_time.date()


def next_period_label(start: date, granularity: Granularity) -> str:
    """Label of the period after the one starting at `start`."""
    period = pd.Period(start, freq=PERIOD_FREQ[granularity])
    return period_label(period + 1, granularity)
