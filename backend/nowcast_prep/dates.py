"""Date grid helpers shared by the triangle, lookup and metadata builders.

Everything works on daily, timezone-naive, midnight-normalised timestamps.
"""

from __future__ import annotations

from typing import Iterable

import numpy as np
import pandas as pd

from .errors import NonContiguousDateRange


def as_dates(values) -> pd.Series:
    """Coerce values to normalised datetime64 (no time-of-day)."""
    s = pd.to_datetime(pd.Series(values), errors="raise")
    if getattr(s.dt, "tz", None) is not None:
        s = s.dt.tz_localize(None)
    return s.dt.normalize()


def daily_grid(start, end) -> pd.DatetimeIndex:
    """All calendar days from start to end, inclusive."""
    start = pd.Timestamp(start).normalize()
    end = pd.Timestamp(end).normalize()
    if end < start:
        return pd.DatetimeIndex([], name="date")
    return pd.date_range(start=start, end=end, freq="D", name="date")


def delay_grid(max_delay: int) -> np.ndarray:
    """Delay offsets 0..max_delay-1."""
    if int(max_delay) < 1:
        raise ValueError(f"max_delay must be a positive integer, got {max_delay}")
    return np.arange(int(max_delay), dtype=np.int64)


def candidate_reference_dates(report_date, max_delay: int) -> pd.DatetimeIndex:
    """Reference dates whose delay d (0..max_delay-1) falls on report_date.

    Position d of the result is ``report_date - d``.
    """
    report_date = pd.Timestamp(report_date).normalize()
    return pd.DatetimeIndex(report_date - pd.to_timedelta(delay_grid(max_delay), unit="D"))


def date_span_days(dates: Iterable) -> int:
    """Length in days of the dense grid covering ``dates`` (0 if empty)."""
    idx = pd.DatetimeIndex(dates)
    if len(idx) == 0:
        return 0
    return int((idx.max().normalize() - idx.min().normalize()).days) + 1


def check_date_span(dates: Iterable, max_span_days: int | None) -> None:
    """Raise NonContiguousDateRange when the dense grid over ``dates`` is too long."""
    if max_span_days is None:
        return
    idx = pd.DatetimeIndex(dates)
    span = date_span_days(idx)
    if span > int(max_span_days):
        raise NonContiguousDateRange(
            start=idx.min().date(), end=idx.max().date(),
            span_days=span, max_span_days=int(max_span_days),
        )
