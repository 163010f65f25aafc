"""Covariate tables keyed by reference date, report date and delay.

Reference and report tables sit on a dense daily calendar per group so that
time-indexed effects (random walks) see every step, observed or not.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from .dates import check_date_span, daily_grid, delay_grid
from .triangle import ReportingTriangle

DATE_FEATURES = ["day_of_week", "is_holiday", "iso_week", "week", "time", "day", "month"]


def add_date_features(
    df: pd.DataFrame,
    date_col: str = "date",
    anchor=None,
    holidays: Iterable[date] = (),
    holiday_day_of_week: Optional[int] = 6,
) -> pd.DataFrame:
    """
    Add calendar covariates for ``date_col``.

    - day_of_week: 0=Monday .. 6=Sunday (holidays mapped to
      ``holiday_day_of_week`` when that is not None)
    - is_holiday: 1 on listed holidays
    - iso_week: ISO-8601 week number
    - time: days since ``anchor`` (defaults to the earliest date)
    - week: whole weeks since ``anchor``
    - day, month: day of month and month number
    """
    out = df.copy()
    dates = pd.to_datetime(out[date_col]).dt.normalize()
    if anchor is None:
        anchor = dates.min()
    anchor = pd.Timestamp(anchor).normalize()

    holiday_idx = pd.DatetimeIndex([pd.Timestamp(d) for d in holidays]).normalize()
    is_holiday = dates.isin(holiday_idx)

    dow = dates.dt.dayofweek.astype(np.int64)
    if holiday_day_of_week is not None:
        dow = dow.where(~is_holiday, int(holiday_day_of_week))

    out["day_of_week"] = dow
    out["is_holiday"] = is_holiday.astype(np.int64)
    out["iso_week"] = dates.dt.isocalendar().week.astype(np.int64).to_numpy()
    out["time"] = (dates - anchor).dt.days.astype(np.int64)
    out["week"] = out["time"] // 7
    out["day"] = dates.dt.day.astype(np.int64)
    out["month"] = dates.dt.month.astype(np.int64)
    return out


def _group_table(triangle: ReportingTriangle) -> pd.DataFrame:
    cols = [".group", *triangle.by]
    return (
        triangle.keys[cols]
        .drop_duplicates(".group")
        .sort_values(".group", kind="mergesort")
        .reset_index(drop=True)
    )


def _empty_meta(triangle: ReportingTriangle) -> pd.DataFrame:
    cols = {".group": pd.Series([], dtype=np.int64)}
    for c in triangle.by:
        cols[c] = pd.Series([], dtype=object)
    cols["date"] = pd.Series([], dtype="datetime64[ns]")
    for c in DATE_FEATURES:
        cols[c] = pd.Series([], dtype=np.int64)
    return pd.DataFrame(cols)


def _dense_meta(
    triangle: ReportingTriangle,
    start,
    end,
    max_span_days: Optional[int],
    holidays: Iterable[date],
    holiday_day_of_week: Optional[int],
) -> pd.DataFrame:
    check_date_span([start, end], max_span_days)
    grid = pd.DataFrame({"date": daily_grid(start, end)})
    meta = _group_table(triangle).merge(grid, how="cross")
    meta = add_date_features(
        meta, "date", anchor=start, holidays=holidays, holiday_day_of_week=holiday_day_of_week
    )
    return meta.reset_index(drop=True)


def metadata_reference(
    triangle: ReportingTriangle,
    max_span_days: Optional[int] = 1826,
    holidays: Iterable[date] = (),
    holiday_day_of_week: Optional[int] = 6,
) -> pd.DataFrame:
    """
    One row per group x reference date on the dense grid spanning the
    earliest to the latest reference date, with calendar features anchored
    at the earliest reference date.

    Raises:
        NonContiguousDateRange: grid longer than ``max_span_days``
    """
    if triangle.n_rows == 0:
        return _empty_meta(triangle)
    refs = triangle.keys["reference_date"]
    return _dense_meta(triangle, refs.min(), refs.max(), max_span_days, holidays, holiday_day_of_week)


def metadata_report(
    triangle: ReportingTriangle,
    max_span_days: Optional[int] = 1826,
    holidays: Iterable[date] = (),
    holiday_day_of_week: Optional[int] = 6,
) -> pd.DataFrame:
    """
    One row per group x report date that can map into the triangle: from the
    earliest reference date to the latest reference date + max_delay - 1.
    Time is anchored at the earliest reference date, as in the reference table.
    """
    if triangle.n_rows == 0:
        return _empty_meta(triangle)
    refs = triangle.keys["reference_date"]
    end = refs.max() + pd.Timedelta(days=triangle.max_delay - 1)
    return _dense_meta(triangle, refs.min(), end, max_span_days, holidays, holiday_day_of_week)


def metadata_delay(max_delay: int) -> pd.DataFrame:
    """
    Delay covariates: delay, delay_week (whole weeks of delay), and the
    head/tail indicators below the 25th and above the 75th delay percentile.
    """
    delays = delay_grid(max_delay)
    lo, hi = np.quantile(delays, [0.25, 0.75])
    return pd.DataFrame(
        {
            "delay": delays,
            "delay_week": delays // 7,
            "delay_head": (delays < lo).astype(np.int64),
            "delay_tail": (delays > hi).astype(np.int64),
        }
    )
