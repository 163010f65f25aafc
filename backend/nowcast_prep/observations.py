"""Long-format observation helpers.

An observation table has one row per (group, reference_date, report_date)
with a *cumulative* count (default column ``confirm``): the number of
events with that reference date known as of the report date.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from .dates import as_dates
from .errors import IncompleteGroupKey, InvalidDelay

DATE_COLS = ("reference_date", "report_date")


def _keys(obs: pd.DataFrame, by: Sequence[str]) -> List[str]:
    keys = [".group"] if ".group" in obs.columns else []
    return keys + [c for c in by if c != ".group"] + ["reference_date"]


def _group_label(row: pd.Series, by: Sequence[str]):
    if not by:
        return None
    vals = tuple(row[c] for c in by)
    return vals[0] if len(vals) == 1 else vals


def validate_observations(
    obs: pd.DataFrame, by: Sequence[str] = (), count_col: str = "confirm"
) -> pd.DataFrame:
    """
    Check and normalise an observation table.

    - reference_date / report_date coerced to midnight timestamps
    - count coerced to numeric (unparseable values become missing)
    - sorted by (by..., reference_date, report_date)

    Raises:
        ValueError: required column missing, missing dates or negative counts
        IncompleteGroupKey: a ``by`` column is absent or null somewhere
        InvalidDelay: report_date < reference_date for some record
    """
    by = list(by)
    missing = [c for c in (*DATE_COLS, count_col) if c not in obs.columns]
    if missing:
        raise ValueError(f"Observations are missing required column(s): {missing}")

    for col in by:
        if col not in obs.columns:
            raise IncompleteGroupKey(col)
        n_null = int(obs[col].isna().sum())
        if n_null:
            raise IncompleteGroupKey(col, n_null)

    df = obs.copy()
    for col in DATE_COLS:
        df[col] = as_dates(df[col]).to_numpy()
        n_missing = int(df[col].isna().sum())
        if n_missing:
            raise ValueError(f"Column '{col}' has {n_missing} missing date(s)")
    df[count_col] = pd.to_numeric(df[count_col], errors="coerce")

    n_negative = int((df[count_col] < 0).sum())
    if n_negative:
        raise ValueError(f"Column '{count_col}' has {n_negative} negative count(s)")

    bad = df["report_date"] < df["reference_date"]
    if bad.any():
        first = df[bad].iloc[0]
        raise InvalidDelay(
            group=_group_label(first, by),
            reference_date=first["reference_date"].date(),
            report_date=first["report_date"].date(),
            n_records=int(bad.sum()),
        )

    df = df.sort_values(by + list(DATE_COLS), kind="mergesort").reset_index(drop=True)
    return df


def assign_groups(obs: pd.DataFrame, by: Sequence[str] = ()) -> pd.DataFrame:
    """Add a ``.group`` integer id over sorted unique ``by`` combinations (0 if no ``by``)."""
    df = obs.copy()
    if by:
        df[".group"] = df.groupby(list(by), sort=True, observed=True).ngroup().astype(np.int64)
    else:
        df[".group"] = np.int64(0)
    return df


def add_delay(obs: pd.DataFrame) -> pd.DataFrame:
    df = obs.copy()
    df["delay"] = (df["report_date"] - df["reference_date"]).dt.days.astype(np.int64)
    return df


def aggregate_cumulative(
    obs: pd.DataFrame, by: Sequence[str] = (), count_col: str = "confirm"
) -> pd.DataFrame:
    """
    Sum cumulative counts over any strata not named in ``by``.

    Returns one row per (by..., reference_date, report_date). A cell stays
    missing only when every contributing record is missing.
    """
    keys = list(by) + list(DATE_COLS)
    out = (
        obs.groupby(keys, sort=True, observed=True)[count_col]
        .sum(min_count=1)
        .reset_index()
    )
    return out


def cumulative_to_incidence(
    obs: pd.DataFrame,
    by: Sequence[str] = (),
    count_col: str = "confirm",
    new_col: str = "new_confirm",
) -> pd.DataFrame:
    """
    Difference successive cumulative reports per (group, reference_date).

    The first report of a reference date is differenced against zero. Rows
    with a missing count get a missing increment and do not break the chain:
    the next observed report is differenced against the last observed one.
    """
    keys = _keys(obs, by)
    df = obs.sort_values(keys + ["report_date"], kind="mergesort").copy()
    observed = df[df[count_col].notna()]
    prev = observed.groupby(keys, sort=False)[count_col].shift(1).fillna(0)
    df[new_col] = np.nan
    df.loc[observed.index, new_col] = observed[count_col] - prev
    return df


def incidence_to_cumulative(
    obs: pd.DataFrame,
    by: Sequence[str] = (),
    new_col: str = "new_confirm",
    count_col: str = "confirm",
) -> pd.DataFrame:
    """Inverse of cumulative_to_incidence (missing increments count as zero)."""
    keys = _keys(obs, by)
    df = obs.sort_values(keys + ["report_date"], kind="mergesort").copy()
    df[count_col] = df[new_col].fillna(0).groupby([df[k] for k in keys], sort=False).cumsum()
    return df


def fill_report_gaps(
    obs: pd.DataFrame,
    by: Sequence[str] = (),
    max_delay: int = 20,
    count_col: str = "confirm",
    snapshot_date=None,
) -> pd.DataFrame:
    """
    Carry the last cumulative count forward across unreported days.

    For every reference date that has at least one observed report, adds the
    missing report dates between its first report and
    ``min(reference_date + max_delay - 1, snapshot_date)``. Reference dates
    without any data are not created. Every input record is kept, including
    those outside that window; records with a missing count stay missing.
    ``snapshot_date`` defaults to the latest report with an observed count.
    """
    keys = _keys(obs, by)
    observed = obs[obs[count_col].notna()]
    if observed.empty:
        return obs.copy()

    if snapshot_date is None:
        snapshot_date = observed["report_date"].max()
    snapshot_date = pd.Timestamp(snapshot_date).normalize()

    spans = observed.groupby(keys, sort=True, observed=True)["report_date"].min().rename("first_report").reset_index()
    last_allowed = spans["reference_date"] + pd.Timedelta(days=int(max_delay) - 1)
    end = last_allowed.where(last_allowed <= snapshot_date, snapshot_date)
    spans["report_date"] = [
        list(pd.date_range(a, b, freq="D")) for a, b in zip(spans["first_report"], end)
    ]
    grid = spans.drop(columns="first_report").explode("report_date").dropna(subset=["report_date"])
    grid["report_date"] = pd.to_datetime(grid["report_date"])

    cols = keys + ["report_date", count_col]
    out = grid.merge(obs[cols], on=keys + ["report_date"], how="outer", indicator=True)
    out = out.sort_values(keys + ["report_date"], kind="mergesort").reset_index(drop=True)
    filled = out.groupby(keys, sort=False, observed=True)[count_col].ffill()
    added = (out["_merge"] == "left_only").to_numpy()
    out[count_col] = out[count_col].where(~added, filled)
    return out.drop(columns="_merge")


def filter_reference_dates(
    obs: pd.DataFrame, earliest=None, include_days: Optional[int] = None
) -> pd.DataFrame:
    """
    Keep reference dates on or after ``earliest``, or only the last
    ``include_days`` reference dates when that is given instead.
    """
    if earliest is None and include_days is None:
        return obs.copy()
    if include_days is not None:
        earliest = obs["reference_date"].max() - pd.Timedelta(days=int(include_days) - 1)
    earliest = pd.Timestamp(earliest).normalize()
    return obs[obs["reference_date"] >= earliest].reset_index(drop=True)


def filter_report_dates(
    obs: pd.DataFrame, latest=None, remove_days: Optional[int] = None
) -> pd.DataFrame:
    """
    Reconstruct what was known as of ``latest`` (or ``remove_days`` before the
    last report date): later reports and later reference dates are dropped.
    """
    if latest is None and remove_days is None:
        return obs.copy()
    if remove_days is not None:
        latest = obs["report_date"].max() - pd.Timedelta(days=int(remove_days))
    latest = pd.Timestamp(latest).normalize()
    keep = (obs["report_date"] <= latest) & (obs["reference_date"] <= latest)
    return obs[keep].reset_index(drop=True)


def latest_data(
    obs: pd.DataFrame,
    by: Sequence[str] = (),
    max_delay: Optional[int] = None,
    count_col: str = "confirm",
) -> pd.DataFrame:
    """
    Latest observed cumulative count per (group, reference_date).

    With ``max_delay`` only reports within the delay horizon are considered,
    so the result is "reported within max_delay days".
    """
    keys = _keys(obs, by)
    df = obs[obs[count_col].notna()]
    if max_delay is not None:
        delay = (df["report_date"] - df["reference_date"]).dt.days
        df = df[delay < int(max_delay)]
    df = df.sort_values(keys + ["report_date"], kind="mergesort")
    out = df.groupby(keys, sort=True).tail(1)
    out = add_delay(out[keys + ["report_date", count_col]])
    return out.reset_index(drop=True)


def add_max_reported(
    obs: pd.DataFrame, by: Sequence[str] = (), count_col: str = "confirm"
) -> pd.DataFrame:
    """Add ``max_confirm`` (latest cumulative count) and ``cum_prop_reported``."""
    keys = _keys(obs, by)
    df = obs.sort_values(keys + ["report_date"], kind="mergesort").copy()
    df["max_confirm"] = df.groupby(keys, sort=False)[count_col].transform("last")
    with np.errstate(divide="ignore", invalid="ignore"):
        prop = df[count_col] / df["max_confirm"]
    df["cum_prop_reported"] = prop.where(df["max_confirm"] > 0)
    return df
