"""Reporting triangle construction.

Turns long-format cumulative reports into a wide, delay-indexed table of
incremental counts: one row per (group, reference_date), one column per
delay 0..max_delay-1, ``NaN`` where a delay has not been observed yet.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .dates import delay_grid
from .observations import (
    add_delay,
    aggregate_cumulative,
    assign_groups,
    cumulative_to_incidence,
    validate_observations,
)


def _ts() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _log(msg: str):
    print(f"[{_ts()}] {msg}", flush=True)


@dataclass(frozen=True)
class Truncation:
    """Records dropped because their delay was >= max_delay."""

    max_delay: int
    n_records: int
    n_reference_dates: int
    max_observed_delay: Optional[int]

    @property
    def truncated(self) -> bool:
        return self.n_records > 0

    @property
    def target(self) -> str:
        # the modelled total is what arrives within max_delay days
        return "reported_within_max_delay"

    def to_dict(self) -> Dict:
        return {
            "max_delay": self.max_delay,
            "n_records": self.n_records,
            "n_reference_dates": self.n_reference_dates,
            "max_observed_delay": self.max_observed_delay,
            "truncated": self.truncated,
            "target": self.target,
        }


@dataclass(frozen=True, eq=False)
class ReportingTriangle:
    """
    Wide reporting triangle.

    Attributes:
        keys: one row per triangle row with ``.group``, the ``by`` columns,
            ``reference_date`` and ``.row`` (position in ``counts``)
        counts: read-only float array (n_rows, max_delay) of incremental
            counts, ``NaN`` = not observed
        max_delay: number of delay columns
        by: grouping columns
        snapshot_date: latest report date present in the input
        truncation: what was dropped beyond max_delay
    """

    keys: pd.DataFrame
    counts: np.ndarray
    max_delay: int
    by: Tuple[str, ...]
    snapshot_date: Optional[pd.Timestamp]
    truncation: Truncation

    @property
    def n_rows(self) -> int:
        return int(self.counts.shape[0])

    @property
    def observed(self) -> np.ndarray:
        return ~np.isnan(self.counts)

    def flat_index(self, row, delay) -> np.ndarray:
        """Position of (row, delay) in ``counts.ravel()``."""
        return np.asarray(row, dtype=np.int64) * self.max_delay + np.asarray(delay, dtype=np.int64)

    def row_lookup(self) -> Dict[Tuple[int, pd.Timestamp], int]:
        """Map (group, reference_date) to triangle row."""
        return {
            (int(g), pd.Timestamp(d)): int(r)
            for g, d, r in zip(self.keys[".group"], self.keys["reference_date"], self.keys[".row"])
        }

    def to_frame(self) -> pd.DataFrame:
        """Key columns followed by integer delay columns 0..max_delay-1."""
        wide = pd.DataFrame(self.counts, columns=list(range(self.max_delay)))
        return pd.concat([self.keys.reset_index(drop=True), wide], axis=1)


def _empty_keys(by: Sequence[str]) -> pd.DataFrame:
    cols = {".group": pd.Series([], dtype=np.int64)}
    for c in by:
        cols[c] = pd.Series([], dtype=object)
    cols["reference_date"] = pd.Series([], dtype="datetime64[ns]")
    cols[".row"] = pd.Series([], dtype=np.int64)
    return pd.DataFrame(cols)


def build_reporting_triangle(
    obs: pd.DataFrame,
    by: Sequence[str] = (),
    max_delay: int = 20,
    count_col: str = "confirm",
    verbose: bool = True,
) -> ReportingTriangle:
    """
    Build the reporting triangle from cumulative long-format observations.

    Steps:
    1. Validate (dates, group keys, report_date >= reference_date)
    2. Sum strata not named in ``by``
    3. Assign ``.group`` ids and compute delays
    4. Drop delays >= max_delay, recording the truncation
    5. Difference successive cumulative reports into incremental counts
    6. Scatter increments into a (row, delay) array

    Rows are ordered by (group, reference_date); delay columns ascending.

    Raises:
        InvalidDelay, IncompleteGroupKey, ValueError
    """
    by = tuple(by)
    delays = delay_grid(max_delay)
    max_delay = int(max_delay)

    df = validate_observations(obs, by, count_col)
    if df.empty:
        counts = np.full((0, len(delays)), np.nan)
        counts.setflags(write=False)
        return ReportingTriangle(
            _empty_keys(by), counts, max_delay, by, None, Truncation(max_delay, 0, 0, None)
        )
    df = aggregate_cumulative(df, by, count_col)
    df = add_delay(assign_groups(df, by))

    snapshot = pd.Timestamp(df["report_date"].max()) if len(df) else None

    beyond = df["delay"] >= max_delay
    truncation = Truncation(
        max_delay=max_delay,
        n_records=int(beyond.sum()),
        n_reference_dates=int(df.loc[beyond, [".group", "reference_date"]].drop_duplicates().shape[0]),
        max_observed_delay=int(df["delay"].max()) if len(df) else None,
    )
    if truncation.truncated and verbose:
        _log(
            f"[WARN] Dropped {truncation.n_records} report(s) with delay >= {max_delay} "
            f"across {truncation.n_reference_dates} reference date(s); "
            f"totals are counts reported within {max_delay} days"
        )

    df = df[~beyond & df[count_col].notna()]
    df = cumulative_to_incidence(df, by, count_col, new_col="new_confirm")

    if df.empty:
        if verbose:
            _log("[WARN] No observations within max_delay; reporting triangle is empty")
        counts = np.full((0, len(delays)), np.nan)
        counts.setflags(write=False)
        return ReportingTriangle(_empty_keys(by), counts, max_delay, by, snapshot, truncation)

    key_cols = [".group", *by, "reference_date"]
    keys = (
        df[key_cols]
        .drop_duplicates()
        .sort_values([".group", "reference_date"], kind="mergesort")
        .reset_index(drop=True)
    )
    keys[".row"] = np.arange(len(keys), dtype=np.int64)

    cells = df.merge(keys[[".group", "reference_date", ".row"]], on=[".group", "reference_date"], how="left")
    counts = np.full((len(keys), max_delay), np.nan)
    counts[cells[".row"].to_numpy(), cells["delay"].to_numpy()] = cells["new_confirm"].to_numpy(dtype=float)
    counts.setflags(write=False)

    n_negative = int((cells["new_confirm"] < 0).sum())
    if n_negative and verbose:
        _log(f"[WARN] {n_negative} negative incremental count(s) in reporting triangle")

    if verbose:
        _log(
            f"Reporting triangle: {len(keys)} row(s), {keys['.group'].nunique()} group(s), "
            f"max_delay={max_delay}, snapshot={snapshot.date()}"
        )
    return ReportingTriangle(keys, counts, max_delay, by, snapshot, truncation)
