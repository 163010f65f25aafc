"""Completeness of reporting-triangle rows relative to a snapshot date."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import numpy as np
import pandas as pd

from .triangle import ReportingTriangle


def _ts() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _log(msg: str):
    print(f"[{_ts()}] {msg}", flush=True)


def classify_completeness(triangle: ReportingTriangle, snapshot_date=None) -> np.ndarray:
    """
    Boolean flag per triangle row: True when every delay column could have
    been reported by the snapshot, i.e. reference_date + max_delay - 1 <= snapshot.

    The boundary is inclusive. ``snapshot_date`` defaults to the latest
    report date in the triangle's input.
    """
    snapshot = snapshot_date if snapshot_date is not None else triangle.snapshot_date
    if snapshot is None or triangle.n_rows == 0:
        flags = np.zeros(triangle.n_rows, dtype=bool)
    else:
        snapshot = pd.Timestamp(snapshot).normalize()
        last_needed = triangle.keys["reference_date"] + pd.Timedelta(days=triangle.max_delay - 1)
        flags = (last_needed <= snapshot).to_numpy(dtype=bool)
    flags.setflags(write=False)
    return flags


def unbroken_history(triangle: ReportingTriangle) -> np.ndarray:
    """True for rows with an observed value at every delay 0..max_delay-1."""
    return triangle.observed.all(axis=1)


@dataclass(frozen=True, eq=False)
class CompletenessPartition:
    """Triangle rows split into complete and censored (``missing_reference``) sets."""

    flags: np.ndarray
    complete: pd.DataFrame
    missing_reference: pd.DataFrame
    snapshot_date: Optional[pd.Timestamp]

    def group_summary(self) -> pd.DataFrame:
        n_complete = self.complete.groupby(".group").size().rename("n_complete")
        n_missing = self.missing_reference.groupby(".group").size().rename("n_missing_reference")
        out = pd.concat([n_complete, n_missing], axis=1).fillna(0).astype(np.int64)
        return out.sort_index().reset_index()


def partition_rows(
    triangle: ReportingTriangle, snapshot_date=None, verbose: bool = True
) -> CompletenessPartition:
    """
    Split triangle keys by completeness.

    Censored rows stay available as nowcast targets; complete rows feed the
    delay-distribution panel. Groups without any complete row are reported
    as a warning, not an error.
    """
    flags = classify_completeness(triangle, snapshot_date)
    complete = triangle.keys[flags].reset_index(drop=True)
    missing = triangle.keys[~flags].reset_index(drop=True)

    snapshot = snapshot_date if snapshot_date is not None else triangle.snapshot_date
    snapshot = pd.Timestamp(snapshot).normalize() if snapshot is not None else None

    if verbose and triangle.n_rows:
        censored_groups = sorted(int(g) for g in set(triangle.keys[".group"]) - set(complete[".group"]))
        if censored_groups:
            _log(f"[WARN] Group(s) {censored_groups} have no complete reference date")
        _log(f"Completeness: {len(complete)} complete, {len(missing)} missing_reference row(s)")

    return CompletenessPartition(flags, complete, missing, snapshot)
