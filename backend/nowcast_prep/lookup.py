"""Report-date indexed lookup into the reporting triangle.

For a report date ``t`` the lookup row holds, for each delay ``d``, the flat
index of the triangle cell (reference date ``t - d``, delay ``d``): the count
first reported on ``t`` for that reference date. Only reference dates that are
complete and fully observed contribute; other cells hold ``MISSING_CELL``.
A report date is emitted when at least one of its cells contributes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import numpy as np
import pandas as pd

from .completion import classify_completeness, unbroken_history
from .dates import delay_grid
from .triangle import ReportingTriangle

MISSING_CELL = -1


def _ts() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _log(msg: str):
    print(f"[{_ts()}] {msg}", flush=True)


def _empty_lookup(triangle: ReportingTriangle) -> pd.DataFrame:
    cols = {".group": pd.Series([], dtype=np.int64)}
    for c in triangle.by:
        cols[c] = pd.Series([], dtype=object)
    cols["report_date"] = pd.Series([], dtype="datetime64[ns]")
    for d in range(triangle.max_delay):
        cols[d] = pd.Series([], dtype=np.int64)
    return pd.DataFrame(cols)


def reference_by_report(
    triangle: ReportingTriangle,
    complete: Optional[np.ndarray] = None,
    snapshot_date=None,
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Build the report-date lookup table.

    Args:
        triangle: reporting triangle
        complete: completeness flags per triangle row (computed if None)
        snapshot_date: snapshot used when ``complete`` is None

    Returns:
        DataFrame with ``.group``, the ``by`` columns, ``report_date`` and one
        int64 column per delay holding flat indices into
        ``triangle.counts.ravel()``, or ``MISSING_CELL`` where the reference
        date ``report_date - d`` is censored, partly observed or absent.
        Empty when no report date has a single usable reference date;
        callers treat that as insufficient history.
    """
    delays = delay_grid(triangle.max_delay)
    if complete is None:
        complete = classify_completeness(triangle, snapshot_date)
    complete = np.asarray(complete, dtype=bool)
    usable = complete & unbroken_history(triangle)

    keys = triangle.keys
    if not complete.any():
        if verbose:
            _log("[WARN] No complete reference dates; reference lookup is empty")
        return _empty_lookup(triangle)

    # report dates touched by complete rows
    cand = keys.loc[complete, [".group", "reference_date"]].merge(
        pd.DataFrame({"delay": delays}), how="cross"
    )
    cand["report_date"] = cand["reference_date"] + pd.to_timedelta(cand["delay"], unit="D")
    reports = (
        cand[[".group", "report_date"]]
        .drop_duplicates()
        .sort_values([".group", "report_date"], kind="mergesort")
        .reset_index(drop=True)
    )

    usable_keys = keys.loc[usable, [".group", "reference_date", ".row"]]
    cells = {}
    for d in delays:
        shifted = reports.assign(reference_date=reports["report_date"] - pd.Timedelta(days=int(d)))
        hit = shifted.merge(usable_keys, on=[".group", "reference_date"], how="left")[".row"]
        cells[int(d)] = hit.to_numpy(dtype=float) * triangle.max_delay + d

    wide = pd.DataFrame(cells)
    found = wide.notna()
    keep = found.any(axis=1).to_numpy()
    out = reports[keep].reset_index(drop=True)
    wide = wide[keep].reset_index(drop=True).fillna(MISSING_CELL).astype(np.int64)

    if out.empty:
        if verbose:
            _log("[WARN] No report date has a fully observed reference date; reference lookup is empty")
        return _empty_lookup(triangle)

    n_partial = int((~found[keep].all(axis=1)).sum())
    if n_partial and verbose:
        _log(f"Reference lookup: {n_partial} report date(s) with partial panels")

    if triangle.by:
        groups = keys[[".group", *triangle.by]].drop_duplicates(".group")
        out = out.merge(groups, on=".group", how="left")[[".group", *triangle.by, "report_date"]]
    out = pd.concat([out, wide], axis=1)

    if verbose:
        _log(f"Reference lookup: {len(out)} report date(s) with complete reference history")
    return out


def gather_reference_panel(triangle: ReportingTriangle, lookup: pd.DataFrame) -> np.ndarray:
    """
    Counts gathered through the lookup, shape (n_report_dates, max_delay).

    ``MISSING_CELL`` entries come back as ``NaN``.
    """
    idx = lookup[list(range(triangle.max_delay))].to_numpy(dtype=np.int64)
    present = idx != MISSING_CELL
    panel = np.full(idx.shape, np.nan)
    panel[present] = triangle.counts.ravel()[idx[present]]
    return panel


def check_reference_lookup(
    triangle: ReportingTriangle, lookup: pd.DataFrame, snapshot_date=None
) -> None:
    """
    Verify every non-missing lookup cell points at (group, report_date - d,
    delay d) of a complete, fully observed triangle row, and that every report
    date keeps at least one such cell. Raises ValueError on the first violation.
    """
    if lookup.empty:
        return
    D = triangle.max_delay
    usable = classify_completeness(triangle, snapshot_date) & unbroken_history(triangle)
    groups = triangle.keys[".group"].to_numpy()
    refs = triangle.keys["reference_date"].to_numpy()
    cells = lookup[list(range(D))].to_numpy(dtype=np.int64)
    present = cells != MISSING_CELL
    if not present.any(axis=1).all():
        raise ValueError("Lookup has report date(s) without any usable reference date")
    for d in range(D):
        mask = present[:, d]
        rows, delay = np.divmod(cells[mask, d], D)
        if (delay != d).any():
            raise ValueError(f"Lookup column {d} points at another delay column")
        if (rows < 0).any() or (rows >= triangle.n_rows).any():
            raise ValueError(f"Lookup column {d} points outside the triangle")
        if (groups[rows] != lookup[".group"].to_numpy()[mask]).any():
            raise ValueError(f"Lookup column {d} crosses groups")
        expected = lookup["report_date"].to_numpy()[mask] - np.timedelta64(d, "D")
        if (refs[rows] != expected).any():
            raise ValueError(f"Lookup column {d} is misaligned with report_date - {d}")
        if not usable[rows].all():
            raise ValueError(f"Lookup column {d} includes an incomplete row")
