"""Unit tests for completeness classification."""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Add backend to path
BACKEND_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(BACKEND_DIR))

from nowcast_prep.completion import classify_completeness, partition_rows, unbroken_history
from nowcast_prep.triangle import build_reporting_triangle


def _obs(refs, snapshot, g="A"):
    """Every delay up to the snapshot reported, one new case per day."""
    rows = []
    for ref in pd.to_datetime(refs):
        rep = ref
        cum = 0
        while rep <= pd.Timestamp(snapshot):
            cum += 1
            rows.append({"g": g, "reference_date": ref, "report_date": rep, "confirm": cum})
            rep += pd.Timedelta(days=1)
    return pd.DataFrame(rows)


def test_boundary_is_inclusive():
    """reference_date + max_delay - 1 == snapshot counts as complete."""
    tri = build_reporting_triangle(_obs(["2024-01-01"], "2024-01-03"), max_delay=3, verbose=False)

    assert classify_completeness(tri).tolist() == [True]
    assert classify_completeness(tri, snapshot_date="2024-01-02").tolist() == [False]


def test_scenario_row_is_censored():
    obs = pd.DataFrame(
        {
            "g": ["A", "A"],
            "reference_date": ["2024-01-01", "2024-01-01"],
            "report_date": ["2024-01-01", "2024-01-02"],
            "confirm": [5, 8],
        }
    )
    tri = build_reporting_triangle(obs, by=["g"], max_delay=3, verbose=False)
    assert classify_completeness(tri).tolist() == [False]


def test_partition_keeps_censored_rows():
    refs = pd.date_range("2024-01-01", "2024-01-06", freq="D")
    tri = build_reporting_triangle(_obs(refs, "2024-01-06"), max_delay=3, verbose=False)
    part = partition_rows(tri, verbose=False)

    assert part.flags.tolist() == [True, True, True, True, False, False]
    assert part.complete["reference_date"].max() == pd.Timestamp("2024-01-04")
    assert part.missing_reference["reference_date"].tolist() == list(refs[4:])
    assert len(part.complete) + len(part.missing_reference) == tri.n_rows
    assert part.snapshot_date == pd.Timestamp("2024-01-06")


def test_all_censored_group_is_not_an_error(capsys):
    old = _obs(pd.date_range("2024-01-01", "2024-01-03"), "2024-01-10", g="A")
    recent = _obs(["2024-01-09", "2024-01-10"], "2024-01-10", g="B")
    tri = build_reporting_triangle(pd.concat([old, recent]), by=["g"], max_delay=3, verbose=False)

    part = partition_rows(tri, verbose=True)
    summary = part.group_summary()

    assert summary[".group"].tolist() == [0, 1]
    assert summary["n_complete"].tolist() == [3, 0]
    assert summary["n_missing_reference"].tolist() == [0, 2]
    assert "[WARN] Group(s) [1] have no complete reference date" in capsys.readouterr().out


def test_unbroken_history_flags_gaps():
    obs = pd.DataFrame(
        {
            "reference_date": ["2024-01-01"] * 2 + ["2024-01-02"] * 3,
            "report_date": ["2024-01-01", "2024-01-03", "2024-01-02", "2024-01-03", "2024-01-04"],
            "confirm": [1, 2, 1, 2, 3],
        }
    )
    tri = build_reporting_triangle(obs, max_delay=3, verbose=False)

    assert classify_completeness(tri).tolist() == [True, True]
    assert unbroken_history(tri).tolist() == [False, True]


def test_flags_are_read_only():
    tri = build_reporting_triangle(_obs(["2024-01-01"], "2024-01-03"), max_delay=3, verbose=False)
    flags = classify_completeness(tri)
    assert flags.dtype == np.bool_
    assert not flags.flags.writeable


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
