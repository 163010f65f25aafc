"""Unit tests for reporting triangle construction."""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Add backend to path
BACKEND_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(BACKEND_DIR))

from nowcast_prep.errors import IncompleteGroupKey, InvalidDelay
from nowcast_prep.observations import latest_data
from nowcast_prep.triangle import build_reporting_triangle


def _panel(groups=("A",), n_refs=7, max_delay=3, start="2024-01-01"):
    """Cumulative reports; increments at delay d are (i + 1) * 10**d."""
    start = pd.Timestamp(start)
    snapshot = start + pd.Timedelta(days=n_refs - 1)
    rows = []
    for g in groups:
        for i in range(n_refs):
            ref = start + pd.Timedelta(days=i)
            cum = 0
            for d in range(max_delay):
                rep = ref + pd.Timedelta(days=d)
                if rep > snapshot:
                    break
                cum += (i + 1) * 10 ** d
                rows.append({"g": g, "reference_date": ref, "report_date": rep, "confirm": cum})
    return pd.DataFrame(rows)


def test_scenario_incremental_row():
    """Two cumulative reports become [5, 3, missing]."""
    obs = pd.DataFrame(
        {
            "g": ["A", "A"],
            "reference_date": ["2024-01-01", "2024-01-01"],
            "report_date": ["2024-01-01", "2024-01-02"],
            "confirm": [5, 8],
        }
    )
    tri = build_reporting_triangle(obs, by=["g"], max_delay=3, verbose=False)

    assert tri.n_rows == 1
    np.testing.assert_array_equal(tri.counts[0, :2], [5.0, 3.0])
    assert np.isnan(tri.counts[0, 2]), "Delay 2 should not be observed yet"
    assert tri.snapshot_date == pd.Timestamp("2024-01-02")

    frame = tri.to_frame()
    assert list(frame.columns) == [".group", "g", "reference_date", ".row", 0, 1, 2]


def test_rows_ordered_by_group_then_reference_date():
    obs = pd.DataFrame(
        {
            "g": ["B", "A", "B", "A"],
            "reference_date": ["2024-01-02", "2024-01-02", "2024-01-01", "2024-01-01"],
            "report_date": ["2024-01-02", "2024-01-02", "2024-01-01", "2024-01-01"],
            "confirm": [1, 2, 3, 4],
        }
    )
    tri = build_reporting_triangle(obs, by=["g"], max_delay=2, verbose=False)

    assert tri.keys["g"].tolist() == ["A", "A", "B", "B"]
    assert tri.keys[".group"].tolist() == [0, 0, 1, 1]
    assert tri.keys["reference_date"].dt.day.tolist() == [1, 2, 1, 2]
    assert tri.keys[".row"].tolist() == [0, 1, 2, 3]
    np.testing.assert_array_equal(tri.counts[:, 0], [4.0, 2.0, 3.0, 1.0])


def test_row_sums_match_latest_cumulative():
    """Observed increments add up to the latest cumulative count within max_delay."""
    obs = _panel(groups=("A", "B"))
    tri = build_reporting_triangle(obs, by=["g"], max_delay=3, verbose=False)
    latest = latest_data(obs, by=["g"], max_delay=3)

    merged = tri.keys.merge(latest, on=["g", "reference_date"], how="left")
    sums = np.nansum(tri.counts, axis=1)
    np.testing.assert_allclose(sums, merged["confirm"].to_numpy(dtype=float))


def test_delays_beyond_max_delay_are_truncated():
    obs = _panel(groups=("A",), n_refs=7, max_delay=3)
    tri = build_reporting_triangle(obs, max_delay=2, verbose=False)

    assert tri.counts.shape == (7, 2)
    assert tri.truncation.truncated
    assert tri.truncation.n_records == 5  # refs 01-01..01-05 reached delay 2
    assert tri.truncation.n_reference_dates == 5
    assert tri.truncation.max_observed_delay == 2
    assert tri.truncation.target == "reported_within_max_delay"
    # 11 * (i + 1): delays 0 and 1 only
    np.testing.assert_allclose(np.nansum(tri.counts[:5], axis=1), [11, 22, 33, 44, 55])


def test_missing_count_is_unobserved_cell():
    obs = pd.DataFrame(
        {
            "reference_date": ["2024-01-01"] * 3,
            "report_date": ["2024-01-01", "2024-01-02", "2024-01-03"],
            "confirm": [2, np.nan, 7],
        }
    )
    tri = build_reporting_triangle(obs, max_delay=3, verbose=False)

    assert tri.counts[0, 0] == 2.0
    assert np.isnan(tri.counts[0, 1])
    assert tri.counts[0, 2] == 5.0


def test_strata_outside_by_are_summed():
    obs = pd.DataFrame(
        {
            "age": ["0-9", "10+", "0-9", "10+"],
            "reference_date": ["2024-01-01"] * 4,
            "report_date": ["2024-01-01", "2024-01-01", "2024-01-02", "2024-01-02"],
            "confirm": [1, 2, 4, 6],
        }
    )
    tri = build_reporting_triangle(obs, max_delay=2, verbose=False)

    assert tri.n_rows == 1
    np.testing.assert_array_equal(tri.counts[0], [3.0, 7.0])


def test_report_before_reference_raises():
    obs = pd.DataFrame(
        {
            "g": ["A", "B"],
            "reference_date": ["2024-01-02", "2024-01-05"],
            "report_date": ["2024-01-03", "2024-01-04"],
            "confirm": [1, 1],
        }
    )
    with pytest.raises(InvalidDelay) as exc:
        build_reporting_triangle(obs, by=["g"], max_delay=3, verbose=False)
    assert exc.value.group == "B"
    assert str(exc.value.reference_date) == "2024-01-05"


def test_missing_dates_raise_instead_of_shifting_increments():
    obs = _panel()
    obs.loc[0, "reference_date"] = pd.NaT

    with pytest.raises(ValueError, match="missing date"):
        build_reporting_triangle(obs, max_delay=3, verbose=False)


def test_incomplete_group_key_raises():
    obs = _panel()
    with pytest.raises(IncompleteGroupKey) as exc:
        build_reporting_triangle(obs, by=["region"], max_delay=3, verbose=False)
    assert exc.value.column == "region"

    obs.loc[0, "g"] = None
    with pytest.raises(IncompleteGroupKey) as exc:
        build_reporting_triangle(obs, by=["g"], max_delay=3, verbose=False)
    assert exc.value.n_missing == 1


def test_invalid_max_delay_raises():
    with pytest.raises(ValueError):
        build_reporting_triangle(_panel(), max_delay=0, verbose=False)


def test_build_is_idempotent_and_read_only():
    obs = _panel(groups=("A", "B"))
    first = build_reporting_triangle(obs, by=["g"], max_delay=3, verbose=False)
    second = build_reporting_triangle(obs, by=["g"], max_delay=3, verbose=False)

    assert first.counts.tobytes() == second.counts.tobytes()
    assert first.to_frame().equals(second.to_frame())
    assert not first.counts.flags.writeable
    with pytest.raises(ValueError):
        first.counts[0, 0] = 1.0


def test_empty_observations_give_empty_triangle():
    obs = pd.DataFrame({"reference_date": [], "report_date": [], "confirm": []})
    tri = build_reporting_triangle(obs, max_delay=4, verbose=False)

    assert tri.n_rows == 0
    assert tri.counts.shape == (0, 4)
    assert tri.snapshot_date is None


def test_truncation_warning_is_logged(capsys):
    build_reporting_triangle(_panel(), max_delay=2, verbose=True)
    out = capsys.readouterr().out
    assert "[WARN] Dropped 5 report(s)" in out


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
