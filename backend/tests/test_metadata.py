"""Unit tests for reference, report and delay metadata."""

import sys
from datetime import date
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Add backend to path
BACKEND_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(BACKEND_DIR))

from nowcast_prep.errors import NonContiguousDateRange
from nowcast_prep.metadata import add_date_features, metadata_delay, metadata_reference, metadata_report
from nowcast_prep.triangle import build_reporting_triangle


def _same_day(refs, groups=None):
    refs = list(refs)
    df = pd.DataFrame({"reference_date": refs, "report_date": refs, "confirm": [1] * len(refs)})
    if groups is not None:
        df["g"] = groups
    return df


def test_date_features():
    df = pd.DataFrame({"date": pd.date_range("2024-01-01", "2024-01-08", freq="D")})
    out = add_date_features(df)

    # 2024-01-01 is a Monday and starts ISO week 1
    assert out["day_of_week"].tolist() == [0, 1, 2, 3, 4, 5, 6, 0]
    assert out["iso_week"].tolist() == [1] * 7 + [2]
    assert out["time"].tolist() == list(range(8))
    assert out["week"].tolist() == [0] * 7 + [1]
    assert out["month"].unique().tolist() == [1]
    assert out["is_holiday"].sum() == 0


def test_holidays_override_day_of_week():
    df = pd.DataFrame({"date": pd.date_range("2024-01-01", "2024-01-04", freq="D")})

    out = add_date_features(df, holidays=[date(2024, 1, 3)])
    assert out["day_of_week"].tolist() == [0, 1, 6, 3]
    assert out["is_holiday"].tolist() == [0, 0, 1, 0]

    kept = add_date_features(df, holidays=[date(2024, 1, 3)], holiday_day_of_week=None)
    assert kept["day_of_week"].tolist() == [0, 1, 2, 3]
    assert kept["is_holiday"].tolist() == [0, 0, 1, 0]


def test_reference_metadata_is_dense():
    """Dates without observations still get a row and a time step."""
    tri = build_reporting_triangle(_same_day(["2024-01-01", "2024-01-05"]), max_delay=2, verbose=False)
    meta = metadata_reference(tri)

    assert len(meta) == 5
    assert meta["time"].tolist() == [0, 1, 2, 3, 4]
    assert meta[".group"].unique().tolist() == [0]
    assert meta["date"].min() == pd.Timestamp("2024-01-01")


def test_reference_metadata_per_group():
    obs = _same_day(["2024-01-01", "2024-01-03", "2024-01-02"], groups=["A", "A", "B"])
    tri = build_reporting_triangle(obs, by=["g"], max_delay=2, verbose=False)
    meta = metadata_reference(tri)

    assert len(meta) == 6
    assert meta["g"].tolist() == ["A"] * 3 + ["B"] * 3
    # one time axis anchored at the earliest date for every group
    assert meta.groupby(".group")["time"].apply(list).tolist() == [[0, 1, 2], [0, 1, 2]]


def test_report_metadata_extends_by_max_delay():
    tri = build_reporting_triangle(_same_day(["2024-01-01", "2024-01-02"]), max_delay=3, verbose=False)
    meta = metadata_report(tri)

    assert meta["date"].dt.day.tolist() == [1, 2, 3, 4]
    assert meta["time"].tolist() == [0, 1, 2, 3]


def test_implausible_span_raises():
    tri = build_reporting_triangle(_same_day(["2000-01-01", "2024-01-01"]), max_delay=3, verbose=False)

    with pytest.raises(NonContiguousDateRange) as exc:
        metadata_reference(tri, max_span_days=1826)
    assert exc.value.span_days > 1826
    assert str(exc.value.start) == "2000-01-01"

    # the guard can be switched off
    assert len(metadata_reference(tri, max_span_days=None)) > 8000


def test_delay_metadata():
    meta = metadata_delay(8)

    assert meta["delay"].tolist() == list(range(8))
    assert meta["delay_week"].tolist() == [0] * 7 + [1]
    assert meta["delay_head"].tolist() == [1, 1, 0, 0, 0, 0, 0, 0]
    assert meta["delay_tail"].tolist() == [0, 0, 0, 0, 0, 0, 1, 1]


def test_empty_triangle_gives_empty_metadata():
    tri = build_reporting_triangle(_same_day([]), max_delay=3, verbose=False)
    meta = metadata_reference(tri)

    assert meta.empty
    assert {"date", "day_of_week", "time", "week"} <= set(meta.columns)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
