"""Preprocessing pipeline: observations -> model-ready structures.

Runs every builder in dependency order and bundles the results, together
with a summary report, into a read-only ``PreprocessedData``.
"""

from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .completion import CompletenessPartition, partition_rows
from .design import DesignMatrix, Effect, SparseDesignMatrix, build_design_matrix, extract_sparse_matrix
from .lookup import reference_by_report
from .metadata import metadata_delay, metadata_reference, metadata_report
from .observations import (
    add_delay,
    add_max_reported,
    aggregate_cumulative,
    assign_groups,
    fill_report_gaps,
    latest_data,
    validate_observations,
)
from .triangle import ReportingTriangle, build_reporting_triangle


def _ts() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _log(msg: str):
    print(f"[{_ts()}] {msg}", flush=True)


def _env_flag(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class PreprocessConfig:
    """Configuration for a preprocessing run."""

    max_delay: int = 20
    by: Tuple[str, ...] = ()
    count_col: str = "confirm"
    max_span_days: Optional[int] = 1826
    fill_report_gaps: bool = False
    holidays: Tuple[date, ...] = ()
    holiday_day_of_week: Optional[int] = 6
    verbose: bool = True

    def __post_init__(self):
        if int(self.max_delay) < 1:
            raise ValueError(f"max_delay must be a positive integer, got {self.max_delay}")
        # accept lists from callers; store tuples so the config stays hashable
        object.__setattr__(self, "by", tuple(self.by))
        object.__setattr__(self, "holidays", tuple(self.holidays))

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "PreprocessConfig":
        """Build a config from ``NP_*`` environment variables, defaults otherwise."""
        env = os.environ if env is None else env
        by = tuple(c.strip() for c in env.get("NP_BY", "").split(",") if c.strip())
        span = env.get("NP_MAX_SPAN_DAYS")
        return cls(
            max_delay=int(env.get("NP_MAX_DELAY", "20")),
            by=by,
            count_col=env.get("NP_COUNT_COL", "confirm"),
            max_span_days=None if span in (None, "", "null", "None") else int(span),
            fill_report_gaps=_env_flag(env.get("NP_FILL_REPORT_GAPS", "false")),
            verbose=_env_flag(env.get("NP_VERBOSE", "true")),
        )

    def to_dict(self) -> Dict:
        return {
            "max_delay": int(self.max_delay),
            "by": list(self.by),
            "count_col": self.count_col,
            "max_span_days": self.max_span_days,
            "fill_report_gaps": self.fill_report_gaps,
            "holidays": [str(d) for d in self.holidays],
            "holiday_day_of_week": self.holiday_day_of_week,
        }


def input_fingerprint(obs: pd.DataFrame, cfg: PreprocessConfig) -> str:
    """Stable hash of (observations, by, max_delay, ...) usable as a cache key."""
    h = hashlib.sha256()
    h.update(pd.util.hash_pandas_object(obs, index=False).to_numpy().tobytes())
    h.update(json.dumps(list(map(str, obs.columns))).encode("utf-8"))
    h.update(json.dumps(cfg.to_dict(), sort_keys=True).encode("utf-8"))
    return h.hexdigest()


@dataclass(frozen=True, eq=False)
class PreprocessedData:
    """Everything the downstream model consumes, plus a summary report."""

    config: PreprocessConfig
    observations: pd.DataFrame
    latest: pd.DataFrame
    triangle: ReportingTriangle
    completeness: CompletenessPartition
    reference_lookup: pd.DataFrame
    metareference: pd.DataFrame
    metareport: pd.DataFrame
    metadelay: pd.DataFrame
    summary: Dict = field(default_factory=dict)

    @property
    def has_delay_history(self) -> bool:
        return not self.reference_lookup.empty


def run_preprocess(obs: pd.DataFrame, cfg: Optional[PreprocessConfig] = None) -> PreprocessedData:
    """
    Main preprocessing function.

    Args:
        obs: long-format cumulative observations (reference_date, report_date,
            count column, grouping columns)
        cfg: preprocessing configuration (defaults if None)

    Returns:
        PreprocessedData bundle
    """
    cfg = cfg or PreprocessConfig()
    by = list(cfg.by)
    log = _log if cfg.verbose else (lambda msg: None)

    log("=" * 80)
    log("Starting preprocessing")
    log(f"Observations: {len(obs)} row(s); by={by}; max_delay={cfg.max_delay}")

    fingerprint = input_fingerprint(obs, cfg)

    long = validate_observations(obs, by, cfg.count_col)
    long = aggregate_cumulative(long, by, cfg.count_col)
    if cfg.fill_report_gaps:
        n_before = len(long)
        long = fill_report_gaps(long, by, cfg.max_delay, cfg.count_col)
        log(f"Filled {len(long) - n_before} missing report date(s)")

    triangle = build_reporting_triangle(long, by, cfg.max_delay, cfg.count_col, verbose=cfg.verbose)
    completeness = partition_rows(triangle, verbose=cfg.verbose)
    lookup = reference_by_report(triangle, completeness.flags, verbose=cfg.verbose)

    meta_kw = dict(
        max_span_days=cfg.max_span_days,
        holidays=cfg.holidays,
        holiday_day_of_week=cfg.holiday_day_of_week,
    )
    metareference = metadata_reference(triangle, **meta_kw)
    metareport = metadata_report(triangle, **meta_kw)
    metadelay = metadata_delay(cfg.max_delay)

    long = add_max_reported(add_delay(assign_groups(long, by)), by, cfg.count_col)
    latest = latest_data(long, by, cfg.max_delay, cfg.count_col)

    summary = {
        "fingerprint": fingerprint,
        "config": cfg.to_dict(),
        "n_observations": int(len(long)),
        "n_groups": int(triangle.keys[".group"].nunique()),
        "n_reference_dates": int(triangle.n_rows),
        "snapshot_date": str(triangle.snapshot_date.date()) if triangle.snapshot_date is not None else None,
        "n_complete": int(len(completeness.complete)),
        "n_missing_reference": int(len(completeness.missing_reference)),
        "n_lookup_rows": int(len(lookup)),
        "target": triangle.truncation.target,
        "truncation": triangle.truncation.to_dict(),
    }

    log("Preprocessing completed successfully")
    return PreprocessedData(
        config=cfg,
        observations=long,
        latest=latest,
        triangle=triangle,
        completeness=completeness,
        reference_lookup=lookup,
        metareference=metareference,
        metareport=metareport,
        metadelay=metadelay,
        summary=summary,
    )


@dataclass(frozen=True, eq=False)
class ModuleDesign:
    design: DesignMatrix
    sparse: SparseDesignMatrix


def build_module_designs(
    data: PreprocessedData,
    expectation: Sequence[Effect] = (),
    reference: Sequence[Effect] = (),
    report: Sequence[Effect] = (),
    intercept: bool = True,
) -> Dict[str, ModuleDesign]:
    """
    Sparse designs for the three covariate modules: ``expectation`` and
    ``reference`` over the reference-date metadata, ``report`` over the
    report-date metadata.
    """
    tables = {
        "expectation": (data.metareference, expectation),
        "reference": (data.metareference, reference),
        "report": (data.metareport, report),
    }
    out: Dict[str, ModuleDesign] = {}
    for module, (meta, effects) in tables.items():
        design = build_design_matrix(meta, effects, intercept=intercept)
        sparse = extract_sparse_matrix(design)
        if data.config.verbose:
            _log(f"Design '{module}': {len(design.frame)} row(s) -> {sparse.n_unique} unique")
        out[module] = ModuleDesign(design, sparse)
    return out
