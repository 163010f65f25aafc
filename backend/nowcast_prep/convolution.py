"""Delay convolution: latent final counts -> expected reported counts.

The reporting model maps an expected final count per reference date through
a delay pmf, ``expected_reported[r, d] = expected_final[r] * pmf[d]``. A pmf
may sum to less than one; the shortfall is mass reported after max_delay.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Hashable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from .errors import InvalidDelayDistribution

PMF_TOLERANCE = 1e-8


def validate_pmf(
    pmf, max_delay: Optional[int] = None, block=None, tol: float = PMF_TOLERANCE
) -> np.ndarray:
    """
    Check a delay pmf and return it as a read-only float array.

    Never clips or renormalises: a negative entry, a non-finite entry or a
    cumulative sum above ``1 + tol`` raises InvalidDelayDistribution.
    """
    arr = np.array(pmf, dtype=float)
    if arr.ndim != 1 or arr.size == 0:
        raise InvalidDelayDistribution(f"expected a non-empty 1-D pmf, got shape {arr.shape}", block)
    if max_delay is not None and arr.size != int(max_delay):
        raise InvalidDelayDistribution(f"length {arr.size} != max_delay {max_delay}", block)
    if not np.isfinite(arr).all():
        raise InvalidDelayDistribution("non-finite probability", block)
    if (arr < 0).any():
        raise InvalidDelayDistribution(f"negative probability at delay {int(np.argmax(arr < 0))}", block)
    total = float(np.cumsum(arr)[-1])
    if total > 1.0 + tol:
        raise InvalidDelayDistribution(f"probabilities sum to {total:.10g} > 1", block, total)
    arr.setflags(write=False)
    return arr


def delay_convolution(expected_final, pmf, block=None) -> np.ndarray:
    """Expected reported counts per (reference date, delay), shape (n, max_delay)."""
    pmf = validate_pmf(pmf, block=block)
    final = np.asarray(expected_final, dtype=float).ravel()
    out = final[:, None] * pmf[None, :]
    out.setflags(write=False)
    return out


@dataclass(frozen=True, eq=False)
class ConvolutionBlock:
    """Convolution for the reference dates sharing one (group, block) pmf."""

    group: Hashable
    block: Hashable
    rows: np.ndarray
    pmf: np.ndarray
    matrix: np.ndarray

    @property
    def key(self) -> Tuple[Hashable, Hashable]:
        return (self.group, self.block)


def convolution_blocks(
    targets: pd.DataFrame,
    pmfs: Mapping[Tuple[Hashable, Hashable], Sequence[float]],
    value_col: str = "expected_final",
    group_col: str = ".group",
    block_col: Optional[str] = None,
    max_delay: Optional[int] = None,
) -> List[ConvolutionBlock]:
    """
    One convolution block per distinct (group, block) in ``targets``.

    Args:
        targets: one row per reference date with the expected final count,
            a group column and (optionally) a time-block column
        pmfs: delay pmf per (group, block); with no ``block_col`` the block
            key is None
        value_col: column holding expected final counts

    Returns:
        Blocks ordered by (group, block); ``rows`` are positions in ``targets``.
    """
    if value_col not in targets.columns:
        raise ValueError(f"targets has no column '{value_col}'")
    group = targets[group_col] if group_col in targets.columns else pd.Series(0, index=targets.index)
    block = targets[block_col] if block_col is not None else pd.Series([None] * len(targets), index=targets.index)
    frame = pd.DataFrame(
        {"g": group.to_numpy(), "b": block.to_numpy(), "pos": np.arange(len(targets))}
    )

    values = targets[value_col].to_numpy(dtype=float)
    blocks: List[ConvolutionBlock] = []
    for (g, b), part in frame.groupby(["g", "b"], sort=True, dropna=False):
        b = None if pd.isna(b) else b
        key = (g, b)
        if key not in pmfs:
            raise InvalidDelayDistribution("no pmf supplied", block=key)
        pmf = validate_pmf(pmfs[key], max_delay=max_delay, block=key)
        rows = part["pos"].to_numpy(dtype=np.int64)
        rows.setflags(write=False)
        blocks.append(ConvolutionBlock(g, b, rows, pmf, delay_convolution(values[rows], pmf, key)))
    return blocks


def stack_blocks(blocks: Sequence[ConvolutionBlock], n_rows: int) -> np.ndarray:
    """Scatter block matrices back into one (n_rows, max_delay) array."""
    if not blocks:
        return np.zeros((n_rows, 0))
    widths = {b.matrix.shape[1] for b in blocks}
    if len(widths) != 1:
        raise ValueError(f"Blocks disagree on max_delay: {sorted(widths)}")
    out = np.full((n_rows, widths.pop()), np.nan)
    for b in blocks:
        out[b.rows] = b.matrix
    return out


def convolution_matrix(pmf, t: int, include_partial: bool = False) -> np.ndarray:
    """
    Lower-triangular (t, t) matrix ``C`` with ``C[i, s] = pmf_s[i - s]``, so
    ``C @ latent`` gives counts by report date.

    ``pmf`` is a single pmf or a (t, max_delay) array with one pmf per latent
    time ``s``. Without ``include_partial`` the first max_delay - 1 rows,
    which would miss contributions from before the series start, are zero.
    """
    arr = np.asarray(pmf, dtype=float)
    if arr.ndim == 1:
        arr = np.tile(validate_pmf(arr), (int(t), 1))
    elif arr.ndim == 2 and arr.shape[0] == int(t):
        for s in range(arr.shape[0]):
            validate_pmf(arr[s], block=s)
    else:
        raise InvalidDelayDistribution(f"expected a pmf or a ({t}, max_delay) array, got shape {arr.shape}")

    n_delay = arr.shape[1]
    i, s = np.indices((int(t), int(t)))
    lag = i - s
    inside = (lag >= 0) & (lag < n_delay)
    conv = np.zeros((int(t), int(t)))
    conv[inside] = arr[s[inside], lag[inside]]
    if not include_partial and n_delay > 1:
        conv[: n_delay - 1, :] = 0.0
    return conv


def discretised_pmf(
    dist: str, params: Dict[str, float], max_delay: int, normalise: bool = False
) -> np.ndarray:
    """
    Daily delay pmf from a continuous distribution:
    ``pmf[d] = F(d + 1) - F(d)`` for d = 0..max_delay-1.

    Supported: ``lognormal`` (meanlog, sdlog) and ``gamma`` (shape, rate).
    Mass beyond max_delay is left out unless ``normalise`` is set.
    """
    dist = dist.lower().strip()
    if dist == "lognormal":
        frozen = stats.lognorm(s=float(params["sdlog"]), scale=float(np.exp(params["meanlog"])))
    elif dist == "gamma":
        frozen = stats.gamma(a=float(params["shape"]), scale=1.0 / float(params["rate"]))
    else:
        raise ValueError(f"Unknown delay distribution: {dist}. Must be: lognormal, gamma")

    edges = np.arange(int(max_delay) + 1, dtype=float)
    pmf = np.diff(frozen.cdf(edges))
    if normalise:
        pmf = pmf / pmf.sum()
    # cdf differences can dip a hair below zero in the far tail
    return validate_pmf(np.clip(pmf, 0.0, None), max_delay=max_delay)
