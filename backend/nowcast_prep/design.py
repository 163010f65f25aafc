"""Design matrices for covariate effects and their sparse (deduplicated) form.

Effects are declared explicitly instead of through a formula string:

    build_design_matrix(meta, [
        FixedEffect("day_of_week", categorical=True),
        CategoricalEffect(".group"),
        RandomWalkEffect("week", by=".group"),
    ])

``extract_sparse_matrix`` then keeps each distinct row once plus an index
back to the original rows, so downstream work runs per distinct row.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

INTERCEPT = "(Intercept)"


def _levels(s: pd.Series) -> list:
    return sorted(s.dropna().unique().tolist())


def _require(meta: pd.DataFrame, *cols: str) -> None:
    missing = [c for c in cols if c not in meta.columns]
    if missing:
        raise ValueError(f"Metadata is missing effect column(s): {missing}")


@dataclass(frozen=True)
class FixedEffect:
    """
    Fixed effect of ``column``. Numeric columns enter as-is; categorical ones
    (or ``categorical=True``) use treatment contrasts against the first level.
    """

    column: str
    categorical: Optional[bool] = None

    @property
    def name(self) -> str:
        return self.column

    def expand(self, meta: pd.DataFrame) -> Tuple[Dict[str, np.ndarray], bool]:
        _require(meta, self.column)
        s = meta[self.column]
        categorical = self.categorical
        if categorical is None:
            categorical = not pd.api.types.is_numeric_dtype(s) or pd.api.types.is_bool_dtype(s)
        if not categorical:
            return {self.column: s.to_numpy(dtype=float)}, True
        return {
            f"{self.column}{lvl}": (s == lvl).to_numpy(dtype=float) for lvl in _levels(s)[1:]
        }, True


@dataclass(frozen=True)
class CategoricalEffect:
    """Random effect over the levels of ``column``: one indicator per level."""

    column: str

    @property
    def name(self) -> str:
        return self.column

    def expand(self, meta: pd.DataFrame) -> Tuple[Dict[str, np.ndarray], bool]:
        _require(meta, self.column)
        s = meta[self.column]
        return {f"{self.column}{lvl}": (s == lvl).to_numpy(dtype=float) for lvl in _levels(s)}, False


@dataclass(frozen=True)
class RandomWalkEffect:
    """
    Random walk over the ordered values of ``time``: column k is 1 when
    time >= k (first level dropped), so each coefficient is one step of the
    walk. With ``by`` there is one walk per level of that column.
    """

    time: str = "week"
    by: Optional[str] = None

    @property
    def name(self) -> str:
        return f"rw__{self.time}" if self.by is None else f"rw__{self.time}__{self.by}"

    def expand(self, meta: pd.DataFrame) -> Tuple[Dict[str, np.ndarray], bool]:
        cols = (self.time,) if self.by is None else (self.time, self.by)
        _require(meta, *cols)
        t = meta[self.time]
        steps = {f"rw__{self.time}{k}": (t >= k).to_numpy(dtype=float) for k in _levels(t)[1:]}
        if self.by is None:
            return steps, False
        g = meta[self.by]
        out = {}
        for lvl in _levels(g):
            in_lvl = (g == lvl).to_numpy(dtype=float)
            for name, step in steps.items():
                out[f"{name}:{self.by}{lvl}"] = step * in_lvl
        return out, False


Effect = Union[FixedEffect, CategoricalEffect, RandomWalkEffect]


@dataclass(frozen=True, eq=False)
class DesignMatrix:
    """Dense design plus which effect each column belongs to."""

    frame: pd.DataFrame
    effects: pd.DataFrame

    @property
    def columns(self) -> List[str]:
        return list(self.frame.columns)


def build_design_matrix(
    meta: pd.DataFrame, effects: Sequence[Effect] = (), intercept: bool = True
) -> DesignMatrix:
    """
    Compile effect specifications against a metadata table, one design row
    per metadata row. Column names must be unique across effects.
    """
    data: Dict[str, np.ndarray] = {}
    rows = []
    if intercept:
        data[INTERCEPT] = np.ones(len(meta), dtype=float)
        rows.append({"column": INTERCEPT, "effect": INTERCEPT, "fixed": True})
    for effect in effects:
        cols, fixed = effect.expand(meta)
        for name, values in cols.items():
            if name in data:
                raise ValueError(f"Duplicate design column '{name}' from effect '{effect.name}'")
            data[name] = values
            rows.append({"column": name, "effect": effect.name, "fixed": fixed})
    frame = pd.DataFrame(data, index=range(len(meta)), dtype=float)
    table = pd.DataFrame(rows, columns=["column", "effect", "fixed"])
    return DesignMatrix(frame, table)


@dataclass(frozen=True, eq=False)
class SparseDesignMatrix:
    """
    Distinct design rows (first-occurrence order) and, per original row, the
    position of its distinct row: ``unique_rows[index]`` is the dense matrix.
    """

    unique_rows: np.ndarray
    index: np.ndarray
    columns: Tuple[str, ...] = ()

    @property
    def n_unique(self) -> int:
        return int(self.unique_rows.shape[0])

    def to_dense(self) -> np.ndarray:
        return self.unique_rows[self.index]


def extract_sparse_matrix(matrix) -> SparseDesignMatrix:
    """
    Deduplicate design rows by exact value.

    Rows are compared on their float64 bytes (signed zeros folded together),
    so equality is exact and free of hash collisions. Input may be a
    DesignMatrix, a DataFrame or a 2-D array.
    """
    if isinstance(matrix, DesignMatrix):
        matrix = matrix.frame
    columns: Tuple[str, ...] = ()
    if isinstance(matrix, pd.DataFrame):
        columns = tuple(str(c) for c in matrix.columns)
        matrix = matrix.to_numpy(dtype=float)
    arr = np.asarray(matrix, dtype=np.float64)
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2:
        raise ValueError(f"Design matrix must be 2-D, got {arr.ndim}-D")
    arr = np.ascontiguousarray(arr + 0.0)
    n_rows, n_cols = arr.shape

    if n_rows == 0 or n_cols == 0:
        # without columns every row is the same (empty) row
        unique_rows = arr[:1]
        index = np.zeros(n_rows, dtype=np.int64)
    else:
        rows = arr.view(np.dtype((np.void, arr.dtype.itemsize * n_cols))).ravel()
        _, first, inverse = np.unique(rows, return_index=True, return_inverse=True)
        # np.unique sorts by bytes; renumber in first-occurrence order
        order = np.argsort(first, kind="stable")
        rank = np.empty(len(order), dtype=np.int64)
        rank[order] = np.arange(len(order), dtype=np.int64)
        unique_rows = arr[first[order]]
        index = rank[inverse.ravel()]

    unique_rows.setflags(write=False)
    index.setflags(write=False)
    return SparseDesignMatrix(unique_rows, index, columns)
