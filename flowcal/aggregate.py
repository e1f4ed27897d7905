from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, NamedTuple, Optional, Sequence, Tuple, Union
import math

import numpy as np

from .formulas import ExperimentFormula
from .units import coerce_number

# |n*Sxx - Sx^2| below this is treated as zero x-spread
LSQ_DENOM_EPS = 1e-12


class LinearFit(NamedTuple):
    slope: float
    intercept: float


@dataclass(frozen=True)
class AggregateResult:
    average_ratio: Optional[float]       # None: undefined, shown as "-"
    best_fit: Union[float, LinearFit, None]
    method: str                          # "pairwise" | "lstsq"
    n_rows: int = 0
    n_points: int = 0

    @property
    def slope(self) -> Optional[float]:
        if isinstance(self.best_fit, LinearFit):
            return self.best_fit.slope
        return self.best_fit

    @property
    def intercept(self) -> Optional[float]:
        if isinstance(self.best_fit, LinearFit):
            return self.best_fit.intercept
        return None

    def to_dict(self) -> dict:
        return {
            "average_ratio": self.average_ratio,
            "method": self.method,
            "slope": self.slope,
            "intercept": self.intercept,
            "n_rows": self.n_rows,
            "n_points": self.n_points,
        }


def _as_points(points: Iterable[Sequence[float]]) -> np.ndarray:
    pts = np.asarray([(p[0], p[1]) for p in points], dtype=float).reshape(-1, 2)
    return pts[np.all(np.isfinite(pts), axis=1)]


def average_ratio(rows: Iterable[Mapping], field: str) -> Optional[float]:
    """Mean of ``field`` over ``rows``.

    A row whose ratio is null or non-finite adds 0 to the sum but still counts
    in the denominator. Returns None for no rows.
    """
    vals = [coerce_number(r.get(field)) for r in rows]
    if not vals:
        return None
    total = sum(v if v is not None else 0.0 for v in vals)
    return float(total / len(vals))


def pairwise_slope(points: Iterable[Sequence[float]]) -> float:
    """Average of dy/dx over every unordered pair of points with distinct x.

    Fewer than two finite points gives 0.0, as does a set where every x is equal.
    """
    pts = _as_points(points)
    if len(pts) < 2:
        return 0.0
    i, j = np.triu_indices(len(pts), k=1)
    dx = pts[j, 0] - pts[i, 0]
    dy = pts[j, 1] - pts[i, 1]
    ok = dx != 0
    if not np.any(ok):
        return 0.0
    return float(np.mean(dy[ok] / dx[ok]))


def least_squares_fit(points: Iterable[Sequence[float]]) -> Optional[LinearFit]:
    """Ordinary least squares y = slope*x + intercept, closed form.

    None for no points or when the x spread is degenerate.
    """
    pts = _as_points(points)
    n = len(pts)
    if n == 0:
        return None
    x, y = pts[:, 0], pts[:, 1]
    sx, sy = float(np.sum(x)), float(np.sum(y))
    sxx, sxy = float(np.sum(x * x)), float(np.sum(x * y))
    denom = n * sxx - sx * sx
    if not math.isfinite(denom) or abs(denom) < LSQ_DENOM_EPS:
        return None
    m = (n * sxy - sx * sy) / denom
    c = (sy - m * sx) / n
    return LinearFit(float(m), float(c))


def fit_points(rows: Iterable[Mapping], formula: ExperimentFormula) -> list[Tuple[float, float]]:
    out = []
    for r in rows:
        x = coerce_number(r.get(formula.fit_x))
        y = coerce_number(r.get(formula.fit_y))
        if x is not None and y is not None:
            out.append((x, y))
    return out


def aggregate(rows: Sequence[Mapping], formula: ExperimentFormula) -> AggregateResult:
    rows = list(rows)
    pts = fit_points(rows, formula)
    if formula.fit_method == "lstsq":
        best = least_squares_fit(pts)
    elif formula.fit_method == "pairwise":
        best = pairwise_slope(pts)
    else:
        raise ValueError(f"Unknown fit method {formula.fit_method!r}")
    return AggregateResult(
        average_ratio=average_ratio(rows, formula.ratio_field),
        best_fit=best,
        method=formula.fit_method,
        n_rows=len(rows),
        n_points=len(pts),
    )
