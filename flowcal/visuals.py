from __future__ import annotations
from pathlib import Path
from typing import Iterable, Mapping
import numpy as np
import matplotlib
matplotlib.use("Agg")  # headless
import matplotlib.pyplot as plt

from .aggregate import AggregateResult, LinearFit, fit_points
from .formulas import ExperimentFormula

_AXIS_LABELS = {
    "qrot_m3s": "Q_rot [m³/s]",
    "qact": "Q_act [m³/s]",
    "Q_theo": "Q_theo [m³/s]",
    "Q_act": "Q_act [m³/s]",
}


def plot_fit(outdir: Path, rows: Iterable[Mapping], formula: ExperimentFormula,
             agg: AggregateResult, stem: str = "fit") -> Path:
    """Scatter of the fit pair (x: ``formula.fit_x``, y: ``formula.fit_y``) with the best-fit line.

    A pairwise slope is drawn through the centroid of the points; a
    least-squares fit is drawn with its own intercept.
    Output file: outdir / f"{stem}.png"
    """
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)
    pts = np.asarray(fit_points(rows, formula), dtype=float).reshape(-1, 2)
    if len(pts) == 0:
        raise ValueError("No finite points to plot")
    x, y = pts[:, 0], pts[:, 1]

    fig, ax = plt.subplots(figsize=(7, 4.5))
    ax.scatter(x, y, label="trials", zorder=3)
    xs = np.linspace(float(x.min()), float(x.max()), 50)
    if isinstance(agg.best_fit, LinearFit):
        ax.plot(xs, agg.best_fit.slope * xs + agg.best_fit.intercept, "--",
                label=f"least squares (m={agg.best_fit.slope:.4f})")
    elif agg.best_fit is not None and len(pts) >= 2:
        m = float(agg.best_fit)
        ax.plot(xs, y.mean() + m * (xs - x.mean()), "--", label=f"pairwise slope (m={m:.4f})")
    ax.set_xlabel(_AXIS_LABELS.get(formula.fit_x, formula.fit_x))
    ax.set_ylabel(_AXIS_LABELS.get(formula.fit_y, formula.fit_y))
    ax.ticklabel_format(style="sci", scilimits=(-3, 3))
    ax.grid(True, alpha=0.3)
    ax.legend()
    ax.set_title(f"{formula.name.capitalize()} calibration")
    fig.tight_layout()
    out = outdir / f"{stem}.png"
    fig.savefig(out, dpi=150, format="png")
    plt.close(fig)
    return out
