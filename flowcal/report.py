from __future__ import annotations
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional
import json
import pandas as pd

from .aggregate import AggregateResult, LinearFit
from .formulas import ExperimentFormula
from .io import computed_frame
from .sciformat import format_fixed, format_scientific, UNDEFINED


def _plain(v) -> str:
    if v is None:
        return UNDEFINED
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


def _rounded(v) -> str:
    return UNDEFINED if v is None else str(int(round(v)))


def _fixed(places: int) -> Callable:
    return lambda v: format_fixed(v, places)


# experiment -> [(header, field, renderer), ...] in on-screen order
COLUMNS: dict[str, list[tuple[str, str, Callable]]] = {
    "rotameter": [
        ("qrot(L/h)", "qrot", _plain),
        ("t(s)", "time", _plain),
        ("Q_act", "qact", format_scientific),
        ("qrot(m3/s)", "qrot_m3s", format_scientific),
        ("C_f", "cf", _fixed(5)),
    ],
    "venturimeter": [
        ("P1", "P1", _plain),
        ("P2", "P2", _plain),
        ("t(s)", "time", _plain),
        ("dP(Pa)", "dP_Pa", _rounded),
        ("H(m)", "H_m", _fixed(3)),
        ("Q_act", "Q_act", format_scientific),
        ("Q_theo", "Q_theo", format_scientific),
        ("Cd", "Cd", _fixed(5)),
    ],
}

RATIO_LABELS = {"rotameter": "Average Correction Factor", "venturimeter": "Average Cd"}


def results_table(rows: Iterable[Mapping], formula: ExperimentFormula) -> pd.DataFrame:
    """Display table of computed rows, every cell already formatted."""
    cols = COLUMNS[formula.name]
    data = [{h: render(r.get(f)) for h, f, render in cols} for r in rows]
    return pd.DataFrame(data, columns=[h for h, _, _ in cols])


def summary_lines(formula: ExperimentFormula, agg: AggregateResult,
                  average: Optional[float] = None) -> list[str]:
    """Average and best-fit lines under the table.

    ``average`` overrides ``agg.average_ratio`` (a stored record shows its
    stored average).
    """
    avg = agg.average_ratio if average is None else average
    lines = [f"{RATIO_LABELS.get(formula.name, 'Average ratio')}: {format_fixed(avg, 5)}"]
    if isinstance(agg.best_fit, LinearFit):
        lines.append(
            "Best-fit slope: {:.6f}, intercept: {:.3e}".format(agg.best_fit.slope, agg.best_fit.intercept)
        )
    elif agg.best_fit is not None:
        lines.append("Best-fit slope (m): {:.6f}".format(agg.best_fit))
    return lines


def write_summary_tables(outdir: Path, rows: Iterable[Mapping], formula: ExperimentFormula,
                         agg: AggregateResult, stem: str = "run") -> list[str]:
    """Write ``<stem>_computed.csv`` (numeric rows) and ``<stem>_summary.json``."""

    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)
    csv_p = outdir / f"{stem}_computed.csv"
    computed_frame(rows, formula).to_csv(csv_p, index=False)
    js_p = outdir / f"{stem}_summary.json"
    js_p.write_text(json.dumps({"experiment": formula.name, **agg.to_dict()}, indent=2))
    return [str(csv_p), str(js_p)]
