from __future__ import annotations
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional
import re
import pandas as pd
import openpyxl

from .formulas import ExperimentFormula

# accepted raw column headers per field (case/space/unit-suffix insensitive)
RAW_ALIASES: Dict[str, List[str]] = {
    "qrot": ["qrot", "q_rot", "rotameter", "rotameter_flow", "qrot_lph", "qrot_l_h"],
    "time": ["time", "t", "time_s", "t_s", "fill_time"],
    "P1": ["p1", "p_1", "p1_kgcm2", "inlet_pressure"],
    "P2": ["p2", "p_2", "p2_kgcm2", "throat_pressure"],
}


def _key(label) -> str:
    s = str(label).strip().lower()
    s = re.sub(r"\(.*?\)", "", s)           # "Time (s)" -> "time"
    return re.sub(r"[^a-z0-9]+", "_", s).strip("_")


def _pick(df: pd.DataFrame, names: list[str]) -> str | None:
    low = {_key(c): c for c in df.columns}
    for n in names:
        if n in low:
            return low[n]
    return None


def _read_sheet_as_df(ws) -> pd.DataFrame:
    """First row is the header; empty worksheets give an empty frame."""
    rows = list(ws.values)
    if not rows:
        return pd.DataFrame()
    header = [str(c).strip() if c is not None else "" for c in rows[0]]
    return pd.DataFrame(rows[1:], columns=header)


def read_table(path: Path, sheet: str | None = None) -> pd.DataFrame:
    path = Path(path)
    if path.suffix.lower() in (".xlsx", ".xlsm"):
        wb = openpyxl.load_workbook(path, data_only=True, read_only=True)
        try:
            ws = wb[sheet] if sheet else wb.worksheets[0]
            return _read_sheet_as_df(ws)
        finally:
            wb.close()
    return pd.read_csv(path, dtype=str, keep_default_na=False)


def raw_rows_from_frame(df: pd.DataFrame, formula: ExperimentFormula,
                        columns: Optional[Mapping[str, str]] = None) -> List[Dict[str, object]]:
    """Map a table onto the formula's raw fields.

    Values are passed through untouched (strings stay strings); parsing and
    exclusion are the formula's job. ``columns`` pins field -> header
    explicitly; other fields are found through :data:`RAW_ALIASES`.
    """
    columns = dict(columns or {})
    cols = {}
    for f in formula.raw_fields:
        c = columns.get(f) or _pick(df, RAW_ALIASES.get(f, [f.lower()]))
        if c is None or c not in df.columns:
            raise ValueError(f"Input table has no column for {f!r} (columns: {list(df.columns)})")
        cols[f] = c
    rows = []
    for i, rec in enumerate(df[list(cols.values())].itertuples(index=False), start=1):
        row = {"id": str(i)}
        for f, v in zip(cols, rec):
            row[f] = "" if v is None or (isinstance(v, float) and pd.isna(v)) else v
        rows.append(row)
    return rows


def load_raw_rows(path: Path, formula: ExperimentFormula, sheet: str | None = None,
                  columns: Optional[Mapping[str, str]] = None) -> List[Dict[str, object]]:
    """Raw trial rows from a CSV file or an Excel sheet."""
    return raw_rows_from_frame(read_table(path, sheet), formula, columns)


def computed_frame(rows: Iterable[Mapping], formula: ExperimentFormula) -> pd.DataFrame:
    """Computed rows as a numeric DataFrame in the formula's column order."""
    df = pd.DataFrame([dict(r) for r in rows], columns=list(formula.fields))
    return df.apply(pd.to_numeric, errors="coerce")
