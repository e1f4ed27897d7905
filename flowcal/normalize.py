"""Reconcile stored calibration documents of any vintage into the current rows.

Field names seen in stored documents so far:

=================  ==========================================================
rows               ``data`` (all versions), ``computed`` (rotameter, mirror of
                   ``data``), ``inputRows`` (raw form rows only; the oldest
                   documents and partially written ones carry nothing else)
average            ``avgCorrectionFactor`` / ``avgCf`` (rotameter),
                   ``averageCd`` (venturimeter)
timestamp          ``createdAt``
=================  ==========================================================

Extraction is a list of named strategies tried in order; supporting a new
schema version means appending a strategy.
"""
from __future__ import annotations

from typing import Any, Callable, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Union
import logging

from .aggregate import average_ratio
from .formulas import ExperimentFormula
from .records import CalibrationRecord, NoRecordFound, parse_timestamp
from .units import coerce_number

logger = logging.getLogger(__name__)


class RowStrategy(NamedTuple):
    name: str
    extract: Callable[[Mapping[str, Any]], Optional[list]]


def _list_field(key: str) -> Callable[[Mapping[str, Any]], Optional[list]]:
    def extract(doc):
        v = doc.get(key)
        return list(v) if isinstance(v, (list, tuple)) else None
    return extract


ROW_STRATEGIES: tuple[RowStrategy, ...] = (
    RowStrategy("data", _list_field("data")),
    RowStrategy("computed", _list_field("computed")),
    RowStrategy("inputRows", _list_field("inputRows")),
)


def extract_rows(doc: Mapping[str, Any],
                 strategies: Sequence[RowStrategy] = ROW_STRATEGIES) -> tuple[Optional[str], list]:
    """Return ``(strategy_name, rows)`` for the first strategy that finds a list."""
    for s in strategies:
        rows = s.extract(doc)
        if rows is not None:
            return s.name, rows
    return None, []


def extract_average(doc: Mapping[str, Any], aliases: Iterable[str]) -> tuple[Optional[str], Optional[float]]:
    """First stored average under ``aliases`` that reads as a finite number."""
    for key in aliases:
        v = coerce_number(doc.get(key))
        if v is not None:
            return key, v
    return None, None


def normalize_rows(rows: Iterable[Any], formula: ExperimentFormula) -> List[dict]:
    """Coerce and re-derive stored rows; rows that cannot be completed are dropped."""
    out = []
    for i, r in enumerate(rows):
        if not isinstance(r, Mapping):
            logger.debug("row %d: not a mapping (%s); dropped", i, type(r).__name__)
            continue
        row = formula.rederive(r)
        if not formula.is_complete(row):
            missing = [f for f in formula.fields if f != formula.ratio_field and row.get(f) is None]
            logger.debug("row %d: cannot derive %s; dropped", i, ", ".join(missing))
            continue
        out.append(row)
    return out


def normalize(doc: Optional[Mapping[str, Any]],
              formula: ExperimentFormula) -> Union[CalibrationRecord, NoRecordFound]:
    """Turn a stored document into a :class:`CalibrationRecord`.

    Stored finite values are kept as written (they may come from an older
    formula); only missing or malformed fields are re-derived. The stored
    average wins over recomputation when one of the aliases holds a number.
    A missing or non-mapping document is :class:`NoRecordFound`.
    """
    if doc is None or not isinstance(doc, Mapping):
        return NoRecordFound(experiment=formula.name)

    source, rows = extract_rows(doc)
    computed = normalize_rows(rows, formula)
    avg_key, avg = extract_average(doc, formula.average_aliases)
    if avg_key is None:
        avg = average_ratio(computed, formula.ratio_field)
    raw = doc.get("inputRows")
    raw_rows = tuple(dict(r) for r in raw if isinstance(r, Mapping)) if isinstance(raw, (list, tuple)) else ()

    logger.debug(
        "normalized %s record: rows from %s (%d/%d kept), average from %s",
        formula.name, source, len(computed), len(rows), avg_key or "recompute",
    )
    return CalibrationRecord(
        experiment=formula.name,
        created_at=parse_timestamp(doc.get("createdAt")),
        raw_rows=raw_rows,
        computed_rows=tuple(computed),
        average_ratio=avg,
    )
