"""One calibration screen's worth of state: the editable trial table, the last
computed run and the most recent stored run."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple, Union
import logging

from .aggregate import AggregateResult, aggregate
from .formulas import ExperimentFormula
from .normalize import normalize
from .records import CalibrationRecord, NoRecordFound, NoValidRows, to_document, utcnow

logger = logging.getLogger(__name__)


class RecordStoreLike(Protocol):
    def write_record(self, user_id: str, experiment: str, document: Mapping[str, Any]) -> Any: ...
    def read_most_recent(self, user_id: str, experiment: str) -> Optional[Dict[str, Any]]: ...


class RowTable:
    """Ordered trial rows keyed by a monotonically increasing id.

    Ids are strings (``"1"``, ``"2"``, ...) and are never reused, so they stay
    unique after deletions.
    """

    def __init__(self, fields: Iterable[str]):
        self.fields = tuple(fields)
        self._rows: Dict[str, Dict[str, Any]] = {}
        self._next_id = 1

    def add(self, **values) -> str:
        unknown = set(values) - set(self.fields)
        if unknown:
            raise KeyError(f"Unknown row field(s): {sorted(unknown)}")
        rid = str(self._next_id)
        self._next_id += 1
        row = {"id": rid}
        row.update({f: values.get(f, "") for f in self.fields})
        self._rows[rid] = row
        return rid

    def remove(self, rid) -> None:
        del self._rows[str(rid)]

    def update(self, rid, field: str, value) -> None:
        if field not in self.fields:
            raise KeyError(f"Unknown row field {field!r}")
        self._rows[str(rid)][field] = value

    def rows(self) -> List[Dict[str, Any]]:
        return [dict(r) for r in self._rows.values()]

    def replace(self, rows: Iterable[Mapping[str, Any]]) -> None:
        """Reset the table to ``rows`` (ids renumbered from 1)."""
        self._rows.clear()
        self._next_id = 1
        for r in rows:
            self.add(**{f: r.get(f, "") for f in self.fields})

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self):
        return iter(self.rows())


@dataclass(frozen=True)
class SessionResult:
    computed_rows: Tuple[Dict[str, Optional[float]], ...]
    aggregate: AggregateResult
    record: CalibrationRecord
    persistable: Dict[str, Any]


def compute_and_prepare(raw_rows: Iterable[Mapping[str, Any]],
                        formula: ExperimentFormula,
                        now: Optional[datetime] = None) -> Union[SessionResult, NoValidRows]:
    """Derive every raw row, aggregate, and package the record to store.

    Excluded rows are dropped; if none survive the result is
    :class:`NoValidRows` and nothing should be written.
    """
    raw_rows = [dict(r) for r in raw_rows]
    computed = []
    for r in raw_rows:
        c = formula.derive(r)
        if c is None:
            logger.debug("%s row %s excluded: %s", formula.name, r.get("id", "?"),
                         {f: r.get(f) for f in formula.raw_fields})
            continue
        computed.append(c)
    if not computed:
        return NoValidRows(experiment=formula.name, n_input_rows=len(raw_rows))

    agg = aggregate(computed, formula)
    record = CalibrationRecord(
        experiment=formula.name,
        created_at=now or utcnow(),
        raw_rows=tuple(raw_rows),
        computed_rows=tuple(dict(c) for c in computed),
        average_ratio=agg.average_ratio,
    )
    return SessionResult(
        computed_rows=tuple(computed),
        aggregate=agg,
        record=record,
        persistable=to_document(record, formula),
    )


class CalibrationSession:
    """Trial table plus compute/save/load for one experiment and one user.

    ``store`` and ``user_id`` are optional; without both, runs are computed
    but not saved and there is never a recent record.
    """

    def __init__(self, formula: ExperimentFormula, store: RecordStoreLike | None = None,
                 user_id: str | None = None):
        self.formula = formula
        self.store = store
        self.user_id = user_id
        self.rows = RowTable(formula.raw_fields)
        self.rows.add()
        self.result: SessionResult | None = None
        self.recent: CalibrationRecord | NoRecordFound = NoRecordFound(formula.name, user_id)
        self.recent_aggregate: AggregateResult | None = None

    @property
    def can_save(self) -> bool:
        return self.store is not None and self.user_id is not None

    def calculate(self, now: Optional[datetime] = None) -> Union[SessionResult, NoValidRows]:
        res = compute_and_prepare(self.rows.rows(), self.formula, now=now)
        if isinstance(res, NoValidRows):
            logger.warning("%s: no valid rows out of %d", self.formula.name, res.n_input_rows)
            return res
        self.result = res
        if not self.can_save:
            logger.info("%s: not signed in; result not saved", self.formula.name)
            return res
        try:
            self.store.write_record(self.user_id, self.formula.collection, res.persistable)
        except Exception:
            logger.error("%s: saving run failed", self.formula.name, exc_info=True)
            raise
        logger.info("%s: saved run with %d rows", self.formula.name, len(res.computed_rows))
        self.load_most_recent()
        return res

    def load_most_recent(self) -> Union[CalibrationRecord, NoRecordFound]:
        self.recent_aggregate = None
        if not self.can_save:
            self.recent = NoRecordFound(self.formula.name, self.user_id)
            return self.recent
        try:
            doc = self.store.read_most_recent(self.user_id, self.formula.collection)
        except Exception:
            logger.error("%s: loading most recent run failed", self.formula.name, exc_info=True)
            raise
        rec = normalize(doc, self.formula)
        if isinstance(rec, NoRecordFound):
            rec = NoRecordFound(self.formula.name, self.user_id)
        else:
            self.recent_aggregate = aggregate(rec.computed_rows, self.formula)
        self.recent = rec
        return rec

    def prefill_from(self, record: CalibrationRecord) -> int:
        """Reload the trial table from a record's raw rows; returns the row count."""
        if record.raw_rows:
            self.rows.replace(record.raw_rows)
        return len(self.rows)
