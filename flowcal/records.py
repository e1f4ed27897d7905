from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from .formulas import ExperimentFormula
from .units import coerce_number


@dataclass(frozen=True)
class CalibrationRecord:
    """One computed run, as written to (and read back from) the store.

    Write-once: a new calculation makes a new record.
    """

    experiment: str
    created_at: Optional[datetime]
    raw_rows: Tuple[Dict[str, Any], ...] = field(default_factory=tuple)
    computed_rows: Tuple[Dict[str, Optional[float]], ...] = field(default_factory=tuple)
    average_ratio: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "experiment": self.experiment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "raw_rows": [dict(r) for r in self.raw_rows],
            "computed_rows": [dict(r) for r in self.computed_rows],
            "average_ratio": self.average_ratio,
        }


@dataclass(frozen=True)
class NoValidRows:
    """Every input row was excluded; nothing may be persisted."""

    experiment: str
    n_input_rows: int = 0

    message = "Fill at least one valid row."


@dataclass(frozen=True)
class NoRecordFound:
    """No stored run for this user/experiment; an expected empty state."""

    experiment: str
    user_id: Optional[str] = None

    message = "No recent saved run available."


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# epoch values above this are taken as milliseconds (JS Date.now())
_EPOCH_MS_THRESHOLD = 1e11


def _from_epoch(secs: float) -> Optional[datetime]:
    if abs(secs) > _EPOCH_MS_THRESHOLD:
        secs = secs / 1000.0
    try:
        return datetime.fromtimestamp(secs, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp(value) -> Optional[datetime]:
    """Best-effort ``createdAt`` reader.

    Handles datetime objects, ISO strings, epoch seconds (or milliseconds) and the
    ``{"seconds": .., "nanoseconds": ..}`` mapping document stores emit.
    Naive values are taken as UTC; out-of-range values read as None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, Mapping):
        secs = coerce_number(value.get("seconds", value.get("_seconds")))
        if secs is None:
            return None
        nanos = coerce_number(value.get("nanoseconds", value.get("_nanoseconds"))) or 0.0
        return _from_epoch(secs + nanos / 1e9)
    elif isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    else:
        secs = coerce_number(value)
        if secs is None:
            return None
        return _from_epoch(secs)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_document(record: CalibrationRecord, formula: ExperimentFormula) -> Dict[str, Any]:
    """Serialize ``record`` in the document layout earlier app versions read.

    Rows go under every key in ``formula.row_keys`` and the average under
    every alias in ``formula.average_aliases``; ``createdAt`` stays a datetime
    and is left to the store to encode.
    """
    rows = [dict(r) for r in record.computed_rows]
    doc: Dict[str, Any] = {"createdAt": record.created_at}
    for key in formula.row_keys:
        doc[key] = [dict(r) for r in rows]
    doc["inputRows"] = [dict(r) for r in record.raw_rows]
    for key in formula.average_aliases:
        doc[key] = record.average_ratio
    return doc
