from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
import json, logging, re, uuid

from .records import parse_timestamp

logger = logging.getLogger(__name__)

_SAFE = re.compile(r"[^A-Za-z0-9_.@-]+")
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _safe_part(s: str) -> str:
    s = _SAFE.sub("_", str(s)).strip("._")
    if not s:
        raise ValueError("Empty path component for record store")
    return s


def _json_default(o):
    if isinstance(o, datetime):
        return o.isoformat()
    raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")


class JsonRecordStore:
    """File-backed record store: ``<root>/users/<uid>/<collection>/<stamp>.json``.

    Documents are written once and never modified. The most recent document
    is the one with the latest ``createdAt``; file name order breaks ties and
    orders documents that carry no readable timestamp (those sort oldest).
    """

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def collection_dir(self, user_id: str, experiment: str) -> Path:
        return self.root / "users" / _safe_part(user_id) / _safe_part(experiment)

    def write_record(self, user_id: str, experiment: str, document: Mapping[str, Any]) -> Path:
        d = self.collection_dir(user_id, experiment)
        d.mkdir(parents=True, exist_ok=True)
        created = parse_timestamp(document.get("createdAt")) or datetime.now(timezone.utc)
        stamp = created.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        p = d / f"{stamp}__{uuid.uuid4().hex[:8]}.json"
        p.write_text(json.dumps(dict(document), indent=2, default=_json_default))
        logger.info("wrote %s record for %s: %s", experiment, user_id, p.name)
        return p

    def _load(self, p: Path) -> Optional[Dict[str, Any]]:
        try:
            doc = json.loads(p.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("skipping unreadable record %s: %s", p, e)
            return None
        return doc if isinstance(doc, dict) else None

    def read_most_recent(self, user_id: str, experiment: str) -> Optional[Dict[str, Any]]:
        d = self.collection_dir(user_id, experiment)
        if not d.is_dir():
            return None
        best_key, best_doc = None, None
        for p in sorted(d.glob("*.json")):
            doc = self._load(p)
            if doc is None:
                continue
            key = (parse_timestamp(doc.get("createdAt")) or _EPOCH, p.name)
            if best_key is None or key > best_key:
                best_key, best_doc = key, doc
        return best_doc
