"""Incident blob storage with read-repair.

All incidents live in one versioned JSON blob, ``{"version": 1,
"next_id": N, "items": [...]}``, under the ``incidents/v1`` key. Every load
drops invalid entries, de-duplicates alert ids and re-derives ``next_id``
when it is behind, then writes the repaired blob back.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List

from src.incidents.config import INCIDENTS_BLOB_VERSION, INCIDENTS_KEY
from src.incidents.models import Incident
from src.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class IncidentBlob:
    next_id: int = 1
    items: List[Incident] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": INCIDENTS_BLOB_VERSION,
            "next_id": self.next_id,
            "items": [i.to_dict() for i in self.items],
        }


def repair_blob(stored: Any) -> IncidentBlob:
    """Build a valid blob from whatever is stored; never raises."""
    if not isinstance(stored, dict):
        if stored is not None:
            logger.warning("Incident blob is not an object; starting empty")
        return IncidentBlob()

    raw_items = stored.get("items")
    if not isinstance(raw_items, list):
        raw_items = []
    items: List[Incident] = []
    seen = set()
    for raw in raw_items:
        incident = Incident.from_dict(raw)
        if incident is None or incident.id in seen:
            logger.warning("Dropping invalid incident entry: %r", raw)
            continue
        seen.add(incident.id)
        items.append(incident)

    next_id = stored.get("next_id")
    floor = max((i.id for i in items), default=0) + 1
    if isinstance(next_id, bool) or not isinstance(next_id, int) or next_id < floor:
        next_id = floor
    return IncidentBlob(next_id=next_id, items=items)


class IncidentRepository:
    """Loads and saves the incident blob. Hold ``lock`` across load+save."""

    def __init__(self, kv: KeyValueStore):
        self._kv = kv
        self.lock = threading.RLock()

    def load(self) -> IncidentBlob:
        with self.lock:
            stored = self._kv.get(INCIDENTS_KEY)
            blob = repair_blob(stored)
            if stored is not None and blob.to_dict() != stored:
                logger.warning("Incident blob repaired on read; writing back")
                self._kv.set(INCIDENTS_KEY, blob.to_dict())
            return blob

    def save(self, blob: IncidentBlob) -> None:
        with self.lock:
            self._kv.set(INCIDENTS_KEY, blob.to_dict())
