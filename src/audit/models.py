"""Audit log entry and list filters."""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from src.timeutil import to_iso


@dataclass
class AuditEntry:
    """One append-only audit record."""

    id: int
    created_at: datetime
    action: str
    actor: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    details: Any = None

    def details_text(self) -> str:
        return json.dumps(self.details) if self.details is not None else ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": to_iso(self.created_at),
            "actor": self.actor,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "details": self.details,
        }


@dataclass
class AuditFilters:
    """Case-insensitive substring filters; empty values are ignored."""

    actor: Optional[str] = None
    action: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    q: Optional[str] = None

    @staticmethod
    def _clean(value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        text = value.strip().lower()
        return text or None

    def normalized(self) -> "AuditFilters":
        return AuditFilters(
            actor=self._clean(self.actor),
            action=self._clean(self.action),
            entity_type=self._clean(self.entity_type),
            entity_id=self._clean(self.entity_id),
            q=self._clean(self.q),
        )
