"""Incident model and its JSON form."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from src.alerting.config import AlertSeverity
from src.incidents.config import IncidentStatus
from src.timeutil import parse_iso, to_iso


def dedupe_ids(values: Iterable[Any]) -> List[int]:
    """Positive integer ids in first-seen order; anything else is dropped."""
    out: List[int] = []
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            continue
        if value not in out:
            out.append(value)
    return out


@dataclass
class Incident:
    """A named aggregation of related alerts."""

    id: int
    title: str
    status: IncidentStatus
    severity: AlertSeverity
    created_at: datetime
    updated_at: datetime
    owner: Optional[str] = None
    root_cause: Optional[str] = None
    summary: Optional[str] = None
    runbook: Optional[str] = None
    alert_ids: List[int] = field(default_factory=list)
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    resolved_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "severity": self.severity.value,
            "owner": self.owner,
            "root_cause": self.root_cause,
            "summary": self.summary,
            "runbook": self.runbook,
            "alert_ids": list(self.alert_ids),
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "resolved_at": to_iso(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["Incident"]:
        """Parse a stored entry; None when it is structurally invalid."""
        if not isinstance(raw, dict):
            return None
        incident_id = raw.get("id")
        if isinstance(incident_id, bool) or not isinstance(incident_id, int) or incident_id <= 0:
            return None
        title = raw.get("title")
        if not isinstance(title, str) or not title.strip():
            return None
        try:
            status = IncidentStatus(raw.get("status"))
            severity = AlertSeverity(raw.get("severity"))
        except ValueError:
            return None
        created_at = parse_iso(raw.get("created_at"))
        updated_at = parse_iso(raw.get("updated_at"))
        if created_at is None or updated_at is None:
            return None
        alert_ids = raw.get("alert_ids")

        def text(key: str) -> Optional[str]:
            value = raw.get(key)
            return value if isinstance(value, str) and value != "" else None

        return cls(
            id=incident_id,
            title=title.strip(),
            status=status,
            severity=severity,
            owner=text("owner"),
            root_cause=text("root_cause"),
            summary=text("summary"),
            runbook=text("runbook"),
            alert_ids=dedupe_ids(alert_ids) if isinstance(alert_ids, list) else [],
            entity_type=text("entity_type"),
            entity_id=text("entity_id"),
            created_at=created_at,
            updated_at=updated_at,
            resolved_at=parse_iso(raw.get("resolved_at")),
        )
