"""Alert records and notification-side views of them."""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional

from src.alerting.config import AlertSeverity, AlertStatus
from src.timeutil import to_iso


@dataclass
class Alert:
    """A deduplicated, occurrence-tracked alert keyed by fingerprint."""

    id: int
    fingerprint: str
    type: str
    severity: AlertSeverity
    title: str
    message: str
    status: AlertStatus
    occurrences: int
    first_seen_at: datetime
    last_seen_at: datetime
    created_at: datetime
    updated_at: datetime
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    def copy(self, **changes: Any) -> "Alert":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "fingerprint": self.fingerprint,
            "type": self.type,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "status": self.status.value,
            "occurrences": self.occurrences,
            "first_seen_at": to_iso(self.first_seen_at),
            "last_seen_at": to_iso(self.last_seen_at),
            "acknowledged_at": to_iso(self.acknowledged_at),
            "resolved_at": to_iso(self.resolved_at),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }


@dataclass
class AlertOccurrence:
    """Input for create-or-touch: one observation of an alert condition."""

    fingerprint: str
    type: str
    severity: AlertSeverity
    title: str
    message: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None


@dataclass
class UpsertOutcome:
    """Result of a create-or-touch write.

    ``previous_status`` is None when the fingerprint was new.
    """

    alert: Alert
    previous_status: Optional[AlertStatus] = None

    @property
    def created(self) -> bool:
        return self.previous_status is None

    @property
    def reopened(self) -> bool:
        return self.previous_status == AlertStatus.RESOLVED

    @property
    def should_notify(self) -> bool:
        return self.created or self.reopened


@dataclass
class AlertFilters:
    """Normalized list filters shared by both store implementations."""

    status: Optional[AlertStatus] = None
    severity: Optional[AlertSeverity] = None
    type: Optional[str] = None
    q: Optional[str] = None
    instance_id: Optional[str] = None

    @property
    def instance_marker(self) -> Optional[str]:
        return f":{self.instance_id}:" if self.instance_id else None


@dataclass
class AlertCounts:
    """Alert totals by status, plus open critical alerts."""

    open: int = 0
    acknowledged: int = 0
    resolved: int = 0
    open_critical: int = 0

    def add(self, status: AlertStatus, severity: AlertSeverity, count: int = 1) -> None:
        if status == AlertStatus.OPEN:
            self.open += count
            if severity == AlertSeverity.CRITICAL:
                self.open_critical += count
        elif status == AlertStatus.ACKNOWLEDGED:
            self.acknowledged += count
        elif status == AlertStatus.RESOLVED:
            self.resolved += count
