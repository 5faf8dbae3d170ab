"""Incident service: create, patch, get and list.

Every mutation appends an audit entry before returning. Patches merge
field by field: fields left as ``UNSET`` keep their value, ``None`` or ""
clears optional text fields.
"""

import copy
import logging
from typing import Any, Iterable, List, Optional, Union

from src.alerting.config import AlertSeverity
from src.audit import AuditAction, AuditEntityType, AuditRecorder
from src.errors import ValidationError
from src.incidents.config import INCIDENT_STATUS_RANK, IncidentConfig, IncidentStatus
from src.incidents.models import Incident, dedupe_ids
from src.incidents.repository import IncidentRepository
from src.storage.pagination import Page, clamp_limit, clamp_offset, paginate
from src.timeutil import Clock, utc_now

logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()

_CLEARABLE_FIELDS = ("owner", "root_cause", "summary", "runbook", "entity_type", "entity_id")


def _optional_text(value: Any, field_name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string", field=field_name)
    return value.strip() or None


def _required_title(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Incident title is required", field="title")
    return value.strip()


def _enum(enum_cls, value: Any, field_name: str):
    try:
        return enum_cls(value.value if hasattr(value, "value") else value)
    except ValueError:
        raise ValidationError(f"Invalid {field_name}: {value!r}", field=field_name)


def _alert_ids(value: Any) -> List[int]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple, set)):
        raise ValidationError("alert_ids must be a list of ids", field="alert_ids")
    return dedupe_ids(value)


class IncidentService:
    """Incident lifecycle over an ``IncidentRepository``."""

    def __init__(
        self,
        repository: IncidentRepository,
        audit: AuditRecorder,
        config: Optional[IncidentConfig] = None,
        clock: Clock = utc_now,
    ):
        self._repo = repository
        self._audit = audit
        self.config = config or IncidentConfig()
        self._clock = clock

    async def create_incident(
        self,
        title: str,
        severity: Union[AlertSeverity, str],
        status: Union[IncidentStatus, str] = IncidentStatus.OPEN,
        owner: Optional[str] = None,
        root_cause: Optional[str] = None,
        summary: Optional[str] = None,
        runbook: Optional[str] = None,
        alert_ids: Optional[Iterable[int]] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Incident:
        """Create an incident with the next id."""
        now = self._clock()
        new_status = _enum(IncidentStatus, status, "status")
        fields = dict(
            title=_required_title(title),
            status=new_status,
            severity=_enum(AlertSeverity, severity, "severity"),
            owner=_optional_text(owner, "owner"),
            root_cause=_optional_text(root_cause, "root_cause"),
            summary=_optional_text(summary, "summary"),
            runbook=_optional_text(runbook, "runbook"),
            alert_ids=_alert_ids(list(alert_ids) if alert_ids is not None else None),
            entity_type=_optional_text(entity_type, "entity_type"),
            entity_id=_optional_text(entity_id, "entity_id"),
            resolved_at=now if new_status == IncidentStatus.RESOLVED else None,
        )
        with self._repo.lock:
            blob = self._repo.load()
            incident = Incident(id=blob.next_id, created_at=now, updated_at=now, **fields)
            blob.items.append(incident)
            blob.next_id += 1
            self._repo.save(blob)

        await self._audit.append_audit_log(
            actor,
            AuditAction.INCIDENT_CREATED,
            entity_type=AuditEntityType.INCIDENT.value,
            entity_id=str(incident.id),
            details={"incident": incident.to_dict()},
        )
        logger.info("Incident %d created: %s (%s)", incident.id, incident.title, incident.severity.value)
        return copy.deepcopy(incident)

    async def patch_incident(
        self,
        incident_id: int,
        actor: Optional[str] = None,
        title: Any = UNSET,
        status: Any = UNSET,
        severity: Any = UNSET,
        owner: Any = UNSET,
        root_cause: Any = UNSET,
        summary: Any = UNSET,
        runbook: Any = UNSET,
        alert_ids: Any = UNSET,
        entity_type: Any = UNSET,
        entity_id: Any = UNSET,
    ) -> Optional[Incident]:
        """Merge the given fields into an incident. None when it does not exist."""
        changes = {}
        if title is not UNSET:
            changes["title"] = _required_title(title)
        if status is not UNSET:
            changes["status"] = _enum(IncidentStatus, status, "status")
        if severity is not UNSET:
            changes["severity"] = _enum(AlertSeverity, severity, "severity")
        if alert_ids is not UNSET:
            changes["alert_ids"] = _alert_ids(alert_ids)
        given = dict(
            owner=owner, root_cause=root_cause, summary=summary, runbook=runbook,
            entity_type=entity_type, entity_id=entity_id,
        )
        for name in _CLEARABLE_FIELDS:
            if given[name] is not UNSET:
                changes[name] = _optional_text(given[name], name)

        now = self._clock()
        with self._repo.lock:
            blob = self._repo.load()
            current = next((i for i in blob.items if i.id == int(incident_id)), None)
            if current is None:
                return None
            before = current.to_dict()
            previous_status = current.status
            for name, value in changes.items():
                setattr(current, name, value)
            if current.status == IncidentStatus.RESOLVED:
                if current.resolved_at is None:
                    current.resolved_at = now
            elif previous_status == IncidentStatus.RESOLVED and current.status != previous_status:
                current.resolved_at = None
            current.updated_at = now
            self._repo.save(blob)
            after = current.to_dict()
            result = copy.deepcopy(current)

        await self._audit.append_audit_log(
            actor,
            AuditAction.INCIDENT_UPDATED,
            entity_type=AuditEntityType.INCIDENT.value,
            entity_id=str(result.id),
            details={"before": before, "after": after},
        )
        logger.info("Incident %d updated (%s)", result.id, ", ".join(sorted(changes)) or "no fields")
        return result

    async def get_incident(self, incident_id: int) -> Optional[Incident]:
        blob = self._repo.load()
        return next((i for i in blob.items if i.id == int(incident_id)), None)

    async def all_incidents(self) -> List[Incident]:
        return self._repo.load().items

    async def list_incidents(
        self,
        status: Union[IncidentStatus, str, None] = None,
        severity: Union[AlertSeverity, str, None] = None,
        q: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[int] = None,
    ) -> Page[Incident]:
        """Open first, then Mitigating, then Resolved; newest update first within each."""
        status_filter = None if status in (None, "", "All") else _enum(IncidentStatus, status, "status")
        severity_filter = None if severity in (None, "", "All") else _enum(AlertSeverity, severity, "severity")
        needle = (q or "").strip().lower()

        def matches(incident: Incident) -> bool:
            if status_filter is not None and incident.status != status_filter:
                return False
            if severity_filter is not None and incident.severity != severity_filter:
                return False
            if needle:
                haystacks = (
                    incident.title, incident.summary, incident.root_cause,
                    incident.owner, incident.entity_id,
                )
                return any(needle in (h or "").lower() for h in haystacks)
            return True

        rows = [i for i in self._repo.load().items if matches(i)]
        rows.sort(key=lambda i: (INCIDENT_STATUS_RANK[i.status], -i.updated_at.timestamp(), -i.id))
        return paginate(rows, clamp_limit(limit, self.config.default_page_size), clamp_offset(cursor))
