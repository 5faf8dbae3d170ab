"""Alert storage.

``AlertStore`` is the contract the lifecycle engine depends on. The memory
and SQL implementations must agree on ordering, filtering and pagination:
status rank (Open, Acknowledged, Resolved), then ``last_seen_at`` newest
first, then ``id`` newest first.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable, List, Optional

from sqlalchemy import and_, case, func, null, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine

from src.alerting.config import AlertSeverity, AlertStatus, status_rank
from src.alerting.models import (
    Alert,
    AlertCounts,
    AlertFilters,
    AlertOccurrence,
    UpsertOutcome,
)
from src.db.filters import like_pattern
from src.db.models import AlertRecord
from src.errors import InsightError
from src.storage.memory import MemoryStore
from src.storage.pagination import Page, next_cursor, paginate
from src.timeutil import ensure_utc

logger = logging.getLogger(__name__)


class AlertStore(ABC):
    """Abstract alert repository."""

    @abstractmethod
    def upsert(self, occurrence: AlertOccurrence, now: datetime) -> UpsertOutcome:
        """Create the alert or touch the existing one for the fingerprint."""

    @abstractmethod
    def get_by_id(self, alert_id: int) -> Optional[Alert]:
        ...

    @abstractmethod
    def get_by_fingerprint(self, fingerprint: str) -> Optional[Alert]:
        ...

    @abstractmethod
    def get_many(self, alert_ids: Iterable[int]) -> List[Alert]:
        ...

    @abstractmethod
    def set_status(self, alert_id: int, status: AlertStatus, now: datetime) -> Optional[Alert]:
        ...

    @abstractmethod
    def resolve_stale(self, cutoff: datetime, now: datetime) -> int:
        """Resolve every unresolved alert last seen before ``cutoff``."""

    @abstractmethod
    def list_page(self, filters: AlertFilters, limit: int, offset: int) -> Page[Alert]:
        ...

    @abstractmethod
    def list_open_since_first_seen(self, type: str, cutoff: datetime, limit: int = 200) -> List[Alert]:
        """Open alerts of ``type`` first seen at or before ``cutoff``, oldest first."""

    @abstractmethod
    def counts(self, instance_id: Optional[str] = None) -> AlertCounts:
        ...

    @abstractmethod
    def list_changed_since(self, since: datetime, instance_id: Optional[str] = None) -> List[Alert]:
        """Alerts created, acknowledged or resolved at or after ``since``."""


def _changed_since(alert: Alert, since: datetime) -> bool:
    return any(
        ts is not None and ts >= since
        for ts in (alert.created_at, alert.acknowledged_at, alert.resolved_at)
    )


# =============================================================================
# Memory
# =============================================================================


class MemoryAlertStore(AlertStore):
    """Alerts held in the memory store, keyed by fingerprint.

    Returned alerts are copies; callers never mutate stored state.
    """

    def __init__(self, memory: MemoryStore):
        self._memory = memory

    def upsert(self, occurrence: AlertOccurrence, now: datetime) -> UpsertOutcome:
        with self._memory.lock:
            existing = self._memory.alerts.get(occurrence.fingerprint)
            if existing is None:
                alert = Alert(
                    id=self._memory.allocate_alert_id(),
                    fingerprint=occurrence.fingerprint,
                    type=occurrence.type,
                    severity=occurrence.severity,
                    title=occurrence.title,
                    message=occurrence.message,
                    entity_type=occurrence.entity_type,
                    entity_id=occurrence.entity_id,
                    status=AlertStatus.OPEN,
                    occurrences=1,
                    first_seen_at=now,
                    last_seen_at=now,
                    created_at=now,
                    updated_at=now,
                )
                self._memory.alerts[alert.fingerprint] = alert
                self._memory.prune_alerts()
                return UpsertOutcome(alert=alert.copy())

            previous = existing.status
            existing.severity = occurrence.severity
            existing.title = occurrence.title
            existing.message = occurrence.message
            existing.entity_type = occurrence.entity_type
            existing.entity_id = occurrence.entity_id
            existing.occurrences += 1
            existing.last_seen_at = now
            existing.updated_at = now
            if previous == AlertStatus.RESOLVED:
                existing.status = AlertStatus.OPEN
                existing.resolved_at = None
            return UpsertOutcome(alert=existing.copy(), previous_status=previous)

    def _find(self, alert_id: int) -> Optional[Alert]:
        for alert in self._memory.alerts.values():
            if alert.id == alert_id:
                return alert
        return None

    def get_by_id(self, alert_id: int) -> Optional[Alert]:
        with self._memory.lock:
            alert = self._find(alert_id)
            return alert.copy() if alert else None

    def get_by_fingerprint(self, fingerprint: str) -> Optional[Alert]:
        with self._memory.lock:
            alert = self._memory.alerts.get(fingerprint)
            return alert.copy() if alert else None

    def get_many(self, alert_ids: Iterable[int]) -> List[Alert]:
        wanted = set(alert_ids)
        with self._memory.lock:
            found = [a.copy() for a in self._memory.alerts.values() if a.id in wanted]
        return sorted(found, key=lambda a: a.id)

    def set_status(self, alert_id: int, status: AlertStatus, now: datetime) -> Optional[Alert]:
        with self._memory.lock:
            alert = self._find(alert_id)
            if alert is None:
                return None
            if status == AlertStatus.ACKNOWLEDGED:
                alert.acknowledged_at = now
                alert.resolved_at = None
            elif status == AlertStatus.RESOLVED:
                alert.resolved_at = now
            else:
                alert.acknowledged_at = None
                alert.resolved_at = None
            alert.status = status
            alert.updated_at = now
            return alert.copy()

    def resolve_stale(self, cutoff: datetime, now: datetime) -> int:
        count = 0
        with self._memory.lock:
            for alert in self._memory.alerts.values():
                if alert.status != AlertStatus.RESOLVED and alert.last_seen_at < cutoff:
                    alert.status = AlertStatus.RESOLVED
                    alert.resolved_at = now
                    alert.updated_at = now
                    count += 1
        return count

    @staticmethod
    def _matches(alert: Alert, filters: AlertFilters) -> bool:
        if filters.status is not None and alert.status != filters.status:
            return False
        if filters.severity is not None and alert.severity != filters.severity:
            return False
        if filters.type is not None and alert.type != filters.type:
            return False
        if filters.instance_marker and filters.instance_marker not in alert.fingerprint:
            return False
        if filters.q:
            q = filters.q.lower()
            haystacks = (alert.title, alert.message, alert.entity_id or "")
            if not any(q in h.lower() for h in haystacks):
                return False
        return True

    def list_page(self, filters: AlertFilters, limit: int, offset: int) -> Page[Alert]:
        with self._memory.lock:
            rows = [a.copy() for a in self._memory.alerts.values() if self._matches(a, filters)]
        rows.sort(key=lambda a: (status_rank(a.status), -a.last_seen_at.timestamp(), -a.id))
        return paginate(rows, limit, offset)

    def _scoped(self, instance_id: Optional[str]) -> List[Alert]:
        marker = f":{instance_id}:" if instance_id else None
        with self._memory.lock:
            return [
                a.copy() for a in self._memory.alerts.values()
                if marker is None or marker in a.fingerprint
            ]

    def list_open_since_first_seen(self, type: str, cutoff: datetime, limit: int = 200) -> List[Alert]:
        with self._memory.lock:
            rows = [
                a.copy() for a in self._memory.alerts.values()
                if a.status == AlertStatus.OPEN and a.type == type and a.first_seen_at <= cutoff
            ]
        rows.sort(key=lambda a: a.first_seen_at)
        return rows[:limit]

    def counts(self, instance_id: Optional[str] = None) -> AlertCounts:
        counts = AlertCounts()
        for alert in self._scoped(instance_id):
            counts.add(alert.status, alert.severity)
        return counts

    def list_changed_since(self, since: datetime, instance_id: Optional[str] = None) -> List[Alert]:
        return [a for a in self._scoped(instance_id) if _changed_since(a, since)]


# =============================================================================
# SQL
# =============================================================================


def _row_to_alert(row: Any) -> Alert:
    m = row._mapping
    return Alert(
        id=m["id"],
        fingerprint=m["fingerprint"],
        type=m["type"],
        severity=AlertSeverity(m["severity"]),
        title=m["title"],
        message=m["message"],
        entity_type=m["entity_type"],
        entity_id=m["entity_id"],
        status=AlertStatus(m["status"]),
        occurrences=m["occurrences"],
        first_seen_at=ensure_utc(m["first_seen_at"]),
        last_seen_at=ensure_utc(m["last_seen_at"]),
        acknowledged_at=ensure_utc(m["acknowledged_at"]),
        resolved_at=ensure_utc(m["resolved_at"]),
        created_at=ensure_utc(m["created_at"]),
        updated_at=ensure_utc(m["updated_at"]),
    )


class SqlAlertStore(AlertStore):
    """Alerts in the ``alerts`` table.

    The create-or-touch write is a single ``INSERT ... ON CONFLICT
    (fingerprint) DO UPDATE`` whose SET clause re-opens Resolved rows.
    """

    def __init__(self, engine: Engine):
        self._engine = engine
        self._table = AlertRecord.__table__

    def _insert(self):
        dialect = self._engine.dialect.name
        if dialect == "postgresql":
            return pg_insert(self._table)
        if dialect == "sqlite":
            return sqlite_insert(self._table)
        raise InsightError(
            f"Unsupported database dialect for alert upsert: {dialect}",
            {"dialect": dialect},
        )

    def upsert(self, occurrence: AlertOccurrence, now: datetime) -> UpsertOutcome:
        t = self._table
        stmt = self._insert().values(
            fingerprint=occurrence.fingerprint,
            type=occurrence.type,
            severity=occurrence.severity.value,
            title=occurrence.title,
            message=occurrence.message,
            entity_type=occurrence.entity_type,
            entity_id=occurrence.entity_id,
            status=AlertStatus.OPEN.value,
            occurrences=1,
            first_seen_at=now,
            last_seen_at=now,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[t.c.fingerprint],
            set_={
                "severity": stmt.excluded.severity,
                "title": stmt.excluded.title,
                "message": stmt.excluded.message,
                "entity_type": stmt.excluded.entity_type,
                "entity_id": stmt.excluded.entity_id,
                "occurrences": t.c.occurrences + 1,
                "last_seen_at": now,
                "updated_at": now,
                "status": case(
                    (t.c.status == AlertStatus.RESOLVED.value, AlertStatus.OPEN.value),
                    else_=t.c.status,
                ),
                "resolved_at": case(
                    (t.c.status == AlertStatus.RESOLVED.value, null()),
                    else_=t.c.resolved_at,
                ),
            },
        )
        with self._engine.begin() as conn:
            previous = self._locked_status(conn, occurrence.fingerprint)
            conn.execute(stmt)
            row = conn.execute(
                select(t).where(t.c.fingerprint == occurrence.fingerprint)
            ).one()
        alert = _row_to_alert(row)
        if previous is None and alert.occurrences > 1:
            # A concurrent writer inserted the row first; this write took the
            # DO UPDATE branch and must not count as a creation.
            previous = alert.status
        return UpsertOutcome(alert=alert, previous_status=previous)

    def _locked_status(self, conn: Any, fingerprint: str) -> Optional[AlertStatus]:
        """Status of an existing row, locked for the rest of the transaction."""
        t = self._table
        status = conn.execute(
            select(t.c.status).where(t.c.fingerprint == fingerprint).with_for_update()
        ).scalar_one_or_none()
        return AlertStatus(status) if status is not None else None

    def _contains(self, column: Any, marker: str) -> Any:
        """Case-sensitive substring test, matching ``marker in value``."""
        if self._engine.dialect.name == "postgresql":
            return func.strpos(column, marker) > 0
        return func.instr(column, marker) > 0

    def get_by_id(self, alert_id: int) -> Optional[Alert]:
        with self._engine.connect() as conn:
            row = conn.execute(select(self._table).where(self._table.c.id == alert_id)).first()
        return _row_to_alert(row) if row is not None else None

    def get_by_fingerprint(self, fingerprint: str) -> Optional[Alert]:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(self._table).where(self._table.c.fingerprint == fingerprint)
            ).first()
        return _row_to_alert(row) if row is not None else None

    def get_many(self, alert_ids: Iterable[int]) -> List[Alert]:
        ids = sorted(set(alert_ids))
        if not ids:
            return []
        with self._engine.connect() as conn:
            rows = conn.execute(
                select(self._table).where(self._table.c.id.in_(ids)).order_by(self._table.c.id)
            ).all()
        return [_row_to_alert(r) for r in rows]

    def set_status(self, alert_id: int, status: AlertStatus, now: datetime) -> Optional[Alert]:
        t = self._table
        if status == AlertStatus.ACKNOWLEDGED:
            values = {"acknowledged_at": now, "resolved_at": None}
        elif status == AlertStatus.RESOLVED:
            values = {"resolved_at": now}
        else:
            values = {"acknowledged_at": None, "resolved_at": None}
        with self._engine.begin() as conn:
            updated = conn.execute(
                t.update()
                .where(t.c.id == alert_id)
                .values(status=status.value, updated_at=now, **values)
            ).rowcount
            if not updated:
                return None
            row = conn.execute(select(t).where(t.c.id == alert_id)).one()
        return _row_to_alert(row)

    def resolve_stale(self, cutoff: datetime, now: datetime) -> int:
        t = self._table
        with self._engine.begin() as conn:
            result = conn.execute(
                t.update()
                .where(t.c.status != AlertStatus.RESOLVED.value, t.c.last_seen_at < cutoff)
                .values(status=AlertStatus.RESOLVED.value, resolved_at=now, updated_at=now)
            )
        return result.rowcount or 0

    def _conditions(self, filters: AlertFilters) -> List:
        t = self._table
        conditions = []
        if filters.status is not None:
            conditions.append(t.c.status == filters.status.value)
        if filters.severity is not None:
            conditions.append(t.c.severity == filters.severity.value)
        if filters.type is not None:
            conditions.append(t.c.type == filters.type)
        if filters.instance_marker:
            conditions.append(self._contains(t.c.fingerprint, filters.instance_marker))
        if filters.q:
            pattern = like_pattern(filters.q)
            conditions.append(
                or_(
                    t.c.title.ilike(pattern, escape="\\"),
                    t.c.message.ilike(pattern, escape="\\"),
                    t.c.entity_id.ilike(pattern, escape="\\"),
                )
            )
        return conditions

    def list_page(self, filters: AlertFilters, limit: int, offset: int) -> Page[Alert]:
        t = self._table
        conditions = self._conditions(filters)
        rank = case(
            {AlertStatus.OPEN.value: 0, AlertStatus.ACKNOWLEDGED.value: 1},
            value=t.c.status,
            else_=2,
        )
        with self._engine.connect() as conn:
            total = conn.execute(
                select(func.count()).select_from(t).where(*conditions)
            ).scalar_one()
            rows = conn.execute(
                select(t)
                .where(*conditions)
                .order_by(rank, t.c.last_seen_at.desc(), t.c.id.desc())
                .limit(limit)
                .offset(offset)
            ).all()
        items = [_row_to_alert(r) for r in rows]
        return Page(items=items, total=total, next_cursor=next_cursor(offset, limit, len(items), total))

    def _instance_condition(self, instance_id: Optional[str]) -> List:
        if not instance_id:
            return []
        return [self._contains(self._table.c.fingerprint, f":{instance_id}:")]

    def list_open_since_first_seen(self, type: str, cutoff: datetime, limit: int = 200) -> List[Alert]:
        t = self._table
        with self._engine.connect() as conn:
            rows = conn.execute(
                select(t)
                .where(
                    t.c.status == AlertStatus.OPEN.value,
                    t.c.type == type,
                    t.c.first_seen_at <= cutoff,
                )
                .order_by(t.c.first_seen_at.asc())
                .limit(limit)
            ).all()
        return [_row_to_alert(r) for r in rows]

    def counts(self, instance_id: Optional[str] = None) -> AlertCounts:
        t = self._table
        counts = AlertCounts()
        with self._engine.connect() as conn:
            rows = conn.execute(
                select(t.c.status, t.c.severity, func.count())
                .where(*self._instance_condition(instance_id))
                .group_by(t.c.status, t.c.severity)
            ).all()
        for status, severity, count in rows:
            counts.add(AlertStatus(status), AlertSeverity(severity), count)
        return counts

    def list_changed_since(self, since: datetime, instance_id: Optional[str] = None) -> List[Alert]:
        t = self._table
        changed = or_(
            t.c.created_at >= since,
            t.c.acknowledged_at >= since,
            t.c.resolved_at >= since,
        )
        with self._engine.connect() as conn:
            rows = conn.execute(
                select(t).where(and_(changed, *self._instance_condition(instance_id)))
            ).all()
        return [_row_to_alert(r) for r in rows]
