"""Audit log storage: memory deque or the ``audit_log`` table."""

import copy
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.engine import Engine

from src.db.filters import like_pattern
from src.db.models import AuditLogRecord
from src.storage.memory import MemoryStore
from src.storage.pagination import Page, next_cursor, paginate
from src.timeutil import ensure_utc

from .models import AuditEntry, AuditFilters

logger = logging.getLogger(__name__)


class AuditStore(ABC):
    """Abstract append-only audit repository. Lists are newest first."""

    @abstractmethod
    def append(
        self,
        action: str,
        now: datetime,
        actor: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        details: Any = None,
    ) -> AuditEntry:
        ...

    @abstractmethod
    def list_page(self, filters: AuditFilters, limit: int, offset: int) -> Page[AuditEntry]:
        """List with already-normalized filters."""


class MemoryAuditStore(AuditStore):
    """Audit entries in the memory store's bounded deque."""

    def __init__(self, memory: MemoryStore):
        self._memory = memory

    def append(self, action, now, actor=None, entity_type=None, entity_id=None, details=None):
        entry = AuditEntry(
            id=self._memory.allocate_audit_id(),
            created_at=now,
            actor=actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=json.loads(json.dumps(details)) if details is not None else None,
        )
        self._memory.append_audit(entry)
        return copy.deepcopy(entry)

    @staticmethod
    def _matches(entry: AuditEntry, f: AuditFilters) -> bool:
        actor = (entry.actor or "").lower()
        action = entry.action.lower()
        entity_type = (entry.entity_type or "").lower()
        entity_id = (entry.entity_id or "").lower()
        if f.actor and f.actor not in actor:
            return False
        if f.action and f.action not in action:
            return False
        if f.entity_type and f.entity_type not in entity_type:
            return False
        if f.entity_id and f.entity_id not in entity_id:
            return False
        if f.q:
            fields = (action, actor, entity_type, entity_id, entry.details_text().lower())
            if not any(f.q in field for field in fields):
                return False
        return True

    def list_page(self, filters: AuditFilters, limit: int, offset: int) -> Page[AuditEntry]:
        with self._memory.lock:
            rows = [copy.deepcopy(e) for e in self._memory.audit if self._matches(e, filters)]
        return paginate(rows, limit, offset)


def _row_to_entry(row: Any) -> AuditEntry:
    m = row._mapping
    details = None
    if m["details"]:
        try:
            details = json.loads(m["details"])
        except ValueError:
            logger.warning("Audit entry %s has unparseable details", m["id"])
            details = m["details"]
    return AuditEntry(
        id=m["id"],
        created_at=ensure_utc(m["created_at"]),
        actor=m["actor"],
        action=m["action"],
        entity_type=m["entity_type"],
        entity_id=m["entity_id"],
        details=details,
    )


class SqlAuditStore(AuditStore):
    """Audit entries in the ``audit_log`` table."""

    def __init__(self, engine: Engine):
        self._engine = engine
        self._table = AuditLogRecord.__table__

    def append(self, action, now, actor=None, entity_type=None, entity_id=None, details=None):
        t = self._table
        with self._engine.begin() as conn:
            result = conn.execute(
                t.insert().values(
                    created_at=now,
                    actor=actor,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    details=json.dumps(details) if details is not None else None,
                )
            )
            row = conn.execute(select(t).where(t.c.id == result.inserted_primary_key[0])).one()
        return _row_to_entry(row)

    def _conditions(self, f: AuditFilters) -> List:
        t = self._table
        conditions = []
        for column, value in (
            (t.c.actor, f.actor),
            (t.c.action, f.action),
            (t.c.entity_type, f.entity_type),
            (t.c.entity_id, f.entity_id),
        ):
            if value:
                conditions.append(column.ilike(like_pattern(value), escape="\\"))
        if f.q:
            pattern = like_pattern(f.q)
            conditions.append(
                or_(*(
                    column.ilike(pattern, escape="\\")
                    for column in (t.c.action, t.c.actor, t.c.entity_type, t.c.entity_id, t.c.details)
                ))
            )
        return conditions

    def list_page(self, filters: AuditFilters, limit: int, offset: int) -> Page[AuditEntry]:
        t = self._table
        conditions = self._conditions(filters)
        with self._engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(t).where(*conditions)).scalar_one()
            rows = conn.execute(
                select(t)
                .where(*conditions)
                .order_by(t.c.created_at.desc(), t.c.id.desc())
                .limit(limit)
                .offset(offset)
            ).all()
        items = [_row_to_entry(r) for r in rows]
        return Page(items=items, total=total, next_cursor=next_cursor(offset, limit, len(items), total))
