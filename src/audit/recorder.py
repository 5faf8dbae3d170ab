"""Audit log service.

Mutating operations elsewhere in the core await ``append_audit_log``
before returning, so every mutation has a contemporaneous entry.
"""

import logging
from enum import Enum
from typing import Any, Optional, Union

from src.storage.pagination import Page, clamp_limit, clamp_offset
from src.timeutil import Clock, utc_now

from .config import AuditAction, AuditConfig
from .models import AuditEntry, AuditFilters
from .store import AuditStore

logger = logging.getLogger(__name__)


class AuditRecorder:
    """Appends and lists audit entries through an ``AuditStore``."""

    def __init__(
        self,
        store: AuditStore,
        config: Optional[AuditConfig] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._config = config or AuditConfig()
        self._clock = clock

    @property
    def config(self) -> AuditConfig:
        return self._config

    async def append_audit_log(
        self,
        actor: Optional[str],
        action: Union[str, AuditAction],
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        details: Any = None,
    ) -> AuditEntry:
        entry = self._store.append(
            action=action.value if isinstance(action, Enum) else action,
            now=self._clock(),
            actor=actor,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
        )
        logger.debug(
            "Audit %s by %s on %s/%s", entry.action, actor or "system", entity_type, entity_id,
        )
        return entry

    async def list_audit_log(
        self,
        limit: Optional[int] = None,
        cursor: Optional[int] = None,
        actor: Optional[str] = None,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        q: Optional[str] = None,
    ) -> Page[AuditEntry]:
        """Newest-first page of entries matching every given filter."""
        filters = AuditFilters(
            actor=actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            q=q,
        ).normalized()
        return self._store.list_page(
            filters,
            clamp_limit(limit, self._config.default_page_size),
            clamp_offset(cursor),
        )
