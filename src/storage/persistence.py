"""Store bundle selection.

With ``INSIGHT_DATABASE_URL`` set, alerts, audit entries and key/value blobs
live in the database; otherwise in the process memory store, with blobs
optionally mirrored to ``INSIGHT_KV_DIR`` on disk.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from src.alerting.store import AlertStore, MemoryAlertStore, SqlAlertStore
from src.audit.store import AuditStore, MemoryAuditStore, SqlAuditStore
from src.db.engine import ensure_schema, get_engine
from src.settings import Settings, get_settings
from src.storage.kv import (
    FileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    SqlKeyValueStore,
)
from src.storage.memory import MemoryStore

logger = logging.getLogger(__name__)


def has_database(settings: Optional[Settings] = None) -> bool:
    return (settings or get_settings()).has_database


@dataclass
class Persistence:
    alerts: AlertStore
    audit: AuditStore
    kv: KeyValueStore
    memory: Optional[MemoryStore] = None
    engine: Optional[Engine] = None

    @property
    def mode(self) -> str:
        return "database" if self.engine is not None else "memory"


def build_persistence(
    settings: Optional[Settings] = None,
    memory: Optional[MemoryStore] = None,
    engine: Optional[Engine] = None,
) -> Persistence:
    """Pick database or memory stores for ``settings``.

    An explicit ``engine`` wins over the configured database URL.
    """
    settings = settings or get_settings()
    engine = engine or get_engine(settings)
    if engine is not None:
        ensure_schema(engine)
        logger.info("Using database persistence")
        return Persistence(
            alerts=SqlAlertStore(engine),
            audit=SqlAuditStore(engine),
            kv=SqlKeyValueStore(engine),
            engine=engine,
        )

    memory = memory or MemoryStore()
    kv_dir = settings.kv_dir.strip()
    kv: KeyValueStore = FileKeyValueStore(kv_dir) if kv_dir else MemoryKeyValueStore(memory)
    logger.info(
        "Using memory persistence (max %d alerts, %d audit entries)",
        memory.max_alerts,
        memory.max_audit,
    )
    return Persistence(
        alerts=MemoryAlertStore(memory),
        audit=MemoryAuditStore(memory),
        kv=kv,
        memory=memory,
    )
