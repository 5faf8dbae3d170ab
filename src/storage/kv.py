"""Key/value blob storage.

Values are JSON-serializable structures. Every implementation stores the
serialized text and parses it again on read, so callers never share
mutable state with the store.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine

from src.db.models import KeyValueRecord
from src.errors import InsightError
from src.storage.memory import MemoryStore
from src.timeutil import utc_now

logger = logging.getLogger(__name__)


def _loads(key: str, raw: Optional[str]) -> Optional[Any]:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Discarding unparseable JSON for kv key %s", key)
        return None


class KeyValueStore(ABC):
    """Abstract JSON blob store."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None when absent or unreadable."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Replace the value stored under ``key``."""


class MemoryKeyValueStore(KeyValueStore):
    """Blobs kept in the memory store's kv map."""

    def __init__(self, memory: MemoryStore):
        self._memory = memory

    def get(self, key: str) -> Optional[Any]:
        with self._memory.lock:
            raw = self._memory.kv.get(key)
        return _loads(key, raw)

    def set(self, key: str, value: Any) -> None:
        raw = json.dumps(value)
        with self._memory.lock:
            self._memory.kv[key] = raw


class FileKeyValueStore(KeyValueStore):
    """One JSON file per key under ``root``.

    Slashes in keys become ``__`` so ``incidents/v1`` maps to
    ``incidents__v1.json``. Writes go through a temp file and ``os.replace``.
    """

    def __init__(self, root: str):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / f"{key.replace('/', '__')}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return _loads(key, raw)

    def set(self, key: str, value: Any) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        raw = json.dumps(value, indent=2)
        fd, tmp = tempfile.mkstemp(dir=self.root, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(raw)
            os.replace(tmp, self._path(key))
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise


class SqlKeyValueStore(KeyValueStore):
    """Blobs stored in the ``kv_store`` table."""

    def __init__(self, engine: Engine):
        self._engine = engine
        self._table = KeyValueRecord.__table__

    def get(self, key: str) -> Optional[Any]:
        with self._engine.connect() as conn:
            raw = conn.execute(
                select(self._table.c.value).where(self._table.c.key == key)
            ).scalar_one_or_none()
        return _loads(key, raw)

    def _insert(self):
        dialect = self._engine.dialect.name
        if dialect == "postgresql":
            return pg_insert(self._table)
        if dialect == "sqlite":
            return sqlite_insert(self._table)
        raise InsightError(
            f"Unsupported database dialect for key/value upsert: {dialect}",
            {"dialect": dialect},
        )

    def set(self, key: str, value: Any) -> None:
        stmt = self._insert().values(key=key, value=json.dumps(value), updated_at=utc_now())
        stmt = stmt.on_conflict_do_update(
            index_elements=[self._table.c.key],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        )
        with self._engine.begin() as conn:
            conn.execute(stmt)
