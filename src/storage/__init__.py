"""Storage primitives: memory store, key/value blobs, pagination.

The store bundle itself lives in ``src.storage.persistence``.
"""

from src.storage.kv import (
    FileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    SqlKeyValueStore,
)
from src.storage.memory import MEMORY_MAX_ALERTS, MEMORY_MAX_AUDIT, MemoryStore
from src.storage.pagination import MAX_PAGE_SIZE, Page, clamp_limit, clamp_offset, paginate

__all__ = [
    "FileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SqlKeyValueStore",
    "MEMORY_MAX_ALERTS",
    "MEMORY_MAX_AUDIT",
    "MemoryStore",
    "MAX_PAGE_SIZE",
    "Page",
    "clamp_limit",
    "clamp_offset",
    "paginate",
]
