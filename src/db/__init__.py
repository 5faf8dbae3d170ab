"""Database package for the ops core."""

from src.db.base import Base
from src.db.engine import (
    build_engine,
    dispose_engine,
    ensure_schema,
    get_engine,
)
from src.db.models import AlertRecord, AuditLogRecord, KeyValueRecord

__all__ = [
    "Base",
    "build_engine",
    "dispose_engine",
    "ensure_schema",
    "get_engine",
    "AlertRecord",
    "AuditLogRecord",
    "KeyValueRecord",
]
