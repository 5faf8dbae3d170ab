"""Audit log: append-only action history."""

from .config import AuditAction, AuditConfig, AuditEntityType
from .models import AuditEntry, AuditFilters
from .recorder import AuditRecorder
from .store import AuditStore, MemoryAuditStore, SqlAuditStore

__all__ = [
    # Config
    "AuditAction",
    "AuditConfig",
    "AuditEntityType",
    # Models
    "AuditEntry",
    "AuditFilters",
    # Storage
    "AuditStore",
    "MemoryAuditStore",
    "SqlAuditStore",
    # Core
    "AuditRecorder",
]
