"""SQLAlchemy ORM models for the ops core.

Tables:
- alerts: Deduplicated alerts, unique per fingerprint
- audit_log: Append-only operator/system action history
- kv_store: JSON blobs (alert rules, incidents)
"""

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)

from src.db.base import Base


class AlertRecord(Base):
    """Alert row. ``fingerprint`` is the dedup key for the upsert."""

    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    fingerprint = Column(String(512), unique=True, nullable=False)
    type = Column(String(100), nullable=False)
    severity = Column(String(20), nullable=False)  # info, warning, critical
    title = Column(String(500), nullable=False)
    message = Column(Text, nullable=False)
    entity_type = Column(String(100))
    entity_id = Column(String(200))
    status = Column(String(20), nullable=False, default="Open")
    occurrences = Column(Integer, nullable=False, default=1)
    first_seen_at = Column(DateTime(timezone=True), nullable=False)
    last_seen_at = Column(DateTime(timezone=True), nullable=False)
    acknowledged_at = Column(DateTime(timezone=True))
    resolved_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_alerts_status_last_seen", "status", "last_seen_at"),
        Index("ix_alerts_created_at", "created_at"),
    )


class AuditLogRecord(Base):
    """Audit trail entry."""

    __tablename__ = "audit_log"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    actor = Column(String(200))
    action = Column(String(100), nullable=False)
    entity_type = Column(String(100))
    entity_id = Column(String(200))
    details = Column(Text)  # JSON string

    __table_args__ = (
        Index("ix_audit_log_created_at", "created_at"),
    )


class KeyValueRecord(Base):
    """JSON blob keyed by a versioned name, e.g. ``incidents/v1``."""

    __tablename__ = "kv_store"

    key = Column(String(200), primary_key=True)
    value = Column(Text, nullable=False)  # JSON string
    updated_at = Column(DateTime(timezone=True), nullable=False)
