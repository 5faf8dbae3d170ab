"""Process database engine and schema bootstrap."""

import logging
import threading
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from src.db.base import Base
from src.settings import Settings, get_settings

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_schema_ready: set = set()
_schema_lock = threading.Lock()


def build_engine(database_url: str) -> Engine:
    """Create an engine for ``database_url``.

    SQLite URLs (used by tests) skip the connection pool sizing that only
    applies to server databases.
    """
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(
        database_url,
        pool_size=10,
        max_overflow=5,
        pool_pre_ping=True,
    )


def get_engine(settings: Optional[Settings] = None) -> Optional[Engine]:
    """Get or create the process engine, or None when no database is configured."""
    global _engine
    settings = settings or get_settings()
    if not settings.has_database:
        return None
    if _engine is None:
        _engine = build_engine(settings.database_url.strip())
    return _engine


def ensure_schema(engine: Engine) -> None:
    """Create the ops tables once per engine."""
    key = id(engine)
    if key in _schema_ready:
        return
    with _schema_lock:
        if key in _schema_ready:
            return
        Base.metadata.create_all(engine)
        _schema_ready.add(key)
        logger.info("Database schema ensured for %s", engine.url.render_as_string(hide_password=True))


def dispose_engine(engine: Optional[Engine] = None) -> None:
    """Dispose ``engine`` (or the process engine) and forget its schema state."""
    global _engine
    target = engine or _engine
    if target is None:
        return
    _schema_ready.discard(id(target))
    target.dispose()
    if target is _engine:
        _engine = None


