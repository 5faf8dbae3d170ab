"""Indexer sync position as seen by the metrics engine."""

import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from src.storage.kv import KeyValueStore
from src.timeutil import ensure_utc, parse_iso

logger = logging.getLogger(__name__)

SYNC_STATE_KEY = "sync_state/v1"


@dataclass
class SyncState:
    latest_block: Optional[int] = None
    last_processed_block: Optional[int] = None
    last_success_at: Optional[datetime] = None

    def lag_blocks(self) -> Optional[float]:
        """Blocks behind the chain head, never negative."""
        if self.latest_block is None or self.last_processed_block is None:
            return None
        return float(max(0, self.latest_block - self.last_processed_block))

    def staleness_minutes(self, now: datetime) -> Optional[float]:
        if self.last_success_at is None:
            return None
        seconds = (now - ensure_utc(self.last_success_at)).total_seconds()
        return max(0.0, seconds / 60.0)


SyncStateProvider = Callable[[Optional[str]], Union[Optional[SyncState], Awaitable[Optional[SyncState]]]]


def _block(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def sync_state_from_dict(raw: Any) -> Optional[SyncState]:
    if not isinstance(raw, dict):
        return None
    success = raw.get("last_success_at")
    return SyncState(
        latest_block=_block(raw.get("latest_block")),
        last_processed_block=_block(raw.get("last_processed_block")),
        last_success_at=parse_iso(success) if isinstance(success, str) else None,
    )


class KeyValueSyncStateProvider:
    """Reads the sync position the indexer writes to the key-value store.

    The stored value maps instance ids (``"default"`` when unscoped) to
    ``{latest_block, last_processed_block, last_success_at}``.
    """

    def __init__(self, kv: KeyValueStore, key: str = SYNC_STATE_KEY):
        self._kv = kv
        self._key = key

    def __call__(self, instance_id: Optional[str] = None) -> Optional[SyncState]:
        stored = self._kv.get(self._key)
        if not isinstance(stored, dict):
            return None
        return sync_state_from_dict(stored.get(instance_id or "default"))


async def read_sync_state(
    provider: Optional[SyncStateProvider],
    instance_id: Optional[str],
) -> Optional[SyncState]:
    """Call ``provider``; a failing provider counts as unknown sync state."""
    if provider is None:
        return None
    try:
        result = provider(instance_id)
        if inspect.isawaitable(result):
            result = await result
    except Exception:
        logger.exception("Sync state provider failed")
        return None
    return result
