"""In-process memory store.

Zero-infrastructure fallback used when no database is configured. One
instance is built per application context and shared by the memory
implementations of the alert, audit and key/value stores. Every mutation
goes through ``lock``.
"""

import logging
import threading
from collections import deque
from typing import TYPE_CHECKING, Deque, Dict

if TYPE_CHECKING:
    from src.alerting.models import Alert
    from src.audit.models import AuditEntry

logger = logging.getLogger(__name__)

MEMORY_MAX_ALERTS = 2000
MEMORY_MAX_AUDIT = 5000

# Lower rank is evicted first.
_EVICTION_RANK = {"Resolved": 0, "Acknowledged": 1, "Open": 2}


class MemoryStore:
    """Alerts, audit log and key/value blobs held in process memory."""

    def __init__(
        self,
        max_alerts: int = MEMORY_MAX_ALERTS,
        max_audit: int = MEMORY_MAX_AUDIT,
    ):
        self.max_alerts = max_alerts
        self.max_audit = max_audit
        self.lock = threading.RLock()
        self.alerts: Dict[str, "Alert"] = {}
        self.audit: Deque["AuditEntry"] = deque(maxlen=max_audit)
        self.kv: Dict[str, str] = {}
        self.next_alert_id = 1
        self.next_audit_id = 1

    def allocate_alert_id(self) -> int:
        with self.lock:
            alert_id = self.next_alert_id
            self.next_alert_id += 1
            return alert_id

    def allocate_audit_id(self) -> int:
        with self.lock:
            audit_id = self.next_audit_id
            self.next_audit_id += 1
            return audit_id

    def prune_alerts(self) -> int:
        """Evict alerts above the cap.

        Removes exactly ``len(alerts) - max_alerts`` entries: Resolved before
        Acknowledged before Open, oldest ``last_seen_at`` first within a status.
        Returns the number removed.
        """
        with self.lock:
            overflow = len(self.alerts) - self.max_alerts
            if overflow <= 0:
                return 0
            candidates = sorted(
                self.alerts.values(),
                key=lambda a: (_EVICTION_RANK.get(a.status, 2), a.last_seen_at),
            )
            for alert in candidates[:overflow]:
                del self.alerts[alert.fingerprint]
        logger.warning("Evicted %d alerts from memory store (cap %d)", overflow, self.max_alerts)
        return overflow

    def append_audit(self, entry: "AuditEntry") -> None:
        """Prepend ``entry``; the deque drops the oldest entry past the cap."""
        with self.lock:
            self.audit.appendleft(entry)

    def clear(self) -> None:
        with self.lock:
            self.alerts.clear()
            self.audit.clear()
            self.kv.clear()
            self.next_alert_id = 1
            self.next_audit_id = 1
