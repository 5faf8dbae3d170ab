"""Rule-driven alert emission.

Upstream detectors (sync monitors, request middleware, chain watchers)
call ``AlertTrigger.fire`` with the rule that matched. Repeated emissions
for the same event and fingerprint are held back for the rule's cooldown.
"""

import logging
import math
import threading
from datetime import datetime
from typing import Dict, Optional, Sequence

from src.alerting.config import DEFAULT_COOLDOWN_MS, MAX_COOLDOWN_MS, MIN_COOLDOWN_MS
from src.alerting.engine import AlertEngine
from src.alerting.models import Alert
from src.alerting.rules import AlertRule
from src.notifications import NotificationOptions
from src.timeutil import Clock, millis_between, utc_now

logger = logging.getLogger(__name__)


def build_fingerprint(rule_id: str, instance_id: str, *parts: object) -> str:
    """``rule:instance:part...``; the ``:instance:`` marker scopes listings."""
    return ":".join([rule_id, instance_id, *(str(p) for p in parts)])


def notify_options_for_rule(rule: AlertRule, now: datetime) -> NotificationOptions:
    """Deliver through the rule's channels, or nowhere while silenced."""
    if rule.silenced_at(now):
        return NotificationOptions(channels=[])
    return NotificationOptions(channels=list(rule.channels), recipient=rule.recipient)


def _param_number(rule: AlertRule, key: str, default: float) -> float:
    raw = rule.param(key, default)
    if isinstance(raw, bool):
        return math.nan
    try:
        return float(raw)
    except (TypeError, ValueError):
        return math.nan


def rule_cooldown_ms(rule: AlertRule) -> int:
    """``cooldownMs`` clamped to [30s, 24h]; 5 minutes when unset or invalid."""
    raw = _param_number(rule, "cooldownMs", DEFAULT_COOLDOWN_MS)
    if not math.isfinite(raw) or raw <= 0:
        return DEFAULT_COOLDOWN_MS
    return int(min(MAX_COOLDOWN_MS, max(MIN_COOLDOWN_MS, round(raw))))


class EmissionGate:
    """Remembers when each (event, fingerprint) last emitted.

    Cooldowns never exceed ``MAX_COOLDOWN_MS``, so older entries are dropped.
    """

    def __init__(self) -> None:
        self._last: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    @property
    def tracked(self) -> int:
        return len(self._last)

    def should_emit(self, event: str, fingerprint: str, cooldown_ms: float, now: datetime) -> bool:
        key = f"{event}:{fingerprint}"
        with self._lock:
            self._prune(now)
            last = self._last.get(key)
            if last is not None and millis_between(last, now) < cooldown_ms:
                return False
            self._last[key] = now
            return True

    def _prune(self, now: datetime) -> None:
        expired = [k for k, at in self._last.items() if millis_between(at, now) >= MAX_COOLDOWN_MS]
        for key in expired:
            del self._last[key]

    def reset(self) -> None:
        with self._lock:
            self._last.clear()


class AlertTrigger:
    """Turns matched rules into alert occurrences."""

    def __init__(
        self,
        engine: AlertEngine,
        gate: Optional[EmissionGate] = None,
        clock: Clock = utc_now,
    ):
        self._engine = engine
        self.gate = gate or EmissionGate()
        self._clock = clock

    async def fire(
        self,
        rule: AlertRule,
        instance_id: str,
        parts: Sequence[object],
        title: str,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> Optional[Alert]:
        """Emit an alert for ``rule`` unless disabled or cooling down."""
        if not rule.enabled:
            return None
        now = self._clock()
        fingerprint = build_fingerprint(rule.id, instance_id, *parts)
        if not self.gate.should_emit(rule.event.value, fingerprint, rule_cooldown_ms(rule), now):
            logger.debug("Emission for %s suppressed by cooldown", fingerprint)
            return None
        return await self._engine.create_or_touch_alert(
            fingerprint=fingerprint,
            type=rule.event.value,
            severity=rule.severity,
            title=title,
            message=message,
            entity_type=entity_type,
            entity_id=entity_id,
            notify=notify_options_for_rule(rule, now),
        )
