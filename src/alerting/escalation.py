"""Escalation of alerts that stay Open too long.

A rule with ``params.escalateAfterMs`` escalates its Open alerts once they
are older than that: a companion alert is raised under the fingerprint
``<rule id>:escalation:<source fingerprint>`` with type
``<event>_escalation`` and one severity step higher.
"""

import logging
import math
from datetime import timedelta
from typing import List, Optional, Sequence

from src.alerting.config import AlertSeverity
from src.alerting.engine import AlertEngine
from src.alerting.models import Alert
from src.alerting.rules import AlertRule
from src.alerting.triggers import EmissionGate, notify_options_for_rule, rule_cooldown_ms
from src.timeutil import Clock, millis_between, utc_now

logger = logging.getLogger(__name__)

MIN_ESCALATE_AFTER_MS = 60_000
MAX_ESCALATE_AFTER_MS = 30 * 24 * 60 * 60_000
ESCALATION_SCAN_LIMIT = 200


def escalate_severity(severity: AlertSeverity) -> AlertSeverity:
    return AlertSeverity.WARNING if severity == AlertSeverity.INFO else AlertSeverity.CRITICAL


def rule_escalate_after_ms(rule: AlertRule) -> Optional[int]:
    """``escalateAfterMs`` clamped to [1min, 30d]; None disables escalation."""
    raw = rule.param("escalateAfterMs")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return int(min(MAX_ESCALATE_AFTER_MS, max(MIN_ESCALATE_AFTER_MS, round(value))))


def escalation_fingerprint(rule: AlertRule, source: Alert) -> str:
    return f"{rule.id}:escalation:{source.fingerprint}"


class EscalationManager:
    """Scans Open alerts for each escalating rule and raises escalations."""

    def __init__(
        self,
        engine: AlertEngine,
        gate: Optional[EmissionGate] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._engine = engine
        self._gate = gate or EmissionGate()
        self._clock = clock

    async def run(self, rules: Sequence[AlertRule]) -> List[Alert]:
        """One escalation pass. Returns the escalation alerts raised."""
        raised: List[Alert] = []
        now = self._clock()
        for rule in rules:
            after_ms = rule_escalate_after_ms(rule) if rule.enabled else None
            if after_ms is None:
                continue
            cutoff = now - timedelta(milliseconds=after_ms)
            sources = self._engine.store.list_open_since_first_seen(
                rule.event.value, cutoff, limit=ESCALATION_SCAN_LIMIT,
            )
            event = f"{rule.event.value}_escalation"
            for source in sources:
                fingerprint = escalation_fingerprint(rule, source)
                if self._engine.store.get_by_fingerprint(fingerprint) is not None:
                    continue
                if not self._gate.should_emit(event, fingerprint, rule_cooldown_ms(rule), now):
                    continue
                age_minutes = round(millis_between(source.first_seen_at, now) / 60_000)
                alert = await self._engine.create_or_touch_alert(
                    fingerprint=fingerprint,
                    type=event,
                    severity=escalate_severity(rule.severity),
                    title=f"Escalation: {source.title}",
                    message=f"{age_minutes}m open • {source.message} • source {source.fingerprint}",
                    entity_type=source.entity_type,
                    entity_id=source.entity_id,
                    notify=notify_options_for_rule(rule, now),
                )
                raised.append(alert)
        if raised:
            logger.warning("Escalated %d long-open alerts", len(raised))
        return raised
