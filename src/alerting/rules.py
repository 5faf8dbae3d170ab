"""Alert rules: typed model, read-repair normalization and storage.

Rules live as a JSON list under the ``alert_rules/v1`` key. Every read
normalizes each stored entry, drops the ones that cannot be repaired and
writes the corrected list back when anything changed.
"""

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from src.alerting.config import ALERT_RULES_KEY, AlertRuleEvent, AlertSeverity
from src.audit import AuditAction, AuditEntityType, AuditRecorder
from src.notifications import (
    AlertNotice,
    NotificationChannel,
    NotificationDispatcher,
    NotificationOptions,
    NotificationResult,
)
from src.storage.kv import KeyValueStore
from src.timeutil import parse_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParamSpec:
    """A numeric rule parameter and the range it must fall in."""

    key: str
    default: float
    allow_zero: bool = False
    maximum: Optional[float] = None

    def accepts(self, value: float) -> bool:
        if not math.isfinite(value):
            return False
        if value < 0 or (value == 0 and not self.allow_zero):
            return False
        return self.maximum is None or value <= self.maximum


RULE_PARAM_SPECS: Dict[AlertRuleEvent, Tuple[ParamSpec, ...]] = {
    AlertRuleEvent.STALE_SYNC: (ParamSpec("maxAgeMs", 5 * 60_000),),
    AlertRuleEvent.SYNC_BACKLOG: (ParamSpec("maxLagBlocks", 200),),
    AlertRuleEvent.BACKLOG_ASSERTIONS: (ParamSpec("maxOpenAssertions", 50),),
    AlertRuleEvent.BACKLOG_DISPUTES: (ParamSpec("maxOpenDisputes", 20),),
    AlertRuleEvent.MARKET_STALE: (ParamSpec("maxAgeMs", 6 * 60 * 60_000),),
    AlertRuleEvent.EXECUTION_DELAYED: (ParamSpec("maxDelayMinutes", 30),),
    AlertRuleEvent.LOW_PARTICIPATION: (
        ParamSpec("withinMinutes", 60),
        ParamSpec("minTotalVotes", 0, allow_zero=True),
    ),
    AlertRuleEvent.LIVENESS_EXPIRING: (ParamSpec("withinMinutes", 60),),
    AlertRuleEvent.PRICE_DEVIATION: (ParamSpec("thresholdPercent", 2),),
    AlertRuleEvent.LOW_GAS: (ParamSpec("minBalanceEth", 0.1),),
    AlertRuleEvent.HIGH_VOTE_DIVERGENCE: (
        ParamSpec("withinMinutes", 60),
        ParamSpec("minTotalVotes", 1),
        ParamSpec("maxMarginPercent", 10, maximum=100),
    ),
    AlertRuleEvent.HIGH_DISPUTE_RATE: (
        ParamSpec("windowDays", 7),
        ParamSpec("minAssertions", 20),
        ParamSpec("thresholdPercent", 10, maximum=100),
    ),
    AlertRuleEvent.SLOW_API_REQUEST: (ParamSpec("thresholdMs", 1000),),
    AlertRuleEvent.DATABASE_SLOW_QUERY: (ParamSpec("thresholdMs", 200),),
    AlertRuleEvent.HIGH_ERROR_RATE: (
        ParamSpec("thresholdPercent", 5, maximum=100),
        ParamSpec("windowMinutes", 5),
    ),
}


@dataclass
class AlertRule:
    """Declarative trigger configuration for one upstream event."""

    id: str
    name: str
    event: AlertRuleEvent
    severity: AlertSeverity = AlertSeverity.WARNING
    enabled: bool = True
    owner: Optional[str] = None
    runbook: Optional[str] = None
    silenced_until: Optional[str] = None
    params: Optional[Dict[str, Any]] = None
    channels: List[NotificationChannel] = field(
        default_factory=lambda: [NotificationChannel.WEBHOOK]
    )
    recipient: Optional[str] = None

    def silenced_at(self, now: datetime) -> bool:
        until = parse_iso(self.silenced_until)
        return until is not None and until > now

    def param(self, key: str, default: Any = None) -> Any:
        return (self.params or {}).get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "event": self.event.value,
            "severity": self.severity.value,
            "owner": self.owner,
            "runbook": self.runbook,
            "silenced_until": self.silenced_until,
            "params": dict(self.params) if self.params is not None else None,
            "channels": [c.value for c in self.channels],
            "recipient": self.recipient,
        }


# =============================================================================
# Normalization
# =============================================================================


def _clean_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _as_number(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _compact(value: float) -> Any:
    return int(value) if float(value).is_integer() else value


def normalize_params(event: AlertRuleEvent, params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Fill in or repair the event's numeric params; other keys pass through."""
    specs = RULE_PARAM_SPECS.get(event)
    if not specs:
        return dict(params) if params is not None else None
    out = dict(params or {})
    for spec in specs:
        value = _as_number(out.get(spec.key))
        out[spec.key] = _compact(value if spec.accepts(value) else spec.default)
    return out


def normalize_channels(channels: Any, recipient: Optional[str]) -> List[NotificationChannel]:
    """Keep known channels once each; email needs a recipient; never empty."""
    raw = channels if isinstance(channels, (list, tuple)) and channels else [NotificationChannel.WEBHOOK.value]
    out: List[NotificationChannel] = []
    for item in raw:
        value = item.value if isinstance(item, NotificationChannel) else item
        try:
            channel = NotificationChannel(value)
        except ValueError:
            continue
        if channel not in out:
            out.append(channel)
    if NotificationChannel.EMAIL in out and not recipient:
        out = [c for c in out if c != NotificationChannel.EMAIL]
    return out or [NotificationChannel.WEBHOOK]


def normalize_rule(raw: Any) -> Optional[AlertRule]:
    """Build a valid AlertRule from a stored entry, or None if unrepairable.

    Accepts ``AlertRule`` instances and plain dicts. Entries without an id or
    with an unknown event are unrepairable.
    """
    if isinstance(raw, AlertRule):
        raw = raw.to_dict()
    if not isinstance(raw, dict):
        return None

    rule_id = _clean_text(raw.get("id"))
    if rule_id is None:
        return None
    try:
        event = AlertRuleEvent(raw.get("event"))
    except ValueError:
        return None

    try:
        severity = AlertSeverity(raw.get("severity"))
    except ValueError:
        severity = AlertSeverity.WARNING

    silenced_raw = raw.get("silenced_until")
    silenced = silenced_raw.strip() if isinstance(silenced_raw, str) else ""
    params = raw.get("params")
    recipient = _clean_text(raw.get("recipient"))

    return AlertRule(
        id=rule_id,
        name=_clean_text(raw.get("name")) or rule_id,
        event=event,
        severity=severity,
        enabled=raw["enabled"] if isinstance(raw.get("enabled"), bool) else True,
        owner=_clean_text(raw.get("owner")),
        runbook=_clean_text(raw.get("runbook")),
        silenced_until=silenced if parse_iso(silenced) is not None else None,
        params=normalize_params(event, params if isinstance(params, dict) else None),
        channels=normalize_channels(raw.get("channels"), recipient),
        recipient=recipient,
    )


def default_rules() -> List[AlertRule]:
    """Rules seeded when nothing is stored."""
    return [
        AlertRule(
            id="rule_stale_sync",
            name="Stale sync detection",
            event=AlertRuleEvent.STALE_SYNC,
            severity=AlertSeverity.WARNING,
            params={"maxAgeMs": 5 * 60_000},
        ),
        AlertRule(
            id="rule_sync_error",
            name="Sync error detection",
            event=AlertRuleEvent.SYNC_ERROR,
            severity=AlertSeverity.CRITICAL,
        ),
        AlertRule(
            id="rule_high_error_rate",
            name="High error rate detection",
            event=AlertRuleEvent.HIGH_ERROR_RATE,
            severity=AlertSeverity.WARNING,
            params={"thresholdPercent": 5, "windowMinutes": 5},
        ),
    ]


# =============================================================================
# Service
# =============================================================================


class AlertRuleService:
    """Reads, writes and test-fires alert rules."""

    def __init__(
        self,
        kv: KeyValueStore,
        audit: Optional[AuditRecorder] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self._kv = kv
        self._audit = audit
        self._dispatcher = dispatcher

    async def read_alert_rules(self) -> List[AlertRule]:
        """Return normalized rules, repairing or seeding the stored list."""
        stored = self._kv.get(ALERT_RULES_KEY)
        if not isinstance(stored, list):
            rules = default_rules()
            self._kv.set(ALERT_RULES_KEY, [r.to_dict() for r in rules])
            logger.info("Seeded %d default alert rules", len(rules))
            return rules

        rules: List[AlertRule] = []
        changed = False
        for entry in stored:
            rule = normalize_rule(entry)
            if rule is None:
                logger.warning("Dropping invalid alert rule entry: %r", entry)
                changed = True
                continue
            if rule.to_dict() != entry:
                changed = True
            rules.append(rule)
        if changed:
            self._kv.set(ALERT_RULES_KEY, [r.to_dict() for r in rules])
            logger.warning("Alert rules repaired on read: %d kept of %d", len(rules), len(stored))
        return rules

    async def write_alert_rules(
        self,
        rules: Sequence[Any],
        actor: Optional[str] = None,
    ) -> List[AlertRule]:
        """Normalize and store ``rules``; unrepairable entries are dropped."""
        normalized = [r for r in (normalize_rule(raw) for raw in rules) if r is not None]
        self._kv.set(ALERT_RULES_KEY, [r.to_dict() for r in normalized])
        if self._audit is not None:
            await self._audit.append_audit_log(
                actor,
                AuditAction.ALERT_RULES_UPDATED,
                entity_type=AuditEntityType.ALERTS.value,
                details={"count": len(normalized)},
            )
        return normalized

    async def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        for rule in await self.read_alert_rules():
            if rule.id == rule_id:
                return rule
        return None

    async def send_rule_test(
        self,
        rule_id: str,
        actor: Optional[str] = None,
    ) -> Optional[NotificationResult]:
        """Send a test notice through the rule's channels. None if the rule is absent."""
        if self._dispatcher is None:
            raise RuntimeError("AlertRuleService has no dispatcher")
        rule = await self.get_rule(rule_id)
        if rule is None:
            return None
        stamp = int(time.time() * 1000)
        notice = AlertNotice(
            title=f"Test: {rule.name}",
            message=f"Rule: {rule.id}\nEvent: {rule.event.value}\nSeverity: {rule.severity.value}",
            severity=rule.severity.value,
            fingerprint=f"test:{rule.id}:{stamp}",
        )
        result = await self._dispatcher.notify_alert(
            notice, NotificationOptions(channels=rule.channels, recipient=rule.recipient),
        )
        if self._audit is not None:
            await self._audit.append_audit_log(
                actor,
                AuditAction.ALERT_RULE_TEST_SENT,
                entity_type=AuditEntityType.ALERT_RULE.value,
                entity_id=rule.id,
                details={
                    "channels": [c.value for c in rule.channels],
                    "recipient": rule.recipient,
                },
            )
        return result
