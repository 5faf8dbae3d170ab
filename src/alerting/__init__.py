"""Alert lifecycle: dedup by fingerprint, status transitions, rules, escalation."""

from .config import (
    ALL_FILTER,
    AlertingConfig,
    AlertRuleEvent,
    AlertSeverity,
    AlertStatus,
    status_rank,
)
from .models import Alert, AlertCounts, AlertFilters, AlertOccurrence, UpsertOutcome
from .store import AlertStore, MemoryAlertStore, SqlAlertStore
from .engine import AlertEngine
from .rules import AlertRule, AlertRuleService, default_rules, normalize_rule
from .triggers import (
    AlertTrigger,
    EmissionGate,
    build_fingerprint,
    notify_options_for_rule,
    rule_cooldown_ms,
)
from .escalation import EscalationManager, escalate_severity, rule_escalate_after_ms

__all__ = [
    # Config
    "ALL_FILTER",
    "AlertingConfig",
    "AlertRuleEvent",
    "AlertSeverity",
    "AlertStatus",
    "status_rank",
    # Models
    "Alert",
    "AlertCounts",
    "AlertFilters",
    "AlertOccurrence",
    "UpsertOutcome",
    # Storage
    "AlertStore",
    "MemoryAlertStore",
    "SqlAlertStore",
    # Engine
    "AlertEngine",
    # Rules
    "AlertRule",
    "AlertRuleService",
    "default_rules",
    "normalize_rule",
    # Triggers
    "AlertTrigger",
    "EmissionGate",
    "build_fingerprint",
    "notify_options_for_rule",
    "rule_cooldown_ms",
    # Escalation
    "EscalationManager",
    "escalate_severity",
    "rule_escalate_after_ms",
]
