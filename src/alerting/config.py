"""Alert lifecycle configuration: enums, ranks and tuning constants."""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class AlertSeverity(str, Enum):
    """Alert severity levels."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    """Alert lifecycle status."""

    OPEN = "Open"
    ACKNOWLEDGED = "Acknowledged"
    RESOLVED = "Resolved"


class AlertRuleEvent(str, Enum):
    """Upstream conditions an alert rule can watch."""

    DISPUTE_CREATED = "dispute_created"
    LIVENESS_EXPIRING = "liveness_expiring"
    SYNC_ERROR = "sync_error"
    STALE_SYNC = "stale_sync"
    SYNC_BACKLOG = "sync_backlog"
    BACKLOG_ASSERTIONS = "backlog_assertions"
    BACKLOG_DISPUTES = "backlog_disputes"
    MARKET_STALE = "market_stale"
    EXECUTION_DELAYED = "execution_delayed"
    LOW_PARTICIPATION = "low_participation"
    HIGH_VOTE_DIVERGENCE = "high_vote_divergence"
    HIGH_DISPUTE_RATE = "high_dispute_rate"
    SLOW_API_REQUEST = "slow_api_request"
    HIGH_ERROR_RATE = "high_error_rate"
    DATABASE_SLOW_QUERY = "database_slow_query"
    PRICE_DEVIATION = "price_deviation"
    LOW_GAS = "low_gas"
    CONTRACT_PAUSED = "contract_paused"


# Triage order: Open first, Resolved last.
STATUS_RANK = {
    AlertStatus.OPEN: 0,
    AlertStatus.ACKNOWLEDGED: 1,
    AlertStatus.RESOLVED: 2,
}

ALL_FILTER = "All"

STALE_ALERT_DAYS = 7
DEFAULT_PAGE_SIZE = 30

ALERT_RULES_KEY = "alert_rules/v1"

DEFAULT_COOLDOWN_MS = 5 * 60_000
MIN_COOLDOWN_MS = 30_000
MAX_COOLDOWN_MS = 24 * 60 * 60_000


def status_rank(status: AlertStatus) -> int:
    return STATUS_RANK[status]


def parse_filter(value: Union[str, Enum, None], enum_cls=None):
    """Normalize a list filter: None, "" and "All" disable it.

    With ``enum_cls`` the value is coerced to that enum; unknown values raise
    ``ValueError`` so the caller can surface a validation error.
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value
    text = str(value).strip()
    if not text or text == ALL_FILTER:
        return None
    return enum_cls(text) if enum_cls is not None else text


@dataclass
class AlertingConfig:
    """Tunables for the alert lifecycle engine."""

    stale_after_days: int = STALE_ALERT_DAYS
    default_page_size: int = DEFAULT_PAGE_SIZE
