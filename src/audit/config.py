"""Configuration for the audit log."""

from dataclasses import dataclass
from enum import Enum


class AuditAction(str, Enum):
    """Actions recorded by the ops core itself.

    Callers may append any other action string.
    """

    ALERT_STATUS_UPDATED = "alert_status_updated"
    ALERT_RULES_UPDATED = "alert_rules_updated"
    ALERT_RULE_TEST_SENT = "alert_rule_test_sent"
    INCIDENT_CREATED = "incident_created"
    INCIDENT_UPDATED = "incident_updated"


class AuditEntityType(str, Enum):
    ALERT = "alert"
    ALERTS = "alerts"
    ALERT_RULE = "alert_rule"
    INCIDENT = "incident"


@dataclass
class AuditConfig:
    """Master configuration for the audit log."""

    default_page_size: int = 50
