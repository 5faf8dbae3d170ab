"""Alert lifecycle engine.

Create-or-touch by fingerprint, explicit status transitions, staleness
pruning and filtered listing. Notifications go out as background tasks
on creation and on re-open; their outcome never affects the alert write.
"""

import logging
from datetime import timedelta
from typing import Iterable, List, Optional, Union

from src.alerting.config import (
    AlertingConfig,
    AlertSeverity,
    AlertStatus,
    parse_filter,
)
from src.alerting.models import Alert, AlertFilters, AlertOccurrence
from src.alerting.store import AlertStore
from src.audit import AuditAction, AuditEntityType, AuditRecorder
from src.errors import ValidationError
from src.notifications import AlertNotice, NotificationDispatcher, NotificationOptions
from src.storage.pagination import Page, clamp_limit, clamp_offset
from src.timeutil import Clock, utc_now

logger = logging.getLogger(__name__)


def _coerce(enum_cls, value, field_name: str):
    try:
        return enum_cls(value.value if hasattr(value, "value") else value)
    except ValueError:
        raise ValidationError(f"Invalid {field_name}: {value!r}", field=field_name)


def _filter(value, enum_cls, field_name: str):
    try:
        return parse_filter(value, enum_cls)
    except ValueError:
        raise ValidationError(f"Invalid {field_name} filter: {value!r}", field=field_name)


class AlertEngine:
    """Alert state machine over an ``AlertStore``."""

    def __init__(
        self,
        store: AlertStore,
        audit: AuditRecorder,
        dispatcher: Optional[NotificationDispatcher] = None,
        config: Optional[AlertingConfig] = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self._audit = audit
        self._dispatcher = dispatcher
        self.config = config or AlertingConfig()
        self._clock = clock

    async def create_or_touch_alert(
        self,
        fingerprint: str,
        type: str,
        severity: Union[AlertSeverity, str],
        title: str,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        notify: Optional[NotificationOptions] = None,
    ) -> Alert:
        """Record one occurrence of the condition identified by ``fingerprint``.

        New alerts open with one occurrence. A Resolved alert re-opens. Open
        and Acknowledged alerts only count the occurrence and take the latest
        severity, title, message and entity. Notifications are scheduled for
        new and re-opened alerts only.
        """
        if not isinstance(fingerprint, str) or not fingerprint.strip():
            raise ValidationError("Alert fingerprint is required", field="fingerprint")
        if not isinstance(type, str) or not type.strip():
            raise ValidationError("Alert type is required", field="type")
        occurrence = AlertOccurrence(
            fingerprint=fingerprint,
            type=type,
            severity=_coerce(AlertSeverity, severity, "severity"),
            title=title,
            message=message,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        outcome = self.store.upsert(occurrence, self._clock())
        alert = outcome.alert

        if outcome.created:
            logger.info("Alert opened: %s (%s)", alert.fingerprint, alert.severity.value)
        elif outcome.reopened:
            logger.info("Alert re-opened: %s after %d occurrences", alert.fingerprint, alert.occurrences)

        if outcome.should_notify and self._dispatcher is not None:
            self._dispatcher.schedule(
                AlertNotice(
                    title=alert.title,
                    message=alert.message,
                    severity=alert.severity.value,
                    fingerprint=alert.fingerprint,
                ),
                notify,
            )
        return alert

    async def update_alert_status(
        self,
        alert_id: int,
        status: Union[AlertStatus, str],
        actor: Optional[str] = None,
    ) -> Optional[Alert]:
        """Operator transition. Returns None when the alert does not exist."""
        new_status = _coerce(AlertStatus, status, "status")
        alert = self.store.set_status(int(alert_id), new_status, self._clock())
        if alert is None:
            return None
        await self._audit.append_audit_log(
            actor,
            AuditAction.ALERT_STATUS_UPDATED,
            entity_type=AuditEntityType.ALERT.value,
            entity_id=str(alert.id),
            details={"status": new_status.value},
        )
        logger.info("Alert %d -> %s by %s", alert.id, new_status.value, actor or "system")
        return alert

    async def prune_stale_alerts(self) -> int:
        """Resolve unresolved alerts not seen for ``stale_after_days``."""
        now = self._clock()
        cutoff = now - timedelta(days=self.config.stale_after_days)
        count = self.store.resolve_stale(cutoff, now)
        if count:
            logger.info("Resolved %d stale alerts (last seen before %s)", count, cutoff.isoformat())
        return count

    async def list_alerts(
        self,
        status: Union[AlertStatus, str, None] = None,
        severity: Union[AlertSeverity, str, None] = None,
        type: Optional[str] = None,
        q: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[int] = None,
        instance_id: Optional[str] = None,
    ) -> Page[Alert]:
        """Triage listing: Open first, then most recently seen."""
        filters = AlertFilters(
            status=_filter(status, AlertStatus, "status"),
            severity=_filter(severity, AlertSeverity, "severity"),
            type=parse_filter(type),
            q=(q or "").strip() or None,
            instance_id=(instance_id or "").strip() or None,
        )
        return self.store.list_page(
            filters,
            clamp_limit(limit, self.config.default_page_size),
            clamp_offset(cursor),
        )

    async def get_alert(self, alert_id: int) -> Optional[Alert]:
        return self.store.get_by_id(int(alert_id))

    async def get_alerts(self, alert_ids: Iterable[int]) -> List[Alert]:
        return self.store.get_many(int(i) for i in alert_ids)
