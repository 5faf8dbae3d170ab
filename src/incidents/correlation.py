"""Open incidents from alerts and from SLO verdicts."""

import logging
from typing import TYPE_CHECKING, Iterable, List, Optional

from src.alerting.config import AlertSeverity, AlertStatus
from src.alerting.engine import AlertEngine
from src.alerting.models import Alert
from src.alerting.rules import AlertRule
from src.incidents.config import IncidentConfig
from src.incidents.models import Incident, dedupe_ids
from src.incidents.service import IncidentService

if TYPE_CHECKING:
    from src.ops_metrics.models import SloStatus

logger = logging.getLogger(__name__)

LAG_ALERT_TYPES = ("sync_backlog", "sync_error", "backlog_assertions", "backlog_disputes")
STALENESS_ALERT_TYPES = ("stale_sync", "sync_error", "contract_paused", "market_stale")
PERFORMANCE_ALERT_TYPES = ("slow_api_request", "high_error_rate", "database_slow_query")

SLO_LABELS = {
    "lag_blocks": "Sync lag (blocks)",
    "sync_staleness_minutes": "Sync staleness (min)",
    "alert_mtta_minutes": "Alert MTTA (min)",
    "alert_mttr_minutes": "Alert MTTR (min)",
    "incident_mttr_minutes": "Incident MTTR (min)",
    "open_alerts": "Open alerts",
    "open_critical_alerts": "Open critical alerts",
}


def format_slo_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.1f}"


def describe_breaches(slo: "SloStatus") -> str:
    if not slo.breaches:
        return "Missing SLO data"
    return "; ".join(
        f"{SLO_LABELS.get(b.key, b.key)}: {format_slo_number(b.actual)} > {format_slo_number(b.target)}"
        for b in slo.breaches
    )


class IncidentCorrelator:
    """Builds incidents that point at the alerts behind them."""

    def __init__(
        self,
        incidents: IncidentService,
        alerts: AlertEngine,
        config: Optional[IncidentConfig] = None,
    ):
        self._incidents = incidents
        self._alerts = alerts
        self.config = config or IncidentConfig()

    async def create_incident_from_alert(
        self,
        alert: Alert,
        rule: Optional[AlertRule] = None,
        actor: Optional[str] = None,
    ) -> Incident:
        """One incident for one alert; owner and runbook come from the rule."""
        return await self._incidents.create_incident(
            title=alert.title,
            severity=alert.severity,
            summary=alert.message,
            runbook=rule.runbook if rule else None,
            owner=rule.owner if rule else None,
            alert_ids=[alert.id],
            entity_type=alert.entity_type,
            entity_id=alert.entity_id,
            actor=actor,
        )

    async def _ids(
        self,
        instance_id: Optional[str],
        status: Optional[AlertStatus] = None,
        severity: Optional[AlertSeverity] = None,
        types: Iterable[Optional[str]] = (None,),
    ) -> List[int]:
        ids: List[int] = []
        for alert_type in types:
            page = await self._alerts.list_alerts(
                status=status,
                severity=severity,
                type=alert_type,
                limit=self.config.correlation_fetch_limit,
                instance_id=instance_id,
            )
            ids.extend(a.id for a in page.items)
        return ids

    async def collect_slo_alert_ids(
        self,
        slo: "SloStatus",
        instance_id: Optional[str] = None,
    ) -> List[int]:
        """Alert ids related to each breached SLO key, in discovery order."""
        keys = {b.key for b in slo.breaches}
        found: List[int] = []
        open_ = AlertStatus.OPEN

        if "lag_blocks" in keys:
            found += await self._ids(instance_id, open_, types=LAG_ALERT_TYPES)
        if "sync_staleness_minutes" in keys:
            found += await self._ids(instance_id, open_, types=STALENESS_ALERT_TYPES)
        if "open_alerts" in keys:
            found += await self._ids(instance_id, open_)
        if "open_critical_alerts" in keys:
            found += await self._ids(instance_id, open_, AlertSeverity.CRITICAL)
        if "alert_mtta_minutes" in keys:
            found += await self._ids(instance_id, AlertStatus.ACKNOWLEDGED)
            found += await self._ids(instance_id, open_)
            found += await self._ids(instance_id, open_, types=PERFORMANCE_ALERT_TYPES)
        if "alert_mttr_minutes" in keys:
            found += await self._ids(instance_id, AlertStatus.RESOLVED)
            found += await self._ids(instance_id, open_)
            found += await self._ids(instance_id, open_, types=PERFORMANCE_ALERT_TYPES)
        if "incident_mttr_minutes" in keys:
            for incident in await self._incidents.all_incidents():
                found += incident.alert_ids

        return dedupe_ids(found)

    async def create_incident_from_slo(
        self,
        slo: "SloStatus",
        instance_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Optional[Incident]:
        """Open an incident for a breached or degraded SLO; None when met."""
        if slo.status.value == "met":
            return None
        breached = slo.status.value == "breached"
        scope = instance_id or "default"
        alert_ids = await self.collect_slo_alert_ids(slo, instance_id)
        incident = await self._incidents.create_incident(
            title=f"SLO {'Breached' if breached else 'Degraded'}",
            severity=AlertSeverity.CRITICAL if breached else AlertSeverity.WARNING,
            summary=f"Instance {scope}; {describe_breaches(slo)}",
            entity_type="slo",
            entity_id=scope,
            alert_ids=alert_ids,
            actor=actor,
        )
        logger.warning("SLO %s for %s; incident %d opened", slo.status.value, scope, incident.id)
        return incident
