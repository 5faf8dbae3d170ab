"""Ops metrics: alert and incident health, sync lag, SLO verdict and daily series."""

import logging
from collections import OrderedDict
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional, Tuple

from src.alerting.config import AlertStatus
from src.alerting.store import AlertStore
from src.incidents.config import IncidentStatus
from src.incidents.service import IncidentService
from src.logging_config import log_performance
from src.ops_metrics.config import (
    DEFAULT_SERIES_DAYS,
    DEFAULT_WINDOW_DAYS,
    SloTargets,
    clamp_days,
)
from src.ops_metrics.models import OpsMetrics, OpsMetricsSeries, SeriesPoint
from src.ops_metrics.slo import build_slo_status
from src.ops_metrics.sync_state import SyncStateProvider, read_sync_state
from src.timeutil import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)


def _mean_minutes(durations: Iterable[Tuple[datetime, datetime]]) -> Tuple[Optional[float], int]:
    """Average of (end - start) in minutes, ignoring negative spans."""
    minutes = []
    for start, end in durations:
        span = (ensure_utc(end) - ensure_utc(start)).total_seconds() / 60.0
        if span >= 0:
            minutes.append(span)
    if not minutes:
        return None, 0
    return sum(minutes) / len(minutes), len(minutes)


def _day_start(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


class OpsMetricsEngine:
    """Derives metrics from the alert store, incidents and sync position."""

    def __init__(
        self,
        alert_store: AlertStore,
        incidents: IncidentService,
        sync_state_provider: Optional[SyncStateProvider] = None,
        targets: Optional[SloTargets] = None,
        clock: Clock = utc_now,
    ):
        self._alerts = alert_store
        self._incidents = incidents
        self._sync_state_provider = sync_state_provider
        self.targets = targets or SloTargets()
        self._clock = clock

    @log_performance(threshold_ms=500)
    async def get_ops_metrics(
        self,
        window_days: Optional[int] = None,
        instance_id: Optional[str] = None,
    ) -> OpsMetrics:
        """Current counts plus MTTA/MTTR over the last ``window_days`` (1-90, default 7)."""
        days = clamp_days(window_days, DEFAULT_WINDOW_DAYS)
        now = self._clock()
        since = now - timedelta(days=days)

        counts = self._alerts.counts(instance_id)
        changed = self._alerts.list_changed_since(since, instance_id)
        mtta, mtta_samples = _mean_minutes(
            (a.first_seen_at, a.acknowledged_at)
            for a in changed
            if a.acknowledged_at is not None and ensure_utc(a.acknowledged_at) >= since
        )
        mttr, mttr_samples = _mean_minutes(
            (a.first_seen_at, a.resolved_at)
            for a in changed
            if a.status == AlertStatus.RESOLVED
            and a.resolved_at is not None
            and ensure_utc(a.resolved_at) >= since
        )

        incidents = await self._incidents.all_incidents()
        by_status = {status: 0 for status in IncidentStatus}
        for incident in incidents:
            by_status[incident.status] += 1
        incident_mttr, incident_samples = _mean_minutes(
            (i.created_at, i.resolved_at)
            for i in incidents
            if i.status == IncidentStatus.RESOLVED
            and i.resolved_at is not None
            and ensure_utc(i.resolved_at) >= since
        )

        sync_state = await read_sync_state(self._sync_state_provider, instance_id)
        metrics = OpsMetrics(
            window_days=days,
            generated_at=now,
            slo=build_slo_status({}, self.targets),
            instance_id=instance_id,
            alerts_open=counts.open,
            alerts_acknowledged=counts.acknowledged,
            alerts_resolved=counts.resolved,
            alerts_open_critical=counts.open_critical,
            alert_mtta_minutes=mtta,
            alert_mtta_samples=mtta_samples,
            alert_mttr_minutes=mttr,
            alert_mttr_samples=mttr_samples,
            incidents_open=by_status[IncidentStatus.OPEN],
            incidents_mitigating=by_status[IncidentStatus.MITIGATING],
            incidents_resolved=by_status[IncidentStatus.RESOLVED],
            incident_mttr_minutes=incident_mttr,
            incident_mttr_samples=incident_samples,
            lag_blocks=sync_state.lag_blocks() if sync_state else None,
            sync_staleness_minutes=sync_state.staleness_minutes(now) if sync_state else None,
        )
        metrics.slo = build_slo_status(metrics.slo_inputs(), self.targets)
        if metrics.slo.breaches:
            logger.warning(
                "SLO breached: %s",
                ", ".join(b.key for b in metrics.slo.breaches),
                extra={"extra_data": {"instance_id": instance_id, "window_days": days}},
            )
        return metrics

    @log_performance(threshold_ms=500)
    async def get_ops_metrics_series(
        self,
        series_days: Optional[int] = None,
        instance_id: Optional[str] = None,
    ) -> OpsMetricsSeries:
        """Per UTC day counts, oldest first, one point per day including empty ones."""
        days = clamp_days(series_days, DEFAULT_SERIES_DAYS)
        now = self._clock()
        today = ensure_utc(now).date()
        first_day = today - timedelta(days=days - 1)
        buckets: "OrderedDict[date, SeriesPoint]" = OrderedDict(
            (day, SeriesPoint(date=day.isoformat()))
            for day in (first_day + timedelta(days=n) for n in range(days))
        )

        def bucket(value: Optional[datetime]) -> Optional[SeriesPoint]:
            if value is None:
                return None
            return buckets.get(ensure_utc(value).date())

        since = _day_start(first_day)
        for alert in self._alerts.list_changed_since(since, instance_id):
            point = bucket(alert.created_at)
            if point is not None:
                point.alerts_created += 1
            if alert.status == AlertStatus.RESOLVED:
                point = bucket(alert.resolved_at)
                if point is not None:
                    point.alerts_resolved += 1

        for incident in await self._incidents.all_incidents():
            point = bucket(incident.created_at)
            if point is not None:
                point.incidents_created += 1
            if incident.status == IncidentStatus.RESOLVED:
                point = bucket(incident.resolved_at)
                if point is not None:
                    point.incidents_resolved += 1

        return OpsMetricsSeries(
            series_days=days,
            generated_at=now,
            points=list(buckets.values()),
            instance_id=instance_id,
        )
