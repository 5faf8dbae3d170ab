"""Application context: wires settings, stores and services together.

Callers (HTTP handlers, schedulers, CLI jobs) build one context per process,
after ``src.logging_config.configure_logging()``, and call the services
hanging off it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.engine import Engine

from src.alerting import (
    AlertEngine,
    AlertRuleService,
    AlertTrigger,
    EmissionGate,
    EscalationManager,
)
from src.audit import AuditRecorder
from src.db.engine import dispose_engine
from src.incidents import IncidentCorrelator, IncidentRepository, IncidentService
from src.notifications import NotificationConfig, NotificationDispatcher, SmtpTransport
from src.notifications.channels import TransportFactory
from src.notifications.retry import Sleep
from src.ops_metrics import (
    KeyValueSyncStateProvider,
    OpsMetricsEngine,
    SloTargets,
    SyncStateProvider,
)
from src.settings import Settings, get_settings
from src.storage.memory import MemoryStore
from src.storage.persistence import Persistence, build_persistence
from src.timeutil import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    persistence: Persistence
    dispatcher: NotificationDispatcher
    audit: AuditRecorder
    alerts: AlertEngine
    rules: AlertRuleService
    triggers: AlertTrigger
    escalation: EscalationManager
    incidents: IncidentService
    correlator: IncidentCorrelator
    metrics: OpsMetricsEngine

    async def close(self) -> None:
        """Wait for in-flight notifications, then release the database engine."""
        await self.dispatcher.drain()
        if self.persistence.engine is not None:
            dispose_engine(self.persistence.engine)


def create_app_context(
    settings: Optional[Settings] = None,
    memory: Optional[MemoryStore] = None,
    engine: Optional[Engine] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
    smtp_factory: TransportFactory = SmtpTransport,
    sleep: Optional[Sleep] = None,
    clock: Clock = utc_now,
    sync_state_provider: Optional[SyncStateProvider] = None,
) -> AppContext:
    settings = settings or get_settings()
    persistence = build_persistence(settings, memory=memory, engine=engine)

    dispatcher = NotificationDispatcher(
        NotificationConfig.from_settings(settings),
        http_transport=http_transport,
        smtp_factory=smtp_factory,
        sleep=sleep,
    )
    audit = AuditRecorder(persistence.audit, clock=clock)
    alerts = AlertEngine(persistence.alerts, audit, dispatcher=dispatcher, clock=clock)
    gate = EmissionGate()
    incidents = IncidentService(IncidentRepository(persistence.kv), audit, clock=clock)

    context = AppContext(
        settings=settings,
        persistence=persistence,
        dispatcher=dispatcher,
        audit=audit,
        alerts=alerts,
        rules=AlertRuleService(persistence.kv, audit=audit, dispatcher=dispatcher),
        triggers=AlertTrigger(alerts, gate=gate, clock=clock),
        escalation=EscalationManager(alerts, gate=gate, clock=clock),
        incidents=incidents,
        correlator=IncidentCorrelator(incidents, alerts),
        metrics=OpsMetricsEngine(
            persistence.alerts,
            incidents,
            sync_state_provider=sync_state_provider or KeyValueSyncStateProvider(persistence.kv),
            targets=SloTargets.from_settings(settings),
            clock=clock,
        ),
    )
    logger.info(
        "Ops context ready (%s persistence, environment=%s)",
        persistence.mode,
        settings.environment,
    )
    return context
