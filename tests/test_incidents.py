"""Tests for incidents: service, blob repair and correlation."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from src.alerting import AlertEngine, AlertRule, AlertRuleEvent, AlertSeverity, MemoryAlertStore
from src.errors import ValidationError
from src.incidents import (
    INCIDENTS_KEY,
    IncidentCorrelator,
    IncidentRepository,
    IncidentService,
    IncidentStatus,
    describe_breaches,
    repair_blob,
)
from src.incidents.models import Incident, dedupe_ids
from src.ops_metrics import SloBreach, SloStatus, SloStatusValue

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def service(kv, audit_recorder, clock):
    return IncidentService(IncidentRepository(kv), audit_recorder, clock=clock)


@pytest.fixture
def alert_engine(memory, audit_recorder, clock):
    return AlertEngine(MemoryAlertStore(memory), audit_recorder, dispatcher=MagicMock(), clock=clock)


def stored_incident(incident_id, **overrides):
    raw = {
        "id": incident_id,
        "title": f"Incident {incident_id}",
        "status": "Open",
        "severity": "warning",
        "alert_ids": [],
        "created_at": T0.isoformat(),
        "updated_at": T0.isoformat(),
    }
    raw.update(overrides)
    return raw


class TestIncidentModel:
    def test_dedupe_ids(self):
        assert dedupe_ids([3, 1, 3, 0, -2, "4", True, 2]) == [3, 1, 2]

    def test_from_dict_rejects_invalid(self):
        assert Incident.from_dict({"id": 1}) is None
        assert Incident.from_dict(stored_incident(1, status="Closed")) is None
        assert Incident.from_dict(stored_incident(0)) is None
        assert Incident.from_dict(stored_incident(1, created_at="yesterday")) is None

    def test_round_trip(self):
        incident = Incident.from_dict(stored_incident(4, owner="ops", alert_ids=[2, 2, 5]))
        assert incident.alert_ids == [2, 5]
        assert Incident.from_dict(incident.to_dict()) == incident


class TestRepairBlob:
    """Read-repair of the stored incident blob."""

    def test_missing_blob_is_empty(self):
        blob = repair_blob(None)
        assert blob.next_id == 1
        assert blob.items == []

    def test_drops_invalid_and_duplicate_entries(self):
        blob = repair_blob({
            "version": 1,
            "next_id": 10,
            "items": [stored_incident(1), {"id": "x"}, stored_incident(1), stored_incident(2)],
        })
        assert [i.id for i in blob.items] == [1, 2]
        assert blob.next_id == 10

    def test_stale_next_id_rederived(self):
        blob = repair_blob({"next_id": 2, "items": [stored_incident(5)]})
        assert blob.next_id == 6

    def test_repository_writes_back_repaired_blob(self, kv):
        kv.set(INCIDENTS_KEY, {"next_id": 1, "items": [stored_incident(3), "junk"]})
        blob = IncidentRepository(kv).load()
        assert blob.next_id == 4
        assert kv.get(INCIDENTS_KEY) == blob.to_dict()
        assert kv.get(INCIDENTS_KEY)["version"] == 1


class TestIncidentService:
    """Create, patch and list."""

    @pytest.mark.asyncio
    async def test_create_first_incident(self, service, audit_recorder):
        incident = await service.create_incident(
            title="Oracle down", severity="critical", alert_ids=[1, 2], actor="alice",
        )
        assert incident.id == 1
        assert incident.status == IncidentStatus.OPEN
        assert incident.alert_ids == [1, 2]
        assert incident.resolved_at is None

        page = await audit_recorder.list_audit_log()
        assert page.total == 1
        entry = page.items[0]
        assert entry.action == "incident_created"
        assert entry.entity_id == "1"
        assert entry.details["incident"]["title"] == "Oracle down"

    @pytest.mark.asyncio
    async def test_ids_increase(self, service):
        first = await service.create_incident(title="a", severity="info")
        second = await service.create_incident(title="b", severity="info")
        assert (first.id, second.id) == (1, 2)

    @pytest.mark.asyncio
    async def test_create_validates(self, service):
        with pytest.raises(ValidationError):
            await service.create_incident(title=" ", severity="info")
        with pytest.raises(ValidationError):
            await service.create_incident(title="x", severity="fatal")

    @pytest.mark.asyncio
    async def test_create_resolved_sets_resolved_at(self, service):
        incident = await service.create_incident(title="x", severity="info", status="Resolved")
        assert incident.resolved_at == T0

    @pytest.mark.asyncio
    async def test_patch_merges_fields(self, service, clock):
        created = await service.create_incident(
            title="Oracle down", severity="warning", owner="alice", summary="s",
        )
        clock.advance(minutes=5)
        patched = await service.patch_incident(created.id, actor="bob", owner="", root_cause="RPC")
        assert patched.owner is None
        assert patched.root_cause == "RPC"
        assert patched.summary == "s"
        assert patched.title == "Oracle down"
        assert patched.updated_at > created.updated_at

    @pytest.mark.asyncio
    async def test_patch_audit_has_before_and_after(self, service, audit_recorder):
        created = await service.create_incident(title="x", severity="info")
        await service.patch_incident(created.id, actor="bob", severity="critical")
        entry = (await audit_recorder.list_audit_log(action="incident_updated")).items[0]
        assert entry.actor == "bob"
        assert entry.details["before"]["severity"] == "info"
        assert entry.details["after"]["severity"] == "critical"

    @pytest.mark.asyncio
    async def test_resolve_then_reopen(self, service, clock):
        created = await service.create_incident(title="x", severity="info")
        clock.advance(minutes=10)
        resolved = await service.patch_incident(created.id, status="Resolved")
        assert resolved.resolved_at == clock.now

        clock.advance(minutes=10)
        still = await service.patch_incident(created.id, status="Resolved", summary="done")
        assert still.resolved_at == resolved.resolved_at

        touched = await service.patch_incident(created.id, summary="notes")
        assert touched.resolved_at == resolved.resolved_at

        reopened = await service.patch_incident(created.id, status="Mitigating")
        assert reopened.resolved_at is None

    @pytest.mark.asyncio
    async def test_patch_unknown_returns_none(self, service, audit_recorder):
        assert await service.patch_incident(42, title="x") is None
        assert (await audit_recorder.list_audit_log()).total == 0

    @pytest.mark.asyncio
    async def test_get_incident(self, service):
        created = await service.create_incident(title="x", severity="info")
        assert (await service.get_incident(created.id)).title == "x"
        assert await service.get_incident(99) is None

    @pytest.mark.asyncio
    async def test_list_sorted_and_filtered(self, service, clock):
        a = await service.create_incident(title="RPC errors", severity="warning")
        clock.advance(minutes=1)
        b = await service.create_incident(title="Disk", severity="critical")
        clock.advance(minutes=1)
        c = await service.create_incident(title="Gas low", severity="info")
        clock.advance(minutes=1)
        await service.patch_incident(c.id, status="Resolved")
        await service.patch_incident(a.id, status="Mitigating")

        page = await service.list_incidents()
        assert [i.id for i in page.items] == [b.id, a.id, c.id]
        assert (await service.list_incidents(status="Open")).total == 1
        assert (await service.list_incidents(severity="critical")).total == 1
        assert (await service.list_incidents(q="rpc")).total == 1
        assert (await service.list_incidents(status="All")).total == 3


class TestCorrelation:
    """Incidents built from alerts and SLO verdicts."""

    @pytest.mark.asyncio
    async def test_incident_from_alert(self, service, alert_engine):
        alert = await alert_engine.create_or_touch_alert(
            fingerprint="rule_sync_error:prod", type="sync_error", severity="critical",
            title="Sync failing", message="RPC 503", entity_type="chain", entity_id="1",
        )
        rule = AlertRule(
            id="rule_sync_error", name="Sync", event=AlertRuleEvent.SYNC_ERROR,
            owner="oncall", runbook="https://runbooks/sync",
        )
        incident = await IncidentCorrelator(service, alert_engine).create_incident_from_alert(alert, rule)
        assert incident.alert_ids == [alert.id]
        assert incident.severity == AlertSeverity.CRITICAL
        assert incident.owner == "oncall"
        assert incident.runbook == "https://runbooks/sync"
        assert incident.summary == "RPC 503"
        assert incident.entity_id == "1"

    @pytest.mark.asyncio
    async def test_met_slo_creates_nothing(self, service, alert_engine):
        slo = SloStatus(status=SloStatusValue.MET)
        assert await IncidentCorrelator(service, alert_engine).create_incident_from_slo(slo) is None

    @pytest.mark.asyncio
    async def test_breached_slo_links_related_alerts(self, service, alert_engine):
        backlog = await alert_engine.create_or_touch_alert(
            fingerprint="r:prod:backlog", type="sync_backlog", severity="warning", title="t", message="m",
        )
        await alert_engine.create_or_touch_alert(
            fingerprint="r:dev:backlog", type="sync_backlog", severity="warning", title="t", message="m",
        )
        critical = await alert_engine.create_or_touch_alert(
            fingerprint="r:prod:crit", type="price_deviation", severity="critical", title="t", message="m",
        )
        slo = SloStatus(
            status=SloStatusValue.BREACHED,
            breaches=[
                SloBreach(key="lag_blocks", target=200, actual=512),
                SloBreach(key="open_critical_alerts", target=3, actual=4.5),
            ],
        )
        incident = await IncidentCorrelator(service, alert_engine).create_incident_from_slo(
            slo, instance_id="prod",
        )
        assert incident.title == "SLO Breached"
        assert incident.severity == AlertSeverity.CRITICAL
        assert incident.entity_type == "slo"
        assert incident.entity_id == "prod"
        assert incident.alert_ids == [backlog.id, critical.id]
        assert incident.summary == (
            "Instance prod; Sync lag (blocks): 512 > 200; Open critical alerts: 4.5 > 3"
        )

    @pytest.mark.asyncio
    async def test_degraded_slo(self, service, alert_engine):
        slo = SloStatus(status=SloStatusValue.DEGRADED, missing=["lag_blocks"])
        incident = await IncidentCorrelator(service, alert_engine).create_incident_from_slo(slo)
        assert incident.title == "SLO Degraded"
        assert incident.severity == AlertSeverity.WARNING
        assert incident.entity_id == "default"
        assert incident.summary == "Instance default; Missing SLO data"

    def test_describe_breaches(self):
        slo = SloStatus(
            status=SloStatusValue.BREACHED,
            breaches=[SloBreach(key="alert_mtta_minutes", target=30, actual=45.5)],
        )
        assert describe_breaches(slo) == "Alert MTTA (min): 45.5 > 30"
