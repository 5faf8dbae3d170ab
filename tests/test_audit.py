"""Tests for the audit log."""

from datetime import datetime, timezone

import pytest

from src.audit import (
    AuditAction,
    AuditConfig,
    AuditEntityType,
    AuditEntry,
    AuditFilters,
    AuditRecorder,
    MemoryAuditStore,
    SqlAuditStore,
)
from src.storage.memory import MemoryStore

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "sql"])
def recorder(request, memory, clock):
    if request.param == "memory":
        store = MemoryAuditStore(memory)
    else:
        store = SqlAuditStore(request.getfixturevalue("sqlite_engine"))
    return AuditRecorder(store, clock=clock)


async def seed(recorder, clock):
    await recorder.append_audit_log(
        "alice", AuditAction.ALERT_STATUS_UPDATED, "alert", "7", {"status": "Resolved"},
    )
    clock.advance(seconds=1)
    await recorder.append_audit_log(
        "bob", AuditAction.INCIDENT_CREATED, "incident", "1", {"incident": {"title": "Chain halt"}},
    )
    clock.advance(seconds=1)
    await recorder.append_audit_log(None, "sync_restarted")


class TestAuditConfig:
    """Tests for audit enums."""

    def test_actions(self):
        assert AuditAction.ALERT_STATUS_UPDATED.value == "alert_status_updated"
        assert AuditAction.INCIDENT_UPDATED.value == "incident_updated"

    def test_entity_types(self):
        assert AuditEntityType.ALERT.value == "alert"
        assert AuditEntityType.INCIDENT.value == "incident"

    def test_default_page_size(self):
        assert AuditConfig().default_page_size == 50


class TestAuditModels:
    def test_filters_normalized(self):
        f = AuditFilters(actor="  Alice ", action="", q="   ").normalized()
        assert f.actor == "alice"
        assert f.action is None
        assert f.q is None

    def test_details_text(self):
        entry = AuditEntry(id=1, created_at=T0, action="x", details={"a": 1})
        assert entry.details_text() == '{"a": 1}'
        assert AuditEntry(id=2, created_at=T0, action="x").details_text() == ""

    def test_to_dict(self):
        entry = AuditEntry(id=1, created_at=T0, action="x", actor="a")
        data = entry.to_dict()
        assert data["created_at"] == T0.isoformat()
        assert data["actor"] == "a"


class TestAuditRecorder:
    """Append and list against both stores."""

    @pytest.mark.asyncio
    async def test_append_returns_entry(self, recorder):
        entry = await recorder.append_audit_log(
            "alice", AuditAction.ALERT_STATUS_UPDATED, "alert", "7", {"status": "Resolved"},
        )
        assert entry.id == 1
        assert entry.action == "alert_status_updated"
        assert entry.created_at == T0
        assert entry.details == {"status": "Resolved"}

    @pytest.mark.asyncio
    async def test_list_newest_first(self, recorder, clock):
        await seed(recorder, clock)
        page = await recorder.list_audit_log()
        assert [e.action for e in page.items] == [
            "sync_restarted", "incident_created", "alert_status_updated",
        ]
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_independent_filters(self, recorder, clock):
        await seed(recorder, clock)
        assert (await recorder.list_audit_log(actor="ALI")).total == 1
        assert (await recorder.list_audit_log(action="incident")).total == 1
        assert (await recorder.list_audit_log(entity_type="alert")).total == 1
        assert (await recorder.list_audit_log(entity_id="1")).total == 1
        assert (await recorder.list_audit_log(actor="alice", action="incident")).total == 0

    @pytest.mark.asyncio
    async def test_q_searches_serialized_details(self, recorder, clock):
        await seed(recorder, clock)
        page = await recorder.list_audit_log(q="chain halt")
        assert [e.actor for e in page.items] == ["bob"]
        assert (await recorder.list_audit_log(q="bob")).total == 1
        assert (await recorder.list_audit_log(q="nothing-like-this")).total == 0

    @pytest.mark.asyncio
    async def test_pagination(self, recorder, clock):
        await seed(recorder, clock)
        first = await recorder.list_audit_log(limit=2)
        assert len(first.items) == 2
        assert first.next_cursor == 2
        second = await recorder.list_audit_log(limit=2, cursor=first.next_cursor)
        assert [e.action for e in second.items] == ["alert_status_updated"]
        assert second.next_cursor is None

    @pytest.mark.asyncio
    async def test_details_are_copied(self, recorder):
        details = {"status": "Open"}
        await recorder.append_audit_log("a", "x", details=details)
        details["status"] = "changed"
        entry = (await recorder.list_audit_log()).items[0]
        assert entry.details == {"status": "Open"}


class TestMemoryAuditCap:
    @pytest.mark.asyncio
    async def test_keeps_most_recent_5000(self, clock):
        memory = MemoryStore()
        recorder = AuditRecorder(MemoryAuditStore(memory), clock=clock)
        for i in range(6000):
            await recorder.append_audit_log("bot", f"action_{i}")
        assert len(memory.audit) == 5000
        page = await recorder.list_audit_log(limit=1)
        assert page.total == 5000
        assert page.items[0].action == "action_5999"
        assert memory.audit[-1].action == "action_1000"
