"""Pytest configuration and shared fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional

import httpx
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.audit import AuditRecorder, MemoryAuditStore  # noqa: E402
from src.db.engine import build_engine, dispose_engine, ensure_schema  # noqa: E402
from src.settings import Settings  # noqa: E402
from src.storage.kv import MemoryKeyValueStore  # noqa: E402
from src.storage.memory import MemoryStore  # noqa: E402

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSleep:
    """Async sleep replacement that records requested delays in seconds."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeSmtpTransport:
    """Stands in for SmtpTransport; fails the first ``fail_times`` sends."""

    instances: List["FakeSmtpTransport"] = []

    def __init__(self, host, port, user, password, fail_times: int = 0, error: Optional[Exception] = None):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.fail_times = fail_times
        self.error = error
        self.sent = []
        self.calls = 0
        FakeSmtpTransport.instances.append(self)

    def send_message(self, message) -> None:
        self.calls += 1
        if self.calls <= self.fail_times:
            raise self.error or ConnectionResetError("connection reset by peer")
        self.sent.append(message)


class RecordingTransport(httpx.MockTransport):
    """MockTransport that replays ``responses`` in order and keeps requests."""

    def __init__(self, responses: Optional[List] = None, handler: Optional[Callable] = None):
        self.requests: List[httpx.Request] = []
        self._responses = list(responses or [200])

        def default_handler(request: httpx.Request) -> httpx.Response:
            index = min(len(self.requests), len(self._responses) - 1)
            self.requests.append(request)
            outcome = self._responses[index]
            if isinstance(outcome, Exception):
                raise outcome
            return httpx.Response(outcome, text="ok" if outcome < 300 else "error")

        super().__init__(handler or default_handler)


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def memory():
    return MemoryStore()


@pytest.fixture
def audit_recorder(memory, clock):
    return AuditRecorder(MemoryAuditStore(memory), clock=clock)


@pytest.fixture
def kv(memory):
    return MemoryKeyValueStore(memory)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def sqlite_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'ops.db'}")
    ensure_schema(engine)
    yield engine
    dispose_engine(engine)


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def fake_smtp():
    FakeSmtpTransport.instances = []
    yield FakeSmtpTransport
    FakeSmtpTransport.instances = []


@pytest.fixture
def http_transport():
    return RecordingTransport
