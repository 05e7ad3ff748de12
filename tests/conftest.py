"""Pytest configuration and shared fixtures."""

import threading
from datetime import datetime, timedelta

import pytest

from kanban.core.config import Settings
from kanban.core.context import KanbanContext
from kanban.db.seed import DEFAULT_DEPARTMENTS, seed_departments
from kanban.services.notifications import EventSubscriber

from tests.factories import make_actor


class FakeClock:
    """Deterministic, manually advanced time source (naive UTC)."""

    def __init__(self, start: datetime = datetime(2024, 3, 4, 8, 0, 0)):
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **delta) -> datetime:
        with self._lock:
            self._now += timedelta(**delta)
            return self._now

    def set(self, moment: datetime) -> None:
        with self._lock:
            self._now = moment


class RecordingSubscriber(EventSubscriber):
    """Keeps every event it sees."""

    name = "recording"

    def __init__(self):
        self.events = []

    def handle(self, event):
        self.events.append(event)

    @property
    def kinds(self):
        return [event.kind.value for event in self.events]


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a fresh SQLite file, isolated from the environment."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'kanban.db'}",
        report_timezone="UTC",
        log_console_enabled=False,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recorder():
    return RecordingSubscriber()


@pytest.fixture
def context(settings, clock, recorder):
    """Context with seeded PC, QC and ASSY departments and a recording subscriber."""
    ctx = KanbanContext.create(settings, clock=clock)
    ctx.dispatcher.subscribe(recorder)
    with ctx.store.session_scope() as session:
        seed_departments(session, DEFAULT_DEPARTMENTS + [{"code": "ASSY", "name": "Assembly"}])
    yield ctx
    ctx.close()


@pytest.fixture
def engine(context):
    return context.approvals


@pytest.fixture
def reports(context):
    return context.reports


@pytest.fixture
def departments(context):
    """Department snapshots keyed by code."""
    return {d.code: d for d in context.store.list_departments()}


@pytest.fixture
def actors(departments):
    """One actor per role of interest, keyed by a short name."""
    qc = departments["QC"].id
    assy = departments["ASSY"].id
    pc = departments["PC"].id
    return {
        "requester": make_actor("REQUESTER", qc, "req-qc-1"),
        "requester2": make_actor("REQUESTER", qc, "req-qc-2"),
        "assy_requester": make_actor("REQUESTER", assy, "req-assy-1"),
        "supervisor": make_actor("SUPERVISOR", qc, "sup-qc"),
        "manager": make_actor("MANAGER", qc, "mgr-qc"),
        "assy_manager": make_actor("MANAGER", assy, "mgr-assy"),
        "pc": make_actor("PC", pc, "pc-1"),
        "pc2": make_actor("PC", pc, "pc-2"),
        "admin": make_actor("ADMIN", None, "admin"),
    }
