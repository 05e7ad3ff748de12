"""Tests for department seeding and context wiring."""

from pathlib import Path

import pytest
import yaml

from kanban.core.context import KanbanContext, default_subscribers
from kanban.core.errors import ValidationError
from kanban.db.seed import DEFAULT_DEPARTMENTS, load_department_seed, seed_departments
from kanban.services.audit import AuditLogSubscriber
from kanban.services.notifications import LoggingSubscriber, WebhookSubscriber

pytestmark = pytest.mark.integration

EXAMPLE_SEED = Path(__file__).resolve().parents[2] / "config" / "departments.example.yaml"


@pytest.fixture
def seed_file(tmp_path):
    def write(content):
        path = tmp_path / "departments.yaml"
        path.write_text(yaml.safe_dump(content) if not isinstance(content, str) else content)
        return str(path)
    return write


class TestSeedDepartments:
    def test_defaults(self, context):
        codes = {d.code: d for d in context.store.list_departments()}
        assert set(codes) == {"PC", "QC", "ASSY"}
        assert codes["PC"].is_production_control
        assert not codes["QC"].is_production_control

    def test_idempotent(self, context):
        before = {d.code: d.id for d in context.store.list_departments()}
        context.seed_departments()
        with context.store.session_scope() as session:
            seed_departments(session, DEFAULT_DEPARTMENTS)
        after = {d.code: d.id for d in context.store.list_departments()}
        assert before == after

    def test_requires_one_pc_department(self, context):
        with context.store.session_scope() as session:
            with pytest.raises(ValidationError):
                seed_departments(session, [{"code": "QC", "name": "Quality Control"}])
            with pytest.raises(ValidationError):
                seed_departments(session, [
                    {"code": "PC", "name": "Production Control"},
                    {"code": "PC2", "name": "Second PC", "is_production_control": True},
                ])


class TestLoadDepartmentSeed:
    def test_load(self, seed_file, monkeypatch):
        monkeypatch.setenv("PLANT", "North")
        path = seed_file({"departments": [
            {"code": "PC", "name": "Production Control", "is_production_control": True},
            {"code": "WH", "name": "Warehouse ${PLANT}"},
        ]})
        departments = load_department_seed(path)
        assert departments[1] == {"code": "WH", "name": "Warehouse North", "is_production_control": False}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_department_seed(str(tmp_path / "absent.yaml"))

    def test_bad_structure(self, seed_file):
        with pytest.raises(ValidationError):
            load_department_seed(seed_file({"departments": {"PC": "Production Control"}}))
        with pytest.raises(ValidationError):
            load_department_seed(seed_file({"departments": [{"code": "PC"}]}))

    def test_invalid_yaml(self, seed_file):
        with pytest.raises(yaml.YAMLError):
            load_department_seed(seed_file("departments: [unclosed"))

    def test_example_file(self):
        departments = load_department_seed(str(EXAMPLE_SEED))
        assert [d["code"] for d in departments if d["is_production_control"]] == ["PC"]


class TestContext:
    def test_seed_file_setting(self, settings, seed_file):
        settings.department_seed_file = seed_file({"departments": [
            {"code": "PC", "name": "Production Control", "is_production_control": True},
            {"code": "PNT", "name": "Paint Shop"},
        ]})
        with KanbanContext.create(settings) as ctx:
            assert [d.code for d in ctx.store.list_departments()] == ["PC", "PNT"]

    def test_default_subscribers(self, settings, context):
        names = [type(s) for s in default_subscribers(settings, context.session_factory)]
        assert names == [LoggingSubscriber, AuditLogSubscriber]

        settings.audit_events_enabled = False
        settings.webhook_url = "https://hooks.example.com/kanban"
        subscribers = default_subscribers(settings, context.session_factory)
        assert [type(s) for s in subscribers] == [LoggingSubscriber, WebhookSubscriber]
        subscribers[-1].close()

    def test_close_is_idempotent(self, settings):
        ctx = KanbanContext.create(settings)
        ctx.close()
        ctx.close()
        assert ctx.dispatcher.notify("KANBAN_CREATED", {}) is None
