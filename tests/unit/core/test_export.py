"""Tests for report export renderers."""

import csv
import io
import json
from datetime import datetime

import pytest

from kanban.core.access.policy import ReportScope
from kanban.core.errors import ValidationError
from kanban.core.reports import (
    ExportFormat,
    ExportFormatter,
    ReportQuery,
    ReportRenderer,
    ReportResult,
    ReportType,
)
from kanban.core.timeutil import DateRange


@pytest.fixture
def result():
    query = ReportQuery(
        ReportType.CUSTOM_RANGE,
        DateRange(datetime(2024, 3, 1), datetime(2024, 4, 1)),
        ReportScope(),
    )
    data = {
        "total": 3,
        "approval_rate": 0.3333,
        "by_status": {"APPROVED": 1, "REJECTED": 1, "PENDING_DEPT_APPROVAL": 1},
        "by_part": [
            {"part_number": "AB-1", "requests": 2, "quantity": 20},
            {"part_number": "CD-2", "requests": 1, "quantity": 5},
        ],
        "by_stage": {
            "department": {"approved": 2, "rejected": 0},
            "production_control": {"approved": 1, "rejected": 1},
        },
    }
    return ReportResult(ReportType.CUSTOM_RANGE, query, data, generated_at=datetime(2024, 4, 2, 9, 0))


class TestExportFormatter:
    def test_default_formats(self):
        assert ExportFormatter().formats == [ExportFormat.JSON, ExportFormat.CSV]

    def test_json(self, result):
        body = json.loads(ExportFormatter().render(result, "json"))
        assert body["report_type"] == "custom_range"
        assert body["data"]["total"] == 3
        assert body["fingerprint"] == result.fingerprint()
        assert body["query"]["start"] == "2024-03-01T00:00:00"

    def test_csv_sections(self, result):
        text = ExportFormatter().render(result, ExportFormat.CSV).decode("utf-8")
        rows = list(csv.reader(io.StringIO(text)))

        assert rows[0] == ["key", "value"]
        assert ["report_type", "custom_range"] in rows
        assert ["total", "3"] in rows

        part_header = rows.index(["by_part"]) + 1
        assert rows[part_header] == ["part_number", "requests", "quantity"]
        assert rows[part_header + 1] == ["AB-1", "2", "20"]

        stage_header = rows.index(["by_stage"]) + 1
        assert rows[stage_header] == ["key", "approved", "rejected"]
        assert rows[stage_header + 2] == ["production_control", "1", "1"]

    @pytest.mark.parametrize("fmt", ["pdf", "excel", ExportFormat.PDF])
    def test_unregistered_format(self, result, fmt):
        with pytest.raises(ValidationError):
            ExportFormatter().render(result, fmt)

    def test_unknown_format(self, result):
        formatter = ExportFormatter()
        with pytest.raises(ValidationError):
            formatter.render(result, "docx")
        assert not formatter.supports("docx")

    def test_register_renderer(self, result):
        class _Pdf(ReportRenderer):
            media_type = "application/pdf"

            def render(self, result):
                return b"%PDF-" + result.report_type.value.encode()

        formatter = ExportFormatter()
        formatter.register("PDF", _Pdf())
        assert formatter.supports(ExportFormat.PDF)
        assert formatter.render(result, "pdf") == b"%PDF-custom_range"
        assert formatter.media_type("pdf") == "application/pdf"


class TestReportResult:
    def test_equality_ignores_generation_time(self, result):
        again = ReportResult(result.report_type, result.query, dict(result.data), generated_at=datetime(2030, 1, 1))
        assert again == result
        assert again.fingerprint() == result.fingerprint()
        assert hash(again) == hash(result)

    def test_data_changes_fingerprint(self, result):
        changed = ReportResult(result.report_type, result.query, {**result.data, "total": 4})
        assert changed != result
        assert changed.fingerprint() != result.fingerprint()
