"""Tests for kanban input validation."""

from uuid import uuid4

import pytest

from kanban.core.errors import ValidationError
from kanban.schemas import (
    parse_batch_decision,
    parse_batch_rejection,
    parse_kanban_create,
    parse_kanban_update,
)


def _payload(**overrides):
    data = {"part_number": "AB-1234", "quantity": 5, "location": "Line 2"}
    data.update(overrides)
    return data


def _fields(exc):
    return {detail["field"] for detail in exc.details}


class TestKanbanCreate:
    def test_minimal_payload(self):
        payload = parse_kanban_create(_payload())
        assert payload.classification == "NORMAL"
        assert payload.box == ""
        assert payload.department_id is None

    def test_whitespace_stripped(self):
        payload = parse_kanban_create(_payload(location="  Line 2  "))
        assert payload.location == "Line 2"

    @pytest.mark.parametrize("field,value", [
        ("quantity", 0),
        ("quantity", -3),
        ("part_number", "AB"),
        ("part_number", "AB 12"),
        ("part_number", "X" * 51),
        ("location", "L"),
        ("box", "B" * 51),
        ("description", "d" * 501),
        ("requester_name", "R2-D2"),
    ])
    def test_invalid_fields(self, field, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_kanban_create(_payload(**{field: value}))
        assert field in _fields(exc_info.value)

    def test_missing_fields_reported_together(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_kanban_create({})
        assert {"part_number", "quantity", "location"} <= _fields(exc_info.value)

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            parse_kanban_create(_payload(status="APPROVED"))

    def test_non_mapping_rejected(self):
        with pytest.raises(ValidationError):
            parse_kanban_create(["AB-1234"])

    def test_valid_requester_name(self):
        payload = parse_kanban_create(_payload(requester_name="Randy R. Rafael-Smith"))
        assert payload.requester_name == "Randy R. Rafael-Smith"


class TestBatchDecision:
    def test_requires_ids(self):
        with pytest.raises(ValidationError):
            parse_batch_decision({"request_ids": []})

    def test_ids_are_uuids(self):
        request_id = uuid4()
        batch = parse_batch_decision({"request_ids": [str(request_id)]})
        assert batch.request_ids == [request_id]
        with pytest.raises(ValidationError) as exc_info:
            parse_batch_decision({"request_ids": ["not-a-uuid"]})
        assert exc_info.value.details[0]["field"] == "request_ids.0"


class TestBatchRejection:
    def test_reason_stripped(self):
        batch = parse_batch_rejection({"request_ids": [uuid4()], "reason": "  budget freeze  "})
        assert batch.reason == "budget freeze"

    @pytest.mark.parametrize("reason", [None, "", "   ", "x" * 501])
    def test_invalid_reason(self, reason):
        with pytest.raises(ValidationError) as exc_info:
            parse_batch_rejection({"request_ids": [uuid4()], "reason": reason})
        assert exc_info.value.details[0]["field"] == "reason"


class TestKanbanUpdate:
    def test_only_given_fields(self):
        update = parse_kanban_update({"quantity": 3, "location": " Dock 2 "})
        assert update.changes() == {"quantity": 3, "location": "Dock 2"}

    def test_empty_edit_refused(self):
        with pytest.raises(ValidationError):
            parse_kanban_update({})

    @pytest.mark.parametrize("field,value", [
        ("quantity", None),
        ("quantity", -1),
        ("part_number", "a b"),
        ("department_id", "0b7c6a53-41a2-4bde-9a4e-6a0f8a1d2e33"),
    ])
    def test_invalid_fields(self, field, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_kanban_update({field: value})
        assert exc_info.value.details[0]["field"] == field

    def test_blank_classification_defaults(self):
        assert parse_kanban_update({"classification": ""}).classification == "NORMAL"
