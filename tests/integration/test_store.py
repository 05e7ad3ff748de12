"""Integration tests for the request store."""

from datetime import datetime
from uuid import uuid4

import pytest
from sqlalchemy import select

from kanban.core.approval.states import KanbanStatus
from kanban.core.errors import NotFoundError
from kanban.core.snapshots import RequestFilter
from kanban.core.timeutil import DateRange
from kanban.db.models import ApprovalRecord

from tests.factories import approve_through, create_request

pytestmark = pytest.mark.integration


class TestReads:
    def test_get_unknown(self, context):
        assert context.store.get(uuid4()) is None
        assert context.store.get("not-a-uuid") is None

    def test_get_includes_approvals(self, context, engine, actors):
        request = create_request(engine, actors["requester"])
        approve_through(engine, request.id, actors["supervisor"], actors["pc"])

        snapshot = context.store.get(request.id)
        assert [a.sequence for a in snapshot.approvals] == [1, 2]
        assert snapshot.final_decision.approver_id == "pc-1"

    def test_query_groups_records_per_request(self, context, engine, actors, clock):
        first = create_request(engine, actors["requester"])
        clock.advance(minutes=1)
        second = create_request(engine, actors["requester2"])
        clock.advance(minutes=1)
        approve_through(engine, first.id, actors["supervisor"], actors["pc"])
        engine.reject(second.id, actors["manager"], "duplicate")

        snapshots = list(context.store.query())
        assert [s.id for s in snapshots] == [first.id, second.id]
        assert len(snapshots[0].approvals) == 2
        assert len(snapshots[1].approvals) == 1

    def test_query_filters(self, context, engine, actors, departments, clock):
        qc = create_request(engine, actors["requester"])
        clock.advance(days=40)
        assy = create_request(engine, actors["assy_requester"])

        by_department = context.store.list_requests(RequestFilter(department_id=departments["ASSY"].id))
        assert [s.id for s in by_department] == [assy.id]

        by_requester = context.store.list_requests(RequestFilter(requester_id="req-qc-1"))
        assert [s.id for s in by_requester] == [qc.id]

        window = DateRange.between(datetime(2024, 3, 1), datetime(2024, 4, 1))
        assert [s.id for s in context.store.list_requests(date_range=window)] == [qc.id]

    def test_list_by_status(self, context, engine, actors):
        pending = create_request(engine, actors["requester"])
        moved = create_request(engine, actors["requester"])
        engine.approve(moved.id, actors["supervisor"])

        listed = context.store.list_by_status([KanbanStatus.PENDING_PC_APPROVAL])
        assert [s.id for s in listed] == [moved.id]
        assert context.store.list_by_status([KanbanStatus.PENDING_DEPT_APPROVAL], limit=1)[0].id == pending.id

    def test_closing_query_early(self, context, engine, actors):
        for _ in range(3):
            create_request(engine, actors["requester"])
        iterator = context.store.query(batch_size=1)
        next(iterator)
        iterator.close()
        assert len(context.store.list_requests(limit=2)) == 2


class TestWrites:
    def test_transact_unknown_request(self, context):
        with pytest.raises(NotFoundError):
            context.store.transact(uuid4(), lambda row, session: None)
        with pytest.raises(NotFoundError):
            context.store.transact("bogus", lambda row, session: None)

    def test_version_increments(self, engine, actors):
        request = create_request(engine, actors["requester"])
        after_department = engine.approve(request.id, actors["supervisor"])
        after_pc = engine.approve(request.id, actors["pc"])
        assert request.version < after_department.version < after_pc.version

    def test_failed_write_rolls_back(self, context, engine, actors):
        request = create_request(engine, actors["requester"])

        def mutate_then_fail(row, session):
            row.quantity = 999
            raise ValueError("boom")

        with pytest.raises(ValueError):
            context.store.transact(request.id, mutate_then_fail)
        assert context.store.get(request.id).quantity == request.quantity

    def test_lock_map_is_released(self, context, engine, actors):
        request = create_request(engine, actors["requester"])
        engine.approve(request.id, actors["supervisor"])
        assert context.store._locks == {}

    def test_approval_records_are_immutable(self, context, engine, actors):
        request = create_request(engine, actors["requester"])
        engine.approve(request.id, actors["supervisor"])

        with context.store.session_scope() as session:
            record = session.execute(
                select(ApprovalRecord).where(ApprovalRecord.request_id == request.id)
            ).scalar_one()
            record.reason = "rewritten"
            with pytest.raises(RuntimeError, match="immutable"):
                session.flush()
            session.rollback()

        assert context.store.get(request.id).approvals[0].reason is None
