"""Approval engine for kanban requests.

Provides the write API of the workflow: creation, the two approval stages,
rejection and the administrative close. Every transition runs as one store
transaction; domain events go out after commit.
"""

import uuid
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from kanban.common.logger import get_logger
from kanban.db.models import ApprovalRecord, KanbanRequest
from kanban.schemas.kanban import (
    parse_batch_decision,
    parse_batch_rejection,
    parse_kanban_create,
    parse_kanban_update,
)

from ..access.policy import AccessPolicy, ReportScope
from ..access.roles import Actor, Visibility
from ..config import Settings, get_settings
from ..errors import (
    ConflictError,
    KanbanError,
    NotFoundError,
    StaleVersionError,
    UnauthorizedError,
    ValidationError,
)
from ..snapshots import KanbanSnapshot, RequestFilter
from ..timeutil import to_utc_naive, utcnow
from .machine import KanbanStateMachine
from .states import (
    INITIAL_STATE,
    PENDING_STATES,
    Decision,
    KanbanStatus,
    KanbanTransition,
    pending_stage,
)

logger = get_logger(__name__)

_DECISIONS = {
    KanbanTransition.APPROVE: Decision.APPROVED,
    KanbanTransition.REJECT: Decision.REJECTED,
}


def _jsonable(value):
    return value.isoformat() if isinstance(value, date) else value


class ApprovalEngine:
    """
    High-level service for the kanban approval workflow.

    Handles:
    - Creating requests and submitting them for department approval
    - Recording department and production control decisions
    - Closing approved requests
    - Visibility-checked reads and pending queues
    - Batch operations
    """

    def __init__(
        self,
        store,
        policy: Optional[AccessPolicy] = None,
        dispatcher=None,
        *,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the approval engine.

        Args:
            store: RequestStore holding requests and approval records
            policy: Access policy (a fresh stateless one when omitted)
            dispatcher: NotificationDispatcher receiving events after commit
            settings: Settings (the cached global ones when omitted)
            clock: Source of the current time
        """
        self.store = store
        self.policy = policy or AccessPolicy()
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()
        self.clock = clock

    def _now(self) -> datetime:
        return to_utc_naive(self.clock())

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_request(self, data, actor: Actor) -> KanbanSnapshot:
        """
        Create a request and submit it for department approval.

        Args:
            data: KanbanCreate or a mapping of its fields
            actor: Submitting actor; becomes the requester

        Returns:
            Snapshot of the request in PENDING_DEPT_APPROVAL

        Raises:
            ValidationError: If the payload is invalid
            NotFoundError: If the department does not exist
            UnauthorizedError: If the actor may not submit for the department
        """
        if actor is None:
            raise UnauthorizedError("Creating a request requires an actor")
        payload = parse_kanban_create(data)

        department_id = payload.department_id or actor.department_id
        if department_id is None:
            raise ValidationError(
                "A department is required",
                details=[{"field": "department_id", "message": "field required"}],
            )
        department = self.store.get_department(department_id)
        if department is None:
            raise NotFoundError("Department", department_id)
        if not self.policy.can_submit(actor, department.id):
            raise UnauthorizedError(
                f"Role {actor.role.value} may not submit requests for department {department.code}"
            )

        now = self._now()

        def build(session):
            row = KanbanRequest(
                id=uuid.uuid4(),
                requester_id=actor.user_id,
                requester_name=payload.requester_name or actor.user_id,
                department_id=department.id,
                part_number=payload.part_number,
                quantity=payload.quantity,
                location=payload.location,
                box=payload.box,
                classification=payload.classification,
                description=payload.description,
                production_date=payload.production_date,
                status=INITIAL_STATE.value,
                created_at=now,
                updated_at=now,
            )
            machine = KanbanStateMachine(row, policy=self.policy)
            record = machine.transition(KanbanTransition.SUBMIT, actor=actor, timestamp=now)
            row.status = machine.state.value
            session.add(row)
            return row, record

        record, snapshot = self.store.insert(build)
        logger.info(
            f"Created request {snapshot.id} ({snapshot.part_number} x{snapshot.quantity}) "
            f"for department {department.code} by {actor.user_id}"
        )

        self._emit_event("KANBAN_CREATED", {"request": snapshot.to_dict(), "actor": actor.to_dict()})
        self._emit_status_change(snapshot, record, actor)
        return snapshot

    def update_request(self, request_id, data, actor: Actor) -> KanbanSnapshot:
        """
        Edit a request before anyone has decided on it.

        Only the requester may edit, and only while the request awaits its
        department decision with no approval recorded. The department is
        fixed at creation.

        Args:
            request_id: ID of the request
            data: KanbanUpdate or a mapping of the fields to change
            actor: Editing actor

        Returns:
            Snapshot after the edit

        Raises:
            ValidationError: If the payload is empty or invalid
            NotFoundError: If the request does not exist
            UnauthorizedError: If the actor is not the requester
            ConflictError: If a decision has already been recorded
        """
        if actor is None:
            raise UnauthorizedError("Editing a request requires an actor")
        fields = parse_kanban_update(data).changes()

        def apply(row, session):
            if row.requester_id != actor.user_id:
                raise UnauthorizedError(f"Only the requester may edit request {row.id}")
            status = KanbanStatus(row.status)
            if status != KanbanStatus.PENDING_DEPT_APPROVAL or row.approvals:
                raise ConflictError(f"Request {row.id} can no longer be edited ({status.value})")

            changes = {}
            for name, value in fields.items():
                current = getattr(row, name)
                if current != value:
                    changes[name] = {"old": _jsonable(current), "new": _jsonable(value)}
                    setattr(row, name, value)
            if changes:
                row.updated_at = max(self._now(), row.updated_at)
            return changes

        changes, snapshot = self._transact(request_id, apply, "update")
        if not changes:
            return snapshot

        logger.info(f"Request {snapshot.id} edited by {actor.user_id}: {sorted(changes)}")
        self._emit_event("KANBAN_UPDATED", {
            "request": snapshot.to_dict(),
            "actor": actor.to_dict(),
            "changes": changes,
        })
        return snapshot

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def approve(self, request_id, actor: Actor) -> KanbanSnapshot:
        """
        Record the actor's approval for the request's pending stage.

        Raises:
            NotFoundError: If the request does not exist
            ConflictError: If the request is not pending, or the actor's
                stage was already decided
            UnauthorizedError: If the actor lacks authority for the stage
        """
        return self._decide(request_id, actor, KanbanTransition.APPROVE)

    def reject(self, request_id, actor: Actor, reason: str) -> KanbanSnapshot:
        """
        Reject the request at its pending stage.

        Raises:
            ValidationError: If the reason is empty or too long
            NotFoundError, ConflictError, UnauthorizedError: As for approve
        """
        return self._decide(request_id, actor, KanbanTransition.REJECT, reason)

    def close(self, request_id, actor: Actor) -> KanbanSnapshot:
        """Close an approved request (PC or ADMIN only)."""
        return self._decide(request_id, actor, KanbanTransition.CLOSE)

    def _decide(
        self,
        request_id,
        actor: Actor,
        transition: KanbanTransition,
        reason: Optional[str] = None,
    ) -> KanbanSnapshot:
        if actor is None:
            raise UnauthorizedError(f"Transition {transition.value} requires an actor")

        observed: Dict[str, KanbanStatus] = {}

        def apply(row, session):
            return self._apply_transition(row, actor, transition, reason, observed)

        record, snapshot = self._transact(request_id, apply, transition.value)

        logger.info(
            f"Request {snapshot.id}: {record['from_state']} -> {record['to_state']} "
            f"({transition.value} by {actor.user_id})"
        )

        if transition in _DECISIONS:
            kind = "KANBAN_APPROVED" if transition == KanbanTransition.APPROVE else "KANBAN_REJECTED"
            self._emit_event(kind, {
                "request": snapshot.to_dict(),
                "actor": actor.to_dict(),
                "stage": record["stage"],
                "decision": _DECISIONS[transition].value,
                "reason": record["reason"],
            })
        self._emit_status_change(snapshot, record, actor)
        return snapshot

    def _transact(self, request_id, fn, action: str):
        """Run ``fn`` in a store transaction, retrying a lost optimistic race."""
        attempts = self.settings.transition_max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self.store.transact(request_id, fn)
            except StaleVersionError:
                if attempt >= attempts:
                    raise
                logger.info(
                    f"Retrying {action} on request {request_id} "
                    f"after concurrent update (attempt {attempt + 1}/{attempts})"
                )

    def _apply_transition(
        self,
        row: KanbanRequest,
        actor: Actor,
        transition: KanbanTransition,
        reason: Optional[str],
        observed: Dict[str, KanbanStatus],
    ) -> Dict[str, Any]:
        status = KanbanStatus(row.status)
        previous = observed.get("status")
        if previous is not None and previous != status:
            raise ConflictError(
                f"Request {row.id} moved from {previous.value} to {status.value} "
                f"before {transition.value} could be applied"
            )
        observed["status"] = status

        now = max(self._now(), row.updated_at)
        machine = KanbanStateMachine(row, policy=self.policy)
        record = machine.transition(transition, actor=actor, reason=reason, timestamp=now)

        if record["stage"] is not None:
            row.approvals.append(ApprovalRecord(
                id=uuid.uuid4(),
                sequence=len(row.approvals) + 1,
                stage=record["stage"],
                approver_id=actor.user_id,
                approver_role=actor.role.value,
                approver_department_id=actor.department_id,
                decision=_DECISIONS[transition].value,
                reason=record["reason"],
                decided_at=now,
            ))

        row.status = machine.state.value
        row.updated_at = now
        return record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_request(self, request_id, actor: Optional[Actor] = None) -> KanbanSnapshot:
        """
        Get a request the actor may view.

        Raises:
            NotFoundError: If the request does not exist
            UnauthorizedError: If the actor may not view it
        """
        snapshot = self.store.get(request_id)
        if snapshot is None:
            raise NotFoundError("Kanban request", request_id)
        if actor is not None:
            self.policy.require_view(actor, snapshot)
        return snapshot

    def list_pending(self, actor: Actor, *, limit: Optional[int] = None) -> List[KanbanSnapshot]:
        """Requests whose open decision slot the actor may decide, oldest first."""
        rule = actor.rule
        statuses = frozenset(s for s in PENDING_STATES if pending_stage(s) in rule.stages)
        if not statuses or rule.act_scope == Visibility.NONE:
            return []

        department_id = actor.department_id if rule.act_scope == Visibility.DEPARTMENT else None
        if rule.act_scope == Visibility.DEPARTMENT and department_id is None:
            return []

        candidates = self.store.list_by_status(statuses, RequestFilter(department_id=department_id))
        pending = [
            snapshot for snapshot in candidates
            if self.policy.can_decide(actor, snapshot, pending_stage(snapshot.status))
        ]
        return pending[:limit] if limit is not None else pending

    def list_requests(
        self,
        actor: Optional[Actor] = None,
        *,
        statuses: Optional[Iterable[KanbanStatus]] = None,
        scope: Optional[ReportScope] = None,
        limit: Optional[int] = None,
    ) -> List[KanbanSnapshot]:
        """Requests visible to the actor, oldest first."""
        scope = self.policy.resolve_scope(actor, scope)
        request_filter = RequestFilter(
            department_id=scope.department_id,
            requester_id=scope.requester_id,
            statuses=frozenset(KanbanStatus(s) for s in statuses) if statuses is not None else None,
        )
        return self.store.list_requests(request_filter, limit=limit)

    # ------------------------------------------------------------------
    # Batch operations
    # ------------------------------------------------------------------

    def batch_approve(self, request_ids: List, actor: Actor) -> Dict[str, Any]:
        """
        Approve multiple requests, each in its own transaction.

        Returns:
            ``{"approved": [ids], "failed": [{"id", "error", "code"}]}``
        """
        batch = parse_batch_decision({"request_ids": list(request_ids or [])})
        results = {"approved": [], "failed": []}
        for request_id in self._check_batch_size(batch.request_ids):
            try:
                self.approve(request_id, actor)
                results["approved"].append(str(request_id))
            except KanbanError as e:
                results["failed"].append({"id": str(request_id), "error": e.message, "code": e.code})
        return results

    def batch_reject(self, request_ids: List, actor: Actor, reason: str) -> Dict[str, Any]:
        """
        Reject multiple requests with one reason.

        Returns:
            ``{"rejected": [ids], "failed": [{"id", "error", "code"}]}``
        """
        batch = parse_batch_rejection({"request_ids": list(request_ids or []), "reason": reason})
        results = {"rejected": [], "failed": []}
        for request_id in self._check_batch_size(batch.request_ids):
            try:
                self.reject(request_id, actor, batch.reason)
                results["rejected"].append(str(request_id))
            except KanbanError as e:
                results["failed"].append({"id": str(request_id), "error": e.message, "code": e.code})
        return results

    def _check_batch_size(self, ids: List) -> List:
        if len(ids) > self.settings.max_batch_size:
            raise ValidationError(
                f"Batch size cannot exceed {self.settings.max_batch_size}",
                details=[{"field": "request_ids", "message": f"max {self.settings.max_batch_size} items"}],
            )
        return ids

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _emit_status_change(self, snapshot: KanbanSnapshot, record: Dict[str, Any], actor: Optional[Actor]) -> None:
        self._emit_event("STATUS_CHANGE", {
            "request": snapshot.to_dict(),
            "actor": actor.to_dict() if actor else None,
            "from_status": record["from_state"],
            "to_status": snapshot.status.value,
            "transition": record["transition"],
            "timestamp": record["timestamp"].isoformat(),
        })

    def _emit_event(self, kind: str, payload: Dict[str, Any]) -> None:
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.notify(kind, payload)
        except Exception:
            logger.exception(f"Failed to dispatch {kind} for request {payload['request']['id']}")
