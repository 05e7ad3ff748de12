"""Report aggregation over kanban request history.

Each report reads one point-in-time snapshot from the store, scoped by the
access policy and windowed on ``created_at``. Aggregation is read-only and
checks its deadline and cancel event between rows.
"""

import threading
import time
from collections import Counter, defaultdict
from contextlib import closing
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from kanban.common.logger import get_logger

from ..access.policy import AccessPolicy, ReportScope
from ..access.roles import Actor
from ..approval.states import (
    APPROVED_STATES,
    PENDING_STATES,
    REJECTED_STATES,
    STAGE_ORDER,
    KanbanStatus,
)
from ..config import Settings, get_settings
from ..errors import NotFoundError, ReportTimeoutError
from ..snapshots import KanbanSnapshot, RequestFilter
from ..timeutil import DateRange, utcnow
from .query import ReportQuery, ReportResult, ReportType

logger = get_logger(__name__)

Moment = Union[datetime, date]

DECIDED_STATES = APPROVED_STATES | REJECTED_STATES


def _rate(part: int, whole: int) -> float:
    return round(part / whole, 4) if whole else 0.0


def _decision_counts(approved: int, rejected: int) -> Dict[str, Any]:
    total = approved + rejected
    return {"approved": approved, "rejected": rejected, "total": total, "approval_rate": _rate(approved, total)}


def _approver_row(entry: Dict[str, Any]) -> Dict[str, Any]:
    responses = entry["response_seconds"]
    row = {"approver_id": entry["approver_id"], "role": entry["role"]}
    row.update(_decision_counts(entry["approved"], entry["rejected"]))
    row["mean_response_seconds"] = round(sum(responses) / len(responses), 3) if responses else 0.0
    return row


class _Deadline:
    """Raises ReportTimeoutError once the time budget is spent or cancel is set."""

    def __init__(self, timeout: Optional[float], cancel: Optional[threading.Event]):
        self.timeout = timeout
        self.cancel = cancel
        self.expires_at = time.monotonic() + timeout if timeout else None

    def check(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise ReportTimeoutError("Report generation was cancelled")
        if self.expires_at is not None and time.monotonic() > self.expires_at:
            raise ReportTimeoutError(f"Report generation exceeded {self.timeout} seconds")


class ReportAggregator:
    """
    Computes scoped summary, efficiency and activity reports.

    Handles:
    - Scope resolution through the access policy
    - Reporting-timezone normalization of the window
    - Deadline and cancellation checks during aggregation
    """

    def __init__(
        self,
        store,
        policy: Optional[AccessPolicy] = None,
        *,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.policy = policy or AccessPolicy()
        self.settings = settings or get_settings()
        self.clock = clock

    # ------------------------------------------------------------------
    # Public reports
    # ------------------------------------------------------------------

    def monthly_report(
        self,
        year: int,
        month: int,
        scope: Optional[ReportScope] = None,
        actor: Optional[Actor] = None,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ReportResult:
        """Summary for a calendar month in the reporting timezone."""
        date_range = DateRange.for_month(year, month, self.settings.report_tz)
        query = ReportQuery(ReportType.MONTHLY, date_range, scope or ReportScope(), actor)
        return self.run(query, timeout=timeout, cancel=cancel)

    def custom_range_report(
        self,
        start: Moment,
        end: Moment,
        scope: Optional[ReportScope] = None,
        actor: Optional[Actor] = None,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ReportResult:
        """Summary for ``[start, end)``."""
        query = ReportQuery(ReportType.CUSTOM_RANGE, self._range(start, end), scope or ReportScope(), actor)
        return self.run(query, timeout=timeout, cancel=cancel)

    def department_report(
        self,
        department_id,
        start: Moment,
        end: Moment,
        actor: Optional[Actor] = None,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ReportResult:
        """
        Summary restricted to one department.

        Raises:
            NotFoundError: If the department does not exist
        """
        department = self.store.get_department(department_id)
        if department is None:
            raise NotFoundError("Department", department_id)
        query = ReportQuery(
            ReportType.DEPARTMENT,
            self._range(start, end),
            ReportScope(department_id=department.id),
            actor,
        )
        return self.run(query, timeout=timeout, cancel=cancel)

    def approval_efficiency_report(
        self,
        start: Moment,
        end: Moment,
        scope: Optional[ReportScope] = None,
        actor: Optional[Actor] = None,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ReportResult:
        """Decision latency and outcome rates for decided requests."""
        query = ReportQuery(
            ReportType.APPROVAL_EFFICIENCY, self._range(start, end), scope or ReportScope(), actor
        )
        return self.run(query, timeout=timeout, cancel=cancel)

    def requester_activity_report(
        self,
        start: Moment,
        end: Moment,
        scope: Optional[ReportScope] = None,
        actor: Optional[Actor] = None,
        limit: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ReportResult:
        """Per-requester counts, most active first."""
        query = ReportQuery(
            ReportType.REQUESTER_ACTIVITY,
            self._range(start, end),
            scope or ReportScope(),
            actor,
            limit=limit if limit is not None else self.settings.requester_report_limit,
        )
        return self.run(query, timeout=timeout, cancel=cancel)

    def run(
        self,
        query: ReportQuery,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ReportResult:
        """
        Compute the report a query describes.

        Args:
            query: Report type, window, scope and actor
            timeout: Seconds allowed (the configured default when omitted)
            cancel: Event that aborts the computation when set

        Raises:
            UnauthorizedError: If the scope is outside the actor's reach
            ReportTimeoutError: If cancelled or out of time
        """
        scope = self.policy.resolve_scope(query.actor, query.scope)
        resolved = ReportQuery(query.report_type, query.date_range, scope, query.actor, query.limit)
        deadline = _Deadline(
            timeout if timeout is not None else self.settings.report_timeout_seconds,
            cancel,
        )
        deadline.check()

        builder = self._BUILDERS[resolved.report_type]
        started = time.monotonic()
        with closing(self._snapshots(resolved)) as snapshots:
            data = builder(self, self._checked(snapshots, deadline), resolved)

        logger.info(
            f"Generated {resolved.report_type.value} report for {scope.to_dict()} "
            f"{resolved.date_range.start.isoformat()}..{resolved.date_range.end.isoformat()} "
            f"in {time.monotonic() - started:.3f}s"
        )
        return ReportResult(
            report_type=resolved.report_type,
            query=resolved,
            data=data,
            generated_at=self.clock(),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _range(self, start: Moment, end: Moment) -> DateRange:
        return DateRange.between(start, end, self.settings.report_tz)

    def _snapshots(self, query: ReportQuery) -> Iterator[KanbanSnapshot]:
        request_filter = RequestFilter(
            department_id=query.scope.department_id,
            requester_id=query.scope.requester_id,
        )
        return self.store.query(request_filter, query.date_range)

    @staticmethod
    def _checked(snapshots: Iterator[KanbanSnapshot], deadline: _Deadline) -> Iterator[KanbanSnapshot]:
        for snapshot in snapshots:
            deadline.check()
            yield snapshot

    def _summary(self, snapshots, query: ReportQuery) -> Dict[str, Any]:
        departments = {str(d.id): d for d in self.store.list_departments()}

        by_status = Counter()
        by_classification = Counter()
        parts: Dict[str, Dict[str, int]] = defaultdict(lambda: {"requests": 0, "quantity": 0})
        per_department: Dict[str, Counter] = defaultdict(Counter)
        total = total_quantity = 0

        for snapshot in snapshots:
            total += 1
            total_quantity += snapshot.quantity
            by_status[snapshot.status] += 1
            by_classification[snapshot.classification] += 1

            part = parts[snapshot.part_number]
            part["requests"] += 1
            part["quantity"] += snapshot.quantity

            counts = per_department[str(snapshot.department_id)]
            counts["requests"] += 1
            counts["quantity"] += snapshot.quantity
            counts[self._outcome(snapshot.status)] += 1

        approved = sum(by_status[s] for s in APPROVED_STATES)
        rejected = sum(by_status[s] for s in REJECTED_STATES)
        pending = sum(by_status[s] for s in PENDING_STATES)

        department_rows = []
        for department_id, counts in per_department.items():
            department = departments.get(department_id)
            department_rows.append({
                "department_id": department_id,
                "code": department.code if department else None,
                "name": department.name if department else None,
                "requests": counts["requests"],
                "quantity": counts["quantity"],
                "approved": counts["approved"],
                "rejected": counts["rejected"],
                "pending": counts["pending"],
            })
        department_rows.sort(key=lambda row: (row["code"] or "", row["department_id"]))

        part_rows = [
            {"part_number": number, **values} for number, values in parts.items()
        ]
        part_rows.sort(key=lambda row: (-row["quantity"], row["part_number"]))

        return {
            "period": query.date_range.to_dict(),
            "scope": query.scope.to_dict(),
            "total": total,
            "by_status": {status.value: by_status[status] for status in KanbanStatus},
            "approved": approved,
            "rejected": rejected,
            "pending": pending,
            "approval_rate": _rate(approved, total),
            "rejection_rate": _rate(rejected, total),
            "total_quantity": total_quantity,
            "by_part": part_rows,
            "by_department": department_rows,
            "by_classification": dict(sorted(by_classification.items())),
        }

    def _efficiency(self, snapshots, query: ReportQuery) -> Dict[str, Any]:
        latencies: List[float] = []
        approved = rejected = pending = 0
        by_stage = {stage.value: {"approved": 0, "rejected": 0} for stage in STAGE_ORDER}
        by_role: Dict[str, Counter] = defaultdict(Counter)
        approvers: Dict[str, Dict[str, Any]] = {}

        for snapshot in snapshots:
            # Each slot opens when the previous one is decided
            opened = snapshot.created_at
            for record in snapshot.approvals:
                decision = record.decision.value
                by_stage[record.stage.value][decision] += 1
                by_role[record.approver_role.value][decision] += 1

                approver = approvers.get(record.approver_id)
                if approver is None:
                    approver = approvers[record.approver_id] = {
                        "approver_id": record.approver_id,
                        "role": record.approver_role.value,
                        "approved": 0,
                        "rejected": 0,
                        "response_seconds": [],
                    }
                approver[decision] += 1
                approver["response_seconds"].append(max((record.decided_at - opened).total_seconds(), 0.0))
                opened = record.decided_at

            if snapshot.status in PENDING_STATES:
                pending += 1
            if snapshot.status not in DECIDED_STATES:
                continue

            if snapshot.status in APPROVED_STATES:
                approved += 1
            else:
                rejected += 1

            final = snapshot.final_decision
            if final is None:
                logger.warning(f"Decided request {snapshot.id} has no decision record")
                continue
            latencies.append((final.decided_at - snapshot.created_at).total_seconds())

        latency = {"count": len(latencies), "mean": 0.0, "min": 0.0, "max": 0.0}
        if latencies:
            latency.update(
                mean=round(sum(latencies) / len(latencies), 3),
                min=min(latencies),
                max=max(latencies),
            )

        return {
            "period": query.date_range.to_dict(),
            "scope": query.scope.to_dict(),
            "decided": approved + rejected,
            "approved": approved,
            "rejected": rejected,
            "pending": pending,
            "rejection_rate": _rate(rejected, approved + rejected),
            "latency_seconds": latency,
            "by_stage": by_stage,
            "by_role": {
                role: _decision_counts(counts["approved"], counts["rejected"])
                for role, counts in sorted(by_role.items())
            },
            "by_approver": [
                _approver_row(approvers[approver_id]) for approver_id in sorted(approvers)
            ],
        }

    def _activity(self, snapshots, query: ReportQuery) -> Dict[str, Any]:
        requesters: Dict[str, Dict[str, Any]] = {}

        for snapshot in snapshots:
            entry = requesters.get(snapshot.requester_id)
            if entry is None:
                entry = requesters[snapshot.requester_id] = {
                    "requester_id": snapshot.requester_id,
                    "requester_name": snapshot.requester_name,
                    "created": 0,
                    "approved": 0,
                    "rejected": 0,
                    "pending": 0,
                    "quantity": 0,
                }
            # Snapshots arrive oldest first; keep the latest display name
            entry["requester_name"] = snapshot.requester_name
            entry["created"] += 1
            entry["quantity"] += snapshot.quantity
            outcome = self._outcome(snapshot.status)
            if outcome in ("approved", "rejected", "pending"):
                entry[outcome] += 1

        rows = sorted(requesters.values(), key=lambda row: (-row["created"], row["requester_id"]))
        for row in rows:
            row["approval_rate"] = _rate(row["approved"], row["created"])
        if query.limit is not None:
            rows = rows[:query.limit]

        return {
            "period": query.date_range.to_dict(),
            "scope": query.scope.to_dict(),
            "total_requesters": len(requesters),
            "requesters": rows,
        }

    @staticmethod
    def _outcome(status: KanbanStatus) -> str:
        if status in APPROVED_STATES:
            return "approved"
        if status in REJECTED_STATES:
            return "rejected"
        if status in PENDING_STATES:
            return "pending"
        return "created"

    _BUILDERS = {
        ReportType.MONTHLY: _summary,
        ReportType.CUSTOM_RANGE: _summary,
        ReportType.DEPARTMENT: _summary,
        ReportType.APPROVAL_EFFICIENCY: _efficiency,
        ReportType.REQUESTER_ACTIVITY: _activity,
    }
