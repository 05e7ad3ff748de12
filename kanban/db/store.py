"""Transactional record store for kanban requests.

The store is the only component that talks to the database. Writers go
through ``insert`` and ``transact``, which run a whole read-modify-write in a
single transaction; readers get immutable snapshots.

Concurrency:
- ``transact`` holds a per-request in-process lock for the life of the
  transaction and loads the row ``FOR UPDATE`` (a no-op on SQLite).
- The request row is versioned; a writer from another process that loses the
  race surfaces as ``StaleVersionError``.
- ``query`` reads requests and their approval records with one SQL
  statement, so a snapshot never shows a status without the record that
  produced it (or the reverse).
"""

import threading
from contextlib import contextmanager
from itertools import groupby
from typing import Callable, Dict, Iterator, List, Optional, Tuple, TypeVar
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from kanban.common.logger import get_logger
from kanban.core.access.roles import ApprovalStage, Role
from kanban.core.approval.states import Decision, KanbanStatus
from kanban.core.errors import NotFoundError, StaleVersionError
from kanban.core.snapshots import (
    ApprovalSnapshot,
    DepartmentSnapshot,
    KanbanSnapshot,
    RequestFilter,
)
from kanban.core.timeutil import DateRange
from kanban.db.models import ApprovalRecord, Department, KanbanRequest

logger = get_logger(__name__)

T = TypeVar("T")


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


def _as_uuid(value) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def _filter_clauses(request_filter: RequestFilter) -> list:
    clauses = []
    if request_filter.department_id is not None:
        clauses.append(KanbanRequest.department_id == _as_uuid(request_filter.department_id))
    if request_filter.requester_id is not None:
        clauses.append(KanbanRequest.requester_id == request_filter.requester_id)
    if request_filter.statuses is not None:
        clauses.append(KanbanRequest.status.in_([s.value for s in request_filter.statuses]))
    return clauses


def department_snapshot(row: Department) -> DepartmentSnapshot:
    return DepartmentSnapshot(
        id=row.id,
        code=row.code,
        name=row.name,
        is_production_control=bool(row.is_production_control),
    )


def approval_snapshot(row: ApprovalRecord) -> ApprovalSnapshot:
    return ApprovalSnapshot(
        id=row.id,
        sequence=row.sequence,
        stage=ApprovalStage(row.stage),
        approver_id=row.approver_id,
        approver_role=Role(row.approver_role),
        approver_department_id=row.approver_department_id,
        decision=Decision(row.decision),
        decided_at=row.decided_at,
        reason=row.reason,
    )


def request_snapshot(row: KanbanRequest, approvals: Optional[List[ApprovalRecord]] = None) -> KanbanSnapshot:
    """Freeze an ORM row (with its approval records) into a snapshot."""
    records = row.approvals if approvals is None else approvals
    return KanbanSnapshot(
        id=row.id,
        requester_id=row.requester_id,
        requester_name=row.requester_name,
        department_id=row.department_id,
        part_number=row.part_number,
        quantity=row.quantity,
        location=row.location,
        box=row.box or "",
        classification=row.classification or "",
        description=row.description or "",
        production_date=row.production_date,
        status=KanbanStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
        version=row.version,
        approvals=tuple(
            approval_snapshot(r) for r in sorted(records, key=lambda r: r.sequence)
        ),
    )


class RequestStore:
    """
    SQLAlchemy-backed store for departments, requests and approval records.

    Handles:
    - Atomic creation and read-modify-write of requests
    - Per-request serialization of writers
    - Lazy, scoped, point-in-time reads for reporting
    """

    def __init__(self, session_factory: sessionmaker):
        """
        Initialize the store.

        Args:
            session_factory: Factory producing database sessions
        """
        self._session_factory = session_factory
        self._locks: Dict[UUID, _LockEntry] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def _request_lock(self, request_id: UUID) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.get(request_id)
            if entry is None:
                entry = self._locks[request_id] = _LockEntry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    self._locks.pop(request_id, None)

    # ------------------------------------------------------------------
    # Departments
    # ------------------------------------------------------------------

    def get_department(self, department_id) -> Optional[DepartmentSnapshot]:
        try:
            key = _as_uuid(department_id)
        except (TypeError, ValueError):
            return None
        with self._session_factory() as session:
            row = session.get(Department, key)
            return department_snapshot(row) if row else None

    def list_departments(self) -> List[DepartmentSnapshot]:
        with self._session_factory() as session:
            rows = session.execute(select(Department).order_by(Department.code)).scalars().all()
            return [department_snapshot(row) for row in rows]

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def get(self, request_id) -> Optional[KanbanSnapshot]:
        """Get a request snapshot by ID."""
        try:
            key = _as_uuid(request_id)
        except (TypeError, ValueError):
            return None
        with self._session_factory() as session:
            row = session.execute(
                select(KanbanRequest)
                .where(KanbanRequest.id == key)
                .options(joinedload(KanbanRequest.approvals))
            ).unique().scalar_one_or_none()
            return request_snapshot(row) if row else None

    def insert(self, fn: Callable[[Session], Tuple[KanbanRequest, T]]) -> Tuple[T, KanbanSnapshot]:
        """
        Create a request atomically.

        Args:
            fn: Builds and adds the new row; returns ``(row, result)``

        Returns:
            ``(result, snapshot)`` once committed
        """
        with self.session_scope() as session:
            row, result = fn(session)
            session.flush()
            snapshot = request_snapshot(row)
        return result, snapshot

    def transact(self, request_id, fn: Callable[[KanbanRequest, Session], T]) -> Tuple[T, KanbanSnapshot]:
        """
        Run an atomic read-modify-write on one request.

        Args:
            request_id: ID of the request to lock and load
            fn: Mutates the loaded row; its return value is passed through

        Returns:
            ``(result, snapshot)`` once committed

        Raises:
            NotFoundError: If the request does not exist
            StaleVersionError: If another writer committed first
        """
        try:
            key = _as_uuid(request_id)
        except (TypeError, ValueError):
            raise NotFoundError("Kanban request", request_id)

        with self._request_lock(key):
            session = self._session_factory()
            try:
                row = session.execute(
                    select(KanbanRequest)
                    .where(KanbanRequest.id == key)
                    .options(selectinload(KanbanRequest.approvals))
                    .with_for_update(of=KanbanRequest)
                ).scalar_one_or_none()
                if row is None:
                    raise NotFoundError("Kanban request", request_id)

                result = fn(row, session)
                session.flush()
                snapshot = request_snapshot(row)
                session.commit()
                return result, snapshot
            except (StaleDataError, IntegrityError) as exc:
                session.rollback()
                logger.info(f"Lost concurrent write on request {key}: {exc.__class__.__name__}")
                raise StaleVersionError(
                    f"Request {key} was modified concurrently"
                ) from exc
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def query(
        self,
        request_filter: Optional[RequestFilter] = None,
        date_range: Optional[DateRange] = None,
        *,
        batch_size: int = 500,
    ) -> Iterator[KanbanSnapshot]:
        """
        Lazily iterate request snapshots, oldest first.

        Requests and approval records come from a single statement, so the
        iteration reflects one point in time. Closing the iterator early
        releases the session.

        Args:
            request_filter: Department/requester/status restriction
            date_range: ``[start, end)`` window on ``created_at``
            batch_size: Rows fetched per round trip
        """
        clauses = _filter_clauses(request_filter) if request_filter else []
        if date_range is not None:
            clauses.append(KanbanRequest.created_at >= date_range.start)
            clauses.append(KanbanRequest.created_at < date_range.end)

        stmt = (
            select(KanbanRequest, ApprovalRecord)
            .outerjoin(ApprovalRecord, ApprovalRecord.request_id == KanbanRequest.id)
            .order_by(KanbanRequest.created_at, KanbanRequest.id, ApprovalRecord.sequence)
            .execution_options(yield_per=batch_size)
        )
        if clauses:
            stmt = stmt.where(and_(*clauses))

        session = self._session_factory()
        try:
            result = session.execute(stmt)
            for _, rows in groupby(result, key=lambda r: r[0].id):
                rows = list(rows)
                request = rows[0][0]
                records = [record for _, record in rows if record is not None]
                yield request_snapshot(request, records)
        finally:
            session.close()

    def list_requests(
        self,
        request_filter: Optional[RequestFilter] = None,
        date_range: Optional[DateRange] = None,
        *,
        limit: Optional[int] = None,
    ) -> List[KanbanSnapshot]:
        """Materialized variant of ``query``."""
        snapshots = []
        iterator = self.query(request_filter, date_range)
        try:
            for snapshot in iterator:
                snapshots.append(snapshot)
                if limit is not None and len(snapshots) >= limit:
                    break
        finally:
            iterator.close()
        return snapshots

    def list_by_status(
        self,
        statuses,
        request_filter: Optional[RequestFilter] = None,
        *,
        limit: Optional[int] = None,
    ) -> List[KanbanSnapshot]:
        """List requests currently in any of ``statuses``, oldest first."""
        base = request_filter or RequestFilter()
        narrowed = RequestFilter(
            department_id=base.department_id,
            requester_id=base.requester_id,
            statuses=frozenset(statuses),
        )
        return self.list_requests(narrowed, limit=limit)
