"""Audit trail for kanban workflow events."""

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from kanban.common.logger import get_logger
from kanban.db.models import AuditLog, AuditSeverity

from .notifications import DomainEvent, EventKind, EventSubscriber

logger = get_logger(__name__)

RESOURCE_TYPE = "kanban_request"

_SEVERITY = {
    EventKind.KANBAN_REJECTED: AuditSeverity.WARNING,
}


class AuditLogSubscriber(EventSubscriber):
    """Appends one audit log row per event, in its own transaction."""

    name = "audit"

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def handle(self, event: DomainEvent) -> None:
        payload = event.payload
        old_values = new_values = None
        if event.kind == EventKind.STATUS_CHANGE:
            old_values = {"status": payload.get("from_status")}
            new_values = {"status": payload.get("to_status")}
        elif event.kind == EventKind.KANBAN_UPDATED:
            changes = payload.get("changes") or {}
            old_values = {name: change["old"] for name, change in changes.items()}
            new_values = {name: change["new"] for name, change in changes.items()}

        entry = AuditLog.create_entry(
            action=event.kind.value,
            resource_type=RESOURCE_TYPE,
            user_id=event.actor_id,
            resource_id=UUID(event.request_id) if event.request_id else None,
            old_values=old_values,
            new_values=new_values,
            details={"event_id": str(event.id), **payload},
            severity=_SEVERITY.get(event.kind, AuditSeverity.INFO),
        )
        entry.created_at = event.occurred_at

        with self._session_factory() as session:
            session.add(entry)
            session.commit()


def list_audit_entries(session_factory: sessionmaker, resource_id: Optional[UUID] = None, limit: int = 100):
    """Audit rows, oldest first, optionally for one request."""
    stmt = select(AuditLog).order_by(AuditLog.created_at, AuditLog.id).limit(limit)
    if resource_id is not None:
        stmt = stmt.where(AuditLog.resource_id == resource_id)
    with session_factory() as session:
        return list(session.execute(stmt).scalars().all())
