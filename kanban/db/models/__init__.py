"""Database models for kanban approvals."""

from kanban.db.models.department import Department
from kanban.db.models.kanban import KanbanRequest, ApprovalRecord
from kanban.db.models.audit import AuditLog, AuditSeverity

__all__ = [
    "Department",
    "KanbanRequest",
    "ApprovalRecord",
    "AuditLog",
    "AuditSeverity",
]
