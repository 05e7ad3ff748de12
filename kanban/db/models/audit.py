"""Audit log model.

Rows are insert-only: the audit subscriber appends one entry per domain
event and nothing in the code base updates or deletes them.
"""

import uuid
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, DateTime, String, Uuid

from kanban.core.timeutil import utcnow
from kanban.db.base import Base


class AuditSeverity(str, Enum):
    """Severity levels for audit log entries."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditLog(Base):
    """Immutable audit log entry."""
    __tablename__ = "audit_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Actor information
    user_id = Column(String(100), nullable=True, index=True)

    # Action details
    action = Column(String(100), nullable=False, index=True)
    resource_type = Column(String(100), nullable=False, index=True)
    resource_id = Column(Uuid(as_uuid=True), nullable=True, index=True)

    # Change tracking
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    details = Column(JSON, nullable=True)

    severity = Column(String(20), nullable=False, default="info", index=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} on {self.resource_type} by user {self.user_id}>"

    @classmethod
    def create_entry(
        cls,
        action: str,
        resource_type: str,
        *,
        user_id: Optional[str] = None,
        resource_id: Optional[uuid.UUID] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: AuditSeverity = AuditSeverity.INFO,
    ) -> "AuditLog":
        """
        Factory method to create a new audit log entry.

        Args:
            action: Action performed (the domain event kind)
            resource_type: Type of resource (e.g. 'kanban_request')
            user_id: ID of the acting user (None for system actions)
            resource_id: ID of affected resource
            old_values: Previous values
            new_values: New values
            details: Additional context
            severity: Log severity level
        """
        return cls(
            action=action,
            resource_type=resource_type,
            user_id=user_id,
            resource_id=resource_id,
            old_values=old_values,
            new_values=new_values,
            details=details,
            severity=severity.value if isinstance(severity, AuditSeverity) else severity,
        )
