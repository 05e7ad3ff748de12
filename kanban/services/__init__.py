"""Services reacting to kanban workflow events."""

from .audit import AuditLogSubscriber, list_audit_entries
from .notifications import (
    DomainEvent,
    EventKind,
    EventSubscriber,
    LoggingSubscriber,
    NotificationDispatcher,
    WebhookSubscriber,
)

__all__ = [
    "AuditLogSubscriber",
    "DomainEvent",
    "EventKind",
    "EventSubscriber",
    "LoggingSubscriber",
    "NotificationDispatcher",
    "WebhookSubscriber",
    "list_audit_entries",
]
