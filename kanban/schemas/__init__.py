from .kanban import (
    BatchDecision,
    BatchRejection,
    KanbanCreate,
    KanbanUpdate,
    parse_batch_decision,
    parse_batch_rejection,
    parse_kanban_create,
    parse_kanban_update,
)

__all__ = [
    "BatchDecision",
    "BatchRejection",
    "KanbanCreate",
    "KanbanUpdate",
    "parse_batch_decision",
    "parse_batch_rejection",
    "parse_kanban_create",
    "parse_kanban_update",
]
