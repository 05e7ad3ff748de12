"""Approval workflow for kanban requests.

Implements the request state machine and its rule table. The persistent
engine lives in ``kanban.core.approval.engine``.
"""

from .machine import KanbanStateMachine, TransitionError
from .states import (
    Decision,
    KanbanStatus,
    KanbanTransition,
    TRANSITION_RULES,
    VALID_TRANSITIONS,
)

__all__ = [
    "Decision",
    "KanbanStateMachine",
    "KanbanStatus",
    "KanbanTransition",
    "TRANSITION_RULES",
    "TransitionError",
    "VALID_TRANSITIONS",
]
