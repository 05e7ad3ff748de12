"""Kanban request states and transitions.

State Machine Diagram:

    ┌─────────┐
    │ CREATED │ ← Initial state, advanced on submit
    └────┬────┘
         │ submit
    ┌────▼──────────────────┐
    │ PENDING_DEPT_APPROVAL │───────────┐
    └────┬──────────────────┘           │ reject
         │ approve (dept SUPERVISOR/MANAGER)
    ┌────▼──────────────────┐     ┌─────▼────┐
    │ PENDING_PC_APPROVAL   │────►│ REJECTED │
    └────┬──────────────────┘     └──────────┘
         │ approve (PC)     reject
    ┌────▼─────┐
    │ APPROVED │
    └────┬─────┘
         │ close (PC/ADMIN)
    ┌────▼───┐
    │ CLOSED │
    └────────┘
"""

from enum import Enum
from typing import Dict, FrozenSet, NamedTuple, Optional, Set, Tuple

from ..access.roles import ApprovalStage


class KanbanStatus(str, Enum):
    """States of a kanban request."""

    CREATED = "CREATED"
    PENDING_DEPT_APPROVAL = "PENDING_DEPT_APPROVAL"
    PENDING_PC_APPROVAL = "PENDING_PC_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CLOSED = "CLOSED"


class KanbanTransition(str, Enum):
    """Actions that trigger state transitions."""

    SUBMIT = "submit"    # CREATED → PENDING_DEPT_APPROVAL (automatic)
    APPROVE = "approve"  # pending → next state in the chain
    REJECT = "reject"    # pending → REJECTED
    CLOSE = "close"      # APPROVED → CLOSED


class Decision(str, Enum):
    """Outcome recorded in an approval record."""

    APPROVED = "approved"
    REJECTED = "rejected"


class TransitionRule(NamedTuple):
    """Defines a valid state transition."""
    from_state: KanbanStatus
    to_state: KanbanStatus
    transition: KanbanTransition
    stage: Optional[ApprovalStage] = None
    requires_reason: bool = False


TRANSITION_RULES: list[TransitionRule] = [
    TransitionRule(KanbanStatus.CREATED, KanbanStatus.PENDING_DEPT_APPROVAL, KanbanTransition.SUBMIT),

    # Department sign-off
    TransitionRule(KanbanStatus.PENDING_DEPT_APPROVAL, KanbanStatus.PENDING_PC_APPROVAL,
                   KanbanTransition.APPROVE, ApprovalStage.DEPARTMENT),
    TransitionRule(KanbanStatus.PENDING_DEPT_APPROVAL, KanbanStatus.REJECTED,
                   KanbanTransition.REJECT, ApprovalStage.DEPARTMENT, requires_reason=True),

    # Production control sign-off
    TransitionRule(KanbanStatus.PENDING_PC_APPROVAL, KanbanStatus.APPROVED,
                   KanbanTransition.APPROVE, ApprovalStage.PRODUCTION_CONTROL),
    TransitionRule(KanbanStatus.PENDING_PC_APPROVAL, KanbanStatus.REJECTED,
                   KanbanTransition.REJECT, ApprovalStage.PRODUCTION_CONTROL, requires_reason=True),

    # Administrative
    TransitionRule(KanbanStatus.APPROVED, KanbanStatus.CLOSED, KanbanTransition.CLOSE),
]

VALID_TRANSITIONS: Dict[KanbanStatus, Set[KanbanTransition]] = {}
TRANSITION_TARGETS: Dict[Tuple[KanbanStatus, KanbanTransition], TransitionRule] = {}

for rule in TRANSITION_RULES:
    VALID_TRANSITIONS.setdefault(rule.from_state, set()).add(rule.transition)
    TRANSITION_TARGETS[(rule.from_state, rule.transition)] = rule

# Every (from, to) edge the machine can ever produce
ALLOWED_EDGES: FrozenSet[Tuple[KanbanStatus, KanbanStatus]] = frozenset(
    (rule.from_state, rule.to_state) for rule in TRANSITION_RULES
)

INITIAL_STATE = KanbanStatus.CREATED

# Decided states; APPROVED still admits the administrative close
TERMINAL_STATES: FrozenSet[KanbanStatus] = frozenset([
    KanbanStatus.APPROVED,
    KanbanStatus.REJECTED,
    KanbanStatus.CLOSED,
])

PENDING_STATES: FrozenSet[KanbanStatus] = frozenset([
    KanbanStatus.PENDING_DEPT_APPROVAL,
    KanbanStatus.PENDING_PC_APPROVAL,
])

APPROVED_STATES: FrozenSet[KanbanStatus] = frozenset([
    KanbanStatus.APPROVED,
    KanbanStatus.CLOSED,
])

REJECTED_STATES: FrozenSet[KanbanStatus] = frozenset([
    KanbanStatus.REJECTED,
])

# The decision slot open in each pending state
PENDING_STAGE: Dict[KanbanStatus, ApprovalStage] = {
    KanbanStatus.PENDING_DEPT_APPROVAL: ApprovalStage.DEPARTMENT,
    KanbanStatus.PENDING_PC_APPROVAL: ApprovalStage.PRODUCTION_CONTROL,
}

STAGE_ORDER: Tuple[ApprovalStage, ...] = (
    ApprovalStage.DEPARTMENT,
    ApprovalStage.PRODUCTION_CONTROL,
)


def can_transition(from_state: KanbanStatus, transition: KanbanTransition) -> bool:
    """Check if a transition is valid from the given state."""
    return transition in VALID_TRANSITIONS.get(from_state, set())


def get_transition_rule(from_state: KanbanStatus, transition: KanbanTransition) -> Optional[TransitionRule]:
    """Get the transition rule for a state/action combination."""
    return TRANSITION_TARGETS.get((from_state, transition))


def get_target_state(from_state: KanbanStatus, transition: KanbanTransition) -> Optional[KanbanStatus]:
    """Get the target state for a transition."""
    rule = get_transition_rule(from_state, transition)
    return rule.to_state if rule else None


def pending_stage(state: KanbanStatus) -> Optional[ApprovalStage]:
    """Decision slot open in ``state``, if any."""
    return PENDING_STAGE.get(state)


def stages_before(stage: ApprovalStage) -> Tuple[ApprovalStage, ...]:
    """Stages decided before ``stage`` is reached."""
    return STAGE_ORDER[:STAGE_ORDER.index(stage)]
