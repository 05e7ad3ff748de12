"""Kanban request state machine.

Validates a transition against the rule table, checks the actor's authority
for the decision slot, and produces the transition record. It has no side
effects beyond its own in-memory state: persistence belongs to the engine and
event delivery to the notification dispatcher.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from ..access.policy import AccessPolicy
from ..access.roles import Actor
from ..errors import ConflictError, UnauthorizedError, ValidationError
from ..timeutil import utcnow
from .states import (
    KanbanStatus,
    KanbanTransition,
    TERMINAL_STATES,
    can_transition,
    get_transition_rule,
    stages_before,
    TransitionRule,
)

MAX_REASON_LENGTH = 500


class TransitionError(ConflictError):
    """Raised when a state transition is invalid from the current state."""

    def __init__(self, message: str, from_state: KanbanStatus, transition: KanbanTransition):
        super().__init__(message)
        self.from_state = from_state
        self.transition = transition


class KanbanStateMachine:
    """
    State machine for one kanban request.

    Manages transitions with:
    - Validation against the transition rule table
    - Stage authority checks through the access policy
    - Reason enforcement for rejections
    - An in-memory record of performed transitions
    """

    def __init__(
        self,
        request,
        *,
        policy: Optional[AccessPolicy] = None,
        current_state: Optional[KanbanStatus] = None,
    ):
        """
        Initialize the state machine.

        Args:
            request: Object exposing ``id``, ``department_id``, ``requester_id``
                and ``status``
            policy: Access policy used for authority checks
            current_state: Override for the request's persisted status
        """
        self.request = request
        self.entity_id = request.id
        self.policy = policy or AccessPolicy()
        self._state = KanbanStatus(current_state or request.status)
        self._transition_history: list[Dict[str, Any]] = []

    @property
    def state(self) -> KanbanStatus:
        """Current state of the request."""
        return self._state

    @property
    def is_terminal(self) -> bool:
        """Check if a decision has been reached."""
        return self._state in TERMINAL_STATES

    def can_perform(self, transition: KanbanTransition, actor: Optional[Actor] = None) -> bool:
        """Check if ``actor`` could perform ``transition`` right now."""
        rule = get_transition_rule(self._state, transition)
        if rule is None:
            return False
        try:
            self._authorize(rule, actor)
        except (ConflictError, UnauthorizedError):
            return False
        return True

    def get_available_transitions(self, actor: Optional[Actor] = None) -> list[KanbanTransition]:
        """Get list of transitions available to ``actor`` from the current state."""
        return [t for t in KanbanTransition if self.can_perform(t, actor)]

    def transition(
        self,
        transition: KanbanTransition,
        *,
        actor: Optional[Actor] = None,
        reason: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Perform a state transition.

        Args:
            transition: The transition to perform
            actor: Actor performing it (None only for the automatic submit)
            reason: Reason text, required for rejections
            timestamp: When the transition happened (now when omitted)

        Returns:
            The transition record

        Raises:
            TransitionError: If the transition is invalid from the current
                state, or the actor's decision slot was already resolved
            UnauthorizedError: If the actor lacks authority for the slot
            ValidationError: If a required reason is missing or too long
        """
        if not can_transition(self._state, transition):
            raise TransitionError(
                f"Cannot {transition.value} request {self.entity_id} in state {self._state.value}",
                self._state,
                transition,
            )

        rule = get_transition_rule(self._state, transition)
        if not rule:
            raise TransitionError(
                f"No rule found for transition {transition.value}",
                self._state,
                transition,
            )

        self._authorize(rule, actor)
        reason = self._check_reason(rule, reason)

        from_state = self._state
        record = {
            "id": uuid.uuid4(),
            "entity_id": self.entity_id,
            "from_state": from_state.value,
            "to_state": rule.to_state.value,
            "transition": transition.value,
            "stage": rule.stage.value if rule.stage else None,
            "actor": actor.to_dict() if actor else None,
            "reason": reason,
            "timestamp": timestamp or utcnow(),
        }
        self._transition_history.append(record)
        self._state = rule.to_state
        return record

    def get_history(self) -> list[Dict[str, Any]]:
        """Get the transitions performed through this machine."""
        return self._transition_history.copy()

    def _authorize(self, rule: TransitionRule, actor: Optional[Actor]) -> None:
        if rule.transition == KanbanTransition.SUBMIT:
            return

        if actor is None:
            raise UnauthorizedError(f"Transition {rule.transition.value} requires an actor")

        if rule.stage is not None:
            if self.policy.can_decide(actor, self.request, rule.stage):
                return
            # An approver whose own slot already passed lost the race for it
            for earlier in stages_before(rule.stage):
                if self.policy.can_decide(actor, self.request, earlier):
                    raise TransitionError(
                        f"The {earlier.value} decision for request {self.entity_id} "
                        f"was already recorded",
                        self._state,
                        rule.transition,
                    )
            raise UnauthorizedError(
                f"Role {actor.role.value} may not decide the {rule.stage.value} "
                f"stage of request {self.entity_id}"
            )

        if rule.transition == KanbanTransition.CLOSE and not self.policy.can_close(actor):
            raise UnauthorizedError(f"Role {actor.role.value} may not close requests")

    @staticmethod
    def _check_reason(rule: TransitionRule, reason: Optional[str]) -> Optional[str]:
        reason = reason.strip() if reason else None
        if rule.requires_reason and not reason:
            raise ValidationError(
                f"Transition {rule.transition.value} requires a reason",
                details=[{"field": "reason", "message": "must not be empty", "value": reason}],
            )
        if reason and len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(
                f"Reason cannot exceed {MAX_REASON_LENGTH} characters",
                details=[{"field": "reason", "message": f"max {MAX_REASON_LENGTH} characters"}],
            )
        return reason
