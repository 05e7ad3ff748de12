"""Tests for kanban request states and the transition rule table."""

import pytest

from kanban.core.access.roles import ApprovalStage
from kanban.core.approval.states import (
    ALLOWED_EDGES,
    APPROVED_STATES,
    INITIAL_STATE,
    PENDING_STATES,
    REJECTED_STATES,
    TERMINAL_STATES,
    TRANSITION_RULES,
    VALID_TRANSITIONS,
    KanbanStatus,
    KanbanTransition,
    can_transition,
    get_target_state,
    get_transition_rule,
    pending_stage,
    stages_before,
)


class TestKanbanStates:
    """Test state definitions."""

    def test_all_states_defined(self):
        """Test that all expected states exist."""
        expected = [
            "CREATED", "PENDING_DEPT_APPROVAL", "PENDING_PC_APPROVAL",
            "APPROVED", "REJECTED", "CLOSED",
        ]
        assert [s.value for s in KanbanStatus] == expected

    def test_initial_state(self):
        assert INITIAL_STATE == KanbanStatus.CREATED

    def test_terminal_states(self):
        """Decided states are terminal; APPROVED still admits close."""
        assert TERMINAL_STATES == {KanbanStatus.APPROVED, KanbanStatus.REJECTED, KanbanStatus.CLOSED}
        assert can_transition(KanbanStatus.APPROVED, KanbanTransition.CLOSE)

    def test_state_groups_are_disjoint(self):
        assert not (APPROVED_STATES & REJECTED_STATES)
        assert not (PENDING_STATES & TERMINAL_STATES)


class TestKanbanTransitions:
    """Test the transition graph."""

    def test_graph_is_exactly_the_workflow(self):
        assert ALLOWED_EDGES == {
            (KanbanStatus.CREATED, KanbanStatus.PENDING_DEPT_APPROVAL),
            (KanbanStatus.PENDING_DEPT_APPROVAL, KanbanStatus.PENDING_PC_APPROVAL),
            (KanbanStatus.PENDING_DEPT_APPROVAL, KanbanStatus.REJECTED),
            (KanbanStatus.PENDING_PC_APPROVAL, KanbanStatus.APPROVED),
            (KanbanStatus.PENDING_PC_APPROVAL, KanbanStatus.REJECTED),
            (KanbanStatus.APPROVED, KanbanStatus.CLOSED),
        }

    def test_no_transitions_out_of_rejected_or_closed(self):
        assert KanbanStatus.REJECTED not in VALID_TRANSITIONS
        assert KanbanStatus.CLOSED not in VALID_TRANSITIONS

    def test_created_only_submits(self):
        assert VALID_TRANSITIONS[KanbanStatus.CREATED] == {KanbanTransition.SUBMIT}
        assert get_target_state(KanbanStatus.CREATED, KanbanTransition.SUBMIT) == KanbanStatus.PENDING_DEPT_APPROVAL

    def test_pending_states_approve_and_reject(self):
        for state in PENDING_STATES:
            assert VALID_TRANSITIONS[state] == {KanbanTransition.APPROVE, KanbanTransition.REJECT}

    def test_rejections_require_reason(self):
        for rule in TRANSITION_RULES:
            assert rule.requires_reason == (rule.transition == KanbanTransition.REJECT)

    def test_decision_rules_carry_their_stage(self):
        rule = get_transition_rule(KanbanStatus.PENDING_DEPT_APPROVAL, KanbanTransition.APPROVE)
        assert rule.stage == ApprovalStage.DEPARTMENT
        rule = get_transition_rule(KanbanStatus.PENDING_PC_APPROVAL, KanbanTransition.REJECT)
        assert rule.stage == ApprovalStage.PRODUCTION_CONTROL
        assert get_transition_rule(KanbanStatus.APPROVED, KanbanTransition.CLOSE).stage is None

    def test_invalid_transition_has_no_rule(self):
        assert get_transition_rule(KanbanStatus.CLOSED, KanbanTransition.APPROVE) is None
        assert get_target_state(KanbanStatus.REJECTED, KanbanTransition.CLOSE) is None


class TestStages:
    """Test decision slot helpers."""

    @pytest.mark.parametrize("state,stage", [
        (KanbanStatus.PENDING_DEPT_APPROVAL, ApprovalStage.DEPARTMENT),
        (KanbanStatus.PENDING_PC_APPROVAL, ApprovalStage.PRODUCTION_CONTROL),
        (KanbanStatus.APPROVED, None),
        (KanbanStatus.CREATED, None),
    ])
    def test_pending_stage(self, state, stage):
        assert pending_stage(state) == stage

    def test_stages_before(self):
        assert stages_before(ApprovalStage.DEPARTMENT) == ()
        assert stages_before(ApprovalStage.PRODUCTION_CONTROL) == (ApprovalStage.DEPARTMENT,)
