"""Access policy module.

Defines the actor roles, their rules, and the decision functions that scope
request actions and report visibility.
"""

from .roles import Actor, ApprovalStage, Role, RoleRule, Visibility, ROLE_RULES, get_role_rule, roles_for_stage
from .policy import (
    AccessPolicy,
    ReportScope,
    UNRESTRICTED,
    can_act,
    can_close,
    can_decide,
    can_submit,
    can_view,
    can_view_request,
    resolve_scope,
)

__all__ = [
    "AccessPolicy",
    "Actor",
    "ApprovalStage",
    "ReportScope",
    "Role",
    "RoleRule",
    "ROLE_RULES",
    "UNRESTRICTED",
    "Visibility",
    "can_act",
    "can_close",
    "can_decide",
    "can_submit",
    "can_view",
    "can_view_request",
    "get_role_rule",
    "resolve_scope",
    "roles_for_stage",
]
