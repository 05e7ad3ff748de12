"""Role definitions for kanban approvals.

Defines the closed set of actor roles and the rule each one carries:

1. PC - Production control, sees and acts on every department, final sign-off
2. Admin - Sees everything, closes approved requests, no decision authority
3. Manager - Sees and decides the department slot of its own department
4. Supervisor - Same authority as a manager
5. Requester - Sees only the requests it authored

Every member of ``Role`` must have exactly one ``RoleRule``; a missing rule is
an import-time error so that adding a role forces an explicit decision.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, NamedTuple, Optional, Union
from uuid import UUID


class Role(str, Enum):
    """Actor roles."""

    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    SUPERVISOR = "SUPERVISOR"
    PC = "PC"
    REQUESTER = "REQUESTER"


class Visibility(str, Enum):
    """How far an actor's view or authority reaches."""

    ALL = "all"                  # Every department
    DEPARTMENT = "department"    # Actor's own department only
    OWN = "own"                  # Requests the actor authored
    NONE = "none"                # Nothing


class ApprovalStage(str, Enum):
    """Decision slots a request passes through."""

    DEPARTMENT = "department"
    PRODUCTION_CONTROL = "production_control"


class RoleRule(NamedTuple):
    """Access rule for a role."""
    role: Role
    visibility: Visibility
    act_scope: Visibility
    stages: FrozenSet[ApprovalStage] = frozenset()
    can_close: bool = False


ROLE_RULES: list[RoleRule] = [
    RoleRule(Role.PC, Visibility.ALL, Visibility.ALL,
             frozenset([ApprovalStage.PRODUCTION_CONTROL]),
             can_close=True),
    RoleRule(Role.ADMIN, Visibility.ALL, Visibility.NONE,
             can_close=True),
    RoleRule(Role.MANAGER, Visibility.DEPARTMENT, Visibility.DEPARTMENT,
             frozenset([ApprovalStage.DEPARTMENT])),
    RoleRule(Role.SUPERVISOR, Visibility.DEPARTMENT, Visibility.DEPARTMENT,
             frozenset([ApprovalStage.DEPARTMENT])),
    RoleRule(Role.REQUESTER, Visibility.OWN, Visibility.NONE),
]

RULES_BY_ROLE: Dict[Role, RoleRule] = {rule.role: rule for rule in ROLE_RULES}

_missing = set(Role) - set(RULES_BY_ROLE)
if _missing or len(RULES_BY_ROLE) != len(ROLE_RULES):
    raise RuntimeError(
        f"Role rules must cover every role exactly once, missing: {sorted(r.value for r in _missing)}"
    )


def get_role_rule(role: Role) -> RoleRule:
    """Get the access rule for a role."""
    return RULES_BY_ROLE[Role(role)]


def roles_for_stage(stage: ApprovalStage) -> FrozenSet[Role]:
    """Roles that may decide a given stage."""
    return frozenset(rule.role for rule in ROLE_RULES if stage in rule.stages)


DepartmentId = Union[UUID, str]


@dataclass(frozen=True)
class Actor:
    """An already-authenticated caller."""

    user_id: str
    role: Role
    department_id: Optional[DepartmentId] = None

    def __post_init__(self):
        object.__setattr__(self, "role", Role(self.role))

    @property
    def rule(self) -> RoleRule:
        return get_role_rule(self.role)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "role": self.role.value,
            "department_id": str(self.department_id) if self.department_id is not None else None,
        }
