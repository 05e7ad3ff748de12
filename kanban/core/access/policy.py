"""Access policy for kanban requests and report scopes.

All checks are pure functions of ``(actor, resource)``. Nothing is cached:
an actor's role or department may change between calls, so callers evaluate
the policy on every operation.

A "request" here is anything exposing ``department_id`` and ``requester_id``
(ORM rows and snapshots both qualify).
"""

from dataclasses import dataclass, replace
from typing import Optional

from ..errors import UnauthorizedError
from .roles import Actor, ApprovalStage, DepartmentId, Visibility, get_role_rule


@dataclass(frozen=True)
class ReportScope:
    """Department/requester restriction applied to a report."""

    department_id: Optional[DepartmentId] = None
    requester_id: Optional[str] = None

    @property
    def is_unrestricted(self) -> bool:
        return self.department_id is None and self.requester_id is None

    def to_dict(self) -> dict:
        return {
            "department_id": str(self.department_id) if self.department_id is not None else None,
            "requester_id": self.requester_id,
        }


UNRESTRICTED = ReportScope()


def _same(left, right) -> bool:
    return left is not None and right is not None and str(left) == str(right)


def _reaches(reach: Visibility, actor: Actor, department_id, requester_id) -> bool:
    if reach == Visibility.ALL:
        return True
    if reach == Visibility.DEPARTMENT:
        return _same(actor.department_id, department_id)
    if reach == Visibility.OWN:
        return _same(actor.user_id, requester_id)
    if reach == Visibility.NONE:
        return False
    raise ValueError(f"Unhandled visibility: {reach}")


def can_view_request(actor: Actor, request) -> bool:
    """Check if the actor may read a request."""
    rule = get_role_rule(actor.role)
    return _reaches(rule.visibility, actor, request.department_id, request.requester_id)


def can_act(actor: Actor, request) -> bool:
    """Check if the actor has decision authority over the request's department.

    This is the department reach only; each transition still checks the role
    it requires.
    """
    rule = get_role_rule(actor.role)
    return _reaches(rule.act_scope, actor, request.department_id, request.requester_id)


def can_decide(actor: Actor, request, stage: ApprovalStage) -> bool:
    """Check if the actor may record the decision for ``stage`` of ``request``."""
    return stage in get_role_rule(actor.role).stages and can_act(actor, request)


def can_close(actor: Actor) -> bool:
    return get_role_rule(actor.role).can_close


def can_submit(actor: Actor, department_id: DepartmentId) -> bool:
    """Check if the actor may create a request owned by ``department_id``.

    Every role submits only into its own department.
    """
    return _same(actor.department_id, department_id)


def can_view(actor: Actor, scope: ReportScope) -> bool:
    """Check if the actor may see every request a report scope covers."""
    rule = get_role_rule(actor.role)
    if rule.visibility == Visibility.ALL:
        return True
    if rule.visibility == Visibility.DEPARTMENT:
        return _same(actor.department_id, scope.department_id)
    if rule.visibility == Visibility.OWN:
        if not _same(actor.user_id, scope.requester_id):
            return False
        return scope.department_id is None or _same(actor.department_id, scope.department_id)
    if rule.visibility == Visibility.NONE:
        return False
    raise ValueError(f"Unhandled visibility: {rule.visibility}")


def resolve_scope(actor: Optional[Actor], scope: Optional[ReportScope] = None) -> ReportScope:
    """Narrow a requested scope to what the actor may see.

    An unset department (or requester) is filled in from the actor when its
    role cannot see beyond it; an explicit scope outside the actor's reach is
    refused.

    Args:
        actor: Calling actor, or None for trusted internal callers
        scope: Requested scope (unrestricted when omitted)

    Returns:
        The effective scope

    Raises:
        UnauthorizedError: If the requested scope is outside the actor's reach
    """
    scope = scope or UNRESTRICTED
    if actor is None:
        return scope

    rule = get_role_rule(actor.role)
    if rule.visibility == Visibility.DEPARTMENT and scope.department_id is None:
        scope = replace(scope, department_id=actor.department_id)
    elif rule.visibility == Visibility.OWN and scope.requester_id is None:
        scope = replace(scope, requester_id=actor.user_id)

    if not can_view(actor, scope):
        raise UnauthorizedError(
            f"Role {actor.role.value} may not view report scope {scope.to_dict()}"
        )
    return scope


class AccessPolicy:
    """Stateless facade over the policy functions, injected into services."""

    def can_view_request(self, actor: Actor, request) -> bool:
        return can_view_request(actor, request)

    def can_act(self, actor: Actor, request) -> bool:
        return can_act(actor, request)

    def can_decide(self, actor: Actor, request, stage: ApprovalStage) -> bool:
        return can_decide(actor, request, stage)

    def can_close(self, actor: Actor) -> bool:
        return can_close(actor)

    def can_submit(self, actor: Actor, department_id: DepartmentId) -> bool:
        return can_submit(actor, department_id)

    def can_view(self, actor: Actor, scope: ReportScope) -> bool:
        return can_view(actor, scope)

    def resolve_scope(self, actor: Optional[Actor], scope: Optional[ReportScope] = None) -> ReportScope:
        return resolve_scope(actor, scope)

    def require_view(self, actor: Actor, request) -> None:
        if not can_view_request(actor, request):
            raise UnauthorizedError(
                f"Role {actor.role.value} may not view request {getattr(request, 'id', '')}"
            )
