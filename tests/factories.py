"""Factory functions for test actors and kanban requests.

Every factory has sensible defaults that can be overridden via keyword
arguments; unique values come from a module-level counter.

Usage::

    from tests.factories import create_request, make_actor

    def test_something(engine, departments):
        actor = make_actor("REQUESTER", departments["QC"].id)
        request = create_request(engine, actor, quantity=5)
        assert request.quantity == 5
"""

from typing import Optional

from kanban.core.access.roles import Actor

_counter = 0


def _next_id() -> int:
    """Return a monotonically increasing integer for unique default values."""
    global _counter
    _counter += 1
    return _counter


def make_actor(role: str, department_id=None, user_id: Optional[str] = None) -> Actor:
    return Actor(
        user_id=user_id or f"user-{_next_id()}",
        role=role,
        department_id=department_id,
    )


def kanban_payload(**overrides) -> dict:
    n = _next_id()
    payload = {
        "part_number": f"PART-{n:04d}",
        "quantity": 10,
        "location": "Line 1",
        "box": f"BOX-{n}",
        "classification": "NORMAL",
        "description": "Replacement stock",
    }
    payload.update(overrides)
    return payload


def create_request(engine, actor: Actor, **overrides):
    """Create a request through the engine and return its snapshot."""
    return engine.create_request(kanban_payload(**overrides), actor)


def approve_through(engine, request_id, department_approver: Actor, pc_approver: Actor):
    """Run both approval stages; returns the final snapshot."""
    engine.approve(request_id, department_approver)
    return engine.approve(request_id, pc_approver)
