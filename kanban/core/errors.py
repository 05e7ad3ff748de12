"""Error taxonomy for the approval workflow and reporting core.

Every error the core raises derives from KanbanError and carries a stable
``code`` so the boundary layer can map it to a user-visible response without
inspecting messages.
"""

from typing import Any, Dict, List, Optional


class KanbanError(Exception):
    """Base class for all core errors."""

    code = "kanban_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationError(KanbanError):
    """Malformed input: bad quantity, empty reason, invalid range."""

    code = "validation_error"

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.details = details or []

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.details:
            data["details"] = self.details
        return data


class NotFoundError(KanbanError):
    """Unknown request or department."""

    code = "not_found"

    def __init__(self, resource: str, identifier: Any):
        super().__init__(f"{resource} {identifier} not found")
        self.resource = resource
        self.identifier = identifier


class UnauthorizedError(KanbanError):
    """Role or department does not match the required transition or scope."""

    code = "unauthorized"


class ConflictError(KanbanError):
    """Invalid or already-resolved transition, or a lost concurrency race."""

    code = "conflict"


class StaleVersionError(ConflictError):
    """A concurrent writer committed first; the row version moved."""

    code = "stale_version"


class ReportTimeoutError(KanbanError, TimeoutError):
    """Report aggregation was cancelled or exceeded its deadline."""

    code = "report_timeout"
