"""Immutable point-in-time views of persisted records.

The store hands these out instead of live ORM rows so that readers (reports,
API callers, event subscribers) can never observe or cause a partial write.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, FrozenSet, Optional, Tuple
from uuid import UUID

from .access.roles import ApprovalStage, Role
from .approval.states import Decision, KanbanStatus


@dataclass(frozen=True)
class DepartmentSnapshot:
    id: UUID
    code: str
    name: str
    is_production_control: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "code": self.code,
            "name": self.name,
            "is_production_control": self.is_production_control,
        }


@dataclass(frozen=True)
class ApprovalSnapshot:
    id: UUID
    sequence: int
    stage: ApprovalStage
    approver_id: str
    approver_role: Role
    approver_department_id: Optional[UUID]
    decision: Decision
    decided_at: datetime
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "sequence": self.sequence,
            "stage": self.stage.value,
            "approver_id": self.approver_id,
            "approver_role": self.approver_role.value,
            "approver_department_id": (
                str(self.approver_department_id) if self.approver_department_id else None
            ),
            "decision": self.decision.value,
            "decided_at": self.decided_at.isoformat(),
            "reason": self.reason,
        }


@dataclass(frozen=True)
class KanbanSnapshot:
    id: UUID
    requester_id: str
    requester_name: str
    department_id: UUID
    part_number: str
    quantity: int
    location: str
    status: KanbanStatus
    created_at: datetime
    updated_at: datetime
    version: int
    box: str = ""
    classification: str = "NORMAL"
    description: str = ""
    production_date: Optional[date] = None
    approvals: Tuple[ApprovalSnapshot, ...] = field(default_factory=tuple)

    @property
    def final_decision(self) -> Optional[ApprovalSnapshot]:
        """The record that moved the request into its decided state."""
        if self.status in (KanbanStatus.APPROVED, KanbanStatus.CLOSED):
            approved = [a for a in self.approvals if a.decision == Decision.APPROVED]
            return approved[-1] if approved else None
        if self.status == KanbanStatus.REJECTED:
            rejected = [a for a in self.approvals if a.decision == Decision.REJECTED]
            return rejected[-1] if rejected else None
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "requester_id": self.requester_id,
            "requester_name": self.requester_name,
            "department_id": str(self.department_id),
            "part_number": self.part_number,
            "quantity": self.quantity,
            "location": self.location,
            "box": self.box,
            "classification": self.classification,
            "description": self.description,
            "production_date": self.production_date.isoformat() if self.production_date else None,
            "status": self.status.value,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "approvals": [a.to_dict() for a in self.approvals],
        }


@dataclass(frozen=True)
class RequestFilter:
    """Row restriction understood by the request store."""

    department_id: Optional[UUID] = None
    requester_id: Optional[str] = None
    statuses: Optional[FrozenSet[KanbanStatus]] = None
