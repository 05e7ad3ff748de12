"""Kanban request database models.

Stores requests and the append-only list of decisions recorded against them.
"""

import uuid

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.orm import relationship

from kanban.core.timeutil import utcnow
from kanban.db.base import Base


class KanbanRequest(Base):
    """
    A parts request routed through department and production control approval.

    ``version`` is the optimistic concurrency column: every UPDATE is issued
    with ``WHERE version = <loaded version>`` and bumps it.
    """
    __tablename__ = "kanban_requests"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Requester
    requester_id = Column(String(100), nullable=False, index=True)
    requester_name = Column(String(100), nullable=False)
    department_id = Column(Uuid(as_uuid=True), ForeignKey("departments.id"), nullable=False, index=True)

    # Item
    part_number = Column(String(50), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    location = Column(String(100), nullable=False)
    box = Column(String(50), nullable=False, default="")
    classification = Column(String(50), nullable=False, default="NORMAL")
    description = Column(Text, nullable=False, default="")
    production_date = Column(Date, nullable=True)

    # Workflow state
    status = Column(String(50), nullable=False, index=True)
    version = Column(Integer, nullable=False)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    department = relationship("Department", back_populates="requests")
    approvals = relationship(
        "ApprovalRecord",
        back_populates="request",
        order_by="ApprovalRecord.sequence",
        cascade="save-update, merge",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<KanbanRequest {self.part_number} x{self.quantity} [{self.status}]>"


class ApprovalRecord(Base):
    """
    One decision recorded against a request.

    Records are immutable once flushed; the (request, stage) pair is unique so a
    decision slot can be filled at most once.
    """
    __tablename__ = "approval_records"
    __table_args__ = (
        UniqueConstraint("request_id", "stage", name="uq_approval_records_request_stage"),
        UniqueConstraint("request_id", "sequence", name="uq_approval_records_request_sequence"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    request_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("kanban_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence = Column(Integer, nullable=False)
    stage = Column(String(30), nullable=False)

    # Approver
    approver_id = Column(String(100), nullable=False, index=True)
    approver_role = Column(String(20), nullable=False)
    approver_department_id = Column(Uuid(as_uuid=True), nullable=True)

    # Decision
    decision = Column(String(20), nullable=False)
    reason = Column(Text, nullable=True)
    decided_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    request = relationship("KanbanRequest", back_populates="approvals")

    def __repr__(self) -> str:
        return f"<ApprovalRecord {self.stage}:{self.decision} by {self.approver_id}>"


@event.listens_for(ApprovalRecord, "before_update")
def _approval_records_are_immutable(mapper, connection, target):
    raise RuntimeError(f"Approval record {target.id} is immutable")
