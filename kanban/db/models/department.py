import uuid

from sqlalchemy import Boolean, Column, DateTime, String, Uuid
from sqlalchemy.orm import relationship

from kanban.core.timeutil import utcnow
from kanban.db.base import Base


class Department(Base):
    __tablename__ = "departments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(20), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_production_control = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    requests = relationship("KanbanRequest", back_populates="department")

    def __repr__(self) -> str:
        return f"<Department {self.code}>"
