"""Input schemas for kanban requests."""

from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from kanban.core.errors import ValidationError

PART_NUMBER_PATTERN = r"^[A-Za-z0-9_-]+$"
REQUESTER_NAME_PATTERN = r"^[a-zA-Z\s.\-]+$"


class KanbanCreate(BaseModel):
    """Payload for submitting a new kanban request."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    department_id: Optional[UUID] = Field(None, description="Defaults to the actor's department")
    requester_name: Optional[str] = Field(
        None, min_length=2, max_length=100, pattern=REQUESTER_NAME_PATTERN,
        description="Defaults to the actor's user id",
    )
    part_number: str = Field(..., min_length=3, max_length=50, pattern=PART_NUMBER_PATTERN)
    quantity: int = Field(..., gt=0)
    location: str = Field(..., min_length=2, max_length=100)
    box: str = Field("", max_length=50)
    classification: str = Field("NORMAL", max_length=50)
    description: str = Field("", max_length=500)
    production_date: Optional[date] = None

    @field_validator("classification")
    @classmethod
    def _default_classification(cls, value: str) -> str:
        return value or "NORMAL"


class KanbanUpdate(BaseModel):
    """
    Owner edit of a request still awaiting its first decision.

    Only the fields present in the input are applied. The owning department
    cannot be changed.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    requester_name: str = Field(None, min_length=2, max_length=100, pattern=REQUESTER_NAME_PATTERN)
    part_number: str = Field(None, min_length=3, max_length=50, pattern=PART_NUMBER_PATTERN)
    quantity: int = Field(None, gt=0)
    location: str = Field(None, min_length=2, max_length=100)
    box: str = Field(None, max_length=50)
    classification: str = Field(None, max_length=50)
    description: str = Field(None, max_length=500)
    production_date: Optional[date] = None

    @field_validator("classification")
    @classmethod
    def _default_classification(cls, value: str) -> str:
        return value or "NORMAL"

    @model_validator(mode="after")
    def _not_empty(self) -> "KanbanUpdate":
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided")
        return self

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class BatchDecision(BaseModel):
    """Payload for batch approve."""
    model_config = ConfigDict(str_strip_whitespace=True)

    request_ids: List[UUID] = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=500)


class BatchRejection(BatchDecision):
    """Payload for batch reject; the reason is mandatory."""
    reason: str = Field(..., min_length=1, max_length=500)


def _details(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    details = []
    for error in exc.errors():
        details.append({
            "field": ".".join(str(part) for part in error["loc"]) or None,
            "message": error["msg"],
            "value": error.get("input") if not isinstance(error.get("input"), dict) else None,
        })
    return details


def _parse(model, data, message: str):
    if isinstance(data, model):
        return data
    if not isinstance(data, dict):
        raise ValidationError(f"{message} payload must be a mapping")
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {message.lower()}", details=_details(exc)) from exc


def parse_kanban_create(data) -> KanbanCreate:
    """
    Validate raw input into a ``KanbanCreate``.

    Raises:
        ValidationError: With one detail entry per invalid field
    """
    return _parse(KanbanCreate, data, "Kanban request")


def parse_kanban_update(data) -> KanbanUpdate:
    """Validate raw input into a ``KanbanUpdate``; an empty edit is refused."""
    return _parse(KanbanUpdate, data, "Kanban update")


def parse_batch_decision(data) -> BatchDecision:
    return _parse(BatchDecision, data, "Batch request")


def parse_batch_rejection(data) -> BatchRejection:
    """Validate a batch reject payload; an empty or blank reason is refused."""
    return _parse(BatchRejection, data, "Batch request")
