"""Report query and result types."""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ..access.policy import UNRESTRICTED, ReportScope
from ..access.roles import Actor
from ..timeutil import DateRange, utcnow


class ReportType(str, Enum):
    MONTHLY = "monthly"
    CUSTOM_RANGE = "custom_range"
    DEPARTMENT = "department"
    APPROVAL_EFFICIENCY = "approval_efficiency"
    REQUESTER_ACTIVITY = "requester_activity"


@dataclass(frozen=True)
class ReportQuery:
    """A report request: type, ``[start, end)`` window and scope."""

    report_type: ReportType
    date_range: DateRange
    scope: ReportScope = UNRESTRICTED
    actor: Optional[Actor] = None
    limit: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "report_type", ReportType(self.report_type))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report_type": self.report_type.value,
            "start": self.date_range.start.isoformat(),
            "end": self.date_range.end.isoformat(),
            "scope": self.scope.to_dict(),
            "actor": self.actor.to_dict() if self.actor else None,
            "limit": self.limit,
        }


@dataclass(frozen=True)
class ReportResult:
    """
    Aggregated report output.

    ``generated_at`` is informational: equality, hashing and the
    fingerprint cover only the type, query and data, so re-running a query
    over an unchanged store yields an equal result.
    """

    report_type: ReportType
    query: ReportQuery
    data: Dict[str, Any]
    generated_at: datetime = field(default_factory=utcnow, compare=False)

    def fingerprint(self) -> str:
        body = {
            "report_type": self.report_type.value,
            "query": self.query.to_dict(),
            "data": self.data,
        }
        encoded = json.dumps(body, sort_keys=True, default=str).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()

    def __hash__(self) -> int:
        return hash(self.fingerprint())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report_type": self.report_type.value,
            "query": self.query.to_dict(),
            "generated_at": self.generated_at.isoformat(),
            "fingerprint": self.fingerprint(),
            "data": self.data,
        }
