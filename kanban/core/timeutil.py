"""Timestamp helpers.

Timestamps are persisted as naive UTC. Values crossing the core boundary are
normalized here: aware datetimes are converted to UTC, naive ones are read as
wall-clock time in the reporting timezone.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timezone, tzinfo
from typing import Optional, Union

from .errors import ValidationError


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: Union[datetime, date], tz: Optional[tzinfo] = None) -> datetime:
    """Normalize a boundary value to naive UTC.

    Args:
        value: datetime or date supplied by a caller
        tz: Timezone used to interpret naive values (UTC when omitted)

    Returns:
        Naive datetime in UTC
    """
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz or timezone.utc)
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class DateRange:
    """Half-open ``[start, end)`` window in naive UTC."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end <= self.start:
            raise ValidationError(
                "Date range end must be after start",
                details=[{
                    "field": "end",
                    "message": "must be after start",
                    "value": self.end.isoformat(),
                }],
            )

    @classmethod
    def between(
        cls,
        start: Union[datetime, date],
        end: Union[datetime, date],
        tz: Optional[tzinfo] = None,
    ) -> "DateRange":
        return cls(to_utc_naive(start, tz), to_utc_naive(end, tz))

    @classmethod
    def for_month(cls, year: int, month: int, tz: Optional[tzinfo] = None) -> "DateRange":
        """Calendar month in ``tz``, expressed as a UTC window."""
        if not 1 <= month <= 12:
            raise ValidationError(
                "Month must be between 1 and 12",
                details=[{"field": "month", "message": "must be between 1 and 12", "value": month}],
            )
        try:
            start = datetime(year, month, 1)
            end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
        except (ValueError, OverflowError) as exc:
            raise ValidationError(
                f"Invalid year provided: {year}",
                details=[{"field": "year", "message": str(exc), "value": year}],
            ) from exc
        return cls.between(start, end, tz)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}
