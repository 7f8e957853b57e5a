"""Domain models shared across services."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

MONTH_KEYS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    candidate = value.strip()
    if not candidate:
        raise ValueError("Timestamp is empty.")

    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValueError("Invalid timestamp format") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


@dataclass(slots=True)
class MeasurementRecord:
    """A single rainfall measurement as stored in the records collection."""

    record_id: str
    amount: Optional[float]
    recorded_at: Optional[datetime]
    notes: Optional[str] = None

    @property
    def has_amount(self) -> bool:
        return self.amount is not None and not math.isnan(self.amount)

    @classmethod
    def from_document(cls, record_id: str, data: Mapping[str, Any]) -> "MeasurementRecord":
        amount = data.get("amount")
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            try:
                created_at = parse_timestamp(created_at)
            except ValueError:
                created_at = None
        elif not isinstance(created_at, datetime):
            created_at = None
        return cls(
            record_id=record_id,
            amount=float(amount) if isinstance(amount, (int, float)) else None,
            recorded_at=created_at,
            notes=data.get("notes"),
        )


@dataclass(frozen=True, slots=True)
class Bucket:
    """The (year, month) identity a timestamp rolls up into."""

    year: int
    month: str


@dataclass(frozen=True, slots=True)
class Delta:
    """Signed amount to add to a bucket's running sums.

    Reversals undo a previous contribution and therefore require the
    year's summary to exist already.
    """

    bucket: Bucket
    amount: float
    is_reversal: bool = False


class EventKind(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"


@dataclass(slots=True)
class LifecycleEvent:
    """A create/update/delete notification for one measurement record."""

    kind: EventKind
    record_id: str
    before: Optional[MeasurementRecord] = None
    after: Optional[MeasurementRecord] = None
