"""Turn record lifecycle events into signed bucket deltas."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timezone, tzinfo
from typing import Optional, Tuple

from models.records import Delta, EventKind, LifecycleEvent, MeasurementRecord
from services.bucketing import bucket_for


@dataclass(frozen=True)
class DeltaPlan:
    """Ordered deltas for one event, or the reason there is nothing to do."""

    deltas: Tuple[Delta, ...] = ()
    skip_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None

    @classmethod
    def skip(cls, reason: str) -> "DeltaPlan":
        return cls(deltas=(), skip_reason=reason)


def _missing_fields(record: Optional[MeasurementRecord], label: str) -> Optional[str]:
    if record is None:
        return f"{label} record missing"
    if not record.has_amount:
        return f"{label} amount missing"
    if record.recorded_at is None:
        return f"{label} created_at missing"
    return None


class DeltaCalculator:
    """Pure component deriving deltas from events; never touches a store."""

    def __init__(self, tz: tzinfo = timezone.utc) -> None:
        self.tz = tz

    def compute(self, event: LifecycleEvent) -> DeltaPlan:
        if event.kind is EventKind.create:
            return self._for_create(event.after)
        if event.kind is EventKind.update:
            return self._for_update(event.before, event.after)
        if event.kind is EventKind.delete:
            return self._for_delete(event.before)
        return DeltaPlan.skip(f"unsupported event kind {event.kind!r}")

    def _for_create(self, after: Optional[MeasurementRecord]) -> DeltaPlan:
        reason = _missing_fields(after, "created")
        if reason:
            return DeltaPlan.skip(reason)
        # A zero amount on create counts as absent and never opens a year.
        if after.amount == 0:
            return DeltaPlan.skip("created amount missing")
        return DeltaPlan(deltas=(Delta(bucket_for(after.recorded_at, self.tz), after.amount),))

    def _for_update(
        self,
        before: Optional[MeasurementRecord],
        after: Optional[MeasurementRecord],
    ) -> DeltaPlan:
        reason = _missing_fields(before, "previous") or _missing_fields(after, "updated")
        if reason:
            return DeltaPlan.skip(reason)

        # Timestamp-only changes are not reflected in the rollup.
        if before.amount == after.amount:
            return DeltaPlan.skip("amount unchanged")

        return DeltaPlan(
            deltas=(
                Delta(bucket_for(before.recorded_at, self.tz), -before.amount, is_reversal=True),
                Delta(bucket_for(after.recorded_at, self.tz), after.amount),
            )
        )

    def _for_delete(self, before: Optional[MeasurementRecord]) -> DeltaPlan:
        reason = _missing_fields(before, "deleted")
        if reason:
            return DeltaPlan.skip(reason)
        return DeltaPlan(
            deltas=(Delta(bucket_for(before.recorded_at, self.tz), -before.amount, is_reversal=True),)
        )
