"""Incremental yearly/monthly rainfall rollups driven by record lifecycle events.

Every delta is applied as a read of the year's summary followed by a
merge-patch of the touched month and the total. Summaries are never cached:
each call re-reads the store, since invocations may run in separate
processes.

In ``merge`` mode the read and the write are not atomic, so two concurrent
invocations touching the same year can lose one another's update. The
``optimistic`` mode closes that window with a version check on the write,
re-running the read-modify-write for the delta when another writer got there
first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from app.schemas import YearSummary
from datastore.base import SummaryStore
from datastore.errors import VersionConflictError
from models.records import Delta, LifecycleEvent
from services.deltas import DeltaCalculator

logger = logging.getLogger(__name__)


class ConcurrencyMode(str, Enum):
    merge = "merge"
    optimistic = "optimistic"


class ApplyStatus(str, Enum):
    applied = "applied"
    skipped = "skipped"


@dataclass
class ApplyResult:
    """Outcome of one engine invocation; failures are raised instead."""

    status: ApplyStatus
    writes: int = 0
    reason: Optional[str] = None

    @classmethod
    def skipped(cls, reason: str) -> "ApplyResult":
        return cls(status=ApplyStatus.skipped, writes=0, reason=reason)


@dataclass(frozen=True)
class SummaryNotFound:
    year: int


@dataclass(frozen=True)
class SummaryFound:
    year: int
    summary: YearSummary
    version: int


SummaryLookup = Union[SummaryNotFound, SummaryFound]


class AggregationError(Exception):
    """Base class for rollups that could not be applied."""


class MissingSummaryError(AggregationError):
    """A reversal targeted a year that has no summary document."""

    def __init__(self, year: int) -> None:
        super().__init__(f"Cannot reduce year {year}: no summary document exists.")
        self.year = year


class AggregationConflictError(AggregationError):
    """Optimistic writes kept losing to concurrent writers."""

    def __init__(self, year: int, attempts: int) -> None:
        super().__init__(
            f"Summary for year {year} changed concurrently on each of {attempts} attempts."
        )
        self.year = year
        self.attempts = attempts


def summary_key(year: int) -> str:
    return str(year)


class AggregationEngine:
    """Applies bucket deltas to the per-year summary documents."""

    def __init__(
        self,
        store: SummaryStore,
        calculator: Optional[DeltaCalculator] = None,
        concurrency: ConcurrencyMode = ConcurrencyMode.merge,
        max_conflict_retries: int = 5,
    ) -> None:
        self.store = store
        self.calculator = calculator or DeltaCalculator()
        self.concurrency = ConcurrencyMode(concurrency)
        self.max_conflict_retries = max(0, max_conflict_retries)

    def handle(self, event: LifecycleEvent) -> ApplyResult:
        """Derive the deltas for ``event`` and apply them."""
        plan = self.calculator.compute(event)
        if plan.skip_reason is not None:
            logger.info(
                "Skipping %s event",
                event.kind.value,
                extra={
                    "record_id": event.record_id,
                    "event_kind": event.kind.value,
                    "reason": plan.skip_reason,
                },
            )
            return ApplyResult.skipped(plan.skip_reason)
        return self.apply(plan.deltas)

    def apply(self, deltas: Sequence[Delta]) -> ApplyResult:
        """Apply ``deltas`` one after another.

        A store failure or :class:`AggregationError` stops the sequence;
        deltas written before the failure stay written.
        """
        if not deltas:
            return ApplyResult.skipped("no deltas")

        writes = 0
        for delta in deltas:
            self._apply_delta(delta)
            writes += 1
        return ApplyResult(status=ApplyStatus.applied, writes=writes)

    def read_summary(self, year: int) -> SummaryLookup:
        snapshot = self.store.get(summary_key(year))
        if not snapshot.exists:
            return SummaryNotFound(year=year)
        return SummaryFound(
            year=year,
            summary=YearSummary.model_validate(snapshot.data),
            version=snapshot.version,
        )

    def _apply_delta(self, delta: Delta) -> None:
        year = delta.bucket.year
        attempts = 1
        if self.concurrency is ConcurrencyMode.optimistic:
            attempts += self.max_conflict_retries

        for attempt in range(1, attempts + 1):
            lookup = self.read_summary(year)
            patch, expected_version = self._build_patch(lookup, delta)
            try:
                self.store.set(
                    summary_key(year),
                    patch,
                    merge=True,
                    expected_version=expected_version,
                )
            except VersionConflictError:
                logger.warning(
                    "Summary changed while applying delta, retrying",
                    extra={
                        "year": year,
                        "month": delta.bucket.month,
                        "delta": delta.amount,
                        "attempt": attempt,
                    },
                )
                continue

            logger.info(
                "Applied delta",
                extra={
                    "year": year,
                    "month": delta.bucket.month,
                    "delta": delta.amount,
                    "status": "created" if isinstance(lookup, SummaryNotFound) else "updated",
                },
            )
            return

        raise AggregationConflictError(year, attempts)

    def _build_patch(
        self, lookup: SummaryLookup, delta: Delta
    ) -> Tuple[Dict[str, Any], Optional[int]]:
        month = delta.bucket.month
        optimistic = self.concurrency is ConcurrencyMode.optimistic

        if isinstance(lookup, SummaryNotFound):
            if delta.is_reversal:
                raise MissingSummaryError(lookup.year)
            patch = {"monthly": {month: delta.amount}, "total": delta.amount}
            return patch, 0 if optimistic else None

        summary = lookup.summary
        patch = {
            "monthly": {month: summary.monthly.get(month, 0.0) + delta.amount},
            "total": summary.total + delta.amount,
        }
        return patch, lookup.version if optimistic else None
