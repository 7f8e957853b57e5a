"""Rainfall record ingestion and the wiring of the rollup pipeline."""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional

from app.schemas import YearSummary
from datastore.errors import VersionConflictError
from datastore.mock_firestore import MockFirestoreCollection, build_default_collection
from models.records import MeasurementRecord
from services.aggregation import (
    AggregationEngine,
    ConcurrencyMode,
    SummaryNotFound,
)
from services.bucketing import resolve_timezone
from services.deltas import DeltaCalculator
from services.triggers import TriggerDispatcher
from settings import get_settings

logger = logging.getLogger(__name__)

_LEADING_FLOAT = re.compile(r"\s*([+-]?(?:Infinity|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?))")


def parse_amount(raw: Optional[str]) -> float:
    """Parse the leading number of ``raw``; anything unparseable becomes NaN."""
    if raw is None:
        return math.nan
    match = _LEADING_FLOAT.match(raw)
    if match is None:
        return math.nan
    return float(match.group(1).replace("Infinity", "inf"))


class RainfallService:
    """Stores measurement records and serves the rollups built from them."""

    def __init__(
        self,
        records: MockFirestoreCollection,
        summaries: MockFirestoreCollection,
        engine: AggregationEngine,
        dispatcher: TriggerDispatcher,
    ) -> None:
        self.records = records
        self.summaries = summaries
        self.engine = engine
        self.dispatcher = dispatcher

    def add_rainfall(self, amount: Optional[str], notes: Optional[str] = None) -> str:
        """Store a new measurement stamped with the server time and return its ID.

        The rollup happens asynchronously; its outcome never affects this call.
        """
        data: Dict[str, Any] = {
            "amount": parse_amount(amount),
            "created_at": datetime.now(timezone.utc),
        }
        if notes is not None:
            data["notes"] = notes
        record_id = self.records.add(data)
        logger.info("Stored rainfall record", extra={"record_id": record_id})
        return record_id

    def fetch_record(self, record_id: str) -> MeasurementRecord:
        snapshot = self.records.get(record_id)
        if snapshot.data is None:
            raise KeyError(f"Rainfall record {record_id!r} not found.")
        return MeasurementRecord.from_document(record_id, snapshot.data)

    def update_record(self, record_id: str, changes: Mapping[str, Any]) -> MeasurementRecord:
        snapshot = self.records.get(record_id)
        if not snapshot.exists:
            raise KeyError(f"Rainfall record {record_id!r} not found.")
        if changes:
            try:
                self.records.set(
                    record_id, changes, merge=True, expected_version=snapshot.version
                )
            except VersionConflictError as exc:
                # Never resurrect a record deleted since the read.
                if not self.records.get(record_id).exists:
                    raise KeyError(f"Rainfall record {record_id!r} not found.") from exc
                raise
        return self.fetch_record(record_id)

    def delete_record(self, record_id: str) -> None:
        if not self.records.delete(record_id):
            raise KeyError(f"Rainfall record {record_id!r} not found.")
        logger.info("Deleted rainfall record", extra={"record_id": record_id})

    def fetch_summary(self, year: int) -> YearSummary:
        lookup = self.engine.read_summary(year)
        if isinstance(lookup, SummaryNotFound):
            raise KeyError(f"No rainfall summary for year {year}.")
        return lookup.summary

    def shutdown(self) -> None:
        self.dispatcher.shutdown()


@lru_cache
def build_default_service(
    workers: Optional[int] = None,
) -> RainfallService:
    """Factory that wires the service with the default collections."""
    settings = get_settings()
    records = build_default_collection(settings.rainfall_collection)
    summaries = build_default_collection(settings.summary_collection)
    engine = AggregationEngine(
        store=summaries,
        calculator=DeltaCalculator(resolve_timezone(settings.bucket_timezone)),
        concurrency=ConcurrencyMode(settings.aggregation_concurrency),
        max_conflict_retries=settings.max_conflict_retries,
    )
    dispatcher = TriggerDispatcher(engine, workers=workers or settings.trigger_workers)
    dispatcher.attach(records)
    return RainfallService(
        records=records,
        summaries=summaries,
        engine=engine,
        dispatcher=dispatcher,
    )
