"""Unit tests for the aggregation engine."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import pytest

from datastore.base import DocumentSnapshot
from datastore.errors import DocumentStoreUnavailableError
from datastore.mock_firestore import MockFirestoreCollection
from models.records import Bucket, Delta, EventKind, LifecycleEvent, MeasurementRecord
from services.aggregation import (
    AggregationConflictError,
    AggregationEngine,
    ApplyStatus,
    ConcurrencyMode,
    MissingSummaryError,
    SummaryFound,
    SummaryNotFound,
)


class CountingCollection(MockFirestoreCollection):
    def __init__(self, name: str = "total") -> None:
        super().__init__(name)
        self.writes = 0

    def set(self, key, data, *, merge=False, expected_version=None) -> int:
        self.writes += 1
        return super().set(key, data, merge=merge, expected_version=expected_version)


class UnreachableAfterCollection(CountingCollection):
    """Fails every read once ``healthy_reads`` reads have been served."""

    def __init__(self, healthy_reads: int) -> None:
        super().__init__()
        self.healthy_reads = healthy_reads

    def get(self, key: str) -> DocumentSnapshot:
        if self.healthy_reads <= 0:
            raise DocumentStoreUnavailableError("store offline")
        self.healthy_reads -= 1
        return super().get(key)


class InterleavingCollection(CountingCollection):
    """Simulates another writer landing between the engine's read and write."""

    def __init__(self, competing_patch: Mapping[str, Any], interleave_reads: int = 1) -> None:
        super().__init__()
        self.competing_patch = competing_patch
        self.interleave_reads = interleave_reads

    def get(self, key: str) -> DocumentSnapshot:
        snapshot = super().get(key)
        if self.interleave_reads > 0:
            self.interleave_reads -= 1
            current = super().get(key).data or {"monthly": {}, "total": 0.0}
            month, amount = next(iter(self.competing_patch.items()))
            MockFirestoreCollection.set(
                self,
                key,
                {
                    "monthly": {month: current["monthly"].get(month, 0.0) + amount},
                    "total": current["total"] + amount,
                },
                merge=True,
            )
        return snapshot


def _record(amount: Optional[float], when: Optional[datetime], record_id: str = "rec") -> MeasurementRecord:
    return MeasurementRecord(record_id=record_id, amount=amount, recorded_at=when)


def _at(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, 12, 0, tzinfo=timezone.utc)


def _create(amount: float, when: datetime, record_id: str = "rec") -> LifecycleEvent:
    return LifecycleEvent(EventKind.create, record_id, after=_record(amount, when, record_id))


def _update(before: MeasurementRecord, after: MeasurementRecord) -> LifecycleEvent:
    return LifecycleEvent(EventKind.update, before.record_id, before=before, after=after)


def _delete(amount: float, when: datetime, record_id: str = "rec") -> LifecycleEvent:
    return LifecycleEvent(EventKind.delete, record_id, before=_record(amount, when, record_id))


def _summary(store: MockFirestoreCollection, year: int) -> Optional[dict]:
    return store.get(str(year)).data


@pytest.fixture()
def store() -> CountingCollection:
    return CountingCollection()


@pytest.fixture()
def engine(store: CountingCollection) -> AggregationEngine:
    return AggregationEngine(store=store)


def test_rollup_scenario_across_create_update_delete(engine, store) -> None:
    engine.handle(_create(10.0, _at(2023, 1, 15), "a"))
    assert _summary(store, 2023) == {"total": 10.0, "monthly": {"Jan": 10.0}}

    engine.handle(_create(5.0, _at(2023, 2, 10), "b"))
    assert _summary(store, 2023) == {"total": 15.0, "monthly": {"Jan": 10.0, "Feb": 5.0}}

    engine.handle(_update(_record(10.0, _at(2023, 1, 15), "a"), _record(20.0, _at(2023, 1, 15), "a")))
    assert _summary(store, 2023) == {"total": 25.0, "monthly": {"Jan": 20.0, "Feb": 5.0}}

    engine.handle(_delete(5.0, _at(2023, 2, 10), "b"))
    assert _summary(store, 2023) == {"total": 20.0, "monthly": {"Jan": 20.0, "Feb": 0.0}}


def test_creates_in_same_bucket_sum_up(engine, store) -> None:
    amounts = [1.5, 2.25, 0.25, 4.0]
    for index, amount in enumerate(amounts):
        engine.handle(_create(amount, _at(2024, 6, index + 1), f"r{index}"))

    summary = _summary(store, 2024)
    assert summary["monthly"] == {"Jun": sum(amounts)}
    assert summary["total"] == sum(amounts)


def test_first_event_for_year_creates_document_with_single_month(engine, store) -> None:
    result = engine.handle(_create(7.5, _at(2021, 11, 3)))

    assert result.status is ApplyStatus.applied
    assert result.writes == 1
    assert _summary(store, 2021) == {"total": 7.5, "monthly": {"Nov": 7.5}}


def test_delete_exactly_reverses_create(engine, store) -> None:
    engine.handle(_create(3.5, _at(2022, 3, 1), "base"))
    engine.handle(_create(1.25, _at(2022, 4, 1), "other"))
    before = _summary(store, 2022)

    engine.handle(_create(2.75, _at(2022, 3, 20), "temp"))
    engine.handle(_delete(2.75, _at(2022, 3, 20), "temp"))

    assert _summary(store, 2022) == before


def test_update_with_unchanged_amount_writes_nothing(engine, store) -> None:
    engine.handle(_create(4.0, _at(2023, 5, 5)))
    writes_before = store.writes

    result = engine.handle(_update(_record(4.0, _at(2023, 5, 5)), _record(4.0, _at(2024, 8, 1))))

    assert result.status is ApplyStatus.skipped
    assert result.reason == "amount unchanged"
    assert store.writes == writes_before
    assert _summary(store, 2023) == {"total": 4.0, "monthly": {"May": 4.0}}
    assert _summary(store, 2024) is None


def test_update_within_month_adjusts_by_difference(engine, store) -> None:
    engine.handle(_create(6.0, _at(2023, 7, 1)))
    engine.handle(_create(1.0, _at(2023, 8, 1), "other"))
    writes_before = store.writes

    result = engine.handle(_update(_record(6.0, _at(2023, 7, 1)), _record(9.5, _at(2023, 7, 1))))

    assert result.writes == 2
    assert store.writes - writes_before == 2
    assert _summary(store, 2023) == {"total": 10.5, "monthly": {"Jul": 9.5, "Aug": 1.0}}


def test_update_moving_across_years_touches_both_documents(engine, store) -> None:
    engine.handle(_create(8.0, _at(2022, 12, 31)))

    result = engine.handle(_update(_record(8.0, _at(2022, 12, 31)), _record(3.0, _at(2023, 1, 1))))

    assert result.writes == 2
    assert _summary(store, 2022) == {"total": 0.0, "monthly": {"Dec": 0.0}}
    assert _summary(store, 2023) == {"total": 3.0, "monthly": {"Jan": 3.0}}


def test_patch_keeps_other_months(engine, store) -> None:
    store.set("2020", {"total": 9.0, "monthly": {"Jan": 4.0, "Feb": 5.0}})

    engine.apply([Delta(Bucket(2020, "Mar"), 1.0)])

    assert _summary(store, 2020) == {"total": 10.0, "monthly": {"Jan": 4.0, "Feb": 5.0, "Mar": 1.0}}


def test_missing_total_and_month_default_to_zero(engine, store) -> None:
    store.set("2019", {"monthly": {}})

    engine.apply([Delta(Bucket(2019, "Apr"), 2.0)])

    assert _summary(store, 2019) == {"total": 2.0, "monthly": {"Apr": 2.0}}


def test_reversal_on_absent_year_fails_without_writing(engine, store) -> None:
    with pytest.raises(MissingSummaryError) as excinfo:
        engine.handle(_delete(5.0, _at(2018, 2, 2)))

    assert excinfo.value.year == 2018
    assert store.writes == 0
    assert _summary(store, 2018) is None


def test_update_into_new_year_fails_when_source_year_absent(engine, store) -> None:
    with pytest.raises(MissingSummaryError):
        engine.handle(_update(_record(1.0, _at(2010, 1, 1)), _record(2.0, _at(2011, 1, 1))))

    assert store.writes == 0
    assert _summary(store, 2011) is None


def test_malformed_events_are_skipped_not_failed(engine, store) -> None:
    result = engine.handle(LifecycleEvent(EventKind.create, "x", after=_record(None, _at(2023, 1, 1))))

    assert result.status is ApplyStatus.skipped
    assert result.reason == "created amount missing"
    assert store.writes == 0


def test_zero_amount_create_leaves_year_absent(engine, store) -> None:
    result = engine.handle(_create(0.0, _at(2023, 1, 1)))

    assert result.status is ApplyStatus.skipped
    assert store.writes == 0
    assert _summary(store, 2023) is None

    with pytest.raises(MissingSummaryError):
        engine.handle(_delete(0.0, _at(2023, 1, 1)))


def test_update_moving_between_months_of_one_year(engine, store) -> None:
    engine.handle(_create(8.0, _at(2023, 1, 10)))
    writes_before = store.writes

    result = engine.handle(_update(_record(8.0, _at(2023, 1, 10)), _record(3.0, _at(2023, 3, 5))))

    assert result.writes == 2
    assert store.writes - writes_before == 2
    assert _summary(store, 2023) == {"total": 3.0, "monthly": {"Jan": 0.0, "Mar": 3.0}}


def test_empty_delta_sequence_is_skipped(engine, store) -> None:
    result = engine.apply([])

    assert result.status is ApplyStatus.skipped
    assert store.writes == 0


def test_read_failure_stops_remaining_deltas_without_rollback() -> None:
    store = UnreachableAfterCollection(healthy_reads=1)
    store.set("2023", {"total": 5.0, "monthly": {"Jan": 5.0}})
    store.writes = 0
    engine = AggregationEngine(store=store)

    with pytest.raises(DocumentStoreUnavailableError):
        engine.handle(_update(_record(5.0, _at(2023, 1, 2)), _record(2.0, _at(2024, 1, 2))))

    assert store.writes == 1
    assert MockFirestoreCollection.get(store, "2023").data == {"total": 0.0, "monthly": {"Jan": 0.0}}
    assert MockFirestoreCollection.get(store, "2024").data is None


def test_redelivered_event_is_applied_twice(engine, store) -> None:
    event = _create(2.0, _at(2023, 9, 9))

    engine.handle(event)
    engine.handle(event)

    assert _summary(store, 2023) == {"total": 4.0, "monthly": {"Sep": 4.0}}


def test_read_summary_returns_tagged_lookup(engine, store) -> None:
    assert engine.read_summary(1999) == SummaryNotFound(year=1999)

    store.set("1999", {"total": 1.0, "monthly": {"Jan": 1.0}})
    lookup = engine.read_summary(1999)

    assert isinstance(lookup, SummaryFound)
    assert lookup.summary.total == 1.0
    assert lookup.version == 1


def test_merge_mode_loses_concurrent_update() -> None:
    store = InterleavingCollection(competing_patch={"Jan": 100.0})
    store.set("2023", {"total": 1.0, "monthly": {"Jan": 1.0}})
    engine = AggregationEngine(store=store, concurrency=ConcurrencyMode.merge)

    engine.apply([Delta(Bucket(2023, "Jan"), 2.0)])

    # The competing +100 was overwritten by a write computed from the stale read.
    assert _summary(store, 2023) == {"total": 3.0, "monthly": {"Jan": 3.0}}


def test_optimistic_mode_retries_on_concurrent_update(caplog) -> None:
    store = InterleavingCollection(competing_patch={"Jan": 100.0})
    store.set("2023", {"total": 1.0, "monthly": {"Jan": 1.0}})
    engine = AggregationEngine(store=store, concurrency=ConcurrencyMode.optimistic)

    with caplog.at_level("WARNING", logger="services.aggregation"):
        result = engine.apply([Delta(Bucket(2023, "Jan"), 2.0)])

    assert result.writes == 1
    assert _summary(store, 2023) == {"total": 103.0, "monthly": {"Jan": 103.0}}
    assert any(getattr(record, "attempt", None) == 1 for record in caplog.records)


def test_optimistic_mode_creates_year_only_once() -> None:
    store = InterleavingCollection(competing_patch={"Feb": 4.0})
    engine = AggregationEngine(store=store, concurrency=ConcurrencyMode.optimistic)

    engine.apply([Delta(Bucket(2025, "Mar"), 1.0)])

    assert _summary(store, 2025) == {"total": 5.0, "monthly": {"Feb": 4.0, "Mar": 1.0}}


def test_optimistic_mode_gives_up_after_retries() -> None:
    store = InterleavingCollection(competing_patch={"Jan": 1.0}, interleave_reads=10)
    store.set("2023", {"total": 0.0, "monthly": {}})
    engine = AggregationEngine(
        store=store,
        concurrency=ConcurrencyMode.optimistic,
        max_conflict_retries=2,
    )

    with pytest.raises(AggregationConflictError) as excinfo:
        engine.apply([Delta(Bucket(2023, "Jan"), 5.0)])

    assert excinfo.value.attempts == 3
    assert _summary(store, 2023) == {"total": 3.0, "monthly": {"Jan": 3.0}}
