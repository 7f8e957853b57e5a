"""In-process trigger host that turns record writes into engine invocations."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from threading import Lock
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from datastore.base import ChangeKind, DocumentChange
from datastore.mock_firestore import MockFirestoreCollection
from models.records import EventKind, LifecycleEvent, MeasurementRecord
from services.aggregation import AggregationEngine, ApplyResult

logger = logging.getLogger(__name__)

_EVENT_KINDS = {
    ChangeKind.created: EventKind.create,
    ChangeKind.updated: EventKind.update,
    ChangeKind.deleted: EventKind.delete,
}


def to_lifecycle_event(change: DocumentChange) -> LifecycleEvent:
    before = (
        MeasurementRecord.from_document(change.key, change.before)
        if change.before is not None
        else None
    )
    after = (
        MeasurementRecord.from_document(change.key, change.after)
        if change.after is not None
        else None
    )
    return LifecycleEvent(
        kind=_EVENT_KINDS[change.kind],
        record_id=change.key,
        before=before,
        after=after,
    )


class TriggerDispatcher:
    """Runs one independent engine invocation per record change.

    Invocations share nothing but the summary store and may finish in any
    order. A failed invocation is logged and dropped; it is never retried.
    """

    def __init__(self, engine: AggregationEngine, workers: int = 4) -> None:
        self.engine = engine
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rollup")
        self._futures: Dict[str, Future[ApplyResult]] = {}
        self._futures_lock = Lock()
        self._subscriptions: List[Callable[[], None]] = []

    def attach(self, collection: MockFirestoreCollection) -> None:
        """Start reacting to writes in ``collection``."""
        self._subscriptions.append(collection.subscribe(self.dispatch))

    def dispatch(self, change: DocumentChange) -> str:
        event = to_lifecycle_event(change)
        invocation_id = uuid4().hex
        future = self.executor.submit(self.engine.handle, event)
        with self._futures_lock:
            self._futures[invocation_id] = future
        future.add_done_callback(
            lambda f, iid=invocation_id, ev=event: self._finish(iid, ev, f)
        )
        return invocation_id

    def wait_idle(self, timeout: Optional[float] = 5.0) -> bool:
        """Block until all dispatched invocations finished; False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._futures_lock:
                pending = list(self._futures.values())
            if not pending:
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            if all(future.done() for future in pending):
                # Done callbacks are still logging.
                time.sleep(0.001)
                continue
            wait(pending, timeout=remaining)

    def shutdown(self) -> None:
        """Detach from collections and stop the worker pool."""
        while self._subscriptions:
            self._subscriptions.pop()()
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _finish(self, invocation_id: str, event: LifecycleEvent, future: Future[ApplyResult]) -> None:
        try:
            if future.cancelled():
                logger.warning(
                    "Rollup invocation cancelled",
                    extra={"record_id": event.record_id, "event_kind": event.kind.value},
                )
                return
            exc = future.exception()
            if exc is not None:
                logger.error(
                    "Rollup invocation failed: %s",
                    exc,
                    exc_info=exc,
                    extra={"record_id": event.record_id, "event_kind": event.kind.value},
                )
                return
            result = future.result()
            logger.debug(
                "Rollup invocation finished",
                extra={
                    "record_id": event.record_id,
                    "event_kind": event.kind.value,
                    "status": result.status.value,
                    "writes": result.writes,
                },
            )
        finally:
            with self._futures_lock:
                self._futures.pop(invocation_id, None)
