from __future__ import annotations
import copy
import json
import logging
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from pydantic_core import to_jsonable_python

from datastore.base import ChangeKind, DocumentChange, DocumentSnapshot
from datastore.errors import VersionConflictError
from settings import get_settings

logger = logging.getLogger(__name__)

ChangeListener = Callable[[DocumentChange], None]


def merge_document(existing: Mapping[str, Any], patch: Mapping[str, Any]) -> Dict[str, Any]:
    """Apply ``patch`` over ``existing`` with one level of nested map merging.

    Top-level fields named in the patch replace their counterparts, except
    that a mapping patched onto a mapping is merged key by key, so writing
    ``{"monthly": {"Jan": 1}}`` keeps ``monthly.Feb``.
    """
    merged = copy.deepcopy(dict(existing))
    for field, value in patch.items():
        current = merged.get(field)
        if isinstance(current, dict) and isinstance(value, Mapping):
            current.update(copy.deepcopy(dict(value)))
        else:
            merged[field] = copy.deepcopy(value)
    return merged


class MockFirestoreCollection:

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._documents: Dict[str, Tuple[int, Dict[str, Any]]] = {}
        self._listeners: List[ChangeListener] = []
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register ``listener`` for every write; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def get(self, key: str) -> DocumentSnapshot:
        with self._lock:
            entry = self._documents.get(key)
            if entry is None:
                return DocumentSnapshot(key=key, data=None, version=0)
            version, data = entry
            return DocumentSnapshot(key=key, data=copy.deepcopy(data), version=version)

    def set(
        self,
        key: str,
        data: Mapping[str, Any],
        *,
        merge: bool = False,
        expected_version: Optional[int] = None,
    ) -> int:
        """Create or overwrite ``key``; with ``merge`` only the named fields change.

        When ``expected_version`` is given the write only happens if the stored
        version still matches (0 meaning "must not exist yet").
        """
        with self._lock:
            entry = self._documents.get(key)
            current_version, before = entry if entry is not None else (0, None)
            if expected_version is not None and expected_version != current_version:
                raise VersionConflictError(key, expected_version, current_version)

            if merge and before is not None:
                after = merge_document(before, data)
            else:
                after = copy.deepcopy(dict(data))
            version = current_version + 1
            self._documents[key] = (version, after)
            self._persist()
            listeners = list(self._listeners)

        change = DocumentChange(
            kind=ChangeKind.created if before is None else ChangeKind.updated,
            collection=self.name,
            key=key,
            before=copy.deepcopy(before),
            after=copy.deepcopy(after),
        )
        self._notify(listeners, change)
        return version

    def add(self, data: Mapping[str, Any]) -> str:
        """Store ``data`` under a freshly generated key and return it."""
        key = uuid4().hex
        self.set(key, data, expected_version=0)
        return key

    def delete(self, key: str) -> bool:
        with self._lock:
            entry = self._documents.pop(key, None)
            if entry is None:
                return False
            self._persist()
            listeners = list(self._listeners)

        change = DocumentChange(
            kind=ChangeKind.deleted,
            collection=self.name,
            key=key,
            before=copy.deepcopy(entry[1]),
            after=None,
        )
        self._notify(listeners, change)
        return True

    def scan(self) -> list[DocumentSnapshot]:
        """Return snapshots of every stored document."""

        with self._lock:
            return [
                DocumentSnapshot(key=key, data=copy.deepcopy(data), version=version)
                for key, (version, data) in self._documents.items()
            ]

    def _notify(self, listeners: List[ChangeListener], change: DocumentChange) -> None:
        for listener in listeners:
            try:
                listener(change)
            except Exception:
                logger.exception(
                    "Change listener failed for %s/%s", self.name, change.key
                )

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            key: {"version": version, "data": to_jsonable_python(data)}
            for key, (version, data) in self._documents.items()
        }
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for key, payload in data.items():
            self._documents[key] = (int(payload.get("version", 1)), dict(payload.get("data") or {}))


@lru_cache
def build_default_collection(
    name: str,
    root_path: Optional[str] = None,
) -> MockFirestoreCollection:
    settings = get_settings()
    store_root = settings.store_root_path if root_path is None else root_path
    persistence = Path(store_root) / f"{name}.json" if store_root else None
    return MockFirestoreCollection(name=name, persistence_path=persistence)
