"""Contracts between the aggregation engine and its document store."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol


@dataclass(frozen=True)
class DocumentSnapshot:
    """Point-in-time copy of a document; ``version`` is 0 when it does not exist."""

    key: str
    data: Optional[Dict[str, Any]]
    version: int = 0

    @property
    def exists(self) -> bool:
        return self.data is not None


class ChangeKind(str, Enum):
    created = "created"
    updated = "updated"
    deleted = "deleted"


@dataclass(frozen=True)
class DocumentChange:
    kind: ChangeKind
    collection: str
    key: str
    before: Optional[Dict[str, Any]]
    after: Optional[Dict[str, Any]]


class SummaryStore(Protocol):
    """Read and merge-patch access to per-year summary documents."""

    def get(self, key: str) -> DocumentSnapshot:
        ...

    def set(
        self,
        key: str,
        data: Mapping[str, Any],
        *,
        merge: bool = False,
        expected_version: Optional[int] = None,
    ) -> int:
        ...
