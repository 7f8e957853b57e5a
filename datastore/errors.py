from __future__ import annotations


class DocumentStoreError(Exception):
    """Base class for failures raised by a document collection."""


class DocumentStoreUnavailableError(DocumentStoreError):
    """The backing store could not be reached."""


class VersionConflictError(DocumentStoreError):
    """A conditional write found a different document version than expected."""

    def __init__(self, key: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Document {key!r} is at version {actual}, expected {expected}."
        )
        self.key = key
        self.expected = expected
        self.actual = actual
