"""Exception taxonomy of the ingestion pipeline.

Cycle-local errors (fetch, parse, persist, journal) never stop the scheduler;
LockCheckError and OperationCancelled do.
"""

from __future__ import annotations

from typing import Optional


class IngestError(Exception):
    """Base class for every pipeline error."""


class FetchError(IngestError):
    """Transport failure or non-200 status from the meter endpoint."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ParseError(IngestError):
    """Malformed meter payload."""


class PersistError(IngestError):
    """The store rejected or could not receive a write. Nothing was committed."""


class JournalError(IngestError):
    """I/O failure on the durable buffer journal."""


class DrainError(IngestError):
    """A replayed journal entry failed to persist; the journal was left intact."""

    def __init__(self, index: int, total: int, cause: Exception):
        self.index = index
        self.total = total
        self.cause = cause
        super().__init__(f"persist failed for journal entry {index + 1}/{total}: {cause}")


class ReadingLostError(IngestError):
    """Persist failed AND the buffer append failed: the payload is gone.

    Not retriable. Callers must report it distinctly from ordinary cycle failures.
    """

    def __init__(self, persist_error: Exception, buffer_error: Exception):
        self.persist_error = persist_error
        self.buffer_error = buffer_error
        super().__init__(
            f"insert failed: {persist_error}; buffer append failed: {buffer_error}"
        )


class LockCheckError(IngestError):
    """The advisory lock query itself failed (distinct from 'not acquired')."""


class OperationCancelled(IngestError):
    """The stop event was set before the operation could complete."""
