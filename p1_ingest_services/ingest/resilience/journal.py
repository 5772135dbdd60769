"""Durable buffer: JSON-lines journal of payloads that failed to persist.

Each line is one raw meter payload exactly as fetched. ``drain`` replays
every line through a persist callback and truncates the file only when ALL
of them succeed. A partial failure leaves the file untouched, so entries that
did persist are replayed again next time: the callback must be idempotent.

The internal lock only serializes callers inside this process. Two processes
(or hosts) pointed at the same path are NOT coordinated; each instance must
own its journal path.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional, Union

from ..errors import DrainError, JournalError, OperationCancelled

logger = logging.getLogger(__name__)

PersistCallback = Callable[[bytes], Any]


def encode_line(item: Any) -> bytes:
    """Serialize one journal entry without its trailing newline.

    Bytes are raw JSON documents: they must parse, and are kept verbatim when
    they already fit on one line, compacted otherwise. Any other value,
    ``str`` included, is JSON-encoded.

    Raises:
        JournalError: invalid JSON bytes or a value json cannot encode
    """
    if isinstance(item, (bytes, bytearray)):
        raw = bytes(item).strip()
        try:
            document = json.loads(raw)
        except ValueError as e:
            raise JournalError(f"payload is not valid JSON: {e}") from e
        if b"\n" not in raw and b"\r" not in raw:
            return raw
        return json.dumps(document, separators=(",", ":")).encode("utf-8")

    try:
        return json.dumps(item, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise JournalError(f"entry is not JSON serializable: {e}") from e


class DurableBuffer:
    """Append-only journal with all-or-nothing drain.

    Attributes:
        path: Location of the journal file
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._lock = threading.Lock()

        self._total_appended = 0
        self._total_drained = 0
        self._drain_failures = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def stats(self) -> dict:
        return {
            "path": str(self._path),
            "total_appended": self._total_appended,
            "total_drained": self._total_drained,
            "drain_failures": self._drain_failures,
        }

    def append(self, item: Any) -> None:
        """Append one entry. The file is opened and closed on every call.

        Raises:
            JournalError: the entry cannot be encoded or the file cannot be written.
        """
        line = encode_line(item) + b"\n"

        with self._lock:
            try:
                with open(self._path, "ab") as fh:
                    fh.write(line)
            except OSError as e:
                raise JournalError(f"append to {self._path} failed: {e}") from e
            self._total_appended += 1

        logger.info("BUFFERED path=%s bytes=%d", self._path, len(line))

    def pending_count(self) -> int:
        with self._lock:
            return len(self._read_lines())

    def drain(
        self,
        persist: PersistCallback,
        stop_event: Optional[threading.Event] = None,
    ) -> int:
        """Replay every journal entry in file order.

        Args:
            persist: Called once per entry with the raw line bytes
            stop_event: Checked before each entry; when set the drain stops

        Returns:
            Number of entries replayed (the journal is now empty)

        Raises:
            DrainError: ``persist`` failed; remaining entries were not attempted
            OperationCancelled: ``stop_event`` was set
            JournalError: the journal could not be read or truncated
        """
        with self._lock:
            lines = self._read_lines()
            if not lines:
                return 0

            total = len(lines)
            logger.info("DRAIN_START path=%s entries=%d", self._path, total)

            for index, line in enumerate(lines):
                if stop_event is not None and stop_event.is_set():
                    logger.warning(
                        "DRAIN_CANCELLED path=%s replayed=%d/%d journal kept",
                        self._path, index, total,
                    )
                    raise OperationCancelled("drain cancelled")
                try:
                    persist(line)
                except Exception as e:
                    self._drain_failures += 1
                    logger.error(
                        "DRAIN_FAILED path=%s entry=%d/%d err=%s journal kept",
                        self._path, index + 1, total, e,
                    )
                    raise DrainError(index, total, e) from e

            try:
                with open(self._path, "r+b") as fh:
                    fh.truncate(0)
            except OSError as e:
                raise JournalError(f"truncate {self._path} failed: {e}") from e

            self._total_drained += total
            logger.info("DRAIN_DONE path=%s entries=%d", self._path, total)
            return total

    def _read_lines(self) -> List[bytes]:
        try:
            data = self._path.read_bytes()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise JournalError(f"read {self._path} failed: {e}") from e
        return [line for line in data.splitlines() if line.strip()]
