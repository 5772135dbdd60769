"""Ingestion cycle: fetch -> parse -> persist, with journal fallback."""

from __future__ import annotations

import json
import logging
import threading
from typing import List, Optional, Tuple

from .domain.reading import ExternalReading, Reading
from .errors import JournalError, OperationCancelled, PersistError, ReadingLostError
from .parser import parse_full_reading
from .persistence.postgres import PostgresAdapter
from .resilience.journal import DurableBuffer
from .transports.http.client import MeterHttpClient

logger = logging.getLogger(__name__)


def run_once(
    client: MeterHttpClient,
    adapter: Optional[PostgresAdapter],
    buffer: Optional[DurableBuffer],
    dry_run: bool = False,
    stop_event: Optional[threading.Event] = None,
) -> Tuple[Reading, List[ExternalReading]]:
    """Run one ingestion cycle.

    If persisting fails, the raw payload as fetched (not the parsed reading)
    is appended to the journal so a later drain re-parses it, and the
    PersistError is re-raised: the cycle failed but the data is safe.

    Returns:
        The parsed reading and its external readings

    Raises:
        OperationCancelled: stop requested before or during the fetch
        FetchError, ParseError: the cycle is lost, nothing is buffered
        PersistError: persisting failed, payload buffered
        ReadingLostError: persisting AND buffering failed
    """
    if stop_event is not None and stop_event.is_set():
        raise OperationCancelled("cycle cancelled before fetch")

    body = client.fetch(stop_event=stop_event)
    reading, externals = parse_full_reading(body)

    if dry_run:
        try:
            pretty = json.dumps(json.loads(body), indent=2)
            logger.info("[DRY RUN] Fetched data:\n%s", pretty)
        except ValueError:
            logger.info("[DRY RUN] Fetched data (raw): %s", body.decode("utf-8", errors="replace"))
        logger.info("[DRY RUN] Parsed reading: %s externals=%s", reading, externals)
        return reading, externals

    if adapter is None or buffer is None:
        raise ValueError("adapter and buffer are required unless dry_run is set")

    try:
        adapter.insert_reading(reading, externals)
    except PersistError as persist_error:
        try:
            buffer.append(body)
        except JournalError as buffer_error:
            logger.critical(
                "READING_LOST unique_id=%s persist_err=%s buffer_err=%s",
                reading.unique_id or "-", persist_error, buffer_error,
            )
            raise ReadingLostError(persist_error, buffer_error) from persist_error
        logger.warning(
            "PERSIST_DEFERRED unique_id=%s buffered_to=%s err=%s",
            reading.unique_id or "-", buffer.path, persist_error,
        )
        raise

    return reading, externals


def replay_payload(adapter: PostgresAdapter, raw: bytes) -> int:
    """Drain callback: parse a journal line and persist it (idempotent upsert)."""
    reading, externals = parse_full_reading(raw)
    return adapter.insert_reading(reading, externals)
