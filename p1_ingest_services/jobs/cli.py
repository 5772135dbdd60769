"""CLI entry point: ``p1-ingest``.

Modes (first match wins):
    --import        load the CSV exports from data_dir (with --dry-run: print SQL)
    --drain-buffer  replay the retry journal into the database
    --loop          run a cycle every --interval seconds under the advisory lock
    (default)       run a single cycle
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from sqlalchemy.engine import Engine

from p1_ingest_services.common.config import DEFAULT_CONFIG_PATH, ConfigError, Settings, load_settings
from p1_ingest_services.common.db import get_engine
from p1_ingest_services.ingest.errors import IngestError, LockCheckError, OperationCancelled
from p1_ingest_services.ingest.persistence.postgres import PostgresAdapter
from p1_ingest_services.ingest.resilience.journal import DurableBuffer
from p1_ingest_services.ingest.runner import replay_payload, run_once
from p1_ingest_services.ingest.transports.csv.loader import CSVLoadError
from p1_ingest_services.ingest.transports.http.client import MeterHttpClient

from .csv_import import import_csv_data
from .scheduler import PostgresAdvisoryLock, Scheduler

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="p1-ingest", description="P1 smart meter ingestion")
    p.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="path to JSON config file")
    p.add_argument("--loop", action="store_true", help="run in loop mode (use scheduler)")
    p.add_argument(
        "--interval",
        type=float,
        default=None,
        help="interval in seconds when running in loop mode (default: config, else 60)",
    )
    p.add_argument("--drain-buffer", action="store_true", help="drain local buffer and persist its entries")
    p.add_argument("--dry-run", action="store_true", help="fetch and log data without writing to the database")
    p.add_argument("--import", dest="import_csv", action="store_true", help="import CSV files from data_dir")
    return p


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handle(signum, _frame):
        logger.info("Signal %s received, stopping...", signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def _open_engine(settings: Settings) -> Engine:
    settings.require("db_dsn")
    return get_engine(settings)


def _run_import(settings: Settings, dry_run: bool) -> None:
    settings.require("data_dir")
    adapter = None if dry_run and not settings.db_dsn else PostgresAdapter(_open_engine(settings))
    inserted = import_csv_data(settings, adapter, dry_run=dry_run)
    logger.info("import completed rows=%d", inserted)


def _run_drain(settings: Settings, stop_event: threading.Event) -> None:
    adapter = PostgresAdapter(_open_engine(settings))
    buffer = DurableBuffer(settings.buffer_path)
    logger.info("drain starting path=%s pending=%d", buffer.path, buffer.pending_count())
    drained = buffer.drain(lambda raw: replay_payload(adapter, raw), stop_event=stop_event)
    logger.info("drain completed entries=%d pending=%d stats=%s", drained, buffer.pending_count(), buffer.stats)


def _run_cycles(settings: Settings, loop: bool, interval: Optional[float], dry_run: bool,
                stop_event: threading.Event) -> None:
    settings.require("meter_endpoint")
    client = MeterHttpClient(settings.meter_endpoint, timeout=settings.http_timeout_seconds)
    buffer = DurableBuffer(settings.buffer_path)

    # A dry single run never touches the database; the loop always needs it for the lock.
    engine = None if dry_run and not loop else _open_engine(settings)
    adapter = PostgresAdapter(engine) if engine is not None else None

    if not loop:
        run_once(client, adapter, buffer, dry_run=dry_run, stop_event=stop_event)
        logger.info("run completed")
        return

    scheduler = Scheduler(
        PostgresAdvisoryLock(engine, key=settings.lock_key),
        interval_seconds=interval if interval is not None else settings.interval_seconds,
    )
    logger.info(
        "Loop started: endpoint=%s interval=%.1fs lock_key=%s dry_run=%s",
        settings.meter_endpoint, scheduler.interval_seconds, settings.lock_key, dry_run,
    )
    try:
        scheduler.run(
            lambda stop: run_once(client, adapter, buffer, dry_run=dry_run, stop_event=stop),
            stop_event,
        )
    except OperationCancelled:
        logger.info("scheduler stopped: %s", scheduler.stats)


def main(argv: Optional[List[str]] = None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    args = build_parser().parse_args(argv)
    logger.info("p1-ingest starting")

    stop_event = threading.Event()
    _install_signal_handlers(stop_event)

    try:
        settings = load_settings(args.config)

        if args.import_csv:
            _run_import(settings, dry_run=args.dry_run)
        elif args.drain_buffer:
            _run_drain(settings, stop_event)
        else:
            _run_cycles(settings, args.loop, args.interval, args.dry_run, stop_event)
    except ConfigError as e:
        logger.error("configuration error: %s", e)
        sys.exit(2)
    except LockCheckError as e:
        logger.error("scheduler failed: %s", e)
        sys.exit(1)
    except OperationCancelled as e:
        logger.info("cancelled: %s", e)
    except (IngestError, CSVLoadError, ValueError) as e:
        logger.error("run failed: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
