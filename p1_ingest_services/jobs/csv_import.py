"""Historical import of the meter's 15-minute CSV exports.

Reads ``power-15m.csv`` and ``gas-15m.csv`` from ``settings.data_dir``,
merges them row by row and inserts one batch per calendar day (UTC), oldest
day first. A failing day stops the import; days already inserted stay.

The batch path is append-only: re-running an import duplicates rows.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from p1_ingest_services.common.config import ConfigError, Settings
from p1_ingest_services.ingest.errors import PersistError
from p1_ingest_services.ingest.persistence.postgres import PostgresAdapter
from p1_ingest_services.ingest.transports.csv.loader import CSVLoader, group_by_day

logger = logging.getLogger(__name__)

DRY_RUN_DAYS = 2


def import_csv_data(
    settings: Settings,
    adapter: Optional[PostgresAdapter],
    dry_run: bool = False,
    out: Callable[[str], None] = print,
) -> int:
    """Import every day found in the CSV exports.

    In dry-run mode nothing is written: the INSERT statements of the first
    two days are passed to ``out`` instead.

    Returns:
        Number of readings inserted (0 in dry-run mode)

    Raises:
        ConfigError: data_dir is not configured, or no adapter outside dry-run
        CSVLoadError: the exports cannot be read or do not line up
        PersistError: a day failed to insert
    """
    if not settings.data_dir:
        raise ConfigError("data_dir not configured")
    if adapter is None and not dry_run:
        raise ConfigError("a database adapter is required to import CSV data")

    logger.info("[Import] Loading CSV files from %s", settings.data_dir)
    merged = CSVLoader(settings.data_dir).load_and_merge()
    logger.info("[Import] Loaded %d records", len(merged))

    by_day = group_by_day(merged)
    days = sorted(by_day)
    logger.info("[Import] Found %d days of data", len(days))

    if dry_run:
        renderer = adapter if adapter is not None else PostgresAdapter(None)
        preview = days[:DRY_RUN_DAYS]
        logger.info("[Import] Dry-run: generating SQL for first %d days", len(preview))
        for i, day in enumerate(preview, start=1):
            readings = [m.to_reading() for m in by_day[day]]
            logger.info("[Import] Day %d: %s (%d readings)", i, day, len(readings))
            out(renderer.generate_insert_sql(readings))
        return 0

    total = 0
    for i, day in enumerate(days, start=1):
        readings = [m.to_reading() for m in by_day[day]]
        logger.info("[Import] Processing day %d/%d: %s (%d readings)", i, len(days), day, len(readings))
        try:
            total += adapter.insert_readings_batch(readings)
        except PersistError:
            logger.error("[Import] Day %s failed after %d inserted readings, stopping", day, total)
            raise
        logger.info("[Import] Inserted %d readings for %s", len(readings), day)

    return total
