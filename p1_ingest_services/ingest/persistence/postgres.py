"""PostgreSQL persistence for meter readings.

Two write paths:
- insert_reading: idempotent upsert keyed by the natural identifier, with
  the external readings of that reading replaced wholesale.
- insert_readings_batch: append-only multi-row insert for CSV imports.

Both run inside a single transaction; any failure rolls everything back and
surfaces as PersistError.
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.elements import TextClause

from ..domain.reading import ExternalReading, Reading
from ..errors import PersistError
from .linkage import LinkageStrategy, detect_linkage

logger = logging.getLogger(__name__)

READING_COLUMNS: List[str] = Reading.column_names()

# Preserved on conflict: the natural key and the first-seen creation time.
UPSERT_UPDATE_COLUMNS: List[str] = [
    c for c in READING_COLUMNS if c not in ("unique_id", "created_at")
]

# CSV exports only carry timestamps and measurements.
BATCH_COLUMNS: List[str] = [
    c for c in READING_COLUMNS
    if c not in ("unique_id", "wifi_ssid", "wifi_strength", "smr_version", "meter_model", "gas_unique_id")
]

EXTERNAL_COLUMNS: List[str] = ["created_at", "unique_id", "type", "timestamp", "value", "unit"]

_TZ_DATETIME = DateTime(timezone=True)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _quote(column: str) -> str:
    return f'"{column}"'


def _sql_literal(value) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, datetime):
        return "'" + value.strftime("%Y-%m-%d %H:%M:%S") + "'"
    if isinstance(value, float) and not math.isfinite(value):
        if math.isnan(value):
            return "'NaN'"
        return "'Infinity'" if value > 0 else "'-Infinity'"
    if isinstance(value, (int, float)):
        return repr(value)
    return "'" + str(value).replace("'", "''") + "'"


class PostgresAdapter:
    """Writer for p1.meter_readings and p1.external_readings.

    Attributes:
        schema: Database schema holding both tables
        linkage: Linkage strategy, probed on first use unless injected

    ``engine`` may be None for an adapter that only renders SQL
    (generate_insert_sql); the write paths need a real engine.
    """

    def __init__(
        self,
        engine: Optional[Engine],
        schema: str = "p1",
        linkage: Optional[LinkageStrategy] = None,
    ):
        self._engine = engine
        self._schema = schema
        self._linkage = linkage
        self._linkage_lock = threading.Lock()

        self._readings_table = f"{schema}.meter_readings"
        self._externals_table = f"{schema}.external_readings"

    @property
    def schema(self) -> str:
        return self._schema

    @property
    def linkage(self) -> LinkageStrategy:
        if self._linkage is None:
            with self._linkage_lock:
                if self._linkage is None:
                    self._linkage = detect_linkage(self._engine, self._schema)
        return self._linkage

    # ------------------------------------------------------------------
    # Single reading (idempotent)
    # ------------------------------------------------------------------

    def insert_reading(
        self,
        reading: Reading,
        externals: Iterable[ExternalReading] = (),
    ) -> int:
        """Upsert one reading and replace its external readings.

        On conflict every column except ``unique_id`` and ``created_at`` is
        overwritten. ``created_at`` is stamped with the current UTC time when
        unset. Readings without a natural identifier are plain inserts.

        Returns:
            Row id of the meter_readings row

        Raises:
            PersistError: any database failure (the transaction is rolled back)
        """
        externals = list(externals)
        linkage = self.linkage

        row = reading.to_row()
        if row["created_at"] is None:
            row["created_at"] = _utc_now()

        try:
            with self._engine.begin() as conn:
                row_id = conn.execute(
                    self._reading_statement(upsert=bool(reading.unique_id)),
                    row,
                ).scalar_one()
                self._replace_externals(conn, linkage, reading, row_id, row["created_at"], externals)
        except SQLAlchemyError as e:
            logger.error(
                "PERSIST_FAILED unique_id=%s externals=%d err=%s",
                reading.unique_id or "-", len(externals), e,
            )
            raise PersistError(f"insert reading: {e}") from e

        logger.info(
            "PERSISTED id=%s unique_id=%s externals=%d",
            row_id, reading.unique_id or "-", len(externals),
        )
        return int(row_id)

    def _reading_statement(self, upsert: bool) -> TextClause:
        columns = ", ".join(READING_COLUMNS)
        placeholders = ", ".join(f":{c}" for c in READING_COLUMNS)
        sql = f"INSERT INTO {self._readings_table} ({columns}) VALUES ({placeholders})"
        if upsert:
            assignments = ", ".join(f"{c} = EXCLUDED.{c}" for c in UPSERT_UPDATE_COLUMNS)
            sql += f" ON CONFLICT (unique_id) DO UPDATE SET {assignments}"
        sql += " RETURNING id"
        return text(sql).bindparams(bindparam("created_at", type_=_TZ_DATETIME))

    def _replace_externals(
        self,
        conn: Connection,
        linkage: LinkageStrategy,
        reading: Reading,
        row_id: int,
        created_at: datetime,
        externals: List[ExternalReading],
    ) -> None:
        if linkage is LinkageStrategy.BY_GENERATED_ID:
            parent = row_id
        else:
            parent = reading.unique_id
            if not parent:
                if externals:
                    logger.warning(
                        "EXTERNALS_SKIPPED reason=no_natural_key count=%d row_id=%s",
                        len(externals), row_id,
                    )
                return

        conn.execute(
            text(f"DELETE FROM {self._externals_table} WHERE {linkage.column} = :parent"),
            {"parent": parent},
        )
        if not externals:
            return

        columns = [linkage.column] + EXTERNAL_COLUMNS
        stmt = text(
            f"INSERT INTO {self._externals_table} ({', '.join(_quote(c) for c in columns)}) "
            f"VALUES ({', '.join(':' + c for c in columns)})"
        ).bindparams(bindparam("created_at", type_=_TZ_DATETIME))

        conn.execute(
            stmt,
            [
                {
                    linkage.column: parent,
                    "created_at": ext.created_at or created_at,
                    "unique_id": ext.unique_id,
                    "type": ext.type,
                    "timestamp": ext.timestamp,
                    "value": ext.value,
                    "unit": ext.unit,
                }
                for ext in externals
            ],
        )

    # ------------------------------------------------------------------
    # Batch (append-only, CSV import)
    # ------------------------------------------------------------------

    def insert_readings_batch(self, readings: Sequence[Reading]) -> int:
        """Insert many readings with one multi-row INSERT.

        No conflict handling: submitting the same rows twice duplicates them.
        Readings that carry a natural identifier must go through
        insert_reading instead.

        Returns:
            Number of rows inserted

        Raises:
            ValueError: a reading has a natural identifier
            PersistError: any database failure (the transaction is rolled back)
        """
        if not readings:
            return 0

        identified = [r.unique_id for r in readings if r.unique_id]
        if identified:
            raise ValueError(
                f"batch insert is append-only; {len(identified)} reading(s) carry a "
                "natural identifier, use insert_reading"
            )

        stmt, params = self._batch_statement(readings)
        try:
            with self._engine.begin() as conn:
                conn.execute(stmt, params)
        except SQLAlchemyError as e:
            logger.error("BATCH_FAILED rows=%d err=%s", len(readings), e)
            raise PersistError(f"insert batch: {e}") from e

        logger.info("BATCH_INSERTED rows=%d", len(readings))
        return len(readings)

    def _batch_rows(self, readings: Sequence[Reading]) -> List[List]:
        now = _utc_now()
        rows = []
        for reading in readings:
            row = [getattr(reading, c) for c in BATCH_COLUMNS]
            if reading.created_at is None:
                row[BATCH_COLUMNS.index("created_at")] = now
            rows.append(row)
        return rows

    def _batch_statement(self, readings: Sequence[Reading]) -> Tuple[TextClause, dict]:
        params = {}
        tuples = []
        for i, row in enumerate(self._batch_rows(readings)):
            names = [f"{c}_{i}" for c in BATCH_COLUMNS]
            params.update(zip(names, row))
            tuples.append("(" + ", ".join(":" + n for n in names) + ")")

        sql = (
            f"INSERT INTO {self._readings_table} ({', '.join(BATCH_COLUMNS)}) VALUES "
            + ", ".join(tuples)
        )
        stmt = text(sql).bindparams(
            *[bindparam(f"created_at_{i}", type_=_TZ_DATETIME) for i in range(len(tuples))]
        )
        return stmt, params

    def generate_insert_sql(self, readings: Sequence[Reading]) -> str:
        """Render the batch INSERT with literal values, for dry runs.

        One value tuple per line and a single terminating semicolon. Empty
        input gives an empty string.
        """
        if not readings:
            return ""

        tuples = [
            "(" + ", ".join(_sql_literal(v) for v in row) + ")"
            for row in self._batch_rows(readings)
        ]
        return (
            f"INSERT INTO {self._readings_table} ({', '.join(BATCH_COLUMNS)}) VALUES\n"
            + ",\n".join(tuples)
            + ";"
        )
