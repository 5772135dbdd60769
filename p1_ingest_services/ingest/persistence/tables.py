"""Table definitions for both storage-schema generations.

Used to bootstrap empty databases (development, tests). Existing databases
are never altered here.
"""

from __future__ import annotations

import logging

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    Table,
    Text,
    text,
)
from sqlalchemy.engine import Engine

from .linkage import LinkageStrategy

logger = logging.getLogger(__name__)

# SQLite only autoincrements INTEGER PRIMARY KEY.
_RowId = BigInteger().with_variant(Integer(), "sqlite")


def build_metadata(
    schema: str = "p1",
    linkage: LinkageStrategy = LinkageStrategy.BY_NATURAL_KEY,
) -> MetaData:
    metadata = MetaData(schema=schema)

    Table(
        "meter_readings",
        metadata,
        Column("id", _RowId, primary_key=True, autoincrement=True),
        Column("unique_id", Text, unique=True, nullable=True),
        Column("created_at", DateTime(timezone=True), nullable=False),
        Column("wifi_ssid", Text),
        Column("wifi_strength", Integer),
        Column("smr_version", Integer),
        Column("meter_model", Text),
        Column("active_tariff", Integer),
        Column("total_power_import_kwh", Float),
        Column("total_power_import_t1_kwh", Float),
        Column("total_power_import_t2_kwh", Float),
        Column("total_power_export_kwh", Float),
        Column("total_power_export_t1_kwh", Float),
        Column("total_power_export_t2_kwh", Float),
        Column("active_power_w", Float),
        Column("active_power_l1_w", Float),
        Column("active_power_l2_w", Float),
        Column("active_power_l3_w", Float),
        Column("active_voltage_l1_v", Float),
        Column("active_voltage_l2_v", Float),
        Column("active_voltage_l3_v", Float),
        Column("active_current_a", Float),
        Column("active_current_l1_a", Float),
        Column("active_current_l2_a", Float),
        Column("active_current_l3_a", Float),
        Column("voltage_sag_l1_count", Integer),
        Column("voltage_sag_l2_count", Integer),
        Column("voltage_sag_l3_count", Integer),
        Column("voltage_swell_l1_count", Integer),
        Column("voltage_swell_l2_count", Integer),
        Column("voltage_swell_l3_count", Integer),
        Column("any_power_fail_count", Integer),
        Column("long_power_fail_count", Integer),
        Column("total_gas_m3", Float),
        Column("gas_timestamp", BigInteger),
        Column("gas_unique_id", Text),
    )

    if linkage is LinkageStrategy.BY_GENERATED_ID:
        link_column = Column(
            "meter_reading_id",
            _RowId,
            ForeignKey(f"{schema}.meter_readings.id", ondelete="CASCADE"),
            nullable=False,
        )
    else:
        link_column = Column("meter_reading_unique_id", Text, nullable=False)

    Table(
        "external_readings",
        metadata,
        Column("id", _RowId, primary_key=True, autoincrement=True),
        link_column,
        Column("created_at", DateTime(timezone=True), nullable=False),
        Column("unique_id", Text),
        Column("type", Text),
        Column("timestamp", BigInteger),
        Column("value", Float, nullable=False),
        Column("unit", Text),
    )

    return metadata


def ensure_schema(
    engine: Engine,
    schema: str = "p1",
    linkage: LinkageStrategy = LinkageStrategy.BY_NATURAL_KEY,
) -> None:
    """Create missing tables. Safe to call multiple times."""
    logger.info("[Persistence] Ensuring schema %s (linkage=%s)", schema, linkage.name)
    if engine.dialect.name == "postgresql":
        with engine.begin() as conn:
            conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{schema}"'))
    build_metadata(schema, linkage).create_all(engine, checkfirst=True)
