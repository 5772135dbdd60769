"""Shared fixtures.

Database tests run against in-memory SQLite with a second in-memory database
attached as ``p1``, so the adapter's schema-qualified SQL (ON CONFLICT,
RETURNING) runs unchanged.
"""

import json
from typing import Any, Dict

import pytest
from sqlalchemy import create_engine, event, text
from sqlalchemy.pool import StaticPool

from p1_ingest_services.ingest.persistence import LinkageStrategy, PostgresAdapter, ensure_schema


METER_UID = "00112233445566778899AABBCCDDEEFF"


# =============================================================================
# ENVIRONMENT
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """No test sees the developer's environment or .env file."""
    for name in ("METER_ENDPOINT", "DB_DSN", "DATA_DIR", "P1_BUFFER_PATH"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("P1_ENV_FILE", str(tmp_path / "missing.env"))


# =============================================================================
# DATABASE
# =============================================================================

def _sqlite_engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        future=True,
    )

    @event.listens_for(engine, "connect")
    def _attach_p1(dbapi_conn, _record):
        dbapi_conn.execute("ATTACH DATABASE ':memory:' AS p1")

    return engine


@pytest.fixture
def bare_engine():
    """SQLite engine with an empty p1 schema."""
    engine = _sqlite_engine()
    yield engine
    engine.dispose()


@pytest.fixture(params=list(LinkageStrategy), ids=lambda s: s.name)
def linkage(request) -> LinkageStrategy:
    return request.param


@pytest.fixture
def engine(bare_engine, linkage):
    ensure_schema(bare_engine, "p1", linkage)
    return bare_engine


@pytest.fixture
def natural_key_engine(bare_engine):
    ensure_schema(bare_engine, "p1", LinkageStrategy.BY_NATURAL_KEY)
    return bare_engine


@pytest.fixture
def adapter(engine) -> PostgresAdapter:
    """Adapter that probes the linkage strategy itself."""
    return PostgresAdapter(engine)


def _count_rows(engine, table: str, where: str = "", params: Dict[str, Any] = None) -> int:
    sql = f"SELECT COUNT(*) FROM p1.{table}"
    if where:
        sql += f" WHERE {where}"
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).scalar_one()


@pytest.fixture
def count_rows():
    """count_rows(engine, table, where="", params=None) -> int"""
    return _count_rows


# =============================================================================
# PAYLOADS
# =============================================================================

@pytest.fixture
def meter_payload() -> Dict[str, Any]:
    """Meter snapshot with one external gas meter."""
    return {
        "wifi_ssid": "home",
        "wifi_strength": 84,
        "smr_version": 50,
        "meter_model": "ISKRA 2M550T-101",
        "unique_id": METER_UID,
        "active_tariff": 2,
        "total_power_import_kwh": 13779.338,
        "total_power_import_t1_kwh": 8293.146,
        "total_power_import_t2_kwh": 5486.192,
        "total_power_export_kwh": 0,
        "total_power_export_t1_kwh": 0,
        "total_power_export_t2_kwh": 0,
        "active_power_w": 412,
        "active_power_l1_w": 173,
        "active_power_l2_w": 113,
        "active_power_l3_w": 126,
        "active_voltage_l1_v": 230.1,
        "active_current_a": 2.1,
        "voltage_sag_l1_count": 1,
        "any_power_fail_count": 4,
        "long_power_fail_count": 5,
        "total_gas_m3": 3488.524,
        "gas_timestamp": 250602203000,
        "gas_unique_id": "4730303339303031363532303530323136",
        "external": [
            {
                "unique_id": "4730303339303031363532303530323136",
                "type": "gas_meter",
                "timestamp": 250602203000,
                "value": 3488.524,
                "unit": "m3",
            }
        ],
    }


@pytest.fixture
def meter_body(meter_payload) -> bytes:
    return json.dumps(meter_payload).encode("utf-8")
