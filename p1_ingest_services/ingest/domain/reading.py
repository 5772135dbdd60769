"""Domain model for P1 meter readings."""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Optional


@dataclass
class Reading:
    """One flattened meter snapshot, one row of p1.meter_readings.

    ``unique_id`` is the natural identifier assigned by the meter. It is empty
    for rows produced by the CSV importer.
    """
    unique_id: str = ""
    created_at: Optional[datetime] = None

    wifi_ssid: str = ""
    wifi_strength: int = 0
    smr_version: int = 0
    meter_model: str = ""
    active_tariff: int = 0

    total_power_import_kwh: float = 0.0
    total_power_import_t1_kwh: float = 0.0
    total_power_import_t2_kwh: float = 0.0
    total_power_export_kwh: float = 0.0
    total_power_export_t1_kwh: float = 0.0
    total_power_export_t2_kwh: float = 0.0

    active_power_w: float = 0.0
    active_power_l1_w: float = 0.0
    active_power_l2_w: float = 0.0
    active_power_l3_w: float = 0.0
    active_voltage_l1_v: float = 0.0
    active_voltage_l2_v: float = 0.0
    active_voltage_l3_v: float = 0.0
    active_current_a: float = 0.0
    active_current_l1_a: float = 0.0
    active_current_l2_a: float = 0.0
    active_current_l3_a: float = 0.0

    voltage_sag_l1_count: int = 0
    voltage_sag_l2_count: int = 0
    voltage_sag_l3_count: int = 0
    voltage_swell_l1_count: int = 0
    voltage_swell_l2_count: int = 0
    voltage_swell_l3_count: int = 0
    any_power_fail_count: int = 0
    long_power_fail_count: int = 0

    total_gas_m3: float = 0.0
    gas_timestamp: int = 0
    gas_unique_id: str = ""

    @classmethod
    def column_names(cls) -> list[str]:
        """Column names in declaration order (all columns except the row id)."""
        return [f.name for f in fields(cls)]

    def to_row(self) -> dict:
        """Bind parameters for an insert. An empty natural id is stored as NULL."""
        row = {name: getattr(self, name) for name in self.column_names()}
        row["unique_id"] = self.unique_id or None
        return row


@dataclass
class ExternalReading:
    """Secondary measurement (gas, water, heat...) owned by one Reading."""
    unique_id: str = ""
    type: str = ""
    timestamp: int = 0
    value: float = 0.0
    unit: str = ""
    meter_reading_unique_id: str = ""
    created_at: Optional[datetime] = None
