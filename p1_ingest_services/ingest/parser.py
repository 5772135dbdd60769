"""Meter payload parser: raw JSON bytes -> Reading + ExternalReadings.

Expected shape (HomeWizard P1 /api/v1/data, abbreviated):
{
    "unique_id": "00112233445566778899AABBCCDDEEFF",
    "smr_version": 50,
    "meter_model": "ISKRA 2M550T-101",
    "active_tariff": 2,
    "total_power_import_t1_kwh": 8293.146,
    "active_power_l1_w": 173,
    "total_gas_m3": 3488.524,
    "gas_timestamp": 250602203000,
    "external": [
        {"unique_id": "...", "type": "gas_meter", "timestamp": 250602203000,
         "value": 3488.524, "unit": "m3"}
    ]
}

Unknown keys are ignored and missing measurements default to zero.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from .domain.reading import ExternalReading, Reading
from .errors import ParseError

logger = logging.getLogger(__name__)


class ExternalPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    unique_id: Optional[str] = None
    type: Optional[str] = None
    timestamp: Optional[int] = None
    value: Optional[float] = None
    unit: Optional[str] = None


class MeterPayload(BaseModel):
    """Validation schema for one meter snapshot."""

    model_config = ConfigDict(extra="ignore")

    unique_id: Optional[str] = None
    wifi_ssid: Optional[str] = None
    wifi_strength: Optional[int] = None
    smr_version: Optional[int] = None
    meter_model: Optional[str] = None
    active_tariff: Optional[int] = None

    total_power_import_kwh: Optional[float] = None
    total_power_import_t1_kwh: Optional[float] = None
    total_power_import_t2_kwh: Optional[float] = None
    total_power_export_kwh: Optional[float] = None
    total_power_export_t1_kwh: Optional[float] = None
    total_power_export_t2_kwh: Optional[float] = None

    active_power_w: Optional[float] = None
    active_power_l1_w: Optional[float] = None
    active_power_l2_w: Optional[float] = None
    active_power_l3_w: Optional[float] = None
    active_voltage_l1_v: Optional[float] = None
    active_voltage_l2_v: Optional[float] = None
    active_voltage_l3_v: Optional[float] = None
    active_current_a: Optional[float] = None
    active_current_l1_a: Optional[float] = None
    active_current_l2_a: Optional[float] = None
    active_current_l3_a: Optional[float] = None

    voltage_sag_l1_count: Optional[int] = None
    voltage_sag_l2_count: Optional[int] = None
    voltage_sag_l3_count: Optional[int] = None
    voltage_swell_l1_count: Optional[int] = None
    voltage_swell_l2_count: Optional[int] = None
    voltage_swell_l3_count: Optional[int] = None
    any_power_fail_count: Optional[int] = None
    long_power_fail_count: Optional[int] = None

    total_gas_m3: Optional[float] = None
    gas_timestamp: Optional[int] = None
    gas_unique_id: Optional[str] = None

    external: List[ExternalPayload] = Field(
        default_factory=list,
        validation_alias=AliasChoices("external", "externals"),
    )

    def to_reading(self) -> Reading:
        values = self.model_dump(exclude={"external"})
        reading = Reading()
        for name in Reading.column_names():
            value = values.get(name)
            if value is not None:
                setattr(reading, name, value)
        return reading

    def to_externals(self, meter_reading_unique_id: str) -> List[ExternalReading]:
        return [
            ExternalReading(
                unique_id=item.unique_id or "",
                type=item.type or "",
                timestamp=item.timestamp or 0,
                value=item.value or 0.0,
                unit=item.unit or "",
                meter_reading_unique_id=meter_reading_unique_id,
            )
            for item in self.external
        ]


def parse_full_reading(data: Union[bytes, str]) -> Tuple[Reading, List[ExternalReading]]:
    """Parse a complete meter payload.

    Raises:
        ParseError: invalid JSON, a non-object document, or wrongly typed fields.
    """
    try:
        raw: Any = json.loads(data)
    except ValueError as e:
        raise ParseError(f"payload is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise ParseError(f"payload must be a JSON object, got {type(raw).__name__}")

    try:
        payload = MeterPayload.model_validate(raw)
    except ValidationError as e:
        raise ParseError(f"invalid meter payload: {e.error_count()} field error(s): {e}") from e

    reading = payload.to_reading()
    externals = payload.to_externals(reading.unique_id)

    logger.debug(
        "PARSED unique_id=%s externals=%d import_t1=%s",
        reading.unique_id or "-", len(externals), reading.total_power_import_t1_kwh,
    )
    return reading, externals
