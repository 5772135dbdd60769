"""Historical CSV export loader.

Reads the two 15-minute exports produced by the meter vendor's portal and
merges them row by row:

    power-15m.csv: time,Import T1 kWh,Import T2 kWh,Export T1 kWh,Export T2 kWh,L1 max W,L2 max W,L3 max W
    gas-15m.csv:   time,Total gas used

Both files must have the same number of rows with identical timestamps.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List

import pandas as pd

from ...domain.reading import Reading

logger = logging.getLogger(__name__)

POWER_FILE = "power-15m.csv"
GAS_FILE = "gas-15m.csv"
TIME_FORMAT = "%Y-%m-%d %H:%M"

POWER_COLUMNS = 8
GAS_COLUMNS = 2


class CSVLoadError(Exception):
    """A CSV export is missing, empty or malformed."""


@dataclass
class MergedReading:
    """One merged row of the power and gas exports."""
    time: datetime
    import_t1_kwh: float = 0.0
    import_t2_kwh: float = 0.0
    export_t1_kwh: float = 0.0
    export_t2_kwh: float = 0.0
    l1_max_w: float = 0.0
    l2_max_w: float = 0.0
    l3_max_w: float = 0.0
    total_gas_m3: float = 0.0

    def to_reading(self) -> Reading:
        # The exports only have per-phase maxima; they are stored as active power.
        return Reading(
            created_at=self.time,
            total_power_import_t1_kwh=self.import_t1_kwh,
            total_power_import_t2_kwh=self.import_t2_kwh,
            total_power_export_t1_kwh=self.export_t1_kwh,
            total_power_export_t2_kwh=self.export_t2_kwh,
            active_power_l1_w=self.l1_max_w,
            active_power_l2_w=self.l2_max_w,
            active_power_l3_w=self.l3_max_w,
            total_gas_m3=self.total_gas_m3,
        )


def _to_float(value) -> float:
    try:
        parsed = float(str(value).strip())
    except (TypeError, ValueError):
        return math.nan
    return parsed if math.isfinite(parsed) else math.nan


class CSVLoader:
    """Loads and merges the power and gas exports of one data directory."""

    def __init__(self, data_dir: str):
        self.data_dir = Path(data_dir)

    def load_and_merge(self) -> List[MergedReading]:
        power = self._read_frame(self.data_dir / POWER_FILE, "power", POWER_COLUMNS)
        gas = self._read_frame(self.data_dir / GAS_FILE, "gas", GAS_COLUMNS)

        if len(power) != len(gas):
            raise CSVLoadError(
                "power and gas CSV files have different number of records: "
                f"{len(power)} vs {len(gas)}"
            )

        power_times = self._parse_times(power, "power")
        gas_times = self._parse_times(gas, "gas")
        power_values = [self._parse_floats(power, col, "power") for col in range(1, POWER_COLUMNS)]
        gas_totals = self._parse_floats(gas, 1, "gas")

        merged = []
        for i, (power_time, gas_time) in enumerate(zip(power_times, gas_times)):
            if power_time != gas_time:
                raise CSVLoadError(
                    f"timestamp mismatch at row {i + 1}: power={power_time} gas={gas_time}"
                )
            merged.append(
                MergedReading(
                    time=power_time,
                    import_t1_kwh=power_values[0][i],
                    import_t2_kwh=power_values[1][i],
                    export_t1_kwh=power_values[2][i],
                    export_t2_kwh=power_values[3][i],
                    l1_max_w=power_values[4][i],
                    l2_max_w=power_values[5][i],
                    l3_max_w=power_values[6][i],
                    total_gas_m3=gas_totals[i],
                )
            )

        logger.info("[CSVLoader] Loaded %d merged records from %s", len(merged), self.data_dir)
        return merged

    def _read_frame(self, path: Path, label: str, expected_columns: int) -> pd.DataFrame:
        try:
            frame = pd.read_csv(path, dtype=str, skipinitialspace=True)
        except pd.errors.EmptyDataError as e:
            raise CSVLoadError(f"{label} CSV is empty") from e
        except (OSError, pd.errors.ParserError) as e:
            raise CSVLoadError(f"read {label} CSV {path}: {e}") from e

        if len(frame.columns) != expected_columns:
            raise CSVLoadError(
                f"{label} CSV has {len(frame.columns)} columns, expected {expected_columns}"
            )
        return frame.reset_index(drop=True)

    def _parse_times(self, frame: pd.DataFrame, label: str) -> List[datetime]:
        times = pd.to_datetime(frame.iloc[:, 0], format=TIME_FORMAT, errors="coerce")
        bad = times.isna()
        if bad.any():
            row = int(bad.idxmax()) + 2  # 1-based, after the header
            raise CSVLoadError(f"parse time in {label} CSV at row {row}: {frame.iloc[row - 2, 0]!r}")
        return [ts.to_pydatetime() for ts in times.dt.tz_localize("UTC")]

    def _parse_floats(self, frame: pd.DataFrame, column: int, label: str) -> List[float]:
        values = frame.iloc[:, column].map(_to_float)
        bad = values.isna()
        if bad.any():
            row = int(bad.idxmax()) + 2
            raise CSVLoadError(
                f"parse {frame.columns[column]} in {label} CSV at row {row}: "
                f"{frame.iloc[row - 2, column]!r}"
            )
        return [float(v) for v in values]


def group_by_day(records: List[MergedReading]) -> Dict[str, List[MergedReading]]:
    """Group records by calendar day ("YYYY-MM-DD"), keeping file order."""
    days: Dict[str, List[MergedReading]] = {}
    for record in records:
        days.setdefault(record.time.strftime("%Y-%m-%d"), []).append(record)
    return days
