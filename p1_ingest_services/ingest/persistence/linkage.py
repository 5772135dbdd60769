"""How external_readings rows point at their parent meter reading.

Two schema generations exist in the field:
- BY_GENERATED_ID: external_readings.meter_reading_id -> meter_readings.id
- BY_NATURAL_KEY: external_readings.meter_reading_unique_id -> meter_readings.unique_id

The strategy is probed once per adapter and then used for every write.
"""

from __future__ import annotations

import logging
from enum import Enum

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..errors import PersistError

logger = logging.getLogger(__name__)


class LinkageStrategy(str, Enum):
    """Value is the linkage column name in external_readings."""
    BY_GENERATED_ID = "meter_reading_id"
    BY_NATURAL_KEY = "meter_reading_unique_id"

    @property
    def column(self) -> str:
        return self.value


def detect_linkage(engine: Engine, schema: str = "p1") -> LinkageStrategy:
    """Inspect external_readings and pick the linkage strategy.

    If both columns exist the generated id wins.

    Raises:
        PersistError: the table cannot be inspected or has no linkage column.
    """
    try:
        columns = {col["name"] for col in inspect(engine).get_columns("external_readings", schema=schema)}
    except SQLAlchemyError as e:
        raise PersistError(f"cannot inspect {schema}.external_readings: {e}") from e

    if LinkageStrategy.BY_GENERATED_ID.column in columns:
        strategy = LinkageStrategy.BY_GENERATED_ID
    elif LinkageStrategy.BY_NATURAL_KEY.column in columns:
        strategy = LinkageStrategy.BY_NATURAL_KEY
    else:
        raise PersistError(
            f"{schema}.external_readings has neither meter_reading_id nor "
            "meter_reading_unique_id"
        )

    logger.info("[Persistence] Linkage strategy detected: %s", strategy.name)
    return strategy
