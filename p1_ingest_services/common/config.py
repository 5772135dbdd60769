from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "./config.json"
DEFAULT_BUFFER_PATH = "/tmp/p1-buffer.jsonl"
DEFAULT_LOCK_KEY = 42
DEFAULT_INTERVAL_SECONDS = 60.0
DEFAULT_HTTP_TIMEOUT_SECONDS = 10.0


class ConfigError(Exception):
    """Invalid or incomplete configuration."""


@dataclass(frozen=True)
class Settings:
    meter_endpoint: str = ""
    db_dsn: str = ""
    data_dir: str = ""

    buffer_path: str = DEFAULT_BUFFER_PATH
    lock_key: int = DEFAULT_LOCK_KEY
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS

    def require(self, *names: str) -> None:
        """Raise ConfigError if any of the named options is empty."""
        missing = [name for name in names if not getattr(self, name)]
        if missing:
            raise ConfigError(
                f"missing required configuration: {', '.join(missing)} "
                "(set it in the config file or the environment)"
            )


def _read_config_file(path: str) -> dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        logger.warning("[Config] Config file not found: %s - using environment only", path)
        return {}

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a JSON object")
    return data


def load_settings(path: Optional[str] = None) -> Settings:
    """Build Settings from the JSON config file plus environment overrides.

    Precedence: real environment > dotenv file > JSON config file > defaults.
    """
    # The env file never overrides variables that are already set.
    env_file = os.getenv("P1_ENV_FILE", ".env")
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    data = _read_config_file(path or DEFAULT_CONFIG_PATH)

    try:
        return Settings(
            meter_endpoint=os.getenv("METER_ENDPOINT") or str(data.get("meter_endpoint", "")),
            db_dsn=os.getenv("DB_DSN") or str(data.get("db_dsn", "")),
            data_dir=os.getenv("DATA_DIR") or str(data.get("data_dir", "")),
            buffer_path=os.getenv("P1_BUFFER_PATH") or str(data.get("buffer_path", DEFAULT_BUFFER_PATH)),
            lock_key=int(data.get("lock_key", DEFAULT_LOCK_KEY)),
            interval_seconds=float(data.get("interval_seconds", DEFAULT_INTERVAL_SECONDS)),
            http_timeout_seconds=float(data.get("http_timeout_seconds", DEFAULT_HTTP_TIMEOUT_SECONDS)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value in config file: {e}") from e
