"""Shared configuration and database helpers."""

from .config import ConfigError, Settings, load_settings
from .db import build_sqlalchemy_url, get_engine

__all__ = ["ConfigError", "Settings", "load_settings", "build_sqlalchemy_url", "get_engine"]
