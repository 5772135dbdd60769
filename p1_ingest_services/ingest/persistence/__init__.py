"""Persistence infrastructure for meter readings."""

from .linkage import LinkageStrategy, detect_linkage
from .postgres import PostgresAdapter
from .tables import build_metadata, ensure_schema

__all__ = [
    "LinkageStrategy",
    "detect_linkage",
    "PostgresAdapter",
    "build_metadata",
    "ensure_schema",
]
