"""HTTP transport: pulls snapshots from the meter."""

from .client import MeterHttpClient

__all__ = ["MeterHttpClient"]
