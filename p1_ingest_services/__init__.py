"""P1 smart meter ingestion services."""

__version__ = "0.1.0"
