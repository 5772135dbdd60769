"""CSV transport for historical bulk imports."""

from .loader import CSVLoadError, CSVLoader, MergedReading, group_by_day

__all__ = ["CSVLoadError", "CSVLoader", "MergedReading", "group_by_day"]
