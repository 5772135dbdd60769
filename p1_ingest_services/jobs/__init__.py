"""Command-line jobs: periodic ingestion, journal drain and CSV import."""
