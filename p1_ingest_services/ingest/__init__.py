"""Meter ingestion pipeline.

Modules:
- errors: exception taxonomy
- domain: Reading / ExternalReading
- parser: JSON payload -> domain objects
- transports: meter HTTP client, CSV export loader
- resilience: durable retry journal
- persistence: idempotent PostgreSQL adapter
- runner: one fetch -> parse -> persist cycle
"""

from .runner import replay_payload, run_once

__all__ = ["run_once", "replay_payload"]
