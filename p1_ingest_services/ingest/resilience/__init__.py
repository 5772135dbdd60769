"""Resilience components: durable retry buffer."""

from .journal import DurableBuffer, encode_line

__all__ = ["DurableBuffer", "encode_line"]
