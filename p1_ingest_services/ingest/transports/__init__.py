"""Inbound transports: meter HTTP API and historical CSV exports."""
