"""Telemetry sources and ingestion into the snapshot store."""
