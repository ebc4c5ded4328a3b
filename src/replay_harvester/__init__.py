"""Resumable, rate-limited replay harvester partitioned by rank."""

__version__ = "0.1.0"
