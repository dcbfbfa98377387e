"""Purge-cache service: durable, pollable purge requests for worker caches."""

__version__ = "1.0.0"
