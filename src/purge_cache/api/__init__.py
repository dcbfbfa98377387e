"""HTTP surface of the purge-cache service."""
