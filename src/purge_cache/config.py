"""Service configuration via environment variables and an optional YAML profile file."""

from __future__ import annotations

import re
from datetime import timedelta
from pathlib import Path

import yaml
from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, DotEnvSettingsSource, EnvSettingsSource

ENV_PREFIX = "PURGE_CACHE_"

_UNITS = {
    "s": 1, "sec": 1, "secs": 1, "second": 1, "seconds": 1,
    "min": 60, "mins": 60, "minute": 60, "minutes": 60,
    "h": 3600, "hr": 3600, "hrs": 3600, "hour": 3600, "hours": 3600,
    "d": 86400, "day": 86400, "days": 86400,
    "w": 604800, "wk": 604800, "week": 604800, "weeks": 604800,
}
_DURATION_RE = re.compile(r"^\s*([-+]?)\s*((?:\d+\s*[a-z]+\s*)+)$")
_PART_RE = re.compile(r"(\d+)\s*([a-z]+)")


def parse_duration(text: str) -> timedelta:
    """Parse strings like '1 day', '- 1 hour' or '2 hours 30 minutes'."""
    match = _DURATION_RE.match(text.lower())
    if not match:
        raise ValueError(f"Invalid duration: {text!r}")
    sign, body = match.groups()
    seconds = 0
    for amount, unit in _PART_RE.findall(body):
        if unit not in _UNITS:
            raise ValueError(f"Unknown duration unit {unit!r} in {text!r}")
        seconds += int(amount) * _UNITS[unit]
    delta = timedelta(seconds=seconds)
    return -delta if sign == "-" else delta


class ClientCredentials(BaseModel):
    """A caller allowed to submit purge requests."""

    client_id: str
    access_token: str
    scopes: list[str] = []


class PurgeCacheConfig(BaseSettings):
    """All configuration, loaded from PURGE_CACHE_* env vars or .env file."""

    # Query cache freshness window (seconds)
    cache_time: float = 10

    # Record lifetime, refreshed on every merge
    retention: str = "1 day"

    # Offset applied to "now" when reaping expired rows
    expiration_delay: str = "- 1 hour"
    reap_interval_seconds: float = 3600

    # Storage
    database_url: str = "sqlite+aiosqlite:///purge-cache.db"
    max_modify_attempts: int = 10

    # Broadcast
    publisher: str = "memory"  # memory | redis
    redis_url: str = "redis://localhost:6379/2"
    exchange_prefix: str = "v1/"

    # Server
    env: str = "development"
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    validate_output: bool = True

    clients: list[ClientCredentials] = []

    model_config = {
        "env_prefix": ENV_PREFIX,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("retention", "expiration_delay")
    @classmethod
    def _check_duration(cls, value: str) -> str:
        parse_duration(value)
        return value

    @field_validator("publisher")
    @classmethod
    def _check_publisher(cls, value: str) -> str:
        if value not in ("memory", "redis"):
            raise ValueError(f"Unknown publisher backend: {value}")
        return value

    @property
    def retention_delta(self) -> timedelta:
        return parse_duration(self.retention)

    @property
    def expiration_delay_delta(self) -> timedelta:
        return parse_duration(self.expiration_delay)

    @classmethod
    def load(cls, path: str | Path | None = None, profile: str | None = None) -> PurgeCacheConfig:
        """Build config from a YAML file's `defaults` plus `profile` section.

        Environment variables and the .env file still take precedence over file values.
        """
        if path is None:
            return cls()
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        merged = dict(data.get("defaults") or {})
        if profile:
            merged.update(data.get(profile) or {})
        overridden = {*EnvSettingsSource(cls)(), *DotEnvSettingsSource(cls)()}
        return cls(**{k: v for k, v in merged.items() if k not in overridden})
