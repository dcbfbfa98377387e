"""Domain types for purge requests."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_json_time(value: datetime) -> str:
    """Millisecond-precision ISO-8601 with a trailing Z, e.g. 2026-10-18T12:00:00.123Z."""
    value = ensure_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class PurgeKey:
    provisioner_id: str
    worker_type: str
    cache_name: str


@dataclass
class PurgeRecord:
    """Durable "purge everything before `before`" record for one cache."""

    provisioner_id: str
    worker_type: str
    cache_name: str
    before: datetime
    expires: datetime

    @property
    def key(self) -> PurgeKey:
        return PurgeKey(self.provisioner_id, self.worker_type, self.cache_name)

    def copy(self) -> PurgeRecord:
        return replace(self)

    def is_expired(self, now: datetime) -> bool:
        return ensure_utc(self.expires) <= ensure_utc(now)

    def to_json(self) -> dict:
        return {
            "provisionerId": self.provisioner_id,
            "workerType": self.worker_type,
            "cacheName": self.cache_name,
            "before": to_json_time(self.before),
        }
