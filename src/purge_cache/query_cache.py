"""Short-lived per-worker-class memo over the record store.

Workers poll for their (provisioner_id, worker_type) far more often than
purges happen, so each pair keeps one snapshot for `cache_time` seconds.
A refresh runs as a single task per pair; callers arriving while it runs
wait on that task instead of issuing their own query.

`since` filtering happens after retrieval and is not part of the key.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable

from purge_cache.models import EPOCH, PurgeRecord, ensure_utc

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str]
Fetcher = Callable[[str, str], Awaitable[list[PurgeRecord]]]


@dataclass
class _Snapshot:
    records: list[PurgeRecord]
    fetched_at: float


class PurgeQueryCache:
    def __init__(
        self,
        fetch: Fetcher,
        cache_time: float = 10.0,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch = fetch
        self.cache_time = cache_time
        self._timer = timer
        self._snapshots: dict[CacheKey, _Snapshot] = {}
        self._pending: dict[CacheKey, asyncio.Task[list[PurgeRecord]]] = {}

    def _is_fresh(self, snapshot: _Snapshot) -> bool:
        return self._timer() - snapshot.fetched_at < self.cache_time

    async def _refresh(self, key: CacheKey) -> list[PurgeRecord]:
        try:
            records = await self._fetch(*key)
            self._snapshots[key] = _Snapshot(records=records, fetched_at=self._timer())
            return records
        finally:
            self._pending.pop(key, None)

    async def get(
        self,
        provisioner_id: str,
        worker_type: str,
        since: datetime | None = None,
    ) -> tuple[list[PurgeRecord], bool]:
        """Return (records with before >= since, cache_hit).

        cache_hit is False only for the caller that started the store query.
        """
        key = (provisioner_id, worker_type)
        snapshot = self._snapshots.get(key)
        if snapshot is not None and self._is_fresh(snapshot):
            records, cache_hit = snapshot.records, True
        else:
            task = self._pending.get(key)
            cache_hit = task is not None
            if task is None:
                logger.debug(f"Refreshing purge snapshot for {provisioner_id}/{worker_type}")
                task = asyncio.create_task(self._refresh(key))
                self._pending[key] = task
            # shield: one cancelled waiter must not cancel the shared fetch
            records = await asyncio.shield(task)

        cutoff = ensure_utc(since) if since is not None else EPOCH
        return [r for r in records if r.before >= cutoff], cache_hit

    def invalidate(self, provisioner_id: str | None = None, worker_type: str | None = None) -> None:
        """Drop one snapshot, or all of them when no key is given."""
        if provisioner_id is None and worker_type is None:
            self._snapshots.clear()
            return
        self._snapshots.pop((provisioner_id, worker_type), None)

    def __len__(self) -> int:
        return len(self._snapshots)
