"""Purge request handling: merge on submit, cached per-worker reads, admin listing."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from purge_cache.errors import EntityAlreadyExistsError, EntityNotFoundError
from purge_cache.models import PurgeRecord, utcnow
from purge_cache.publisher import PurgePublisher
from purge_cache.query_cache import PurgeQueryCache
from purge_cache.store import PurgeRecordStore

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 1000
MAX_MERGE_ATTEMPTS = 3


class PurgeService:
    """Coordinates the record store, the query cache and the publisher.

    submit_purge persists before it publishes: a worker that hears the
    announcement can always find the durable record when it next polls.
    """

    def __init__(
        self,
        store: PurgeRecordStore,
        publisher: PurgePublisher,
        retention: timedelta = timedelta(days=1),
        cache_time: float = 10.0,
        clock: Callable[[], datetime] = utcnow,
        query_cache: PurgeQueryCache | None = None,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.retention = retention
        self._clock = clock
        self.query_cache = query_cache or PurgeQueryCache(store.query, cache_time=cache_time)

    async def _merge(self, provisioner_id: str, worker_type: str, cache_name: str) -> PurgeRecord:
        now = self._clock()
        record = PurgeRecord(
            provisioner_id=provisioner_id,
            worker_type=worker_type,
            cache_name=cache_name,
            before=now,
            expires=now + self.retention,
        )

        def refresh(existing: PurgeRecord) -> None:
            existing.before = now
            existing.expires = now + self.retention

        # A record can expire between create and modify, and reappear before the next create
        for attempt in range(1, MAX_MERGE_ATTEMPTS + 1):
            try:
                return await self.store.create(record)
            except EntityAlreadyExistsError:
                pass
            try:
                return await self.store.modify(provisioner_id, worker_type, cache_name, refresh)
            except EntityNotFoundError as e:
                last_error = e
                logger.debug(f"{record.key} vanished before update (attempt {attempt})")
        raise last_error

    async def submit_purge(self, provisioner_id: str, worker_type: str, cache_name: str) -> PurgeRecord:
        """Record a purge for the cache and announce it. Idempotent per key."""
        logger.debug(f"Processing request for {provisioner_id}/{worker_type}/{cache_name}.")
        record = await self._merge(provisioner_id, worker_type, cache_name)
        await self.publisher.purge_cache(provisioner_id, worker_type, cache_name)
        return record

    async def list_purges(
        self,
        provisioner_id: str,
        worker_type: str,
        since: datetime | None = None,
    ) -> tuple[list[PurgeRecord], bool]:
        return await self.query_cache.get(provisioner_id, worker_type, since)

    async def list_all_purges(
        self,
        continuation_token: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> tuple[list[PurgeRecord], str | None]:
        page = await self.store.scan(continuation=continuation_token or None, limit=limit)
        return page.entries, page.continuation
