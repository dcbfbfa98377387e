"""Periodic deletion of expired purge records."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from purge_cache.models import utcnow
from purge_cache.store import PurgeRecordStore

logger = logging.getLogger(__name__)


class ExpirationReaper:
    """Deletes rows that expired before now + `delay`.

    Reads already hide expired rows; this only keeps the table small.
    A negative delay keeps recently expired rows around a little longer.
    """

    JOB_ID = "expire_cache_purges"

    def __init__(
        self,
        store: PurgeRecordStore,
        interval_seconds: float = 3600,
        delay: timedelta = timedelta(hours=-1),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.interval_seconds = interval_seconds
        self.delay = delay
        self._clock = clock
        self._scheduler = AsyncIOScheduler()

    async def run_once(self) -> int:
        cutoff = self._clock() + self.delay
        count = await self.store.expire(cutoff)
        logger.info(f"Expired {count} purge records older than {cutoff.isoformat()}")
        return count

    async def _run(self) -> None:
        try:
            await self.run_once()
        except Exception:
            logger.exception("Expiring purge records failed")

    def start(self) -> None:
        if self.interval_seconds <= 0:
            logger.info("Expiration reaper disabled")
            return
        self._scheduler.add_job(
            self._run,
            "interval",
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(f"Expiration reaper running every {self.interval_seconds}s")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
