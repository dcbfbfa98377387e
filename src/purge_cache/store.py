"""Durable store of purge records.

Keyed by (provisioner_id, worker_type, cache_name). Every read filters out
rows whose `expires` has passed, so an expired record is never observable
even before the reaper deletes it. Updates are optimistic: a row is only
written if its `version` is unchanged since it was loaded.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, make_url, select, tuple_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from purge_cache.db.engine import create_engine, get_session_factory
from purge_cache.db.models import Base, CachePurge
from purge_cache.errors import (
    EntityAlreadyExistsError,
    EntityNotFoundError,
    InvalidContinuationError,
    ModifyConflictError,
    StoreError,
)
from purge_cache.models import PurgeKey, PurgeRecord, utcnow

logger = logging.getLogger(__name__)

Modifier = Callable[[PurgeRecord], None]


@dataclass
class ScanPage:
    entries: list[PurgeRecord]
    continuation: str | None = None


def encode_continuation(key: PurgeKey) -> str:
    raw = json.dumps([key.provisioner_id, key.worker_type, key.cache_name]).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def decode_continuation(token: str) -> PurgeKey:
    try:
        padded = token + "=" * (-len(token) % 4)
        parts = json.loads(base64.urlsafe_b64decode(padded.encode()))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise InvalidContinuationError(f"Invalid continuation token: {token!r}") from e
    if not (isinstance(parts, list) and len(parts) == 3 and all(isinstance(p, str) for p in parts)):
        raise InvalidContinuationError(f"Invalid continuation token: {token!r}")
    return PurgeKey(*parts)


def _key_filter(key: PurgeKey):
    return (
        CachePurge.provisioner_id == key.provisioner_id,
        CachePurge.worker_type == key.worker_type,
        CachePurge.cache_name == key.cache_name,
    )


def _to_record(row: CachePurge) -> PurgeRecord:
    return PurgeRecord(
        provisioner_id=row.provisioner_id,
        worker_type=row.worker_type,
        cache_name=row.cache_name,
        before=row.before,
        expires=row.expires,
    )


def _is_shared_memory_db(database_url: str) -> bool:
    """In-memory SQLite runs every session on one connection."""
    url = make_url(database_url)
    if not url.drivername.startswith("sqlite"):
        return False
    return url.database in (None, "", ":memory:") or url.query.get("mode") == "memory"


class PurgeRecordStore:
    """SQLAlchemy-backed purge record table."""

    def __init__(
        self,
        database_url: str,
        clock: Callable[[], datetime] = utcnow,
        max_modify_attempts: int = 10,
    ) -> None:
        self.database_url = database_url
        self._clock = clock
        self._max_modify_attempts = max_modify_attempts
        self._engine = create_engine(database_url)
        self._session_factory = get_session_factory(self._engine)
        # A rollback on the shared connection would undo other sessions' writes
        self._serialize = asyncio.Lock() if _is_shared_memory_db(database_url) else None

    async def init(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            if self._serialize is None:
                async with self._session_factory() as session:
                    yield session
            else:
                async with self._serialize, self._session_factory() as session:
                    yield session
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    async def create(self, record: PurgeRecord) -> PurgeRecord:
        """Insert a new record; EntityAlreadyExistsError if a live one exists."""
        now = self._clock()
        async with self._session() as session:
            # An expired row must not block re-creation under the same key
            await session.execute(
                delete(CachePurge).where(*_key_filter(record.key), CachePurge.expires <= now)
            )
            session.add(
                CachePurge(
                    provisioner_id=record.provisioner_id,
                    worker_type=record.worker_type,
                    cache_name=record.cache_name,
                    before=record.before,
                    expires=record.expires,
                    version=1,
                )
            )
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise EntityAlreadyExistsError(f"Purge record already exists: {record.key}") from e
        return record

    async def _load_versioned(self, key: PurgeKey) -> tuple[PurgeRecord, int]:
        now = self._clock()
        async with self._session() as session:
            result = await session.execute(
                select(CachePurge).where(*_key_filter(key), CachePurge.expires > now)
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise EntityNotFoundError(f"Purge record not found: {key}")
            return _to_record(row), row.version

    async def load(self, provisioner_id: str, worker_type: str, cache_name: str) -> PurgeRecord:
        record, _ = await self._load_versioned(PurgeKey(provisioner_id, worker_type, cache_name))
        return record

    async def modify(
        self,
        provisioner_id: str,
        worker_type: str,
        cache_name: str,
        modifier: Modifier,
    ) -> PurgeRecord:
        """Apply `modifier` to the stored record, retrying on concurrent updates."""
        key = PurgeKey(provisioner_id, worker_type, cache_name)
        for attempt in range(1, self._max_modify_attempts + 1):
            record, version = await self._load_versioned(key)
            modifier(record)
            async with self._session() as session:
                result = await session.execute(
                    update(CachePurge)
                    .where(*_key_filter(key), CachePurge.version == version)
                    .values(before=record.before, expires=record.expires, version=version + 1)
                )
                await session.commit()
            if result.rowcount == 1:
                return record
            logger.debug(f"Concurrent update on {key}, retrying (attempt {attempt})")
        raise ModifyConflictError(
            f"Gave up updating {key} after {self._max_modify_attempts} attempts"
        )

    async def query(self, provisioner_id: str, worker_type: str) -> list[PurgeRecord]:
        """All live records for one provisioner/workerType pair."""
        now = self._clock()
        async with self._session() as session:
            result = await session.execute(
                select(CachePurge).where(
                    CachePurge.provisioner_id == provisioner_id,
                    CachePurge.worker_type == worker_type,
                    CachePurge.expires > now,
                )
            )
            return [_to_record(row) for row in result.scalars()]

    async def scan(self, continuation: str | None = None, limit: int = 1000) -> ScanPage:
        """One page of all live records, ordered by key."""
        if limit < 1:
            raise ValueError("limit must be positive")
        now = self._clock()
        columns = (CachePurge.provisioner_id, CachePurge.worker_type, CachePurge.cache_name)
        stmt = select(CachePurge).where(CachePurge.expires > now)
        if continuation:
            after = decode_continuation(continuation)
            stmt = stmt.where(
                tuple_(*columns) > tuple_(after.provisioner_id, after.worker_type, after.cache_name)
            )
        stmt = stmt.order_by(*columns).limit(limit + 1)
        async with self._session() as session:
            rows = list((await session.execute(stmt)).scalars())
        entries = [_to_record(row) for row in rows[:limit]]
        next_token = encode_continuation(entries[-1].key) if len(rows) > limit else None
        return ScanPage(entries=entries, continuation=next_token)

    async def expire(self, now: datetime | None = None) -> int:
        """Delete rows whose `expires` is at or before `now`. Returns the count."""
        cutoff = now if now is not None else self._clock()
        async with self._session() as session:
            result = await session.execute(delete(CachePurge).where(CachePurge.expires <= cutoff))
            await session.commit()
        return result.rowcount
