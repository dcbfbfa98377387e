"""Tests for merge-on-submit and the two listing paths."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from purge_cache.errors import EntityAlreadyExistsError, EntityNotFoundError, PublishError, StoreError
from purge_cache.publisher import InMemoryPublisher
from purge_cache.query_cache import PurgeQueryCache
from purge_cache.service import MAX_MERGE_ATTEMPTS, PurgeService
from purge_cache.store import PurgeRecordStore


class TestPurgeService:

    @pytest.fixture
    def publisher(self):
        return InMemoryPublisher()

    @pytest.fixture
    def service(self, store, publisher, clock, timer):
        return PurgeService(
            store=store,
            publisher=publisher,
            retention=timedelta(days=1),
            clock=clock,
            query_cache=PurgeQueryCache(store.query, cache_time=10, timer=timer),
        )

    async def test_first_submit_creates_record(self, service, store, clock):
        await service.submit_purge("p1", "w1", "cache-a")
        record = await store.load("p1", "w1", "cache-a")
        assert record.before == clock()
        assert record.expires == clock() + timedelta(days=1)

    async def test_repeated_submits_converge_to_one_record(self, service, store, clock):
        for _ in range(3):
            await service.submit_purge("p1", "w1", "cache-a")
            clock.advance(minutes=10)
        last = clock.now - timedelta(minutes=10)

        records = await store.query("p1", "w1")
        assert len(records) == 1
        assert records[0].before == last
        assert records[0].expires == last + timedelta(days=1)

    async def test_before_never_moves_backward(self, service, store, clock):
        await service.submit_purge("p1", "w1", "cache-a")
        first = (await store.load("p1", "w1", "cache-a")).before
        clock.advance(seconds=1)
        await service.submit_purge("p1", "w1", "cache-a")
        assert (await store.load("p1", "w1", "cache-a")).before > first

    async def test_concurrent_submits_leave_one_record(self, service, store, clock):
        await asyncio.gather(*(service.submit_purge("p1", "w1", "cache-a") for _ in range(10)))
        records = await store.query("p1", "w1")
        assert len(records) == 1
        assert records[0].before == clock()
        assert records[0].expires == clock() + timedelta(days=1)

    async def test_merge_goes_back_to_update_when_record_reappears(self, service, store):
        # create conflicts, the record vanishes before the update, then another
        # writer recreates it before our second create
        updated = object()
        store.create = AsyncMock(side_effect=[EntityAlreadyExistsError("taken")] * 2)
        store.modify = AsyncMock(side_effect=[EntityNotFoundError("gone"), updated])
        assert await service.submit_purge("p1", "w1", "cache-a") is updated
        assert store.create.await_count == 2
        assert store.modify.await_count == 2

    async def test_merge_gives_up_after_bounded_attempts(self, service, store, publisher):
        store.create = AsyncMock(side_effect=EntityAlreadyExistsError("taken"))
        store.modify = AsyncMock(side_effect=EntityNotFoundError("gone"))
        with pytest.raises(EntityNotFoundError):
            await service.submit_purge("p1", "w1", "cache-a")
        assert store.create.await_count == MAX_MERGE_ATTEMPTS
        assert store.modify.await_count == MAX_MERGE_ATTEMPTS
        assert publisher.messages == []

    async def test_submit_after_expiry_recreates(self, service, store, clock):
        await service.submit_purge("p1", "w1", "cache-a")
        clock.advance(days=2)
        await service.submit_purge("p1", "w1", "cache-a")
        record = await store.load("p1", "w1", "cache-a")
        assert record.before == clock()

    async def test_submit_publishes_after_persisting(self, service, publisher):
        await service.submit_purge("p1", "w1", "cache-a")
        assert len(publisher.messages) == 1
        message = publisher.messages[0]
        assert message.routing_key == "primary.p1.w1"
        assert message.payload == {"provisionerId": "p1", "workerType": "w1", "cacheName": "cache-a"}

    async def test_store_failure_skips_publish(self, store, publisher, clock):
        store.create = AsyncMock(side_effect=StoreError("disk full"))
        service = PurgeService(store=store, publisher=publisher, clock=clock)
        with pytest.raises(StoreError):
            await service.submit_purge("p1", "w1", "cache-a")
        assert publisher.messages == []

    async def test_publish_failure_propagates_but_record_persists(self, store, clock):
        publisher = InMemoryPublisher()

        async def broken(message):
            raise ConnectionError("broker gone")

        publisher.subscribe(broken)
        service = PurgeService(store=store, publisher=publisher, clock=clock)
        with pytest.raises(PublishError):
            await service.submit_purge("p1", "w1", "cache-a")
        assert (await store.load("p1", "w1", "cache-a")).before == clock()

    async def test_list_purges_example(self, service, clock, timer):
        t0 = clock()
        await service.submit_purge("p1", "w1", "cache-a")
        records, hit = await service.list_purges("p1", "w1", since=t0 - timedelta(seconds=1))
        assert hit is False
        assert [(r.cache_name, r.before) for r in records] == [("cache-a", t0)]

        t1 = clock.advance(minutes=1)
        await service.submit_purge("p1", "w1", "cache-a")
        timer.advance(10)
        records, hit = await service.list_purges("p1", "w1", since=t0 - timedelta(seconds=1))
        assert hit is False
        assert [(r.cache_name, r.before) for r in records] == [("cache-a", t1)]

    async def test_list_purges_hits_cache_within_window(self, service, timer):
        await service.submit_purge("p1", "w1", "cache-a")
        first, _ = await service.list_purges("p1", "w1")
        timer.advance(5)
        second, hit = await service.list_purges("p1", "w1")
        assert hit is True
        assert second == first

    async def test_list_purges_never_returns_before_since(self, service, clock):
        await service.submit_purge("p1", "w1", "old")
        since = clock.advance(minutes=1)
        clock.advance(minutes=1)
        await service.submit_purge("p1", "w1", "new")
        records, _ = await service.list_purges("p1", "w1", since=since)
        assert [r.cache_name for r in records] == ["new"]

    async def test_expired_records_drop_out_of_both_listings(self, service, clock, timer):
        await service.submit_purge("p1", "w1", "cache-a")
        clock.advance(days=1, seconds=1)
        timer.advance(10)
        records, _ = await service.list_purges("p1", "w1")
        assert records == []
        all_records, token = await service.list_all_purges()
        assert all_records == []
        assert token is None

    async def test_list_all_purges_paginates(self, service):
        for name in ("a", "b", "c"):
            await service.submit_purge("p1", "w1", name)
        page, token = await service.list_all_purges(limit=1)
        assert len(page) == 1
        assert token
        rest, token = await service.list_all_purges(continuation_token=token, limit=5)
        assert [r.cache_name for r in rest] == ["b", "c"]
        assert token is None


class TestConcurrentMerges:
    """Racing submits over several keys, each writer with its own timestamp."""

    @pytest.fixture(params=["file", "memory"])
    async def racing_store(self, request, tmp_path, ticking_clock):
        if request.param == "file":
            url = f"sqlite+aiosqlite:///{tmp_path / 'race.db'}"
        else:
            url = "sqlite+aiosqlite:///:memory:"
        s = PurgeRecordStore(url, clock=ticking_clock)
        await s.init()
        yield s
        await s.close()

    @pytest.fixture
    def publisher(self):
        return InMemoryPublisher()

    @pytest.fixture
    def service(self, racing_store, publisher, ticking_clock):
        return PurgeService(
            store=racing_store,
            publisher=publisher,
            retention=timedelta(days=1),
            clock=ticking_clock,
        )

    async def test_no_record_is_lost(self, service, racing_store, publisher):
        await asyncio.gather(*(service.submit_purge("p1", "w1", f"c{i % 3}") for i in range(30)))
        records = await racing_store.query("p1", "w1")
        assert sorted(r.cache_name for r in records) == ["c0", "c1", "c2"]
        assert len(publisher.messages) == 30

    async def test_before_and_expires_come_from_one_submit(self, service, racing_store):
        await asyncio.gather(*(service.submit_purge("p1", "w1", f"c{i % 4}") for i in range(40)))
        records = await racing_store.query("p1", "w1")
        assert len(records) == 4
        for record in records:
            assert record.expires - record.before == timedelta(days=1)

    async def test_sequential_submits_after_race_move_before_forward(self, service, racing_store):
        await asyncio.gather(*(service.submit_purge("p1", "w1", "cache-a") for _ in range(10)))
        raced = (await racing_store.load("p1", "w1", "cache-a")).before
        await service.submit_purge("p1", "w1", "cache-a")
        assert (await racing_store.load("p1", "w1", "cache-a")).before > raced
