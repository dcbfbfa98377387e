"""Shared fixtures: a controllable clock and a temp-file record store."""

from datetime import datetime, timedelta, timezone

import pytest

from purge_cache.store import PurgeRecordStore


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class TickingClock(FakeClock):
    """Moves forward a millisecond on every read, so no two callers share a timestamp."""

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(milliseconds=1)
        return self.now


class FakeTimer:
    """Monotonic seconds for the query cache."""

    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ticking_clock():
    return TickingClock()


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
async def store(tmp_path, clock):
    s = PurgeRecordStore(f"sqlite+aiosqlite:///{tmp_path / 'purges.db'}", clock=clock)
    await s.init()
    yield s
    await s.close()
