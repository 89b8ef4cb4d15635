from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tallyrank.app import app
from tallyrank.config import Settings
from tallyrank.engine import BucketAnalytics
from tallyrank.routes.deps import get_analytics
from tallyrank.stores.memory import MemoryCounterStore

NOW_MS = 10_000_000


class FakeClock:
    """Settable stand-in for both the wall clock and the monotonic clock."""

    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, amount: float) -> None:
        self.now += amount


def make_settings(**overrides) -> Settings:
    values = {"prefix": "test", "window": 1000, "cache_ttl_seconds": 60, "max_pipeline_size": 48}
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(NOW_MS)


@pytest.fixture()
def cache_clock() -> FakeClock:
    return FakeClock(0.0)


@pytest.fixture()
def store() -> MemoryCounterStore:
    return MemoryCounterStore()


@pytest.fixture()
async def analytics(store, clock, cache_clock):
    engine = BucketAnalytics(store, make_settings(), clock=clock, cache_clock=cache_clock)
    yield engine
    await engine.aclose()


@pytest.fixture()
def client(store, clock):
    # TTL 0 keeps the cache (and its sweeper task) out of TestClient's own event loop.
    engine = BucketAnalytics(store, make_settings(cache_ttl_seconds=0), clock=clock)
    app.dependency_overrides[get_analytics] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()
