from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass
from typing import Callable

from .logging_config import logger
from .stores.base import Snapshot

SWEEP_FACTOR = 10


@dataclass
class CacheEntry:
    value: Snapshot
    created_at: float


class BucketCache:
    """Short-lived local copy of bucket snapshots.

    Entries are never written back and may be up to one TTL stale. A
    background task drops expired entries every ``SWEEP_FACTOR`` TTLs.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl_seconds
        self._clock = clock
        self._store: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task | None = None

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at >= self.ttl

    async def get(self, key: str) -> Snapshot | None:
        self._ensure_sweeper()
        async with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if self._expired(entry, self._clock()):
                self._store.pop(key, None)
                return None
            return dict(entry.value)

    async def set(self, key: str, value: Snapshot) -> None:
        if self.ttl <= 0:
            return
        self._ensure_sweeper()
        async with self._lock:
            self._store[key] = CacheEntry(value=dict(value), created_at=self._clock())

    async def sweep(self) -> int:
        async with self._lock:
            now = self._clock()
            stale = [key for key, entry in self._store.items() if self._expired(entry, now)]
            for key in stale:
                del self._store[key]
        if stale:
            logger.debug("cache.sweep", removed=len(stale), remaining=len(self._store))
        return len(stale)

    def __len__(self) -> int:
        return len(self._store)

    def _ensure_sweeper(self) -> None:
        if self.ttl <= 0 or (self._sweeper is not None and not self._sweeper.done()):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._sweeper = loop.create_task(self._sweep_forever())

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.ttl * SWEEP_FACTOR)
            await self.sweep()

    async def aclose(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None
