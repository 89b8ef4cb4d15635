"""Lazy retention.

Buckets are only reclaimed when a read enumerates them by pattern. A bucket
that is never scanned again after it expires stays in the store; ingestion
pays for no extra commands in exchange.
"""
from __future__ import annotations

from typing import Callable

from ..logging_config import logger
from ..stores.base import CounterStore
from ..utils.buckets import BucketKey, now_ms


class RetentionEvictor:
    def __init__(
        self,
        store: CounterStore,
        *,
        prefix: str,
        retention_ms: int | None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self.prefix = prefix
        self.retention_ms = retention_ms
        self._clock = clock

    def is_expired(self, key: BucketKey, now: int) -> bool:
        return bool(self.retention_ms) and key.bucket < now - self.retention_ms

    async def discover(self, table: str) -> list[BucketKey]:
        """Return the table's live buckets oldest first, deleting expired ones."""
        now = self._clock()
        seen: set[str] = set()
        live: list[BucketKey] = []
        async for raw in self._store.scan(BucketKey.pattern(self.prefix, table)):
            if raw in seen:
                continue
            seen.add(raw)
            try:
                key = BucketKey.parse(raw)
            except ValueError:
                logger.warning("retention.unparsable_key", key=raw)
                continue
            if self.is_expired(key, now):
                await self._store.delete(raw)
                logger.info("retention.evicted", key=raw, bucket=key.bucket, retention_ms=self.retention_ms)
                continue
            live.append(key)
        live.sort(key=lambda key: key.bucket)
        return live
