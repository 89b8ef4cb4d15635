"""Public entry point: ingest events and read them back per bucket.

Writes cost one ZINCRBY per event. Reads either derive bucket keys from the
requested range or, with ``scan=True``, enumerate the table's buckets and let
the retention evictor reclaim expired ones on the way.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Mapping, Sequence

from .cache import BucketCache
from .config import Settings
from .logging_config import logger
from .models.schemas import IdentifierOutcome, RankedOutcomes
from .services.aggregator import Aggregate, BucketAggregator
from .services.pipeliner import BatchPipeliner
from .services.ranker import CrossBucketRanker
from .services.retention import RetentionEvictor
from .stores.base import CounterStore, Snapshot
from .stores.redis_store import RedisCounterStore
from .utils.buckets import (
    BucketKey,
    bucket_start,
    decode_member,
    now_ms,
    parse_retention,
    parse_window,
    serialize_event,
    validate_table_name,
    value_label,
)

Event = Mapping[str, Any]


class BucketAnalytics:
    def __init__(
        self,
        store: CounterStore,
        settings: Settings,
        *,
        clock: Callable[[], int] = now_ms,
        cache_clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.settings = settings
        self.prefix = settings.prefix
        self.bucket_size = parse_window(settings.window)
        self.retention = parse_retention(settings.retention)
        self._clock = clock
        self.cache = BucketCache(settings.cache_ttl_seconds, clock=cache_clock)
        self.pipeliner = BatchPipeliner(settings.max_pipeline_size)
        self.evictor = RetentionEvictor(store, prefix=self.prefix, retention_ms=self.retention, clock=clock)
        self.aggregator = BucketAggregator(
            store,
            self.pipeliner,
            prefix=self.prefix,
            bucket_size=self.bucket_size,
            success_field=settings.success_field,
            clock=clock,
        )
        self.ranker = CrossBucketRanker(
            store,
            prefix=self.prefix,
            bucket_size=self.bucket_size,
            identifier_field=settings.identifier_field,
            success_field=settings.success_field,
            denied_marker=settings.denied_marker,
            clock=clock,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "BucketAnalytics":
        return cls(RedisCounterStore.from_settings(settings), settings)

    async def aclose(self) -> None:
        await self.cache.aclose()
        await self.store.aclose()

    # -- writes ---------------------------------------------------------

    async def ingest(self, table: str, *events: Event) -> None:
        """Count each event once in the bucket its time falls into.

        Every increment is attempted even when another one fails; the first
        failure is raised once all of them have settled.
        """
        validate_table_name(table)
        writes: list[tuple[str, str]] = []
        for event in events:
            timestamp, member = serialize_event(event)
            bucket = bucket_start(self._clock() if timestamp is None else timestamp, self.bucket_size)
            writes.append((str(BucketKey(self.prefix, table, bucket)), member))
        if not writes:
            return

        outcomes = await asyncio.gather(
            *(self.store.increment(key, member) for key, member in writes),
            return_exceptions=True,
        )
        failures = [(write, outcome) for write, outcome in zip(writes, outcomes) if isinstance(outcome, BaseException)]
        for (key, member), exc in failures:
            logger.error("ingest.failed", table=table, key=key, member=member, error=str(exc))
        logger.debug("ingest.applied", table=table, events=len(writes) - len(failures), failed=len(failures))
        if failures:
            raise failures[0][1]

    # -- server-side folds ------------------------------------------------

    async def aggregate_bucket(self, table: str, group_by: str, timestamp: int | float | None = None) -> Aggregate:
        return await self.aggregator.aggregate_bucket(table, group_by, timestamp)

    async def aggregate_buckets(
        self,
        table: str,
        group_by: str,
        bucket_count: int,
        timestamp: int | float | None = None,
    ) -> list[Aggregate]:
        return await self.aggregator.aggregate_buckets(table, group_by, bucket_count, timestamp)

    async def aggregate_buckets_with_pipeline(
        self,
        table: str,
        group_by: str,
        bucket_count: int,
        timestamp: int | float | None = None,
        max_pipeline_size: int | None = None,
    ) -> list[Aggregate]:
        return await self.aggregator.aggregate_buckets_with_pipeline(
            table, group_by, bucket_count, timestamp, max_pipeline_size
        )

    async def get_most_allowed_blocked(
        self,
        table: str,
        timestamp_count: int,
        item_count: int,
        timestamp: int | float | None = None,
        check_at_most: int | None = None,
    ) -> RankedOutcomes:
        return await self.ranker.get_most_allowed_blocked(table, timestamp_count, item_count, timestamp, check_at_most)

    async def get_allowed_blocked(
        self,
        table: str,
        timestamp_count: int,
        timestamp: int | float | None = None,
    ) -> dict[str, IdentifierOutcome]:
        return await self.ranker.get_allowed_blocked(table, timestamp_count, timestamp)

    # -- cached reads -----------------------------------------------------

    def _derive_keys(self, table: str, start: int, end: int) -> list[BucketKey]:
        first = bucket_start(start, self.bucket_size)
        # Never past the current bucket; future buckets cannot hold counts yet.
        current = min(bucket_start(self._clock(), self.bucket_size), bucket_start(end, self.bucket_size))
        keys: list[BucketKey] = []
        while current >= first:
            keys.append(BucketKey(self.prefix, table, current))
            current -= self.bucket_size
        keys.reverse()
        return keys

    async def load_buckets(
        self,
        table: str,
        start: int,
        end: int,
        *,
        scan: bool = False,
    ) -> list[tuple[BucketKey, Snapshot]]:
        """Snapshots of every bucket in ``[start, end]``, oldest first."""
        validate_table_name(table)
        if scan:
            first = bucket_start(start, self.bucket_size)
            keys = [key for key in await self.evictor.discover(table) if first <= key.bucket <= end]
        else:
            keys = self._derive_keys(table, start, end)

        snapshots: dict[BucketKey, Snapshot] = {}
        missing: list[BucketKey] = []
        for key in keys:
            cached = await self.cache.get(str(key))
            if cached is None:
                missing.append(key)
            else:
                snapshots[key] = cached

        fetched = await self.pipeliner.run([str(key) for key in missing], self.store.fetch_many)
        for key, snapshot in zip(missing, fetched):
            # Empty buckets stay uncached; their first write may land any moment.
            if snapshot:
                await self.cache.set(str(key), snapshot)
            snapshots[key] = snapshot
        return [(key, snapshots[key]) for key in keys]

    async def count(self, table: str, start: int, end: int, *, scan: bool = False) -> list[dict[str, int]]:
        buckets = await self.load_buckets(table, start, end, scan=scan)
        return [{"time": key.bucket, "count": sum(snapshot.values())} for key, snapshot in buckets]

    async def query(
        self,
        table: str,
        start: int,
        end: int,
        *,
        where: Mapping[str, Any] | None = None,
        fields: Sequence[str] | None = None,
        scan: bool = False,
    ) -> list[dict[str, Any]]:
        """Per bucket, totals for every attribute value, optionally filtered.

        ``where`` keeps counters whose attributes equal every given pair;
        ``fields`` limits the output to the named attributes.
        """
        buckets = await self.load_buckets(table, start, end, scan=scan)
        results: list[dict[str, Any]] = []
        for key, snapshot in buckets:
            row: dict[str, Any] = {"time": key.bucket}
            for member, count in snapshot.items():
                attributes = decode_member(member)
                if where and not _matches(attributes, where):
                    continue
                for name, value in attributes.items():
                    if fields is not None and name not in fields:
                        continue
                    totals = row.setdefault(name, {})
                    label = value_label(value)
                    totals[label] = totals.get(label, 0) + count
            results.append(row)
        return results


def _matches(attributes: Mapping[str, Any], where: Mapping[str, Any]) -> bool:
    for name, expected in where.items():
        if name not in attributes:
            return False
        actual = attributes[name]
        # 1 == True in Python; keep booleans and numbers apart.
        if isinstance(actual, bool) != isinstance(expected, bool) or actual != expected:
            return False
    return True
