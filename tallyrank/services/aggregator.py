from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

from ..stores.base import CounterStore, GroupTotals
from ..utils.buckets import BucketKey, bucket_start, now_ms, validate_table_name, value_label, walk_back
from .pipeliner import BatchPipeliner

Aggregate = dict[str, Any]


class BucketAggregator:
    """Group-by folds over single buckets, executed by the store.

    ``aggregate_buckets`` runs its buckets concurrently and fails with the
    first bucket that fails; the other results are discarded.
    """

    def __init__(
        self,
        store: CounterStore,
        pipeliner: BatchPipeliner,
        *,
        prefix: str,
        bucket_size: int,
        success_field: str = "success",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._pipeliner = pipeliner
        self.prefix = prefix
        self.bucket_size = bucket_size
        self.success_field = success_field
        self._clock = clock

    def _label(self, group_by: str, raw: str) -> str:
        try:
            value = json.loads(raw)
        except ValueError:
            return raw
        if group_by == self.success_field:
            if value is True:
                return "true"
            if value is None or value is False:
                return "false"
        return value_label(value)

    def format_aggregate(self, bucket: int, group_by: str, totals: GroupTotals) -> Aggregate:
        groups: dict[str, int] = {}
        for raw, total in totals:
            label = self._label(group_by, raw)
            groups[label] = groups.get(label, 0) + total
        return {"time": bucket, group_by: groups}

    def _buckets(self, bucket_count: int, timestamp: int | float | None) -> list[int]:
        if bucket_count < 0:
            raise ValueError(f"bucket_count must be >= 0, got {bucket_count}")
        start = bucket_start(self._clock() if timestamp is None else timestamp, self.bucket_size)
        return list(walk_back(start, self.bucket_size, bucket_count))

    async def aggregate_bucket(self, table: str, group_by: str, timestamp: int | float | None = None) -> Aggregate:
        validate_table_name(table)
        (bucket,) = self._buckets(1, timestamp)
        totals = await self._store.aggregate(str(BucketKey(self.prefix, table, bucket)), group_by)
        return self.format_aggregate(bucket, group_by, totals)

    async def aggregate_buckets(
        self,
        table: str,
        group_by: str,
        bucket_count: int,
        timestamp: int | float | None = None,
    ) -> list[Aggregate]:
        validate_table_name(table)
        buckets = self._buckets(bucket_count, timestamp)
        return list(await asyncio.gather(*(self.aggregate_bucket(table, group_by, bucket) for bucket in buckets)))

    async def aggregate_buckets_with_pipeline(
        self,
        table: str,
        group_by: str,
        bucket_count: int,
        timestamp: int | float | None = None,
        max_pipeline_size: int | None = None,
    ) -> list[Aggregate]:
        validate_table_name(table)
        buckets = self._buckets(bucket_count, timestamp)
        requests = [(str(BucketKey(self.prefix, table, bucket)), group_by) for bucket in buckets]
        replies = await self._pipeliner.run(requests, self._store.aggregate_many, max_size=max_pipeline_size)
        return [self.format_aggregate(bucket, group_by, totals) for bucket, totals in zip(buckets, replies)]
