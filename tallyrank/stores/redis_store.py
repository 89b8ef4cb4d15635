from __future__ import annotations

import uuid
from typing import AsyncIterator, Sequence

from redis.asyncio import Redis

from ..config import Settings
from ..logging_config import logger
from .base import AggregateRequest, CounterStore, GroupTotals, Snapshot

# Folds one bucket by a single attribute inside Redis. Groups are keyed by the
# JSON encoding of the attribute value so strings, numbers and booleans stay
# distinguishable; a missing attribute groups under "null".
AGGREGATE_SCRIPT = """
local key = KEYS[1]
local field = ARGV[1]

local data = redis.call("ZRANGE", key, 0, -1, "WITHSCORES")
local totals = {}
local order = {}

for i = 1, #data, 2 do
  local attributes = cjson.decode(data[i])
  local value = attributes[field]
  local group = "null"
  if value ~= nil and value ~= cjson.null then
    group = cjson.encode(value)
  end
  if totals[group] == nil then
    totals[group] = 0
    table.insert(order, group)
  end
  totals[group] = totals[group] + tonumber(data[i + 1])
end

local result = {}
for _, group in ipairs(order) do
  table.insert(result, {group, totals[group]})
end
return result
"""

SCAN_COUNT = 1000


def _pairs(rows) -> list[tuple[str, int]]:
    return [(member, int(float(score))) for member, score in rows or []]


def _group_totals(reply) -> GroupTotals:
    return [(group, int(total)) for group, total in reply or []]


class RedisCounterStore(CounterStore):
    """Sorted-set counters on a Redis server (6.2 or newer for ZUNION)."""

    name = "redis"

    def __init__(self, client: Redis, *, scratch_prefix: str) -> None:
        self._redis = client
        self._scratch_prefix = scratch_prefix

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisCounterStore":
        client = Redis.from_url(
            str(settings.redis_url),
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=settings.request_timeout_seconds,
            socket_timeout=settings.request_timeout_seconds,
        )
        logger.info("store.redis_connected", url=str(settings.redis_url))
        return cls(client, scratch_prefix=f"{settings.prefix}:~rank")

    async def increment(self, key: str, member: str) -> int:
        return int(await self._redis.zincrby(key, 1, member))

    async def fetch_many(self, keys: Sequence[str]) -> list[Snapshot]:
        if not keys:
            return []
        async with self._redis.pipeline(transaction=False) as pipe:
            for key in keys:
                pipe.zrange(key, 0, -1, withscores=True)
            replies = await pipe.execute()
        return [dict(_pairs(rows)) for rows in replies]

    async def aggregate(self, key: str, field: str) -> GroupTotals:
        reply = await self._redis.eval(AGGREGATE_SCRIPT, 1, key, field)
        return _group_totals(reply)

    async def aggregate_many(self, requests: Sequence[AggregateRequest]) -> list[GroupTotals]:
        if not requests:
            return []
        async with self._redis.pipeline(transaction=False) as pipe:
            for key, field in requests:
                pipe.eval(AGGREGATE_SCRIPT, 1, key, field)
            replies = await pipe.execute()
        return [_group_totals(reply) for reply in replies]

    async def top_union(self, keys: Sequence[str], limit: int) -> list[tuple[str, int]]:
        if not keys or limit <= 0:
            return []
        # The scratch key never outlives the transaction.
        scratch = f"{self._scratch_prefix}:{uuid.uuid4().hex}"
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zunionstore(scratch, list(keys))
            pipe.zrevrange(scratch, 0, limit - 1, withscores=True)
            pipe.delete(scratch)
            _, rows, _ = await pipe.execute()
        return _pairs(rows)

    async def union(self, keys: Sequence[str]) -> list[tuple[str, int]]:
        if not keys:
            return []
        rows = await self._redis.zunion(list(keys), withscores=True)
        return _pairs(rows)

    async def scan(self, pattern: str) -> AsyncIterator[str]:
        async for key in self._redis.scan_iter(match=pattern, count=SCAN_COUNT):
            yield key

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def aclose(self) -> None:
        await self._redis.aclose()
