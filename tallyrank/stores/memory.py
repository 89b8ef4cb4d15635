"""In-process counter store.

Follows the ordering rules of the Redis store (ascending by score then
member, ties reversed on descending reads) so results match across both.
State is lost with the process; use it for development and tests.
"""
from __future__ import annotations

import asyncio
import json
from fnmatch import fnmatchcase
from typing import AsyncIterator, Sequence

from .base import AggregateRequest, CounterStore, GroupTotals, Snapshot


def _ascending(scores: dict[str, int]) -> list[tuple[str, int]]:
    return sorted(scores.items(), key=lambda item: (item[1], item[0]))


class MemoryCounterStore(CounterStore):
    name = "memory"

    def __init__(self) -> None:
        self._sets: dict[str, dict[str, int]] = {}
        self._lock = asyncio.Lock()

    async def increment(self, key: str, member: str) -> int:
        async with self._lock:
            scores = self._sets.setdefault(key, {})
            scores[member] = scores.get(member, 0) + 1
            return scores[member]

    async def fetch_many(self, keys: Sequence[str]) -> list[Snapshot]:
        async with self._lock:
            return [dict(self._sets.get(key, {})) for key in keys]

    async def aggregate(self, key: str, field: str) -> GroupTotals:
        async with self._lock:
            return self._fold(key, field)

    async def aggregate_many(self, requests: Sequence[AggregateRequest]) -> list[GroupTotals]:
        async with self._lock:
            return [self._fold(key, field) for key, field in requests]

    def _fold(self, key: str, field: str) -> GroupTotals:
        totals: dict[str, int] = {}
        for member, score in _ascending(self._sets.get(key, {})):
            value = json.loads(member).get(field)
            group = "null" if value is None else json.dumps(value)
            totals[group] = totals.get(group, 0) + score
        return list(totals.items())

    def _union(self, keys: Sequence[str]) -> dict[str, int]:
        combined: dict[str, int] = {}
        for key in keys:
            for member, score in self._sets.get(key, {}).items():
                combined[member] = combined.get(member, 0) + score
        return combined

    async def top_union(self, keys: Sequence[str], limit: int) -> list[tuple[str, int]]:
        if limit <= 0:
            return []
        async with self._lock:
            ranked = _ascending(self._union(keys))
        ranked.reverse()
        return ranked[:limit]

    async def union(self, keys: Sequence[str]) -> list[tuple[str, int]]:
        async with self._lock:
            return _ascending(self._union(keys))

    async def scan(self, pattern: str) -> AsyncIterator[str]:
        async with self._lock:
            found = [key for key in self._sets if fnmatchcase(key, pattern)]
        for key in found:
            yield key

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._sets.pop(key, None)

    async def ping(self) -> bool:
        return True
