from __future__ import annotations

from typing import AsyncIterator, Sequence

# (bucket key, attribute to group by)
AggregateRequest = tuple[str, str]
# (JSON encoding of the grouped value, summed count); absent values encode as "null"
GroupTotals = list[tuple[str, int]]
Snapshot = dict[str, int]


class CounterStore:
    """Capabilities the engine needs from an ordered key/score store.

    Each method is a single atomic operation on the store side, except the
    ``*_many`` variants which submit several of them in one round trip.
    """

    name: str

    async def increment(self, key: str, member: str) -> int:  # pragma: no cover - interface
        raise NotImplementedError

    async def fetch_many(self, keys: Sequence[str]) -> list[Snapshot]:  # pragma: no cover - interface
        raise NotImplementedError

    async def aggregate(self, key: str, field: str) -> GroupTotals:  # pragma: no cover - interface
        raise NotImplementedError

    async def aggregate_many(self, requests: Sequence[AggregateRequest]) -> list[GroupTotals]:  # pragma: no cover - interface
        raise NotImplementedError

    async def top_union(self, keys: Sequence[str], limit: int) -> list[tuple[str, int]]:  # pragma: no cover - interface
        """Sum scores across ``keys`` and return the ``limit`` best, highest first."""
        raise NotImplementedError

    async def union(self, keys: Sequence[str]) -> list[tuple[str, int]]:  # pragma: no cover - interface
        raise NotImplementedError

    def scan(self, pattern: str) -> AsyncIterator[str]:  # pragma: no cover - interface
        raise NotImplementedError

    async def delete(self, key: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def ping(self) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    async def aclose(self) -> None:
        return None
