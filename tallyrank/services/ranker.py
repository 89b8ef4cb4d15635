"""Top identifiers per outcome across a run of consecutive buckets.

The store unions the buckets and sorts the result; only the first
``check_at_most`` members ever leave it. The scan below walks those members
from the highest score down and files each one under its outcome until every
outcome is full or the budget is spent. An outcome that is rare relative to
total traffic can therefore come back short; that is the price of a bounded
read, not an error.

Members with equal scores arrive in reverse lexicographic order of their
serialized attributes, which is how Redis orders ZREVRANGE ties.
"""
from __future__ import annotations

from typing import Any, Callable

from ..logging_config import logger
from ..models.schemas import IdentifierOutcome, Outcome, RankedOutcomes, RankEntry
from ..stores.base import CounterStore
from ..utils.buckets import (
    BucketKey,
    bucket_start,
    decode_member,
    now_ms,
    validate_table_name,
    value_label,
    walk_back,
)

CHECK_FACTOR = 5


class CrossBucketRanker:
    def __init__(
        self,
        store: CounterStore,
        *,
        prefix: str,
        bucket_size: int,
        identifier_field: str = "identifier",
        success_field: str = "success",
        denied_marker: str = "denied",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self.prefix = prefix
        self.bucket_size = bucket_size
        self.identifier_field = identifier_field
        self.success_field = success_field
        self.denied_marker = denied_marker
        self._clock = clock

    def outcome_of(self, attributes: dict[str, Any]) -> Outcome | None:
        success = attributes.get(self.success_field)
        if success is True:
            return Outcome.ALLOWED
        if success is False:
            return Outcome.RATELIMITED
        if success == self.denied_marker:
            return Outcome.DENIED
        return None

    def keys(self, table: str, timestamp_count: int, timestamp: int | float | None = None) -> list[str]:
        validate_table_name(table)
        if timestamp_count <= 0:
            raise ValueError(f"timestamp_count must be > 0, got {timestamp_count}")
        start = bucket_start(self._clock() if timestamp is None else timestamp, self.bucket_size)
        return [str(BucketKey(self.prefix, table, bucket)) for bucket in walk_back(start, self.bucket_size, timestamp_count)]

    def _decode(self, member: str) -> dict[str, Any] | None:
        try:
            return decode_member(member)
        except ValueError:
            logger.warning("ranker.unparsable_member", member=member)
            return None

    async def get_most_allowed_blocked(
        self,
        table: str,
        timestamp_count: int,
        item_count: int,
        timestamp: int | float | None = None,
        check_at_most: int | None = None,
    ) -> RankedOutcomes:
        keys = self.keys(table, timestamp_count, timestamp)
        budget = item_count * CHECK_FACTOR if check_at_most is None else check_at_most
        result = RankedOutcomes()
        if item_count <= 0 or budget <= 0:
            return result

        rows = await self._store.top_union(keys, budget)
        filled = 0
        for member, score in rows[:budget]:
            if filled == len(Outcome):
                break
            if score <= 0:
                continue
            attributes = self._decode(member)
            if attributes is None:
                continue
            outcome = self.outcome_of(attributes)
            if outcome is None:
                continue
            entries = result.entries_for(outcome)
            if len(entries) >= item_count:
                continue
            entries.append(RankEntry(identifier=value_label(attributes.get(self.identifier_field)), count=score))
            if len(entries) == item_count:
                filled += 1
        return result

    async def get_allowed_blocked(
        self,
        table: str,
        timestamp_count: int,
        timestamp: int | float | None = None,
    ) -> dict[str, IdentifierOutcome]:
        """Per identifier, allowed versus blocked (rate limited or denied) totals."""
        keys = self.keys(table, timestamp_count, timestamp)
        totals: dict[str, IdentifierOutcome] = {}
        for member, score in await self._store.union(keys):
            attributes = self._decode(member)
            if attributes is None:
                continue
            outcome = self.outcome_of(attributes)
            if outcome is None:
                continue
            identifier = value_label(attributes.get(self.identifier_field))
            summary = totals.setdefault(identifier, IdentifierOutcome())
            if outcome is Outcome.ALLOWED:
                summary.success += score
            else:
                summary.blocked += score
        return totals
