import pytest

from tallyrank.models.schemas import IdentifierOutcome, Outcome, RankEntry
from tallyrank.services.ranker import CrossBucketRanker
from tallyrank.stores.base import CounterStore


async def ingest_many(analytics, table, identifier, success, times, count):
    events = [{"identifier": identifier, "success": success, "time": times} for _ in range(count)]
    await analytics.ingest(table, *events)


@pytest.fixture()
async def seeded(analytics):
    await ingest_many(analytics, "requests", "A", True, 5_000, 10)
    await ingest_many(analytics, "requests", "B", False, 5_000, 5)
    await ingest_many(analytics, "requests", "C", True, 5_000, 1)
    return analytics


async def test_top_entry_per_outcome(seeded):
    result = await seeded.get_most_allowed_blocked("requests", 1, 1, timestamp=5_000)
    assert result.allowed == [RankEntry(identifier="A", count=10)]
    assert result.blocked == [RankEntry(identifier="B", count=5)]
    assert result.denied == []


async def test_check_at_most_stops_the_scan(seeded):
    result = await seeded.get_most_allowed_blocked("requests", 1, 1, timestamp=5_000, check_at_most=1)
    assert result.allowed == [RankEntry(identifier="A", count=10)]
    assert result.ratelimited == []
    assert result.denied == []


async def test_entries_are_ordered_by_score(seeded):
    result = await seeded.get_most_allowed_blocked("requests", 1, 5, timestamp=5_000)
    assert [entry.identifier for entry in result.allowed] == ["A", "C"]
    assert [entry.count for entry in result.allowed] == [10, 1]


async def test_scores_are_summed_across_buckets(analytics):
    await ingest_many(analytics, "requests", "A", True, 5_000, 3)
    await ingest_many(analytics, "requests", "A", True, 4_000, 4)
    await ingest_many(analytics, "requests", "Z", True, 4_500, 6)
    await ingest_many(analytics, "requests", "A", True, 2_000, 100)  # outside the window

    result = await analytics.get_most_allowed_blocked("requests", 2, 2, timestamp=5_300)
    assert result.allowed == [RankEntry(identifier="A", count=7), RankEntry(identifier="Z", count=6)]


async def test_default_budget_is_five_times_item_count(analytics):
    for rank, identifier in enumerate("PQRSTU"):
        await ingest_many(analytics, "requests", identifier, True, 5_000, 20 - rank)
    await ingest_many(analytics, "requests", "D", "denied", 5_000, 1)

    short = await analytics.get_most_allowed_blocked("requests", 1, 1, timestamp=5_000)
    assert short.allowed == [RankEntry(identifier="P", count=20)]
    assert short.denied == []

    wide = await analytics.get_most_allowed_blocked("requests", 1, 1, timestamp=5_000, check_at_most=10)
    assert wide.denied == [RankEntry(identifier="D", count=1)]


async def test_equal_scores_break_ties_in_reverse_member_order(analytics):
    await ingest_many(analytics, "requests", "a", True, 5_000, 3)
    await ingest_many(analytics, "requests", "b", True, 5_000, 3)
    result = await analytics.get_most_allowed_blocked("requests", 1, 2, timestamp=5_000)
    assert [entry.identifier for entry in result.allowed] == ["b", "a"]


async def test_members_without_outcome_are_skipped(analytics):
    await analytics.ingest("requests", *[{"identifier": "x", "time": 5_000}] * 4)
    await ingest_many(analytics, "requests", "A", True, 5_000, 2)
    result = await analytics.get_most_allowed_blocked("requests", 1, 1, timestamp=5_000)
    assert result.allowed == [RankEntry(identifier="A", count=2)]


async def test_empty_window_returns_empty_lists(analytics):
    result = await analytics.get_most_allowed_blocked("requests", 24, 3, timestamp=5_000)
    assert result.allowed == result.ratelimited == result.denied == []


async def test_invalid_arguments(analytics):
    with pytest.raises(ValueError):
        await analytics.get_most_allowed_blocked("requests", 0, 1)
    result = await analytics.get_most_allowed_blocked("requests", 1, 0)
    assert result.allowed == []


class FixedRowsStore(CounterStore):
    name = "fixed"

    def __init__(self, rows):
        self.rows = rows
        self.requested: list[tuple[list[str], int]] = []

    async def top_union(self, keys, limit):
        self.requested.append((list(keys), limit))
        return self.rows[:limit]


async def test_zero_scores_consume_budget_but_never_count():
    store = FixedRowsStore(
        [
            ('{"identifier":"zero","success":"denied"}', 0),
            ('{"identifier":"A","success":true}', 4),
            ("not json", 3),
            ('{"identifier":"B","success":"denied"}', 2),
        ]
    )
    ranker = CrossBucketRanker(store, prefix="test", bucket_size=1000, clock=lambda: 9_000)
    result = await ranker.get_most_allowed_blocked("requests", 3, 1, check_at_most=3)

    assert store.requested == [(["test:requests:9000", "test:requests:8000", "test:requests:7000"], 3)]
    assert result.allowed == [RankEntry(identifier="A", count=4)]
    assert result.denied == []


async def test_outcome_resolution():
    ranker = CrossBucketRanker(FixedRowsStore([]), prefix="test", bucket_size=1000)
    assert ranker.outcome_of({"success": True}) is Outcome.ALLOWED
    assert ranker.outcome_of({"success": False}) is Outcome.RATELIMITED
    assert ranker.outcome_of({"success": "denied"}) is Outcome.DENIED
    assert ranker.outcome_of({"success": 1}) is None
    assert ranker.outcome_of({}) is None


async def test_allowed_blocked_totals(analytics):
    await ingest_many(analytics, "requests", "A", True, 5_000, 3)
    await ingest_many(analytics, "requests", "A", False, 4_000, 2)
    await ingest_many(analytics, "requests", "A", "denied", 4_000, 1)
    await ingest_many(analytics, "requests", "B", True, 5_000, 1)

    result = await analytics.get_allowed_blocked("requests", 2, timestamp=5_000)
    assert result == {
        "A": IdentifierOutcome(success=3, blocked=3),
        "B": IdentifierOutcome(success=1, blocked=0),
    }
