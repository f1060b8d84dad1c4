"""
Tests for the tag-based candidate pool cache.
"""

import asyncio
from datetime import date

import pytest

from conciliacao.models import PeriodFilter, PoolKind
from conciliacao.reconciliation.cache import CandidatePoolCache

Q1 = (date(2024, 1, 1), date(2024, 3, 31))
Q2 = (date(2024, 4, 1), date(2024, 6, 30))


def period(bounds, account_id=None):
    return PeriodFilter(bounds[0], bounds[1], account_id=account_id)


class CountingLoader:
    def __init__(self, value):
        self.value = value
        self.calls = 0

    async def __call__(self, period):
        self.calls += 1
        return list(self.value)


@pytest.fixture
def cache():
    return CandidatePoolCache()


async def fill(cache, kind, *periods):
    for p in periods:
        await cache.get_or_load(kind, p, CountingLoader([p.account_id]))


class TestGetOrLoad:
    @pytest.mark.asyncio
    async def test_loads_once(self, cache):
        loader = CountingLoader(["a", "b"])

        first = await cache.get_or_load(PoolKind.STATEMENT_ITEMS, period(Q1), loader)
        second = await cache.get_or_load(PoolKind.STATEMENT_ITEMS, period(Q1), loader)

        assert first == second == ["a", "b"]
        assert loader.calls == 1

    @pytest.mark.asyncio
    async def test_returns_copies(self, cache):
        loader = CountingLoader(["a"])

        first = await cache.get_or_load(PoolKind.TRANSACTIONS, period(Q1), loader)
        first.append("mutated")
        second = await cache.get_or_load(PoolKind.TRANSACTIONS, period(Q1), loader)

        assert second == ["a"]

    @pytest.mark.asyncio
    async def test_kinds_are_separate_entries(self, cache):
        await fill(cache, PoolKind.STATEMENT_ITEMS, period(Q1))
        await fill(cache, PoolKind.TRANSACTIONS, period(Q1))

        assert len(cache) == 2


class TestInvalidation:
    @pytest.mark.asyncio
    async def test_tags_scope_to_account_and_date(self, cache):
        mine_q1 = period(Q1, "acc-a")
        mine_q2 = period(Q2, "acc-a")
        other_q1 = period(Q1, "acc-b")
        all_q1 = period(Q1)
        await fill(cache, PoolKind.STATEMENT_ITEMS, mine_q1, mine_q2, other_q1, all_q1)

        dropped = cache.invalidate_tags(["acc-a"], [date(2024, 2, 15)])

        assert dropped == 2
        assert (PoolKind.STATEMENT_ITEMS, mine_q1) not in cache
        assert (PoolKind.STATEMENT_ITEMS, all_q1) not in cache
        assert (PoolKind.STATEMENT_ITEMS, mine_q2) in cache
        assert (PoolKind.STATEMENT_ITEMS, other_q1) in cache

    @pytest.mark.asyncio
    async def test_tags_without_dates_drop_every_period_of_account(self, cache):
        await fill(cache, PoolKind.TRANSACTIONS, period(Q1, "acc-a"), period(Q2, "acc-a"))
        await fill(cache, PoolKind.TRANSACTIONS, period(Q2, "acc-b"))

        assert cache.invalidate_tags(["acc-a"]) == 2
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_tags_limited_to_kinds(self, cache):
        await fill(cache, PoolKind.STATEMENT_ITEMS, period(Q1))
        await fill(cache, PoolKind.SUGGESTIONS, period(Q1))

        cache.invalidate_tags(["acc-a"], kinds=[PoolKind.SUGGESTIONS])

        assert (PoolKind.STATEMENT_ITEMS, period(Q1)) in cache
        assert (PoolKind.SUGGESTIONS, period(Q1)) not in cache

    @pytest.mark.asyncio
    async def test_dropped_entry_is_refetched(self, cache):
        loader = CountingLoader(["x"])
        await cache.get_or_load(PoolKind.STATEMENT_ITEMS, period(Q1), loader)

        cache.invalidate_period(period(Q1))
        await cache.get_or_load(PoolKind.STATEMENT_ITEMS, period(Q1), loader)

        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_kind_and_clear(self, cache):
        await fill(cache, PoolKind.STATEMENT_ITEMS, period(Q1), period(Q2))
        await fill(cache, PoolKind.SUGGESTIONS, period(Q1))

        assert cache.invalidate_kind(PoolKind.STATEMENT_ITEMS) == 2
        cache.clear()
        assert len(cache) == 0


class GatedLoader:
    """Takes its snapshot immediately but returns it only once released."""

    def __init__(self, value):
        self.value = value
        self.snapshot_taken = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, period):
        snapshot = list(self.value)
        self.snapshot_taken.set()
        await self.release.wait()
        return snapshot


class TestLoadsRacingInvalidation:
    @pytest.mark.asyncio
    async def test_invalidated_load_is_not_stored(self, cache):
        loader = GatedLoader(["t1", "t2"])
        key = (PoolKind.TRANSACTIONS, period(Q1, "acc-a"))
        pending = asyncio.create_task(cache.get_or_load(*key, loader))
        await loader.snapshot_taken.wait()

        dropped = cache.invalidate_tags(["acc-a"], [date(2024, 2, 1)])
        loader.release.set()
        result = await pending

        assert dropped == 0
        assert result == ["t1", "t2"]
        assert key not in cache
        assert cache.generation(key) == 1

    @pytest.mark.asyncio
    async def test_untouched_load_is_stored(self, cache):
        loader = GatedLoader(["t1"])
        key = (PoolKind.TRANSACTIONS, period(Q1, "acc-a"))
        pending = asyncio.create_task(cache.get_or_load(*key, loader))
        await loader.snapshot_taken.wait()

        cache.invalidate_tags(["acc-b"])
        cache.invalidate_kind(PoolKind.SUGGESTIONS)
        loader.release.set()
        await pending

        assert key in cache
        assert cache.generation(key) == 0

    @pytest.mark.asyncio
    async def test_next_read_after_discarded_load_refetches(self, cache):
        loader = GatedLoader(["stale"])
        key = (PoolKind.STATEMENT_ITEMS, period(Q2))
        pending = asyncio.create_task(cache.get_or_load(*key, loader))
        await loader.snapshot_taken.wait()

        cache.invalidate_period(period(Q2))
        loader.release.set()
        await pending
        fresh = await cache.get_or_load(*key, CountingLoader(["fresh"]))

        assert fresh == ["fresh"]
