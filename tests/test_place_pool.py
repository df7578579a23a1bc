import random
from datetime import datetime, timedelta, timezone

import pytest

from community_context.core.errors import DependencyError
from community_context.models.community_model import CachedPlacePool, Place, PlacePoolEntry
from community_context.repos.community_cache import pool_key
from community_context.services.place_pool import PlacePoolManager, merge_pool_entries, sample_from_pool


def dining_places(prefix, count, query="best local restaurants", **kwargs):
    return [
        Place(name=f"{prefix} {i}", rating=4.7, review_count=1000 - i, place_id=f"{prefix}-{i}",
              source_queries=[query], **kwargs)
        for i in range(count)
    ]


class CountingFetch:
    def __init__(self, places=None, error=None):
        self.places = places or []
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.places


async def seed_stale_pool(memory_store, location, category, entries):
    old = datetime.now(timezone.utc) - timedelta(days=30)
    payload = CachedPlacePool(items=entries, fetched_at=old.isoformat(), query_count=len(entries))
    await memory_store.set(pool_key(location.zip_code, category), payload.model_dump())


class TestSampling:
    """Weighted sampling from a ranked pool"""

    def test_small_pool_returned_whole(self):
        entries = [PlacePoolEntry(place_id=str(i)) for i in range(3)]
        picked = sample_from_pool(entries, 5, random.Random(1))
        assert sorted(e.place_id for e in picked) == ["0", "1", "2"]

    def test_sample_size_and_uniqueness(self):
        entries = [PlacePoolEntry(place_id=str(i)) for i in range(20)]
        picked = sample_from_pool(entries, 8, random.Random(1))
        ids = [e.place_id for e in picked]
        assert len(ids) == 8
        assert len(set(ids)) == 8

    def test_top_tier_is_favored(self):
        entries = [PlacePoolEntry(place_id=str(i)) for i in range(20)]
        picked = sample_from_pool(entries, 5, random.Random(3))
        # ceil(0.6 * 5) picks come from the top 4 entries
        assert sum(1 for e in picked if int(e.place_id) < 4) >= 3

    def test_zero_count(self):
        assert sample_from_pool([PlacePoolEntry(place_id="a")], 0) == []


class TestMergeEntries:
    """Merging freshly fetched entries into a stale pool"""

    def test_fresh_first_cached_appended(self):
        fresh = [PlacePoolEntry(place_id="a", source_queries=["q1"])]
        cached = [
            PlacePoolEntry(place_id="b", source_queries=["q2"]),
            PlacePoolEntry(place_id="a", source_queries=["q3"]),
        ]
        merged = merge_pool_entries(fresh, cached)
        assert [e.place_id for e in merged] == ["a", "b"]
        assert merged[0].source_queries == ["q1", "q3"]


class TestPlacePoolManager:
    """Pool lifecycle"""

    def test_staleness(self):
        manager = PlacePoolManager(cache=None, refresh_days=14)
        now = datetime(2026, 7, 20, tzinfo=timezone.utc)
        assert manager.is_pool_stale(None, now) is True
        assert manager.is_pool_stale("garbage", now) is True
        assert manager.is_pool_stale("2026-07-10T00:00:00+00:00", now) is False
        assert manager.is_pool_stale("2026-06-01T00:00:00+00:00", now) is True
        assert manager.is_pool_stale("2026-07-10T00:00:00", now) is False

    @pytest.mark.asyncio
    async def test_second_request_is_served_from_pool(self, cache, austin):
        manager = PlacePoolManager(cache, rng=random.Random(1))
        fetch = CountingFetch(dining_places("Bistro", 12))
        first = await manager.get_pooled_places("dining", austin, fetch)
        second = await manager.get_pooled_places("dining", austin, fetch)
        assert fetch.calls == 1
        assert len(first) == 8
        assert len(second) == 8

    @pytest.mark.asyncio
    async def test_force_refresh_fetches_again(self, cache, austin):
        manager = PlacePoolManager(cache, rng=random.Random(1))
        fetch = CountingFetch(dining_places("Bistro", 4))
        await manager.get_pooled_places("dining", austin, fetch)
        await manager.get_pooled_places("dining", austin, fetch, force_refresh=True)
        assert fetch.calls == 2

    @pytest.mark.asyncio
    async def test_scored_side_table(self, cache, austin):
        manager = PlacePoolManager(cache, rng=random.Random(1))
        scored = {}
        await manager.get_pooled_places("dining", austin, CountingFetch(dining_places("Bistro", 3)), scored=scored)
        assert set(scored) == {"Bistro-0", "Bistro-1", "Bistro-2"}

    @pytest.mark.asyncio
    async def test_below_threshold_never_pooled(self, cache, austin):
        manager = PlacePoolManager(cache, rng=random.Random(1))
        places = dining_places("Bistro", 3)
        places.append(Place(name="Dive", rating=3.1, review_count=20, place_id="dive", source_queries=["x"]))
        await manager.get_pooled_places("dining", austin, CountingFetch(places))
        pool = await cache.get_place_pool(austin.zip_code, "dining")
        assert "dive" not in [e.place_id for e in pool.items]

    @pytest.mark.asyncio
    async def test_stale_pool_is_refreshed_and_merged(self, cache, memory_store, austin):
        await seed_stale_pool(memory_store, austin, "dining", [PlacePoolEntry(place_id="old-1", source_queries=["q"])])
        manager = PlacePoolManager(cache, rng=random.Random(1))
        fetch = CountingFetch(dining_places("Bistro", 3))
        await manager.get_pooled_places("dining", austin, fetch)
        pool = await cache.get_place_pool(austin.zip_code, "dining")
        assert fetch.calls == 1
        assert [e.place_id for e in pool.items] == ["Bistro-0", "Bistro-1", "Bistro-2", "old-1"]
        assert manager.is_pool_stale(pool.fetched_at) is False

    @pytest.mark.asyncio
    async def test_failed_refresh_serves_stale_pool(self, cache, memory_store, austin):
        stale = [PlacePoolEntry(place_id=f"old-{i}") for i in range(3)]
        await seed_stale_pool(memory_store, austin, "dining", stale)
        manager = PlacePoolManager(cache, rng=random.Random(1))
        served = await manager.get_pooled_places(
            "dining", austin, CountingFetch(error=DependencyError("google_places", "down"))
        )
        assert sorted(e.place_id for e in served) == ["old-0", "old-1", "old-2"]

    @pytest.mark.asyncio
    async def test_failure_without_pool_propagates(self, cache, austin):
        manager = PlacePoolManager(cache)
        with pytest.raises(DependencyError):
            await manager.get_pooled_places("dining", austin, CountingFetch(error=DependencyError("google_places", "down")))

    @pytest.mark.asyncio
    async def test_empty_result_not_persisted(self, cache, memory_store, austin):
        manager = PlacePoolManager(cache)
        assert await manager.get_pooled_places("dining", austin, CountingFetch([])) == []
        assert memory_store.keys() == []

    @pytest.mark.asyncio
    async def test_audience_pool_is_separate(self, cache, memory_store, austin):
        manager = PlacePoolManager(cache, rng=random.Random(1))
        await manager.get_pooled_places("dining", austin, CountingFetch(dining_places("Kid", 3)), audience="growing_families")
        assert memory_store.keys() == [pool_key(austin.zip_code, "dining", "growing_families")]

    @pytest.mark.asyncio
    async def test_covered_queries_and_entries(self, cache, austin):
        manager = PlacePoolManager(cache, rng=random.Random(1))
        places = dining_places("Bistro", 3, query="Family Restaurant Kids Menu") + dining_places("Grill", 2, query="steakhouse")
        await manager.get_pooled_places("dining", austin, CountingFetch(places))
        covered = await manager.covered_queries("dining", austin)
        assert covered == {"family restaurant kids menu", "steakhouse"}
        entries = await manager.entries_for_queries("dining", austin, ["family restaurant kids menu"])
        assert sorted(e.place_id for e in entries) == ["Bistro-0", "Bistro-1", "Bistro-2"]
