"""
Cached candidate pools per (zip, category[, audience]).

A pool only stores place ids plus the queries that surfaced them. Each request
serves a weighted sample of the pool so repeat visitors see variety without new
search calls until the pool goes stale.
"""
import logging
import math
import random
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from community_context.core.categories import get_category_config
from community_context.core.errors import DependencyError
from community_context.core.logger import logs
from community_context.core.query_packs import normalize_query_key, utc_now
from community_context.models.community_model import Location, Place, PlacePoolEntry
from community_context.repos.community_cache import CommunityCache
from community_context.services.list_assembler import admit_places, dedupe_places, rank_places

FetchFn = Callable[[], Awaitable[list[Place]]]


def sample_from_pool(entries: list[PlacePoolEntry], count: int, rng: Optional[random.Random] = None) -> list[PlacePoolEntry]:
    """
    Entries are expected in ranked order. Roughly 60% of picks come from the top
    20%, 30% from the next band and the rest from the tail.
    """
    rng = rng or random.Random()
    if count <= 0:
        return []
    if len(entries) <= count:
        picked = list(entries)
        rng.shuffle(picked)
        return picked

    n = len(entries)
    top_end = max(1, math.floor(n * 0.2))
    mid_end = max(top_end + 1, math.floor(n * 0.7))
    tiers = [entries[:top_end], entries[top_end:mid_end], entries[mid_end:]]

    top_count = min(len(tiers[0]), math.ceil(count * 0.6))
    mid_count = min(len(tiers[1]), math.ceil(count * 0.3))
    bottom_count = min(len(tiers[2]), max(0, count - top_count - mid_count))

    picked = (
        rng.sample(tiers[0], top_count)
        + rng.sample(tiers[1], mid_count)
        + rng.sample(tiers[2], bottom_count)
    )
    if len(picked) < count:
        taken = {id(e) for e in picked}
        rest = [e for e in entries if id(e) not in taken]
        picked += rng.sample(rest, min(count - len(picked), len(rest)))

    rng.shuffle(picked)
    return picked[:count]


def merge_pool_entries(fresh: list[PlacePoolEntry], cached: list[PlacePoolEntry]) -> list[PlacePoolEntry]:
    """Fresh entries keep their order and attributes; cached ones only add queries or fill in after."""
    merged: dict[str, PlacePoolEntry] = {}
    for entry in fresh:
        existing = merged.get(entry.place_id)
        if existing is None:
            merged[entry.place_id] = entry.model_copy(deep=True)
            continue
        for query in entry.source_queries:
            if query not in existing.source_queries:
                existing.source_queries.append(query)
        existing.is_fallback = existing.is_fallback and entry.is_fallback

    for entry in cached:
        existing = merged.get(entry.place_id)
        if existing is None:
            merged[entry.place_id] = entry.model_copy(deep=True)
            continue
        for query in entry.source_queries:
            if query not in existing.source_queries:
                existing.source_queries.append(query)
    return list(merged.values())


class PlacePoolManager:
    def __init__(self, cache: CommunityCache, refresh_days: int = 14, rng: Optional[random.Random] = None):
        self.cache = cache
        self.refresh_days = refresh_days
        self.rng = rng or random.Random()

    def is_pool_stale(self, fetched_at: Optional[str], now: Optional[datetime] = None) -> bool:
        if not fetched_at:
            return True
        try:
            fetched = datetime.fromisoformat(fetched_at)
        except (TypeError, ValueError):
            return True
        if fetched.tzinfo is None:
            fetched = fetched.replace(tzinfo=timezone.utc)
        now = now or utc_now()
        return now - fetched > timedelta(days=self.refresh_days)

    async def get_pooled_places(
        self,
        category: str,
        location: Location,
        fetch_fn: FetchFn,
        audience: Optional[str] = None,
        force_refresh: bool = False,
        scored: Optional[dict[str, Place]] = None,
    ) -> list[PlacePoolEntry]:
        """
        Returns up to display_limit pool entries for the category.
        `scored` is filled with the freshly fetched places keyed by place id.
        """
        config = get_category_config(category)
        label = f"{location.zip_code}/{category}" + (f"/{audience}" if audience else "")

        cached = await self.cache.get_place_pool(location.zip_code, category, audience)
        stale = cached is None or self.is_pool_stale(cached.fetched_at)
        if cached and cached.items and not stale and not force_refresh:
            logs.log(logging.INFO, f"✓ Place pool cache HIT for {label} ({len(cached.items)} entries)")
            return sample_from_pool(cached.items, config.display_limit, self.rng)

        reason = "forced" if force_refresh and cached and not stale else ("stale" if cached else "missing")
        logs.log(logging.INFO, f"✗ Place pool cache MISS for {label} ({reason}). Fetching...")

        try:
            places = await fetch_fn()
        except DependencyError as e:
            if cached and cached.items:
                logs.log(logging.WARNING, f"Pool refresh failed for {label}, serving stale pool", extra={
                    "error": str(e), "entries": len(cached.items)
                })
                return sample_from_pool(cached.items, config.display_limit, self.rng)
            raise

        admitted = rank_places(admit_places(dedupe_places(places), category))
        fresh = []
        for place in admitted:
            if not place.place_id:
                continue
            if scored is not None:
                scored[place.place_id] = place
            fresh.append(PlacePoolEntry(
                place_id=place.place_id,
                source_queries=list(place.source_queries),
                is_fallback=place.is_fallback
            ))

        entries = merge_pool_entries(fresh, cached.items if cached else [])
        if config.pool_max > 0:
            entries = entries[:config.pool_max]

        if entries:
            await self.cache.set_place_pool(location.zip_code, category, entries, audience)
        logs.log(logging.INFO, f"Pool for {label} refreshed", extra={
            "fetched": len(places), "admitted": len(fresh), "pool_size": len(entries)
        })
        return sample_from_pool(entries, config.display_limit, self.rng)

    async def covered_queries(self, category: str, location: Location) -> set[str]:
        cached = await self.cache.get_place_pool(location.zip_code, category)
        if not cached:
            return set()
        return {
            normalize_query_key(query)
            for entry in cached.items
            for query in entry.source_queries
        }

    async def entries_for_queries(self, category: str, location: Location, queries: list[str]) -> list[PlacePoolEntry]:
        """Base pool entries surfaced by any of the given queries."""
        cached = await self.cache.get_place_pool(location.zip_code, category)
        if not cached:
            return []
        wanted = {normalize_query_key(q) for q in queries}
        return [
            entry for entry in cached.items
            if any(normalize_query_key(q) in wanted for q in entry.source_queries)
        ]
