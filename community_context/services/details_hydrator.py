import asyncio
import logging
import re
from typing import Awaitable, Callable, Optional

from community_context.core.errors import DependencyError
from community_context.core.logger import logs
from community_context.models.community_model import Place, PlaceDetails, PlacePoolEntry
from community_context.repos.community_cache import CommunityCache

GetDetailsFn = Callable[[str], Awaitable[Optional[PlaceDetails]]]

SUMMARY_MAX_CHARS = 220
MAX_KEYWORDS = 4

GENERIC_TYPES = {
    "establishment",
    "point of interest",
    "food",
    "store",
    "place of worship",
    "locality",
    "neighborhood",
}


def trim_summary(text: Optional[str], max_chars: int = SUMMARY_MAX_CHARS) -> Optional[str]:
    if not text:
        return None
    collapsed = re.sub(r"\s+", " ", text).strip()
    if not collapsed:
        return None
    if len(collapsed) <= max_chars:
        return collapsed
    cut = collapsed[:max_chars]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip(" ,;:.-") + "…"


def build_keywords(primary_type: Optional[str], types: list[str]) -> list[str]:
    keywords = []
    for raw in [primary_type, *types]:
        if not raw:
            continue
        keyword = raw.replace("_", " ").strip().lower()
        if not keyword or keyword in GENERIC_TYPES or keyword in keywords:
            continue
        keywords.append(keyword)
        if len(keywords) >= MAX_KEYWORDS:
            break
    return keywords


class DetailsHydrator:
    """Turns pool entries into displayable places, one details record per id."""

    def __init__(self, cache: CommunityCache, max_concurrency: int = 8, timeout_seconds: float = 15.0):
        self.cache = cache
        self.semaphore = asyncio.Semaphore(max_concurrency)
        self.timeout_seconds = timeout_seconds

    async def hydrate(
        self,
        entries: list[PlacePoolEntry],
        category: str,
        get_details: GetDetailsFn,
        scored: Optional[dict[str, Place]] = None,
    ) -> list[Place]:
        cached = await asyncio.gather(*(self.cache.get_place_details(e.place_id) for e in entries))

        hits = sum(1 for d in cached if d is not None)
        if entries:
            logs.log(logging.INFO, f"Details for {category}: {hits} cached, {len(entries) - hits} to fetch")

        results = await asyncio.gather(*(
            self._resolve(entry, details, category, get_details, scored or {})
            for entry, details in zip(entries, cached)
        ))
        return [place for place in results if place is not None]

    async def _resolve(
        self,
        entry: PlacePoolEntry,
        details: Optional[PlaceDetails],
        category: str,
        get_details: GetDetailsFn,
        scored: dict[str, Place],
    ) -> Optional[Place]:
        if details is None:
            details = await self._fetch(entry.place_id, get_details)
            if details is None:
                return None
            await self.cache.set_place_details(details)

        seed = scored.get(entry.place_id)
        summary = trim_summary(details.summary)
        return Place(
            name=details.name or (seed.name if seed else ""),
            rating=details.rating or (seed.rating if seed else 0.0),
            review_count=details.review_count or (seed.review_count if seed else 0),
            address=details.address or (seed.address if seed else ""),
            category=category,
            summary=summary,
            keywords=[] if summary else build_keywords(details.primary_type, details.types),
            place_id=entry.place_id,
            distance_km=seed.distance_km if seed else None,
            source_queries=list(entry.source_queries),
            is_fallback=entry.is_fallback
        )

    async def _fetch(self, place_id: str, get_details: GetDetailsFn) -> Optional[PlaceDetails]:
        async with self.semaphore:
            try:
                details = await asyncio.wait_for(get_details(place_id), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                logs.log(logging.WARNING, f"Details lookup timed out for {place_id}, dropping entry")
                return None
            except DependencyError as e:
                logs.log(logging.WARNING, f"Details lookup failed for {place_id}, dropping entry", extra={"error": str(e)})
                return None
            except (ValueError, TypeError, AttributeError) as e:
                logs.log(logging.WARNING, f"Unusable details for {place_id}, dropping entry", extra={"error": str(e)})
                return None

        if details is None or not details.name:
            logs.log(logging.WARNING, f"No details returned for {place_id}, dropping entry")
            return None
        return details
