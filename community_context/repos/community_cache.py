"""
Typed access to every community cache tier.

All reads return None and all writes return False when the backend is missing or
unreachable, so callers fall through to a fresh fetch instead of failing.
"""
import logging
import re
from typing import Any, Optional

from community_context.core.errors import CacheUnavailable
from community_context.core.logger import logs
from community_context.models.community_model import (
    CachedPlacePool,
    PlaceDetails,
    PlacePoolEntry,
    SeasonalSections,
)
from community_context.repos.cache_store import CacheStore
from community_context.core.query_packs import utc_now

DAY_SECONDS = 60 * 60 * 24
AUDIENCE_DELTA_TTL_SECONDS = DAY_SECONDS


# ===== Key builders =====

def community_key(zip_code: str) -> str:
    return f"community:{zip_code}"


def category_key(zip_code: str, category: str) -> str:
    return f"community:category:{zip_code}:{category}"


def pool_key(zip_code: str, category: str, audience: Optional[str] = None) -> str:
    base = f"community:pool:{zip_code}:{category}"
    return f"{base}:{audience}" if audience else base


def details_key(place_id: str) -> str:
    return f"community:details:{place_id}"


def audience_key(zip_code: str, audience: str) -> str:
    return f"community:audience:{zip_code}:{audience}"


def seasonal_key(zip_code: str) -> str:
    return f"community:seasonal:{zip_code}"


def cycle_key(user_id: str) -> str:
    return f"community:cycle:{user_id}"


def audience_rotation_key(user_id: str, category: str) -> str:
    return f"community:audience_rotation:{user_id}:{category}"


def city_description_key(city: str, state: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", city.strip().lower()).strip("-")
    return f"community:citydesc:{state.strip().upper()}:{slug}"


def knowledge_key(zip_code: str, category: str, audience: Optional[str] = None) -> str:
    return f"community:knowledge:{zip_code}:{category}:{audience or 'all'}"


class CommunityCache:
    def __init__(
        self,
        store: Optional[CacheStore],
        community_ttl_days: int = 30,
        details_ttl_days: int = 90,
        knowledge_ttl_days: int = 90,
    ):
        self.store = store
        self.community_ttl = community_ttl_days * DAY_SECONDS
        self.details_ttl = details_ttl_days * DAY_SECONDS
        self.knowledge_ttl = knowledge_ttl_days * DAY_SECONDS

    @property
    def available(self) -> bool:
        return self.store is not None

    async def read(self, key: str) -> Optional[Any]:
        if self.store is None:
            return None
        try:
            return await self.store.get(key)
        except CacheUnavailable as e:
            logs.log(logging.WARNING, f"Cache read failed for {key}, fetching fresh", extra={"error": str(e)})
            return None

    async def write(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        if self.store is None:
            return False
        try:
            await self.store.set(key, value, ttl_seconds)
            return True
        except CacheUnavailable as e:
            logs.log(logging.WARNING, f"Cache write failed for {key}, result not persisted", extra={"error": str(e)})
            return False

    # ===== Top-level community payload =====

    async def get_community_data(self, zip_code: str) -> Optional[dict]:
        return await self.read(community_key(zip_code))

    async def set_community_data(self, zip_code: str, payload: dict) -> bool:
        return await self.write(community_key(zip_code), payload, self.community_ttl)

    # ===== Per-category formatted lists =====

    async def get_category_list(self, zip_code: str, category: str) -> Optional[str]:
        return await self.read(category_key(zip_code, category))

    async def set_category_list(self, zip_code: str, category: str, value: str) -> bool:
        return await self.write(category_key(zip_code, category), value, self.community_ttl)

    # ===== Place pools =====

    async def get_place_pool(self, zip_code: str, category: str, audience: Optional[str] = None) -> Optional[CachedPlacePool]:
        cached = await self.read(pool_key(zip_code, category, audience))
        if not cached:
            return None
        try:
            return CachedPlacePool.model_validate(cached)
        except ValueError:
            logs.log(logging.WARNING, f"Discarding malformed place pool for {zip_code}/{category}")
            return None

    async def set_place_pool(
        self, zip_code: str, category: str, items: list[PlacePoolEntry], audience: Optional[str] = None
    ) -> bool:
        payload = CachedPlacePool(
            items=items,
            fetched_at=utc_now().isoformat(),
            query_count=len(items)
        )
        return await self.write(pool_key(zip_code, category, audience), payload.model_dump(), self.community_ttl)

    # ===== Place details =====

    async def get_place_details(self, place_id: str) -> Optional[PlaceDetails]:
        cached = await self.read(details_key(place_id))
        if not cached:
            return None
        try:
            return PlaceDetails.model_validate(cached)
        except ValueError:
            logs.log(logging.WARNING, f"Discarding malformed details record for {place_id}")
            return None

    async def set_place_details(self, details: PlaceDetails) -> bool:
        return await self.write(details_key(details.place_id), details.model_dump(), self.details_ttl)

    # ===== Audience deltas =====

    async def get_audience_delta(self, zip_code: str, audience: str) -> Optional[dict[str, str]]:
        cached = await self.read(audience_key(zip_code, audience))
        if cached is None:
            return None
        if not isinstance(cached, dict):
            logs.log(logging.WARNING, f"Discarding malformed audience delta for {zip_code}/{audience}")
            return None
        return {k: v for k, v in cached.items() if isinstance(v, str)}

    async def set_audience_delta(self, zip_code: str, audience: str, delta: dict[str, str]) -> bool:
        return await self.write(audience_key(zip_code, audience), delta, AUDIENCE_DELTA_TTL_SECONDS)

    # ===== Seasonal sections =====

    async def get_seasonal_sections(self, zip_code: str) -> Optional[SeasonalSections]:
        cached = await self.read(seasonal_key(zip_code))
        if not cached:
            return None
        try:
            return SeasonalSections.model_validate(cached)
        except ValueError:
            logs.log(logging.WARNING, f"Discarding malformed seasonal sections for {zip_code}")
            return None

    async def set_seasonal_sections(self, zip_code: str, sections: SeasonalSections) -> bool:
        return await self.write(seasonal_key(zip_code), sections.model_dump(), self.community_ttl)

    # ===== Rotation state (no expiry) =====

    async def get_cycle_state(self, user_id: str) -> Optional[Any]:
        return await self.read(cycle_key(user_id))

    async def set_cycle_state(self, user_id: str, state: dict) -> bool:
        return await self.write(cycle_key(user_id), state)

    async def get_last_audience(self, user_id: str, category: str) -> Optional[str]:
        return await self.read(audience_rotation_key(user_id, category))

    async def set_last_audience(self, user_id: str, category: str, segment: str) -> bool:
        return await self.write(audience_rotation_key(user_id, category), segment)

    # ===== City descriptions (no expiry) =====

    async def get_city_description(self, city: str, state: str) -> Optional[dict]:
        return await self.read(city_description_key(city, state))

    async def set_city_description(self, city: str, state: str, payload: dict) -> bool:
        return await self.write(city_description_key(city, state), payload)

    # ===== Knowledge provider payloads =====

    async def get_knowledge_payload(self, zip_code: str, category: str, audience: Optional[str] = None) -> Optional[dict]:
        return await self.read(knowledge_key(zip_code, category, audience))

    async def set_knowledge_payload(self, zip_code: str, category: str, payload: dict, audience: Optional[str] = None) -> bool:
        return await self.write(knowledge_key(zip_code, category, audience), payload, self.knowledge_ttl)
