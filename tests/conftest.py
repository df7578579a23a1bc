import json
import random
import re
from typing import Optional

import pytest

from community_context.core.errors import CacheUnavailable, DependencyError
from community_context.models.community_model import PlaceDetails
from community_context.repos.cache_store import CacheStore, MemoryCacheStore
from community_context.repos.community_cache import CommunityCache
from community_context.services.details_hydrator import DetailsHydrator
from community_context.services.location_service import LocationResolver
from community_context.services.place_pool import PlacePoolManager
from community_context.services.query_planner import QueryPlanner
from community_context.services.structured_provider import StructuredSearchProvider

AUSTIN_CENTER = (30.3004, -97.7522)

CITY_ROWS = [
    ("city", "state_id", "lat", "lng", "population", "zips"),
    ("Austin", "TX", "30.3004", "-97.7522", "2000000", "78701 78702 78745"),
    ("Sunset Valley", "TX", "30.2280", "-97.8150", "700", "78745"),
    ("Round Rock", "TX", "30.5270", "-97.6789", "130000", "78664 78681"),
    ("Portland", "OR", "45.5372", "-122.6500", "2000000", "97201 97202"),
]


class BrokenStore(CacheStore):
    """Every operation fails like an unreachable backend."""

    async def get(self, key):
        raise CacheUnavailable("connection refused")

    async def set(self, key, value, ttl_seconds=None):
        raise CacheUnavailable("connection refused")

    async def ttl(self, key):
        raise CacheUnavailable("connection refused")


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def raw_place(place_id: str, name: str, rating: float = 4.8, reviews: int = 500, lat: float = 30.301, lng: float = -97.751) -> dict:
    return {
        "id": place_id,
        "displayName": {"text": name},
        "formattedAddress": f"{name} St, Austin, TX",
        "location": {"latitude": lat, "longitude": lng},
        "rating": rating,
        "userRatingCount": reviews,
    }


NEIGHBORHOOD_RESULTS = {
    "neighborhood subdivision residential community": ["Travis Heights", "Hyde Park", "Mueller"],
    "family neighborhood gated community luxury subdivision": ["Circle C Ranch", "Steiner Ranch", "Barton Creek"],
    "55+ community retirement senior living": ["Sun City", "Wildhorse Ranch", "Onion Creek"],
}


class FakePlacesClient:
    """
    Every query returns three well-rated places with ids derived from the query
    (neighborhood queries return named neighborhoods).
    Queries in `failing` raise DependencyError. `details` overrides detail records.
    """

    def __init__(self, failing: Optional[set[str]] = None, results: Optional[dict[str, list[dict]]] = None):
        self.failing = failing or set()
        self.results = {
            query: [raw_place(slugify(name), name) for name in names]
            for query, names in NEIGHBORHOOD_RESULTS.items()
        }
        self.results.update(results or {})
        self.details: dict[str, PlaceDetails] = {}
        self.search_calls: list[str] = []
        self.detail_calls: list[str] = []
        self._names: dict[str, str] = {}

    async def search(self, query, anchor, max_results=10, radius=15000):
        self.search_calls.append(query)
        if query in self.failing:
            raise DependencyError("google_places", f"boom: {query}")
        if query in self.results:
            places = self.results[query]
        else:
            slug = slugify(query)
            places = [raw_place(f"{slug}-{i}", f"Spot {slug} {i}") for i in range(3)]
        for place in places:
            self._names[place["id"]] = place["displayName"]["text"]
        return places

    async def get_details(self, place_id):
        self.detail_calls.append(place_id)
        if place_id in self.details:
            return self.details[place_id]
        name = self._names.get(place_id)
        if name is None:
            return None
        return PlaceDetails(
            place_id=place_id,
            name=name,
            address=f"{name} St, Austin, TX",
            rating=4.8,
            review_count=500,
            primary_type="restaurant",
            types=["restaurant", "food", "point_of_interest"],
            summary=f"Locals love {name}."
        )


class FakeLLM:
    """Stands in for PerplexityProvider / AnthropicProvider."""

    def __init__(self, content=None, search_results=None, fail: bool = False):
        self.content = content if content is not None else json.dumps({"items": []})
        self.search_results = search_results or []
        self.fail = fail
        self.calls: list[list] = []

    async def complete(self, messages, temperature=0.2, timeout=30.0, **options):
        self.calls.append(messages)
        if self.fail:
            raise DependencyError("Perplexity", "unreachable")
        return {
            "choices": [{"message": {"content": self.content}}],
            "search_results": self.search_results,
        }

    async def generate(self, messages, temperature=0.1, timeout=10.0, **options):
        data = await self.complete(messages, temperature, timeout, **options)
        return data["choices"][0]["message"]["content"]

    def get_provider_name(self) -> str:
        return "Fake LLM"


@pytest.fixture
def memory_store():
    return MemoryCacheStore()


@pytest.fixture
def cache(memory_store):
    return CommunityCache(memory_store)


@pytest.fixture
def broken_cache():
    return CommunityCache(BrokenStore())


@pytest.fixture
def city_csv(tmp_path):
    path = tmp_path / "uscities.csv"
    lines = [",".join(f'"{v}"' for v in row) for row in CITY_ROWS]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return str(path)


@pytest.fixture
def resolver(city_csv):
    return LocationResolver(city_csv)


@pytest.fixture
def austin(resolver):
    return resolver.resolve("78701")


@pytest.fixture
def places_client():
    return FakePlacesClient()


@pytest.fixture
def build_structured(resolver):
    """Factory: structured provider over a given cache and fake client."""

    def build(cache: CommunityCache, client: FakePlacesClient, call_budget: int = 60) -> StructuredSearchProvider:
        return StructuredSearchProvider(
            cache=cache,
            places_client=client,
            resolver=resolver,
            planner=QueryPlanner(call_budget=call_budget, rng=random.Random(7)),
            pool_manager=PlacePoolManager(cache, refresh_days=14, rng=random.Random(7)),
            hydrator=DetailsHydrator(cache, max_concurrency=4, timeout_seconds=1.0),
            max_concurrency=4,
            timeout_seconds=1.0
        )

    return build


@pytest.fixture
def structured(cache, places_client, build_structured):
    return build_structured(cache, places_client)
