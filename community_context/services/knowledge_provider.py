"""
Community data from a generative knowledge-query provider (Perplexity).

Each category is one structured-output request. Parsed items are cached per
(zip, category, audience) so avoid lists and prefetching can reuse them.
"""
import asyncio
import json
import logging
import re
from typing import Optional

from community_context.core.categories import (
    AUDIENCE_LABELS,
    NON_NEIGHBORHOOD_CATEGORY_KEYS,
    get_category_config,
    normalize_audience_segment,
)
from community_context.core.errors import DependencyError, ValidationError
from community_context.core.llm_providers import PerplexityProvider
from community_context.core.logger import logs
from community_context.core.query_packs import MONTH_SEASONAL_HINTS, get_month_key, utc_now
from community_context.models.community_model import CommunityData, Location, NeighborhoodLists
from community_context.repos.community_cache import CommunityCache
from community_context.services.list_assembler import NONE_FOUND
from community_context.services.location_service import LocationResolver
from community_context.services.provider_router import CommunityProvider

SYSTEM_PROMPT = (
    "You are a meticulous local researcher helping generate interesting, unique local content for social media "
    "that positions the user as a local expert. "
    "Return only JSON that matches the provided schema. "
    "Only include real places or events, no hallucinations. "
    "Use general area descriptions, not exact street addresses. "
    "If a field is unknown, set it to null. "
    "Include citations per item with title and URL when possible, otherwise set to null. "
    "Do not mention the specific audience segment in the item text. "
    "If information is scarce or unverified, omit the item rather than guessing. "
    "If nothing suitable is within a reasonable distance, return fewer items or an empty items array."
)

CATEGORY_LABELS = {
    "neighborhoods": "neighborhoods and residential communities",
    "dining": "restaurants and dining",
    "coffee_brunch": "coffee shops and brunch spots",
    "nature_outdoors": "parks, trails and outdoor spaces",
    "entertainment": "entertainment venues",
    "attractions": "local attractions",
    "sports_rec": "sports and recreation",
    "arts_culture": "arts and culture",
    "nightlife_social": "nightlife and social spots",
    "fitness_wellness": "fitness and wellness",
    "shopping": "shopping",
    "education": "schools, colleges and libraries",
    "community_events": "community events",
}

CATEGORY_NOTES = {
    "dining": "Favor independent, locally loved restaurants over national chains. Set cuisine when known.",
    "coffee_brunch": "Favor independent cafes and brunch spots. Set cuisine to the style of food or drink when known.",
    "nature_outdoors": "Include a short safety or access disclaimer when conditions, fees or seasonal closures apply.",
    "nightlife_social": "Favor bars, breweries and social venues with a local following. Skip national chains.",
    "education": "Include notable schools, colleges and public libraries. Do not rank schools.",
    "entertainment": "Include live music, theaters, comedy and family entertainment venues.",
    "arts_culture": "Include museums, galleries, public art and performing arts venues.",
    "attractions": "Include landmarks and attractions locals would recommend to visitors.",
    "sports_rec": "Include recreation centers, golf, courts, marinas and spectator venues.",
    "fitness_wellness": "Include independent gyms, studios and spas. Skip national chains.",
    "shopping": "Favor local boutiques, markets and shopping districts over big-box stores.",
    "community_events": "Include recurring markets, festivals and community events with dates when known.",
    "neighborhoods": "List named neighborhoods, subdivisions or communities, never the city itself.",
}

ITEM_FIELDS = [
    "name", "location", "description", "cost", "dates", "drive_distance_minutes", "cuisine", "disclaimer", "citations",
]

ITEM_SCHEMA = {
    "type": "object",
    "properties": {
        "items": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "location": {"type": ["string", "null"]},
                    "description": {"type": ["string", "null"]},
                    "cost": {"type": ["string", "null"]},
                    "dates": {"type": ["string", "null"]},
                    "drive_distance_minutes": {"type": ["number", "null"]},
                    "cuisine": {"type": ["string", "null"]},
                    "disclaimer": {"type": ["string", "null"]},
                    "citations": {
                        "type": ["array", "null"],
                        "items": {
                            "type": "object",
                            "properties": {
                                "title": {"type": ["string", "null"]},
                                "url": {"type": ["string", "null"]}
                            }
                        }
                    }
                },
                "required": ["name"]
            }
        }
    },
    "required": ["items"]
}

FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
MAX_FALLBACK_CITATIONS = 3


def build_user_prompt(
    location: Location,
    category: str,
    limit: int,
    audience: Optional[str] = None,
    service_areas: Optional[list[str]] = None,
    extra_instructions: Optional[str] = None,
    avoid: Optional[list[str]] = None,
) -> str:
    lines = []
    if audience:
        lines.append(f"Target audience: {AUDIENCE_LABELS.get(audience, audience)}")
    lines.append(f"Location: {location.city}, {location.state} {location.zip_code}".rstrip())
    lines.append(f"Category type: {CATEGORY_LABELS.get(category, category)}")
    if service_areas:
        lines.append(f"Service areas to prioritize: {', '.join(service_areas)}")
    lines.append(f"Provide up to {limit} items.")
    lines.append(f"Fields per item: {', '.join(ITEM_FIELDS)}.")
    lines.append(f"Estimate drive_distance_minutes from {location.city}.")
    if extra_instructions:
        lines.append(extra_instructions)
    if category in CATEGORY_NOTES:
        lines.append(CATEGORY_NOTES[category])
    if avoid:
        lines.append(f"Do not repeat these recently used recommendations: {', '.join(avoid)}")
    return "\n".join(lines)


def _clean_str(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = re.sub(r"\s+", " ", value).strip()
    return value or None


def parse_items(
    content: str,
    category: str,
    location: Location,
    search_results: Optional[list[dict]] = None,
) -> list[dict]:
    """Parses a JSON completion into normalized item dicts. Raises DependencyError on garbage."""
    text = FENCE_PATTERN.sub("", (content or "").strip())
    try:
        data = json.loads(text)
    except ValueError as e:
        raise DependencyError("Perplexity", "completion is not valid JSON") from e

    if isinstance(data, dict):
        data = data.get("items")
    if not isinstance(data, list):
        raise DependencyError("Perplexity", "completion has no items array")

    fallback_citations = [
        {"title": r.get("title"), "url": r.get("url")}
        for r in (search_results or [])[:MAX_FALLBACK_CITATIONS]
        if isinstance(r, dict) and r.get("url")
    ] or None

    city = location.city.lower()
    city_names = {city, f"{city}, {location.state.lower()}", f"{city} {location.state.lower()}"}

    items = []
    for raw in data:
        if not isinstance(raw, dict):
            continue
        name = _clean_str(raw.get("name"))
        if not name:
            continue
        if category.startswith("neighborhoods") and name.lower() in city_names:
            continue

        distance = raw.get("drive_distance_minutes")
        citations = raw.get("citations") if isinstance(raw.get("citations"), list) else None
        items.append({
            "name": name,
            "location": _clean_str(raw.get("location")),
            "description": _clean_str(raw.get("description")),
            "cost": _clean_str(raw.get("cost")),
            "dates": _clean_str(raw.get("dates")),
            "drive_distance_minutes": distance if isinstance(distance, (int, float)) else None,
            "cuisine": _clean_str(raw.get("cuisine")) if category in ("dining", "coffee_brunch") else None,
            "disclaimer": _clean_str(raw.get("disclaimer")) if category == "nature_outdoors" else None,
            "citations": citations or fallback_citations,
        })
    return items


def format_items(items: list[dict], limit: int) -> str:
    lines = []
    for item in items[:limit]:
        details = item.get("description")
        if item.get("dates"):
            details = f"{details} ({item['dates']})" if details else item["dates"]
        lines.append(f"- {item['name']} — {details}" if details else f"- {item['name']}")
    return "\n".join(lines) if lines else NONE_FOUND


class KnowledgeQueryProvider(CommunityProvider):
    def __init__(
        self,
        cache: CommunityCache,
        llm: PerplexityProvider,
        resolver: LocationResolver,
        max_concurrency: int = 8,
        timeout_seconds: float = 30.0,
    ):
        self.cache = cache
        self.llm = llm
        self.resolver = resolver
        self.semaphore = asyncio.Semaphore(max_concurrency)
        self.timeout_seconds = timeout_seconds

    def get_provider_name(self) -> str:
        return "knowledge"

    def resolve_location(
        self, zip_code: str, preferred_city: Optional[str] = None, preferred_state: Optional[str] = None
    ) -> Location:
        location = self.resolver.resolve(zip_code, preferred_city, preferred_state)
        if location is None:
            raise ValidationError(f"Could not resolve location for {zip_code}", zip_code=zip_code)
        return location

    async def fetch_items(
        self,
        location: Location,
        category: str,
        audience: Optional[str] = None,
        service_areas: Optional[list[str]] = None,
        force_refresh: bool = False,
        avoid: Optional[list[str]] = None,
        extra_instructions: Optional[str] = None,
        section_key: Optional[str] = None,
    ) -> list[dict]:
        cache_category = section_key or category
        label = f"{location.zip_code}/{cache_category}/{audience or 'all'}"
        if not force_refresh:
            cached = await self.cache.get_knowledge_payload(location.zip_code, cache_category, audience)
            if cached and isinstance(cached.get("items"), list):
                logs.log(logging.INFO, f"✓ Knowledge cache HIT for {label}")
                return cached["items"]
        logs.log(logging.INFO, f"✗ Knowledge cache MISS for {label}. Asking {self.llm.get_provider_name()}...")

        config = get_category_config(category)
        limit = config.display_limit * 2
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_user_prompt(
                location, category, limit, audience, service_areas, extra_instructions, avoid
            )}
        ]

        async with self.semaphore:
            try:
                data = await asyncio.wait_for(
                    self.llm.complete(messages, temperature=0.2, timeout=self.timeout_seconds, json_schema=ITEM_SCHEMA),
                    timeout=self.timeout_seconds
                )
            except asyncio.TimeoutError as e:
                raise DependencyError(self.llm.get_provider_name(), f"timed out on {cache_category}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise DependencyError(self.llm.get_provider_name(), "malformed completion") from e

        items = parse_items(content, category, location, data.get("search_results"))
        if items:
            await self.cache.set_knowledge_payload(location.zip_code, cache_category, {
                "items": items,
                "fetched_at": utc_now().isoformat()
            }, audience)
        logs.log(logging.INFO, f"Knowledge provider returned {len(items)} items for {label}")
        return items

    async def _category_text(self, location, category, audience, service_areas, force_refresh, avoid) -> Optional[str]:
        try:
            items = await self.fetch_items(
                location, category, audience, service_areas, force_refresh, (avoid or {}).get(category)
            )
        except DependencyError as e:
            logs.log(logging.ERROR, f"Knowledge category {category} failed for {location.zip_code}: {str(e)}")
            return None
        return format_items(items, get_category_config(category).display_limit)

    async def get_community_data(
        self,
        zip_code: str,
        audience: Optional[str] = None,
        service_areas: Optional[list[str]] = None,
        preferred_city: Optional[str] = None,
        preferred_state: Optional[str] = None,
        categories: Optional[list[str]] = None,
        force_refresh: bool = False,
        avoid: Optional[dict[str, list[str]]] = None,
    ) -> Optional[CommunityData]:
        audience = normalize_audience_segment(audience)
        location = self.resolve_location(zip_code, preferred_city, preferred_state)
        requested = NON_NEIGHBORHOOD_CATEGORY_KEYS if categories is None else categories
        wanted = [c for c in requested if c in NON_NEIGHBORHOOD_CATEGORY_KEYS]

        results = await asyncio.gather(*(
            self._category_text(location, category, audience, service_areas, force_refresh, avoid)
            for category in [*wanted, "neighborhoods"]
        ))
        category_lists = {
            category: text for category, text in zip(wanted, results[:-1]) if text is not None
        }
        neighborhood_text = results[-1] or NONE_FOUND
        neighborhoods = NeighborhoodLists(
            general=neighborhood_text,
            family=neighborhood_text,
            senior=neighborhood_text,
            luxury=neighborhood_text,
            relocators=neighborhood_text
        )
        return CommunityData(
            city=location.city,
            state=location.state,
            zip_code=zip_code,
            data_timestamp=utc_now().isoformat(),
            provider=self.get_provider_name(),
            category_lists=category_lists,
            neighborhoods=neighborhoods,
            neighborhoods_list=neighborhood_text,
            audience_segment=audience
        )

    async def prefetch_categories(
        self,
        zip_code: str,
        categories: list[str],
        audience: Optional[str] = None,
        service_areas: Optional[list[str]] = None,
        preferred_city: Optional[str] = None,
        preferred_state: Optional[str] = None,
    ) -> None:
        try:
            location = self.resolve_location(zip_code, preferred_city, preferred_state)
        except ValidationError as e:
            logs.log(logging.WARNING, f"Prefetch skipped: {str(e)}")
            return
        audience = normalize_audience_segment(audience)
        await asyncio.gather(*(
            self._category_text(location, category, audience, service_areas, False, None)
            for category in categories
        ))
        logs.log(logging.INFO, f"Prefetched {categories} for {zip_code}")

    async def get_avoid_recommendations(
        self, zip_code: str, categories: list[str], audience: Optional[str] = None
    ) -> dict[str, list[str]]:
        audience = normalize_audience_segment(audience)
        avoid = {}
        for category in categories:
            cached = await self.cache.get_knowledge_payload(zip_code, category, audience)
            names = [item.get("name") for item in (cached or {}).get("items", []) if item.get("name")]
            if names:
                avoid[category] = names
        return avoid

    async def get_monthly_events_section(
        self,
        zip_code: str,
        audience: Optional[str] = None,
        service_areas: Optional[list[str]] = None,
        preferred_city: Optional[str] = None,
        preferred_state: Optional[str] = None,
        force_refresh: bool = False,
    ) -> Optional[tuple[str, str]]:
        location = self.resolve_location(zip_code, preferred_city, preferred_state)
        audience = normalize_audience_segment(audience)
        month = get_month_key()
        section_key = f"things_to_do_{month}"
        extra = f"Focus on seasonal activities and events happening in {month.capitalize()}. {MONTH_SEASONAL_HINTS[month]}"
        try:
            items = await self.fetch_items(
                location, "community_events", audience, service_areas, force_refresh,
                extra_instructions=extra, section_key=section_key
            )
        except DependencyError as e:
            logs.log(logging.ERROR, f"Monthly events failed for {zip_code}: {str(e)}")
            return None
        if not items:
            return None
        return section_key, format_items(items, get_category_config("community_events").display_limit)
