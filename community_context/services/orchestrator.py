"""
Entry point: turns a context request into the payload handed to prompt assembly.

    "community"  -> rotated categories (+ monthly events) and the city description
    "seasonal"   -> monthly events plus seasonal sections and the city description
    <category>   -> that single category
"""
import asyncio
import logging
from typing import Optional

from community_context.core.categories import ALL_CATEGORY_KEYS, NON_NEIGHBORHOOD_CATEGORY_KEYS
from community_context.core.config import Settings, settings
from community_context.core.db_connection import build_cache_store
from community_context.core.errors import ValidationError
from community_context.core.llm_providers import AnthropicProvider, PerplexityProvider
from community_context.core.logger import logs
from community_context.core.query_packs import utc_now
from community_context.models.community_model import CommunityData, ContextPayload, ContextRequest, Location
from community_context.repos.community_cache import CommunityCache
from community_context.services.city_description import CityDescriptionService
from community_context.services.details_hydrator import DetailsHydrator
from community_context.services.knowledge_provider import KnowledgeQueryProvider
from community_context.services.location_service import LocationResolver, is_valid_zip
from community_context.services.place_pool import PlacePoolManager
from community_context.services.places_client import PlacesClient
from community_context.services.provider_router import ProviderKind, ProviderRouter
from community_context.services.query_planner import QueryPlanner
from community_context.services.rotation_service import AudienceSegmentRotator, CategoryRotationScheduler
from community_context.services.structured_provider import StructuredSearchProvider

CATEGORIES_PER_REQUEST = 2


class ContextOrchestrator:
    def __init__(
        self,
        router: ProviderRouter,
        structured: StructuredSearchProvider,
        scheduler: CategoryRotationScheduler,
        audience_rotator: AudienceSegmentRotator,
        city_descriptions: CityDescriptionService,
        knowledge: Optional[KnowledgeQueryProvider] = None,
    ):
        self.router = router
        self.structured = structured
        self.scheduler = scheduler
        self.audience_rotator = audience_rotator
        self.city_descriptions = city_descriptions
        self.knowledge = knowledge
        self._background: set[asyncio.Task] = set()

    async def resolve_context_for(
        self,
        zip_code: str,
        category: str,
        audience_segment: Optional[str] = None,
        service_areas: Optional[list[str]] = None,
        force_refresh: bool = False,
        user_id: str = "anonymous",
    ) -> ContextPayload:
        return await self.resolve_context(ContextRequest(
            user_id=user_id,
            zip_code=zip_code,
            category=category,
            audience_segments=[audience_segment] if audience_segment else [],
            service_areas=service_areas,
            force_refresh=force_refresh
        ))

    async def resolve_context(self, request: ContextRequest) -> ContextPayload:
        if not is_valid_zip(request.zip_code):
            raise ValidationError(f"Invalid ZIP code: {request.zip_code!r}", zip_code=request.zip_code)
        zip_code = request.zip_code.strip()
        location = self.structured.resolve_location(zip_code, request.preferred_city, request.preferred_state)

        rotated = await self.audience_rotator.rotate(request.user_id, request.category, request.audience_segments)
        audience = rotated[0] if rotated else None
        logs.log(logging.INFO, f"Resolving {request.category} context for {zip_code}", extra={
            "user_id": request.user_id, "audience": audience, "force_refresh": request.force_refresh
        })

        if request.category == "community":
            return await self._resolve_community(request, location, audience)
        if request.category == "seasonal":
            return await self._resolve_seasonal(request, location, audience)
        if request.category in ALL_CATEGORY_KEYS:
            return await self._resolve_single(request, location, audience)
        raise ValidationError(f"Unknown category: {request.category}", zip_code=zip_code)

    # ===== Modes =====

    async def _resolve_community(self, request: ContextRequest, location: Location, audience: Optional[str]) -> ContextPayload:
        zip_code = location.zip_code
        events = await self._monthly_events(request, audience)
        available = [*NON_NEIGHBORHOOD_CATEGORY_KEYS, *([events[0]] if events else [])]

        if request.categories:
            selected, should_refresh = list(request.categories), False
        else:
            selected, should_refresh = await self.scheduler.select_categories(
                request.user_id, CATEGORIES_PER_REQUEST, available
            )
        fetch_keys = [key for key in selected if key in NON_NEIGHBORHOOD_CATEGORY_KEYS]

        avoid = None
        if should_refresh and fetch_keys:
            avoid = await self._avoid_recommendations(zip_code, fetch_keys, audience)

        data, description = await asyncio.gather(
            self.router.get_community_data(
                zip_code, audience,
                service_areas=request.service_areas,
                preferred_city=request.preferred_city,
                preferred_state=request.preferred_state,
                categories=fetch_keys,
                force_refresh=should_refresh or request.force_refresh,
                avoid=avoid
            ),
            self.city_descriptions.get_city_description(location.city, location.state)
        )

        if events and events[0] in selected:
            data = data or self._empty_data(location, audience)
            data.category_lists[events[0]] = events[1]

        if not request.categories:
            await self._prefetch_next(request, audience)

        return ContextPayload(community_data=data, city_description=description, category_keys=selected)

    async def _resolve_seasonal(self, request: ContextRequest, location: Location, audience: Optional[str]) -> ContextPayload:
        async def structured_sections() -> dict[str, str]:
            try:
                return await self.structured.get_seasonal_sections(
                    location.zip_code, request.service_areas, request.preferred_city,
                    request.preferred_state, request.force_refresh
                )
            except Exception as e:
                logs.log(logging.ERROR, f"Seasonal sections failed for {location.zip_code}: {str(e)}")
                return {}

        events, sections, description = await asyncio.gather(
            self._monthly_events(request, audience),
            structured_sections(),
            self.city_descriptions.get_city_description(location.city, location.state)
        )
        merged = {events[0]: events[1]} if events else {}
        merged.update(sections)
        return ContextPayload(seasonal_sections=merged, city_description=description, category_keys=list(merged.keys()))

    async def _resolve_single(self, request: ContextRequest, location: Location, audience: Optional[str]) -> ContextPayload:
        categories = [] if request.category == "neighborhoods" else [request.category]
        data = await self.router.get_community_data(
            location.zip_code, audience,
            service_areas=request.service_areas,
            preferred_city=request.preferred_city,
            preferred_state=request.preferred_state,
            categories=categories,
            force_refresh=request.force_refresh
        )
        return ContextPayload(community_data=data, category_keys=[request.category])

    # ===== Helpers =====

    async def _monthly_events(self, request: ContextRequest, audience: Optional[str]) -> Optional[tuple[str, str]]:
        if self.knowledge is None:
            return None
        try:
            return await self.knowledge.get_monthly_events_section(
                request.zip_code, audience, request.service_areas,
                request.preferred_city, request.preferred_state, request.force_refresh
            )
        except Exception as e:
            logs.log(logging.ERROR, f"Monthly events section failed for {request.zip_code}: {str(e)}")
            return None

    async def _avoid_recommendations(self, zip_code: str, categories: list[str], audience: Optional[str]) -> Optional[dict]:
        try:
            avoid = await self.router.preferred.get_avoid_recommendations(zip_code, categories, audience)
        except Exception as e:
            logs.log(logging.WARNING, f"Avoid recommendations failed for {zip_code}: {str(e)}")
            return None
        logs.log(logging.INFO, f"Refresh cycle reached for {zip_code}, avoiding {sum(len(v) for v in avoid.values())} items")
        return avoid

    async def _prefetch_next(self, request: ContextRequest, audience: Optional[str]):
        upcoming = await self.scheduler.peek_next_categories(request.user_id, CATEGORIES_PER_REQUEST)
        keys = [key for key in upcoming if key in NON_NEIGHBORHOOD_CATEGORY_KEYS]
        if not keys:
            return
        task = asyncio.create_task(self.router.preferred.prefetch_categories(
            request.zip_code, keys, audience, request.service_areas,
            request.preferred_city, request.preferred_state
        ))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_for_background(self):
        """Awaits outstanding prefetch tasks (used on shutdown and in tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    @staticmethod
    def _empty_data(location: Location, audience: Optional[str]) -> CommunityData:
        return CommunityData(
            city=location.city,
            state=location.state,
            zip_code=location.zip_code,
            data_timestamp=utc_now().isoformat(),
            provider="knowledge",
            audience_segment=audience
        )


def build_orchestrator(config: Settings = settings) -> ContextOrchestrator:
    """Wires every component from settings. Nothing below this reads settings directly."""
    cache = CommunityCache(
        build_cache_store(config),
        community_ttl_days=config.COMMUNITY_CACHE_TTL_DAYS,
        details_ttl_days=config.PLACE_DETAILS_TTL_DAYS,
        knowledge_ttl_days=config.KNOWLEDGE_CACHE_TTL_DAYS
    )
    resolver = LocationResolver(config.CITY_DATASET_PATH)

    structured = StructuredSearchProvider(
        cache=cache,
        places_client=PlacesClient(config.GOOGLE_PLACES_API_KEY, timeout=config.PROVIDER_TIMEOUT_SECONDS),
        resolver=resolver,
        planner=QueryPlanner(call_budget=config.SEARCH_CALL_BUDGET),
        pool_manager=PlacePoolManager(cache, refresh_days=config.POOL_REFRESH_DAYS),
        hydrator=DetailsHydrator(
            cache,
            max_concurrency=config.MAX_CONCURRENT_PROVIDER_CALLS,
            timeout_seconds=config.PROVIDER_TIMEOUT_SECONDS
        ),
        max_concurrency=config.MAX_CONCURRENT_PROVIDER_CALLS,
        timeout_seconds=config.PROVIDER_TIMEOUT_SECONDS,
        cost_per_call_usd=config.PLACES_COST_PER_CALL_USD
    )
    providers = {ProviderKind.STRUCTURED: structured}

    knowledge = None
    if config.PERPLEXITY_API_KEY:
        knowledge = KnowledgeQueryProvider(
            cache,
            PerplexityProvider(config.PERPLEXITY_API_KEY, config.PERPLEXITY_MODEL),
            resolver,
            max_concurrency=config.MAX_CONCURRENT_PROVIDER_CALLS,
            timeout_seconds=max(config.PROVIDER_TIMEOUT_SECONDS, 30.0)
        )
        providers[ProviderKind.KNOWLEDGE] = knowledge

    try:
        preference = ProviderKind(config.COMMUNITY_PROVIDER.lower())
    except ValueError:
        logs.log(logging.WARNING, f"Unknown provider '{config.COMMUNITY_PROVIDER}', defaulting to places")
        preference = ProviderKind.STRUCTURED
    if preference not in providers:
        logs.log(logging.WARNING, f"Provider '{preference.value}' is not configured, defaulting to places")
        preference = ProviderKind.STRUCTURED

    city_llm = None
    if config.ANTHROPIC_API_KEY:
        city_llm = AnthropicProvider(config.ANTHROPIC_API_KEY, config.ANTHROPIC_MODEL)

    orchestrator = ContextOrchestrator(
        router=ProviderRouter(providers, preference),
        structured=structured,
        scheduler=CategoryRotationScheduler(cache, refresh_cycles=config.ROTATION_REFRESH_CYCLES),
        audience_rotator=AudienceSegmentRotator(cache),
        city_descriptions=CityDescriptionService(cache, city_llm, timeout=config.PROVIDER_TIMEOUT_SECONDS),
        knowledge=knowledge
    )
    logs.log(logging.INFO, f"🤖 Community context engine initialized: provider={preference.value}, cache={cache.store.get_backend_name() if cache.store else 'none'}")
    return orchestrator
