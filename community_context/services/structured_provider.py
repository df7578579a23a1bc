"""
Community data from structured places search.

Per category: plan queries -> pooled search -> hydrate details -> assemble list.
Neighborhood lists are searched separately and never depend on the audience.
"""
import asyncio
import logging
from typing import Optional

from community_context.core.categories import (
    AUDIENCE_AUGMENT_CATEGORIES,
    AUDIENCE_NEIGHBORHOOD_LIST,
    CHAIN_FILTER_CATEGORIES,
    CHAIN_NAME_BLACKLIST,
    LOW_PRIORITY_ANCHOR_CATEGORIES,
    MAX_PLACE_DISTANCE_KM,
    NEIGHBORHOOD_QUERIES,
    NEIGHBORHOOD_REJECT_TERMS,
    NON_NEIGHBORHOOD_CATEGORY_KEYS,
    get_audience_augment_limit,
    get_audience_augment_queries,
    get_category_config,
    normalize_audience_segment,
)
from community_context.core.errors import DependencyError, ValidationError
from community_context.core.logger import logs
from community_context.core.query_packs import derive_season, normalize_query_key, utc_now
from community_context.models.community_model import (
    CommunityData,
    Location,
    NeighborhoodLists,
    Place,
    PlacePoolEntry,
    QueryPlan,
    SeasonalSections,
)
from community_context.repos.community_cache import CommunityCache
from community_context.services.details_hydrator import DetailsHydrator
from community_context.services.list_assembler import (
    NONE_FOUND,
    apply_audience_delta,
    assemble,
    audience_skip_categories,
    build_neighborhood_list,
    build_seasonal_sections,
    dedupe_places,
    is_empty_list,
    meets_threshold,
    trim_list,
)
from community_context.services.location_service import LocationResolver, min_distance_km
from community_context.services.place_pool import PlacePoolManager, merge_pool_entries
from community_context.services.places_client import PROVIDER_NAME, PlacesClient
from community_context.services.provider_router import CommunityProvider
from community_context.services.query_planner import (
    QueryPlanner,
    estimate_cost_usd,
    estimate_detail_calls,
    get_search_anchors,
    per_anchor_max,
)


def to_scored_places(
    raw_places: list[dict],
    category: str,
    query: str,
    centers: list[tuple[float, float]],
    is_fallback: bool = False,
) -> list[Place]:
    """
    Converts raw search results into places, applying the distance, chain and
    neighborhood filters. Rating minimums apply to primary queries only; fallback
    results are left for admission to decide.
    """
    results = []
    for raw in raw_places:
        name = ((raw.get("displayName") or {}).get("text") or "").strip()
        place_id = raw.get("id")
        if not name or not place_id:
            continue

        lowered = name.lower()
        if category.startswith("neighborhoods") and any(term in lowered for term in NEIGHBORHOOD_REJECT_TERMS):
            continue
        if category in CHAIN_FILTER_CATEGORIES and any(chain in lowered for chain in CHAIN_NAME_BLACKLIST):
            continue

        coords = raw.get("location") or {}
        distance = None
        if coords.get("latitude") is not None and coords.get("longitude") is not None:
            distance = min_distance_km(coords["latitude"], coords["longitude"], centers)
            if distance is not None and distance > MAX_PLACE_DISTANCE_KM:
                continue

        place = Place(
            name=name,
            rating=raw.get("rating") or 0.0,
            review_count=raw.get("userRatingCount") or 0,
            address=raw.get("formattedAddress") or "",
            category=category,
            place_id=place_id,
            distance_km=round(distance, 2) if distance is not None else None,
            source_queries=[query],
            is_fallback=is_fallback
        )
        if not is_fallback and not meets_threshold(place, category):
            continue
        results.append(place)
    return results


class StructuredSearchProvider(CommunityProvider):
    def __init__(
        self,
        cache: CommunityCache,
        places_client: PlacesClient,
        resolver: LocationResolver,
        planner: QueryPlanner,
        pool_manager: PlacePoolManager,
        hydrator: DetailsHydrator,
        max_concurrency: int = 8,
        timeout_seconds: float = 15.0,
        cost_per_call_usd: float = 0.032,
    ):
        self.cache = cache
        self.places_client = places_client
        self.resolver = resolver
        self.planner = planner
        self.pool_manager = pool_manager
        self.hydrator = hydrator
        self.semaphore = asyncio.Semaphore(max_concurrency)
        self.timeout_seconds = timeout_seconds
        self.cost_per_call_usd = cost_per_call_usd

    def get_provider_name(self) -> str:
        return "places"

    def resolve_location(
        self, zip_code: str, preferred_city: Optional[str] = None, preferred_state: Optional[str] = None
    ) -> Location:
        location = self.resolver.resolve(zip_code, preferred_city, preferred_state)
        if location is None:
            raise ValidationError(f"Could not resolve location for {zip_code}", zip_code=zip_code)
        return location

    def _centers(self, location: Location, service_areas: Optional[list[str]]) -> list[tuple[float, float]]:
        return [(location.lat, location.lng), *self.resolver.resolve_service_areas(service_areas, location.state)]

    # ===== Main entry =====

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
        narrowed = categories is not None

        if not force_refresh and not narrowed:
            cached = await self.cache.get_community_data(zip_code)
            if cached:
                logs.log(logging.INFO, f"✓ Community data cache HIT for {zip_code}")
                data = CommunityData.model_validate(cached)
                if audience:
                    location = self.resolve_location(zip_code, preferred_city, preferred_state)
                    delta = await self._get_audience_delta(
                        location, audience, self._centers(location, service_areas),
                        list(data.category_lists.keys()), False
                    )
                    data = self._with_audience(data, audience, delta)
                return data
            logs.log(logging.INFO, f"✗ Community data cache MISS for {zip_code}. Building...")

        location = self.resolve_location(zip_code, preferred_city, preferred_state)
        centers = self._centers(location, service_areas)
        requested = NON_NEIGHBORHOOD_CATEGORY_KEYS if categories is None else categories
        wanted = [c for c in requested if c in NON_NEIGHBORHOOD_CATEGORY_KEYS]

        delta: dict[str, str] = {}
        if audience:
            delta = await self._get_audience_delta(location, audience, centers, wanted, force_refresh)
        skip = audience_skip_categories(delta)
        if skip:
            logs.log(logging.INFO, f"Audience delta covers {sorted(skip)}, skipping base fetch for those")

        base_categories = [c for c in wanted if c not in skip]
        category_lists, fresh_sections = await self._build_category_lists(
            location, centers, base_categories, force_refresh
        )
        neighborhoods = await self._build_neighborhoods(location, centers, force_refresh)
        seasonal_sections = fresh_sections or await self._read_seasonal_sections(location)

        data = CommunityData(
            city=location.city,
            state=location.state,
            zip_code=zip_code,
            data_timestamp=utc_now().isoformat(),
            provider=self.get_provider_name(),
            category_lists=category_lists,
            neighborhoods=neighborhoods,
            neighborhoods_list=neighborhoods.general,
            seasonal_sections=seasonal_sections
        )

        if not narrowed and not skip and not data.is_empty():
            await self.cache.set_community_data(zip_code, data.model_dump())

        if audience:
            data = self._with_audience(data, audience, delta)
        return data

    def _with_audience(self, data: CommunityData, audience: str, delta: dict[str, str]) -> CommunityData:
        merged = apply_audience_delta(data.category_lists, delta) if delta else dict(data.category_lists)
        return data.model_copy(update={
            "category_lists": merged,
            "neighborhoods_list": data.neighborhoods.for_audience(AUDIENCE_NEIGHBORHOOD_LIST.get(audience)),
            "audience_segment": audience
        })

    # ===== Category lists =====

    async def _build_category_lists(
        self,
        location: Location,
        centers: list[tuple[float, float]],
        categories: list[str],
        force_refresh: bool,
    ) -> tuple[dict[str, str], dict[str, str]]:
        lists: dict[str, str] = {}
        missing = []
        for category in categories:
            cached = None if force_refresh else await self.cache.get_category_list(location.zip_code, category)
            if cached and not is_empty_list(cached):
                logs.log(logging.INFO, f"✓ Category list cache HIT for {location.zip_code}/{category}")
                lists[category] = trim_list(cached, get_category_config(category).display_limit)
            else:
                missing.append(category)

        if not missing:
            return lists, {}

        seasonal_context = self.planner.build_seasonal_context(location, missing)
        plans = self.planner.plan(missing, location, seasonal_context)
        self._log_estimate(plans, missing, seasonal_context.anchor_count, location.zip_code)

        grouped: dict[str, list[Place]] = {}
        results = await asyncio.gather(*(
            self._build_category_safe(plan, location, centers, force_refresh, grouped) for plan in plans
        ))
        for plan, text in zip(plans, results):
            if text is not None:
                lists[plan.category] = text

        seasonal_keys = set().union(*(plan.seasonal_queries for plan in plans))
        sections = build_seasonal_sections(grouped, seasonal_keys) if seasonal_keys else {}
        if sections:
            await self.cache.set_seasonal_sections(location.zip_code, SeasonalSections(
                season=seasonal_context.season,
                month=seasonal_context.month,
                sections=sections
            ))
        return lists, sections

    async def _build_category_safe(self, plan, location, centers, force_refresh, grouped) -> Optional[str]:
        try:
            return await self._build_category(plan, location, centers, force_refresh, grouped)
        except Exception as e:
            logs.log(logging.ERROR, f"Category {plan.category} failed for {location.zip_code}: {str(e)}")
            return None

    async def _build_category(
        self,
        plan: QueryPlan,
        location: Location,
        centers: list[tuple[float, float]],
        force_refresh: bool,
        grouped: dict[str, list[Place]],
    ) -> str:
        scored: dict[str, Place] = {}
        entries = await self.pool_manager.get_pooled_places(
            plan.category, location,
            lambda: self._fetch_plan(plan, location, centers),
            force_refresh=force_refresh,
            scored=scored
        )
        places = await self.hydrator.hydrate(entries, plan.category, self.places_client.get_details, scored)
        grouped[plan.category] = places

        text = assemble(places, get_category_config(plan.category).display_limit, True, plan.category)
        if text != NONE_FOUND:
            await self.cache.set_category_list(location.zip_code, plan.category, text)
        return text

    def _log_estimate(self, plans: list[QueryPlan], categories: list[str], anchor_count: int, zip_code: str):
        search_calls = self.planner.estimate_plans(plans, anchor_count)
        detail_calls = estimate_detail_calls(categories)
        logs.log(logging.INFO, f"Query plan estimate for {zip_code}", extra={
            "categories": categories,
            "search_calls": search_calls,
            "detail_calls": detail_calls,
            "est_cost_usd": estimate_cost_usd(search_calls + detail_calls, self.cost_per_call_usd)
        })

    # ===== Searching =====

    async def _call_search(self, query: str, anchor: tuple[float, float], max_results: int) -> list[dict]:
        async with self.semaphore:
            try:
                return await asyncio.wait_for(
                    self.places_client.search(query, anchor, max_results),
                    timeout=self.timeout_seconds
                )
            except asyncio.TimeoutError as e:
                raise DependencyError(PROVIDER_NAME, f"search timed out: {query}") from e

    async def _run_queries(
        self,
        category: str,
        queries: list[str],
        location: Location,
        centers: list[tuple[float, float]],
        max_results: int,
        seasonal_keys: set[str],
        is_fallback: bool,
    ) -> tuple[list[Place], int, int]:
        """Returns (places, attempted_calls, failed_calls)."""
        anchors = get_search_anchors(location)
        single_anchor = category in LOW_PRIORITY_ANCHOR_CATEGORIES

        jobs = []
        for query in queries:
            query_anchors = anchors[:1] if single_anchor or normalize_query_key(query) in seasonal_keys else anchors
            per_anchor = per_anchor_max(max_results, len(query_anchors))
            jobs.extend((query, anchor, per_anchor) for anchor in query_anchors)

        async def run(query, anchor, per_anchor):
            try:
                raw = await self._call_search(query, anchor, per_anchor)
            except DependencyError as e:
                logs.log(logging.WARNING, f"Search failed for '{query}' ({category})", extra={"error": str(e)})
                return None
            return to_scored_places(raw, category, query, centers, is_fallback)

        results = await asyncio.gather(*(run(*job) for job in jobs))
        places = [place for batch in results if batch for place in batch]
        failed = sum(1 for batch in results if batch is None)
        return places, len(jobs), failed

    async def _fetch_plan(self, plan: QueryPlan, location: Location, centers: list[tuple[float, float]]) -> list[Place]:
        config = get_category_config(plan.category)
        places, attempted, failed = await self._run_queries(
            plan.category, plan.queries, location, centers, plan.max_results, plan.seasonal_queries, False
        )

        if plan.fallback_queries and len(dedupe_places(places)) < max(config.min_primary_results, 1):
            logs.log(logging.INFO, f"Primary results short for {plan.category}, running fallback queries")
            extra, extra_attempted, extra_failed = await self._run_queries(
                plan.category, plan.fallback_queries, location, centers, plan.max_results, set(), True
            )
            places += extra
            attempted += extra_attempted
            failed += extra_failed

        if attempted and failed == attempted:
            raise DependencyError(PROVIDER_NAME, f"all {attempted} searches failed for {plan.category}")
        return places

    # ===== Neighborhoods =====

    async def _build_neighborhoods(
        self, location: Location, centers: list[tuple[float, float]], force_refresh: bool
    ) -> NeighborhoodLists:
        async def build(entry: dict) -> str:
            key = entry["key"]
            if not force_refresh:
                cached = await self.cache.get_category_list(location.zip_code, key)
                if cached and not is_empty_list(cached):
                    return cached
            try:
                places, _, _ = await self._run_queries(
                    key, [entry["query"]], location, centers, entry["max"], set(), False
                )
            except Exception as e:
                logs.log(logging.ERROR, f"Neighborhood search {key} failed: {str(e)}")
                return NONE_FOUND
            text = build_neighborhood_list(places)
            if text != NONE_FOUND:
                await self.cache.set_category_list(location.zip_code, key, text)
            return text

        general, family, senior = await asyncio.gather(*(build(entry) for entry in NEIGHBORHOOD_QUERIES))
        return NeighborhoodLists(
            general=general,
            family=family,
            senior=senior,
            luxury=family,
            relocators=general
        )

    # ===== Audience deltas =====

    async def _get_audience_delta(
        self,
        location: Location,
        audience: str,
        centers: list[tuple[float, float]],
        categories: list[str],
        force_refresh: bool,
    ) -> dict[str, str]:
        """
        Audience blocks for the requested categories.

        The cached delta for a ZIP and audience grows as rotation reaches new
        categories: only categories it does not hold yet are built, then merged
        back under the same key. Built-but-empty categories are stored too so they
        are not searched again until the delta expires.
        """
        targets = [c for c in categories if c in AUDIENCE_AUGMENT_CATEGORIES]
        cached = None if force_refresh else await self.cache.get_audience_delta(location.zip_code, audience)
        delta = dict(cached or {})
        missing = [c for c in targets if c not in delta]

        if cached is not None and not missing:
            logs.log(logging.INFO, f"✓ Audience delta cache HIT for {location.zip_code}/{audience}")
        elif missing:
            logs.log(logging.INFO, f"✗ Audience delta cache MISS for {location.zip_code}/{audience} {missing}. Building...")
            built = await self._build_audience_delta(location, audience, centers, missing, force_refresh)
            if built:
                delta.update(built)
                await self.cache.set_audience_delta(location.zip_code, audience, delta)

        return {
            category: text for category, text in delta.items()
            if category in targets and not is_empty_list(text)
        }

    async def _build_audience_delta(
        self,
        location: Location,
        audience: str,
        centers: list[tuple[float, float]],
        targets: list[str],
        force_refresh: bool,
    ) -> dict[str, str]:
        augment = get_audience_augment_queries(audience) or {}
        seasonal_context = self.planner.build_seasonal_context(location, targets, audience=audience)
        plans = self.planner.plan(
            targets, location, seasonal_context,
            audience_queries={c: augment.get(c, []) for c in targets}
        )
        results = await asyncio.gather(*(
            self._build_audience_category_safe(plan, location, centers, audience, force_refresh) for plan in plans
        ))
        # failed categories stay out so the next request retries them
        return {plan.category: text for plan, text in zip(plans, results) if text is not None}

    async def _build_audience_category_safe(self, plan, location, centers, audience, force_refresh) -> Optional[str]:
        try:
            return await self._build_audience_category(plan, location, centers, audience, force_refresh)
        except Exception as e:
            logs.log(logging.ERROR, f"Audience category {plan.category} failed for {audience}: {str(e)}")
            return None

    async def _build_audience_category(
        self,
        plan: QueryPlan,
        location: Location,
        centers: list[tuple[float, float]],
        audience: str,
        force_refresh: bool,
    ) -> str:
        covered = await self.pool_manager.covered_queries(plan.category, location)
        uncovered = [q for q in plan.queries if normalize_query_key(q) not in covered]
        already = [q for q in plan.queries if normalize_query_key(q) in covered]

        scored: dict[str, Place] = {}
        entries: list[PlacePoolEntry] = []
        if uncovered:
            sub_plan = plan.model_copy(update={
                "queries": uncovered,
                "fallback_queries": [q for q in plan.fallback_queries if normalize_query_key(q) not in covered]
            })
            entries = await self.pool_manager.get_pooled_places(
                plan.category, location,
                lambda: self._fetch_plan(sub_plan, location, centers),
                audience=audience,
                force_refresh=force_refresh,
                scored=scored
            )
        else:
            logs.log(logging.INFO, f"All {audience} queries for {plan.category} are covered by the base pool")

        if already:
            reused = await self.pool_manager.entries_for_queries(plan.category, location, already)
            entries = merge_pool_entries(entries, reused)

        limit = get_audience_augment_limit(plan.category)
        places = await self.hydrator.hydrate(entries[:limit], plan.category, self.places_client.get_details, scored)
        return assemble(places, get_category_config(plan.category).display_limit, True, plan.category)

    # ===== Seasonal sections =====

    async def _read_seasonal_sections(self, location: Location) -> dict[str, str]:
        cached = await self.cache.get_seasonal_sections(location.zip_code)
        if cached and cached.season == derive_season(location.lat):
            return cached.sections
        return {}

    async def get_seasonal_sections(
        self,
        zip_code: str,
        service_areas: Optional[list[str]] = None,
        preferred_city: Optional[str] = None,
        preferred_state: Optional[str] = None,
        force_refresh: bool = False,
    ) -> dict[str, str]:
        location = self.resolve_location(zip_code, preferred_city, preferred_state)
        if not force_refresh:
            sections = await self._read_seasonal_sections(location)
            if sections:
                logs.log(logging.INFO, f"✓ Seasonal sections cache HIT for {zip_code}")
                return sections
        logs.log(logging.INFO, f"✗ Seasonal sections cache MISS for {zip_code}. Searching seasonal queries...")

        centers = self._centers(location, service_areas)
        seasonal_context = self.planner.build_seasonal_context(location, NON_NEIGHBORHOOD_CATEGORY_KEYS)
        plans = [
            plan for plan in self.planner.plan(sorted(seasonal_context.allowed_categories), location, seasonal_context)
            if plan.seasonal_queries
        ]

        async def search(plan: QueryPlan) -> tuple[str, list[Place]]:
            queries = [q for q in plan.queries if normalize_query_key(q) in plan.seasonal_queries]
            places, _, _ = await self._run_queries(
                plan.category, queries, location, centers, plan.max_results, plan.seasonal_queries, False
            )
            entries = [
                PlacePoolEntry(place_id=p.place_id, source_queries=p.source_queries)
                for p in dedupe_places(places)[:3]
            ]
            scored = {p.place_id: p for p in places}
            return plan.category, await self.hydrator.hydrate(entries, plan.category, self.places_client.get_details, scored)

        grouped = dict(await asyncio.gather(*(search(plan) for plan in plans)))
        seasonal_keys = set().union(*(plan.seasonal_queries for plan in plans))
        sections = build_seasonal_sections(grouped, seasonal_keys)
        if sections:
            await self.cache.set_seasonal_sections(zip_code, SeasonalSections(
                season=seasonal_context.season,
                month=seasonal_context.month,
                sections=sections
            ))
        return sections

    # ===== Rotation support =====

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
            await self.get_community_data(
                zip_code, audience, service_areas, preferred_city, preferred_state, categories=categories
            )
            logs.log(logging.INFO, f"Prefetched {categories} for {zip_code}")
        except Exception as e:
            logs.log(logging.WARNING, f"Prefetch failed for {zip_code}: {str(e)}")

    async def get_avoid_recommendations(
        self, zip_code: str, categories: list[str], audience: Optional[str] = None
    ) -> dict[str, list[str]]:
        avoid = {}
        for category in categories:
            text = await self.cache.get_category_list(zip_code, category)
            if not text or is_empty_list(text):
                continue
            avoid[category] = [
                line.lstrip("- ").split(" — ")[0].strip()
                for line in text.split("\n") if line.strip()
            ]
        return avoid

    async def get_monthly_events_section(self, zip_code: str, *args, **kwargs) -> Optional[tuple[str, str]]:
        # Monthly events come from the knowledge provider only
        return None
