"""
Builds the search queries for a set of categories and estimates what they cost.

Estimates are advisory: they are logged so spend is visible before the calls go out,
but the planner never rejects a plan for being over budget.
"""
import hashlib
import logging
import math
import random
from datetime import datetime
from typing import Iterable, Optional

from community_context.core.categories import (
    LOW_PRIORITY_ANCHOR_CATEGORIES,
    SEARCH_ANCHOR_OFFSETS,
    get_audience_augment_limit,
    get_category_config,
)
from community_context.core.logger import logs
from community_context.core.query_packs import (
    derive_season,
    get_month_key,
    get_seasonal_candidates,
    merge_unique_queries,
    normalize_query_key,
)
from community_context.models.community_model import Location, QueryPlan, SeasonalContext


def get_search_anchors(location: Location, offsets: list[tuple[float, float]] = SEARCH_ANCHOR_OFFSETS) -> list[tuple[float, float]]:
    """Offset search centers around the location, de-duplicated at 4 decimals."""
    seen = set()
    anchors = []
    for d_lat, d_lng in offsets:
        anchor = (location.lat + d_lat, location.lng + d_lng)
        key = f"{anchor[0]:.4f}:{anchor[1]:.4f}"
        if key in seen:
            continue
        seen.add(key)
        anchors.append(anchor)
    return anchors or [(location.lat, location.lng)]


def per_anchor_max(max_results: int, anchor_count: int) -> int:
    return max(3, math.ceil(max_results / max(anchor_count, 1)))


def seeded_shuffle(values: list[str], seed: str) -> list[str]:
    """Deterministic Fisher-Yates driven by the sha1 of the seed."""
    digest = hashlib.sha1(seed.encode("utf-8")).hexdigest()
    result = list(values)
    seed_index = 0
    for i in range(len(result) - 1, 0, -1):
        chunk = digest[seed_index:seed_index + 8]
        if len(chunk) < 8:
            chunk = hashlib.sha1(f"{seed}:{i}".encode("utf-8")).hexdigest()[:8]
        seed_index = (seed_index + 8) % len(digest)
        j = int(chunk, 16) % (i + 1)
        result[i], result[j] = result[j], result[i]
    return result


def pick_seasonal_categories(seed: str, categories: list[str], count: int = 4) -> list[str]:
    if len(categories) <= count:
        return list(categories)
    return seeded_shuffle(categories, seed)[:count]


def estimate_search_calls(category: str, queries: list[str], seasonal_queries: set[str], anchor_count: int) -> int:
    if not queries:
        return 0
    base_anchors = 1 if category in LOW_PRIORITY_ANCHOR_CATEGORIES else anchor_count
    return sum(
        1 if normalize_query_key(query) in seasonal_queries else base_anchors
        for query in queries
    )


def estimate_detail_calls(categories: Iterable[str]) -> int:
    return sum(get_category_config(category).display_limit for category in categories)


def estimate_cost_usd(calls: int, cost_per_call: float) -> float:
    return round(calls * cost_per_call, 4)


class QueryPlanner:
    def __init__(self, call_budget: int = 60, rng: Optional[random.Random] = None):
        self.call_budget = call_budget
        self.rng = rng or random.Random()

    def build_seasonal_context(
        self,
        location: Location,
        categories: list[str],
        audience: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SeasonalContext:
        """Seasonal categories are stable for a (zip, audience, month)."""
        month = get_month_key(now)
        if audience:
            seed = f"{location.zip_code}:{audience}:{month}:aud"
        else:
            seed = f"{location.zip_code}:{month}:base"
        allowed = pick_seasonal_categories(seed, categories, 4)
        return SeasonalContext(
            season=derive_season(location.lat, now),
            month=month,
            state=location.state,
            lat=location.lat,
            allowed_categories=set(allowed),
            anchor_count=len(get_search_anchors(location)),
            call_budget=self.call_budget
        )

    def plan(
        self,
        categories: list[str],
        location: Location,
        seasonal_context: SeasonalContext,
        audience_queries: Optional[dict[str, list[str]]] = None,
    ) -> list[QueryPlan]:
        """
        One plan per category. With audience_queries the audience's augment queries
        lead and the category fallbacks only pad up to the target query count.
        """
        plans = []
        running_calls = 0
        for category in categories:
            config = get_category_config(category)
            fallback = list(config.fallback_queries)
            target = config.target_query_count

            if audience_queries is not None:
                raw = audience_queries.get(category, [])
                if not raw:
                    queries = fallback[:target]
                elif len(raw) < target:
                    queries = merge_unique_queries(raw, fallback[:target - len(raw)])
                else:
                    queries = list(raw)
                fallback_queries = fallback
                max_results = get_audience_augment_limit(category)
            else:
                queries = fallback[:target]
                fallback_queries = fallback[target:]
                max_results = config.max_per_query

            base_calls = estimate_search_calls(category, queries, set(), seasonal_context.anchor_count)
            seasonal = self._pick_seasonal_query(category, seasonal_context, queries)
            seasonal_queries = set()
            if seasonal and running_calls + base_calls + 1 <= seasonal_context.call_budget:
                queries = merge_unique_queries([seasonal], queries)
                seasonal_queries.add(normalize_query_key(seasonal))
                seasonal_context.used_headers.add(normalize_query_key(seasonal))
                logs.log(logging.INFO, f"Seasonal query selected for {category}", extra={
                    "query": seasonal, "season": seasonal_context.season
                })
            elif seasonal:
                logs.log(logging.INFO, f"Skipping seasonal query for {category}: call budget reached")

            running_calls += estimate_search_calls(category, queries, seasonal_queries, seasonal_context.anchor_count)
            plans.append(QueryPlan(
                category=category,
                queries=queries,
                seasonal_queries=seasonal_queries,
                fallback_queries=fallback_queries,
                max_results=max_results
            ))

        if running_calls > seasonal_context.call_budget:
            logs.log(logging.WARNING, "Planned search calls exceed budget", extra={
                "planned": running_calls, "budget": seasonal_context.call_budget
            })
        return plans

    def _pick_seasonal_query(self, category: str, ctx: SeasonalContext, existing: list[str]) -> Optional[str]:
        if category not in ctx.allowed_categories:
            return None
        taken = ctx.used_headers | {normalize_query_key(q) for q in existing}
        candidates = [
            q for q in get_seasonal_candidates(category, ctx.state, ctx.lat, ctx.season)
            if normalize_query_key(q) not in taken
        ]
        if not candidates:
            return None
        return self.rng.choice(candidates)

    def estimate_plans(self, plans: list[QueryPlan], anchor_count: int) -> int:
        return sum(
            estimate_search_calls(plan.category, plan.queries, plan.seasonal_queries, anchor_count)
            for plan in plans
        )
