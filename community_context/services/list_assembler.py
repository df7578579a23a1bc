"""
Turns places into the text blocks embedded in downstream prompts.

Line format is stable on purpose: prompt templates depend on it.
    - {name} — {summary}
    - {name} — kw1, kw2
    - {name}
An empty result is always the single placeholder line.
"""
import math
import random
import re
from typing import Optional

from community_context.core.categories import (
    DISTANCE_SCORE_CAP_KM,
    DISTANCE_SCORE_WEIGHT,
    get_category_config,
    get_query_overrides,
)
from community_context.core.query_packs import normalize_query_key
from community_context.models.community_model import Place

NONE_FOUND = "- (none found)"


def place_identity(place: Place) -> str:
    if place.place_id:
        return f"place:{place.place_id}"
    return re.sub(r"[^a-z0-9|]+", "", f"{place.name}|{place.address}".lower())


def dedupe_places(places: list[Place]) -> list[Place]:
    """First occurrence wins its slot; later duplicates enrich it."""
    seen: dict[str, Place] = {}
    for place in places:
        key = place_identity(place)
        existing = seen.get(key)
        if existing is None:
            seen[key] = place.model_copy(deep=True)
            continue

        if place.summary and not existing.summary:
            existing.summary = place.summary
        if place.keywords and not existing.keywords:
            existing.keywords = list(place.keywords)
        for query in place.source_queries:
            if query not in existing.source_queries:
                existing.source_queries.append(query)
        existing.is_fallback = existing.is_fallback and place.is_fallback

        if place.review_count + place.rating > existing.review_count + existing.rating:
            existing.rating = place.rating
            existing.review_count = place.review_count
            if place.address and not existing.address:
                existing.address = place.address
            if place.distance_km is not None:
                existing.distance_km = place.distance_km
    return list(seen.values())


def score_place(place: Place) -> float:
    distance_penalty = 0.0
    if place.distance_km is not None:
        distance_penalty = min(place.distance_km, DISTANCE_SCORE_CAP_KM) * DISTANCE_SCORE_WEIGHT
    return math.log10(place.review_count + 1) * 10 + (place.rating or 0) - distance_penalty


def rank_places(places: list[Place]) -> list[Place]:
    return sorted(places, key=score_place, reverse=True)


def meets_threshold(place: Place, category: str) -> bool:
    config = get_category_config(category)
    min_rating = config.min_rating
    min_reviews = config.min_reviews
    for query in place.source_queries:
        overrides = get_query_overrides(category, query)
        if overrides:
            min_rating = min(min_rating, overrides.get("min_rating", min_rating))
            min_reviews = min(min_reviews, overrides.get("min_reviews", min_reviews))
    if min_rating > 0 and (place.rating or 0) < min_rating:
        return False
    if min_reviews > 0 and (place.review_count or 0) < min_reviews:
        return False
    return True


def admit_places(places: list[Place], category: str) -> list[Place]:
    """
    Drops places under the category's rating/review bar. If that leaves fewer than
    min_primary_results, the best under-threshold fallback places top it up.
    """
    admitted = [p for p in places if meets_threshold(p, category)]
    min_primary = get_category_config(category).min_primary_results
    if len(admitted) >= min_primary:
        return admitted

    spare = rank_places([p for p in places if p.is_fallback and not meets_threshold(p, category)])
    needed = min_primary - len(admitted)
    return admitted + spare[:needed]


def format_place_line(place: Place, include_keywords: bool) -> str:
    if place.summary:
        return f"- {place.name} — {place.summary}"
    if include_keywords and place.keywords:
        return f"- {place.name} — {', '.join(place.keywords)}"
    return f"- {place.name}"


def assemble(places: list[Place], max_items: int, prefer_detailed: bool = True, category: Optional[str] = None) -> str:
    deduped = dedupe_places(places)
    if category:
        deduped = admit_places(deduped, category)
    lines = [format_place_line(p, prefer_detailed) for p in rank_places(deduped)[:max_items]]
    return "\n".join(lines) if lines else NONE_FOUND


def build_neighborhood_list(places: list[Place]) -> str:
    limit = get_category_config("neighborhoods").display_limit
    lines = [f"- {p.name}" for p in rank_places(dedupe_places(places))[:limit]]
    return "\n".join(lines) if lines else NONE_FOUND


def is_empty_list(text: Optional[str]) -> bool:
    return not text or not text.strip() or "(none found)" in text


def trim_list(text: Optional[str], max_items: int, strip_keywords: bool = False) -> str:
    if not text:
        return NONE_FOUND
    lines = [line.strip() for line in text.split("\n") if line.strip()]
    if not lines:
        return NONE_FOUND
    if len(lines) == 1 and "(none found)" in lines[0]:
        return lines[0]
    trimmed = lines[:max_items]
    if strip_keywords:
        trimmed = [re.sub(r"\s+—\s+[^—]+$", "", line) for line in trimmed]
    return "\n".join(trimmed)


def count_list_items(text: Optional[str]) -> int:
    if not text:
        return 0
    return len([
        line for line in (l.strip() for l in text.split("\n"))
        if line and "(none found)" not in line
    ])


def _line_name_key(line: str) -> str:
    name = line.strip().lstrip("-").strip().split(" — ")[0]
    return re.sub(r"[^a-z0-9]+", "", name.lower())


def apply_audience_delta(category_lists: dict[str, str], delta: dict[str, str]) -> dict[str, str]:
    """Audience lines lead, base lines follow, duplicates by name dropped."""
    merged = dict(category_lists)
    for category, delta_text in delta.items():
        if is_empty_list(delta_text):
            continue
        base_text = category_lists.get(category, "")
        seen = set()
        lines = []
        for line in [*delta_text.split("\n"), *(base_text or "").split("\n")]:
            line = line.strip()
            if not line or "(none found)" in line:
                continue
            key = _line_name_key(line)
            if key in seen:
                continue
            seen.add(key)
            lines.append(line)
        limit = get_category_config(category).display_limit
        merged[category] = "\n".join(lines[:limit]) if lines else NONE_FOUND
    return merged


def audience_skip_categories(delta: Optional[dict[str, str]]) -> set[str]:
    """Categories whose audience delta alone fills the primary quota."""
    if not delta:
        return set()
    return {
        category for category, text in delta.items()
        if count_list_items(text) >= max(get_category_config(category).min_primary_results, 1)
    }


def build_seasonal_sections(
    grouped: dict[str, list[Place]],
    seasonal_queries: set[str],
    max_per_query: int = 3,
    max_headers: int = 3,
    rng: Optional[random.Random] = None,
) -> dict[str, str]:
    """One block per seasonal query header, built from the places it surfaced."""
    rng = rng or random.Random()
    by_query: dict[str, tuple[str, list[Place]]] = {}
    for places in grouped.values():
        for place in places:
            for query in place.source_queries:
                key = normalize_query_key(query)
                if key not in seasonal_queries:
                    continue
                by_query.setdefault(key, (query, []))[1].append(place)

    entries = list(by_query.values())
    chosen = entries if len(entries) <= max_headers else rng.sample(entries, max_headers)
    sections = {}
    for query, places in chosen:
        block = assemble(places, max_per_query, True)
        if not is_empty_list(block):
            sections[query] = block
    return sections
