"""
Regional and seasonal search query packs.

A location maps to at most one regional pack plus an optional warm/cold climate
modifier. Season is derived from latitude band and UTC month.
"""
from datetime import datetime, timezone

MONTH_KEYS = [
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
]

MONTH_SEASONAL_HINTS = {
    "january": "Prioritize winter activities and cozy indoor events.",
    "february": "Prioritize winter activities and cozy indoor events.",
    "march": "Prioritize early spring activities and seasonal transitions.",
    "april": "Prioritize spring activities and outdoor events.",
    "may": "Prioritize spring outings, festivals, and outdoor activities.",
    "june": "Prioritize summer activities and outdoor events.",
    "july": "Prioritize summer activities, outdoor events, and local celebrations.",
    "august": "Prioritize summer activities, outdoor events, and late-summer outings.",
    "september": "Prioritize early fall activities, festivals, and outdoor events.",
    "october": "Prioritize fall activities, halloween events, and seasonal outings.",
    "november": "Prioritize late-fall activities and holiday lead-in events.",
    "december": "Prioritize winter activities and holiday-season events.",
}

REGION_STATES = {
    "pacific_northwest": {"WA", "OR"},
    "mountain": {"CO", "UT", "ID", "MT", "WY"},
    "desert_southwest": {"AZ", "NM", "NV"},
    "gulf_coast": {"TX", "LA", "MS", "AL"},
    "atlantic_south": {"FL", "GA", "SC", "NC"},
    "mid_atlantic": {"VA", "MD", "DE", "NJ"},
    "new_england": {"NY", "CT", "RI", "MA", "NH", "ME"},
    "great_lakes": {"MN", "WI", "IL", "IN", "MI", "OH", "PA"},
    "california": {"CA"},
    "hawaii": {"HI"},
    "alaska": {"AK"},
}

GEO_QUERY_PACKS: dict[str, dict[str, list[str]]] = {
    "nature_outdoors": {
        "pacific_northwest": ["rainforest trail", "waterfall hike", "old growth forest", "hot springs"],
        "mountain": ["mountain trail", "alpine lake", "scenic overlook", "wildflower meadow"],
        "desert_southwest": ["desert preserve", "red rock trail", "slot canyon", "saguaro"],
        "gulf_coast": ["bayou trail", "coastal wetlands", "bird sanctuary"],
        "atlantic_south": ["beach", "barrier island", "nature preserve", "coastal trail"],
        "mid_atlantic": ["bay trail", "estuary", "state park"],
        "new_england": ["rocky coast trail", "lighthouse walk", "fall foliage", "covered bridge"],
        "great_lakes": ["lakefront trail", "dunes", "riverwalk"],
        "california": ["coastal trail", "redwood forest", "canyon hike", "wine country"],
        "hawaii": ["volcanic trail", "tropical garden", "waterfall hike", "beach park"],
        "alaska": ["glacier viewpoint", "wildlife refuge", "wilderness trail"],
        "warm": ["botanical garden", "nature preserve"],
        "cold": ["snowshoe trail", "winter hike"],
    },
    "sports_rec": {
        "pacific_northwest": ["ski resort", "kayak river", "mountain biking", "climbing gym"],
        "mountain": ["ski resort", "snowboarding", "mountain biking", "fly fishing"],
        "desert_southwest": ["golf course", "rock climbing", "mountain biking", "trail running"],
        "gulf_coast": ["fishing charter", "kayak tour", "golf course"],
        "atlantic_south": ["beach volleyball", "surfing", "golf course", "fishing pier"],
        "mid_atlantic": ["sailing", "kayak rental", "golf course"],
        "new_england": ["sailing", "whale watching", "ski resort", "ice skating"],
        "great_lakes": ["boat rental", "fishing", "beach volleyball", "ice fishing"],
        "california": ["surfing", "mountain biking", "rock climbing", "sailing"],
        "hawaii": ["snorkeling", "surfing", "outrigger canoe", "hiking"],
        "alaska": ["fishing charter", "kayaking", "dog sledding", "wildlife tour"],
        "warm": ["water sports", "outdoor courts"],
        "cold": ["ice rink", "indoor sports complex"],
    },
    "attractions": {
        "pacific_northwest": ["coffee roaster tour", "brewery", "farmers market", "art museum"],
        "mountain": ["scenic railway", "hot springs resort", "national park visitor center"],
        "desert_southwest": ["desert museum", "native heritage site", "historic pueblo", "observatory"],
        "gulf_coast": ["aquarium", "historic district", "plantation tour", "cajun heritage"],
        "atlantic_south": ["lighthouse", "historic fort", "aquarium", "pier"],
        "mid_atlantic": ["historic site", "maritime museum", "boardwalk"],
        "new_england": ["lighthouse", "historic harbor", "maritime museum", "lobster shack"],
        "great_lakes": ["lakefront attraction", "science museum", "brewery tour"],
        "california": ["winery", "aquarium", "historic mission", "theme park"],
        "hawaii": ["luau", "volcano tour", "cultural center", "botanical garden"],
        "alaska": ["glacier cruise", "wildlife center", "native heritage", "gold rush history"],
        "warm": ["botanical garden", "outdoor attraction"],
        "cold": ["indoor attraction", "history museum"],
    },
}

SEASON_QUERY_PACKS: dict[str, dict[str, list[str]]] = {
    "nature_outdoors": {
        "winter": ["winter trail", "scenic winter hike", "nature preserve"],
        "spring": ["wildflower trail", "botanical garden", "spring bloom"],
        "summer": ["shaded trail", "waterfront park", "lake beach"],
        "fall": ["fall foliage", "scenic trail", "nature walk"],
    },
    "sports_rec": {
        "winter": ["indoor sports complex", "fitness center", "climbing gym"],
        "spring": ["outdoor courts", "trail running", "golf course"],
        "summer": ["water sports", "kayak rental", "outdoor recreation"],
        "fall": ["golf course", "outdoor courts", "sports league"],
    },
    "attractions": {
        "winter": ["indoor attraction", "museum", "aquarium"],
        "spring": ["botanical garden", "outdoor attraction", "historic site"],
        "summer": ["outdoor attraction", "festival grounds", "theme park"],
        "fall": ["historic site", "harvest festival", "scenic railway"],
    },
    "community_events": {
        "winter": ["holiday market", "winter festival", "tree lighting"],
        "spring": ["farmers market", "spring festival", "garden show"],
        "summer": ["summer festival", "outdoor concert", "night market"],
        "fall": ["harvest festival", "fall market", "pumpkin patch"],
    },
    "dining": {
        "winter": ["cozy restaurant", "fireplace dining", "comfort food"],
        "spring": ["patio dining", "brunch spot", "farm to table"],
        "summer": ["rooftop restaurant", "outdoor dining", "waterfront restaurant"],
        "fall": ["harvest menu", "seasonal restaurant", "farm to table"],
    },
    "coffee_brunch": {
        "winter": ["cozy cafe", "fireplace coffee shop", "hot chocolate"],
        "spring": ["outdoor cafe", "patio brunch", "seasonal latte"],
        "summer": ["iced coffee", "outdoor seating cafe", "cold brew"],
        "fall": ["pumpkin spice", "autumn latte", "cozy coffee shop"],
    },
    "nightlife_social": {
        "winter": ["cozy bar", "fireplace lounge", "whiskey bar"],
        "spring": ["rooftop bar", "patio bar", "beer garden"],
        "summer": ["rooftop bar", "beer garden", "outdoor lounge"],
        "fall": ["craft beer", "bourbon bar", "wine bar"],
    },
    "fitness_wellness": {
        "winter": ["indoor fitness", "yoga studio", "heated pool"],
        "spring": ["outdoor yoga", "boot camp", "running group"],
        "summer": ["outdoor fitness", "swim club", "morning workout"],
        "fall": ["indoor gym", "yoga studio", "fitness class"],
    },
    "shopping": {
        "winter": ["holiday shopping", "gift shop", "boutique"],
        "spring": ["farmers market", "outdoor market", "garden center"],
        "summer": ["outdoor market", "artisan fair", "boutique"],
        "fall": ["harvest market", "fall boutique", "artisan shop"],
    },
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_month_key(now: datetime | None = None) -> str:
    now = now or utc_now()
    return MONTH_KEYS[now.month - 1]


def derive_region(state: str) -> str | None:
    for region, states in REGION_STATES.items():
        if state in states:
            return region
    return None


def derive_geo_pack_keys(state: str, lat: float) -> list[str]:
    """Regional pack (if any) followed by the climate modifier (if any)."""
    packs = []
    region = derive_region(state)
    if region:
        packs.append(region)
    if lat <= 32:
        packs.append("warm")
    elif lat >= 44:
        packs.append("cold")
    return packs


def derive_season(lat: float, now: datetime | None = None) -> str:
    now = now or utc_now()
    month = now.month

    # Deep south: no real winter, long summer
    if lat <= 30:
        if month in (12, 1, 2):
            return "fall"
        if month in (3, 4, 5):
            return "spring"
        if month in (6, 7, 8, 9):
            return "summer"
        return "fall"

    if month in (12, 1, 2):
        return "winter"
    if month in (3, 4, 5):
        return "spring"
    if month in (6, 7, 8):
        return "summer"
    return "fall"


def normalize_query_key(query: str) -> str:
    return query.lower().strip()


def merge_unique_queries(base: list[str], additions: list[str]) -> list[str]:
    """Concatenate, dropping blanks and case-insensitive duplicates. First wins."""
    seen = set()
    merged = []
    for query in [*base, *additions]:
        normalized = normalize_query_key(query)
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        merged.append(query)
    return merged


def get_seasonal_candidates(category: str, state: str, lat: float, season: str) -> list[str]:
    seasonal = SEASON_QUERY_PACKS.get(category, {}).get(season, [])
    geo = []
    for pack in derive_geo_pack_keys(state, lat):
        geo.extend(GEO_QUERY_PACKS.get(category, {}).get(pack, []))
    return merge_unique_queries(seasonal, geo)
