"""
Static category, audience and search configuration.
"""
from enum import Enum
from pydantic import BaseModel, ConfigDict


class CategoryKey(str, Enum):
    NEIGHBORHOODS = "neighborhoods"
    DINING = "dining"
    COFFEE_BRUNCH = "coffee_brunch"
    NATURE_OUTDOORS = "nature_outdoors"
    ENTERTAINMENT = "entertainment"
    ATTRACTIONS = "attractions"
    SPORTS_REC = "sports_rec"
    ARTS_CULTURE = "arts_culture"
    NIGHTLIFE_SOCIAL = "nightlife_social"
    FITNESS_WELLNESS = "fitness_wellness"
    SHOPPING = "shopping"
    EDUCATION = "education"
    COMMUNITY_EVENTS = "community_events"


ALL_CATEGORY_KEYS: list[str] = [c.value for c in CategoryKey]
NON_NEIGHBORHOOD_CATEGORY_KEYS: list[str] = [c for c in ALL_CATEGORY_KEYS if c != "neighborhoods"]


class CategoryConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    display_limit: int = 5
    pool_max: int = 30
    min_rating: float = 0.0
    min_reviews: int = 0
    target_query_count: int = 1
    fallback_queries: tuple[str, ...] = ()
    max_per_query: int = 10
    min_primary_results: int = 2


CATEGORY_CONFIG: dict[str, CategoryConfig] = {
    "neighborhoods": CategoryConfig(
        display_limit=5, pool_max=0, min_rating=0, min_reviews=0,
        target_query_count=1, fallback_queries=(), max_per_query=8, min_primary_results=0
    ),
    "dining": CategoryConfig(
        display_limit=8, pool_max=50, min_rating=4.5, min_reviews=100, target_query_count=2,
        fallback_queries=("best local restaurants", "popular restaurant"),
        max_per_query=20, min_primary_results=3
    ),
    "coffee_brunch": CategoryConfig(
        display_limit=5, pool_max=30, min_rating=4.4, min_reviews=40, target_query_count=2,
        fallback_queries=("coffee shop cafe", "breakfast brunch spot"),
        max_per_query=12, min_primary_results=2
    ),
    "nature_outdoors": CategoryConfig(
        display_limit=4, pool_max=20, min_rating=4.5, min_reviews=20, target_query_count=2,
        fallback_queries=("park trail hiking", "nature preserve garden"),
        max_per_query=12, min_primary_results=2
    ),
    "entertainment": CategoryConfig(
        display_limit=4, pool_max=18, min_rating=4.0, min_reviews=10, target_query_count=1,
        fallback_queries=("live music theater entertainment venue",),
        max_per_query=10, min_primary_results=2
    ),
    "attractions": CategoryConfig(
        display_limit=4, pool_max=10, min_rating=4.0, min_reviews=10, target_query_count=1,
        fallback_queries=("local attraction historic landmark tourist site", "zoo aquarium museum"),
        max_per_query=10, min_primary_results=2
    ),
    "sports_rec": CategoryConfig(
        display_limit=4, pool_max=14, min_rating=4.0, min_reviews=10, target_query_count=1,
        fallback_queries=("sports recreation center",),
        max_per_query=10, min_primary_results=2
    ),
    "arts_culture": CategoryConfig(
        display_limit=4, pool_max=14, min_rating=4.0, min_reviews=8, target_query_count=1,
        fallback_queries=("art gallery museum cultural center",),
        max_per_query=10, min_primary_results=2
    ),
    "nightlife_social": CategoryConfig(
        display_limit=5, pool_max=30, min_rating=4.0, min_reviews=12, target_query_count=1,
        fallback_queries=("brewery winery bar lounge",),
        max_per_query=10, min_primary_results=2
    ),
    "fitness_wellness": CategoryConfig(
        display_limit=4, pool_max=16, min_rating=4.0, min_reviews=10, target_query_count=1,
        fallback_queries=("gym fitness yoga wellness",),
        max_per_query=10, min_primary_results=2
    ),
    "shopping": CategoryConfig(
        display_limit=4, pool_max=16, min_rating=4.0, min_reviews=10, target_query_count=1,
        fallback_queries=("local shop boutique",),
        max_per_query=10, min_primary_results=2
    ),
    "education": CategoryConfig(
        display_limit=3, pool_max=8, min_rating=3.8, min_reviews=200, target_query_count=1,
        fallback_queries=("university campus", "library"),
        max_per_query=15, min_primary_results=0
    ),
    "community_events": CategoryConfig(
        display_limit=3, pool_max=10, min_rating=3.8, min_reviews=5, target_query_count=1,
        fallback_queries=("farmers market festival fair",),
        max_per_query=10, min_primary_results=1
    ),
}

DEFAULT_CATEGORY_CONFIG = CategoryConfig()


def get_category_config(category: str) -> CategoryConfig:
    # neighborhoods_general / _family / _senior share the neighborhoods config
    if category.startswith("neighborhoods"):
        return CATEGORY_CONFIG["neighborhoods"]
    return CATEGORY_CONFIG.get(category, DEFAULT_CATEGORY_CONFIG)


def get_query_overrides(category: str, query: str) -> dict | None:
    """Per-query admission overrides (libraries rarely clear the campus review bar)."""
    if category == "education" and "library" in query.lower():
        return {"min_reviews": 10}
    return None


# ===== Search geometry =====

DEFAULT_SEARCH_RADIUS_METERS = 15000
MAX_PLACE_DISTANCE_KM = 40
DISTANCE_SCORE_WEIGHT = 0.05
DISTANCE_SCORE_CAP_KM = 20
SEARCH_ANCHOR_OFFSETS: list[tuple[float, float]] = [(0.0, 0.0), (0.06, 0.06), (-0.06, -0.06)]

LOW_PRIORITY_ANCHOR_CATEGORIES = {
    "entertainment",
    "attractions",
    "sports_rec",
    "arts_culture",
    "fitness_wellness",
    "shopping",
    "education",
    "community_events",
}

CHAIN_FILTER_CATEGORIES = {
    "dining",
    "coffee_brunch",
    "nightlife_social",
    "shopping",
    "fitness_wellness",
    "entertainment",
    "sports_rec",
}

CHAIN_NAME_BLACKLIST = [
    "mcdonald", "burger king", "wendy", "taco bell", "kfc", "subway", "domino",
    "pizza hut", "papa john", "chipotle", "starbucks", "dunkin", "panera",
    "olive garden", "applebee", "chili", "red lobster", "outback", "ihop",
    "denny", "cracker barrel", "buffalo wild wings",
]

# ===== Neighborhoods =====

NEIGHBORHOOD_REJECT_TERMS = [
    "services", "division", "department", "office", "authority", "program",
    "government", "city of", "county", "market", "center", "public works",
]

NEIGHBORHOOD_QUERIES = [
    {"key": "neighborhoods_general", "query": "neighborhood subdivision residential community", "max": 12},
    {"key": "neighborhoods_family", "query": "family neighborhood gated community luxury subdivision", "max": 12},
    {"key": "neighborhoods_senior", "query": "55+ community retirement senior living", "max": 8},
]

# ===== Audiences =====

AUDIENCE_SEGMENTS = [
    "young_professionals",
    "growing_families",
    "active_retirees",
    "luxury_buyers",
    "investors_relocators",
]

AUDIENCE_SEGMENT_ALIASES = {
    "first_time_homebuyers": "young_professionals",
    "growing_families": "growing_families",
    "downsizers_retirees": "active_retirees",
    "luxury_homebuyers": "luxury_buyers",
    "real_estate_investors": "investors_relocators",
    "job_transferees": "investors_relocators",
    "vacation_property_buyers": "investors_relocators",
    "military_veterans": "investors_relocators",
    "relocators": "investors_relocators",
}

AUDIENCE_LABELS = {
    "young_professionals": "first-time homebuyers and young professionals",
    "growing_families": "growing families",
    "active_retirees": "downsizers and retirees",
    "luxury_buyers": "luxury homebuyers",
    "investors_relocators": "investors and relocators",
}

# Neighborhood list shown for each audience
AUDIENCE_NEIGHBORHOOD_LIST = {
    "growing_families": "family",
    "luxury_buyers": "luxury",
    "active_retirees": "senior",
    "investors_relocators": "relocators",
}

AUDIENCE_AUGMENT_CATEGORIES = [
    "entertainment",
    "sports_rec",
    "nature_outdoors",
    "dining",
    "fitness_wellness",
    "shopping",
]

AUDIENCE_AUGMENT_LIMITS = {category: 6 for category in AUDIENCE_AUGMENT_CATEGORIES}
AUDIENCE_AUGMENT_LIMITS["dining"] = 8

AUDIENCE_AUGMENT_QUERIES: dict[str, dict[str, list[str]]] = {
    "young_professionals": {
        "dining": ["trendy restaurant tapas sushi ramen", "craft cocktail bar gastropub", "vegan vegetarian restaurant"],
        "entertainment": ["live music venue comedy club", "rooftop bar nightclub"],
        "sports_rec": ["climbing gym crossfit", "adult sports league"],
        "nature_outdoors": ["urban park riverwalk trail", "rooftop garden scenic overlook"],
        "fitness_wellness": ["boutique fitness spin cycling", "yoga pilates barre studio"],
        "shopping": ["vintage boutique thrift", "artisan market bookstore"],
    },
    "growing_families": {
        "dining": ["family restaurant kids menu", "pizza casual dining"],
        "entertainment": ["family entertainment center arcade", "children theater puppet show"],
        "sports_rec": ["youth sports soccer baseball", "community pool splash pad"],
        "nature_outdoors": ["playground park picnic area", "nature center petting zoo", "easy hiking family trail"],
        "fitness_wellness": ["family gym pool", "kids yoga swim lessons"],
        "shopping": ["toy store children boutique", "family shopping kids clothes"],
    },
    "active_retirees": {
        "dining": ["fine dining seafood steakhouse", "bistro brunch classic restaurant"],
        "entertainment": ["performing arts symphony opera", "historic theater concert hall"],
        "sports_rec": ["golf course country club", "tennis pickleball courts"],
        "nature_outdoors": ["botanical garden arboretum", "scenic overlook easy walk", "bird watching nature preserve"],
        "fitness_wellness": ["wellness spa massage", "senior fitness gentle yoga"],
        "shopping": ["antique shop gallery", "bookstore artisan craft"],
    },
    "luxury_buyers": {
        "dining": ["fine dining michelin tasting menu", "upscale steakhouse sushi omakase"],
        "entertainment": ["private theater vip lounge", "exclusive club members only"],
        "sports_rec": ["private country club golf", "yacht club tennis pro"],
        "nature_outdoors": ["private garden estate grounds", "scenic overlook exclusive"],
        "fitness_wellness": ["luxury spa resort wellness", "private training personal gym"],
        "shopping": ["designer boutique luxury brand", "fine jewelry art gallery"],
    },
    "investors_relocators": {
        "dining": ["popular restaurant highly rated", "local favorite food hall"],
        "entertainment": ["event venue concert", "community theater performance"],
        "sports_rec": ["recreation center sports complex", "stadium arena"],
        "nature_outdoors": ["state park regional trail", "lake river waterfront"],
        "fitness_wellness": ["fitness center gym", "community recreation"],
        "shopping": ["shopping district main street", "local market retail"],
    },
}


def normalize_audience_segment(segment: str | None) -> str | None:
    if not segment:
        return None
    key = segment.strip().lower()
    if key in AUDIENCE_SEGMENTS:
        return key
    return AUDIENCE_SEGMENT_ALIASES.get(key)


def get_audience_augment_queries(segment: str) -> dict[str, list[str]] | None:
    return AUDIENCE_AUGMENT_QUERIES.get(segment)


def get_audience_augment_limit(category: str) -> int:
    return AUDIENCE_AUGMENT_LIMITS.get(category, 6)
