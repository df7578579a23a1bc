from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    city: str
    state: str
    lat: float
    lng: float
    zip_code: str
    population: int = 0


class Place(BaseModel):
    name: str
    rating: float = 0.0
    review_count: int = 0
    address: str = ""
    category: str = ""
    summary: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    place_id: Optional[str] = None
    distance_km: Optional[float] = None
    source_queries: List[str] = Field(default_factory=list)
    is_fallback: bool = False


class PlacePoolEntry(BaseModel):
    place_id: str
    source_queries: List[str] = Field(default_factory=list)
    is_fallback: bool = False


class CachedPlacePool(BaseModel):
    items: List[PlacePoolEntry]
    fetched_at: str
    query_count: int = 0


class PlaceDetails(BaseModel):
    place_id: str
    name: str = ""
    address: str = ""
    rating: float = 0.0
    review_count: int = 0
    primary_type: Optional[str] = None
    types: List[str] = Field(default_factory=list)
    summary: Optional[str] = None


class CycleState(BaseModel):
    remaining: List[str] = Field(default_factory=list)
    cycles_completed: int = 0


class QueryPlan(BaseModel):
    category: str
    queries: List[str]
    seasonal_queries: set[str] = Field(default_factory=set)
    fallback_queries: List[str] = Field(default_factory=list)
    max_results: int = 10


class SeasonalContext(BaseModel):
    """Per-request seasonal inputs shared by every plan in the request."""
    season: str
    month: str
    state: str
    lat: float
    allowed_categories: set[str] = Field(default_factory=set)
    used_headers: set[str] = Field(default_factory=set)
    anchor_count: int = 1
    call_budget: int = 60


class SeasonalSections(BaseModel):
    season: str
    month: str
    sections: Dict[str, str] = Field(default_factory=dict)


class NeighborhoodLists(BaseModel):
    general: str = "- (none found)"
    family: str = "- (none found)"
    senior: str = "- (none found)"
    luxury: str = "- (none found)"
    relocators: str = "- (none found)"

    def for_audience(self, variant: Optional[str]) -> str:
        if variant in ("family", "senior", "luxury", "relocators"):
            return getattr(self, variant)
        return self.general


class CommunityData(BaseModel):
    city: str
    state: str
    zip_code: str
    data_timestamp: str
    provider: str
    category_lists: Dict[str, str] = Field(default_factory=dict)
    neighborhoods: NeighborhoodLists = Field(default_factory=NeighborhoodLists)
    neighborhoods_list: str = "- (none found)"
    seasonal_sections: Dict[str, str] = Field(default_factory=dict)
    audience_segment: Optional[str] = None

    def is_empty(self) -> bool:
        lists = [*self.category_lists.values(), self.neighborhoods.general]
        return all(not value or "(none found)" in value for value in lists)


class ContextRequest(BaseModel):
    user_id: str = "anonymous"
    zip_code: str
    category: str = "community"  # "community", "seasonal" or a CategoryKey value
    audience_segments: List[str] = Field(default_factory=list)
    service_areas: Optional[List[str]] = None
    preferred_city: Optional[str] = None
    preferred_state: Optional[str] = None
    categories: Optional[List[str]] = None  # pinned categories bypass rotation
    force_refresh: bool = False


class ContextPayload(BaseModel):
    community_data: Optional[CommunityData] = None
    city_description: Optional[str] = None
    category_keys: Optional[List[str]] = None
    seasonal_sections: Optional[Dict[str, str]] = None
