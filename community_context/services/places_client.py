"""
Google Places API (v1) transport: text search and place details.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from community_context.core.categories import DEFAULT_SEARCH_RADIUS_METERS
from community_context.core.errors import DependencyError
from community_context.core.logger import logs
from community_context.models.community_model import PlaceDetails

SEARCH_URL = "https://places.googleapis.com/v1/places:searchText"
DETAILS_URL = "https://places.googleapis.com/v1/places/{place_id}"

SEARCH_FIELD_MASK = ",".join([
    "places.displayName",
    "places.formattedAddress",
    "places.id",
    "places.location",
    "places.rating",
    "places.userRatingCount",
])
DETAILS_FIELD_MASK = ",".join([
    "displayName",
    "formattedAddress",
    "rating",
    "userRatingCount",
    "primaryType",
    "types",
    "generativeSummary",
])

MAX_RESULTS_PER_SEARCH = 20
RETRYABLE_STATUS = {429, 500, 502, 503, 504}
PROVIDER_NAME = "google_places"


class PlacesClient:
    def __init__(
        self,
        api_key: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
        max_attempts: int = 3,
        base_backoff: float = 0.1,
        max_backoff: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_key = api_key
        self.client = client
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self.sleep = sleep
        self.call_count = 0
        self._inflight: dict[str, asyncio.Task] = {}

    async def search(
        self,
        query: str,
        anchor: tuple[float, float],
        max_results: int = 10,
        radius: float = DEFAULT_SEARCH_RADIUS_METERS,
    ) -> list[dict]:
        lat, lng = anchor
        count = max(1, min(max_results, MAX_RESULTS_PER_SEARCH))
        key = f"search:{query.lower().strip()}:{lat:.4f}:{lng:.4f}:{count}:{radius}"
        body = {
            "textQuery": query,
            "maxResultCount": count,
            "locationBias": {
                "circle": {
                    "center": {"latitude": lat, "longitude": lng},
                    "radius": radius
                }
            }
        }
        data = await self._shared(key, lambda: self._request("POST", SEARCH_URL, SEARCH_FIELD_MASK, body))
        if data and not isinstance(data, dict):
            raise DependencyError(PROVIDER_NAME, f"unexpected search payload for '{query}'")
        places = (data or {}).get("places") or []
        return [p for p in places if isinstance(p, dict)]

    async def get_details(self, place_id: str) -> Optional[PlaceDetails]:
        url = DETAILS_URL.format(place_id=place_id)
        data = await self._shared(f"details:{place_id}", lambda: self._request("GET", url, DETAILS_FIELD_MASK))
        if not data:
            return None
        try:
            summary = ((data.get("generativeSummary") or {}).get("overview") or {}).get("text")
            return PlaceDetails(
                place_id=place_id,
                name=(data.get("displayName") or {}).get("text", ""),
                address=data.get("formattedAddress") or "",
                rating=data.get("rating") or 0.0,
                review_count=data.get("userRatingCount") or 0,
                primary_type=data.get("primaryType"),
                types=data.get("types") or [],
                summary=summary
            )
        except (AttributeError, TypeError, ValueError) as e:
            logs.log(logging.ERROR, f"Malformed details payload for {place_id}: {str(e)}")
            raise DependencyError(PROVIDER_NAME, f"malformed details payload for {place_id}") from e

    async def _shared(self, key: str, factory: Callable[[], Awaitable[Optional[dict]]]) -> Optional[dict]:
        """Identical concurrent requests share one in-flight task."""
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def _request(self, method: str, url: str, field_mask: str, body: Optional[dict] = None) -> Optional[dict]:
        if not self.api_key:
            raise DependencyError(PROVIDER_NAME, "GOOGLE_PLACES_API_KEY is not configured")

        headers = {
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": field_mask,
            "Content-Type": "application/json"
        }
        backoff = self.base_backoff
        for attempt in range(1, self.max_attempts + 1):
            self.call_count += 1
            try:
                response = await self._send(method, url, headers, body)
            except httpx.HTTPError as e:
                logs.log(logging.ERROR, f"Places API request failed: {str(e)}", extra={"url": url, "attempt": attempt})
                if attempt == self.max_attempts:
                    raise DependencyError(PROVIDER_NAME, str(e)) from e
            else:
                if response.status_code == 404 and method == "GET":
                    return None
                if response.status_code not in RETRYABLE_STATUS:
                    try:
                        response.raise_for_status()
                        return response.json()
                    except (httpx.HTTPStatusError, ValueError) as e:
                        logs.log(logging.ERROR, f"Places API error: {str(e)}", extra={"url": url})
                        raise DependencyError(PROVIDER_NAME, str(e)) from e
                logs.log(logging.WARNING, f"Places API returned {response.status_code}, retrying", extra={
                    "url": url, "attempt": attempt
                })
                if attempt == self.max_attempts:
                    raise DependencyError(PROVIDER_NAME, f"HTTP {response.status_code} after {attempt} attempts")

            await self.sleep(backoff)
            backoff = min(backoff * 2, self.max_backoff)
        return None

    async def _send(self, method: str, url: str, headers: dict, body: Optional[dict]) -> httpx.Response:
        if self.client is not None:
            return await self.client.request(method, url, headers=headers, json=body, timeout=self.timeout)
        async with httpx.AsyncClient() as client:
            return await client.request(method, url, headers=headers, json=body, timeout=self.timeout)
