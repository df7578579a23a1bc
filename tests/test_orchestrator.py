import json

import pytest

from conftest import FakeLLM, FakePlacesClient
from community_context.core.categories import NON_NEIGHBORHOOD_CATEGORY_KEYS
from community_context.core.config import Settings
from community_context.core.errors import DependencyError, ValidationError
from community_context.core.query_packs import get_month_key
from community_context.models.community_model import ContextRequest
from community_context.services.city_description import CityDescriptionService
from community_context.services.knowledge_provider import KnowledgeQueryProvider
from community_context.services.orchestrator import ContextOrchestrator, build_orchestrator
from community_context.services.provider_router import ProviderKind, ProviderRouter
from community_context.services.rotation_service import AudienceSegmentRotator, CategoryRotationScheduler

EVENTS = {"items": [{"name": "Blues on the Green", "description": "Free summer concerts", "dates": "Wednesdays"}]}
DESCRIPTION = "Austin is a fast-growing capital city known for live music and outdoor living."


class DownPlacesClient(FakePlacesClient):
    async def search(self, query, anchor, max_results=10, radius=15000):
        self.search_calls.append(query)
        raise DependencyError("google_places", "quota exceeded")


def make_orchestrator(cache, structured, knowledge=None, city_llm=None):
    providers = {ProviderKind.STRUCTURED: structured}
    if knowledge is not None:
        providers[ProviderKind.KNOWLEDGE] = knowledge
    return ContextOrchestrator(
        router=ProviderRouter(providers, ProviderKind.STRUCTURED),
        structured=structured,
        scheduler=CategoryRotationScheduler(cache),
        audience_rotator=AudienceSegmentRotator(cache),
        city_descriptions=CityDescriptionService(cache, city_llm),
        knowledge=knowledge
    )


class TestRequestValidation:
    """Bad input is rejected before any provider call"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("zip_code", ["", "7870", "abcde", "787011"])
    async def test_invalid_zip(self, cache, places_client, build_structured, zip_code):
        orchestrator = make_orchestrator(cache, build_structured(cache, places_client))
        with pytest.raises(ValidationError):
            await orchestrator.resolve_context_for(zip_code, "community")
        assert places_client.search_calls == []

    @pytest.mark.asyncio
    async def test_unresolvable_zip(self, cache, places_client, build_structured):
        orchestrator = make_orchestrator(cache, build_structured(cache, places_client))
        with pytest.raises(ValidationError):
            await orchestrator.resolve_context_for("99999", "community")

    @pytest.mark.asyncio
    async def test_unknown_category(self, cache, places_client, build_structured):
        orchestrator = make_orchestrator(cache, build_structured(cache, places_client))
        with pytest.raises(ValidationError):
            await orchestrator.resolve_context_for("78701", "pets")


class TestCommunityMode:
    """Rotated and pinned community requests"""

    @pytest.mark.asyncio
    async def test_pinned_categories_served_from_cache_on_repeat(self, cache, build_structured):
        client = FakePlacesClient()
        orchestrator = make_orchestrator(cache, build_structured(cache, client, call_budget=0), city_llm=FakeLLM(DESCRIPTION))
        request = ContextRequest(zip_code="78701", categories=["dining", "shopping"])

        first = await orchestrator.resolve_context(request)
        assert first.category_keys == ["dining", "shopping"]
        assert set(first.community_data.category_lists) == {"dining", "shopping"}
        assert first.city_description == DESCRIPTION

        searches, details = len(client.search_calls), len(client.detail_calls)
        second = await orchestrator.resolve_context(request)
        await orchestrator.wait_for_background()
        assert len(client.search_calls) == searches
        assert len(client.detail_calls) == details
        assert second.community_data.category_lists == first.community_data.category_lists

    @pytest.mark.asyncio
    async def test_rotation_prefetches_next_categories(self, cache, build_structured):
        client = FakePlacesClient()
        orchestrator = make_orchestrator(cache, build_structured(cache, client, call_budget=0))

        first = await orchestrator.resolve_context_for("78701", "community", user_id="agent-1")
        await orchestrator.wait_for_background()
        assert len(first.category_keys) == 2
        assert set(first.category_keys) <= set(NON_NEIGHBORHOOD_CATEGORY_KEYS)

        second = await orchestrator.resolve_context_for("78701", "community", user_id="agent-1")
        await orchestrator.wait_for_background()
        assert not set(second.category_keys) & set(first.category_keys)
        # the second pair was prefetched after the first request
        assert all(key in second.community_data.category_lists for key in second.category_keys)

    @pytest.mark.asyncio
    async def test_second_pair_needs_no_new_calls_once_prefetched(self, cache, build_structured):
        client = FakePlacesClient()
        orchestrator = make_orchestrator(cache, build_structured(cache, client, call_budget=0))
        await orchestrator.resolve_context_for("78701", "community", user_id="agent-1")
        await orchestrator.wait_for_background()
        searches = len(client.search_calls)
        request = ContextRequest(zip_code="78701", user_id="agent-1")

        upcoming = await orchestrator.scheduler.peek_next_categories("agent-1", 2)
        for key in upcoming:
            assert await cache.get_category_list("78701", key) is not None

        payload = await orchestrator.resolve_context(request)
        assert payload.category_keys == upcoming
        assert len(client.search_calls) == searches
        await orchestrator.wait_for_background()

    @pytest.mark.asyncio
    async def test_falls_back_to_knowledge_provider(self, cache, resolver, build_structured):
        structured = build_structured(cache, DownPlacesClient(), call_budget=0)
        knowledge = KnowledgeQueryProvider(cache, FakeLLM(json.dumps({"items": [{"name": "Franklin Barbecue"}]})), resolver)
        orchestrator = make_orchestrator(cache, structured, knowledge=knowledge)
        payload = await orchestrator.resolve_context(ContextRequest(zip_code="78701", categories=["dining"]))
        assert payload.community_data.provider == "knowledge"
        assert payload.community_data.category_lists["dining"] == "- Franklin Barbecue"

    @pytest.mark.asyncio
    async def test_every_provider_down(self, cache, build_structured):
        structured = build_structured(cache, DownPlacesClient(), call_budget=0)
        orchestrator = make_orchestrator(cache, structured)
        payload = await orchestrator.resolve_context(ContextRequest(zip_code="78701", categories=["dining"]))
        assert payload.community_data is None
        assert payload.category_keys == ["dining"]

    @pytest.mark.asyncio
    async def test_monthly_events_join_the_rotation(self, cache, resolver, build_structured):
        structured = build_structured(cache, FakePlacesClient(), call_budget=0)
        knowledge = KnowledgeQueryProvider(cache, FakeLLM(json.dumps(EVENTS)), resolver)
        orchestrator = make_orchestrator(cache, structured, knowledge=knowledge)
        events_key = f"things_to_do_{get_month_key()}"

        payload = await orchestrator.resolve_context(ContextRequest(zip_code="78701", categories=["dining", events_key]))
        lists = payload.community_data.category_lists
        assert lists[events_key] == "- Blues on the Green — Free summer concerts (Wednesdays)"
        assert "dining" in lists

    @pytest.mark.asyncio
    async def test_audience_segments_rotate(self, cache, build_structured):
        orchestrator = make_orchestrator(cache, build_structured(cache, FakePlacesClient(), call_budget=0))
        segments = ["growing_families", "active_retirees"]
        request = ContextRequest(zip_code="78701", categories=["shopping"], audience_segments=segments)
        first = await orchestrator.resolve_context(request)
        second = await orchestrator.resolve_context(request)
        assert first.community_data.audience_segment == "growing_families"
        assert second.community_data.audience_segment == "active_retirees"
        assert second.community_data.neighborhoods_list == second.community_data.neighborhoods.senior


class TestOtherModes:
    """Seasonal and single-category requests"""

    @pytest.mark.asyncio
    async def test_seasonal_mode(self, cache, resolver, build_structured):
        structured = build_structured(cache, FakePlacesClient())
        knowledge = KnowledgeQueryProvider(cache, FakeLLM(json.dumps(EVENTS)), resolver)
        orchestrator = make_orchestrator(cache, structured, knowledge=knowledge, city_llm=FakeLLM(DESCRIPTION))

        payload = await orchestrator.resolve_context_for("78701", "seasonal")
        events_key = f"things_to_do_{get_month_key()}"
        assert payload.community_data is None
        assert list(payload.seasonal_sections)[0] == events_key
        assert len(payload.seasonal_sections) >= 2
        assert payload.category_keys == list(payload.seasonal_sections)
        assert payload.city_description == DESCRIPTION

    @pytest.mark.asyncio
    async def test_seasonal_mode_without_knowledge(self, cache, build_structured):
        orchestrator = make_orchestrator(cache, build_structured(cache, FakePlacesClient()))
        payload = await orchestrator.resolve_context_for("78701", "seasonal")
        assert 1 <= len(payload.seasonal_sections) <= 3

    @pytest.mark.asyncio
    async def test_single_category(self, cache, build_structured):
        orchestrator = make_orchestrator(cache, build_structured(cache, FakePlacesClient(), call_budget=0))
        payload = await orchestrator.resolve_context_for("78701", "coffee_brunch")
        assert payload.category_keys == ["coffee_brunch"]
        assert list(payload.community_data.category_lists) == ["coffee_brunch"]

    @pytest.mark.asyncio
    async def test_neighborhoods_only(self, cache, build_structured):
        client = FakePlacesClient()
        orchestrator = make_orchestrator(cache, build_structured(cache, client, call_budget=0))
        payload = await orchestrator.resolve_context_for("78701", "neighborhoods", audience_segment="downsizers_retirees")
        data = payload.community_data
        assert data.category_lists == {}
        assert data.audience_segment == "active_retirees"
        assert data.neighborhoods_list == "- Sun City\n- Wildhorse Ranch\n- Onion Creek"

    @pytest.mark.asyncio
    async def test_unreachable_cache(self, broken_cache, build_structured):
        orchestrator = make_orchestrator(broken_cache, build_structured(broken_cache, FakePlacesClient(), call_budget=0))
        payload = await orchestrator.resolve_context_for("78701", "community")
        await orchestrator.wait_for_background()
        assert len(payload.category_keys) == 2
        assert payload.community_data is not None


class TestBuildOrchestrator:
    """Wiring from settings"""

    def test_defaults_to_structured_without_knowledge_key(self, city_csv):
        config = Settings(
            STORAGE_MODE="memory",
            COMMUNITY_PROVIDER="knowledge",
            PERPLEXITY_API_KEY="",
            ANTHROPIC_API_KEY="",
            CITY_DATASET_PATH=city_csv
        )
        orchestrator = build_orchestrator(config)
        assert orchestrator.router.preference == ProviderKind.STRUCTURED
        assert orchestrator.knowledge is None
        assert orchestrator.city_descriptions.provider is None

    def test_knowledge_preference(self, city_csv):
        config = Settings(
            STORAGE_MODE="none",
            COMMUNITY_PROVIDER="knowledge",
            PERPLEXITY_API_KEY="pplx-test",
            CITY_DATASET_PATH=city_csv
        )
        orchestrator = build_orchestrator(config)
        assert orchestrator.router.preference == ProviderKind.KNOWLEDGE
        assert orchestrator.router.fallback is orchestrator.structured
        assert orchestrator.structured.cache.available is False
