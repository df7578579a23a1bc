import pytest

from community_context.core.errors import DependencyError, ValidationError
from community_context.models.community_model import CommunityData
from community_context.services.provider_router import CommunityProvider, ProviderKind, ProviderRouter


def community_data(provider, lists=None):
    return CommunityData(
        city="Austin", state="TX", zip_code="78701", data_timestamp="2026-07-01T00:00:00+00:00",
        provider=provider, category_lists=lists or {}
    )


class StubProvider(CommunityProvider):
    def __init__(self, name, result=None, error=None):
        self.name = name
        self.result = result
        self.error = error
        self.calls = []

    async def get_community_data(self, zip_code, audience=None, **kwargs):
        self.calls.append((zip_code, audience, kwargs))
        if self.error:
            raise self.error
        return self.result

    async def prefetch_categories(self, zip_code, categories, audience=None, service_areas=None,
                                  preferred_city=None, preferred_state=None):
        return None

    async def get_avoid_recommendations(self, zip_code, categories, audience=None):
        return {}

    async def get_monthly_events_section(self, zip_code, audience=None, service_areas=None,
                                         preferred_city=None, preferred_state=None, force_refresh=False):
        return None

    def get_provider_name(self):
        return self.name


def router(preferred, fallback=None, preference=ProviderKind.STRUCTURED):
    providers = {preference: preferred}
    if fallback is not None:
        other = ProviderKind.KNOWLEDGE if preference == ProviderKind.STRUCTURED else ProviderKind.STRUCTURED
        providers[other] = fallback
    return ProviderRouter(providers, preference)


class TestProviderRouter:
    """Preferred-then-fallback routing"""

    def test_unregistered_preference(self):
        with pytest.raises(ValueError):
            ProviderRouter({ProviderKind.STRUCTURED: StubProvider("places")}, ProviderKind.KNOWLEDGE)

    def test_accessors(self):
        places, knowledge = StubProvider("places"), StubProvider("knowledge")
        r = router(places, knowledge)
        assert r.preferred is places
        assert r.fallback is knowledge

    @pytest.mark.asyncio
    async def test_preferred_result_returned(self):
        places = StubProvider("places", community_data("places", {"dining": "- Cafe"}))
        knowledge = StubProvider("knowledge")
        data = await router(places, knowledge).get_community_data("78701", "growing_families", categories=["dining"])
        assert data.provider == "places"
        assert knowledge.calls == []
        assert places.calls == [("78701", "growing_families", {"categories": ["dining"]})]

    @pytest.mark.asyncio
    async def test_fallback_on_error(self):
        places = StubProvider("places", error=DependencyError("google_places", "down"))
        knowledge = StubProvider("knowledge", community_data("knowledge", {"dining": "- Cafe"}))
        data = await router(places, knowledge).get_community_data("78701")
        assert data.provider == "knowledge"

    @pytest.mark.asyncio
    async def test_fallback_on_empty(self):
        places = StubProvider("places", community_data("places", {"dining": "- (none found)"}))
        knowledge = StubProvider("knowledge", community_data("knowledge", {"dining": "- Cafe"}))
        data = await router(places, knowledge).get_community_data("78701")
        assert data.provider == "knowledge"

    @pytest.mark.asyncio
    async def test_knowledge_preferred_falls_back_to_places(self):
        knowledge = StubProvider("knowledge", error=RuntimeError("bad payload"))
        places = StubProvider("places", community_data("places", {"dining": "- Cafe"}))
        data = await router(knowledge, places, preference=ProviderKind.KNOWLEDGE).get_community_data("78701")
        assert data.provider == "places"

    @pytest.mark.asyncio
    async def test_validation_error_is_final(self):
        places = StubProvider("places", error=ValidationError("unknown zip", zip_code="00000"))
        knowledge = StubProvider("knowledge", community_data("knowledge", {"dining": "- Cafe"}))
        assert await router(places, knowledge).get_community_data("00000") is None
        assert knowledge.calls == []

    @pytest.mark.asyncio
    async def test_both_fail(self):
        places = StubProvider("places", error=DependencyError("google_places", "down"))
        knowledge = StubProvider("knowledge", error=DependencyError("Perplexity", "down"))
        assert await router(places, knowledge).get_community_data("78701") is None
        assert len(knowledge.calls) == 1

    @pytest.mark.asyncio
    async def test_single_provider(self):
        places = StubProvider("places", error=DependencyError("google_places", "down"))
        assert await router(places).get_community_data("78701") is None
