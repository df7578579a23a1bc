"""
Provider abstraction and the router that picks between the two data sources.
"""
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from community_context.core.errors import ValidationError
from community_context.core.logger import logs
from community_context.models.community_model import CommunityData


class ProviderKind(str, Enum):
    STRUCTURED = "places"
    KNOWLEDGE = "knowledge"


class CommunityProvider(ABC):
    """Base class for community data sources"""

    @abstractmethod
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
        pass

    @abstractmethod
    async def prefetch_categories(
        self,
        zip_code: str,
        categories: list[str],
        audience: Optional[str] = None,
        service_areas: Optional[list[str]] = None,
        preferred_city: Optional[str] = None,
        preferred_state: Optional[str] = None,
    ) -> None:
        pass

    @abstractmethod
    async def get_avoid_recommendations(
        self, zip_code: str, categories: list[str], audience: Optional[str] = None
    ) -> dict[str, list[str]]:
        pass

    @abstractmethod
    async def get_monthly_events_section(
        self,
        zip_code: str,
        audience: Optional[str] = None,
        service_areas: Optional[list[str]] = None,
        preferred_city: Optional[str] = None,
        preferred_state: Optional[str] = None,
        force_refresh: bool = False,
    ) -> Optional[tuple[str, str]]:
        """Returns (section_key, formatted_list) or None"""
        pass

    @abstractmethod
    def get_provider_name(self) -> str:
        pass


class ProviderRouter:
    def __init__(self, providers: dict[ProviderKind, CommunityProvider], preference: ProviderKind):
        if preference not in providers:
            raise ValueError(f"No provider registered for preference '{preference.value}'")
        self.providers = providers
        self.preference = preference

    @property
    def preferred(self) -> CommunityProvider:
        return self.providers[self.preference]

    @property
    def fallback(self) -> Optional[CommunityProvider]:
        for kind, provider in self.providers.items():
            if kind != self.preference:
                return provider
        return None

    async def get_community_data(self, zip_code: str, audience: Optional[str] = None, **kwargs) -> Optional[CommunityData]:
        """
        Preferred provider first, the other one exactly once on error or empty result.
        An unresolvable location is final.
        """
        for provider in [self.preferred, self.fallback]:
            if provider is None:
                continue
            name = provider.get_provider_name()
            try:
                data = await provider.get_community_data(zip_code, audience, **kwargs)
            except ValidationError as e:
                logs.log(logging.WARNING, f"Location could not be resolved for {zip_code}: {str(e)}")
                return None
            except Exception as e:
                logs.log(logging.ERROR, f"{name} provider failed for {zip_code}: {str(e)}")
                continue

            if data is not None and not data.is_empty():
                return data
            logs.log(logging.WARNING, f"{name} provider returned no data for {zip_code}")

        logs.log(logging.ERROR, f"All community providers failed for {zip_code}")
        return None
