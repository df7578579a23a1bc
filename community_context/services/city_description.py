import logging
import re
from typing import Optional

from community_context.core.errors import DependencyError
from community_context.core.llm_providers import BaseLLMProvider
from community_context.core.logger import logs
from community_context.core.query_packs import utc_now
from community_context.repos.community_cache import CommunityCache

SYSTEM_PROMPT = "You write concise, factual city descriptions for real estate marketing prompts."


class CityDescriptionService:
    def __init__(self, cache: CommunityCache, provider: Optional[BaseLLMProvider], timeout: float = 15.0):
        self.cache = cache
        self.provider = provider
        self.timeout = timeout

    async def get_city_description(self, city: str, state: str) -> Optional[str]:
        if not city or not state:
            return None

        cached = await self.cache.get_city_description(city, state)
        if cached and cached.get("description"):
            logs.log(logging.INFO, f"✓ City description cache HIT for {city}, {state}")
            return cached["description"]

        if self.provider is None:
            return None

        logs.log(logging.INFO, f"✗ City description cache MISS for {city}, {state}. Asking {self.provider.get_provider_name()}...")
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": (
                f"Write a 2-3 sentence high-quality description summarizing the city of {city}, {state}. "
                "Focus on its character, lifestyle, and what makes it appealing to live in. "
                "Avoid superlatives you cannot verify, and do not mention specific businesses."
            )}
        ]
        try:
            content = await self.provider.generate(messages, temperature=0.3, timeout=self.timeout, max_tokens=160)
        except DependencyError as e:
            logs.log(logging.ERROR, f"City description failed for {city}, {state}: {str(e)}")
            return None

        description = re.sub(r"\s+", " ", content or "").strip()
        if not description:
            return None

        await self.cache.set_city_description(city, state, {
            "description": description,
            "generated_at": utc_now().isoformat()
        })
        return description
