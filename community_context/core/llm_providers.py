"""
LLM Provider Implementations
Perplexity (knowledge queries) and Anthropic (city descriptions) behind a unified interface.
"""
import httpx
import logging
from abc import ABC, abstractmethod
from typing import Optional
from community_context.core.errors import DependencyError
from community_context.core.logger import logs

class BaseLLMProvider(ABC):
    """Base class for all LLM providers"""

    @abstractmethod
    async def generate(self, messages: list, temperature: float = 0.1, timeout: float = 10.0, **options) -> str:
        """Generate a response from the LLM"""
        pass

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return the name of the provider"""
        pass


class _HTTPProvider(BaseLLMProvider):
    """Shared POST plumbing. Any transport or HTTP error is logged and raised as DependencyError."""

    base_url = ""

    def __init__(self, api_key: str, model: str, client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.model = model
        self.client = client

    def _headers(self) -> dict:
        raise NotImplementedError

    async def _post(self, payload: dict, timeout: float) -> dict:
        if not self.api_key:
            raise DependencyError(self.get_provider_name(), "API key is not configured")
        try:
            if self.client is not None:
                response = await self.client.post(self.base_url, json=payload, headers=self._headers(), timeout=timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(self.base_url, json=payload, headers=self._headers(), timeout=timeout)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logs.log(logging.ERROR, f"{self.get_provider_name()} API error: {str(e)}")
            raise DependencyError(self.get_provider_name(), str(e)) from e


class PerplexityProvider(_HTTPProvider):
    """Perplexity Sonar (OpenAI-style chat completions with web search)"""

    base_url = "https://api.perplexity.ai/chat/completions"

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

    async def complete(self, messages: list, temperature: float = 0.2, timeout: float = 30.0, **options) -> dict:
        """Returns the raw response body, including search_results when present."""
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature
        }
        if options.get("json_schema"):
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {"schema": options["json_schema"]}
            }
        if options.get("max_tokens"):
            payload["max_tokens"] = options["max_tokens"]
        return await self._post(payload, timeout)

    async def generate(self, messages: list, temperature: float = 0.2, timeout: float = 30.0, **options) -> str:
        data = await self.complete(messages, temperature, timeout, **options)
        try:
            return data["choices"][0]["message"]["content"].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            logs.log(logging.ERROR, f"Perplexity returned an unexpected body: {str(e)}")
            raise DependencyError(self.get_provider_name(), "malformed completion") from e

    def get_provider_name(self) -> str:
        return "Perplexity"


class AnthropicProvider(_HTTPProvider):
    """Anthropic Claude Provider"""

    base_url = "https://api.anthropic.com/v1/messages"

    def _headers(self) -> dict:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
            "Content-Type": "application/json"
        }

    async def generate(self, messages: list, temperature: float = 0.1, timeout: float = 10.0, **options) -> str:
        # Convert OpenAI-style messages to Anthropic format
        system_message = None
        converted_messages = []

        for msg in messages:
            if msg["role"] == "system":
                system_message = msg["content"]
            else:
                converted_messages.append({
                    "role": msg["role"],
                    "content": msg["content"]
                })

        payload = {
            "model": self.model,
            "messages": converted_messages,
            "temperature": temperature,
            "max_tokens": options.get("max_tokens", 1024)
        }

        if system_message:
            payload["system"] = system_message

        data = await self._post(payload, timeout)
        try:
            return data["content"][0]["text"].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            logs.log(logging.ERROR, f"Anthropic returned an unexpected body: {str(e)}")
            raise DependencyError(self.get_provider_name(), "malformed message") from e

    def get_provider_name(self) -> str:
        return "Anthropic Claude"
