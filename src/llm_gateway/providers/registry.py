"""
Provider Registry — provider name → factory.

Factories are registered explicitly at startup. An unknown name is a
lookup miss that raises ConfigurationError; there is no fallback provider.
"""

from __future__ import annotations

import logging

import httpx

from llm_gateway.core.crypto import CredentialCipher
from llm_gateway.core.errors import ConfigurationError
from llm_gateway.providers.base import ProviderFactory

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Keyed by lower-cased provider name."""

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}

    def register(self, factory: ProviderFactory) -> None:
        key = factory.provider_name.lower()
        if key in self._factories:
            logger.warning(f"Replacing factory for provider {factory.provider_name}")
        self._factories[key] = factory
        logger.debug(f"Registered provider factory: {factory.provider_name}")

    def resolve(self, provider_name: str) -> ProviderFactory:
        factory = self._factories.get(provider_name.lower())
        if factory is None:
            raise ConfigurationError(f"Unknown LLM provider: {provider_name}")
        return factory

    def names(self) -> list[str]:
        return [f.provider_name for f in self._factories.values()]

    def __contains__(self, provider_name: str) -> bool:
        return provider_name.lower() in self._factories


def create_default_registry(
    http_client: httpx.AsyncClient, cipher: CredentialCipher | None = None
) -> ProviderRegistry:
    """Registry with the built-in OpenAI and Anthropic factories."""
    from llm_gateway.providers.anthropic_llm import AnthropicProviderFactory
    from llm_gateway.providers.openai_llm import OpenAIProviderFactory

    registry = ProviderRegistry()
    registry.register(OpenAIProviderFactory(http_client, cipher))
    registry.register(AnthropicProviderFactory(http_client, cipher))
    return registry
