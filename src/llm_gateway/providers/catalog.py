"""
Model Catalog — which providers and models the gateway can route to.

A read-only view of the administrative provider/model data. The default
catalog mirrors the stock OpenAI and Anthropic setup; deployments can
build their own with ModelCatalog(providers, models).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from llm_gateway.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

OPENAI_ENDPOINT = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_ENDPOINT = "https://api.anthropic.com/v1/messages"


@dataclass(frozen=True)
class ProviderInfo:
    """An upstream LLM vendor."""

    name: str
    display_name: str = ""
    api_endpoint: str = ""
    is_enabled: bool = True


@dataclass(frozen=True)
class ModelInfo:
    """A model offered by a provider, with its pricing."""

    model_id: str
    provider: str
    name: str = ""
    max_tokens: int = 4000
    context_window: int = 8000
    supports_streaming: bool = True
    cost_per_1k_input: float = 0.0
    cost_per_1k_output: float = 0.0
    is_enabled: bool = True


class ModelCatalog:
    """Resolves a model id to its (provider, model) pair."""

    def __init__(self, providers: list[ProviderInfo], models: list[ModelInfo]):
        self._providers = {p.name.lower(): p for p in providers}
        self._models = {m.model_id: m for m in models}

    def providers(self) -> list[ProviderInfo]:
        return list(self._providers.values())

    def models(self) -> list[ModelInfo]:
        return list(self._models.values())

    def get_provider(self, name: str) -> ProviderInfo | None:
        return self._providers.get(name.lower())

    def resolve(self, model_id: str) -> tuple[ProviderInfo, ModelInfo]:
        """Look up an enabled model and its enabled provider."""
        model = self._models.get(model_id)
        if model is None:
            # Display names are accepted too ("GPT-4o" as well as "gpt-4o")
            model = next((m for m in self._models.values() if m.name == model_id), None)
        if model is None:
            raise ConfigurationError(f"Unknown model: {model_id}")
        if not model.is_enabled:
            raise ConfigurationError(f"Model is disabled: {model_id}")

        provider = self.get_provider(model.provider)
        if provider is None:
            raise ConfigurationError(
                f"Unknown LLM provider: {model.provider} (model {model_id})"
            )
        if not provider.is_enabled:
            raise ConfigurationError(f"LLM provider is disabled: {provider.name}")

        return provider, model


def default_catalog() -> ModelCatalog:
    """Stock providers and models with list pricing (USD per 1K tokens)."""
    return ModelCatalog(
        providers=[
            ProviderInfo("OpenAI", "OpenAI", OPENAI_ENDPOINT),
            ProviderInfo("Anthropic", "Anthropic", ANTHROPIC_ENDPOINT),
        ],
        models=[
            ModelInfo(
                "gpt-3.5-turbo", "OpenAI", "GPT-3.5 Turbo",
                max_tokens=4096, context_window=16385,
                cost_per_1k_input=0.0005, cost_per_1k_output=0.0015,
            ),
            ModelInfo(
                "gpt-4", "OpenAI", "GPT-4",
                max_tokens=8192, context_window=8192,
                cost_per_1k_input=0.03, cost_per_1k_output=0.06,
            ),
            ModelInfo(
                "gpt-4-turbo", "OpenAI", "GPT-4 Turbo",
                max_tokens=4096, context_window=128000,
                cost_per_1k_input=0.01, cost_per_1k_output=0.03,
            ),
            ModelInfo(
                "gpt-4o", "OpenAI", "GPT-4o",
                max_tokens=16384, context_window=128000,
                cost_per_1k_input=0.0025, cost_per_1k_output=0.01,
            ),
            ModelInfo(
                "claude-3-5-sonnet-20240620", "Anthropic", "Claude 3.5 Sonnet",
                max_tokens=8192, context_window=200000,
                cost_per_1k_input=0.003, cost_per_1k_output=0.015,
            ),
            ModelInfo(
                "claude-3-haiku-20240307", "Anthropic", "Claude 3 Haiku",
                max_tokens=4096, context_window=200000,
                cost_per_1k_input=0.00025, cost_per_1k_output=0.00125,
            ),
        ],
    )
