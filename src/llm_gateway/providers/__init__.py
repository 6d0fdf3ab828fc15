"""
Gateway Providers — one factory and one client per upstream LLM vendor.

Each factory resolves an API key and builds a client; the registry maps
provider names to factories. Add a vendor by registering a new factory.
"""

from llm_gateway.providers.base import LLMClient, ProviderFactory
from llm_gateway.providers.catalog import ModelCatalog, ModelInfo, ProviderInfo, default_catalog
from llm_gateway.providers.registry import ProviderRegistry, create_default_registry

__all__ = [
    "LLMClient",
    "ProviderFactory",
    "ProviderRegistry",
    "create_default_registry",
    "ModelCatalog",
    "ModelInfo",
    "ProviderInfo",
    "default_catalog",
]
