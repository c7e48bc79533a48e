"""Provider adapters: one per wire-format family."""

from blockflow.adapters.anthropic import AnthropicAdapter
from blockflow.adapters.base import OutboundRequest, ParsedResponse, ProviderAdapter, ProviderFamily
from blockflow.adapters.cohere import CohereAdapter
from blockflow.adapters.google import GoogleAdapter
from blockflow.adapters.openai import OpenAIAdapter
from blockflow.adapters.openrouter import OpenRouterAdapter
from blockflow.adapters.registry import PROVIDER_FAMILIES, AdapterRegistry, build_adapter

__all__ = [
    "PROVIDER_FAMILIES",
    "AdapterRegistry",
    "AnthropicAdapter",
    "CohereAdapter",
    "GoogleAdapter",
    "OpenAIAdapter",
    "OpenRouterAdapter",
    "OutboundRequest",
    "ParsedResponse",
    "ProviderAdapter",
    "ProviderFamily",
    "build_adapter",
]
