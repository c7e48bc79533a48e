"""
OpenRouter aggregator adapter.

OpenRouter speaks the OpenAI chat-completions shape, wants attribution
headers, and names models ``vendor/model``. A credential carrying the
aggregator prefix routes any provider's block through this adapter.
"""

from __future__ import annotations

from blockflow.adapters.base import ProviderFamily
from blockflow.adapters.openai import OpenAIAdapter
from blockflow.invocation import ChatInvocation

OPENROUTER_ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"

# Provider name -> OpenRouter vendor prefix.
OPENROUTER_VENDORS: dict[str, str] = {
    "openai": "openai",
    "anthropic": "anthropic",
    "google": "google",
    "xai": "x-ai",
    "deepseek": "deepseek",
    "mistral": "mistralai",
    "cohere": "cohere",
    "perplexity": "perplexity",
}


class OpenRouterAdapter(OpenAIAdapter):
    """Adapter for the OpenRouter aggregator."""

    family = ProviderFamily.OPENROUTER
    default_endpoint = OPENROUTER_ENDPOINT

    def __init__(
        self,
        provider: str = "openrouter",
        endpoint: str | None = None,
        default_max_tokens: int = 2048,
        default_temperature: float = 0.7,
        referer: str = "https://blockflow.app",
        title: str = "Blockflow",
    ) -> None:
        super().__init__(provider, endpoint or OPENROUTER_ENDPOINT, default_max_tokens, default_temperature)
        self.referer = referer
        self.title = title

    def request_model(self, invocation: ChatInvocation) -> str:
        if "/" in invocation.model:
            return invocation.model
        vendor = OPENROUTER_VENDORS.get(invocation.provider)
        return f"{vendor}/{invocation.model}" if vendor else invocation.model

    def build_headers(self, api_key: str) -> dict[str, str]:
        headers = super().build_headers(api_key)
        headers["HTTP-Referer"] = self.referer
        headers["X-Title"] = self.title
        return headers
