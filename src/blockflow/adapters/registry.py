"""
Provider adapter registry.

Maps provider names onto the closed set of adapter families and holds one
adapter per provider, created eagerly (``register``) or lazily from a factory
(``register_factory``). Adding an OpenAI-compatible provider is one entry in
``PROVIDER_FAMILIES`` plus its endpoint.

Example:
    from blockflow.adapters.registry import AdapterRegistry

    registry = AdapterRegistry.default(config)

    registry.is_supported("xai")               # True
    adapter = registry.resolve("anthropic", api_key)

    # A key with the aggregator prefix routes through OpenRouter
    registry.resolve("anthropic", "sk-or-v1-...").family   # ProviderFamily.OPENROUTER
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from blockflow.adapters.anthropic import AnthropicAdapter
from blockflow.adapters.base import ProviderAdapter, ProviderFamily
from blockflow.adapters.cohere import CohereAdapter
from blockflow.adapters.google import GoogleAdapter
from blockflow.adapters.openai import OPENAI_COMPATIBLE_ENDPOINTS, OpenAIAdapter
from blockflow.adapters.openrouter import OpenRouterAdapter
from blockflow.config import BlockflowConfig
from blockflow.errors import ConfigurationError
from blockflow.logging import get_logger

logger = get_logger("adapters.registry")

AGGREGATOR = "openrouter"

PROVIDER_FAMILIES: dict[str, ProviderFamily] = {
    "openai": ProviderFamily.OPENAI,
    "xai": ProviderFamily.OPENAI,
    "deepseek": ProviderFamily.OPENAI,
    "mistral": ProviderFamily.OPENAI,
    "groq": ProviderFamily.OPENAI,
    "together": ProviderFamily.OPENAI,
    "perplexity": ProviderFamily.OPENAI,
    "anthropic": ProviderFamily.ANTHROPIC,
    "google": ProviderFamily.GOOGLE,
    "cohere": ProviderFamily.COHERE,
    AGGREGATOR: ProviderFamily.OPENROUTER,
}

PROVIDER_NAMES: dict[str, str] = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "google": "Google",
    "xai": "xAI",
    "deepseek": "DeepSeek",
    "mistral": "Mistral",
    "cohere": "Cohere",
    "groq": "Groq",
    "together": "Together.ai",
    "perplexity": "Perplexity",
    AGGREGATOR: "OpenRouter",
}

# Type for adapter factory functions: (config) -> ProviderAdapter
AdapterFactory = Callable[[BlockflowConfig], ProviderAdapter]


def build_adapter(provider: str, config: BlockflowConfig) -> ProviderAdapter:
    """Instantiate the adapter for ``provider`` from its family."""
    family = PROVIDER_FAMILIES.get(provider)
    if family is None:
        raise ConfigurationError(f"Unsupported provider '{provider}'")

    endpoint = config.base_urls.get(provider)
    common: dict[str, Any] = {
        "default_max_tokens": config.default_max_tokens,
        "default_temperature": config.default_temperature,
    }
    if family is ProviderFamily.OPENAI:
        return OpenAIAdapter(provider, endpoint or OPENAI_COMPATIBLE_ENDPOINTS.get(provider), **common)
    if family is ProviderFamily.ANTHROPIC:
        return AnthropicAdapter(provider, endpoint, **common)
    if family is ProviderFamily.GOOGLE:
        return GoogleAdapter(provider, endpoint, **common)
    if family is ProviderFamily.COHERE:
        return CohereAdapter(provider, endpoint, **common)
    return OpenRouterAdapter(
        provider,
        endpoint,
        referer=config.attribution_referer,
        title=config.attribution_title,
        **common,
    )


class _AdapterEntry:
    """Internal entry holding either an adapter instance or a factory."""

    __slots__ = ("name", "instance", "factory", "source")

    def __init__(
        self,
        name: str,
        instance: ProviderAdapter | None = None,
        factory: AdapterFactory | None = None,
        source: str = "",
    ) -> None:
        self.name = name
        self.instance = instance
        self.factory = factory
        self.source = source


class AdapterRegistry:
    """
    A registry of provider adapters keyed by provider name.

    Thread Safety:
        Registration happens at startup. Lookups after that are read-only and
        safe to share between concurrent dispatches.
    """

    def __init__(self, config: BlockflowConfig | None = None) -> None:
        self.config = config or BlockflowConfig()
        self._entries: dict[str, _AdapterEntry] = {}

    @classmethod
    def default(cls, config: BlockflowConfig | None = None) -> AdapterRegistry:
        """Registry with a lazy factory for every known provider."""
        registry = cls(config)
        for provider in PROVIDER_FAMILIES:
            registry.register_factory(
                provider,
                lambda cfg, name=provider: build_adapter(name, cfg),
                source="builtin",
            )
        return registry

    def register(self, name: str, adapter: ProviderAdapter, source: str = "") -> None:
        """
        Register an adapter instance.

        Raises:
            ValueError: If name is empty
        """
        if not name:
            raise ValueError("Provider name must not be empty")
        if name in self._entries:
            logger.debug("Overriding adapter: %s", name)
        self._entries[name] = _AdapterEntry(name=name, instance=adapter, source=source)
        logger.debug("Registered adapter: %s (source=%s)", name, source or "manual")

    def register_factory(self, name: str, factory: AdapterFactory, source: str = "") -> None:
        """
        Register an adapter factory for lazy creation.

        The factory is called with the registry's config the first time the
        adapter is requested via ``get()``.
        """
        if not name:
            raise ValueError("Provider name must not be empty")
        if name in self._entries:
            logger.debug("Overriding adapter factory: %s", name)
        self._entries[name] = _AdapterEntry(name=name, factory=factory, source=source)

    def get(self, name: str) -> ProviderAdapter:
        """
        Get the adapter for a provider.

        Raises:
            KeyError: If the provider is not registered
        """
        entry = self._entries.get(name)
        if entry is None:
            available = ", ".join(self._entries.keys()) or "(none)"
            raise KeyError(f"Provider '{name}' not found. Available: {available}")

        if entry.instance is None:
            if entry.factory is None:
                raise RuntimeError(f"Provider '{name}' has no instance or factory")
            logger.debug("Creating adapter '%s' from factory", name)
            entry.instance = entry.factory(self.config)
        return entry.instance

    def is_supported(self, name: str) -> bool:
        return name in self._entries

    has = is_supported

    def require(self, name: str) -> ProviderAdapter:
        """Like ``get`` but raises ``ConfigurationError`` for unknown providers."""
        try:
            return self.get(name)
        except KeyError:
            raise ConfigurationError(f"Unsupported provider '{name}'") from None

    def resolve(self, provider: str, api_key: str | None = None) -> ProviderAdapter:
        """
        Pick the adapter that will carry a call for ``provider``.

        A key with the aggregator prefix routes through the aggregator
        adapter regardless of the block's provider.
        """
        prefix = self.config.aggregator_key_prefix
        if (
            api_key
            and prefix
            and api_key.startswith(prefix)
            and provider != AGGREGATOR
            and AGGREGATOR in self._entries
        ):
            logger.debug("Routing %s through %s (aggregator key)", provider, AGGREGATOR)
            return self.get(AGGREGATOR)
        return self.get(provider)

    def unregister(self, name: str) -> bool:
        if name not in self._entries:
            return False
        del self._entries[name]
        logger.debug("Unregistered adapter: %s", name)
        return True

    def list_providers(self) -> list[str]:
        """List all registered provider names."""
        return list(self._entries.keys())

    def get_info(self, name: str) -> dict[str, Any]:
        """
        Get info about a registered provider.

        Returns:
            Dict with name, display_name, family, source, has_instance
        """
        entry = self._entries.get(name)
        if entry is None:
            raise KeyError(f"Provider '{name}' not found")
        family = PROVIDER_FAMILIES.get(name)
        if entry.instance is not None:
            family = entry.instance.family
        return {
            "name": entry.name,
            "display_name": PROVIDER_NAMES.get(name, name),
            "family": family.value if family else None,
            "source": entry.source,
            "has_instance": entry.instance is not None,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __repr__(self) -> str:
        names = ", ".join(self._entries.keys())
        return f"AdapterRegistry([{names}])"
