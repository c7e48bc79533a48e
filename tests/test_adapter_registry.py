"""Tests for the provider adapter registry."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from blockflow.adapters.base import ProviderFamily
from blockflow.adapters.openai import OpenAIAdapter
from blockflow.adapters.registry import PROVIDER_FAMILIES, AdapterRegistry, build_adapter
from blockflow.config import BlockflowConfig
from blockflow.errors import ConfigurationError


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegistration:
    def test_register_instance(self) -> None:
        registry = AdapterRegistry()
        adapter = OpenAIAdapter("local", "http://localhost:8000/v1/chat/completions")
        registry.register("local", adapter, source="test")

        assert registry.get("local") is adapter
        assert "local" in registry
        assert len(registry) == 1

    def test_register_empty_name(self) -> None:
        with pytest.raises(ValueError):
            AdapterRegistry().register("", OpenAIAdapter())

    def test_factory_is_lazy(self) -> None:
        """Should call the factory once, on first lookup."""
        registry = AdapterRegistry()
        factory = MagicMock(return_value=OpenAIAdapter())
        registry.register_factory("openai", factory)

        assert registry.get_info("openai")["has_instance"] is False
        first = registry.get("openai")
        second = registry.get("openai")

        factory.assert_called_once_with(registry.config)
        assert first is second
        assert registry.get_info("openai")["has_instance"] is True

    def test_unregister(self) -> None:
        registry = AdapterRegistry()
        registry.register("x", OpenAIAdapter())
        assert registry.unregister("x") is True
        assert registry.unregister("x") is False

    def test_get_unknown_lists_available(self) -> None:
        registry = AdapterRegistry()
        registry.register("openai", OpenAIAdapter())
        with pytest.raises(KeyError, match="Available: openai"):
            registry.get("nope")

    def test_require_unknown(self) -> None:
        with pytest.raises(ConfigurationError, match="Unsupported provider 'nope'"):
            AdapterRegistry.default().require("nope")


# ---------------------------------------------------------------------------
# Defaults and routing
# ---------------------------------------------------------------------------


class TestDefaultRegistry:
    def test_every_family_member_registered(self, registry: AdapterRegistry) -> None:
        assert set(registry.list_providers()) == set(PROVIDER_FAMILIES)

    @pytest.mark.parametrize(
        "provider,family",
        [
            ("openai", ProviderFamily.OPENAI),
            ("deepseek", ProviderFamily.OPENAI),
            ("anthropic", ProviderFamily.ANTHROPIC),
            ("google", ProviderFamily.GOOGLE),
            ("cohere", ProviderFamily.COHERE),
            ("openrouter", ProviderFamily.OPENROUTER),
        ],
    )
    def test_family(self, registry: AdapterRegistry, provider: str, family: ProviderFamily) -> None:
        assert registry.get(provider).family is family

    def test_aggregator_key_routes_through_openrouter(self, registry: AdapterRegistry) -> None:
        adapter = registry.resolve("anthropic", "sk-or-v1-abc")
        assert adapter.family is ProviderFamily.OPENROUTER

    def test_regular_key_keeps_provider(self, registry: AdapterRegistry) -> None:
        assert registry.resolve("anthropic", "sk-ant-abc").family is ProviderFamily.ANTHROPIC
        assert registry.resolve("anthropic").family is ProviderFamily.ANTHROPIC

    def test_base_url_override(self) -> None:
        config = BlockflowConfig(base_urls={"openai": "http://localhost:9999/v1/chat/completions"})
        adapter = AdapterRegistry.default(config).get("openai")
        assert adapter.endpoint == "http://localhost:9999/v1/chat/completions"

    def test_config_defaults_flow_into_adapters(self) -> None:
        config = BlockflowConfig(default_max_tokens=256, default_temperature=0.1)
        adapter = build_adapter("anthropic", config)
        assert adapter.default_max_tokens == 256
        assert adapter.default_temperature == 0.1

    def test_build_unknown(self) -> None:
        with pytest.raises(ConfigurationError):
            build_adapter("nope", BlockflowConfig())

    def test_get_info(self, registry: AdapterRegistry) -> None:
        info = registry.get_info("xai")
        assert info["display_name"] == "xAI"
        assert info["family"] == "openai"
        assert info["source"] == "builtin"
