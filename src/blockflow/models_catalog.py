"""
Built-in model catalog.

Chat models offered on blocks, grouped by provider. All prices are in
$/million tokens. ``api_model_id`` is set where the identifier used on blocks
differs from the one the provider API expects.
"""

from __future__ import annotations

from blockflow.model_registry import ModelCost, ModelDefinition

_VISION = {"text", "vision"}
_TEXT = {"text"}


def get_default_models() -> list[ModelDefinition]:
    """Return the built-in model definitions."""
    return [
        # ---------------------------------------------------------------
        # OpenAI
        # ---------------------------------------------------------------
        ModelDefinition(
            id="gpt-5",
            provider="openai",
            display_name="GPT-5",
            context_window=256_000,
            max_output_tokens=32_768,
            cost=ModelCost(input=30.0, output=60.0),
            capabilities=set(_VISION),
        ),
        ModelDefinition(
            id="gpt-5-mini",
            provider="openai",
            display_name="GPT-5 Mini",
            context_window=128_000,
            max_output_tokens=16_384,
            cost=ModelCost(input=10.0, output=20.0),
            capabilities=set(_VISION),
        ),
        ModelDefinition(
            id="gpt-4.1",
            provider="openai",
            display_name="GPT-4.1",
            context_window=128_000,
            max_output_tokens=16_384,
            cost=ModelCost(input=10.0, output=30.0),
            capabilities=set(_VISION),
        ),
        ModelDefinition(
            id="gpt-4o",
            provider="openai",
            display_name="GPT-4o",
            context_window=128_000,
            max_output_tokens=16_384,
            cost=ModelCost(input=5.0, output=15.0),
            capabilities=set(_VISION),
        ),
        ModelDefinition(
            id="gpt-4o-mini",
            provider="openai",
            display_name="GPT-4o Mini",
            context_window=128_000,
            max_output_tokens=16_384,
            cost=ModelCost(input=0.15, output=0.60),
            capabilities=set(_VISION),
        ),
        ModelDefinition(
            id="gpt-4-turbo",
            provider="openai",
            display_name="GPT-4 Turbo",
            context_window=128_000,
            max_output_tokens=4_096,
            cost=ModelCost(input=10.0, output=30.0),
            capabilities=set(_VISION),
        ),
        ModelDefinition(
            id="o1-preview",
            provider="openai",
            display_name="o1 Preview",
            context_window=128_000,
            max_output_tokens=32_768,
            cost=ModelCost(input=15.0, output=60.0),
            capabilities=set(_VISION),
        ),
        ModelDefinition(
            id="o1-mini",
            provider="openai",
            display_name="o1 Mini",
            context_window=128_000,
            max_output_tokens=16_384,
            cost=ModelCost(input=3.0, output=12.0),
            capabilities=set(_TEXT),
        ),
        # ---------------------------------------------------------------
        # Anthropic
        # ---------------------------------------------------------------
        ModelDefinition(
            id="claude-3.5-sonnet",
            provider="anthropic",
            display_name="Claude 3.5 Sonnet",
            context_window=200_000,
            max_output_tokens=8_192,
            cost=ModelCost(input=3.0, output=15.0),
            capabilities=set(_VISION),
            api_model_id="claude-3-5-sonnet-20241022",
        ),
        ModelDefinition(
            id="claude-3.5-haiku",
            provider="anthropic",
            display_name="Claude 3.5 Haiku",
            context_window=200_000,
            max_output_tokens=4_096,
            cost=ModelCost(input=0.25, output=1.25),
            capabilities=set(_VISION),
            api_model_id="claude-3-5-haiku-20241022",
        ),
        ModelDefinition(
            id="claude-3-opus",
            provider="anthropic",
            display_name="Claude 3 Opus",
            context_window=200_000,
            max_output_tokens=4_096,
            cost=ModelCost(input=15.0, output=75.0),
            capabilities=set(_VISION),
            api_model_id="claude-3-opus-20240229",
        ),
        ModelDefinition(
            id="claude-3-sonnet",
            provider="anthropic",
            display_name="Claude 3 Sonnet",
            context_window=200_000,
            max_output_tokens=4_096,
            cost=ModelCost(input=3.0, output=15.0),
            capabilities=set(_VISION),
            api_model_id="claude-3-sonnet-20240229",
        ),
        ModelDefinition(
            id="claude-3-haiku",
            provider="anthropic",
            display_name="Claude 3 Haiku",
            context_window=200_000,
            max_output_tokens=4_096,
            cost=ModelCost(input=0.25, output=1.25),
            capabilities=set(_VISION),
            api_model_id="claude-3-haiku-20240307",
        ),
        # ---------------------------------------------------------------
        # Google
        # ---------------------------------------------------------------
        ModelDefinition(
            id="gemini-2.5-pro",
            provider="google",
            display_name="Gemini 2.5 Pro",
            context_window=2_000_000,
            max_output_tokens=8_192,
            cost=ModelCost(input=6.25, output=25.0),
            capabilities=set(_VISION),
        ),
        ModelDefinition(
            id="gemini-2.5-flash",
            provider="google",
            display_name="Gemini 2.5 Flash",
            context_window=1_000_000,
            max_output_tokens=8_192,
            cost=ModelCost(input=0.75, output=3.0),
            capabilities=set(_VISION),
        ),
        ModelDefinition(
            id="gemini-2.0-flash",
            provider="google",
            display_name="Gemini 2.0 Flash",
            context_window=1_000_000,
            max_output_tokens=8_192,
            cost=ModelCost(input=0.10, output=0.40),
            capabilities=set(_VISION),
        ),
        ModelDefinition(
            id="gemini-1.5-pro",
            provider="google",
            display_name="Gemini 1.5 Pro",
            context_window=1_000_000,
            max_output_tokens=8_192,
            cost=ModelCost(input=1.25, output=5.0),
            capabilities=set(_VISION),
        ),
        ModelDefinition(
            id="gemini-1.5-flash",
            provider="google",
            display_name="Gemini 1.5 Flash",
            context_window=1_000_000,
            max_output_tokens=8_192,
            cost=ModelCost(input=0.10, output=0.40),
            capabilities=set(_VISION),
        ),
        # ---------------------------------------------------------------
        # xAI
        # ---------------------------------------------------------------
        ModelDefinition(
            id="grok-3",
            provider="xai",
            display_name="Grok 3",
            context_window=128_000,
            max_output_tokens=8_192,
            cost=ModelCost(input=5.0, output=15.0),
            capabilities=set(_TEXT),
        ),
        ModelDefinition(
            id="grok-2",
            provider="xai",
            display_name="Grok 2",
            context_window=128_000,
            max_output_tokens=4_096,
            cost=ModelCost(input=2.0, output=10.0),
            capabilities=set(_TEXT),
        ),
        ModelDefinition(
            id="grok-vision",
            provider="xai",
            display_name="Grok Vision",
            context_window=128_000,
            max_output_tokens=4_096,
            cost=ModelCost(input=3.0, output=15.0),
            capabilities=set(_VISION),
            api_model_id="grok-vision-beta",
        ),
        # ---------------------------------------------------------------
        # DeepSeek
        # ---------------------------------------------------------------
        ModelDefinition(
            id="deepseek-v3",
            provider="deepseek",
            display_name="DeepSeek V3",
            context_window=128_000,
            max_output_tokens=8_192,
            cost=ModelCost(input=0.14, output=0.28),
            capabilities=set(_TEXT),
            api_model_id="deepseek-chat",
        ),
        ModelDefinition(
            id="deepseek-r1",
            provider="deepseek",
            display_name="DeepSeek R1",
            context_window=128_000,
            max_output_tokens=8_192,
            cost=ModelCost(input=0.55, output=2.2),
            capabilities=set(_TEXT),
            api_model_id="deepseek-reasoner",
        ),
        ModelDefinition(
            id="deepseek-coder",
            provider="deepseek",
            display_name="DeepSeek Coder",
            context_window=128_000,
            max_output_tokens=8_192,
            cost=ModelCost(input=0.14, output=0.28),
            capabilities=set(_TEXT),
        ),
    ]
