"""
Model catalog for canvas blocks.

Each block names a model by its catalog id. The ModelRegistry maps that id
to its provider and to the identifier the provider API expects, and prices
replies from their token usage.

Example:
    from blockflow.model_registry import ModelRegistry

    registry = ModelRegistry()
    registry.load_defaults()

    model = registry.get("claude-3.5-sonnet")
    model.api_model_id           # "claude-3-5-sonnet-20241022"
    registry.resolve_provider("gemini-2.5-pro")  # "google"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from blockflow.errors import ConfigurationError


@dataclass
class ModelCost:
    """Pricing per million tokens."""

    input: float = 0.0
    output: float = 0.0


@dataclass
class TokenUsage:
    """Prompt and completion token counts reported for one provider call."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def calculate_cost(self, cost: ModelCost) -> CostBreakdown:
        """Calculate dollar cost from pricing."""
        input_cost = (cost.input / 1_000_000) * self.input_tokens
        output_cost = (cost.output / 1_000_000) * self.output_tokens
        return CostBreakdown(
            input=input_cost,
            output=output_cost,
            total=input_cost + output_cost,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


@dataclass
class CostBreakdown:
    """Dollar cost of one reply, split by direction."""

    input: float = 0.0
    output: float = 0.0
    total: float = 0.0


@dataclass
class ModelDefinition:
    """
    Metadata for an LLM model.

    Attributes:
        id: Identifier used on blocks (e.g., "gpt-4o", "claude-3.5-sonnet").
        provider: Provider name (e.g., "openai", "anthropic", "google").
        display_name: Human-readable name, also used in the identity preamble.
        context_window: Maximum input tokens the model accepts.
        max_output_tokens: Maximum tokens the model can generate.
        cost: Pricing per million tokens.
        capabilities: Feature set (e.g., {"text", "vision", "image_generation"}).
        api_model_id: Identifier sent to the provider API. Defaults to ``id``.
    """

    id: str
    provider: str
    display_name: str = ""
    context_window: int = 128_000
    max_output_tokens: int = 4096
    cost: ModelCost = field(default_factory=ModelCost)
    capabilities: set[str] = field(default_factory=lambda: {"text"})
    api_model_id: str = ""

    def __post_init__(self) -> None:
        if not self.display_name:
            self.display_name = self.id
        if not self.api_model_id:
            self.api_model_id = self.id

    def supports(self, capability: str) -> bool:
        """Check if this model supports a given capability."""
        return capability in self.capabilities


class ModelRegistry:
    """Catalog lookup by block model id, with provider resolution and pricing."""

    def __init__(self) -> None:
        self._models: dict[str, ModelDefinition] = {}

    def register(self, model: ModelDefinition) -> None:
        """Register a model definition. Overwrites any existing entry with the same ID."""
        self._models[model.id] = model

    def unregister(self, model_id: str) -> bool:
        """Remove a model by ID. Returns True if it existed."""
        return self._models.pop(model_id, None) is not None

    def get(self, model_id: str) -> ModelDefinition | None:
        """Get a model by exact ID."""
        return self._models.get(model_id)

    def lookup(self, model_id: str) -> ModelDefinition | None:
        """Get a model by ID, falling back to the provider-side API ID."""
        model = self._models.get(model_id)
        if model is not None:
            return model
        for candidate in self._models.values():
            if candidate.api_model_id == model_id:
                return candidate
        return None

    def find(self, query: str) -> list[ModelDefinition]:
        """Find models whose ID or display_name contains the query (case-insensitive)."""
        q = query.lower()
        return [
            m
            for m in self._models.values()
            if q in m.id.lower() or q in m.display_name.lower()
        ]

    def list_by_provider(self, provider: str) -> list[ModelDefinition]:
        """List all models from a given provider."""
        return [m for m in self._models.values() if m.provider == provider]

    def all(self) -> list[ModelDefinition]:
        """Return all registered models."""
        return list(self._models.values())

    @property
    def count(self) -> int:
        return len(self._models)

    def resolve_provider(self, model_id: str) -> str:
        """
        Return the provider that serves ``model_id``.

        Raises:
            ConfigurationError: If the model is not in the catalog.
        """
        model = self.get(model_id)
        if model is None:
            raise ConfigurationError(f"Unknown model '{model_id}'")
        return model.provider

    def api_model_id(self, model_id: str) -> str:
        """Identifier the provider API expects; unknown ids pass through unchanged."""
        model = self.get(model_id)
        return model.api_model_id if model else model_id

    def display_name(self, model_id: str) -> str:
        model = self.get(model_id)
        return model.display_name if model else model_id

    def calculate_cost(self, model_id: str, usage: TokenUsage) -> CostBreakdown:
        """Calculate cost for a model given token usage. Returns zero cost if model not found."""
        model = self.lookup(model_id)
        if model is None:
            return CostBreakdown()
        return usage.calculate_cost(model.cost)

    def load_defaults(self) -> int:
        """
        Load built-in model definitions from the catalog.

        Returns the number of models loaded.
        """
        from blockflow.models_catalog import get_default_models

        models = get_default_models()
        for model in models:
            self.register(model)
        return len(models)

    def load_from_dicts(self, model_dicts: list[dict[str, Any]]) -> int:
        """
        Load models from a list of dictionaries (e.g., from YAML config).

        Each dict should have keys matching ModelDefinition fields.
        Returns the number of models loaded.
        """
        count = 0
        for d in model_dicts:
            cost_data = d.get("cost", {})
            cost = ModelCost(
                input=cost_data.get("input", 0.0),
                output=cost_data.get("output", 0.0),
            )
            caps = d.get("capabilities", ["text"])
            model = ModelDefinition(
                id=d["id"],
                provider=d.get("provider", ""),
                display_name=d.get("display_name", ""),
                context_window=d.get("context_window", 128_000),
                max_output_tokens=d.get("max_output_tokens", 4096),
                cost=cost,
                capabilities=set(caps) if isinstance(caps, list) else caps,
                api_model_id=d.get("api_model_id", ""),
            )
            self.register(model)
            count += 1
        return count
