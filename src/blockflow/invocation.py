"""
Provider-neutral request and response types.

A ``ChatInvocation`` is what the proxy receives; ``ChatEvent`` values are what
it streams back, closed by a single event with ``is_final=True`` (or by a
``ChatError``). Adapters translate between these and each provider's wire
format.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import Any

from blockflow.model_registry import TokenUsage

CHAT_ROLES = ("system", "user", "assistant")


@dataclass
class ChatMessage:
    """A single message in provider-neutral form."""

    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class GenerationParams:
    """Sampling parameters. ``None`` means "use the provider/default value"."""

    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GenerationParams:
        """Accepts snake_case and camelCase keys."""
        data = data or {}
        if not isinstance(data, dict):
            raise ValueError("params must be an object")

        def pick(*keys: str) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        return cls(
            temperature=pick("temperature"),
            max_tokens=pick("max_tokens", "maxTokens"),
            top_p=pick("top_p", "topP"),
            frequency_penalty=pick("frequency_penalty", "frequencyPenalty"),
            presence_penalty=pick("presence_penalty", "presencePenalty"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            k: v
            for k, v in (
                ("temperature", self.temperature),
                ("max_tokens", self.max_tokens),
                ("top_p", self.top_p),
                ("frequency_penalty", self.frequency_penalty),
                ("presence_penalty", self.presence_penalty),
            )
            if v is not None
        }


@dataclass
class ChatInvocation:
    """
    One request to a model provider.

    Attributes:
        provider: Provider name.
        model: Model identifier as sent to the provider.
        messages: Ordered conversation, system messages included.
        params: Sampling parameters.
        credential: Decrypted API key, if the caller already holds one.
        credential_ref: Stored credential id to decrypt instead.
        stream: Stream deltas (True) or return one response (False).
        is_retry: Set on the transparent retry so it is never retried again.
        invocation_id: Correlation id for logs.
    """

    provider: str
    model: str
    messages: list[ChatMessage]
    params: GenerationParams = field(default_factory=GenerationParams)
    credential: str | None = field(default=None, repr=False)
    credential_ref: str | None = None
    stream: bool = True
    is_retry: bool = False
    invocation_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def system_prompt(self) -> str:
        return "\n\n".join(m.content for m in self.messages if m.role == "system")

    def conversation(self) -> list[ChatMessage]:
        """Messages without system entries."""
        return [m for m in self.messages if m.role != "system"]

    def as_retry(self) -> ChatInvocation:
        return replace(self, is_retry=True)

    @classmethod
    def from_request(cls, body: dict[str, Any]) -> ChatInvocation:
        """
        Parse the inbound JSON body of ``POST /api/chat``.

        Raises:
            ValueError: If provider, model or messages are missing or malformed.
        """
        provider = body.get("provider")
        model = body.get("model")
        raw_messages = body.get("messages")
        if not provider or not isinstance(provider, str):
            raise ValueError("'provider' is required")
        if not model or not isinstance(model, str):
            raise ValueError("'model' is required")
        if not isinstance(raw_messages, list):
            raise ValueError("'messages' must be a list")

        messages = []
        for item in raw_messages:
            if not isinstance(item, dict) or "role" not in item:
                raise ValueError("Each message needs a 'role' and 'content'")
            messages.append(ChatMessage(role=str(item["role"]), content=str(item.get("content") or "")))

        return cls(
            provider=provider.lower(),
            model=model,
            messages=messages,
            params=GenerationParams.from_dict(body.get("params") or body),
            credential_ref=body.get("credential_ref"),
            stream=bool(body.get("stream", True)),
        )


@dataclass
class ChatEvent:
    """
    A streamed unit of model output.

    Attributes:
        delta: Text appended by this event.
        is_final: True on the single terminal event of a successful stream.
        usage: Token counts, present on the final event when known.
        finish_reason: Provider stop reason, present on the final event.
    """

    delta: str = ""
    is_final: bool = False
    usage: TokenUsage | None = None
    finish_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": "done" if self.is_final else "delta"}
        if self.delta:
            data["delta"] = self.delta
        if self.usage is not None:
            data["usage"] = self.usage.to_dict()
        if self.finish_reason:
            data["finish_reason"] = self.finish_reason
        return data


@dataclass
class ChatResult:
    """A complete (non-streamed or drained) model response."""

    content: str
    provider: str
    model: str
    usage: TokenUsage | None = None
    finish_reason: str | None = None
    latency_ms: int = 0
    cost: float = 0.0

    @property
    def estimated_tokens(self) -> int:
        """Token count reported by the provider, or a length-based estimate."""
        if self.usage is not None and self.usage.total_tokens:
            return self.usage.total_tokens
        return len(self.content) // 4

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "provider": self.provider,
            "model": self.model,
            "usage": self.usage.to_dict() if self.usage else None,
            "finish_reason": self.finish_reason,
            "meta": {
                "tokens": self.estimated_tokens,
                "model": self.model,
                "latency_ms": self.latency_ms,
                "cost": self.cost,
            },
        }
