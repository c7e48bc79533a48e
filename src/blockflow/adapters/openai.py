"""
OpenAI chat-completions adapter.

Serves OpenAI itself and every provider exposing the same
``/chat/completions`` shape (xAI, DeepSeek, Mistral, Groq, Together,
Perplexity). Only the endpoint differs between them.
"""

from __future__ import annotations

import re
from typing import Any, TypedDict

from blockflow.adapters.base import OutboundRequest, ParsedResponse, ProviderAdapter, ProviderFamily
from blockflow.errors import ChatError, ErrorKind, ProxyError
from blockflow.invocation import ChatEvent, ChatInvocation
from blockflow.model_registry import TokenUsage

OPENAI_COMPATIBLE_ENDPOINTS: dict[str, str] = {
    "openai": "https://api.openai.com/v1/chat/completions",
    "xai": "https://api.x.ai/v1/chat/completions",
    "deepseek": "https://api.deepseek.com/v1/chat/completions",
    "mistral": "https://api.mistral.ai/v1/chat/completions",
    "groq": "https://api.groq.com/openai/v1/chat/completions",
    "together": "https://api.together.xyz/v1/chat/completions",
    "perplexity": "https://api.perplexity.ai/chat/completions",
}

# Models that take max_completion_tokens and reject a custom temperature.
_NEWER_MODEL_PATTERN = re.compile(r"^(gpt-5(?!-image)|gpt-4\.1|o1|o3|o4)")


class OpenAIMessage(TypedDict):
    """OpenAI message format."""

    role: str
    content: str


def is_newer_openai_model(model: str) -> bool:
    return bool(_NEWER_MODEL_PATTERN.match(model.lower()))


def usage_from_openai(data: dict[str, Any] | None) -> TokenUsage | None:
    if not data:
        return None
    return TokenUsage(
        input_tokens=data.get("prompt_tokens", 0) or 0,
        output_tokens=data.get("completion_tokens", 0) or 0,
    )


class OpenAIAdapter(ProviderAdapter):
    """
    Adapter for OpenAI-shaped chat completions.

    Example:
        adapter = OpenAIAdapter("xai", OPENAI_COMPATIBLE_ENDPOINTS["xai"])
        request = adapter.build_request(invocation, api_key)
    """

    family = ProviderFamily.OPENAI
    default_endpoint = OPENAI_COMPATIBLE_ENDPOINTS["openai"]

    def __init__(
        self,
        provider: str = "openai",
        endpoint: str | None = None,
        default_max_tokens: int = 2048,
        default_temperature: float = 0.7,
    ) -> None:
        super().__init__(
            provider,
            endpoint or OPENAI_COMPATIBLE_ENDPOINTS.get(provider),
            default_max_tokens,
            default_temperature,
        )

    def _convert_messages(self, invocation: ChatInvocation) -> list[OpenAIMessage]:
        return [
            {"role": m.role, "content": m.content}
            for m in invocation.messages
            if m.content or m.role == "user"
        ]

    def request_model(self, invocation: ChatInvocation) -> str:
        return invocation.model

    def build_headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def build_request(self, invocation: ChatInvocation, api_key: str) -> OutboundRequest:
        params = invocation.params
        body: dict[str, Any] = {
            "model": self.request_model(invocation),
            "messages": self._convert_messages(invocation),
            "stream": invocation.stream,
        }

        if self.provider == "openai" and is_newer_openai_model(invocation.model):
            body["max_completion_tokens"] = self.max_tokens(invocation)
        else:
            body["max_tokens"] = self.max_tokens(invocation)
            body["temperature"] = self.temperature(invocation)
            if params.top_p is not None:
                body["top_p"] = params.top_p
            if params.frequency_penalty is not None:
                body["frequency_penalty"] = params.frequency_penalty
            if params.presence_penalty is not None:
                body["presence_penalty"] = params.presence_penalty

        if invocation.stream and self.provider == "openai":
            body["stream_options"] = {"include_usage": True}

        return OutboundRequest(url=self.endpoint, headers=self.build_headers(api_key), json=body)

    def parse_stream_payload(self, payload: dict[str, Any]) -> list[ChatEvent]:
        if "error" in payload:
            self._raise_stream_error(payload["error"])

        events: list[ChatEvent] = []
        choices = payload.get("choices") or []
        if choices:
            choice = choices[0]
            content = (choice.get("delta") or {}).get("content")
            finish_reason = choice.get("finish_reason")
            if content or finish_reason:
                events.append(ChatEvent(delta=content or "", finish_reason=finish_reason))

        usage = usage_from_openai(payload.get("usage"))
        if usage is not None:
            events.append(ChatEvent(usage=usage))
        return events

    def parse_response(self, body: dict[str, Any]) -> ParsedResponse:
        choices = body.get("choices") or [{}]
        message = choices[0].get("message") or {}
        return ParsedResponse(
            content=message.get("content") or "",
            usage=usage_from_openai(body.get("usage")),
            finish_reason=choices[0].get("finish_reason"),
        )

    def _raise_stream_error(self, error: Any) -> None:
        message = error.get("message") if isinstance(error, dict) else str(error)
        code = str(error.get("code") or error.get("type") or "") if isinstance(error, dict) else ""
        if "rate" in code:
            kind = ErrorKind.RATE_LIMITED
        elif "server" in code or "overloaded" in code:
            kind = ErrorKind.PROVIDER_UNAVAILABLE
        else:
            kind = ErrorKind.UNKNOWN
        raise ProxyError(
            ChatError(
                kind=kind,
                message=f"{self.provider} stream error: {message}",
                provider=self.provider,
            )
        )
