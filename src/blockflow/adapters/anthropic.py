"""
Anthropic Messages API adapter.

The system prompt travels as a top-level field, turns must alternate starting
with the user, and ``max_tokens`` is mandatory.
"""

from __future__ import annotations

from typing import Any, TypedDict

from blockflow.adapters.base import OutboundRequest, ParsedResponse, ProviderAdapter, ProviderFamily
from blockflow.adapters.transform import alternating_turns
from blockflow.errors import ChatError, ErrorKind, ProxyError
from blockflow.invocation import ChatEvent, ChatInvocation
from blockflow.model_registry import TokenUsage

ANTHROPIC_VERSION = "2023-06-01"

_STREAM_ERROR_KINDS = {
    "authentication_error": ErrorKind.AUTH_FAILED,
    "permission_error": ErrorKind.AUTH_FAILED,
    "rate_limit_error": ErrorKind.RATE_LIMITED,
    "invalid_request_error": ErrorKind.INVALID_REQUEST,
    "overloaded_error": ErrorKind.PROVIDER_UNAVAILABLE,
    "api_error": ErrorKind.PROVIDER_UNAVAILABLE,
}


class AnthropicTextBlock(TypedDict):
    type: str
    text: str


class AnthropicMessage(TypedDict):
    """Anthropic message format."""

    role: str
    content: list[AnthropicTextBlock]


class AnthropicAdapter(ProviderAdapter):
    """Adapter for ``POST /v1/messages``."""

    family = ProviderFamily.ANTHROPIC
    default_endpoint = "https://api.anthropic.com/v1/messages"

    def __init__(
        self,
        provider: str = "anthropic",
        endpoint: str | None = None,
        default_max_tokens: int = 2048,
        default_temperature: float = 0.7,
    ) -> None:
        super().__init__(provider, endpoint, default_max_tokens, default_temperature)

    def _convert_messages(self, invocation: ChatInvocation) -> list[AnthropicMessage]:
        return [
            {"role": m.role, "content": [{"type": "text", "text": m.content}]}
            for m in alternating_turns(invocation.messages)
        ]

    def build_request(self, invocation: ChatInvocation, api_key: str) -> OutboundRequest:
        params = invocation.params
        body: dict[str, Any] = {
            "model": invocation.model,
            "max_tokens": self.max_tokens(invocation),
            "temperature": self.temperature(invocation),
            "messages": self._convert_messages(invocation),
            "stream": invocation.stream,
        }
        system = invocation.system_prompt
        if system:
            body["system"] = system
        if params.top_p is not None:
            body["top_p"] = params.top_p

        headers = {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }
        return OutboundRequest(url=self.endpoint, headers=headers, json=body)

    def parse_stream_payload(self, payload: dict[str, Any]) -> list[ChatEvent]:
        event_type = payload.get("type") or payload.get("event")

        if event_type == "content_block_delta":
            delta = payload.get("delta") or {}
            text = delta.get("text")
            return [ChatEvent(delta=text)] if text else []

        if event_type == "message_start":
            usage = (payload.get("message") or {}).get("usage") or {}
            if usage:
                return [ChatEvent(usage=TokenUsage(input_tokens=usage.get("input_tokens", 0) or 0))]
            return []

        if event_type == "message_delta":
            usage = payload.get("usage") or {}
            stop_reason = (payload.get("delta") or {}).get("stop_reason")
            return [
                ChatEvent(
                    usage=TokenUsage(output_tokens=usage.get("output_tokens", 0) or 0),
                    finish_reason=stop_reason,
                )
            ]

        if event_type == "error":
            error = payload.get("error")
            if not isinstance(error, dict):
                error = {"message": str(error or "unknown error")}
            kind = _STREAM_ERROR_KINDS.get(error.get("type", ""), ErrorKind.UNKNOWN)
            if kind is ErrorKind.AUTH_FAILED:
                message = f"Invalid API key for {self.provider} - please check your credentials"
            else:
                message = f"{self.provider} stream error: {error.get('message', 'unknown error')}"
            raise ProxyError(ChatError(kind=kind, message=message, provider=self.provider))

        return []

    def parse_response(self, body: dict[str, Any]) -> ParsedResponse:
        text = "".join(
            block.get("text", "")
            for block in body.get("content") or []
            if block.get("type") == "text"
        )
        usage_data = body.get("usage") or {}
        usage = TokenUsage(
            input_tokens=usage_data.get("input_tokens", 0) or 0,
            output_tokens=usage_data.get("output_tokens", 0) or 0,
        ) if usage_data else None
        return ParsedResponse(content=text, usage=usage, finish_reason=body.get("stop_reason"))

    def error_message(self, kind: ErrorKind, status: int, detail: str | None) -> str:
        if status == 529:
            return f"{self.provider} is overloaded - please try again shortly"
        return super().error_message(kind, status, detail)
