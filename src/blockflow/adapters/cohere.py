"""
Cohere chat adapter.

Cohere's v1 chat API takes the latest user turn as ``message``, earlier turns
as ``chat_history`` with ``USER``/``CHATBOT`` roles, the system prompt as
``preamble``, and streams newline-delimited JSON.
"""

from __future__ import annotations

from typing import Any

from blockflow.adapters.base import OutboundRequest, ParsedResponse, ProviderAdapter, ProviderFamily
from blockflow.adapters.transform import drop_empty
from blockflow.errors import ChatError, ErrorKind, ProxyError
from blockflow.invocation import ChatEvent, ChatInvocation
from blockflow.model_registry import TokenUsage

_ROLE_MAP = {"user": "USER", "assistant": "CHATBOT"}


def _usage(meta: dict[str, Any] | None) -> TokenUsage | None:
    tokens = (meta or {}).get("billed_units") or (meta or {}).get("tokens")
    if not tokens:
        return None
    return TokenUsage(
        input_tokens=int(tokens.get("input_tokens", 0) or 0),
        output_tokens=int(tokens.get("output_tokens", 0) or 0),
    )


class CohereAdapter(ProviderAdapter):
    """Adapter for ``POST /v1/chat``."""

    family = ProviderFamily.COHERE
    stream_format = "jsonl"
    default_endpoint = "https://api.cohere.ai/v1/chat"

    def __init__(
        self,
        provider: str = "cohere",
        endpoint: str | None = None,
        default_max_tokens: int = 2048,
        default_temperature: float = 0.7,
    ) -> None:
        super().__init__(provider, endpoint, default_max_tokens, default_temperature)

    def build_request(self, invocation: ChatInvocation, api_key: str) -> OutboundRequest:
        dialogue = drop_empty(invocation.conversation())
        if dialogue and dialogue[-1].role == "user":
            message, history = dialogue[-1].content, dialogue[:-1]
        else:
            message, history = "", dialogue

        body: dict[str, Any] = {
            "model": invocation.model,
            "message": message,
            "chat_history": [
                {"role": _ROLE_MAP.get(m.role, "USER"), "message": m.content} for m in history
            ],
            "max_tokens": self.max_tokens(invocation),
            "temperature": self.temperature(invocation),
            "stream": invocation.stream,
        }
        system = invocation.system_prompt
        if system:
            body["preamble"] = system
        params = invocation.params
        if params.top_p is not None:
            body["p"] = params.top_p
        if params.frequency_penalty is not None:
            body["frequency_penalty"] = params.frequency_penalty
        if params.presence_penalty is not None:
            body["presence_penalty"] = params.presence_penalty

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        return OutboundRequest(url=self.endpoint, headers=headers, json=body)

    def parse_stream_payload(self, payload: dict[str, Any]) -> list[ChatEvent]:
        event_type = payload.get("event_type")

        if event_type == "text-generation":
            text = payload.get("text")
            return [ChatEvent(delta=text)] if text else []

        if event_type == "stream-end":
            finish_reason = payload.get("finish_reason")
            if finish_reason == "ERROR":
                raise ProxyError(
                    ChatError(
                        kind=ErrorKind.PROVIDER_UNAVAILABLE,
                        message=f"{self.provider} stream ended with an error",
                        provider=self.provider,
                    )
                )
            response = payload.get("response") or {}
            return [ChatEvent(usage=_usage(response.get("meta")), finish_reason=finish_reason)]

        return []

    def parse_response(self, body: dict[str, Any]) -> ParsedResponse:
        return ParsedResponse(
            content=body.get("text") or "",
            usage=_usage(body.get("meta")),
            finish_reason=body.get("finish_reason"),
        )
