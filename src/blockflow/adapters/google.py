"""
Google Gemini (Generative Language API) adapter.

The model is part of the URL path and the API key is passed as the ``key``
query parameter, kept in ``OutboundRequest.params`` so it never appears in a
logged URL.
"""

from __future__ import annotations

from typing import Any

from blockflow.adapters.base import OutboundRequest, ParsedResponse, ProviderAdapter, ProviderFamily
from blockflow.adapters.transform import alternating_turns
from blockflow.errors import ChatError, ErrorKind, ProxyError
from blockflow.invocation import ChatEvent, ChatInvocation
from blockflow.model_registry import TokenUsage

_BLOCKED_FINISH_REASONS = {"SAFETY", "RECITATION", "BLOCKLIST", "PROHIBITED_CONTENT"}


def _usage(metadata: dict[str, Any] | None) -> TokenUsage | None:
    if not metadata:
        return None
    return TokenUsage(
        input_tokens=metadata.get("promptTokenCount", 0) or 0,
        output_tokens=metadata.get("candidatesTokenCount", 0) or 0,
    )


def _candidate_text(candidate: dict[str, Any]) -> str:
    parts = (candidate.get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


class GoogleAdapter(ProviderAdapter):
    """Adapter for ``models/{model}:streamGenerateContent`` and ``:generateContent``."""

    family = ProviderFamily.GOOGLE
    default_endpoint = "https://generativelanguage.googleapis.com/v1beta/models"

    def __init__(
        self,
        provider: str = "google",
        endpoint: str | None = None,
        default_max_tokens: int = 2048,
        default_temperature: float = 0.7,
    ) -> None:
        super().__init__(provider, endpoint, default_max_tokens, default_temperature)

    def _convert_messages(self, invocation: ChatInvocation) -> list[dict[str, Any]]:
        return [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in alternating_turns(invocation.messages)
        ]

    def build_request(self, invocation: ChatInvocation, api_key: str) -> OutboundRequest:
        params = invocation.params
        generation_config: dict[str, Any] = {
            "temperature": self.temperature(invocation),
            "maxOutputTokens": self.max_tokens(invocation),
        }
        if params.top_p is not None:
            generation_config["topP"] = params.top_p
        if params.frequency_penalty is not None:
            generation_config["frequencyPenalty"] = params.frequency_penalty
        if params.presence_penalty is not None:
            generation_config["presencePenalty"] = params.presence_penalty

        body: dict[str, Any] = {
            "contents": self._convert_messages(invocation),
            "generationConfig": generation_config,
        }
        system = invocation.system_prompt
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}

        base = self.endpoint.rstrip("/")
        if invocation.stream:
            url = f"{base}/{invocation.model}:streamGenerateContent"
            query = {"key": api_key, "alt": "sse"}
        else:
            url = f"{base}/{invocation.model}:generateContent"
            query = {"key": api_key}

        return OutboundRequest(
            url=url,
            headers={"Content-Type": "application/json"},
            json=body,
            params=query,
        )

    def parse_stream_payload(self, payload: dict[str, Any]) -> list[ChatEvent]:
        if "error" in payload:
            error = payload["error"]
            if isinstance(error, dict):
                message = error.get("message") or "unknown error"
                code = error.get("code")
            else:
                message = str(error or "unknown error")
                code = None
            raise ProxyError(
                ChatError(
                    kind=ErrorKind.UNKNOWN,
                    message=f"{self.provider} stream error: {message}",
                    provider=self.provider,
                    status_code=code if isinstance(code, int) else None,
                )
            )

        events: list[ChatEvent] = []
        candidates = payload.get("candidates") or []
        if candidates:
            candidate = candidates[0]
            text = _candidate_text(candidate)
            finish_reason = candidate.get("finishReason")
            if text or finish_reason:
                events.append(ChatEvent(delta=text, finish_reason=finish_reason))

        usage = _usage(payload.get("usageMetadata"))
        if usage is not None:
            events.append(ChatEvent(usage=usage))
        return events

    def parse_response(self, body: dict[str, Any]) -> ParsedResponse:
        candidates = body.get("candidates") or []
        if not candidates:
            block_reason = (body.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                raise ProxyError(
                    ChatError(
                        kind=ErrorKind.INVALID_REQUEST,
                        message=f"{self.provider} blocked the prompt ({block_reason})",
                        provider=self.provider,
                    )
                )
            return ParsedResponse(content="", usage=_usage(body.get("usageMetadata")))

        candidate = candidates[0]
        finish_reason = candidate.get("finishReason")
        text = _candidate_text(candidate)
        if not text and finish_reason in _BLOCKED_FINISH_REASONS:
            raise ProxyError(
                ChatError(
                    kind=ErrorKind.INVALID_REQUEST,
                    message=f"{self.provider} blocked the response ({finish_reason})",
                    provider=self.provider,
                )
            )
        return ParsedResponse(
            content=text,
            usage=_usage(body.get("usageMetadata")),
            finish_reason=finish_reason,
        )
