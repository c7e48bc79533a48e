"""
Base provider adapter interface.

An adapter owns one provider family's wire format: how a ``ChatInvocation``
becomes an HTTP request, how streamed frames become ``ChatEvent`` values, and
how failures become a ``ChatError``. Adapters never perform I/O; the proxy
sends the request and feeds frames back in.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from blockflow.errors import ChatError, ErrorKind, classify_status, parse_retry_after, scrub_secrets
from blockflow.invocation import ChatEvent, ChatInvocation
from blockflow.model_registry import TokenUsage


class ProviderFamily(str, Enum):
    """Closed set of wire formats the proxy speaks."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    COHERE = "cohere"
    OPENROUTER = "openrouter"


_SENSITIVE_HEADERS = {"authorization", "x-api-key", "x-goog-api-key"}


@dataclass
class OutboundRequest:
    """A fully-built provider HTTP request."""

    url: str
    headers: dict[str, str] = field(default_factory=dict)
    json: dict[str, Any] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict, repr=False)
    method: str = "POST"

    def redacted_headers(self) -> dict[str, str]:
        """Headers safe to log."""
        return {
            k: ("[redacted]" if k.lower() in _SENSITIVE_HEADERS else v)
            for k, v in self.headers.items()
        }


@dataclass
class ParsedResponse:
    """A non-streamed provider response."""

    content: str
    usage: TokenUsage | None = None
    finish_reason: str | None = None


class ProviderAdapter(ABC):
    """
    Abstract base class for provider adapters.

    Subclasses set ``family`` and ``stream_format`` and implement request
    building and response parsing for their wire format.

    Example implementation for a custom provider:

        class EchoAdapter(ProviderAdapter):
            family = ProviderFamily.OPENAI

            def build_request(self, invocation, api_key):
                return OutboundRequest(url=self.endpoint, json={...})

            def parse_stream_payload(self, payload):
                return [ChatEvent(delta=payload["text"])]

            def parse_response(self, body):
                return ParsedResponse(content=body["text"])
    """

    family: ClassVar[ProviderFamily]
    stream_format: ClassVar[str] = "sse"
    default_endpoint: ClassVar[str] = ""

    def __init__(
        self,
        provider: str,
        endpoint: str | None = None,
        default_max_tokens: int = 2048,
        default_temperature: float = 0.7,
    ) -> None:
        self.provider = provider
        self.endpoint = endpoint or self.default_endpoint
        self.default_max_tokens = default_max_tokens
        self.default_temperature = default_temperature

    # ------------------------------------------------------------------
    # Wire format
    # ------------------------------------------------------------------

    @abstractmethod
    def build_request(self, invocation: ChatInvocation, api_key: str) -> OutboundRequest:
        """Translate an invocation into a provider HTTP request."""
        ...

    @abstractmethod
    def parse_stream_payload(self, payload: dict[str, Any]) -> list[ChatEvent]:
        """
        Translate one decoded stream frame.

        Returned events carry text deltas and, when the frame has them, usage
        and finish reason. They are never final; the proxy emits the single
        terminal event itself.

        Raises:
            ProxyError: If the frame reports a provider error mid-stream.
        """
        ...

    @abstractmethod
    def parse_response(self, body: dict[str, Any]) -> ParsedResponse:
        """Translate a non-streamed JSON response."""
        ...

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def extract_error_message(self, body_text: str) -> str | None:
        """Pull the provider's error message out of an error body."""
        try:
            body = json.loads(body_text)
        except (json.JSONDecodeError, TypeError):
            return None
        if isinstance(body, list) and body:
            body = body[0]
        if not isinstance(body, dict):
            return None
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            return str(message) if message else None
        if isinstance(error, str):
            return error
        message = body.get("message")
        return str(message) if message else None

    def map_error(
        self,
        status: int,
        headers: Mapping[str, str],
        body_text: str,
        secrets: tuple[str | None, ...] = (),
    ) -> ChatError:
        """Normalize a non-2xx provider response."""
        kind = classify_status(status)
        detail = scrub_secrets(self.extract_error_message(body_text), secrets)
        raw_body = scrub_secrets(body_text, secrets)
        retry_after = parse_retry_after(headers.get("retry-after")) if kind is ErrorKind.RATE_LIMITED else None
        return ChatError(
            kind=kind,
            message=self.error_message(kind, status, detail),
            provider=self.provider,
            status_code=status,
            retry_after=retry_after,
            raw_body=raw_body,
        )

    def error_message(self, kind: ErrorKind, status: int, detail: str | None) -> str:
        """User-facing message for an upstream failure."""
        provider = self.provider
        if status == 401:
            return f"Invalid API key for {provider} - please check your credentials"
        if status == 403:
            return f"Access denied for {provider} - check your API key permissions"
        if kind is ErrorKind.RATE_LIMITED:
            return f"Rate limit exceeded for {provider} - please wait and try again"
        if status == 402:
            return f"Insufficient credits for {provider}"
        if kind is ErrorKind.PROVIDER_UNAVAILABLE:
            return f"{provider} service is temporarily unavailable"
        if detail:
            return f"{provider} API error: {detail}"
        return f"{provider} API error ({status})"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def max_tokens(self, invocation: ChatInvocation) -> int:
        return invocation.params.max_tokens or self.default_max_tokens

    def temperature(self, invocation: ChatInvocation) -> float:
        if invocation.params.temperature is not None:
            return invocation.params.temperature
        return self.default_temperature

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider={self.provider!r}, endpoint={self.endpoint!r})"
