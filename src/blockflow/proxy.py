"""
Provider proxy: one normalized entry point to every model provider.

``ProviderProxy.dispatch`` takes a ``ChatInvocation`` and yields
``ChatEvent`` values, finished by exactly one terminal item: a final
``ChatEvent`` on success or a ``ChatError`` on failure. Provider-specific
wire formats live in the adapters; this module owns credentials, the HTTP
call, error normalization, the single transparent retry and cancellation.

Example:
    async with ProviderProxy(AdapterRegistry.default(config), config) as proxy:
        async for item in proxy.dispatch(invocation):
            if isinstance(item, ChatError):
                ...
            elif item.is_final:
                ...
            else:
                print(item.delta, end="")
"""

from __future__ import annotations

import asyncio
import json
import random
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from dataclasses import replace

import httpx

from blockflow.adapters.base import ProviderAdapter
from blockflow.adapters.registry import AdapterRegistry
from blockflow.config import BlockflowConfig
from blockflow.errors import ChatError, ErrorKind, ProxyError, VaultError
from blockflow.invocation import CHAT_ROLES, ChatEvent, ChatInvocation, ChatResult
from blockflow.logging import get_logger
from blockflow.model_registry import ModelRegistry, TokenUsage
from blockflow.store.base import GraphStore
from blockflow.transports import get_decoder
from blockflow.vault import CredentialVault

logger = get_logger("proxy")

SleepFunc = Callable[[float], Awaitable[None]]


def _merge_usage(current: TokenUsage | None, update: TokenUsage) -> TokenUsage:
    # Providers report usage either split across frames or cumulatively.
    if current is None:
        return TokenUsage(update.input_tokens, update.output_tokens)
    return TokenUsage(
        input_tokens=max(current.input_tokens, update.input_tokens),
        output_tokens=max(current.output_tokens, update.output_tokens),
    )


class ProviderProxy:
    """
    Dispatches chat invocations to providers over ``httpx``.

    Args:
        registry: Adapter registry (defaults to every built-in provider).
        config: Timeouts and retry policy.
        client: Shared ``httpx.AsyncClient``; created (and owned) if omitted.
        store: Credential lookup for ``credential_ref`` invocations.
        vault: Decrypts stored credentials.
        models: Model catalog used for cost metadata in ``complete``.
        sleep: Awaitable used for retry backoff.
        rng: Source of jitter in ``[0, 1)``.

    Thread Safety:
        The proxy holds no per-invocation state, so one instance serves any
        number of concurrent dispatches on the same event loop.
    """

    def __init__(
        self,
        registry: AdapterRegistry | None = None,
        config: BlockflowConfig | None = None,
        client: httpx.AsyncClient | None = None,
        store: GraphStore | None = None,
        vault: CredentialVault | None = None,
        models: ModelRegistry | None = None,
        sleep: SleepFunc = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.config = config or (registry.config if registry is not None else BlockflowConfig())
        self.registry = registry or AdapterRegistry.default(self.config)
        self.timeout = httpx.Timeout(self.config.request_timeout, connect=self.config.connect_timeout)
        self._client = client or httpx.AsyncClient(timeout=self.timeout)
        self._owns_client = client is None
        self._store = store
        self._vault = vault
        self._models = models
        self._sleep = sleep
        self._rng = rng

    async def __aenter__(self) -> ProviderProxy:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def dispatch(self, invocation: ChatInvocation) -> AsyncIterator[ChatEvent | ChatError]:
        """
        Send an invocation and relay the provider's output.

        Yields text-delta ``ChatEvent`` values followed by exactly one
        terminal item. Closing the iterator early (or cancelling the task
        consuming it) closes the upstream response.
        """
        provider = invocation.provider
        if not self.registry.is_supported(provider):
            logger.warning("Rejected invocation %s: unsupported provider %r", invocation.invocation_id, provider)
            yield ChatError(
                kind=ErrorKind.UNSUPPORTED_PROVIDER,
                message=f"Unsupported provider: {provider}",
                provider=provider,
            )
            return

        invalid = self._validate(invocation)
        if invalid is not None:
            yield invalid
            return

        try:
            api_key = self._resolve_credential(invocation)
        except ProxyError as e:
            yield e.error
            return

        adapter = self.registry.resolve(provider, api_key)
        logger.info(
            "Dispatching %s to %s (model=%s, via=%s, stream=%s)",
            invocation.invocation_id,
            provider,
            invocation.model,
            adapter.provider,
            invocation.stream,
        )

        current = invocation
        while True:
            relayed = False
            try:
                async with aclosing(self._attempt(adapter, current, api_key)) as events:
                    async for event in events:
                        if event.delta:
                            relayed = True
                        yield event
                return
            except ProxyError as e:
                error = e.error

            delay = self._retry_delay(error, current, relayed)
            if delay is None:
                logger.warning(
                    "Invocation %s failed: %s (%s)",
                    current.invocation_id,
                    error.kind.value,
                    error.message,
                )
                yield error
                return

            logger.info(
                "Retrying %s after %s in %.2fs",
                current.invocation_id,
                error.kind.value,
                delay,
            )
            await self._sleep(delay)
            current = current.as_retry()

    async def complete(self, invocation: ChatInvocation) -> ChatResult:
        """
        Run an invocation without streaming and return the whole response.

        Raises:
            ProxyError: If the dispatch ends in a ``ChatError``.
        """
        invocation = replace(invocation, stream=False)
        started = time.monotonic()
        parts: list[str] = []
        usage: TokenUsage | None = None
        finish_reason: str | None = None

        async with aclosing(self.dispatch(invocation)) as items:
            async for item in items:
                if isinstance(item, ChatError):
                    raise ProxyError(item)
                parts.append(item.delta)
                if item.is_final:
                    usage = item.usage
                    finish_reason = item.finish_reason

        cost = 0.0
        if self._models is not None and usage is not None:
            cost = self._models.calculate_cost(invocation.model, usage).total
        return ChatResult(
            content="".join(parts),
            provider=invocation.provider,
            model=invocation.model,
            usage=usage,
            finish_reason=finish_reason,
            latency_ms=int((time.monotonic() - started) * 1000),
            cost=cost,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate(self, invocation: ChatInvocation) -> ChatError | None:
        if not invocation.messages:
            problem = "At least one message is required"
        elif any(m.role not in CHAT_ROLES for m in invocation.messages):
            bad = sorted({m.role for m in invocation.messages if m.role not in CHAT_ROLES})
            problem = f"Unsupported message role(s): {', '.join(bad)}"
        elif not invocation.conversation():
            problem = "At least one user or assistant message is required"
        else:
            return None
        return ChatError(kind=ErrorKind.INVALID_REQUEST, message=problem, provider=invocation.provider)

    def _resolve_credential(self, invocation: ChatInvocation) -> str:
        provider = invocation.provider
        if invocation.credential:
            return invocation.credential

        if invocation.credential_ref and self._store is not None and self._vault is not None:
            try:
                credential = self._store.get_credential(invocation.credential_ref)
            except KeyError:
                credential = None
            if credential is not None:
                try:
                    return self._vault.unwrap(credential)
                except VaultError as e:
                    logger.error(
                        "Credential %s for %s could not be decrypted: %s",
                        credential.id,
                        provider,
                        e,
                    )
                    raise ProxyError(
                        ChatError(
                            kind=ErrorKind.VAULT_DECRYPT_FAILED,
                            message=f"Stored API key for {provider} could not be decrypted - please re-enter it",
                            provider=provider,
                        )
                    ) from None

        raise ProxyError(
            ChatError(
                kind=ErrorKind.AUTH_FAILED,
                message=f"No API key configured for {provider}",
                provider=provider,
            )
        )

    def _retry_delay(self, error: ChatError, invocation: ChatInvocation, relayed: bool) -> float | None:
        """Seconds to wait before the one transparent retry, or None to give up."""
        if not error.retryable or invocation.is_retry or relayed or not self.config.retry_enabled:
            return None
        if error.retry_after is not None:
            if error.retry_after > self.config.max_retry_wait:
                return None
            base = error.retry_after
        else:
            base = self.config.retry_base_delay
        return base + self._rng() * self.config.retry_jitter

    async def _attempt(
        self,
        adapter: ProviderAdapter,
        invocation: ChatInvocation,
        api_key: str,
    ) -> AsyncIterator[ChatEvent]:
        provider = invocation.provider
        request = adapter.build_request(invocation, api_key)
        logger.debug(
            "%s %s headers=%s retry=%s",
            request.method,
            request.url,
            request.redacted_headers(),
            invocation.is_retry,
        )

        usage: TokenUsage | None = None
        finish_reason: str | None = None
        try:
            async with self._client.stream(
                request.method,
                request.url,
                headers=request.headers,
                json=request.json,
                params=request.params or None,
                timeout=self.timeout,
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise ProxyError(
                        adapter.map_error(response.status_code, response.headers, body, secrets=(api_key,))
                    )

                if not invocation.stream:
                    data = json.loads(await response.aread())
                    if not isinstance(data, dict):
                        raise ValueError("Expected a JSON object")
                    parsed = adapter.parse_response(data)
                    yield ChatEvent(
                        delta=parsed.content,
                        is_final=True,
                        usage=parsed.usage,
                        finish_reason=parsed.finish_reason,
                    )
                    return

                decoder = get_decoder(adapter.stream_format)
                async for payload in decoder.decode(response.aiter_lines()):
                    for event in adapter.parse_stream_payload(payload):
                        if event.usage is not None:
                            usage = _merge_usage(usage, event.usage)
                        if event.finish_reason:
                            finish_reason = event.finish_reason
                        if event.delta:
                            yield ChatEvent(delta=event.delta)
        except httpx.TimeoutException as e:
            raise ProxyError(
                ChatError(
                    kind=ErrorKind.PROVIDER_UNAVAILABLE,
                    message=f"{provider} request timed out",
                    provider=provider,
                )
            ) from e
        except httpx.HTTPError as e:
            raise ProxyError(
                ChatError(
                    kind=ErrorKind.PROVIDER_UNAVAILABLE,
                    message=f"Could not reach {provider}: {type(e).__name__}",
                    provider=provider,
                )
            ) from e
        except (ValueError, KeyError, TypeError, AttributeError, IndexError) as e:
            # Malformed body or a frame with an unexpected shape
            raise ProxyError(
                ChatError(
                    kind=ErrorKind.UNKNOWN,
                    message=f"Unreadable response from {provider}",
                    provider=provider,
                )
            ) from e

        yield ChatEvent(is_final=True, usage=usage, finish_reason=finish_reason)
