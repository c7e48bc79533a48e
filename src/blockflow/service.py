"""
Chat orchestration for a block.

Ties the pieces together for one user turn: assemble the block's context,
append the user message, dispatch through the provider proxy and persist
the assistant reply once the stream completes.

Example:
    service = ChatService(store, ContextAssembler(store), proxy, models=models)

    async for item in service.send_message("block-2", "Summarize", owner_id="u1"):
        if isinstance(item, ChatError):
            ...
        elif not item.is_final:
            print(item.delta, end="")
"""

from __future__ import annotations

import re
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any

from blockflow.adapters.registry import AGGREGATOR, PROVIDER_NAMES, AdapterRegistry
from blockflow.canvas import CanvasSyncController
from blockflow.config import BlockflowConfig
from blockflow.context import ContextAssembler, ContextPayload
from blockflow.errors import ChatError, ConfigurationError
from blockflow.invocation import ChatEvent, ChatInvocation, ChatMessage, GenerationParams
from blockflow.logging import get_logger
from blockflow.memory import format_memory
from blockflow.model_registry import ModelRegistry
from blockflow.models import Block, ChatReference, Message, MessageMeta, MessageRole, new_id
from blockflow.proxy import ProviderProxy
from blockflow.store.base import GraphStore

logger = get_logger("service")

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

_URL_RE = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+", re.IGNORECASE)


def _url_note(content: str) -> str:
    urls = _URL_RE.findall(content)
    if not urls:
        return ""
    what = "a URL" if len(urls) == 1 else "URLs"
    return (
        f"\n\n[Note: This message contains {what}: {', '.join(urls)}. "
        "Please consider this context if relevant.]"
    )


@dataclass
class PreparedTurn:
    """Everything needed to dispatch one user turn."""

    block: Block
    payload: ContextPayload
    user_message: Message
    invocation: ChatInvocation
    started: float


class ChatService:
    """
    Runs user turns against blocks.

    Args:
        store: Graph store holding blocks, messages and credentials.
        assembler: Context assembler reading from the same store.
        proxy: Provider proxy used for dispatch.
        registry: Adapter registry; defaults to the proxy's.
        models: Model catalog for names, API ids and cost.
        config: Generation defaults and budgets.
        canvas: Notified when messages land, so dependent context refreshes.
    """

    def __init__(
        self,
        store: GraphStore,
        assembler: ContextAssembler,
        proxy: ProviderProxy,
        registry: AdapterRegistry | None = None,
        models: ModelRegistry | None = None,
        config: BlockflowConfig | None = None,
        canvas: CanvasSyncController | None = None,
    ) -> None:
        self.store = store
        self.assembler = assembler
        self.proxy = proxy
        self.registry = registry or proxy.registry
        if models is None:
            models = ModelRegistry()
            models.load_defaults()
        self.models = models
        self.config = config or proxy.config
        self.canvas = canvas

    # ------------------------------------------------------------------
    # Prompt building
    # ------------------------------------------------------------------

    def resolve_provider(self, block: Block) -> str:
        """
        Provider serving the block's model.

        Raises:
            ConfigurationError: If neither the model nor the block's provider is known.
        """
        model = self.models.get(block.model)
        provider = model.provider if model is not None else block.provider
        if not provider:
            raise ConfigurationError(f"Unknown model '{block.model}'")
        self.registry.require(provider)
        return provider

    def identity_preamble(self, block: Block, provider: str) -> str:
        name = self.models.display_name(block.model)
        vendor = PROVIDER_NAMES.get(provider, provider.capitalize() or "AI")
        return (
            f"You are {name}, an AI model by {vendor}. "
            f"When asked about your identity, always truthfully state that you are {name}.\n\n"
        )

    def build_messages(
        self,
        block: Block,
        payload: ContextPayload,
        user_content: str,
        provider: str | None = None,
    ) -> list[ChatMessage]:
        """Render the provider-neutral conversation for one turn."""
        provider = provider or self.resolve_provider(block)
        system = self.identity_preamble(block, provider) + (block.system_prompt or DEFAULT_SYSTEM_PROMPT)

        if block.source_context is not None and block.source_context.selected_text:
            system += f'\n\nContext provided:\n"{block.source_context.selected_text}"'

        references = payload.references()
        if references:
            system += "\n\n" + "\n\n".join(item.text for item in references)

        upstream = payload.upstream()
        if upstream:
            sections = [f"--- {item.title or item.source_block_id} ---\n{item.text}" for item in upstream]
            system += "\n\nContext from connected blocks:\n" + "\n\n".join(sections)

        memory = format_memory([item.memory for item in payload.memory() if item.memory is not None])
        if memory:
            system += "\n\n" + memory

        messages = [ChatMessage(role="system", content=system)]
        for item in payload.history():
            if item.role == MessageRole.CONTEXT.value:
                messages.append(ChatMessage(role="user", content=f"[Context from connected block]\n{item.text}"))
            elif item.role == MessageRole.USER.value:
                messages.append(ChatMessage(role="user", content=item.text + _url_note(item.text)))
            else:
                messages.append(ChatMessage(role=item.role, content=item.text))
        messages.append(ChatMessage(role="user", content=user_content + _url_note(user_content)))
        return messages

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def prepare(
        self,
        block_id: str,
        content: str,
        owner_id: str,
        references: Sequence[ChatReference] = (),
        include_transitive: bool = False,
        budget_chars: int | None = None,
        params: GenerationParams | dict[str, Any] | None = None,
        stream: bool = True,
    ) -> PreparedTurn:
        """
        Assemble context, append the user message and build the invocation.

        Context is assembled before the user message is stored, so the new
        message is sent once, as the last turn.

        Raises:
            NotFoundError: If the block does not exist.
            ConfigurationError: If the block's provider cannot be resolved.
        """
        block = self.store.get_block(block_id)
        provider = self.resolve_provider(block)
        if not isinstance(params, GenerationParams):
            params = GenerationParams.from_dict(params)

        payload = self.assembler.assemble(
            block_id,
            budget_chars=budget_chars,
            references=references,
            include_transitive=include_transitive,
        )
        messages = self.build_messages(block, payload, content, provider=provider)

        user_message = Message(
            id=new_id("msg_"),
            block_id=block_id,
            role=MessageRole.USER,
            content=content,
            references=list(references),
        )
        self.store.append_message(user_message)

        invocation = ChatInvocation(
            provider=provider,
            model=self.models.api_model_id(block.model),
            messages=messages,
            params=params,
            credential_ref=self._credential_ref(owner_id, provider),
            stream=stream,
        )
        return PreparedTurn(
            block=block,
            payload=payload,
            user_message=user_message,
            invocation=invocation,
            started=time.monotonic(),
        )

    async def run(self, turn: PreparedTurn) -> AsyncIterator[ChatEvent | ChatError]:
        """Dispatch a prepared turn, persisting the reply on success."""
        parts: list[str] = []
        async with aclosing(self.proxy.dispatch(turn.invocation)) as items:
            async for item in items:
                if isinstance(item, ChatError):
                    yield item
                    return
                parts.append(item.delta)
                if item.is_final:
                    self._persist_reply(turn, "".join(parts), item)
                yield item

    async def send_message(
        self,
        block_id: str,
        content: str,
        owner_id: str,
        references: Sequence[ChatReference] = (),
        include_transitive: bool = False,
        budget_chars: int | None = None,
        params: GenerationParams | dict[str, Any] | None = None,
        stream: bool = True,
    ) -> AsyncIterator[ChatEvent | ChatError]:
        """Prepare and run one user turn."""
        turn = self.prepare(
            block_id,
            content,
            owner_id,
            references=references,
            include_transitive=include_transitive,
            budget_chars=budget_chars,
            params=params,
            stream=stream,
        )
        async with aclosing(self.run(turn)) as items:
            async for item in items:
                yield item

    def inject_context(self, target_block_id: str, source_block_id: str) -> Message | None:
        """
        Copy the source block's latest assistant output into the target.

        Returns the new ``context`` message, or None if the source has no
        output yet.
        """
        self.store.get_block(target_block_id)
        self.store.get_block(source_block_id)
        latest = next(
            (
                m
                for m in reversed(self.store.list_messages(source_block_id))
                if m.role is MessageRole.ASSISTANT and m.content
            ),
            None,
        )
        if latest is None:
            return None

        message = Message(
            id=new_id("msg_"),
            block_id=target_block_id,
            role=MessageRole.CONTEXT,
            content=latest.content,
            source_block_id=source_block_id,
        )
        self.store.append_message(message)
        logger.debug("Injected context from %s into %s", source_block_id, target_block_id)
        if self.canvas is not None:
            self.canvas.on_message_inserted(target_block_id)
        return message

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _credential_ref(self, owner_id: str, provider: str) -> str | None:
        credential = self.store.find_credential(owner_id, provider)
        if credential is None and provider != AGGREGATOR:
            credential = self.store.find_credential(owner_id, AGGREGATOR)
        if credential is None or not credential.is_valid:
            return None
        return credential.id

    def _persist_reply(self, turn: PreparedTurn, content: str, final: ChatEvent) -> Message:
        block = turn.block
        usage = final.usage
        tokens = usage.total_tokens if usage is not None and usage.total_tokens else len(content) // 4
        cost = self.models.calculate_cost(block.model, usage).total if usage is not None else 0.0

        message = Message(
            id=new_id("msg_"),
            block_id=block.id,
            role=MessageRole.ASSISTANT,
            content=content,
            meta=MessageMeta(
                tokens=tokens,
                cost=cost,
                model=block.model,
                latency_ms=int((time.monotonic() - turn.started) * 1000),
            ),
        )
        self.store.append_message(message)
        logger.info(
            "Block %s replied (%d chars, %d tokens, model=%s)",
            block.id,
            len(content),
            tokens,
            block.model,
        )
        if self.canvas is not None:
            self.canvas.on_message_inserted(block.id)
        return message
