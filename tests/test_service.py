"""Tests for chat orchestration."""

from __future__ import annotations

import json
from collections.abc import Callable
from contextlib import aclosing
from typing import Any

import httpx
import pytest

from conftest import RecordingTransport, openai_chunk, sse_body

from blockflow.adapters.registry import AdapterRegistry
from blockflow.canvas import CanvasSyncController, incoming_context_key
from blockflow.config import BlockflowConfig
from blockflow.context import ContextAssembler
from blockflow.errors import ChatError, ConfigurationError, ErrorKind, NotFoundError
from blockflow.events import INVALIDATE
from blockflow.invocation import ChatEvent
from blockflow.model_registry import ModelRegistry
from blockflow.models import Connection, MemoryItem, MemoryScope, MemoryType, MessageRole, SourceContext
from blockflow.proxy import ProviderProxy
from blockflow.service import DEFAULT_SYSTEM_PROMPT, ChatService
from blockflow.store import InMemoryGraphStore
from blockflow.vault import CredentialVault


async def _no_sleep(delay: float) -> None:
    return None


def _reply(*parts: str, usage: dict[str, int] | None = None) -> Callable[[httpx.Request], httpx.Response]:
    payloads: list[Any] = [openai_chunk(p) for p in parts]
    payloads.append(openai_chunk(None, "stop"))
    if usage:
        payloads.append({"choices": [], "usage": usage})
    return lambda request: httpx.Response(200, content=sse_body(*payloads))


@pytest.fixture
def build_service(
    store: InMemoryGraphStore,
    config: BlockflowConfig,
    vault: CredentialVault,
    models: ModelRegistry,
) -> Callable[..., tuple[ChatService, RecordingTransport]]:
    """Factory wiring a service to a mocked provider."""

    def _build(
        handler: Callable[[httpx.Request], httpx.Response],
        canvas: CanvasSyncController | None = None,
    ) -> tuple[ChatService, RecordingTransport]:
        transport = RecordingTransport(handler)
        proxy = ProviderProxy(
            AdapterRegistry.default(config),
            config,
            client=httpx.AsyncClient(transport=transport),
            store=store,
            vault=vault,
            models=models,
            sleep=_no_sleep,
            rng=lambda: 0.0,
        )
        service = ChatService(store, ContextAssembler(store, config.context), proxy, models=models, canvas=canvas)
        return service, transport

    return _build


@pytest.fixture
def openai_key(store: InMemoryGraphStore, vault: CredentialVault):
    return store.upsert_credential(vault.seal("user-1", "openai", "sk-user-openai"))


async def _drain(iterator) -> list[ChatEvent | ChatError]:
    async with aclosing(iterator) as items:
        return [item async for item in items]


# ---------------------------------------------------------------------------
# Prompt building
# ---------------------------------------------------------------------------


class TestBuildMessages:
    def test_system_prompt_sections(self, store, make_block, add_message, build_service) -> None:
        make_block("A", title="Research")
        block = make_block("B", system_prompt="Be terse.")
        store.add_connection(Connection(id="ab", source_block_id="A", target_block_id="B"))
        add_message("A", "assistant", "Findings: water is wet.")
        service, _ = build_service(_reply("x"))

        payload = service.assembler.assemble("B")
        messages = service.build_messages(block, payload, "Summarize")

        system = messages[0]
        assert system.role == "system"
        assert system.content.startswith("You are GPT-4o, an AI model by OpenAI.")
        assert "Be terse." in system.content
        assert system.content.endswith(
            "Context from connected blocks:\n--- Research ---\nFindings: water is wet."
        )
        assert messages[-1].content == "Summarize"

    def test_default_system_prompt(self, make_block, build_service) -> None:
        block = make_block("B")
        service, _ = build_service(_reply("x"))
        messages = service.build_messages(block, service.assembler.assemble("B"), "hi")
        assert DEFAULT_SYSTEM_PROMPT in messages[0].content

    def test_branch_source_text(self, store, build_service, make_block) -> None:
        block = make_block("B")
        block.source_context = SourceContext(source_block_id="A", selected_text="the quoted bit")
        service, _ = build_service(_reply("x"))

        messages = service.build_messages(block, service.assembler.assemble("B"), "hi")
        assert 'Context provided:\n"the quoted bit"' in messages[0].content

    def test_memory_section_last(self, store, make_block, build_service) -> None:
        """Should end the system prompt with the block's memory grouped by type."""
        block = make_block("B")
        store.upsert_memory(MemoryItem(id="m1", board_id="board-1", content="Use metric units", type=MemoryType.FACT))
        store.upsert_memory(
            MemoryItem(
                id="m2",
                board_id="board-1",
                content="Cite sources",
                type=MemoryType.CONSTRAINT,
                scope=MemoryScope.BLOCK,
                source_block_id="B",
            )
        )
        service, _ = build_service(_reply("x"))

        messages = service.build_messages(block, service.assembler.assemble("B"), "hi")

        assert messages[0].content.endswith(
            "## Memory\n\n### Facts\n- Use metric units [board]\n\n### Constraints\n- Cite sources [block]"
        )

    def test_history_in_order_with_context_label(self, make_block, add_message, build_service) -> None:
        block = make_block("B")
        add_message("B", "context", "Upstream text", source_block_id="A")
        add_message("B", "user", "Earlier question")
        add_message("B", "assistant", "Earlier answer")
        service, _ = build_service(_reply("x"))

        messages = service.build_messages(block, service.assembler.assemble("B"), "Next")

        assert [(m.role, m.content) for m in messages[1:]] == [
            ("user", "[Context from connected block]\nUpstream text"),
            ("user", "Earlier question"),
            ("assistant", "Earlier answer"),
            ("user", "Next"),
        ]

    def test_url_note(self, make_block, build_service) -> None:
        block = make_block("B")
        service, _ = build_service(_reply("x"))
        messages = service.build_messages(block, service.assembler.assemble("B"), "Read https://example.com/a")
        assert messages[-1].content.endswith(
            "[Note: This message contains a URL: https://example.com/a. Please consider this context if relevant.]"
        )

    def test_unknown_model_without_provider(self, make_block, build_service) -> None:
        block = make_block("B", model="mystery", provider="")
        service, _ = build_service(_reply("x"))
        with pytest.raises(ConfigurationError, match="Unknown model"):
            service.resolve_provider(block)

    def test_unsupported_provider(self, make_block, build_service) -> None:
        block = make_block("B", model="mystery", provider="acme")
        service, _ = build_service(_reply("x"))
        with pytest.raises(ConfigurationError, match="Unsupported provider"):
            service.resolve_provider(block)

    def test_catalog_provider_wins(self, make_block, build_service) -> None:
        block = make_block("B", model="claude-3.5-sonnet", provider="openai")
        service, _ = build_service(_reply("x"))
        assert service.resolve_provider(block) == "anthropic"


# ---------------------------------------------------------------------------
# Turns
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestSendMessage:
    async def test_reply_persisted_with_meta(self, store, make_block, build_service, openai_key) -> None:
        make_block("B")
        service, transport = build_service(
            _reply("Hel", "lo", usage={"prompt_tokens": 1000, "completion_tokens": 500})
        )

        items = await _drain(service.send_message("B", "Hi", owner_id="user-1"))

        assert [i.delta for i in items if not i.is_final] == ["Hel", "lo"]
        assert items[-1].is_final

        messages = store.list_messages("B")
        assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        reply = messages[-1]
        assert reply.content == "Hello"
        assert reply.meta.tokens == 1500
        assert reply.meta.model == "gpt-4o"
        assert reply.meta.cost == pytest.approx(0.0125)

        request = transport.requests[0]
        assert request.headers["authorization"] == "Bearer sk-user-openai"
        sent = json.loads(request.content)["messages"]
        assert sent[-1] == {"role": "user", "content": "Hi"}
        assert sum(1 for m in sent if m["content"] == "Hi") == 1

    async def test_token_estimate_without_usage(self, store, make_block, build_service, openai_key) -> None:
        make_block("B")
        service, _ = build_service(_reply("a" * 40))
        await _drain(service.send_message("B", "Hi", owner_id="user-1"))
        assert store.list_messages("B")[-1].meta.tokens == 10

    async def test_api_model_id_sent(self, store, make_block, build_service, vault) -> None:
        make_block("B", model="deepseek-v3", provider="deepseek")
        store.upsert_credential(vault.seal("user-1", "deepseek", "sk-deep"))
        service, transport = build_service(_reply("ok"))

        await _drain(service.send_message("B", "Hi", owner_id="user-1"))

        assert json.loads(transport.requests[0].content)["model"] == "deepseek-chat"
        assert store.list_messages("B")[-1].meta.model == "deepseek-v3"

    async def test_error_not_persisted(self, store, make_block, build_service, openai_key) -> None:
        make_block("B")
        service, _ = build_service(lambda request: httpx.Response(401))

        items = await _drain(service.send_message("B", "Hi", owner_id="user-1"))

        assert len(items) == 1
        assert items[0].kind is ErrorKind.AUTH_FAILED
        assert [m.role for m in store.list_messages("B")] == [MessageRole.USER]

    async def test_missing_key(self, store, make_block, build_service) -> None:
        make_block("B")
        service, transport = build_service(_reply("x"))

        items = await _drain(service.send_message("B", "Hi", owner_id="user-1"))

        assert items[0].kind is ErrorKind.AUTH_FAILED
        assert transport.requests == []

    async def test_aggregator_key_fallback(self, store, make_block, build_service, vault) -> None:
        make_block("B", model="claude-3.5-sonnet", provider="anthropic")
        store.upsert_credential(vault.seal("user-1", "openrouter", "sk-or-v1-abc"))
        service, transport = build_service(_reply("ok"))

        await _drain(service.send_message("B", "Hi", owner_id="user-1"))

        request = transport.requests[0]
        assert request.url.host == "openrouter.ai"
        assert json.loads(request.content)["model"] == "anthropic/claude-3-5-sonnet-20241022"

    async def test_invalid_credential_skipped(self, store, make_block, build_service, vault) -> None:
        make_block("B")
        credential = vault.seal("user-1", "openai", "sk-old")
        credential.is_valid = False
        store.upsert_credential(credential)
        service, _ = build_service(_reply("x"))

        turn = service.prepare("B", "Hi", owner_id="user-1")
        assert turn.invocation.credential_ref is None

    async def test_consumer_stops_early(self, store, make_block, build_service, openai_key) -> None:
        make_block("B")
        service, _ = build_service(_reply("one", "two"))

        async with aclosing(service.send_message("B", "Hi", owner_id="user-1")) as items:
            async for item in items:
                break

        assert [m.role for m in store.list_messages("B")] == [MessageRole.USER]

    async def test_upstream_output_flows_downstream(self, store, make_block, build_service, openai_key) -> None:
        """A's reply becomes B's context on B's next turn."""
        make_block("A", title="Research")
        make_block("B")
        store.add_connection(Connection(id="ab", source_block_id="A", target_block_id="B"))
        service, transport = build_service(_reply("Paris is the capital."))

        await _drain(service.send_message("A", "Capital of France?", owner_id="user-1"))
        await _drain(service.send_message("B", "Write a haiku", owner_id="user-1"))

        system = json.loads(transport.requests[1].content)["messages"][0]["content"]
        assert "--- Research ---\nParis is the capital." in system

    async def test_reply_invalidates_downstream(self, store, make_block, build_service, openai_key) -> None:
        make_block("A")
        make_block("B")
        store.add_connection(Connection(id="ab", source_block_id="A", target_block_id="B"))
        canvas = CanvasSyncController(store)
        keys: list[str] = []
        canvas.bus.on(INVALIDATE, lambda event: keys.append(event.key))
        service, _ = build_service(_reply("ok"), canvas=canvas)

        await _drain(service.send_message("A", "Hi", owner_id="user-1"))

        assert keys == [incoming_context_key("B")]

    async def test_unknown_block(self, build_service) -> None:
        service, _ = build_service(_reply("x"))
        with pytest.raises(NotFoundError):
            await _drain(service.send_message("nope", "Hi", owner_id="user-1"))


# ---------------------------------------------------------------------------
# Context injection
# ---------------------------------------------------------------------------


class TestInjectContext:
    def test_copies_latest_output(self, store, make_block, add_message, build_service) -> None:
        make_block("A")
        make_block("B")
        add_message("A", "assistant", "old")
        add_message("A", "assistant", "new")
        service, _ = build_service(_reply("x"))

        message = service.inject_context("B", "A")

        assert message.role is MessageRole.CONTEXT
        assert message.content == "new"
        assert message.source_block_id == "A"
        assert store.list_messages("B") == [message]

    def test_no_output_yet(self, store, make_block, add_message, build_service) -> None:
        make_block("A")
        make_block("B")
        add_message("A", "user", "question only")
        service, _ = build_service(_reply("x"))

        assert service.inject_context("B", "A") is None
        assert store.list_messages("B") == []

    def test_missing_block(self, make_block, build_service) -> None:
        make_block("B")
        service, _ = build_service(_reply("x"))
        with pytest.raises(NotFoundError):
            service.inject_context("B", "ghost")
