"""Shared pytest fixtures for blockflow tests."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from blockflow import (
    AdapterRegistry,
    Block,
    BlockflowConfig,
    Board,
    CredentialVault,
    InMemoryGraphStore,
    Message,
    MessageRole,
    ModelRegistry,
    Position,
)

TEST_KEY_HEX = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


def sse_body(*payloads: dict[str, Any] | str, done: bool = True) -> bytes:
    """Encode payloads as an SSE response body."""
    frames = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        frames.append(f"data: {data}\n\n")
    if done:
        frames.append("data: [DONE]\n\n")
    return "".join(frames).encode()


def openai_chunk(content: str | None = None, finish_reason: str | None = None) -> dict[str, Any]:
    delta = {"content": content} if content is not None else {}
    return {"choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}]}


@pytest.fixture
def config() -> BlockflowConfig:
    """Config with a vault key and webhook secret."""
    return BlockflowConfig(
        encryption_key=TEST_KEY_HEX,
        webhook_secret="whsec_test",
        retry_base_delay=2.0,
        retry_jitter=0.25,
    )


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault.from_secret(TEST_KEY_HEX)


@pytest.fixture
def models() -> ModelRegistry:
    registry = ModelRegistry()
    registry.load_defaults()
    return registry


@pytest.fixture
def registry(config: BlockflowConfig) -> AdapterRegistry:
    return AdapterRegistry.default(config)


@pytest.fixture
def store() -> InMemoryGraphStore:
    """Store with one board owned by ``user-1``."""
    store = InMemoryGraphStore()
    store.add_board(Board(id="board-1", owner_id="user-1", title="Research"))
    return store


@pytest.fixture
def make_block(store: InMemoryGraphStore) -> Callable[..., Block]:
    """Factory adding a block to the store."""

    def _make(
        block_id: str,
        model: str = "gpt-4o",
        provider: str = "openai",
        title: str = "",
        x: float = 0.0,
        y: float = 0.0,
        system_prompt: str = "",
    ) -> Block:
        block = Block(
            id=block_id,
            board_id="board-1",
            provider=provider,
            model=model,
            title=title or block_id,
            system_prompt=system_prompt,
            position=Position(x, y),
        )
        store.add_block(block)
        return block

    return _make


@pytest.fixture
def add_message(store: InMemoryGraphStore) -> Callable[..., Message]:
    """Factory appending a message to a block's history."""
    counter = {"n": 0}

    def _add(block_id: str, role: str, content: str, **kwargs: Any) -> Message:
        counter["n"] += 1
        message = Message(
            id=f"msg-{counter['n']}",
            block_id=block_id,
            role=MessageRole(role),
            content=content,
            created_at=float(counter["n"]),
            **kwargs,
        )
        store.append_message(message)
        return message

    return _add


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)


@pytest.fixture
def recording_transport() -> Callable[..., RecordingTransport]:
    return RecordingTransport
