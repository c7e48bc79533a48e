"""Tests for graph store backends."""

from __future__ import annotations

from pathlib import Path

import pytest

from blockflow.errors import NotFoundError
from blockflow.models import (
    Block,
    Board,
    ChatReference,
    Connection,
    MemoryItem,
    MemoryScope,
    MemoryType,
    Message,
    MessageMeta,
    MessageRole,
    Position,
    ProviderCredential,
    Subscription,
)
from blockflow.store import GraphStore, InMemoryGraphStore, SqliteGraphStore


@pytest.fixture(params=["memory", "sqlite"])
def backend(request: pytest.FixtureRequest, tmp_path: Path) -> GraphStore:
    if request.param == "memory":
        store: GraphStore = InMemoryGraphStore()
    else:
        store = SqliteGraphStore(tmp_path / "blockflow.db")
    store.add_board(Board(id="board-1", owner_id="user-1", title="Research"))
    return store


def _block(block_id: str, **kwargs) -> Block:
    return Block(id=block_id, board_id="board-1", provider="openai", model="gpt-4o", **kwargs)


class TestBoardsAndBlocks:
    def test_board_round_trip(self, backend: GraphStore) -> None:
        board = backend.get_board("board-1")
        assert board.owner_id == "user-1"
        assert board.is_public is False
        with pytest.raises(NotFoundError):
            backend.get_board("nope")

    def test_block_round_trip(self, backend: GraphStore) -> None:
        backend.add_block(_block("b1", title="Notes", position=Position(3, 4)))

        block = backend.get_block("b1")

        assert block.title == "Notes"
        assert block.position == Position(3, 4)
        assert backend.has_block("b1")
        assert not backend.has_block("b2")
        assert [b.id for b in backend.list_blocks("board-1")] == ["b1"]

    def test_missing_block_is_key_error(self, backend: GraphStore) -> None:
        with pytest.raises(KeyError):
            backend.get_block("nope")

    def test_update_position(self, backend: GraphStore) -> None:
        backend.add_block(_block("b1"))
        backend.update_block_position("b1", Position(10, 20))
        assert backend.get_block("b1").position == Position(10, 20)

    def test_update_position_missing(self, backend: GraphStore) -> None:
        with pytest.raises(NotFoundError):
            backend.update_block_position("nope", Position(1, 1))

    def test_delete_block_drops_connections(self, backend: GraphStore) -> None:
        backend.add_block(_block("a"))
        backend.add_block(_block("b"))
        backend.add_connection(Connection(id="ab", source_block_id="a", target_block_id="b"))

        assert backend.delete_block("a") is True
        assert backend.delete_block("a") is False
        assert backend.list_connections("b") == []


class TestConnections:
    def test_incoming(self, backend: GraphStore) -> None:
        backend.add_connection(Connection(id="ab", source_block_id="a", target_block_id="b"))
        backend.add_connection(
            Connection(id="cb", source_block_id="c", target_block_id="b", context_type="full", enabled=False)
        )
        backend.add_connection(Connection(id="bd", source_block_id="b", target_block_id="d"))

        incoming = backend.incoming_connections("b")

        assert [c.id for c in incoming] == ["ab", "cb"]
        assert incoming[1].context_type == "full"
        assert incoming[1].enabled is False
        assert len(backend.list_connections("b")) == 3

    def test_duplicate_edge_rejected(self, backend: GraphStore) -> None:
        backend.add_connection(Connection(id="ab", source_block_id="a", target_block_id="b"))
        with pytest.raises(ValueError, match="already connected"):
            backend.add_connection(Connection(id="ab2", source_block_id="a", target_block_id="b"))

    def test_update_connection_by_id(self, backend: GraphStore) -> None:
        backend.add_connection(Connection(id="ab", source_block_id="a", target_block_id="b"))
        backend.add_connection(Connection(id="ab", source_block_id="a", target_block_id="b", enabled=False))
        assert backend.incoming_connections("b")[0].enabled is False


class TestMessages:
    def test_append_preserves_order(self, backend: GraphStore) -> None:
        for index, role in enumerate(["user", "assistant", "user"]):
            backend.append_message(Message(id=f"m{index}", block_id="b1", role=MessageRole(role), content=str(index)))

        assert [m.content for m in backend.list_messages("b1")] == ["0", "1", "2"]
        assert backend.list_messages("other") == []

    def test_meta_and_references_survive(self, backend: GraphStore) -> None:
        reference = ChatReference(
            id="ref-1",
            source_message_id="m0",
            source_block_id="a",
            source_role="assistant",
            selected_text="quote",
            start=2,
            end=7,
        )
        backend.append_message(
            Message(
                id="m1",
                block_id="b1",
                role=MessageRole.ASSISTANT,
                content="answer",
                references=[reference],
                meta=MessageMeta(tokens=12, cost=0.5, model="gpt-4o", latency_ms=80),
            )
        )

        message = backend.get_message("b1", "m1")

        assert message.meta == MessageMeta(tokens=12, cost=0.5, model="gpt-4o", latency_ms=80)
        assert message.references[0].selected_text == "quote"
        assert (message.references[0].start, message.references[0].end) == (2, 7)
        assert backend.get_message("b1", "nope") is None

    def test_context_message_source(self, backend: GraphStore) -> None:
        backend.append_message(
            Message(id="m1", block_id="b", role=MessageRole.CONTEXT, content="x", source_block_id="a")
        )
        assert backend.list_messages("b")[0].source_block_id == "a"


class TestCredentials:
    def _credential(self, cid: str = "cred_1", key: str = "blob-1") -> ProviderCredential:
        return ProviderCredential(
            id=cid, owner_id="user-1", provider="openai", encrypted_key=key, key_hint="sk-a...bcde"
        )

    def test_upsert_and_find(self, backend: GraphStore) -> None:
        stored = backend.upsert_credential(self._credential())

        assert stored.id == "cred_1"
        assert backend.get_credential("cred_1").encrypted_key == "blob-1"
        assert backend.find_credential("user-1", "openai").id == "cred_1"
        assert backend.find_credential("user-1", "anthropic") is None

    def test_one_credential_per_owner_and_provider(self, backend: GraphStore) -> None:
        backend.upsert_credential(self._credential())
        stored = backend.upsert_credential(self._credential("cred_2", "blob-2"))

        assert stored.id == "cred_1"
        assert stored.encrypted_key == "blob-2"

    def test_delete(self, backend: GraphStore) -> None:
        backend.upsert_credential(self._credential())
        assert backend.delete_credential("user-1", "openai") is True
        assert backend.delete_credential("user-1", "openai") is False
        with pytest.raises(NotFoundError):
            backend.get_credential("cred_1")


class TestSubscriptions:
    def test_upsert_and_status(self, backend: GraphStore) -> None:
        backend.upsert_subscription(Subscription(provider_subscription_id="sub_1", user_id="user-1", plan="pro"))

        assert backend.update_subscription_status("sub_1", "canceled") is True
        assert backend.update_subscription_status("sub_x", "canceled") is False

        subscription = backend.get_subscription("sub_1")
        assert subscription.status == "canceled"
        assert subscription.plan == "pro"
        assert backend.get_subscription("sub_x") is None


class TestMemoryItems:
    def test_upsert_get_and_list(self, backend: GraphStore) -> None:
        backend.upsert_memory(MemoryItem(id="m2", board_id="board-1", content="later", created_at=2.0))
        backend.upsert_memory(
            MemoryItem(
                id="m1",
                board_id="board-1",
                content="Ship by May",
                type=MemoryType.CONSTRAINT,
                scope=MemoryScope.BLOCK,
                source_block_id="b1",
                keywords=["ship"],
                created_at=1.0,
            )
        )

        item = backend.get_memory("m1")

        assert item.type is MemoryType.CONSTRAINT
        assert item.scope is MemoryScope.BLOCK
        assert item.source_block_id == "b1"
        assert item.keywords == ["ship"]
        assert [i.id for i in backend.list_memory("board-1")] == ["m1", "m2"]
        assert backend.list_memory("board-2") == []

    def test_upsert_replaces_content(self, backend: GraphStore) -> None:
        backend.upsert_memory(MemoryItem(id="m1", board_id="board-1", content="old"))
        backend.upsert_memory(MemoryItem(id="m1", board_id="board-1", content="new", updated_at=5.0))

        assert backend.get_memory("m1").content == "new"
        assert len(backend.list_memory("board-1")) == 1

    def test_delete(self, backend: GraphStore) -> None:
        backend.upsert_memory(MemoryItem(id="m1", board_id="board-1", content="x"))

        assert backend.delete_memory("m1") is True
        assert backend.delete_memory("m1") is False
        with pytest.raises(NotFoundError):
            backend.get_memory("m1")


class TestSqlitePersistence:
    def test_data_survives_reopen(self, tmp_path: Path) -> None:
        path = tmp_path / "blockflow.db"
        first = SqliteGraphStore(path)
        first.add_board(Board(id="b", owner_id="u"))
        first.add_block(Block(id="x", board_id="b", provider="openai", model="gpt-4o"))

        second = SqliteGraphStore(path)
        assert second.get_block("x").model == "gpt-4o"
