"""In-process graph store."""

from __future__ import annotations

import threading
from dataclasses import replace

from blockflow.errors import NotFoundError
from blockflow.models import (
    Block,
    Board,
    Connection,
    MemoryItem,
    Message,
    Position,
    ProviderCredential,
    Subscription,
)
from blockflow.store.base import GraphStore


class InMemoryGraphStore(GraphStore):
    """
    Dictionary-backed store.

    Writes are serialized by a lock; reads take list snapshots and never wait
    on it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._boards: dict[str, Board] = {}
        self._blocks: dict[str, Block] = {}
        self._connections: dict[str, Connection] = {}
        self._messages: dict[str, list[Message]] = {}
        self._credentials: dict[str, ProviderCredential] = {}
        self._subscriptions: dict[str, Subscription] = {}
        self._memory: dict[str, MemoryItem] = {}

    def add_board(self, board: Board) -> None:
        with self._lock:
            self._boards[board.id] = board

    def get_board(self, board_id: str) -> Board:
        try:
            return self._boards[board_id]
        except KeyError:
            raise NotFoundError(f"Board '{board_id}' not found") from None

    def add_block(self, block: Block) -> None:
        with self._lock:
            self._blocks[block.id] = block

    def get_block(self, block_id: str) -> Block:
        try:
            return self._blocks[block_id]
        except KeyError:
            raise NotFoundError(f"Block '{block_id}' not found") from None

    def list_blocks(self, board_id: str) -> list[Block]:
        return [b for b in list(self._blocks.values()) if b.board_id == board_id]

    def update_block_position(self, block_id: str, position: Position) -> None:
        with self._lock:
            block = self._blocks.get(block_id)
            if block is None:
                raise NotFoundError(f"Block '{block_id}' not found")
            self._blocks[block_id] = replace(block, position=Position(position.x, position.y))

    def delete_block(self, block_id: str) -> bool:
        with self._lock:
            if self._blocks.pop(block_id, None) is None:
                return False
            self._connections = {
                cid: c
                for cid, c in self._connections.items()
                if block_id not in (c.source_block_id, c.target_block_id)
            }
            return True

    def add_connection(self, connection: Connection) -> None:
        with self._lock:
            for existing in self._connections.values():
                if (
                    existing.source_block_id == connection.source_block_id
                    and existing.target_block_id == connection.target_block_id
                    and existing.id != connection.id
                ):
                    raise ValueError(
                        f"Blocks {connection.source_block_id} -> {connection.target_block_id} already connected"
                    )
            self._connections[connection.id] = connection

    def list_connections(self, block_id: str) -> list[Connection]:
        return [
            c
            for c in list(self._connections.values())
            if block_id in (c.source_block_id, c.target_block_id)
        ]

    def append_message(self, message: Message) -> None:
        with self._lock:
            self._messages.setdefault(message.block_id, []).append(message)

    def list_messages(self, block_id: str) -> list[Message]:
        return list(self._messages.get(block_id, ()))

    def upsert_credential(self, credential: ProviderCredential) -> ProviderCredential:
        with self._lock:
            for existing in list(self._credentials.values()):
                if existing.owner_id == credential.owner_id and existing.provider == credential.provider:
                    credential = replace(credential, id=existing.id)
            self._credentials[credential.id] = credential
            return credential

    def get_credential(self, credential_id: str) -> ProviderCredential:
        try:
            return self._credentials[credential_id]
        except KeyError:
            raise NotFoundError(f"Credential '{credential_id}' not found") from None

    def find_credential(self, owner_id: str, provider: str) -> ProviderCredential | None:
        for credential in list(self._credentials.values()):
            if credential.owner_id == owner_id and credential.provider == provider:
                return credential
        return None

    def delete_credential(self, owner_id: str, provider: str) -> bool:
        with self._lock:
            for cid, credential in list(self._credentials.items()):
                if credential.owner_id == owner_id and credential.provider == provider:
                    del self._credentials[cid]
                    return True
            return False

    def upsert_subscription(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions[subscription.provider_subscription_id] = subscription

    def update_subscription_status(self, provider_subscription_id: str, status: str) -> bool:
        with self._lock:
            current = self._subscriptions.get(provider_subscription_id)
            if current is None:
                return False
            self._subscriptions[provider_subscription_id] = replace(current, status=status)
            return True

    def get_subscription(self, provider_subscription_id: str) -> Subscription | None:
        return self._subscriptions.get(provider_subscription_id)

    def upsert_memory(self, item: MemoryItem) -> MemoryItem:
        with self._lock:
            self._memory[item.id] = item
        return item

    def get_memory(self, item_id: str) -> MemoryItem:
        try:
            return self._memory[item_id]
        except KeyError:
            raise NotFoundError(f"Memory item '{item_id}' not found") from None

    def list_memory(self, board_id: str) -> list[MemoryItem]:
        items = [m for m in list(self._memory.values()) if m.board_id == board_id]
        return sorted(items, key=lambda m: m.created_at)

    def delete_memory(self, item_id: str) -> bool:
        with self._lock:
            return self._memory.pop(item_id, None) is not None
