"""Abstract persistence boundary: keyed CRUD over the canvas graph."""

from __future__ import annotations

from abc import ABC, abstractmethod

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


class GraphStore(ABC):
    """
    Storage for boards, blocks, connections, messages and credentials.

    Implementations provide simple keyed reads and writes only; graph logic
    lives in the assembler and service. Reads must not block behind writes.
    Lookups of a missing key raise ``NotFoundError`` unless documented
    otherwise.
    """

    # -- boards and blocks --------------------------------------------------

    @abstractmethod
    def add_board(self, board: Board) -> None: ...

    @abstractmethod
    def get_board(self, board_id: str) -> Board: ...

    @abstractmethod
    def add_block(self, block: Block) -> None: ...

    @abstractmethod
    def get_block(self, block_id: str) -> Block: ...

    def has_block(self, block_id: str) -> bool:
        try:
            self.get_block(block_id)
        except KeyError:
            return False
        return True

    @abstractmethod
    def list_blocks(self, board_id: str) -> list[Block]: ...

    @abstractmethod
    def update_block_position(self, block_id: str, position: Position) -> None: ...

    @abstractmethod
    def delete_block(self, block_id: str) -> bool:
        """Remove a block and its connections. Its messages are kept."""

    # -- connections --------------------------------------------------------

    @abstractmethod
    def add_connection(self, connection: Connection) -> None:
        """Store a connection. Raises ``ValueError`` on a duplicate edge."""

    @abstractmethod
    def list_connections(self, block_id: str) -> list[Connection]:
        """Connections where ``block_id`` is the source or the target."""

    def incoming_connections(self, block_id: str) -> list[Connection]:
        return [c for c in self.list_connections(block_id) if c.target_block_id == block_id]

    # -- messages -----------------------------------------------------------

    @abstractmethod
    def append_message(self, message: Message) -> None: ...

    @abstractmethod
    def list_messages(self, block_id: str) -> list[Message]:
        """Messages of a block in creation order."""

    def get_message(self, block_id: str, message_id: str) -> Message | None:
        for message in self.list_messages(block_id):
            if message.id == message_id:
                return message
        return None

    # -- credentials --------------------------------------------------------

    @abstractmethod
    def upsert_credential(self, credential: ProviderCredential) -> ProviderCredential:
        """Insert or replace the credential for ``(owner_id, provider)``."""

    @abstractmethod
    def get_credential(self, credential_id: str) -> ProviderCredential: ...

    @abstractmethod
    def find_credential(self, owner_id: str, provider: str) -> ProviderCredential | None: ...

    @abstractmethod
    def delete_credential(self, owner_id: str, provider: str) -> bool: ...

    # -- subscriptions ------------------------------------------------------

    @abstractmethod
    def upsert_subscription(self, subscription: Subscription) -> None: ...

    @abstractmethod
    def update_subscription_status(self, provider_subscription_id: str, status: str) -> bool: ...

    @abstractmethod
    def get_subscription(self, provider_subscription_id: str) -> Subscription | None: ...

    # -- board memory -------------------------------------------------------

    @abstractmethod
    def upsert_memory(self, item: MemoryItem) -> MemoryItem:
        """Insert or replace a memory item by id."""

    @abstractmethod
    def get_memory(self, item_id: str) -> MemoryItem: ...

    @abstractmethod
    def list_memory(self, board_id: str) -> list[MemoryItem]:
        """All memory items of a board, oldest first."""

    @abstractmethod
    def delete_memory(self, item_id: str) -> bool: ...
