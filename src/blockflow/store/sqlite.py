"""SQLite-backed graph store."""
from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

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


class SqliteGraphStore(GraphStore):
    """SQLite-backed storage for boards, blocks, messages and credentials."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            db_dir = Path.home() / ".blockflow"
            db_dir.mkdir(parents=True, exist_ok=True)
            db_path = db_dir / "blockflow.db"
        self._db_path = str(db_path)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database tables."""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS boards (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    title TEXT DEFAULT '',
                    is_public INTEGER DEFAULT 0
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS blocks (
                    id TEXT PRIMARY KEY,
                    board_id TEXT NOT NULL,
                    data TEXT DEFAULT '{}'
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS connections (
                    id TEXT PRIMARY KEY,
                    source_block_id TEXT NOT NULL,
                    target_block_id TEXT NOT NULL,
                    data TEXT DEFAULT '{}',
                    UNIQUE (source_block_id, target_block_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    block_id TEXT NOT NULL,
                    data TEXT DEFAULT '{}'
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_block ON messages (block_id, seq)")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS credentials (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    encrypted_key TEXT NOT NULL,
                    key_hint TEXT DEFAULT '',
                    team_id TEXT,
                    is_valid INTEGER DEFAULT 1,
                    UNIQUE (owner_id, provider)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS subscriptions (
                    provider_subscription_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    provider TEXT DEFAULT 'polar',
                    customer_id TEXT,
                    plan TEXT DEFAULT '',
                    status TEXT DEFAULT 'active',
                    current_period_end TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS memory (
                    id TEXT PRIMARY KEY,
                    board_id TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    data TEXT DEFAULT '{}'
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_memory_board ON memory (board_id, created_at)")
            conn.commit()

    # -- boards and blocks --------------------------------------------------

    def add_board(self, board: Board) -> None:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO boards (id, owner_id, title, is_public) VALUES (?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                   owner_id=excluded.owner_id, title=excluded.title, is_public=excluded.is_public""",
                (board.id, board.owner_id, board.title, int(board.is_public)),
            )
            conn.commit()

    def get_board(self, board_id: str) -> Board:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, owner_id, title, is_public FROM boards WHERE id = ?", (board_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Board '{board_id}' not found")
        return Board(id=row[0], owner_id=row[1], title=row[2], is_public=bool(row[3]))

    def add_block(self, block: Block) -> None:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO blocks (id, board_id, data) VALUES (?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET board_id=excluded.board_id, data=excluded.data""",
                (block.id, block.board_id, json.dumps(block.to_dict())),
            )
            conn.commit()

    def get_block(self, block_id: str) -> Block:
        with self._connect() as conn:
            row = conn.execute("SELECT data FROM blocks WHERE id = ?", (block_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Block '{block_id}' not found")
        return Block.from_dict(json.loads(row[0]))

    def list_blocks(self, board_id: str) -> list[Block]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT data FROM blocks WHERE board_id = ? ORDER BY rowid", (board_id,)
            ).fetchall()
        return [Block.from_dict(json.loads(r[0])) for r in rows]

    def update_block_position(self, block_id: str, position: Position) -> None:
        block = self.get_block(block_id)
        block.position = Position(position.x, position.y)
        with self._connect() as conn:
            conn.execute(
                "UPDATE blocks SET data = ? WHERE id = ?",
                (json.dumps(block.to_dict()), block_id),
            )
            conn.commit()

    def delete_block(self, block_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM blocks WHERE id = ?", (block_id,))
            conn.execute(
                "DELETE FROM connections WHERE source_block_id = ? OR target_block_id = ?",
                (block_id, block_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    # -- connections --------------------------------------------------------

    def add_connection(self, connection: Connection) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """INSERT INTO connections (id, source_block_id, target_block_id, data)
                       VALUES (?, ?, ?, ?)
                       ON CONFLICT(id) DO UPDATE SET data=excluded.data""",
                    (
                        connection.id,
                        connection.source_block_id,
                        connection.target_block_id,
                        json.dumps(connection.to_dict()),
                    ),
                )
                conn.commit()
        except sqlite3.IntegrityError as e:
            raise ValueError(
                f"Blocks {connection.source_block_id} -> {connection.target_block_id} already connected"
            ) from e

    def list_connections(self, block_id: str) -> list[Connection]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT data FROM connections WHERE source_block_id = ? OR target_block_id = ?"
                " ORDER BY rowid",
                (block_id, block_id),
            ).fetchall()
        return [Connection.from_dict(json.loads(r[0])) for r in rows]

    # -- messages -----------------------------------------------------------

    def append_message(self, message: Message) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO messages (id, block_id, data) VALUES (?, ?, ?)",
                (message.id, message.block_id, json.dumps(message.to_dict())),
            )
            conn.commit()

    def list_messages(self, block_id: str) -> list[Message]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT data FROM messages WHERE block_id = ? ORDER BY seq", (block_id,)
            ).fetchall()
        return [Message.from_dict(json.loads(r[0])) for r in rows]

    # -- credentials --------------------------------------------------------

    def upsert_credential(self, credential: ProviderCredential) -> ProviderCredential:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO credentials
                   (id, owner_id, provider, encrypted_key, key_hint, team_id, is_valid)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(owner_id, provider) DO UPDATE SET
                   encrypted_key=excluded.encrypted_key, key_hint=excluded.key_hint,
                   team_id=excluded.team_id, is_valid=excluded.is_valid""",
                (
                    credential.id,
                    credential.owner_id,
                    credential.provider,
                    credential.encrypted_key,
                    credential.key_hint,
                    credential.team_id,
                    int(credential.is_valid),
                ),
            )
            conn.commit()
        stored = self.find_credential(credential.owner_id, credential.provider)
        assert stored is not None
        return stored

    def _credential_from_row(self, row: tuple) -> ProviderCredential:
        return ProviderCredential(
            id=row[0],
            owner_id=row[1],
            provider=row[2],
            encrypted_key=row[3],
            key_hint=row[4],
            team_id=row[5],
            is_valid=bool(row[6]),
        )

    def get_credential(self, credential_id: str) -> ProviderCredential:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, owner_id, provider, encrypted_key, key_hint, team_id, is_valid"
                " FROM credentials WHERE id = ?",
                (credential_id,),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Credential '{credential_id}' not found")
        return self._credential_from_row(row)

    def find_credential(self, owner_id: str, provider: str) -> ProviderCredential | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, owner_id, provider, encrypted_key, key_hint, team_id, is_valid"
                " FROM credentials WHERE owner_id = ? AND provider = ?",
                (owner_id, provider),
            ).fetchone()
        return self._credential_from_row(row) if row else None

    def delete_credential(self, owner_id: str, provider: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM credentials WHERE owner_id = ? AND provider = ?", (owner_id, provider)
            )
            conn.commit()
            return cursor.rowcount > 0

    # -- subscriptions ------------------------------------------------------

    def upsert_subscription(self, subscription: Subscription) -> None:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO subscriptions
                   (provider_subscription_id, user_id, provider, customer_id, plan, status,
                    current_period_end)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(provider_subscription_id) DO UPDATE SET
                   user_id=excluded.user_id, customer_id=excluded.customer_id,
                   plan=excluded.plan, status=excluded.status,
                   current_period_end=excluded.current_period_end""",
                (
                    subscription.provider_subscription_id,
                    subscription.user_id,
                    subscription.provider,
                    subscription.customer_id,
                    subscription.plan,
                    subscription.status,
                    subscription.current_period_end,
                ),
            )
            conn.commit()

    def update_subscription_status(self, provider_subscription_id: str, status: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE subscriptions SET status = ? WHERE provider_subscription_id = ?",
                (status, provider_subscription_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def get_subscription(self, provider_subscription_id: str) -> Subscription | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT provider_subscription_id, user_id, provider, customer_id, plan, status,"
                " current_period_end FROM subscriptions WHERE provider_subscription_id = ?",
                (provider_subscription_id,),
            ).fetchone()
        if row is None:
            return None
        return Subscription(
            provider_subscription_id=row[0],
            user_id=row[1],
            provider=row[2],
            customer_id=row[3],
            plan=row[4],
            status=row[5],
            current_period_end=row[6],
        )

    # -- board memory -------------------------------------------------------

    def upsert_memory(self, item: MemoryItem) -> MemoryItem:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO memory (id, board_id, created_at, data) VALUES (?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET board_id=excluded.board_id, data=excluded.data""",
                (item.id, item.board_id, item.created_at, json.dumps(item.to_dict())),
            )
            conn.commit()
        return item

    def get_memory(self, item_id: str) -> MemoryItem:
        with self._connect() as conn:
            row = conn.execute("SELECT data FROM memory WHERE id = ?", (item_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Memory item '{item_id}' not found")
        return MemoryItem.from_dict(json.loads(row[0]))

    def list_memory(self, board_id: str) -> list[MemoryItem]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT data FROM memory WHERE board_id = ? ORDER BY created_at, rowid", (board_id,)
            ).fetchall()
        return [MemoryItem.from_dict(json.loads(r[0])) for r in rows]

    def delete_memory(self, item_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM memory WHERE id = ?", (item_id,))
            conn.commit()
            return cursor.rowcount > 0
