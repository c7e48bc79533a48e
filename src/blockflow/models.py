"""
Domain model for boards, blocks, connections and messages.

These dataclasses are the unit of exchange with the persistence boundary
(``blockflow.store``). Construction enforces the structural invariants:
a connection can't loop onto its own block, and a context message always
names the block it came from.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class BlockType(str, Enum):
    CHAT = "chat"
    PROMPT = "prompt"
    CUSTOM = "custom"


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    CONTEXT = "context"


ContextType = Literal["output", "full", "summary"]
CONTEXT_TYPES: tuple[str, ...] = ("output", "full", "summary")


def new_id(prefix: str = "") -> str:
    """Generate a random identifier, optionally prefixed (``ref_``, ``msg_``)."""
    return f"{prefix}{uuid.uuid4().hex}"


# ---------------------------------------------------------------------------
# Canvas entities
# ---------------------------------------------------------------------------


@dataclass
class Position:
    """Canvas coordinates of a block."""

    x: float = 0.0
    y: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Position:
        data = data or {}
        return cls(x=float(data.get("x", 0.0)), y=float(data.get("y", 0.0)))


@dataclass
class SourceContext:
    """Where a block was branched from."""

    source_block_id: str
    source_message_id: str | None = None
    selected_text: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_block_id": self.source_block_id,
            "source_message_id": self.source_message_id,
            "selected_text": self.selected_text,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SourceContext | None:
        if not data:
            return None
        return cls(
            source_block_id=data["source_block_id"],
            source_message_id=data.get("source_message_id"),
            selected_text=data.get("selected_text"),
        )


@dataclass
class Board:
    """A canvas owned by a user."""

    id: str
    owner_id: str
    title: str = ""
    is_public: bool = False


@dataclass
class Block:
    """
    A node on the canvas bound to a single model.

    Attributes:
        id: Block identifier.
        board_id: Owning board.
        provider: Provider name (e.g. "openai", "anthropic").
        model: Model identifier within the provider.
        system_prompt: Optional per-block system prompt.
        title: Display title, used to label context taken from this block.
        position: Last persisted canvas position.
        type: Block type.
        source_context: Set when the block was branched from another block.
    """

    id: str
    board_id: str
    provider: str
    model: str
    system_prompt: str = ""
    title: str = ""
    position: Position = field(default_factory=Position)
    type: BlockType = BlockType.CHAT
    source_context: SourceContext | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "board_id": self.board_id,
            "provider": self.provider,
            "model": self.model,
            "system_prompt": self.system_prompt,
            "title": self.title,
            "position": self.position.to_dict(),
            "type": self.type.value,
            "source_context": self.source_context.to_dict() if self.source_context else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Block:
        return cls(
            id=data["id"],
            board_id=data["board_id"],
            provider=data["provider"],
            model=data["model"],
            system_prompt=data.get("system_prompt") or "",
            title=data.get("title") or "",
            position=Position.from_dict(data.get("position")),
            type=BlockType(data.get("type", "chat")),
            source_context=SourceContext.from_dict(data.get("source_context")),
        )


@dataclass
class Connection:
    """
    A directed edge ``source_block_id -> target_block_id``.

    The target receives the source's output as context. ``context_type``
    selects what is taken from the source: ``output`` (latest assistant
    message), ``full`` (recent transcript) or ``summary`` (latest assistant
    message, shortened). ``transform_template`` may wrap the produced text,
    with ``{{output}}`` marking where it goes.
    """

    id: str
    source_block_id: str
    target_block_id: str
    enabled: bool = True
    context_type: ContextType = "output"
    transform_template: str | None = None

    def __post_init__(self) -> None:
        if self.source_block_id == self.target_block_id:
            raise ValueError(f"Connection {self.id} cannot connect block {self.source_block_id} to itself")
        if self.context_type not in CONTEXT_TYPES:
            raise ValueError(f"Unknown context_type: {self.context_type}")

    def apply_template(self, text: str) -> str:
        if not self.transform_template:
            return text
        return self.transform_template.replace("{{output}}", text)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_block_id": self.source_block_id,
            "target_block_id": self.target_block_id,
            "enabled": self.enabled,
            "context_type": self.context_type,
            "transform_template": self.transform_template,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Connection:
        return cls(
            id=data["id"],
            source_block_id=data["source_block_id"],
            target_block_id=data["target_block_id"],
            enabled=data.get("enabled", True),
            context_type=data.get("context_type") or "output",
            transform_template=data.get("transform_template"),
        )


# ---------------------------------------------------------------------------
# Messages and references
# ---------------------------------------------------------------------------


@dataclass
class MessageMeta:
    """Generation metadata stored on assistant messages."""

    tokens: int = 0
    cost: float = 0.0
    model: str = ""
    latency_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokens": self.tokens,
            "cost": self.cost,
            "model": self.model,
            "latency_ms": self.latency_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MessageMeta | None:
        if not data:
            return None
        return cls(
            tokens=data.get("tokens", 0),
            cost=data.get("cost", 0.0),
            model=data.get("model", ""),
            latency_ms=data.get("latency_ms", 0),
        )


@dataclass
class ChatReference:
    """
    A quoted span of an earlier message, attached to a new user message.

    The quoted text travels with the reference, so the reference stays usable
    even if the source block is later deleted.
    """

    id: str
    source_message_id: str
    source_block_id: str
    source_role: Literal["user", "assistant"]
    selected_text: str
    start: int
    end: int
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"Invalid reference range: {self.start}..{self.end}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_message_id": self.source_message_id,
            "source_block_id": self.source_block_id,
            "source_role": self.source_role,
            "selected_text": self.selected_text,
            "range": {"start": self.start, "end": self.end},
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatReference:
        if not isinstance(data, dict):
            raise ValueError("reference must be an object")
        rng = data.get("range") or {}
        if not isinstance(rng, dict):
            raise ValueError("reference range must be an object")
        return cls(
            id=data.get("id") or new_id("ref_"),
            source_message_id=data["source_message_id"],
            source_block_id=data["source_block_id"],
            source_role=data.get("source_role", "assistant"),
            selected_text=data["selected_text"],
            start=rng.get("start", data.get("start", 0)),
            end=rng.get("end", data.get("end", len(data["selected_text"]))),
            created_at=data.get("created_at") or time.time(),
        )


def create_reference(message: Message, start: int, end: int) -> ChatReference:
    """Quote ``message.content[start:end]`` as a new reference."""
    if message.role not in (MessageRole.USER, MessageRole.ASSISTANT):
        raise ValueError(f"Cannot reference a {message.role.value} message")
    if not 0 <= start <= end <= len(message.content):
        raise ValueError(f"Range {start}..{end} outside message of length {len(message.content)}")
    return ChatReference(
        id=new_id("ref_"),
        source_message_id=message.id,
        source_block_id=message.block_id,
        source_role=message.role.value,  # type: ignore[arg-type]
        selected_text=message.content[start:end],
        start=start,
        end=end,
    )


def format_reference(index: int, reference: ChatReference, available: bool = True) -> str:
    """Render one reference the way it is shown to the model."""
    who = "User" if reference.source_role == "user" else "Assistant"
    suffix = "" if available else " (source unavailable)"
    return f'[Reference {index} from {who}{suffix}]:\n"{reference.selected_text}"'


@dataclass
class Message:
    """
    A single message in a block's append-only history.

    ``context`` messages carry text injected from another block and must name
    that block in ``source_block_id``.
    """

    id: str
    block_id: str
    role: MessageRole
    content: str
    created_at: float = field(default_factory=time.time)
    source_block_id: str | None = None
    references: list[ChatReference] = field(default_factory=list)
    meta: MessageMeta | None = None

    def __post_init__(self) -> None:
        if isinstance(self.role, str) and not isinstance(self.role, MessageRole):
            self.role = MessageRole(self.role)
        if self.role is MessageRole.CONTEXT and not self.source_block_id:
            raise ValueError("Context messages must record their source_block_id")

    @property
    def size_bytes(self) -> int:
        return len(self.content.encode("utf-8"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "block_id": self.block_id,
            "role": self.role.value,
            "content": self.content,
            "created_at": self.created_at,
            "source_block_id": self.source_block_id,
            "references": [r.to_dict() for r in self.references],
            "meta": self.meta.to_dict() if self.meta else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=data["id"],
            block_id=data["block_id"],
            role=MessageRole(data["role"]),
            content=data.get("content", ""),
            created_at=data.get("created_at") or time.time(),
            source_block_id=data.get("source_block_id"),
            references=[ChatReference.from_dict(r) for r in data.get("references") or []],
            meta=MessageMeta.from_dict(data.get("meta")),
        )


# ---------------------------------------------------------------------------
# Board memory
# ---------------------------------------------------------------------------


class MemoryType(str, Enum):
    FACT = "fact"
    DECISION = "decision"
    CONSTRAINT = "constraint"
    NOTE = "note"


class MemoryScope(str, Enum):
    BOARD = "board"
    BLOCK = "block"
    CHAT = "chat"


@dataclass
class MemoryItem:
    """
    A saved fact, decision, constraint or note on a board.

    Board-scoped items apply to every block on the board; block and chat
    scoped items apply only to ``source_block_id``, which they must name.
    """

    id: str
    board_id: str
    content: str
    type: MemoryType = MemoryType.NOTE
    scope: MemoryScope = MemoryScope.BOARD
    user_id: str = ""
    keywords: list[str] = field(default_factory=list)
    source_block_id: str | None = None
    source_message_id: str | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float | None = None

    def __post_init__(self) -> None:
        self.type = MemoryType(self.type)
        self.scope = MemoryScope(self.scope)
        if self.scope is not MemoryScope.BOARD and not self.source_block_id:
            raise ValueError(f"{self.scope.value}-scoped memory must name its source_block_id")

    def applies_to(self, block_id: str) -> bool:
        return self.scope is MemoryScope.BOARD or self.source_block_id == block_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "board_id": self.board_id,
            "user_id": self.user_id,
            "type": self.type.value,
            "scope": self.scope.value,
            "content": self.content,
            "keywords": list(self.keywords),
            "source_block_id": self.source_block_id,
            "source_message_id": self.source_message_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryItem:
        if not isinstance(data, dict):
            raise ValueError("memory item must be an object")
        keywords = data.get("keywords") or []
        if not isinstance(keywords, list):
            raise ValueError("keywords must be a list")
        return cls(
            id=data.get("id") or new_id("mem_"),
            board_id=data["board_id"],
            content=data["content"],
            type=MemoryType(data.get("type", "note")),
            scope=MemoryScope(data.get("scope") or "board"),
            user_id=data.get("user_id", ""),
            keywords=[str(k) for k in keywords],
            source_block_id=data.get("source_block_id"),
            source_message_id=data.get("source_message_id"),
            created_at=data.get("created_at") or time.time(),
            updated_at=data.get("updated_at"),
        )


# ---------------------------------------------------------------------------
# Credentials and subscriptions
# ---------------------------------------------------------------------------


@dataclass
class ProviderCredential:
    """An encrypted provider API key. Only ``key_hint`` is ever displayed."""

    id: str
    owner_id: str
    provider: str
    encrypted_key: str = field(repr=False)
    key_hint: str = ""
    team_id: str | None = None
    is_valid: bool = True

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider,
            "key_hint": self.key_hint,
            "team_id": self.team_id,
            "is_valid": self.is_valid,
        }


@dataclass
class Subscription:
    """Billing subscription state mirrored from the payment provider."""

    provider_subscription_id: str
    user_id: str
    provider: str = "polar"
    customer_id: str | None = None
    plan: str = ""
    status: str = "active"
    current_period_end: str | None = None
