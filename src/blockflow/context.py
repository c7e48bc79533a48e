"""
Context assembly for a block.

Gathers the text a block's next model call should see and fits it into a
character budget. Candidates are considered in priority order:

1. the block's own history, most recent first;
2. quoted references attached to the triggering message;
3. outputs of upstream blocks, reached through enabled incoming connections
   (one hop by default, breadth-first up to a hard depth cap when
   transitive context is requested);
4. board memory that applies to the block, constraints first, then
   decisions, facts and notes.

Items are included whole. The first item that would overflow the budget
stops assembly; it and everything after it are dropped and the payload is
marked truncated.

Example:
    from blockflow.context import ContextAssembler

    assembler = ContextAssembler(store)
    payload = assembler.assemble("block-2", budget_chars=8000)
    payload.truncated, payload.token_estimate
"""

from __future__ import annotations

from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from blockflow.config import ContextConfig
from blockflow.errors import ChatError, ErrorKind
from blockflow.logging import get_logger
from blockflow.memory import MemoryFilter, select_memory
from blockflow.models import (
    ChatReference,
    Connection,
    MemoryItem,
    Message,
    MessageRole,
    format_reference,
)
from blockflow.store.base import GraphStore

logger = get_logger("context")


# ---------------------------------------------------------------------------
# Token estimation
# ---------------------------------------------------------------------------


def estimate_tokens(text: str) -> int:
    """
    Estimate token count from text using chars/4 heuristic.

    Good enough for budget display; providers report exact usage afterwards.
    """
    return max(1, len(text) // 4)


# ---------------------------------------------------------------------------
# Payload types
# ---------------------------------------------------------------------------


class SourceKind(str, Enum):
    HISTORY = "history"
    REFERENCE = "reference"
    UPSTREAM = "upstream"
    MEMORY = "memory"


@dataclass
class ContextItem:
    """
    One unit of assembled context.

    Attributes:
        text: Text given to the model.
        source_block_id: Block the text came from.
        source_kind: Which candidate group produced the item.
        role: Message role for history items, ``context`` otherwise.
        message_id: Originating message, when there is exactly one.
        depth: Hops from the assembled block (0 for own history).
        title: Display title of the source block.
        memory: The board memory item behind a memory item.
    """

    text: str
    source_block_id: str
    source_kind: SourceKind
    role: str = "context"
    message_id: str | None = None
    depth: int = 0
    title: str = ""
    memory: MemoryItem | None = None

    @property
    def char_count(self) -> int:
        return len(self.text)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "source_block_id": self.source_block_id,
            "source_kind": self.source_kind.value,
            "role": self.role,
            "message_id": self.message_id,
            "depth": self.depth,
            "title": self.title,
            "memory_id": self.memory.id if self.memory else None,
        }


@dataclass
class ContextPayload:
    """Result of an assembly: included items in priority order plus accounting."""

    items: list[ContextItem] = field(default_factory=list)
    truncated: bool = False
    dropped_count: int = 0
    budget_chars: int = 0

    @property
    def included_count(self) -> int:
        return len(self.items)

    @property
    def char_count(self) -> int:
        return sum(item.char_count for item in self.items)

    @property
    def token_estimate(self) -> int:
        return self.char_count // 4

    def history(self) -> list[ContextItem]:
        """Own-history items in chronological order."""
        return list(reversed([i for i in self.items if i.source_kind is SourceKind.HISTORY]))

    def references(self) -> list[ContextItem]:
        return [i for i in self.items if i.source_kind is SourceKind.REFERENCE]

    def upstream(self) -> list[ContextItem]:
        return [i for i in self.items if i.source_kind is SourceKind.UPSTREAM]

    def memory(self) -> list[ContextItem]:
        """Memory items in importance order."""
        return [i for i in self.items if i.source_kind is SourceKind.MEMORY]

    def budget_warning(self) -> ChatError | None:
        """Informational error when items were dropped to fit the budget."""
        if not self.truncated:
            return None
        return ChatError(
            kind=ErrorKind.CONTEXT_BUDGET_EXCEEDED,
            message=(
                f"Context truncated: {self.dropped_count} item(s) dropped "
                f"to fit {self.budget_chars} characters"
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "included_count": self.included_count,
            "dropped_count": self.dropped_count,
            "truncated": self.truncated,
            "char_count": self.char_count,
            "token_estimate": self.token_estimate,
            "budget_chars": self.budget_chars,
        }


# ---------------------------------------------------------------------------
# Assembler
# ---------------------------------------------------------------------------


class ContextAssembler:
    """
    Builds ``ContextPayload`` values from the graph store.

    The assembler is stateless between calls and only reads from the store,
    so concurrent assemblies for different blocks need no coordination.
    """

    def __init__(self, store: GraphStore, config: ContextConfig | None = None) -> None:
        self.store = store
        self.config = config or ContextConfig()

    def assemble(
        self,
        block_id: str,
        budget_chars: int | None = None,
        references: Sequence[ChatReference] = (),
        include_transitive: bool = False,
        max_depth: int | None = None,
        include_memory: bool = True,
        memory_filter: MemoryFilter | None = None,
    ) -> ContextPayload:
        """
        Assemble context for ``block_id``.

        Args:
            block_id: Block about to be invoked.
            budget_chars: Character budget; defaults to the configured one.
            references: Quoted spans attached to the triggering message.
            include_transitive: Follow upstream connections past one hop.
            max_depth: Hop limit when transitive, clamped to the hard cap.
            include_memory: Add board memory after the other sources.
            memory_filter: Narrows the memory items; items saved from other
                blocks are always excluded.

        Raises:
            NotFoundError: If the block does not exist.
        """
        block = self.store.get_block(block_id)
        budget = self.config.default_budget_chars if budget_chars is None else budget_chars
        if budget < 0:
            raise ValueError("budget_chars must be non-negative")

        depth_limit = 1
        if include_transitive:
            cap = self.config.max_traversal_depth
            depth_limit = max(1, min(max_depth or cap, cap))

        candidates = [
            *self._history_items(block_id),
            *self._reference_items(references),
            *self._upstream_items(block_id, depth_limit),
        ]
        if include_memory:
            candidates.extend(self._memory_items(block.board_id, block_id, memory_filter))
        payload = self._fit(candidates, budget)

        if payload.truncated:
            logger.info(
                "Context for %s truncated: kept %d of %d items (%d/%d chars)",
                block_id,
                payload.included_count,
                len(candidates),
                payload.char_count,
                budget,
            )
        else:
            logger.debug(
                "Context for %s: %d items, %d chars",
                block_id,
                payload.included_count,
                payload.char_count,
            )
        return payload

    @staticmethod
    def _fit(candidates: list[ContextItem], budget: int) -> ContextPayload:
        payload = ContextPayload(budget_chars=budget)
        used = 0
        for index, item in enumerate(candidates):
            if used + item.char_count > budget:
                payload.truncated = True
                payload.dropped_count = len(candidates) - index
                break
            payload.items.append(item)
            used += item.char_count
        return payload

    # -- candidate groups ---------------------------------------------------

    def _history_items(self, block_id: str) -> list[ContextItem]:
        messages = [m for m in self.store.list_messages(block_id) if m.role is not MessageRole.SYSTEM]
        recent = messages[-self.config.max_history_messages:] if self.config.max_history_messages else []
        return [
            ContextItem(
                text=m.content,
                source_block_id=m.source_block_id or block_id,
                source_kind=SourceKind.HISTORY,
                role=m.role.value,
                message_id=m.id,
            )
            for m in reversed(recent)
        ]

    def _reference_items(self, references: Sequence[ChatReference]) -> list[ContextItem]:
        items = []
        for index, reference in enumerate(references, start=1):
            available = self.store.has_block(reference.source_block_id)
            items.append(
                ContextItem(
                    text=format_reference(index, reference, available=available),
                    source_block_id=reference.source_block_id,
                    source_kind=SourceKind.REFERENCE,
                    message_id=reference.source_message_id,
                )
            )
        return items

    def _upstream_items(self, block_id: str, depth_limit: int) -> list[ContextItem]:
        items: list[ContextItem] = []
        visited = {block_id}
        queue: deque[tuple[str, int]] = deque([(block_id, 0)])

        while queue:
            current, depth = queue.popleft()
            if depth >= depth_limit:
                continue
            for connection in self.store.incoming_connections(current):
                if not connection.enabled:
                    continue
                source_id = connection.source_block_id
                if source_id in visited:
                    continue
                visited.add(source_id)

                try:
                    source = self.store.get_block(source_id)
                except KeyError:
                    logger.warning("Connection %s points at missing block %s", connection.id, source_id)
                    continue

                item = self._connection_item(connection, depth + 1, source.title)
                if item is not None:
                    items.append(item)
                queue.append((source_id, depth + 1))
        return items

    def _memory_items(
        self, board_id: str, block_id: str, memory_filter: MemoryFilter | None
    ) -> list[ContextItem]:
        memory_filter = replace(memory_filter or MemoryFilter(), source_block_id=block_id)
        return [
            ContextItem(
                text=item.content,
                source_block_id=item.source_block_id or block_id,
                source_kind=SourceKind.MEMORY,
                memory=item,
            )
            for item in select_memory(self.store.list_memory(board_id), memory_filter)
        ]

    def _connection_item(self, connection: Connection, depth: int, title: str) -> ContextItem | None:
        messages = self.store.list_messages(connection.source_block_id)
        latest = _latest_assistant(messages)

        if connection.context_type == "full":
            dialogue = [
                m for m in messages if m.role in (MessageRole.USER, MessageRole.ASSISTANT)
            ][-self.config.max_messages_per_source:]
            if not dialogue:
                return None
            text = "\n\n".join(f"[{m.role.value.upper()}]: {m.content}" for m in dialogue)
            message_id = None
        else:
            if latest is None:
                return None
            text = latest.content
            if connection.context_type == "summary" and len(text) > self.config.summary_chars:
                text = text[: self.config.summary_chars] + "..."
            message_id = latest.id

        return ContextItem(
            text=connection.apply_template(text),
            source_block_id=connection.source_block_id,
            source_kind=SourceKind.UPSTREAM,
            message_id=message_id,
            depth=depth,
            title=title,
        )


def _latest_assistant(messages: list[Message]) -> Message | None:
    for message in reversed(messages):
        if message.role is MessageRole.ASSISTANT and message.content:
            return message
    return None
