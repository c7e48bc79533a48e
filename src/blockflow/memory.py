"""
Board memory selection and formatting.

Memory items are short facts, decisions, constraints and notes saved on a
board. This module picks the items relevant to a block, orders them by
importance and renders them as a prompt section.

Example:
    from blockflow.memory import MemoryFilter, format_memory, select_memory

    items = select_memory(store.list_memory(board_id), MemoryFilter(source_block_id="block-2"))
    system += "\\n\\n" + format_memory(items)
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from blockflow.models import MemoryItem, MemoryScope, MemoryType, new_id

# Lower sorts first
TYPE_PRIORITY = {
    MemoryType.CONSTRAINT: 0,
    MemoryType.DECISION: 1,
    MemoryType.FACT: 2,
    MemoryType.NOTE: 3,
}
SCOPE_PRIORITY = {
    MemoryScope.BOARD: 0,
    MemoryScope.BLOCK: 1,
    MemoryScope.CHAT: 2,
}

SECTION_TITLES = {
    MemoryType.FACT: "Facts",
    MemoryType.DECISION: "Decisions",
    MemoryType.CONSTRAINT: "Constraints",
    MemoryType.NOTE: "Notes",
}

MEMORY_HEADER = "## Memory"

_WORD_RE = re.compile(r"[^\w\s]")


@dataclass
class MemoryFilter:
    """
    Which memory items a block should see.

    Empty ``scopes``/``types``/``keywords`` mean no restriction. With
    ``source_block_id`` set, only board-wide items and items saved from that
    block pass.
    """

    scopes: list[MemoryScope] = field(default_factory=list)
    types: list[MemoryType] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    source_block_id: str | None = None

    def matches(self, item: MemoryItem) -> bool:
        if self.scopes and item.scope not in self.scopes:
            return False
        if self.types and item.type not in self.types:
            return False
        if self.source_block_id is not None and not item.applies_to(self.source_block_id):
            return False
        if self.keywords:
            wanted = [k.lower() for k in self.keywords]
            item_keywords = [k.lower() for k in item.keywords]
            content = item.content.lower()
            if not any(k in item_keywords or k in content for k in wanted):
                return False
        return True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MemoryFilter:
        data = data or {}
        if not isinstance(data, dict):
            raise ValueError("memory filter must be an object")
        for key in ("scopes", "types", "keywords"):
            if not isinstance(data.get(key) or [], list):
                raise ValueError(f"{key} must be a list")
        return cls(
            scopes=[MemoryScope(s) for s in data.get("scopes") or []],
            types=[MemoryType(t) for t in data.get("types") or []],
            keywords=[str(k) for k in data.get("keywords") or []],
            source_block_id=data.get("source_block_id") or data.get("sourceBlockId"),
        )


def rank_memory(items: Iterable[MemoryItem]) -> list[MemoryItem]:
    """Order items by type (constraints first), then scope (board first)."""
    return sorted(items, key=lambda i: (TYPE_PRIORITY[i.type], SCOPE_PRIORITY[i.scope]))


def select_memory(items: Iterable[MemoryItem], memory_filter: MemoryFilter | None = None) -> list[MemoryItem]:
    """Filter and rank items. No filter keeps everything."""
    memory_filter = memory_filter or MemoryFilter()
    return rank_memory(i for i in items if memory_filter.matches(i))


def format_memory_line(item: MemoryItem, include_scope: bool = True) -> str:
    return f"- {item.content} [{item.scope.value}]" if include_scope else f"- {item.content}"


def format_memory(
    items: Sequence[MemoryItem],
    include_scope: bool = True,
    header: str = MEMORY_HEADER,
) -> str:
    """
    Render items as a prompt section grouped by type.

    Returns an empty string when there is nothing to show.
    """
    if not items:
        return ""

    lines = [header] if header else []
    for memory_type in (MemoryType.FACT, MemoryType.DECISION, MemoryType.CONSTRAINT, MemoryType.NOTE):
        group = [i for i in items if i.type is memory_type]
        if not group:
            continue
        lines.append(f"\n### {SECTION_TITLES[memory_type]}")
        lines.extend(format_memory_line(i, include_scope) for i in group)
    return "\n".join(lines)


def extract_keywords(content: str, limit: int = 5) -> list[str]:
    """Most frequent words longer than three characters, lowercased."""
    words = [w for w in _WORD_RE.sub(" ", content.lower()).split() if len(w) > 3]
    return [word for word, _ in Counter(words).most_common(limit)]


def create_memory_item(
    board_id: str,
    content: str,
    type: MemoryType | str = MemoryType.NOTE,
    scope: MemoryScope | str = MemoryScope.BOARD,
    user_id: str = "",
    source_block_id: str | None = None,
    source_message_id: str | None = None,
    keywords: list[str] | None = None,
) -> MemoryItem:
    """Build a new item, deriving keywords from the content when none are given."""
    content = content.strip()
    if not content:
        raise ValueError("memory content must not be empty")
    return MemoryItem(
        id=new_id("mem_"),
        board_id=board_id,
        content=content,
        type=MemoryType(type),
        scope=MemoryScope(scope),
        user_id=user_id,
        keywords=keywords if keywords is not None else extract_keywords(content),
        source_block_id=source_block_id,
        source_message_id=source_message_id,
    )
