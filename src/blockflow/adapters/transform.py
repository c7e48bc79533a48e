"""Cross-provider message transformation utilities."""
from __future__ import annotations

from blockflow.invocation import ChatMessage


def drop_empty(messages: list[ChatMessage]) -> list[ChatMessage]:
    """Skip messages with no content (aborted or errored turns)."""
    return [m for m in messages if m.content and m.content.strip()]


def merge_consecutive(messages: list[ChatMessage]) -> list[ChatMessage]:
    """Merge adjacent messages with the same role.

    Providers that require strictly alternating turns (Anthropic, Google)
    reject two user messages in a row, which happens when context messages
    are injected ahead of the user's own message.
    """
    merged: list[ChatMessage] = []
    for message in messages:
        if merged and merged[-1].role == message.role:
            merged[-1] = ChatMessage(
                role=message.role,
                content=f"{merged[-1].content}\n\n{message.content}",
            )
        else:
            merged.append(ChatMessage(role=message.role, content=message.content))
    return merged


def ensure_user_first(messages: list[ChatMessage]) -> list[ChatMessage]:
    """Drop leading assistant turns; alternating APIs must open with the user."""
    index = 0
    while index < len(messages) and messages[index].role != "user":
        index += 1
    return messages[index:]


def alternating_turns(messages: list[ChatMessage]) -> list[ChatMessage]:
    """Dialogue (no system messages) reshaped for strictly alternating APIs."""
    dialogue = [m for m in messages if m.role != "system"]
    return ensure_user_first(merge_consecutive(drop_empty(dialogue)))
