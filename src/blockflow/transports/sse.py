"""Server-Sent Events decoder.

Each ``data:`` line carries one JSON payload. Named ``event:`` frames are
attached to their payload, ``:`` comments are skipped, and the ``[DONE]``
sentinel used by OpenAI-shaped APIs ends the stream.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from blockflow.transports.base import FrameDecoder

DONE_SENTINEL = "[DONE]"


class SSEDecoder(FrameDecoder):
    """Server-Sent Events framing."""

    name = "sse"

    async def decode(self, lines: AsyncIterator[str]) -> AsyncIterator[dict[str, Any]]:
        event_name: str | None = None

        async for raw in lines:
            line = raw.rstrip("\r")
            if not line:
                event_name = None
                continue
            if line.startswith(":"):
                continue

            field, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]

            if field == "event":
                event_name = value
            elif field == "data":
                if value.strip() == DONE_SENTINEL:
                    return
                payload = self._parse(value)
                if payload is None:
                    continue
                if event_name and "type" not in payload:
                    payload["event"] = event_name
                yield payload
