"""JSON-lines decoder (one JSON object per line)."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from blockflow.transports.base import FrameDecoder


class JSONLinesDecoder(FrameDecoder):
    """Newline-delimited JSON framing."""

    name = "jsonl"

    async def decode(self, lines: AsyncIterator[str]) -> AsyncIterator[dict[str, Any]]:
        async for line in lines:
            line = line.strip()
            if not line:
                continue
            payload = self._parse(line)
            if payload is not None:
                yield payload
