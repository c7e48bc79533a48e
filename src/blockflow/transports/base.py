"""Base frame decoder interface."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from blockflow.logging import get_logger

logger = get_logger("transports")


class FrameDecoder(ABC):
    """Turns a provider's streamed lines into JSON payloads."""

    name: str = ""

    @abstractmethod
    def decode(self, lines: AsyncIterator[str]) -> AsyncIterator[dict[str, Any]]:
        """Decode streamed text lines.

        Args:
            lines: Response body split into lines (``httpx.Response.aiter_lines``).

        Yields:
            One parsed JSON object per provider frame.
        """
        ...

    @staticmethod
    def _parse(data: str) -> dict[str, Any] | None:
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Skipping undecodable frame: %.200s", data)
            return None
        if not isinstance(payload, dict):
            logger.debug("Skipping non-object frame: %.200s", data)
            return None
        return payload
