"""Stream framing for provider responses."""

from blockflow.transports.base import FrameDecoder
from blockflow.transports.jsonl import JSONLinesDecoder
from blockflow.transports.sse import SSEDecoder

_DECODERS: dict[str, type[FrameDecoder]] = {
    "sse": SSEDecoder,
    "jsonl": JSONLinesDecoder,
}


def get_decoder(stream_format: str) -> FrameDecoder:
    """Return a decoder for ``"sse"`` or ``"jsonl"``."""
    try:
        return _DECODERS[stream_format]()
    except KeyError:
        available = ", ".join(_DECODERS)
        raise ValueError(f"Unknown stream format '{stream_format}'. Available: {available}") from None


__all__ = ["FrameDecoder", "JSONLinesDecoder", "SSEDecoder", "get_decoder"]
