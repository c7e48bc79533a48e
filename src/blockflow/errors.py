"""
Error taxonomy for the proxy, vault and canvas layers.

Provider failures are normalized into a ``ChatError`` value that is relayed to
clients as the terminal item of a stream. Exceptions in this module are used
where an error has to cross a call boundary (adapter to proxy, vault to
proxy, store to service).

Example:
    from blockflow.errors import ChatError, ErrorKind, classify_status

    kind = classify_status(429)          # ErrorKind.RATE_LIMITED
    err = ChatError(kind, "Rate limit exceeded", retry_after=2.0)
    err.retryable                        # True
"""

from __future__ import annotations

import email.utils
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Normalized error categories surfaced to clients."""

    UNSUPPORTED_PROVIDER = "unsupported_provider"
    AUTH_FAILED = "auth_failed"
    RATE_LIMITED = "rate_limited"
    INVALID_REQUEST = "invalid_request"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    CONTEXT_BUDGET_EXCEEDED = "context_budget_exceeded"
    VAULT_DECRYPT_FAILED = "vault_decrypt_failed"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.PROVIDER_UNAVAILABLE})


@dataclass
class ChatError:
    """
    Normalized provider or pipeline error.

    Attributes:
        kind: Error category.
        message: Human-readable message safe to show to the user.
        provider: Provider name the error originated from, if any.
        status_code: Upstream HTTP status, if any.
        retry_after: Seconds the provider asked us to wait (rate limits).
        raw_body: Upstream body kept for diagnostics, never sent to clients.
    """

    kind: ErrorKind
    message: str
    provider: str | None = None
    status_code: int | None = None
    retry_after: float | None = None
    raw_body: str | None = field(default=None, repr=False)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_dict(self) -> dict[str, Any]:
        """Client-facing representation. Never includes ``raw_body``."""
        data: dict[str, Any] = {
            "type": "error",
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.provider:
            data["provider"] = self.provider
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class BlockflowError(Exception):
    """Base class for all blockflow errors."""


class ConfigurationError(BlockflowError):
    """Raised for invalid configuration (unknown provider, missing key material)."""


class NotFoundError(BlockflowError, KeyError):
    """Raised when a board, block, message or credential does not exist."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class VaultError(BlockflowError):
    """Raised when a credential blob cannot be decrypted."""

    kind = ErrorKind.VAULT_DECRYPT_FAILED


class ProxyError(BlockflowError):
    """Carries a ``ChatError`` across the adapter/proxy boundary."""

    def __init__(self, error: ChatError) -> None:
        super().__init__(error.message)
        self.error = error

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind


class DragStateError(BlockflowError):
    """Raised on an illegal drag transition (second drag, foreign release)."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def classify_status(status: int) -> ErrorKind:
    """Map an upstream HTTP status code to an ``ErrorKind``."""
    if status in (401, 403):
        return ErrorKind.AUTH_FAILED
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status == 400:
        return ErrorKind.INVALID_REQUEST
    if 500 <= status <= 599:
        return ErrorKind.PROVIDER_UNAVAILABLE
    return ErrorKind.UNKNOWN


def parse_retry_after(value: str | None, now: float | None = None) -> float | None:
    """
    Parse a ``Retry-After`` header.

    Accepts delta-seconds (``"2"``, ``"1.5"``) or an HTTP-date. Returns
    ``None`` when the header is absent or unparsable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            parsed = email.utils.parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if parsed is None:
            return None
        current = time.time() if now is None else now
        return max(0.0, parsed.timestamp() - current)
    return max(0.0, seconds)


def scrub_secrets(text: str | None, secrets: Iterable[str | None]) -> str | None:
    """Replace every occurrence of the given secrets in ``text``."""
    if not text:
        return text
    for secret in secrets:
        if secret and len(secret) >= 4:
            text = text.replace(secret, "[redacted]")
    return text
