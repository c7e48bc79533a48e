"""Tests for the error taxonomy."""

from __future__ import annotations

import email.utils

import pytest

from blockflow.errors import (
    ChatError,
    ErrorKind,
    NotFoundError,
    ProxyError,
    classify_status,
    parse_retry_after,
    scrub_secrets,
)


class TestClassifyStatus:
    @pytest.mark.parametrize(
        "status,kind",
        [
            (401, ErrorKind.AUTH_FAILED),
            (403, ErrorKind.AUTH_FAILED),
            (429, ErrorKind.RATE_LIMITED),
            (400, ErrorKind.INVALID_REQUEST),
            (404, ErrorKind.UNKNOWN),
            (413, ErrorKind.UNKNOWN),
            (422, ErrorKind.UNKNOWN),
            (500, ErrorKind.PROVIDER_UNAVAILABLE),
            (503, ErrorKind.PROVIDER_UNAVAILABLE),
            (529, ErrorKind.PROVIDER_UNAVAILABLE),
            (402, ErrorKind.UNKNOWN),
            (418, ErrorKind.UNKNOWN),
        ],
    )
    def test_mapping(self, status: int, kind: ErrorKind) -> None:
        assert classify_status(status) is kind


class TestRetryAfter:
    def test_seconds(self) -> None:
        assert parse_retry_after("2") == 2.0
        assert parse_retry_after("1.5") == 1.5

    def test_missing_or_garbage(self) -> None:
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None
        assert parse_retry_after("soon") is None

    def test_negative_clamped(self) -> None:
        assert parse_retry_after("-3") == 0.0

    def test_http_date(self) -> None:
        now = 1_700_000_000.0
        header = email.utils.formatdate(now + 5, usegmt=True)
        assert parse_retry_after(header, now=now) == pytest.approx(5.0, abs=1.0)


class TestChatError:
    def test_retryable_kinds(self) -> None:
        assert ChatError(ErrorKind.RATE_LIMITED, "x").retryable
        assert ChatError(ErrorKind.PROVIDER_UNAVAILABLE, "x").retryable
        assert not ChatError(ErrorKind.AUTH_FAILED, "x").retryable
        assert not ChatError(ErrorKind.INVALID_REQUEST, "x").retryable

    def test_to_dict_omits_raw_body(self) -> None:
        error = ChatError(
            kind=ErrorKind.RATE_LIMITED,
            message="slow down",
            provider="openai",
            status_code=429,
            retry_after=2.0,
            raw_body='{"error": "secret details"}',
        )
        data = error.to_dict()
        assert data == {
            "type": "error",
            "kind": "rate_limited",
            "message": "slow down",
            "provider": "openai",
            "status_code": 429,
            "retry_after": 2.0,
        }
        assert "secret details" not in repr(error)

    def test_proxy_error_carries_error(self) -> None:
        error = ChatError(ErrorKind.AUTH_FAILED, "bad key")
        exc = ProxyError(error)
        assert exc.error is error
        assert exc.kind is ErrorKind.AUTH_FAILED
        assert str(exc) == "bad key"


class TestHelpers:
    def test_scrub_secrets(self) -> None:
        text = "key sk-test-123456 rejected"
        assert scrub_secrets(text, ["sk-test-123456"]) == "key [redacted] rejected"

    def test_scrub_ignores_short_and_empty(self) -> None:
        assert scrub_secrets("abc", ["ab", None, ""]) == "abc"
        assert scrub_secrets(None, ["secret"]) is None

    def test_not_found_is_key_error(self) -> None:
        with pytest.raises(KeyError):
            raise NotFoundError("Block 'x' not found")
        assert str(NotFoundError("Block 'x' not found")) == "Block 'x' not found"
