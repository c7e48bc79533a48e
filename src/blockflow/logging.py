"""
Logging utilities for blockflow.

Provides a centralized logging configuration for the entire package. Every
handler installed by ``setup_logging`` masks provider-key-shaped tokens so a
credential that slips into a log message never reaches the output.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import TextIO

# Package root logger
_root_logger = logging.getLogger("blockflow")

_SECRET_PATTERNS = [
    re.compile(r"sk-(?:ant-|or-(?:v1-)?|proj-)?[A-Za-z0-9_\-]{8,}"),
    re.compile(r"AIza[0-9A-Za-z_\-]{20,}"),
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._\-]{8,}"),
    re.compile(r"(?i)([?&]key=)[^&\s]+"),
]


def redact(text: str) -> str:
    """Mask API-key-shaped substrings in ``text``."""
    for pattern in _SECRET_PATTERNS:
        if pattern.groups:
            text = pattern.sub(lambda m: m.group(1) + "[redacted]", text)
        else:
            text = pattern.sub("[redacted]", text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Rewrites log records so rendered messages never contain API keys."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def setup_logging(
    level: str | int = "INFO",
    format: str | None = None,
    stream: TextIO | None = None,
    file: str | None = None,
) -> None:
    """
    Configure logging for blockflow.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL) or int
        format: Custom log format string
        stream: Output stream (defaults to stderr)
        file: Optional file path to write logs

    Example:
        from blockflow.logging import setup_logging

        # Basic setup
        setup_logging("DEBUG")

        # With file output
        setup_logging("INFO", file="blockflow.log")
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    _root_logger.setLevel(level)
    _root_logger.handlers.clear()

    if format is None:
        format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    formatter = logging.Formatter(format)
    redactor = SecretRedactingFilter()

    stream_handler = logging.StreamHandler(stream or sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(level)
    stream_handler.addFilter(redactor)
    _root_logger.addHandler(stream_handler)

    if file:
        file_handler = logging.FileHandler(file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        file_handler.addFilter(redactor)
        _root_logger.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger for a submodule.

    Args:
        name: Submodule name (e.g., "proxy", "canvas")

    Returns:
        Logger instance

    Example:
        from blockflow.logging import get_logger

        logger = get_logger("proxy")
        logger.info("Dispatching to %s", provider)
    """
    if name.startswith("blockflow."):
        return logging.getLogger(name)
    return logging.getLogger(f"blockflow.{name}")


def set_level(level: str | int) -> None:
    """Set the log level for blockflow."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    _root_logger.setLevel(level)


def disable() -> None:
    """Disable all logging for blockflow."""
    _root_logger.disabled = True


def enable() -> None:
    """Re-enable logging for blockflow."""
    _root_logger.disabled = False
