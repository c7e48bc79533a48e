"""
Configuration models for blockflow.

Provides a flexible configuration system that can be loaded from YAML files,
the environment (including a local ``.env``), or constructed
programmatically. Secrets are never written back out by ``to_dict``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

ENV_PREFIX = "BLOCKFLOW_"


@dataclass
class ContextConfig:
    """Limits applied when assembling context for a block."""

    default_budget_chars: int = 8000  # Character budget per assembly
    max_history_messages: int = 50  # Own messages considered, most recent first
    max_messages_per_source: int = 20  # Transcript cap for "full" connections
    max_traversal_depth: int = 3  # Hard cap on upstream hops
    summary_chars: int = 500  # Cut length for "summary" connections

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContextConfig:
        return cls(
            default_budget_chars=data.get("default_budget_chars", 8000),
            max_history_messages=data.get("max_history_messages", 50),
            max_messages_per_source=data.get("max_messages_per_source", 20),
            max_traversal_depth=data.get("max_traversal_depth", 3),
            summary_chars=data.get("summary_chars", 500),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "default_budget_chars": self.default_budget_chars,
            "max_history_messages": self.max_history_messages,
            "max_messages_per_source": self.max_messages_per_source,
            "max_traversal_depth": self.max_traversal_depth,
            "summary_chars": self.summary_chars,
        }


@dataclass
class BlockflowConfig:
    """
    Main configuration for blockflow.

    Example YAML:
        request_timeout: 60
        retry_base_delay: 1.0
        base_urls:
          openai: https://llm-gateway.internal/v1/chat/completions
        attribution_title: Blockflow
        context:
          default_budget_chars: 8000
          max_traversal_depth: 3

    Secrets (``encryption_key``, ``webhook_secret``) are expected from the
    environment: ``BLOCKFLOW_ENCRYPTION_KEY`` and ``BLOCKFLOW_WEBHOOK_SECRET``.
    """

    # Secrets
    encryption_key: str | None = field(default=None, repr=False)
    webhook_secret: str | None = field(default=None, repr=False)

    # Outbound calls
    request_timeout: float = 60.0  # Read/write timeout per provider call
    connect_timeout: float = 10.0
    base_urls: dict[str, str] = field(default_factory=dict)  # Endpoint overrides

    # Retry
    retry_enabled: bool = True
    retry_base_delay: float = 1.0  # Used when no Retry-After is given
    retry_jitter: float = 0.25  # Max random seconds added to a backoff
    max_retry_wait: float = 30.0  # Longer Retry-After values are not waited for

    # Aggregator routing
    aggregator_key_prefix: str = "sk-or-"
    attribution_referer: str = "https://blockflow.app"
    attribution_title: str = "Blockflow"

    # Generation defaults
    default_max_tokens: int = 2048
    default_temperature: float = 0.7

    # Runtime
    log_level: str = "INFO"
    database_path: str | None = None  # SQLite file; None = in-memory store

    context: ContextConfig = field(default_factory=ContextConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BlockflowConfig:
        """Create config from a dictionary."""
        return cls(
            encryption_key=data.get("encryption_key"),
            webhook_secret=data.get("webhook_secret"),
            request_timeout=float(data.get("request_timeout", 60.0)),
            connect_timeout=float(data.get("connect_timeout", 10.0)),
            base_urls=dict(data.get("base_urls", {})),
            retry_enabled=data.get("retry_enabled", True),
            retry_base_delay=float(data.get("retry_base_delay", 1.0)),
            retry_jitter=float(data.get("retry_jitter", 0.25)),
            max_retry_wait=float(data.get("max_retry_wait", 30.0)),
            aggregator_key_prefix=data.get("aggregator_key_prefix", "sk-or-"),
            attribution_referer=data.get("attribution_referer", "https://blockflow.app"),
            attribution_title=data.get("attribution_title", "Blockflow"),
            default_max_tokens=data.get("default_max_tokens", 2048),
            default_temperature=data.get("default_temperature", 0.7),
            log_level=data.get("log_level", "INFO"),
            database_path=data.get("database_path"),
            context=ContextConfig.from_dict(data.get("context", {})),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> BlockflowConfig:
        """Load config from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_yaml_string(cls, content: str) -> BlockflowConfig:
        """Load config from a YAML string."""
        data = yaml.safe_load(content)
        return cls.from_dict(data or {})

    @classmethod
    def from_env(cls, dotenv_path: str | Path | None = None) -> BlockflowConfig:
        """
        Build config from the environment.

        A ``.env`` file is loaded first (existing variables win). If
        ``BLOCKFLOW_CONFIG`` points at a YAML file it provides the base
        values, which ``BLOCKFLOW_*`` variables then override.
        """
        load_dotenv(dotenv_path)

        config_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        config = cls.from_yaml(Path(config_path)) if config_path else cls()

        env = os.environ
        if env.get(f"{ENV_PREFIX}ENCRYPTION_KEY"):
            config.encryption_key = env[f"{ENV_PREFIX}ENCRYPTION_KEY"]
        if env.get(f"{ENV_PREFIX}WEBHOOK_SECRET"):
            config.webhook_secret = env[f"{ENV_PREFIX}WEBHOOK_SECRET"]
        if env.get(f"{ENV_PREFIX}REQUEST_TIMEOUT"):
            config.request_timeout = float(env[f"{ENV_PREFIX}REQUEST_TIMEOUT"])
        if env.get(f"{ENV_PREFIX}LOG_LEVEL"):
            config.log_level = env[f"{ENV_PREFIX}LOG_LEVEL"]
        if env.get(f"{ENV_PREFIX}DATABASE"):
            config.database_path = env[f"{ENV_PREFIX}DATABASE"]
        return config

    def to_dict(self) -> dict[str, Any]:
        """Convert config to a dictionary. Secrets are omitted."""
        return {
            "request_timeout": self.request_timeout,
            "connect_timeout": self.connect_timeout,
            "base_urls": dict(self.base_urls),
            "retry_enabled": self.retry_enabled,
            "retry_base_delay": self.retry_base_delay,
            "retry_jitter": self.retry_jitter,
            "max_retry_wait": self.max_retry_wait,
            "aggregator_key_prefix": self.aggregator_key_prefix,
            "attribution_referer": self.attribution_referer,
            "attribution_title": self.attribution_title,
            "default_max_tokens": self.default_max_tokens,
            "default_temperature": self.default_temperature,
            "log_level": self.log_level,
            "database_path": self.database_path,
            "context": self.context.to_dict(),
        }
