"""Tests for configuration models."""

from pathlib import Path
from textwrap import dedent

import pytest

from blockflow.config import BlockflowConfig, ContextConfig

_ENV_VARS = (
    "BLOCKFLOW_CONFIG",
    "BLOCKFLOW_ENCRYPTION_KEY",
    "BLOCKFLOW_WEBHOOK_SECRET",
    "BLOCKFLOW_REQUEST_TIMEOUT",
    "BLOCKFLOW_LOG_LEVEL",
    "BLOCKFLOW_DATABASE",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    # setenv first so teardown also removes values loaded from .env files
    for name in _ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


class TestBlockflowConfig:
    """Tests for BlockflowConfig."""

    def test_default_values(self) -> None:
        """Should have sensible defaults."""
        config = BlockflowConfig()

        assert config.encryption_key is None
        assert config.request_timeout == 60.0
        assert config.retry_enabled is True
        assert config.retry_base_delay == 1.0
        assert config.max_retry_wait == 30.0
        assert config.aggregator_key_prefix == "sk-or-"
        assert config.context.default_budget_chars == 8000
        assert config.context.max_traversal_depth == 3

    def test_from_yaml_string(self) -> None:
        """Should parse nested context settings and endpoint overrides."""
        config = BlockflowConfig.from_yaml_string(
            dedent("""
            request_timeout: 15
            retry_enabled: false
            base_urls:
              openai: http://localhost:9999/v1/chat/completions
            context:
              default_budget_chars: 1200
              max_traversal_depth: 2
            """)
        )

        assert config.request_timeout == 15.0
        assert config.retry_enabled is False
        assert config.base_urls["openai"].startswith("http://localhost:9999")
        assert config.context.default_budget_chars == 1200
        assert config.context.max_traversal_depth == 2
        assert config.context.summary_chars == 500

    def test_empty_yaml(self) -> None:
        """Should fall back to defaults for an empty document."""
        config = BlockflowConfig.from_yaml_string("")
        assert config.request_timeout == 60.0

    def test_from_yaml_file(self, tmp_path: Path) -> None:
        """Should load from a file path."""
        path = tmp_path / "blockflow.yaml"
        path.write_text("default_max_tokens: 512\n")
        assert BlockflowConfig.from_yaml(path).default_max_tokens == 512

    def test_to_dict_omits_secrets(self) -> None:
        """Should never serialize secrets."""
        config = BlockflowConfig(encryption_key="k" * 64, webhook_secret="whsec")
        data = config.to_dict()

        assert "encryption_key" not in data
        assert "webhook_secret" not in data
        assert "k" * 64 not in repr(config)
        assert data["context"] == ContextConfig().to_dict()

    def test_round_trip(self) -> None:
        """Should rebuild an equal config from to_dict."""
        config = BlockflowConfig(request_timeout=12.0, base_urls={"xai": "http://x"})
        assert BlockflowConfig.from_dict(config.to_dict()) == config


class TestFromEnv:
    """Tests for environment loading."""

    def test_env_overrides(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Should read secrets and overrides from BLOCKFLOW_* variables."""
        clean_env.setenv("BLOCKFLOW_ENCRYPTION_KEY", "secret-key")
        clean_env.setenv("BLOCKFLOW_REQUEST_TIMEOUT", "5")
        clean_env.setenv("BLOCKFLOW_LOG_LEVEL", "DEBUG")

        config = BlockflowConfig.from_env(tmp_path / "missing.env")

        assert config.encryption_key == "secret-key"
        assert config.request_timeout == 5.0
        assert config.log_level == "DEBUG"

    def test_yaml_base_then_env(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Should use BLOCKFLOW_CONFIG as the base and let variables win."""
        path = tmp_path / "blockflow.yaml"
        path.write_text("request_timeout: 20\nattribution_title: Canvas\n")
        clean_env.setenv("BLOCKFLOW_CONFIG", str(path))
        clean_env.setenv("BLOCKFLOW_REQUEST_TIMEOUT", "7")

        config = BlockflowConfig.from_env(tmp_path / "missing.env")

        assert config.attribution_title == "Canvas"
        assert config.request_timeout == 7.0

    def test_dotenv_file(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Should load variables from a .env file."""
        env_file = tmp_path / ".env"
        env_file.write_text("BLOCKFLOW_WEBHOOK_SECRET=from-dotenv\n")

        config = BlockflowConfig.from_env(env_file)

        assert config.webhook_secret == "from-dotenv"
