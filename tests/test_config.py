"""
Tests for configuration loading and validation.
"""

import dataclasses
import os
from unittest.mock import patch

import pytest

from src.shopvoice.config import ConfigError, get_config


def _reload(**env):
    with patch.dict(os.environ, env):
        get_config.cache_clear()
        return get_config()


class TestConfig:
    def test_defaults(self):
        config = get_config()
        assert config.echo_checkout_window_ms == 1500
        assert config.echo_command_window_ms == 4000
        assert config.checkout_grace_ms == 1500
        assert config.reconnect_max_attempts == 3
        assert config.action_log_size == 20
        assert config.oracle_timeout_seconds == 8.0
        config.validate()

    def test_env_overrides(self):
        config = _reload(ECHO_COMMAND_WINDOW_MS="2500", RECONNECT_MAX_ATTEMPTS="5", DEFAULT_LOCALE="ar-SA")
        assert config.echo_command_window_ms == 2500
        assert config.reconnect_max_attempts == 5
        assert config.default_locale == "ar"

    def test_bad_number_falls_back_to_default(self):
        assert _reload(CHECKOUT_GRACE_MS="soon").checkout_grace_ms == 1500

    def test_openai_provider_selects_openai_model(self):
        config = _reload(LLM_PROVIDER="openai", OPENAI_API_KEY="sk-test", OPENAI_MODEL="gpt-4o-mini")
        assert config.oracle_model == "gpt-4o-mini"
        assert config.oracle_api_key == "sk-test"
        config.validate()

    def test_missing_assistant_id(self):
        config = dataclasses.replace(get_config(), assistant_id="")
        with pytest.raises(ConfigError, match="ASSISTANT_ID"):
            config.validate()

    def test_invalid_provider(self):
        config = dataclasses.replace(get_config(), llm_provider="anthropic")
        with pytest.raises(ConfigError):
            config.validate()

    def test_non_positive_timeout(self):
        config = dataclasses.replace(get_config(), oracle_timeout_seconds=0)
        with pytest.raises(ConfigError):
            config.validate()
