"""Tests for gateway configuration (chatgate.config)."""

import pytest
from pydantic import ValidationError

from chatgate.config import (
    BUILTIN_VENDOR_SERVERS,
    Environment,
    Settings,
    clear_settings_cache,
    get_settings,
)


def _make_settings(**overrides) -> Settings:
    """Build a Settings instance with test defaults + overrides."""
    defaults = {"CHATGATE_ENV": "test"}
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


class TestSettingsDefaults:
    def test_defaults(self):
        s = _make_settings()

        assert s.chatgate_env == Environment.TEST
        assert s.default_provider == "openai"
        assert s.default_max_context == 4000
        assert s.max_message_tokens == 4000
        assert s.max_message_words == 20000
        assert s.llm_timeout_s == 45
        assert s.proxy_url is None
        assert s.supports_proxy is False

    def test_overrides(self):
        s = _make_settings(MAX_MESSAGE_TOKENS=8000, PROXY_URL="http://proxy:3128")

        assert s.max_message_tokens == 8000
        assert s.supports_proxy is True


class TestSettingsValidation:
    """Limits must be positive; vendor keys need a server."""

    @pytest.mark.parametrize(
        "name", ["DEFAULT_MAX_CONTEXT", "MAX_MESSAGE_TOKENS", "MAX_MESSAGE_WORDS", "LLM_TIMEOUT_S"]
    )
    def test_non_positive_limit_rejected(self, name):
        with pytest.raises(ValidationError, match=name):
            _make_settings(**{name: 0})

    def test_vendor_without_server_rejected(self):
        with pytest.raises(ValidationError, match="acme"):
            _make_settings(VENDOR_API_KEYS={"acme": "k"})

    def test_vendor_with_builtin_server(self):
        s = _make_settings(VENDOR_API_KEYS={"moonshot": "k"})
        assert s.vendor_server("moonshot") == BUILTIN_VENDOR_SERVERS["moonshot"]

    def test_vendor_server_override(self):
        s = _make_settings(
            VENDOR_API_KEYS={"moonshot": "k"},
            VENDOR_SERVERS={"moonshot": "https://moonshot.internal/v1"},
        )
        assert s.vendor_server("moonshot") == "https://moonshot.internal/v1"

    def test_unknown_environment_rejected(self):
        with pytest.raises(ValidationError):
            _make_settings(CHATGATE_ENV="qa")


class TestGetSettings:
    def test_reads_environment_and_caches(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_PROVIDER", "anthropic")
        clear_settings_cache()

        first = get_settings()

        assert first.default_provider == "anthropic"
        assert get_settings() is first

    def test_json_maps_from_environment(self, monkeypatch):
        monkeypatch.setenv("VENDOR_API_KEYS", '{"zhipu": "zk"}')
        clear_settings_cache()

        assert get_settings().vendor_api_keys == {"zhipu": "zk"}
