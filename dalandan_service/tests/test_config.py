"""Tests for environment-driven settings."""
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

import pytest

from dalandan_service.config import DEFAULT_BASE_URL, DEFAULT_MODEL, GatewayConfig, load_settings

ENV_NAMES = [
    "GROQ_API_KEY", "GROQ_BASE_URL", "GROQ_MODEL", "REQUEST_TIMEOUT", "LLM_MAX_RETRIES",
    "CHAT_CONTEXT_WINDOW", "CHAT_RETENTION_DAYS", "CORS_ORIGINS", "ENVIRONMENT",
    "ENABLE_SEED_ENDPOINT", "LOG_LEVEL", "LOG_JSON", "TRUST_PROXY",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadSettings:

    def test_defaults(self, clean_env):
        settings = load_settings()
        assert settings.gateway.api_key is None
        assert settings.gateway.base_url == DEFAULT_BASE_URL
        assert settings.gateway.model == DEFAULT_MODEL
        assert settings.gateway.timeout == 30.0
        assert settings.max_retries == 0
        assert settings.context_window == 8
        assert settings.retention_days == 30
        assert settings.enable_seed_endpoint is False
        assert settings.is_production is False
        assert settings.trust_proxy is False

    def test_overrides(self, clean_env):
        clean_env.setenv("GROQ_API_KEY", "gsk_abcdef123")
        clean_env.setenv("GROQ_BASE_URL", "https://llm.local/v1/")
        clean_env.setenv("LLM_MAX_RETRIES", "2")
        clean_env.setenv("CORS_ORIGINS", "https://a.example, https://b.example")
        clean_env.setenv("ENVIRONMENT", "production")
        clean_env.setenv("ENABLE_SEED_ENDPOINT", "true")
        clean_env.setenv("TRUST_PROXY", "1")
        settings = load_settings()
        assert settings.gateway.api_key == "gsk_abcdef123"
        assert settings.gateway.base_url == "https://llm.local/v1"
        assert settings.max_retries == 2
        assert settings.cors_origins == ("https://a.example", "https://b.example")
        assert settings.is_production is True
        assert settings.enable_seed_endpoint is True
        assert settings.trust_proxy is True

    def test_timeout_in_milliseconds(self, clean_env):
        clean_env.setenv("REQUEST_TIMEOUT", "30000")
        assert load_settings().gateway.timeout == 30.0

    def test_bad_numbers_fall_back(self, clean_env):
        clean_env.setenv("LLM_MAX_RETRIES", "many")
        clean_env.setenv("CHAT_CONTEXT_WINDOW", "-3")
        settings = load_settings()
        assert settings.max_retries == 0
        assert settings.context_window == 1


class TestGatewayConfig:

    def test_key_prefix(self):
        assert GatewayConfig(api_key="gsk_abcdef123").key_prefix == "gsk_ab..."
        assert GatewayConfig().key_prefix == "NOT_SET"
