"""Shared fixtures for the Chat Gateway test suite."""

import json

import pytest

import chat_gateway.config.factory as factory_mod
import chat_gateway.providers.registry as registry_mod
from chat_gateway.config.models import FailoverConfig, ProviderConfig
from chat_gateway.config.settings import get_settings
from chat_gateway.config.store import ProviderConfigStore
from chat_gateway.errors import ConfigurationError


class StaticConfigStore(ProviderConfigStore):
    """In-memory store; tests mutate `configs` to simulate hot reload."""

    def __init__(self, configs: dict[str, ProviderConfig], failover: FailoverConfig | None = None,
                 default_provider: str = "openai"):
        self.configs = configs
        self.failover = failover
        self.default_provider = default_provider

    def get_provider_config(self, name: str) -> ProviderConfig:
        try:
            return self.configs[name.lower()]
        except KeyError:
            raise ConfigurationError(f"No configuration for provider '{name}'")

    def get_failover_config(self) -> FailoverConfig | None:
        return self.failover

    def get_default_provider(self) -> str:
        return self.default_provider


@pytest.fixture(autouse=True)
def reset_singletons(monkeypatch):
    """Fresh config store and provider registry for every test."""
    monkeypatch.setattr(factory_mod, "_store", None)
    monkeypatch.setattr(registry_mod, "_models", {})
    yield
    monkeypatch.setattr(factory_mod, "_store", None)
    monkeypatch.setattr(registry_mod, "_models", {})


@pytest.fixture
def provider_config() -> ProviderConfig:
    """A valid OpenAI-style provider config with fast retries."""
    return ProviderConfig(
        api_key="sk-test-key-12345678",
        model="gpt-4o",
        request_timeout=5.0,
        max_retries=2,
    )


@pytest.fixture
def static_store():
    """Factory fixture: build a StaticConfigStore from provider configs."""
    def _make(failover: FailoverConfig | None = None, default_provider: str = "openai", **configs):
        return StaticConfigStore(configs, failover=failover, default_provider=default_provider)

    return _make


@pytest.fixture
def chat_messages() -> list[dict]:
    """Standard chat request messages."""
    return [
        {"role": "system", "content": "You are a helpful assistant."},
        {"role": "user", "content": "Hello, how are you?"},
    ]


@pytest.fixture
def providers_json_file(tmp_path):
    """Create a temp providers.json file and return its path."""
    data = {
        "default_provider": "anthropic",
        "failover": {"primary_provider": "openai", "fallback_provider": "anthropic"},
        "providers": {
            "openai": {
                "api_key": "sk-openai-key-1234",
                "model": "gpt-4o",
                "max_retries": 3,
            },
            "Anthropic": {
                "api_key": "sk-ant-key-123456",
                "model": "claude-3-5-sonnet-latest",
                "permit_limit": 5,
                "window_seconds": 60,
            },
        },
    }
    path = tmp_path / "providers.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


@pytest.fixture
def override_settings(monkeypatch):
    """Factory fixture: set env vars and clear settings cache.

    Usage:
        override_settings(OPENAI_API_KEY="sk-...", MAX_RETRIES="1")
    """
    def _override(**kwargs):
        for key, value in kwargs.items():
            monkeypatch.setenv(key.upper(), str(value))
        # Clear lru_cache so Settings re-reads env
        get_settings.cache_clear()

    yield _override

    # Always clear cache on teardown so other tests get fresh settings
    get_settings.cache_clear()
