"""Tests for chat_gateway/config: ProviderConfig validation, stores and factory."""

import json
import os

import pytest

from chat_gateway.config.factory import get_config_store
from chat_gateway.config.models import FailoverConfig, ProviderConfig
from chat_gateway.config.store import JSONConfigStore, SettingsConfigStore
from chat_gateway.errors import ConfigurationError


class TestProviderConfigValidate:

    def test_valid_config(self, provider_config):
        provider_config.validate("openai")

    def test_missing_key(self):
        with pytest.raises(ConfigurationError, match="API key is required"):
            ProviderConfig(model="gpt-4o").validate("openai")

    def test_short_key(self):
        with pytest.raises(ConfigurationError, match="at least 10 characters"):
            ProviderConfig(api_key="short", model="gpt-4o").validate("openai")

    def test_key_not_required(self):
        ProviderConfig(model="anthropic.claude-3-sonnet").validate("bedrock", require_api_key=False)

    def test_error_never_echoes_key(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ProviderConfig(api_key="secret", model="").validate("openai")
        assert "secret" not in exc_info.value.message

    def test_collects_all_problems(self):
        config = ProviderConfig(api_key="", model="", max_retries=11, request_timeout=0)
        with pytest.raises(ConfigurationError) as exc_info:
            config.validate("openai")
        message = exc_info.value.message
        assert message.startswith("openai configuration validation failed")
        assert "API key" in message
        assert "model name" in message
        assert "max retries" in message
        assert "request timeout" in message

    def test_bool_is_not_an_integer(self, provider_config):
        provider_config.max_retries = True
        with pytest.raises(ConfigurationError, match="max retries must be an integer"):
            provider_config.validate("openai")

    def test_managed_endpoint_requires_endpoint(self, provider_config):
        provider_config.is_managed_endpoint = True
        with pytest.raises(ConfigurationError, match="endpoint is required"):
            provider_config.validate("openai")

    def test_rate_limit_fields_set_together(self, provider_config):
        provider_config.permit_limit = 10
        with pytest.raises(ConfigurationError, match="set together"):
            provider_config.validate("openai")

    def test_rate_limit_ranges(self, provider_config):
        provider_config.permit_limit = 0
        provider_config.window_seconds = 0
        with pytest.raises(ConfigurationError) as exc_info:
            provider_config.validate("openai")
        assert "permit limit" in exc_info.value.message
        assert "window seconds" in exc_info.value.message


class TestSettingsConfigStore:

    def test_openai_config_from_env(self, override_settings):
        override_settings(
            OPENAI_API_KEY="sk-env-key-123456",
            OPENAI_MODEL="gpt-4o",
            MAX_RETRIES="4",
            RATE_LIMIT_PERMITS="100",
            RATE_LIMIT_WINDOW_SECONDS="60",
        )
        config = SettingsConfigStore().get_provider_config("OpenAI")
        assert config.api_key == "sk-env-key-123456"
        assert config.model == "gpt-4o"
        assert config.max_retries == 4
        assert config.permit_limit == 100
        assert config.window_seconds == 60

    def test_azure_openai(self, override_settings):
        override_settings(OPENAI_ENDPOINT="https://x.openai.azure.com", OPENAI_IS_AZURE="true")
        config = SettingsConfigStore().get_provider_config("openai")
        assert config.is_managed_endpoint is True
        assert config.endpoint == "https://x.openai.azure.com"

    def test_bedrock_endpoint_is_region(self, override_settings):
        override_settings(BEDROCK_MODEL="anthropic.claude-3-sonnet", AWS_REGION="eu-west-1")
        config = SettingsConfigStore().get_provider_config("bedrock")
        assert config.endpoint == "eu-west-1"
        assert config.model == "anthropic.claude-3-sonnet"

    def test_unknown_provider(self, override_settings):
        override_settings()
        with pytest.raises(ConfigurationError, match="mistral"):
            SettingsConfigStore().get_provider_config("mistral")

    def test_reflects_env_change(self, override_settings):
        store = SettingsConfigStore()
        override_settings(OPENAI_MODEL="gpt-4o")
        assert store.get_provider_config("openai").model == "gpt-4o"
        override_settings(OPENAI_MODEL="gpt-4o-mini")
        assert store.get_provider_config("openai").model == "gpt-4o-mini"

    def test_no_failover_by_default(self, override_settings):
        override_settings(FAILOVER_PRIMARY_PROVIDER="", FAILOVER_FALLBACK_PROVIDER="")
        assert SettingsConfigStore().get_failover_config() is None

    def test_failover_from_env(self, override_settings):
        override_settings(FAILOVER_PRIMARY_PROVIDER="openai", FAILOVER_FALLBACK_PROVIDER="anthropic")
        assert SettingsConfigStore().get_failover_config() == FailoverConfig("openai", "anthropic")


class TestJSONConfigStore:

    def test_loads_providers(self, providers_json_file):
        store = JSONConfigStore(providers_json_file)
        config = store.get_provider_config("openai")
        assert config.model == "gpt-4o"
        assert config.max_retries == 3

    def test_case_insensitive_names(self, providers_json_file):
        store = JSONConfigStore(providers_json_file)
        config = store.get_provider_config("anthropic")
        assert config.permit_limit == 5
        assert config.window_seconds == 60

    def test_failover_and_default(self, providers_json_file):
        store = JSONConfigStore(providers_json_file)
        assert store.get_failover_config() == FailoverConfig("openai", "anthropic")
        assert store.get_default_provider() == "anthropic"

    def test_unknown_provider(self, providers_json_file):
        store = JSONConfigStore(providers_json_file)
        with pytest.raises(ConfigurationError):
            store.get_provider_config("google")

    def test_reloads_on_mtime_change(self, providers_json_file):
        store = JSONConfigStore(providers_json_file)
        assert store.get_provider_config("openai").model == "gpt-4o"

        with open(providers_json_file, encoding="utf-8") as f:
            data = json.load(f)
        data["providers"]["openai"]["model"] = "gpt-4o-mini"
        with open(providers_json_file, "w", encoding="utf-8") as f:
            json.dump(data, f)
        mtime = os.path.getmtime(providers_json_file) + 10
        os.utime(providers_json_file, (mtime, mtime))

        assert store.get_provider_config("openai").model == "gpt-4o-mini"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            JSONConfigStore(str(tmp_path / "missing.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            JSONConfigStore(str(path))

    def test_unknown_field(self, tmp_path):
        path = tmp_path / "providers.json"
        path.write_text(json.dumps({"providers": {"openai": {"colour": "blue"}}}), encoding="utf-8")
        store = JSONConfigStore(str(path))
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            store.get_provider_config("openai")

    def test_wrong_value_types(self, tmp_path):
        path = tmp_path / "providers.json"
        entry = {
            "api_key": "sk-test-key-12345678",
            "model": "gpt-4o",
            "request_timeout": "30",
            "max_retries": None,
            "is_managed_endpoint": "yes",
        }
        path.write_text(json.dumps({"providers": {"openai": entry}}), encoding="utf-8")
        config = JSONConfigStore(str(path)).get_provider_config("openai")

        with pytest.raises(ConfigurationError) as exc_info:
            config.validate("openai")
        message = exc_info.value.message
        assert "request timeout must be a number" in message
        assert "max retries must be an integer" in message
        assert "is_managed_endpoint must be true or false" in message


class TestConfigStoreFactory:

    def test_env_backend(self, override_settings):
        override_settings(CONFIG_STORE_BACKEND="env")
        store = get_config_store()
        assert isinstance(store, SettingsConfigStore)
        assert get_config_store() is store

    def test_json_backend(self, override_settings, providers_json_file):
        override_settings(CONFIG_STORE_BACKEND="json", PROVIDER_CONFIG_PATH=providers_json_file)
        assert isinstance(get_config_store(), JSONConfigStore)

    def test_unknown_backend(self, override_settings):
        override_settings(CONFIG_STORE_BACKEND="consul")
        with pytest.raises(ConfigurationError, match="consul"):
            get_config_store()
