"""Provider config stores: the hot-reload source for per-call configuration.

The pipeline asks the store for a fresh ProviderConfig on every call, so a
changed environment (after get_settings.cache_clear()) or an edited JSON
file takes effect on the next request without a restart.
"""

import json
import os
import threading
from abc import ABC, abstractmethod

from chat_gateway.config.models import FailoverConfig, ProviderConfig
from chat_gateway.config.settings import Settings, get_settings
from chat_gateway.errors import ConfigurationError


class ProviderConfigStore(ABC):
    """Abstract base for provider config lookups."""

    @abstractmethod
    def get_provider_config(self, name: str) -> ProviderConfig:
        """Current config for a provider. Raises ConfigurationError if absent."""
        ...

    @abstractmethod
    def get_failover_config(self) -> FailoverConfig | None:
        """Current failover pair, or None if failover is not configured."""
        ...

    @abstractmethod
    def get_default_provider(self) -> str:
        ...


class SettingsConfigStore(ProviderConfigStore):
    """Builds configs from environment-backed Settings."""

    def get_provider_config(self, name: str) -> ProviderConfig:
        settings = get_settings()
        key = name.strip().lower()

        if key == "openai":
            return self._build(
                settings,
                api_key=settings.openai_api_key,
                model=settings.openai_model,
                endpoint=settings.openai_endpoint or None,
                is_managed_endpoint=settings.openai_is_azure,
                max_tokens=settings.openai_max_tokens,
            )
        if key == "anthropic":
            return self._build(
                settings,
                api_key=settings.anthropic_api_key,
                model=settings.anthropic_model,
                endpoint=settings.anthropic_endpoint or None,
                max_tokens=settings.anthropic_max_tokens,
            )
        if key == "google":
            return self._build(
                settings,
                api_key=settings.google_api_key,
                model=settings.google_model,
                endpoint=settings.google_endpoint or None,
            )
        if key == "huggingface":
            return self._build(
                settings,
                api_key=settings.huggingface_api_key,
                model=settings.huggingface_model,
                endpoint=settings.huggingface_endpoint or None,
                is_managed_endpoint=True,
                max_tokens=settings.huggingface_max_tokens,
            )
        if key == "bedrock":
            return self._build(
                settings,
                model=settings.bedrock_model,
                endpoint=settings.aws_region,
            )
        raise ConfigurationError(f"No configuration for provider '{name}'")

    @staticmethod
    def _build(settings: Settings, **fields) -> ProviderConfig:
        return ProviderConfig(
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            max_request_size=settings.max_request_size,
            permit_limit=settings.rate_limit_permits,
            window_seconds=settings.rate_limit_window_seconds,
            **fields,
        )

    def get_failover_config(self) -> FailoverConfig | None:
        settings = get_settings()
        if not settings.failover_primary_provider and not settings.failover_fallback_provider:
            return None
        return FailoverConfig(
            primary_provider=settings.failover_primary_provider,
            fallback_provider=settings.failover_fallback_provider,
        )

    def get_default_provider(self) -> str:
        return get_settings().default_provider


class JSONConfigStore(ProviderConfigStore):
    """File-backed config store. Reloads on mtime change.

    File shape:
        {
          "default_provider": "openai",
          "failover": {"primary_provider": "openai", "fallback_provider": "anthropic"},
          "providers": {"openai": {"api_key": "...", "model": "gpt-4o", ...}}
        }
    """

    def __init__(self, path: str):
        self._path = path
        self._lock = threading.Lock()
        self._data: dict = {}
        self._last_mtime: float = 0.0
        self._load()

    def _load(self) -> dict:
        """Load the file if it changed; return the current parsed data."""
        try:
            mtime = os.path.getmtime(self._path)
        except OSError:
            raise ConfigurationError(f"Provider config file not found: {self._path}")

        with self._lock:
            if mtime == self._last_mtime and self._data:
                return self._data

            try:
                with open(self._path, encoding="utf-8") as f:
                    data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Provider config file is not valid JSON: {e}")

            self._data = data
            self._last_mtime = mtime
            return data

    def get_provider_config(self, name: str) -> ProviderConfig:
        providers = self._load().get("providers", {})
        entries = {k.lower(): v for k, v in providers.items()}
        entry = entries.get(name.strip().lower())
        if entry is None:
            raise ConfigurationError(f"No configuration for provider '{name}'")
        try:
            return ProviderConfig(**entry)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration for provider '{name}': {e}")

    def get_failover_config(self) -> FailoverConfig | None:
        entry = self._load().get("failover")
        if not entry:
            return None
        return FailoverConfig(
            primary_provider=entry.get("primary_provider", ""),
            fallback_provider=entry.get("fallback_provider", ""),
        )

    def get_default_provider(self) -> str:
        return self._load().get("default_provider") or get_settings().default_provider
