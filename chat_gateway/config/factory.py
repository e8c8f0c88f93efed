"""Factory for provider config store backends."""

from chat_gateway.config.settings import get_settings
from chat_gateway.config.store import JSONConfigStore, ProviderConfigStore, SettingsConfigStore
from chat_gateway.errors import ConfigurationError

_store: ProviderConfigStore | None = None


def get_config_store() -> ProviderConfigStore:
    """Get the config store singleton."""
    global _store
    if _store is not None:
        return _store

    settings = get_settings()
    backend = settings.config_store_backend

    if backend == "env":
        _store = SettingsConfigStore()
    elif backend == "json":
        _store = JSONConfigStore(settings.provider_config_path)
    else:
        raise ConfigurationError(f"Unknown config store backend: {backend}")

    return _store
