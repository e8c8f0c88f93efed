"""Provider registry: singleton map of provider name -> ChatModel."""

from chat_gateway.config.factory import get_config_store
from chat_gateway.errors import ConfigurationError
from chat_gateway.failover import FailoverChatModel, validate_failover
from chat_gateway.logging.audit import get_audit_logger
from chat_gateway.models import Capability
from chat_gateway.pipeline import ChatModel
from chat_gateway.providers.anthropic import AnthropicAdapter
from chat_gateway.providers.base import ProviderAdapter
from chat_gateway.providers.gemini import GeminiAdapter
from chat_gateway.providers.huggingface import HuggingFaceAdapter
from chat_gateway.providers.openai import OpenAIAdapter

SUPPORTED_PROVIDERS = ("openai", "anthropic", "google", "huggingface", "bedrock")

_models: dict[str, ChatModel] = {}


def _create_adapter(name: str) -> ProviderAdapter:
    if name == "openai":
        return OpenAIAdapter()
    if name == "anthropic":
        return AnthropicAdapter()
    if name == "google":
        return GeminiAdapter()
    if name == "huggingface":
        return HuggingFaceAdapter()
    if name == "bedrock":
        from chat_gateway.providers.bedrock import BedrockAdapter
        return BedrockAdapter()
    raise ConfigurationError(
        f"Provider '{name}' is not supported. Supported providers are: {', '.join(SUPPORTED_PROVIDERS)}"
    )


def get_chat_model(name: str) -> ChatModel:
    """Get or create the ChatModel for a provider (case-insensitive)."""
    if not name or not name.strip():
        raise ConfigurationError("Provider name cannot be empty")

    key = name.strip().lower()
    if key not in _models:
        _models[key] = ChatModel(_create_adapter(key))
    return _models[key]


def resolve_model(name: str | None = None) -> ChatModel | FailoverChatModel:
    """Model for an explicit provider, else the failover pair, else the default provider."""
    if name:
        return get_chat_model(name)

    store = get_config_store()
    failover = store.get_failover_config()
    if failover is not None:
        validate_failover(failover)
        return FailoverChatModel(
            get_chat_model(failover.primary_provider),
            get_chat_model(failover.fallback_provider),
        )

    default = store.get_default_provider()
    if not default or not default.strip():
        raise ConfigurationError("No provider specified and no default provider configured")
    return get_chat_model(default)


def supports_capability(name: str, capability: Capability) -> bool:
    """True if the provider's adapter has the capability and its config is usable."""
    try:
        model = get_chat_model(name)
        if capability not in model.adapter.capabilities:
            return False
        model.current_config()
    except ConfigurationError as e:
        get_audit_logger().info("Provider unavailable", extra={"audit_data": {
            "provider": name, "capability": capability.value, "reason": e.message,
        }})
        return False
    return True


async def close_all_providers() -> None:
    """Gracefully shut down all provider connections."""
    for model in _models.values():
        await model.close()
    _models.clear()
