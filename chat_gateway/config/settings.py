"""Application settings loaded from environment variables."""

import json
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Routing
    default_provider: str = "openai"
    failover_primary_provider: str = ""
    failover_fallback_provider: str = ""

    # Provider selection: JSON object of strategy name -> ordered provider list
    selection_default_strategy: str = "quality"
    selection_strategies: str = (
        '{"quality": ["anthropic", "openai", "google", "bedrock", "huggingface"],'
        ' "performance": ["google", "openai", "bedrock", "anthropic", "huggingface"]}'
    )

    # Where per-provider configs come from
    config_store_backend: str = "env"  # "env" | "json"
    provider_config_path: str = "providers.json"

    # Shared per-provider defaults
    request_timeout: float = 120.0  # seconds
    max_retries: int = 2
    max_request_size: int = 80_000  # bytes
    rate_limit_permits: int | None = None
    rate_limit_window_seconds: float | None = None

    # Retry backoff
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0

    # OpenAI / Azure OpenAI
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_endpoint: str = ""
    openai_is_azure: bool = False
    openai_max_tokens: int | None = None

    # Anthropic
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-3-5-sonnet-latest"
    anthropic_endpoint: str = ""
    anthropic_max_tokens: int | None = 1024

    # Google Gemini
    google_api_key: str = ""
    google_model: str = "gemini-1.5-pro-latest"
    google_endpoint: str = ""

    # Hugging Face Inference Endpoint (full URL of the deployed model)
    huggingface_api_key: str = ""
    huggingface_endpoint: str = ""
    huggingface_model: str = "huggingface-inference"  # label reported as model_id
    huggingface_max_tokens: int | None = None

    # AWS Bedrock (IAM credentials from the environment)
    bedrock_model: str = ""
    aws_region: str = "us-east-1"

    # Logging
    log_level: str = "INFO"
    audit_log_file: str = ""  # Empty = stdout only

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def strategies(self) -> dict[str, list[str]]:
        """Parse selection_strategies; keys are lower-cased strategy names."""
        raw = json.loads(self.selection_strategies or "{}")
        return {name.lower(): list(order) for name, order in raw.items()}


@lru_cache
def get_settings() -> Settings:
    return Settings()
