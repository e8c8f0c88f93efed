"""Per-provider and failover configuration models."""

from dataclasses import dataclass

from chat_gateway.errors import ConfigurationError

MIN_API_KEY_LENGTH = 10
MAX_REQUEST_TIMEOUT = 600.0
MAX_RETRIES_LIMIT = 10


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class ProviderConfig:
    api_key: str = ""
    model: str = ""
    endpoint: str | None = None
    is_managed_endpoint: bool = False  # e.g. Azure-hosted OpenAI
    request_timeout: float = 120.0  # seconds
    max_retries: int = 2
    max_request_size: int = 80_000  # bytes of message content
    max_tokens: int | None = None
    permit_limit: int | None = None
    window_seconds: float | None = None

    @property
    def rate_limited(self) -> bool:
        return self.permit_limit is not None and self.window_seconds is not None

    def validate(self, provider: str = "", require_api_key: bool = True) -> None:
        """Raise ConfigurationError listing every problem. Never echoes the key."""
        label = provider or "Provider"
        errors = self._type_errors()
        if errors:
            raise ConfigurationError(f"{label} configuration validation failed: {', '.join(errors)}")

        if require_api_key:
            if not self.api_key or not self.api_key.strip():
                errors.append("API key is required")
            elif len(self.api_key) < MIN_API_KEY_LENGTH:
                errors.append(f"API key must be at least {MIN_API_KEY_LENGTH} characters long")
        if not self.model or not self.model.strip():
            errors.append("model name is required")
        if self.is_managed_endpoint and not (self.endpoint and self.endpoint.strip()):
            errors.append("endpoint is required for a managed endpoint")
        if not 0 < self.request_timeout <= MAX_REQUEST_TIMEOUT:
            errors.append(f"request timeout must be between 0 and {MAX_REQUEST_TIMEOUT:g} seconds")
        if not 0 <= self.max_retries <= MAX_RETRIES_LIMIT:
            errors.append(f"max retries must be between 0 and {MAX_RETRIES_LIMIT}")
        if self.max_request_size <= 0:
            errors.append("max request size must be positive")
        if self.max_tokens is not None and self.max_tokens < 1:
            errors.append("max tokens must be at least 1")

        if (self.permit_limit is None) != (self.window_seconds is None):
            errors.append("permit limit and window seconds must be set together")
        elif self.rate_limited:
            if self.permit_limit < 1:
                errors.append("permit limit must be at least 1")
            if self.window_seconds < 1:
                errors.append("window seconds must be at least 1")

        if errors:
            raise ConfigurationError(f"{label} configuration validation failed: {', '.join(errors)}")

    def _type_errors(self) -> list[str]:
        """Values loaded from a hand-edited file can have the wrong JSON type."""
        errors = []
        for field, value in (("api key", self.api_key), ("model name", self.model)):
            if not isinstance(value, str):
                errors.append(f"{field} must be a string")
        if self.endpoint is not None and not isinstance(self.endpoint, str):
            errors.append("endpoint must be a string")
        if not isinstance(self.is_managed_endpoint, bool):
            errors.append("is_managed_endpoint must be true or false")
        if not _is_number(self.request_timeout):
            errors.append("request timeout must be a number")
        for field, value in (("max retries", self.max_retries), ("max request size", self.max_request_size)):
            if not _is_int(value):
                errors.append(f"{field} must be an integer")
        for field, value in (("max tokens", self.max_tokens), ("permit limit", self.permit_limit)):
            if value is not None and not _is_int(value):
                errors.append(f"{field} must be an integer")
        if self.window_seconds is not None and not _is_number(self.window_seconds):
            errors.append("window seconds must be a number")
        return errors


@dataclass
class FailoverConfig:
    primary_provider: str = ""
    fallback_provider: str = ""
