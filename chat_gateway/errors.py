"""Error taxonomy for the chat gateway.

Every error raised by the request pipeline derives from GatewayError and
carries the HTTP status the API surface should answer with.
"""


class GatewayError(Exception):
    """Base class for all gateway errors."""

    http_status: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GatewayError):
    """Bad input shape or size. Raised before any I/O, never retried."""

    http_status = 400


class ConfigurationError(GatewayError):
    """Invalid settings, circular failover pair, or missing default provider."""

    http_status = 500


class RateLimitExceeded(GatewayError):
    """Admission denied by the provider's fixed-window limiter."""

    http_status = 429

    def __init__(self, message: str, limit: int = 0, retry_after: float = 0.0):
        super().__init__(message)
        self.limit = limit
        self.retry_after = retry_after


class TimeoutExceeded(GatewayError):
    """The per-call deadline elapsed before the call completed."""

    http_status = 504


class Cancelled(GatewayError):
    """The caller cancelled the call."""

    http_status = 499


class UpstreamError(GatewayError):
    """A raw vendor failure, before retry classification.

    Adapters raise this for non-success HTTP statuses and transport errors;
    the RetryExecutor turns it into a Transient/FatalProviderError.
    """

    http_status = 502

    def __init__(self, status_code: int, detail: str):
        super().__init__(f"Upstream returned {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class ProviderError(GatewayError):
    """A classified vendor failure, with attempt count for observability."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        status_code: int | None = None,
        attempts: int = 1,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.attempts = attempts


class TransientProviderError(ProviderError):
    """A retryable vendor failure that exhausted its retry budget."""

    http_status = 503


class FatalProviderError(ProviderError):
    """A vendor failure that will not succeed on retry."""

    http_status = 502


class EmptyResponse(GatewayError):
    """The vendor returned no choices/candidates."""

    http_status = 502


class NoProviderAvailable(GatewayError):
    """No registered provider supports the requested capability."""

    http_status = 503
