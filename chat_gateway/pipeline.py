"""Per-provider request-execution pipeline.

Buffered:  validate -> admit -> client -> retry(send) under deadline -> map response
Streaming: validate -> admit -> client -> stream under deadline (no retry)

Config is fetched fresh from the store on every call. The only state a
ChatModel keeps between calls is its fingerprinted vendor client and its
rate limiter, each rebuilt when the config that shapes it changes.
"""

from collections.abc import AsyncIterator, Iterable
from contextlib import aclosing

from chat_gateway.clients.cache import ClientCache
from chat_gateway.config.factory import get_config_store
from chat_gateway.config.models import ProviderConfig
from chat_gateway.config.settings import get_settings
from chat_gateway.config.store import ProviderConfigStore
from chat_gateway.errors import (
    FatalProviderError,
    TransientProviderError,
    UpstreamError,
    ValidationError,
)
from chat_gateway.logging.audit import RequestTimer, get_audit_logger, provider_var
from chat_gateway.models import ChatResponse, Message, RequestOptions
from chat_gateway.providers.base import ProviderAdapter
from chat_gateway.resilience.ratelimit import RateLimiterSlot
from chat_gateway.resilience.retry import RetryExecutor
from chat_gateway.resilience.timeout import CancellationSignal, compose
from chat_gateway.validation import validate_messages


class ChatModel:
    """One provider's pipeline: adapter plus its client cache and limiter."""

    def __init__(self, adapter: ProviderAdapter, config_store: ProviderConfigStore | None = None):
        self.adapter = adapter
        self._config_store = config_store
        self._clients = ClientCache(adapter.build_client, name=adapter.name)
        self._limiter = RateLimiterSlot(adapter.name)

    @property
    def name(self) -> str:
        return self.adapter.name

    def current_config(self) -> ProviderConfig:
        """Fresh, validated config for this provider."""
        store = self._config_store or get_config_store()
        config = store.get_provider_config(self.name)
        config.validate(self.name, require_api_key=self.adapter.requires_api_key)
        return config

    def _prepare(self, messages, config: ProviderConfig):
        logger = get_audit_logger()
        try:
            validated = validate_messages(messages, config.max_request_size)
        except ValidationError as e:
            logger.warning("Request validation failed", extra={"audit_data": {
                "provider": self.name, "reason": e.message,
            }})
            raise

        admission = self._limiter.acquire(config.permit_limit, config.window_seconds)
        client = self._clients.get_or_create(config)
        return validated, admission, client

    async def get_response(
        self,
        messages: Iterable[Message | dict],
        options: RequestOptions | None = None,
        signal: CancellationSignal | None = None,
    ) -> ChatResponse:
        provider_var.set(self.name)
        logger = get_audit_logger()
        config = self.current_config()
        validated, admission, client = self._prepare(messages, config)
        request = self.adapter.prepare_request(validated, config, options)

        settings = get_settings()
        executor = RetryExecutor(
            provider=self.name,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )

        with RequestTimer() as timer:
            async with compose(signal, config.request_timeout) as derived:
                vendor_response = await executor.execute(
                    lambda: self.adapter.send(client, request, derived),
                    config.max_retries,
                    self.adapter.is_retryable,
                    derived,
                )
        response = self.adapter.process_response(vendor_response, config)

        logger.info("Request completed", extra={"audit_data": {
            "provider": self.name,
            "model": response.model_id,
            "latency_ms": timer.elapsed_ms,
            "finish_reason": response.finish_reason,
            "input_tokens": response.usage.input_tokens,
            "output_tokens": response.usage.output_tokens,
            "rate_limit_remaining": admission.remaining if admission else None,
        }})
        return response

    async def stream_response(
        self,
        messages: Iterable[Message | dict],
        options: RequestOptions | None = None,
        signal: CancellationSignal | None = None,
    ) -> AsyncIterator[str]:
        """Validate, admit and prepare, then return the fragment stream.

        Configuration, validation and admission errors raise here, before
        any network I/O. The returned iterator has a single consumer and
        must be drained or closed.
        """
        provider_var.set(self.name)
        config = self.current_config()
        validated, _, client = self._prepare(messages, config)
        request = self.adapter.prepare_request(validated, config, options, stream=True)
        return self._stream(client, request, config, signal)

    async def _stream(self, client, request, config: ProviderConfig, signal) -> AsyncIterator[str]:
        logger = get_audit_logger()
        fragments = 0
        completed = False

        with RequestTimer() as timer:
            try:
                async with compose(signal, config.request_timeout) as derived:
                    async with aclosing(self.adapter.stream_chunks(client, request, derived)) as chunks:
                        async for text in chunks:
                            fragments += 1
                            yield text
                completed = True
            except UpstreamError as e:
                # Never retried: fragments may already be with the caller
                error_cls = TransientProviderError if self.adapter.is_retryable(e) else FatalProviderError
                raise error_cls(
                    f"{self.name} stream failed: {e.detail}",
                    provider=self.name,
                    status_code=e.status_code,
                    attempts=1,
                ) from e
            finally:
                if not completed:
                    logger.warning("Stream aborted", extra={"audit_data": {
                        "provider": self.name, "fragments": fragments,
                    }})

        logger.info("Stream completed", extra={"audit_data": {
            "provider": self.name,
            "fragments": fragments,
            "latency_ms": timer.elapsed_ms,
        }})

    async def close(self) -> None:
        client = self._clients.clear()
        if client is not None:
            await self.adapter.close_client(client)
