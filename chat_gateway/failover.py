"""Primary/fallback provider pairs.

validate_failover() rejects blank names and pairs that name the same
provider twice (case-insensitive), which would otherwise bounce a failing
request between two copies of one endpoint. FailoverChatModel tries the
primary and, on an outcome another provider could plausibly fix, the
fallback once.
"""

from collections.abc import AsyncIterator, Iterable
from contextlib import aclosing
from dataclasses import replace

from chat_gateway.config.models import FailoverConfig
from chat_gateway.errors import (
    ConfigurationError,
    RateLimitExceeded,
    TimeoutExceeded,
    TransientProviderError,
)
from chat_gateway.logging.audit import get_audit_logger
from chat_gateway.models import ChatResponse, Message, RequestOptions
from chat_gateway.pipeline import ChatModel
from chat_gateway.resilience.timeout import CancellationSignal

# Fatal errors and caller cancellation are never failed over
FAILOVER_ERRORS = (TransientProviderError, TimeoutExceeded, RateLimitExceeded)

_END = object()


def validate_failover(config: FailoverConfig) -> None:
    primary = (config.primary_provider or "").strip()
    fallback = (config.fallback_provider or "").strip()

    if not primary:
        raise ConfigurationError("Failover primary provider must not be blank")
    if not fallback:
        raise ConfigurationError("Failover fallback provider must not be blank")
    if primary.casefold() == fallback.casefold():
        raise ConfigurationError(
            f"Failover primary and fallback providers must differ (both are '{primary}')"
        )


class FailoverChatModel:
    """Routes to primary, falling back to a second provider on retryable failures."""

    def __init__(self, primary: ChatModel, fallback: ChatModel):
        validate_failover(FailoverConfig(primary.name, fallback.name))
        self.primary = primary
        self.fallback = fallback

    @property
    def name(self) -> str:
        return f"{self.primary.name}->{self.fallback.name}"

    async def get_response(
        self,
        messages: Iterable[Message | dict],
        options: RequestOptions | None = None,
        signal: CancellationSignal | None = None,
    ) -> ChatResponse:
        messages = list(messages)
        logger = get_audit_logger()
        try:
            return await self.primary.get_response(messages, options, signal)
        except FAILOVER_ERRORS as e:
            logger.warning("Primary provider failed, failing over", extra={"audit_data": {
                "primary": self.primary.name,
                "fallback": self.fallback.name,
                "error_type": type(e).__name__,
            }})

        try:
            response = await self.fallback.get_response(messages, _options_for(options, self.fallback), signal)
        except Exception as e:
            logger.error("Fallback provider also failed", extra={"audit_data": {
                "fallback": self.fallback.name,
                "error_type": type(e).__name__,
            }})
            raise
        logger.info("Failover successful", extra={"audit_data": {"fallback": self.fallback.name}})
        return response

    async def stream_response(
        self,
        messages: Iterable[Message | dict],
        options: RequestOptions | None = None,
        signal: CancellationSignal | None = None,
    ) -> AsyncIterator[str]:
        """Fail over only if the primary fails before its first fragment."""
        messages = list(messages)
        try:
            stream = await self.primary.stream_response(messages, options, signal)
            try:
                first = await anext(stream, _END)
            except BaseException:
                await stream.aclose()
                raise
        except FAILOVER_ERRORS as e:
            get_audit_logger().warning("Primary stream failed before first fragment, failing over", extra={"audit_data": {
                "primary": self.primary.name,
                "fallback": self.fallback.name,
                "error_type": type(e).__name__,
            }})
            return await self.fallback.stream_response(messages, _options_for(options, self.fallback), signal)

        return _prepend(first, stream)

    async def close(self) -> None:
        await self.primary.close()
        await self.fallback.close()


def _options_for(options: RequestOptions | None, model: ChatModel) -> RequestOptions | None:
    """Drop a model override meant for another provider."""
    if options is None or options.model is None:
        return options
    if options.provider and options.provider.lower() == model.name:
        return options
    return replace(options, model=None)


async def _prepend(first, stream: AsyncIterator[str]) -> AsyncIterator[str]:
    async with aclosing(stream):
        if first is _END:
            return
        yield first
        async for text in stream:
            yield text
