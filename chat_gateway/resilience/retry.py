"""Retry with failure classification and exponential backoff.

The executor runs an async operation up to max_retries + 1 times. A
failure the classifier rejects surfaces immediately as FatalProviderError;
a retryable failure that runs out of attempts surfaces as
TransientProviderError. Both carry the attempt count and the last vendor
status, and chain the underlying exception.

Inter-attempt delays double from base_delay up to max_delay, with +/-
jitter so concurrent callers do not retry in lockstep. Delays and
attempts both observe the cancellation signal.
"""

import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from chat_gateway.errors import (
    Cancelled,
    FatalProviderError,
    GatewayError,
    ProviderError,
    TimeoutExceeded,
    TransientProviderError,
    UpstreamError,
)
from chat_gateway.resilience.timeout import DerivedSignal

T = TypeVar("T")

logger = logging.getLogger("gateway.audit")

DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0
DEFAULT_JITTER = 0.2  # +/- 20% of the computed delay


def compute_backoff(
    retry_index: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    jitter: float = DEFAULT_JITTER,
) -> float:
    """Delay before retry number retry_index (0-based)."""
    delay = min(base_delay * (2 ** retry_index), max_delay)
    if jitter > 0 and delay > 0:
        delay += delay * random.uniform(-jitter, jitter)
    return max(0.0, delay)


class RetryExecutor:
    """Runs an operation with classified retries.

    Args:
        provider: Provider name, recorded on raised errors.
        base_delay: First inter-attempt delay in seconds.
        max_delay: Upper bound for any single delay.
        jitter: Fractional jitter applied to each delay.
    """

    def __init__(
        self,
        provider: str = "",
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        jitter: float = DEFAULT_JITTER,
    ):
        self.provider = provider
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: int,
        is_retryable: Callable[[Exception], bool],
        signal: DerivedSignal,
    ) -> T:
        max_attempts = max_retries + 1

        for attempt in range(1, max_attempts + 1):
            signal.raise_if_fired()
            try:
                return await operation()
            except (Cancelled, TimeoutExceeded):
                raise
            except Exception as e:
                if not is_retryable(e):
                    if _is_unclassified(e):
                        e.attempts = attempt
                        raise
                    raise self._wrap(FatalProviderError, e, attempt) from e
                if attempt >= max_attempts:
                    logger.warning(
                        "Retries exhausted",
                        extra={"audit_data": {
                            "provider": self.provider,
                            "attempts": attempt,
                            "status_code": getattr(e, "status_code", None),
                        }},
                    )
                    raise self._wrap(TransientProviderError, e, attempt) from e

                delay = compute_backoff(attempt - 1, self.base_delay, self.max_delay, self.jitter)
                logger.warning(
                    "Attempt failed with retryable error, retrying",
                    extra={"audit_data": {
                        "provider": self.provider,
                        "attempt": attempt,
                        "max_retries": max_retries,
                        "delay_seconds": round(delay, 3),
                        "status_code": getattr(e, "status_code", None),
                    }},
                )
                await signal.sleep(delay)

        # max_retries is validated >= 0, so the loop always returns or raises
        raise RuntimeError("Retry loop exited without a result")

    def _wrap(self, error_cls: type[ProviderError], error: Exception, attempts: int) -> ProviderError:
        status = getattr(error, "status_code", None)
        detail = getattr(error, "detail", None) or str(error)
        return error_cls(
            f"{self.provider or 'Provider'} request failed after {attempts} attempt(s): {detail}",
            provider=self.provider,
            status_code=status,
            attempts=attempts,
        )


def _is_unclassified(error: Exception) -> bool:
    """Gateway errors that are not vendor failures keep their own type (e.g. EmptyResponse)."""
    return isinstance(error, GatewayError) and not isinstance(error, (UpstreamError, ProviderError))
