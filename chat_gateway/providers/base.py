"""Adapter contract shared by every vendor.

The pipeline, RetryExecutor and TimeoutComposer only ever talk to this
protocol; nothing outside chat_gateway.providers imports a concrete
vendor adapter.
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from chat_gateway.config.models import ProviderConfig
from chat_gateway.errors import UpstreamError
from chat_gateway.models import Capability, ChatResponse, Message, RequestOptions
from chat_gateway.resilience.timeout import DerivedSignal

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass
class VendorRequest:
    """A prepared vendor call: where it goes, what it sends."""

    path: str
    body: dict
    headers: dict = field(default_factory=dict)


@runtime_checkable
class ProviderAdapter(Protocol):
    name: str
    capabilities: frozenset[Capability]
    requires_api_key: bool

    def build_client(self, config: ProviderConfig) -> Any:
        """Construct the vendor client. In-memory assembly only, no I/O."""
        ...

    def prepare_request(
        self,
        messages: list[Message],
        config: ProviderConfig,
        options: RequestOptions | None,
        stream: bool = False,
    ) -> VendorRequest:
        ...

    async def send(self, client: Any, request: VendorRequest, signal: DerivedSignal) -> dict:
        """Perform one buffered call. Raises UpstreamError on vendor failure."""
        ...

    def process_response(self, response: dict, config: ProviderConfig) -> ChatResponse:
        """Map the vendor body to a ChatResponse. Raises EmptyResponse."""
        ...

    def is_retryable(self, error: Exception) -> bool:
        ...

    def stream_chunks(
        self, client: Any, request: VendorRequest, signal: DerivedSignal
    ) -> AsyncIterator[str]:
        """Yield text fragments until the vendor's end-of-stream signal."""
        ...

    async def close_client(self, client: Any) -> None:
        ...


def is_retryable_status(error: Exception) -> bool:
    """HTTP 429/500/502/503/504 are transient; everything else is fatal."""
    return isinstance(error, UpstreamError) and error.status_code in RETRYABLE_STATUS_CODES


def resolve_options(config: ProviderConfig, options: RequestOptions | None) -> dict:
    """Merge request options over config defaults into plain generation params."""
    options = options or RequestOptions()
    return {
        "model": options.model or config.model,
        "temperature": options.temperature,
        "max_tokens": options.max_tokens if options.max_tokens is not None else config.max_tokens,
        "top_p": options.top_p,
    }
