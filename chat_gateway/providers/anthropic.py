"""Anthropic Messages API adapter."""

import json
from collections.abc import AsyncIterator
from contextlib import aclosing

import httpx

from chat_gateway.config.models import ProviderConfig
from chat_gateway.errors import EmptyResponse, UpstreamError
from chat_gateway.models import (
    AnthropicRequestOptions,
    Capability,
    ChatResponse,
    ChatRole,
    Message,
    RequestOptions,
    TokenUsage,
)
from chat_gateway.providers.base import VendorRequest, is_retryable_status, resolve_options
from chat_gateway.providers.http import build_http_client, parse_sse_data, post_json, stream_lines
from chat_gateway.resilience.timeout import DerivedSignal

DEFAULT_BASE_URL = "https://api.anthropic.com"
API_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 1024  # the Messages API requires max_tokens
OVERLOADED_STATUS = 529


class AnthropicAdapter:
    """Translates generic messages to/from the Anthropic Messages API.

    System messages are lifted into the top-level `system` field; the
    remaining user/assistant turns keep their order.
    """

    name = "anthropic"
    capabilities = frozenset({Capability.TEXT_GENERATION, Capability.STREAMING})
    requires_api_key = True

    def build_client(self, config: ProviderConfig) -> httpx.AsyncClient:
        return build_http_client(
            config.endpoint or DEFAULT_BASE_URL,
            headers={"anthropic-version": API_VERSION},
        )

    def prepare_request(
        self,
        messages: list[Message],
        config: ProviderConfig,
        options: RequestOptions | None,
        stream: bool = False,
    ) -> VendorRequest:
        params = resolve_options(config, options)

        system_parts = [m.content for m in messages if m.role == ChatRole.SYSTEM]
        if isinstance(options, AnthropicRequestOptions) and options.system_prompt:
            system_parts.insert(0, options.system_prompt)

        body = {
            "model": params["model"],
            "max_tokens": params["max_tokens"] or DEFAULT_MAX_TOKENS,
            "messages": [
                {"role": m.role.value, "content": m.content}
                for m in messages
                if m.role != ChatRole.SYSTEM
            ],
        }
        if system_parts:
            body["system"] = "\n\n".join(system_parts)
        if params["temperature"] is not None:
            body["temperature"] = params["temperature"]
        if params["top_p"] is not None:
            body["top_p"] = params["top_p"]
        if stream:
            body["stream"] = True

        # Key goes on the request, not the shared client
        return VendorRequest(path="/v1/messages", body=body, headers={"x-api-key": config.api_key})

    async def send(self, client: httpx.AsyncClient, request: VendorRequest, signal: DerivedSignal) -> dict:
        return await post_json(client, request, signal)

    def process_response(self, response: dict, config: ProviderConfig) -> ChatResponse:
        blocks = response.get("content") or []
        if not blocks:
            raise EmptyResponse("No content blocks returned from Anthropic API")

        text = "".join(block.get("text", "") for block in blocks if block.get("type") == "text")
        usage = response.get("usage") or {}
        return ChatResponse(
            content=text,
            model_id=response.get("model") or config.model,
            finish_reason=response.get("stop_reason") or "unknown",
            usage=TokenUsage(
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
            ),
        )

    def is_retryable(self, error: Exception) -> bool:
        if isinstance(error, UpstreamError) and error.status_code == OVERLOADED_STATUS:
            return True
        return is_retryable_status(error)

    async def stream_chunks(
        self, client: httpx.AsyncClient, request: VendorRequest, signal: DerivedSignal
    ) -> AsyncIterator[str]:
        async with aclosing(stream_lines(client, request, signal)) as lines:
            async for line in lines:
                payload = parse_sse_data(line)
                if payload is None:
                    continue  # "event:" lines; the data line carries the type too

                try:
                    event = json.loads(payload)
                except json.JSONDecodeError:
                    raise UpstreamError(502, "Malformed stream event from Anthropic API")

                event_type = event.get("type")
                if event_type == "content_block_delta":
                    text = (event.get("delta") or {}).get("text") or ""
                    if text:
                        yield text
                elif event_type == "message_stop":
                    return
                elif event_type == "error":
                    error = event.get("error") or {}
                    status = OVERLOADED_STATUS if error.get("type") == "overloaded_error" else 502
                    raise UpstreamError(status, error.get("message", "Stream error"))

    async def close_client(self, client: httpx.AsyncClient) -> None:
        if not client.is_closed:
            await client.aclose()
