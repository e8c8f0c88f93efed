"""OpenAI adapter: api.openai.com or an Azure OpenAI deployment."""

import json
from collections.abc import AsyncIterator
from contextlib import aclosing

import httpx

from chat_gateway.config.models import ProviderConfig
from chat_gateway.errors import EmptyResponse
from chat_gateway.models import Capability, ChatResponse, Message, OpenAIRequestOptions, RequestOptions, TokenUsage
from chat_gateway.providers.base import VendorRequest, is_retryable_status, resolve_options
from chat_gateway.providers.http import build_http_client, parse_sse_data, post_json, stream_lines
from chat_gateway.resilience.timeout import DerivedSignal

DEFAULT_BASE_URL = "https://api.openai.com"
AZURE_API_VERSION = "2024-02-01"


class OpenAIAdapter:
    """Speaks the OpenAI chat completions API."""

    name = "openai"
    capabilities = frozenset({Capability.TEXT_GENERATION, Capability.STREAMING})
    requires_api_key = True

    def build_client(self, config: ProviderConfig) -> httpx.AsyncClient:
        base_url = config.endpoint if config.is_managed_endpoint else (config.endpoint or DEFAULT_BASE_URL)
        return build_http_client(base_url)

    def prepare_request(
        self,
        messages: list[Message],
        config: ProviderConfig,
        options: RequestOptions | None,
        stream: bool = False,
    ) -> VendorRequest:
        params = resolve_options(config, options)

        body = {
            "model": params["model"],
            "messages": [{"role": m.role.value, "content": m.content} for m in messages],
        }
        for key in ("temperature", "max_tokens", "top_p"):
            if params[key] is not None:
                body[key] = params[key]
        if isinstance(options, OpenAIRequestOptions) and options.stop:
            body["stop"] = options.stop
        if stream:
            body["stream"] = True

        if config.is_managed_endpoint:
            path = f"/openai/deployments/{params['model']}/chat/completions?api-version={AZURE_API_VERSION}"
            headers = {"api-key": config.api_key}
        else:
            path = "/v1/chat/completions"
            headers = {"Authorization": f"Bearer {config.api_key}"}

        return VendorRequest(path=path, body=body, headers=headers)

    async def send(self, client: httpx.AsyncClient, request: VendorRequest, signal: DerivedSignal) -> dict:
        return await post_json(client, request, signal)

    def process_response(self, response: dict, config: ProviderConfig) -> ChatResponse:
        choices = response.get("choices") or []
        if not choices:
            raise EmptyResponse("No response choices returned from OpenAI API")

        choice = choices[0]
        usage = response.get("usage") or {}
        return ChatResponse(
            content=(choice.get("message") or {}).get("content") or "",
            model_id=response.get("model") or "unknown",
            finish_reason=choice.get("finish_reason") or "unknown",
            usage=TokenUsage(
                input_tokens=usage.get("prompt_tokens", 0),
                output_tokens=usage.get("completion_tokens", 0),
            ),
        )

    def is_retryable(self, error: Exception) -> bool:
        return is_retryable_status(error)

    async def stream_chunks(
        self, client: httpx.AsyncClient, request: VendorRequest, signal: DerivedSignal
    ) -> AsyncIterator[str]:
        async with aclosing(stream_lines(client, request, signal)) as lines:
            async for line in lines:
                payload = parse_sse_data(line)
                if payload is None:
                    continue
                if payload == "[DONE]":
                    return

                try:
                    chunk = json.loads(payload)
                except json.JSONDecodeError:
                    continue
                choices = chunk.get("choices") or []
                if choices:
                    text = (choices[0].get("delta") or {}).get("content") or ""
                    if text:
                        yield text

    async def close_client(self, client: httpx.AsyncClient) -> None:
        if not client.is_closed:
            await client.aclose()
