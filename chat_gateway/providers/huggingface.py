"""Hugging Face Inference Endpoint adapter (text-generation task).

The endpoint URL is the whole address of a deployed model, so the config's
`endpoint` is required and requests go to it as-is. Chat history is
flattened into one role-prefixed prompt ending in "Assistant: ".
"""

import json
from collections.abc import AsyncIterator
from contextlib import aclosing

import httpx

from chat_gateway.config.models import ProviderConfig
from chat_gateway.errors import ConfigurationError, EmptyResponse
from chat_gateway.models import (
    Capability,
    ChatResponse,
    ChatRole,
    HuggingFaceRequestOptions,
    Message,
    RequestOptions,
    TokenUsage,
)
from chat_gateway.providers.base import VendorRequest, is_retryable_status, resolve_options
from chat_gateway.providers.http import build_http_client, parse_sse_data, post_json, stream_lines
from chat_gateway.resilience.timeout import DerivedSignal

ASSISTANT_PREFIX = "Assistant: "

_ROLE_PREFIXES = {
    ChatRole.SYSTEM: "System: ",
    ChatRole.USER: "User: ",
    ChatRole.ASSISTANT: ASSISTANT_PREFIX,
}


class HuggingFaceAdapter:
    name = "huggingface"
    capabilities = frozenset({Capability.TEXT_GENERATION, Capability.STREAMING})
    requires_api_key = True

    def build_client(self, config: ProviderConfig) -> httpx.AsyncClient:
        url = httpx.URL(config.endpoint or "")
        if url.scheme not in ("http", "https") or not url.host:
            raise ConfigurationError("huggingface endpoint must be an absolute http(s) URL")
        return build_http_client("")

    def prepare_request(
        self,
        messages: list[Message],
        config: ProviderConfig,
        options: RequestOptions | None,
        stream: bool = False,
    ) -> VendorRequest:
        params = resolve_options(config, options)

        parameters = {}
        if params["temperature"] is not None:
            parameters["temperature"] = params["temperature"]
        max_new_tokens = params["max_tokens"]
        if isinstance(options, HuggingFaceRequestOptions):
            if options.max_new_tokens is not None:
                max_new_tokens = options.max_new_tokens
            if options.top_k is not None:
                parameters["top_k"] = options.top_k
        if max_new_tokens is not None:
            parameters["max_new_tokens"] = max_new_tokens
        if params["top_p"] is not None:
            parameters["top_p"] = params["top_p"]

        body = {"inputs": build_prompt(messages), "stream": stream}
        if parameters:
            body["parameters"] = parameters

        return VendorRequest(
            path=config.endpoint,
            body=body,
            headers={"Authorization": f"Bearer {config.api_key}"},
        )

    async def send(self, client: httpx.AsyncClient, request: VendorRequest, signal: DerivedSignal):
        return await post_json(client, request, signal)

    def process_response(self, response, config: ProviderConfig) -> ChatResponse:
        # Inference Endpoints answer with a one-element list; TGI with a bare object
        if isinstance(response, list):
            response = response[0] if response else {}
        text = response.get("generated_text") if isinstance(response, dict) else None
        if text is None:
            raise EmptyResponse("No generated text returned from Hugging Face API")

        return ChatResponse(
            content=_strip_prompt(text),
            model_id=config.model,
            finish_reason="stop",
            usage=TokenUsage(),
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

                token = chunk.get("token") or {}
                text = token.get("text")
                if text and not token.get("special"):
                    yield text

    async def close_client(self, client: httpx.AsyncClient) -> None:
        if not client.is_closed:
            await client.aclose()


def build_prompt(messages: list[Message]) -> str:
    lines = [f"{_ROLE_PREFIXES[msg.role]}{msg.content}" for msg in messages]
    lines.append(ASSISTANT_PREFIX)
    return "\n".join(lines) + "\n"


def _strip_prompt(text: str) -> str:
    """Keep only what follows the last assistant prefix, if the model echoed the prompt."""
    index = text.rfind(ASSISTANT_PREFIX)
    if index >= 0:
        text = text[index + len(ASSISTANT_PREFIX):]
    return text.strip()
