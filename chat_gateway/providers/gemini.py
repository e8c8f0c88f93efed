"""Google Gemini adapter (generateContent / streamGenerateContent)."""

import json
from collections.abc import AsyncIterator
from contextlib import aclosing

import httpx

from chat_gateway.config.models import ProviderConfig
from chat_gateway.errors import EmptyResponse
from chat_gateway.models import (
    Capability,
    ChatResponse,
    ChatRole,
    GoogleRequestOptions,
    Message,
    RequestOptions,
    TokenUsage,
)
from chat_gateway.providers.base import VendorRequest, is_retryable_status, resolve_options
from chat_gateway.providers.http import build_http_client, parse_sse_data, post_json, stream_lines
from chat_gateway.resilience.timeout import DerivedSignal

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"


class GeminiAdapter:
    name = "google"
    capabilities = frozenset({Capability.TEXT_GENERATION, Capability.STREAMING})
    requires_api_key = True

    def build_client(self, config: ProviderConfig) -> httpx.AsyncClient:
        return build_http_client(config.endpoint or DEFAULT_BASE_URL)

    def prepare_request(
        self,
        messages: list[Message],
        config: ProviderConfig,
        options: RequestOptions | None,
        stream: bool = False,
    ) -> VendorRequest:
        params = resolve_options(config, options)

        contents = []
        system_parts = []
        for msg in messages:
            if msg.role == ChatRole.SYSTEM:
                system_parts.append({"text": msg.content})
                continue
            role = "model" if msg.role == ChatRole.ASSISTANT else "user"
            contents.append({"role": role, "parts": [{"text": msg.content}]})

        body = {"contents": contents}
        if system_parts:
            body["systemInstruction"] = {"parts": system_parts}

        generation_config = {}
        if params["temperature"] is not None:
            generation_config["temperature"] = params["temperature"]
        if params["top_p"] is not None:
            generation_config["topP"] = params["top_p"]
        max_output = params["max_tokens"]
        if isinstance(options, GoogleRequestOptions) and options.max_output_tokens is not None:
            max_output = options.max_output_tokens
        if max_output is not None:
            generation_config["maxOutputTokens"] = max_output
        if generation_config:
            body["generationConfig"] = generation_config

        # API key in a header, never in the URL where it would end up in logs
        if stream:
            path = f"/v1beta/models/{params['model']}:streamGenerateContent?alt=sse"
        else:
            path = f"/v1beta/models/{params['model']}:generateContent"
        return VendorRequest(path=path, body=body, headers={"X-Goog-Api-Key": config.api_key})

    async def send(self, client: httpx.AsyncClient, request: VendorRequest, signal: DerivedSignal) -> dict:
        return await post_json(client, request, signal)

    def process_response(self, response: dict, config: ProviderConfig) -> ChatResponse:
        candidates = response.get("candidates") or []
        if not candidates:
            raise EmptyResponse("No candidates returned from Google Gemini API")

        candidate = candidates[0]
        usage = response.get("usageMetadata") or {}
        return ChatResponse(
            content=_candidate_text(candidate),
            model_id=response.get("modelVersion") or config.model,
            finish_reason=candidate.get("finishReason") or "unknown",
            usage=TokenUsage(
                input_tokens=usage.get("promptTokenCount", 0),
                output_tokens=usage.get("candidatesTokenCount", 0),
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
                try:
                    chunk = json.loads(payload)
                except json.JSONDecodeError:
                    # Skip malformed JSON
                    continue

                candidates = chunk.get("candidates") or []
                if not candidates:
                    continue
                text = _candidate_text(candidates[0])
                if text:
                    yield text

    async def close_client(self, client: httpx.AsyncClient) -> None:
        if not client.is_closed:
            await client.aclose()


def _candidate_text(candidate: dict) -> str:
    parts = (candidate.get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts)
