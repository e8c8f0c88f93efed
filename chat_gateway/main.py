"""Chat Gateway: FastAPI application entry point.

Exposes an OpenAI-style chat completions endpoint in front of several LLM
vendors. Every request runs through the provider pipeline: validation,
rate limiting, cached vendor client, retries under a per-call deadline,
and optional failover to a second provider.
"""

import json
import math
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

from chat_gateway.errors import (
    FatalProviderError,
    GatewayError,
    RateLimitExceeded,
    ValidationError,
)
from chat_gateway.logging.audit import (
    RequestTimer,
    generate_request_id,
    get_audit_logger,
    request_id_var,
    setup_logging,
)
from chat_gateway.models import (
    AnthropicRequestOptions,
    Capability,
    GoogleRequestOptions,
    HuggingFaceRequestOptions,
    OpenAIRequestOptions,
    RequestOptions,
)
from chat_gateway.providers.registry import (
    SUPPORTED_PROVIDERS,
    close_all_providers,
    resolve_model,
    supports_capability,
)
from chat_gateway.selection import ProviderSelector

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    setup_logging()
    get_audit_logger().info("Gateway started")
    yield
    await close_all_providers()
    get_audit_logger().info("Gateway stopped")


app = FastAPI(
    title="Chat Gateway",
    description="Resilient multi-provider chat completions",
    version=VERSION,
    lifespan=lifespan,
)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    status = exc.http_status
    # Surface the vendor's own client error (401, 404, ...) rather than a blanket 502
    if isinstance(exc, FatalProviderError) and exc.status_code and 400 <= exc.status_code < 500:
        status = exc.status_code

    headers = {"X-Request-Id": request_id_var.get("")}
    if isinstance(exc, RateLimitExceeded):
        headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after)))

    get_audit_logger().warning("Request failed", extra={"audit_data": {
        "error_type": type(exc).__name__,
        "status": status,
        "reason": exc.message,
        "attempts": getattr(exc, "attempts", None),
    }})
    return JSONResponse(
        status_code=status,
        content={"error": {"type": type(exc).__name__, "message": exc.message}},
        headers=headers,
    )


@app.get("/health")
async def health():
    return {"status": "healthy", "version": VERSION}


@app.get("/v1/providers")
async def list_providers():
    """Registered providers and which capabilities are currently usable."""
    return {
        "providers": [
            {
                "name": name,
                "capabilities": [c.value for c in Capability if supports_capability(name, c)],
            }
            for name in SUPPORTED_PROVIDERS
        ]
    }


@app.post("/v1/chat/completions")
async def chat_completions(request: Request):
    """Chat completions endpoint mirroring the OpenAI API shape.

    Routing: explicit `provider` > `strategy` selection > failover pair > default provider.
    """
    logger = get_audit_logger()
    rid = generate_request_id()
    request_id_var.set(rid)

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    is_stream = body.get("stream")
    if is_stream is None:
        is_stream = False
    if not isinstance(is_stream, bool):
        raise ValidationError("'stream' must be true or false")
    capability = Capability.STREAMING if is_stream else Capability.TEXT_GENERATION

    provider = body.get("provider")
    if not provider and body.get("strategy"):
        selector = ProviderSelector(SUPPORTED_PROVIDERS, supports_capability)
        provider = selector.select(capability, body["strategy"])

    model = resolve_model(provider)
    options = _build_options(body, provider)
    messages = body.get("messages")

    # Lambda guard: API Gateway + Mangum cannot relay SSE
    if is_stream and os.environ.get("AWS_LAMBDA_FUNCTION_NAME"):
        raise ValidationError("Streaming is not supported in Lambda deployments")

    if is_stream:
        stream = await model.stream_response(messages, options)
        return _streaming_response(stream, model.name, rid)

    with RequestTimer() as timer:
        result = await model.get_response(messages, options)

    logger.info("Request served", extra={"audit_data": {
        "route": model.name,
        "model": result.model_id,
        "latency_ms": timer.elapsed_ms,
    }})
    return JSONResponse(
        status_code=200,
        content={"id": f"chatcmpl-{rid}", **result.to_dict()},
        headers={"X-Request-Id": rid},
    )


def _streaming_response(stream, route: str, rid: str) -> StreamingResponse:
    """Relay text fragments as OpenAI-style SSE chunks."""

    async def event_generator():
        try:
            async for text in stream:
                chunk = json.dumps({
                    "id": f"chatcmpl-{rid}",
                    "object": "chat.completion.chunk",
                    "choices": [{"index": 0, "delta": {"content": text}, "finish_reason": None}],
                })
                yield f"data: {chunk}\n\n"
            yield "data: [DONE]\n\n"
        except GatewayError as e:
            # Headers are already sent; report the failure in-band
            get_audit_logger().warning("Stream failed", extra={"audit_data": {
                "route": route,
                "error_type": type(e).__name__,
                "reason": e.message,
            }})
            error_data = json.dumps({"error": {"type": type(e).__name__, "message": e.message}})
            yield f"data: {error_data}\n\n"
        finally:
            await stream.aclose()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "X-Request-Id": rid,
            "Cache-Control": "no-cache",
        },
    )


def _build_options(body: dict, provider: str | None) -> RequestOptions:
    """Request options from the body; vendor-specific fields pick the variant."""
    common = {
        "model": body.get("model"),
        "temperature": body.get("temperature"),
        "max_tokens": body.get("max_tokens"),
        "top_p": body.get("top_p"),
    }
    name = (provider or "").strip().lower()
    if name == "openai":
        return OpenAIRequestOptions(stop=_as_list(body.get("stop")), **common)
    if name == "anthropic":
        return AnthropicRequestOptions(system_prompt=body.get("system"), **common)
    if name == "google":
        return GoogleRequestOptions(max_output_tokens=body.get("max_output_tokens"), **common)
    if name == "huggingface":
        return HuggingFaceRequestOptions(
            max_new_tokens=body.get("max_new_tokens"), top_k=body.get("top_k"), **common
        )
    return RequestOptions(provider=name or None, **common)


def _as_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return value
    raise ValidationError("'stop' must be a string or a list of strings")
