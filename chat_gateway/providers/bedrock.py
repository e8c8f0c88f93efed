"""AWS Bedrock Converse API adapter: translates generic messages to/from Bedrock."""

import asyncio
from collections.abc import AsyncIterator

from chat_gateway.config.models import ProviderConfig
from chat_gateway.errors import EmptyResponse, UpstreamError
from chat_gateway.models import Capability, ChatResponse, ChatRole, Message, RequestOptions, TokenUsage
from chat_gateway.providers.base import VendorRequest, is_retryable_status, resolve_options
from chat_gateway.resilience.timeout import DerivedSignal

DEFAULT_REGION = "us-east-1"

# boto3 error code -> HTTP-equivalent status used for retry classification
_ERROR_STATUS = {
    "ThrottlingException": 429,
    "ServiceQuotaExceededException": 429,
    "ValidationException": 400,
    "AccessDeniedException": 403,
    "ResourceNotFoundException": 404,
    "ModelNotReadyException": 503,
    "ServiceUnavailableException": 503,
    "InternalServerException": 500,
    "ModelTimeoutException": 504,
}


class BedrockAdapter:
    """Sends requests to AWS Bedrock via the Converse API.

    Authenticates with IAM credentials from the environment; the config's
    api_key is unused and `endpoint` holds the AWS region.
    """

    name = "bedrock"
    capabilities = frozenset({Capability.TEXT_GENERATION, Capability.STREAMING})
    requires_api_key = False

    def build_client(self, config: ProviderConfig):
        # Lazy import to avoid pulling in boto3 for HTTP-only setups
        import boto3
        from botocore.config import Config

        # A worker thread cannot be torn down on cancel; the socket timeout bounds it.
        # RetryExecutor owns retries, so botocore makes a single attempt.
        boto_config = Config(
            read_timeout=config.request_timeout,
            retries={"total_max_attempts": 1},
        )
        return boto3.client(
            "bedrock-runtime", region_name=config.endpoint or DEFAULT_REGION, config=boto_config
        )

    def prepare_request(
        self,
        messages: list[Message],
        config: ProviderConfig,
        options: RequestOptions | None,
        stream: bool = False,
    ) -> VendorRequest:
        params = resolve_options(config, options)
        kwargs = {"modelId": params["model"]}

        # Separate system messages from conversation messages
        system_msgs = []
        converse_msgs = []
        for msg in messages:
            if msg.role == ChatRole.SYSTEM:
                system_msgs.append({"text": msg.content})
            else:
                converse_msgs.append({
                    "role": msg.role.value,
                    "content": [{"text": msg.content}],
                })

        if system_msgs:
            kwargs["system"] = system_msgs
        kwargs["messages"] = converse_msgs

        inference_config = {}
        if params["temperature"] is not None:
            inference_config["temperature"] = params["temperature"]
        if params["max_tokens"] is not None:
            inference_config["maxTokens"] = params["max_tokens"]
        if params["top_p"] is not None:
            inference_config["topP"] = params["top_p"]
        if inference_config:
            kwargs["inferenceConfig"] = inference_config

        return VendorRequest(path="converse_stream" if stream else "converse", body=kwargs)

    async def send(self, client, request: VendorRequest, signal: DerivedSignal) -> dict:
        try:
            return await signal.run(asyncio.to_thread(client.converse, **request.body))
        except UpstreamError:
            raise
        except Exception as e:
            if _is_boto_error(e):
                raise _to_upstream_error(e)
            raise

    def process_response(self, response: dict, config: ProviderConfig) -> ChatResponse:
        output_msg = (response.get("output") or {}).get("message")
        if not output_msg:
            raise EmptyResponse("No output message returned from Bedrock")

        text = "".join(block.get("text", "") for block in output_msg.get("content", []))
        stop_reason = response.get("stopReason") or "unknown"
        usage = response.get("usage") or {}

        return ChatResponse(
            content=text,
            model_id=config.model,
            finish_reason="length" if stop_reason == "max_tokens" else stop_reason,
            usage=TokenUsage(
                input_tokens=usage.get("inputTokens", 0),
                output_tokens=usage.get("outputTokens", 0),
            ),
        )

    def is_retryable(self, error: Exception) -> bool:
        return is_retryable_status(error)

    async def stream_chunks(self, client, request: VendorRequest, signal: DerivedSignal) -> AsyncIterator[str]:
        try:
            response = await signal.run(asyncio.to_thread(client.converse_stream, **request.body))
        except Exception as e:
            if _is_boto_error(e):
                raise _to_upstream_error(e)
            raise

        stream = response.get("stream")
        if stream is None:
            return
        events = iter(stream)
        try:
            while True:
                # boto3's EventStream is a blocking iterator
                event = await signal.run(asyncio.to_thread(next, events, None))
                if event is None:
                    return
                if "contentBlockDelta" in event:
                    text = event["contentBlockDelta"].get("delta", {}).get("text", "")
                    if text:
                        yield text
                elif "messageStop" in event:
                    return
                else:
                    for code in _ERROR_STATUS:
                        key = code[0].lower() + code[1:]
                        if key in event:
                            raise UpstreamError(_ERROR_STATUS[code], event[key].get("message", code))
        finally:
            # Closing the raw stream also unblocks a reader thread left behind by cancellation
            close = getattr(stream, "close", None)
            if close is not None:
                close()

    async def close_client(self, client) -> None:
        # boto3 clients don't need explicit cleanup
        return None


def _is_boto_error(error: Exception) -> bool:
    return isinstance(getattr(error, "response", None), dict) or type(error).__module__.startswith("botocore")


def _to_upstream_error(error: Exception) -> UpstreamError:
    """Map boto3 exceptions to status-coded UpstreamErrors."""
    if isinstance(getattr(error, "response", None), dict):
        error_code = error.response.get("Error", {}).get("Code", "")
    else:
        error_code = type(error).__name__

    if error_code in _ERROR_STATUS:
        return UpstreamError(_ERROR_STATUS[error_code], f"Bedrock {error_code}")
    if error_code in ("EndpointConnectionError", "ConnectTimeoutError", "ReadTimeoutError"):
        return UpstreamError(504 if "Timeout" in error_code else 502, f"Bedrock {error_code}")
    return UpstreamError(502, f"Bedrock error: {error_code or type(error).__name__}")
