"""Tests for chat_gateway/pipeline.py: the buffered request pipeline end to end."""

import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from chat_gateway.errors import (
    Cancelled,
    ConfigurationError,
    EmptyResponse,
    FatalProviderError,
    RateLimitExceeded,
    TimeoutExceeded,
    TransientProviderError,
    ValidationError,
)
from chat_gateway.models import Message
from chat_gateway.pipeline import ChatModel
from chat_gateway.providers.openai import OpenAIAdapter
from chat_gateway.resilience.timeout import CancellationSignal

HELLO = {
    "model": "gpt-4o",
    "choices": [{"message": {"role": "assistant", "content": "Hello!"}, "finish_reason": "stop"}],
    "usage": {"prompt_tokens": 9, "completion_tokens": 2},
}


@pytest.fixture(autouse=True)
def fast_backoff(override_settings):
    override_settings(RETRY_BASE_DELAY="0", RETRY_MAX_DELAY="0")


@pytest.fixture
def mock_client():
    client = AsyncMock()
    client.is_closed = False
    return client


@pytest.fixture
def make_model(static_store, provider_config, mock_client):
    """Factory fixture: ChatModel over OpenAIAdapter with a mocked httpx client."""
    def _make(config=None):
        adapter = OpenAIAdapter()
        adapter.build_client = MagicMock(return_value=mock_client)
        store = static_store(openai=config or provider_config)
        return ChatModel(adapter, store), adapter, store

    return _make


class TestGetResponse:

    async def test_success(self, make_model, mock_client, chat_messages):
        model, _, _ = make_model()
        mock_client.post.return_value = httpx.Response(200, json=HELLO)

        response = await model.get_response(chat_messages)

        assert response.content == "Hello!"
        assert response.usage.total_tokens == 11
        assert mock_client.post.await_count == 1

    async def test_retry_then_success(self, make_model, mock_client):
        """503 then 200 with max_retries=2 yields the 200 after two attempts."""
        model, _, _ = make_model()
        mock_client.post.side_effect = [
            httpx.Response(503, text="Service Unavailable"),
            httpx.Response(200, json=HELLO),
        ]

        response = await model.get_response([Message.system("You are helpful"), Message.user("Hi")])

        assert response.content == "Hello!"
        assert mock_client.post.await_count == 2

    async def test_retries_exhausted(self, make_model, mock_client, provider_config):
        model, _, _ = make_model(replace(provider_config, max_retries=2))
        mock_client.post.return_value = httpx.Response(502, text="Bad Gateway")

        with pytest.raises(TransientProviderError) as exc_info:
            await model.get_response([Message.user("Hi")])

        assert mock_client.post.await_count == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.status_code == 502

    async def test_fatal_not_retried(self, make_model, mock_client):
        model, _, _ = make_model()
        mock_client.post.return_value = httpx.Response(401, text="invalid key")

        with pytest.raises(FatalProviderError) as exc_info:
            await model.get_response([Message.user("Hi")])

        assert mock_client.post.await_count == 1
        assert exc_info.value.status_code == 401

    async def test_empty_response(self, make_model, mock_client):
        model, _, _ = make_model()
        mock_client.post.return_value = httpx.Response(200, json={"choices": []})

        with pytest.raises(EmptyResponse):
            await model.get_response([Message.user("Hi")])

    async def test_deadline_exceeded(self, make_model, mock_client, provider_config):
        model, _, _ = make_model(replace(provider_config, request_timeout=0.05))

        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        mock_client.post.side_effect = hang

        with pytest.raises(TimeoutExceeded):
            await model.get_response([Message.user("Hi")])
        assert mock_client.post.await_count == 1

    async def test_caller_cancel(self, make_model, mock_client):
        model, _, _ = make_model()
        caller = CancellationSignal()

        async def hang(*args, **kwargs):
            caller.cancel()
            await asyncio.sleep(10)

        mock_client.post.side_effect = hang

        with pytest.raises(Cancelled):
            await model.get_response([Message.user("Hi")], signal=caller)


class TestPreflight:

    async def test_validation_before_io(self, make_model, mock_client):
        model, adapter, _ = make_model()
        with pytest.raises(ValidationError):
            await model.get_response([])
        adapter.build_client.assert_not_called()
        mock_client.post.assert_not_awaited()

    async def test_size_limit(self, make_model, mock_client, provider_config):
        model, _, _ = make_model(replace(provider_config, max_request_size=10))
        with pytest.raises(ValidationError, match="configured limit of 10 bytes"):
            await model.get_response([Message.user("x" * 11)])
        mock_client.post.assert_not_awaited()

    async def test_invalid_config(self, make_model, mock_client, provider_config):
        model, _, _ = make_model(replace(provider_config, api_key="short"))
        with pytest.raises(ConfigurationError, match="openai configuration validation failed"):
            await model.get_response([Message.user("Hi")])
        mock_client.post.assert_not_awaited()

    async def test_rate_limited(self, make_model, mock_client, provider_config):
        model, _, _ = make_model(replace(provider_config, permit_limit=2, window_seconds=60))
        mock_client.post.return_value = httpx.Response(200, json=HELLO)

        await model.get_response([Message.user("1")])
        await model.get_response([Message.user("2")])
        with pytest.raises(RateLimitExceeded):
            await model.get_response([Message.user("3")])
        assert mock_client.post.await_count == 2


class TestHotReload:

    async def test_config_change_applies_next_call(self, make_model, mock_client, provider_config):
        model, adapter, store = make_model()
        mock_client.post.return_value = httpx.Response(200, json=HELLO)

        await model.get_response([Message.user("Hi")])
        store.configs["openai"] = replace(provider_config, model="gpt-4o-mini")
        await model.get_response([Message.user("Hi")])

        assert mock_client.post.call_args.kwargs["json"]["model"] == "gpt-4o-mini"
        # Model name is not part of the client fingerprint
        assert adapter.build_client.call_count == 1

    async def test_endpoint_change_rebuilds_client(self, make_model, mock_client, provider_config):
        model, adapter, store = make_model()
        mock_client.post.return_value = httpx.Response(200, json=HELLO)

        await model.get_response([Message.user("Hi")])
        store.configs["openai"] = replace(provider_config, endpoint="https://proxy.internal")
        await model.get_response([Message.user("Hi")])

        assert adapter.build_client.call_count == 2

    async def test_rate_limit_change_rebuilds_limiter(self, make_model, mock_client, provider_config):
        model, _, store = make_model(replace(provider_config, permit_limit=1, window_seconds=60))
        mock_client.post.return_value = httpx.Response(200, json=HELLO)

        await model.get_response([Message.user("Hi")])
        with pytest.raises(RateLimitExceeded):
            await model.get_response([Message.user("Hi")])

        store.configs["openai"] = replace(provider_config, permit_limit=5, window_seconds=60)
        await model.get_response([Message.user("Hi")])


class TestClose:

    async def test_close_releases_client(self, make_model, mock_client):
        model, _, _ = make_model()
        mock_client.post.return_value = httpx.Response(200, json=HELLO)
        await model.get_response([Message.user("Hi")])

        await model.close()
        mock_client.aclose.assert_awaited_once()

    async def test_close_without_client(self, make_model, mock_client):
        model, _, _ = make_model()
        await model.close()
        mock_client.aclose.assert_not_awaited()
