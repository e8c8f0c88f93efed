"""httpx transport shared by the HTTP-based adapters."""

import json
from collections.abc import AsyncIterator

import httpx

from chat_gateway.config.models import MAX_REQUEST_TIMEOUT
from chat_gateway.errors import UpstreamError
from chat_gateway.providers.base import VendorRequest
from chat_gateway.resilience.timeout import DerivedSignal

MAX_ERROR_DETAIL = 500


def build_http_client(base_url: str, headers: dict | None = None) -> httpx.AsyncClient:
    """Pooled client for one vendor base URL.

    The per-call deadline is enforced by the DerivedSignal; the transport
    timeout here only bounds a single socket operation.
    """
    return httpx.AsyncClient(
        base_url=base_url.rstrip("/"),
        headers=headers or {},
        timeout=httpx.Timeout(MAX_REQUEST_TIMEOUT, connect=10.0),
    )


async def post_json(client: httpx.AsyncClient, request: VendorRequest, signal: DerivedSignal) -> dict:
    try:
        response = await signal.run(
            client.post(request.path, json=request.body, headers=request.headers)
        )
    except httpx.ConnectError:
        raise UpstreamError(502, "Cannot reach upstream provider")
    except httpx.TimeoutException:
        raise UpstreamError(504, "Upstream provider timed out")
    except httpx.HTTPError as e:
        raise UpstreamError(502, f"Upstream error: {type(e).__name__}")

    if response.status_code >= 400:
        raise UpstreamError(response.status_code, response.text[:MAX_ERROR_DETAIL])

    try:
        return response.json()
    except json.JSONDecodeError:
        raise UpstreamError(502, "Upstream returned a non-JSON body")


async def stream_lines(
    client: httpx.AsyncClient, request: VendorRequest, signal: DerivedSignal
) -> AsyncIterator[str]:
    """Yield non-empty response lines; every await observes the signal.

    Opening the stream (connect, send, wait for headers) runs under the
    signal too. Leaving the generator for any reason (end of stream, error,
    signal, consumer aclose()) closes the response and releases the connection.
    """
    try:
        http_request = client.build_request(
            "POST", request.path, json=request.body, headers=request.headers
        )
        response = await signal.run(client.send(http_request, stream=True))
        try:
            if response.status_code != 200:
                body_bytes = await signal.run(response.aread())
                raise UpstreamError(
                    response.status_code,
                    body_bytes.decode(errors="replace")[:MAX_ERROR_DETAIL],
                )

            lines = response.aiter_lines()
            while True:
                line = await signal.run(anext(lines, None))
                if line is None:
                    return
                line = line.strip()
                if line:
                    yield line
        finally:
            await response.aclose()

    except httpx.ConnectError:
        raise UpstreamError(502, "Cannot reach upstream provider")
    except httpx.TimeoutException:
        raise UpstreamError(504, "Upstream provider timed out")
    except httpx.HTTPError as e:
        raise UpstreamError(502, f"Upstream error: {type(e).__name__}")


def parse_sse_data(line: str) -> str | None:
    """Return the payload of an SSE `data:` line, or None for other lines."""
    if not line.startswith("data:"):
        return None
    return line[len("data:"):].strip()
