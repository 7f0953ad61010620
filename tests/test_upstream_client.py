"""Tests for the httpx upstream adapter, with backends mocked by respx."""

import asyncio

import httpx
import pytest
import respx

from gateway.adapters.upstream.base import ProxyRequest
from gateway.adapters.upstream.factory import create_upstream_client
from gateway.adapters.upstream.httpx_client import HttpxUpstreamClient
from gateway.core.config import RoutingSettings
from gateway.core.errors import UpstreamTimeoutAppError, UpstreamUnavailableAppError


def _request(url: str, method: str = "GET", body: bytes = b"") -> ProxyRequest:
    target = httpx.URL(url)
    return ProxyRequest(
        method=method,
        url=target,
        headers=[("host", target.netloc.decode()), ("x-trace", "t-1")],
        body=body,
    )


@pytest.mark.asyncio
@respx.mock
async def test_send_streams_backend_response() -> None:
    route = respx.get("http://users.local/health/42").mock(
        return_value=httpx.Response(200, text="Users service running 42")
    )
    client = HttpxUpstreamClient(timeout_seconds=5)

    upstream = await client.send(_request("http://users.local/health/42"))
    body = b"".join([chunk async for chunk in upstream.body])
    await upstream.close()
    await client.aclose()

    assert upstream.status_code == 200
    assert body == b"Users service running 42"
    assert route.call_count == 1
    assert route.calls.last.request.headers["x-trace"] == "t-1"


@pytest.mark.asyncio
@respx.mock
async def test_send_passes_body_and_method() -> None:
    route = respx.patch("http://orders.local/items/3").mock(
        return_value=httpx.Response(204)
    )
    client = HttpxUpstreamClient(timeout_seconds=5)

    upstream = await client.send(
        _request("http://orders.local/items/3", method="PATCH", body=b"qty=4")
    )
    await upstream.close()
    await client.aclose()

    assert upstream.status_code == 204
    assert route.calls.last.request.content == b"qty=4"


@pytest.mark.asyncio
@respx.mock
async def test_compressed_body_is_relayed_raw(streamed_body) -> None:
    respx.get("http://users.local/blob").mock(
        return_value=httpx.Response(
            200,
            headers={"Content-Encoding": "gzip"},
            stream=streamed_body(b"\x1f\x8b-not-really", b"-gzip"),
        )
    )
    client = HttpxUpstreamClient(timeout_seconds=5)

    upstream = await client.send(_request("http://users.local/blob"))
    body = b"".join([chunk async for chunk in upstream.body])
    await upstream.close()
    await client.aclose()

    assert body == b"\x1f\x8b-not-really-gzip"
    assert (b"content-encoding", b"gzip") in [
        (name.lower(), value) for name, value in upstream.headers
    ]


@pytest.mark.asyncio
@respx.mock
async def test_connect_error_maps_to_unavailable() -> None:
    respx.get("http://users.local/x").mock(side_effect=httpx.ConnectError)
    client = HttpxUpstreamClient(timeout_seconds=5)

    with pytest.raises(UpstreamUnavailableAppError) as exc_info:
        await client.send(_request("http://users.local/x"))
    await client.aclose()

    assert exc_info.value.code == "upstream_unavailable"


@pytest.mark.asyncio
@respx.mock
async def test_timeout_maps_to_upstream_timeout() -> None:
    respx.get("http://users.local/slow").mock(side_effect=httpx.ConnectTimeout)
    client = HttpxUpstreamClient(timeout_seconds=2.5)

    with pytest.raises(UpstreamTimeoutAppError) as exc_info:
        await client.send(_request("http://users.local/slow"))
    await client.aclose()

    assert exc_info.value.code == "upstream_timeout"
    assert exc_info.value.details == {"timeout_seconds": 2.5}


@pytest.mark.asyncio
@respx.mock
async def test_slow_response_headers_hit_the_deadline() -> None:
    async def never_in_time(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(2)
        return httpx.Response(200)

    respx.get("http://users.local/slow").mock(side_effect=never_in_time)
    client = HttpxUpstreamClient(timeout_seconds=0.1)

    with pytest.raises(UpstreamTimeoutAppError):
        await client.send(_request("http://users.local/slow"))
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_trickling_body_is_cut_off_at_the_deadline(streamed_body) -> None:
    respx.get("http://users.local/trickle").mock(
        return_value=httpx.Response(
            200, stream=streamed_body(b"a", b"b", b"c", delay=0.3)
        )
    )
    client = HttpxUpstreamClient(timeout_seconds=0.5)

    upstream = await client.send(_request("http://users.local/trickle"))
    received = []
    with pytest.raises(UpstreamTimeoutAppError):
        async for chunk in upstream.body:
            received.append(chunk)
    await upstream.close()
    await client.aclose()

    assert received == [b"a"]


def test_factory_applies_configured_timeout() -> None:
    client = create_upstream_client(RoutingSettings(upstream_timeout_seconds=7.5))

    assert isinstance(client, HttpxUpstreamClient)
    assert client.timeout_seconds == 7.5
    assert client.client.timeout.read == 7.5
