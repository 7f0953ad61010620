"""Tests for the proxy dispatcher outside the HTTP stack."""

import asyncio

import pytest
from starlette.requests import Request

from gateway.adapters.upstream.base import (
    AbstractUpstreamClient,
    ProxyRequest,
    UpstreamResponse,
)
from gateway.services.proxy_service import (
    CLIENT_CLOSED_REQUEST,
    ProxyDispatcher,
    build_forward_headers,
    raw_request_path,
)
from gateway.services.routing import RouteTable


class HangingUpstream(AbstractUpstreamClient):
    """Backend that never answers; records whether the call was cancelled."""

    def __init__(self) -> None:
        self.sent: list[ProxyRequest] = []
        self.cancelled = False

    async def send(self, proxy_request: ProxyRequest) -> UpstreamResponse:
        self.sent.append(proxy_request)
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise

    async def aclose(self) -> None:
        pass


class InstantUpstream(AbstractUpstreamClient):
    async def send(self, proxy_request: ProxyRequest) -> UpstreamResponse:
        async def body():
            yield b"ok"

        async def close() -> None:
            pass

        return UpstreamResponse(status_code=200, headers=[], body=body(), close=close)


def _request(path: bytes, *, disconnected: bool) -> Request:
    messages = [{"type": "http.request", "body": b"", "more_body": False}]

    async def receive():
        if messages:
            return messages.pop(0)
        if disconnected:
            return {"type": "http.disconnect"}
        await asyncio.Event().wait()

    scope = {
        "type": "http",
        "method": "GET",
        "scheme": "http",
        "path": path.decode(),
        "raw_path": path,
        "query_string": b"",
        "headers": [(b"host", b"gateway.local")],
        "server": ("gateway.local", 80),
    }
    return Request(scope, receive)


@pytest.fixture
def table() -> RouteTable:
    return RouteTable.from_targets({"users": "http://users.local:3001"})


@pytest.mark.asyncio
async def test_backend_call_is_cancelled_when_caller_disconnects(table):
    upstream = HangingUpstream()
    dispatcher = ProxyDispatcher(table, upstream, disconnect_poll_interval=0.01)

    response = await asyncio.wait_for(
        dispatcher.dispatch(_request(b"/api/users/slow", disconnected=True)),
        timeout=2,
    )

    assert response.status_code == CLIENT_CLOSED_REQUEST
    assert len(upstream.sent) == 1
    assert upstream.cancelled


@pytest.mark.asyncio
async def test_connected_caller_gets_backend_response(table):
    dispatcher = ProxyDispatcher(table, InstantUpstream(), disconnect_poll_interval=0.01)

    response = await dispatcher.dispatch(_request(b"/api/users/x", disconnected=False))

    assert response.status_code == 200


def test_raw_request_path_keeps_escapes():
    request = _request(b"/api/users/a%2Fb", disconnected=False)

    assert raw_request_path(request) == "/api/users/a%2Fb"


def test_forward_headers_rewrite_host_and_drop_connection_tokens():
    headers = build_forward_headers(
        [
            ("Host", "gateway.local"),
            ("Connection", "close, X-Private"),
            ("X-Private", "1"),
            ("Content-Length", "3"),
            ("Accept", "text/plain"),
        ],
        host="users.local:3001",
    )

    assert headers == [("host", "users.local:3001"), ("Accept", "text/plain")]
