"""Catch-all proxy route.

Mounted under the routing prefix; every method and sub-path is handed to the
proxy dispatcher, which decides whether a service matches. The endpoint is a
plain ASGI app rather than a FastAPI path operation, so the route accepts any
method (WebDAV verbs and custom methods included) instead of a fixed list.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from starlette.types import Receive, Scope, Send

from gateway.services.proxy_service import ProxyDispatcher


def get_proxy_dispatcher(request: Request) -> ProxyDispatcher:
    """Provide the dispatcher built by the app factory."""

    return request.app.state.proxy_dispatcher


class ProxyEndpoint:
    """ASGI endpoint forwarding the request through the proxy dispatcher."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        response = await get_proxy_dispatcher(request).dispatch(request)
        await response(scope, receive, send)


def include_proxy_route(app: FastAPI, prefix: str) -> None:
    """Route ``<prefix>/<anything>`` with any method to the dispatcher.

    Args:
        app: Application to register the route on.
        prefix: Normalized routing prefix ("" or "/segment[/segment]").
    """

    app.add_route(
        f"{prefix}/{{full_path:path}}",
        ProxyEndpoint(),
        name="proxy",
        include_in_schema=False,
    )
