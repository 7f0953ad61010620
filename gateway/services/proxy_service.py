"""Reverse-proxy dispatch: route, rewrite, forward, relay."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import AsyncIterator, Iterable

from fastapi import Request
from starlette.background import BackgroundTask
from starlette.responses import Response, StreamingResponse

from gateway.adapters.upstream.base import (
    AbstractUpstreamClient,
    ProxyRequest,
    UpstreamResponse,
)
from gateway.core.errors import RouteNotFoundAppError, UpstreamAppError
from gateway.services.routing import RouteMatch, RouteTable

logger = logging.getLogger(__name__)

# Status recorded when the caller leaves before the backend answers.
CLIENT_CLOSED_REQUEST = 499

# RFC 9110 section 7.6.1: meaningful only for a single connection.
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)


def _connection_tokens(value: str | None) -> set[str]:
    if not value:
        return set()
    return {token.strip().lower() for token in value.split(",") if token.strip()}


def build_forward_headers(
    headers: Iterable[tuple[str, str]], host: str
) -> list[tuple[str, str]]:
    """Copy caller headers for the backend, rewriting Host.

    Hop-by-hop headers (plus any named in ``Connection``) and Content-Length
    are dropped; the HTTP client recomputes the latter from the body.
    """
    pairs = list(headers)
    dropped = set(HOP_BY_HOP_HEADERS) | {"host", "content-length"}
    for name, value in pairs:
        if name.lower() == "connection":
            dropped |= _connection_tokens(value)

    forwarded = [("host", host)]
    forwarded.extend((name, value) for name, value in pairs if name.lower() not in dropped)
    return forwarded


def raw_request_path(request: Request) -> str:
    """Path as the caller sent it, percent-escapes intact."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.decode("latin-1").partition("?")[0]
    return request.url.path


def build_relay_headers(raw_headers: Iterable[tuple[bytes, bytes]]) -> list[tuple[bytes, bytes]]:
    """Backend response headers minus hop-by-hop ones, duplicates preserved."""
    pairs = list(raw_headers)
    dropped = set(HOP_BY_HOP_HEADERS)
    for name, value in pairs:
        if name.lower() == b"connection":
            dropped |= _connection_tokens(value.decode("latin-1"))

    return [
        (name.lower(), value)
        for name, value in pairs
        if name.decode("latin-1").lower() not in dropped
    ]


class ProxyDispatcher:
    """Forward requests to the backend selected by the route table.

    Holds no mutable state: the route table is immutable and the upstream
    client is safe for concurrent use. Each request is forwarded at most once.
    """

    def __init__(
        self,
        route_table: RouteTable,
        upstream_client: AbstractUpstreamClient,
        *,
        disconnect_poll_interval: float = 0.1,
    ) -> None:
        self.route_table = route_table
        self.upstream_client = upstream_client
        self.disconnect_poll_interval = disconnect_poll_interval

    def resolve(self, request: Request) -> RouteMatch:
        """Find the route for ``request``.

        Raises:
            RouteNotFoundAppError: If no configured service matches.
        """
        match = self.route_table.resolve(raw_request_path(request))
        if match is None:
            path = request.url.path
            logger.warning(
                "proxy.route_not_found",
                extra={"method": request.method, "path": path},
            )
            raise RouteNotFoundAppError(
                code="route_not_found",
                message="No service is configured for this path",
                details={"path": path},
            )
        return match

    async def build_proxy_request(self, request: Request, match: RouteMatch) -> ProxyRequest:
        route = match.route
        return ProxyRequest(
            method=request.method,
            url=route.upstream_url(match.upstream_path, request.url.query),
            headers=build_forward_headers(request.headers.items(), route.host_header),
            body=await request.body(),
            original_path=request.url.path,
        )

    async def dispatch(self, request: Request) -> Response:
        """Forward ``request`` and relay the backend's response.

        Returns:
            StreamingResponse carrying the backend status, headers and body.
            If the caller goes away before the backend answers, the backend
            call is cancelled and an empty 499 response is returned instead.

        Raises:
            RouteNotFoundAppError: No route matched; nothing was sent.
            UpstreamAppError: The backend timed out or could not be reached.
        """
        match = self.resolve(request)
        proxy_request = await self.build_proxy_request(request, match)

        start = time.perf_counter()
        try:
            upstream = await self._send_while_connected(request, proxy_request)
        except UpstreamAppError as exc:
            logger.error(
                "proxy.upstream_error",
                extra={
                    "service": match.route.name,
                    "method": proxy_request.method,
                    "path": proxy_request.original_path,
                    "upstream_url": str(proxy_request.url),
                    "error_code": exc.code,
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                },
            )
            raise

        if upstream is None:
            logger.info(
                "proxy.client_disconnected",
                extra={
                    "service": match.route.name,
                    "method": proxy_request.method,
                    "upstream_url": str(proxy_request.url),
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                },
            )
            return Response(status_code=CLIENT_CLOSED_REQUEST)

        logger.debug(
            "proxy.forwarded",
            extra={
                "service": match.route.name,
                "method": proxy_request.method,
                "upstream_url": str(proxy_request.url),
                "upstream_status": upstream.status_code,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )

        response = StreamingResponse(
            self._relay(upstream, match.route.name),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.close),
        )
        response.raw_headers = build_relay_headers(upstream.headers)
        return response

    async def _send_while_connected(
        self, request: Request, proxy_request: ProxyRequest
    ) -> UpstreamResponse | None:
        """Send upstream, cancelling the call if the caller disconnects first.

        Returns:
            The upstream response, or None when the caller went away.
        """
        send_task = asyncio.ensure_future(self.upstream_client.send(proxy_request))
        watch_task = asyncio.ensure_future(self._wait_for_disconnect(request))
        try:
            await asyncio.wait(
                {send_task, watch_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (send_task, watch_task):
                if not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

        if send_task.cancelled():
            watch_task.result()
            return None
        return send_task.result()

    async def _wait_for_disconnect(self, request: Request) -> None:
        while not await request.is_disconnected():
            await asyncio.sleep(self.disconnect_poll_interval)

    async def _relay(self, upstream: UpstreamResponse, service: str) -> AsyncIterator[bytes]:
        # Closing here also covers a caller that disconnects mid-stream: the
        # generator is cancelled and the backend connection is released.
        try:
            async for chunk in upstream.body:
                yield chunk
        except Exception:
            logger.error("proxy.upstream_stream_error", extra={"service": service}, exc_info=True)
            raise
        finally:
            await upstream.close()
