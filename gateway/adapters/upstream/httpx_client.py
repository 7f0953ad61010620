"""httpx-based upstream client."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

import httpx

from gateway.adapters.upstream.base import (
    AbstractUpstreamClient,
    ProxyRequest,
    UpstreamResponse,
)
from gateway.core.errors import UpstreamTimeoutAppError, UpstreamUnavailableAppError


class HttpxUpstreamClient(AbstractUpstreamClient):
    """Forward requests with a shared ``httpx.AsyncClient``.

    Responses are opened in streaming mode and relayed as raw bytes, so
    compressed bodies pass through untouched.

    ``timeout_seconds`` bounds the whole exchange: waiting for the response
    headers and relaying the body share one deadline, so a backend that
    trickles bytes is cut off as well. httpx's own per-phase timeouts use the
    same value.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout_seconds: float = 30.0,
    ) -> None:
        """Initialize the upstream client.

        Args:
            client: Pre-built AsyncClient (tests inject one with a mock
                transport). Built here when omitted.
            timeout_seconds: Deadline for one complete backend exchange.
        """
        self.timeout_seconds = timeout_seconds
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=False,
            trust_env=False,
        )

    def _timeout_error(self) -> UpstreamTimeoutAppError:
        return UpstreamTimeoutAppError(
            code="upstream_timeout",
            message="The upstream service did not respond in time",
            details={"timeout_seconds": self.timeout_seconds},
        )

    async def send(self, proxy_request: ProxyRequest) -> UpstreamResponse:
        request = self.client.build_request(
            proxy_request.method,
            proxy_request.url,
            headers=proxy_request.headers,
            content=proxy_request.body,
        )

        deadline = asyncio.get_running_loop().time() + self.timeout_seconds
        try:
            response = await asyncio.wait_for(
                self.client.send(request, stream=True),
                timeout=self.timeout_seconds,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            raise self._timeout_error() from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableAppError(
                code="upstream_unavailable",
                message="The upstream service is unavailable",
                details={"context": {"error_type": type(exc).__name__}},
            ) from exc

        return UpstreamResponse(
            status_code=response.status_code,
            headers=list(response.headers.raw),
            body=self._stream_body(response, deadline),
            close=response.aclose,
        )

    async def _stream_body(
        self, response: httpx.Response, deadline: float
    ) -> AsyncIterator[bytes]:
        """Yield raw body chunks until the exchange deadline passes.

        Raises:
            UpstreamTimeoutAppError: The body was not complete by the deadline.
            UpstreamUnavailableAppError: The connection broke mid-body.
        """
        loop = asyncio.get_running_loop()
        chunks = response.aiter_raw()
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise self._timeout_error()
            try:
                chunk = await asyncio.wait_for(anext(chunks), timeout=remaining)
            except StopAsyncIteration:
                return
            except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
                raise self._timeout_error() from exc
            except httpx.HTTPError as exc:
                raise UpstreamUnavailableAppError(
                    code="upstream_unavailable",
                    message="The upstream service broke off the response",
                    details={"context": {"error_type": type(exc).__name__}},
                ) from exc
            yield chunk

    async def aclose(self) -> None:
        await self.client.aclose()
