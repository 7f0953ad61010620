"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any gateway import so the process-wide
settings (and ``gateway.main``) see a complete configuration.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("USERS_SERVICE_URL", "http://users.local:3001")
os.environ.setdefault("ORDERS_SERVICE_URL", "http://orders.local:3002")

import asyncio
from typing import AsyncIterator, Callable
from unittest.mock import Mock

import httpx
import pytest

from gateway.adapters.rate_limit.in_memory import InMemoryCounterStore
from gateway.adapters.upstream.httpx_client import HttpxUpstreamClient
from gateway.core.app_factory import create_app
from gateway.core.config import RateLimitSettings, Settings
from gateway.services.admission_service import AdmissionController


class StreamedBody(httpx.AsyncByteStream):
    """Response body delivered chunk by chunk, as from a socket."""

    def __init__(self, *chunks: bytes, delay: float = 0.0) -> None:
        self.chunks = chunks
        self.delay = delay

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield chunk


def streamed(response: httpx.Response) -> httpx.Response:
    """Re-issue an in-memory response with an unread, streamed body.

    ``httpx.Response(content=...)`` is read on construction, while the gateway
    relays bodies with ``aiter_raw``; a real transport hands over unread
    streams.
    """
    if not response.is_stream_consumed:
        return response
    return httpx.Response(
        response.status_code,
        headers=response.headers,
        stream=StreamedBody(response.content),
    )


class RecordingBackend:
    """httpx.MockTransport handler that records every forwarded request.

    By default it answers like the users service's health endpoint; set
    ``handler`` to change the behaviour (return a response or raise).
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.handler is not None:
            return streamed(self.handler(request))
        return httpx.Response(
            200,
            headers={"X-Backend": request.url.host},
            stream=StreamedBody(
                f"{request.url.host} running {request.url.path}".encode()
            ),
        )


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
def streamed_body() -> type[StreamedBody]:
    """Factory for unread response bodies (usable with respx too)."""
    return StreamedBody


@pytest.fixture
def clock() -> Mock:
    """Controllable time source for the admission controller."""
    return Mock(return_value=1000.0)


@pytest.fixture
def make_app(backend: RecordingBackend, clock: Mock):
    """Build a gateway app whose backends are served by ``backend``.

    Keyword arguments override RateLimitSettings. Clients are keyed by
    X-Forwarded-For so tests can impersonate distinct addresses.
    """

    def _make(**rate_limit_overrides):
        rate_limit = RateLimitSettings(
            **{"trust_forwarded_for": True, **rate_limit_overrides}
        )
        cfg = Settings(rate_limit=rate_limit)
        controller = AdmissionController(
            InMemoryCounterStore(window_seconds=rate_limit.window_seconds),
            max_requests=rate_limit.max_requests,
            clock=clock,
        )
        upstream = HttpxUpstreamClient(
            httpx.AsyncClient(transport=httpx.MockTransport(backend))
        )
        return create_app(
            cfg,
            upstream_client=upstream,
            admission_controller=controller,
        )

    return _make
