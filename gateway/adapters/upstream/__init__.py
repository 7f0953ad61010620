"""Upstream adapter layer - how the gateway talks to backend services."""

from gateway.adapters.upstream.base import (
    AbstractUpstreamClient,
    ProxyRequest,
    UpstreamResponse,
)
from gateway.adapters.upstream.factory import create_upstream_client
from gateway.adapters.upstream.httpx_client import HttpxUpstreamClient

__all__ = [
    "AbstractUpstreamClient",
    "HttpxUpstreamClient",
    "ProxyRequest",
    "UpstreamResponse",
    "create_upstream_client",
]
