"""Factory for the upstream client used by the proxy dispatcher."""

from gateway.adapters.upstream.base import AbstractUpstreamClient
from gateway.adapters.upstream.httpx_client import HttpxUpstreamClient
from gateway.core.config import RoutingSettings, settings


def create_upstream_client(
    routing_settings: RoutingSettings | None = None,
) -> AbstractUpstreamClient:
    """Build the upstream client from routing settings.

    Returns:
        AbstractUpstreamClient: Client with the configured timeout applied.
    """
    cfg = routing_settings or settings.routing
    return HttpxUpstreamClient(timeout_seconds=cfg.upstream_timeout_seconds)
