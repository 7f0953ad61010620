"""Application factory for the gateway.

Builds and validates everything the request pipeline needs (route table,
admission controller, upstream client) before the app accepts traffic, so a
misconfigured gateway refuses to start instead of failing on first request.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from gateway.adapters.upstream.base import AbstractUpstreamClient
from gateway.adapters.upstream.factory import create_upstream_client
from gateway.api.routes import health_router, include_proxy_route
from gateway.core.config import Settings, settings as default_settings
from gateway.core.exception_handlers import setup_exception_handlers
from gateway.core.logging import configure_logging
from gateway.core.middleware import request_id_middleware
from gateway.core.rate_limit import create_admission_controller, rate_limit_middleware
from gateway.services.admission_service import AdmissionController
from gateway.services.proxy_service import ProxyDispatcher
from gateway.services.routing import RouteTable

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    route_table: RouteTable | None = None,
    upstream_client: AbstractUpstreamClient | None = None,
    admission_controller: AdmissionController | None = None,
) -> FastAPI:
    """Create and configure the gateway application.

    Args:
        settings: Settings to use; the process-wide settings when omitted.
        route_table: Pre-built route table; built from settings when omitted.
        upstream_client: Client used to reach backends.
        admission_controller: Controller used by the rate-limit middleware.

    Returns:
        Configured FastAPI app.

    Raises:
        ConfigurationAppError: If the route table cannot be built.
    """
    cfg = settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    table = route_table or RouteTable.from_settings(cfg.routing)
    client = upstream_client or create_upstream_client(cfg.routing)
    controller = admission_controller or create_admission_controller(cfg.rate_limit)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await client.aclose()

    app = FastAPI(
        title="API Gateway",
        description=(
            "Rate-limited reverse proxy. Requests to "
            f"{table.prefix}/<service>/<path> are forwarded to the configured "
            "backend as /<path>."
        ),
        version="0.1.0",
        lifespan=lifespan,
        # Unmatched paths get the 404 envelope, never a slash redirect.
        redirect_slashes=False,
    )

    app.state.settings = cfg
    app.state.rate_limit_settings = cfg.rate_limit
    app.state.route_table = table
    app.state.admission_controller = controller
    app.state.proxy_dispatcher = ProxyDispatcher(table, client)

    # Middleware: the last registered runs first, so request ids and access
    # logs wrap the rate limiter.
    app.middleware("http")(rate_limit_middleware)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(health_router)
    include_proxy_route(app, table.prefix)

    logger.info(
        "gateway.startup",
        extra={
            "services": {name: str(route.target) for name, route in table.items()},
            "prefix": table.prefix or "/",
            "rate_limit_enabled": cfg.rate_limit.enabled,
            "rate_limit_max_requests": controller.max_requests,
            "rate_limit_window_ms": cfg.rate_limit.window_ms,
        },
    )

    return app
