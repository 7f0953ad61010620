from __future__ import annotations

from gateway.api.routes.health import router as health_router
from gateway.api.routes.proxy import include_proxy_route

__all__ = ["health_router", "include_proxy_route"]
