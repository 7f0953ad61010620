"""Rate limiting middleware.

Wires the admission controller into the HTTP layer. Runs before routing, so a
rejected request never reaches the proxy dispatcher.

Strategy:
- Fixed window per client, keyed by the caller's network address.
- Optionally keyed by the first X-Forwarded-For hop when the gateway sits
  behind a trusted load balancer.
- Standard ``RateLimit-*`` headers on every limited response; no legacy
  ``X-RateLimit-*`` headers.
"""

from __future__ import annotations

import hashlib
import logging
import math

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from gateway.adapters.rate_limit.in_memory import InMemoryCounterStore
from gateway.core.config import RateLimitSettings
from gateway.services.admission_service import AdmissionController, AdmissionDecision

logger = logging.getLogger(__name__)


def create_admission_controller(rate_limit_settings: RateLimitSettings) -> AdmissionController:
    """Build the process-wide admission controller from settings."""

    store = InMemoryCounterStore(window_seconds=rate_limit_settings.window_seconds)
    return AdmissionController(store, max_requests=rate_limit_settings.max_requests)


def client_key(request: Request, *, trust_forwarded_for: bool = False) -> str:
    """Derive the limiter key for the current request.

    Args:
        request: Incoming request.
        trust_forwarded_for: Use the first X-Forwarded-For hop when present.

    Returns:
        str: Client identity (an IP address, or "unknown").
    """

    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    return request.client.host if request.client else "unknown"


def _hash_client_key(key: str) -> str:
    """Hash the client key for logging without exposing addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def rate_limit_headers(
    decision: AdmissionDecision, *, window_seconds: float, now: float
) -> dict[str, str]:
    """Build the standard RateLimit-* headers for a decision."""

    headers = {
        "RateLimit-Policy": f"{decision.limit};w={int(math.ceil(window_seconds))}",
        "RateLimit-Limit": str(decision.limit),
        "RateLimit-Remaining": str(decision.remaining),
        "RateLimit-Reset": str(decision.reset_after(now)),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(decision.retry_after_seconds or 0)
    return headers


async def rate_limit_middleware(request: Request, call_next) -> Response:
    """HTTP middleware enforcing the per-client request ceiling.

    Expects ``request.app.state.admission_controller`` and
    ``request.app.state.rate_limit_settings`` to be set by the app factory.
    """

    cfg: RateLimitSettings = request.app.state.rate_limit_settings
    if not cfg.enabled or request.url.path in cfg.exempt_path_set:
        return await call_next(request)

    controller: AdmissionController = request.app.state.admission_controller
    key = client_key(request, trust_forwarded_for=cfg.trust_forwarded_for)
    now = controller.now()
    decision = controller.admit(key, now)
    headers = rate_limit_headers(
        decision, window_seconds=controller.window_seconds, now=now
    )

    if not decision.allowed:
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "key_hash": _hash_client_key(key),
                "method": request.method,
                "path": request.url.path,
                "limit": decision.limit,
                "window_ms": cfg.window_ms,
                "retry_after_s": decision.retry_after_seconds,
            },
        )
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"error": cfg.message},
            headers=headers,
        )

    logger.debug(
        "rate_limit.allowed",
        extra={
            "key_hash": _hash_client_key(key),
            "limit": decision.limit,
            "remaining": decision.remaining,
        },
    )

    response = await call_next(request)
    for name, value in headers.items():
        response.headers[name] = value
    return response
