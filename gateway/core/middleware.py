"""HTTP middleware for request correlation and access logging.

The middleware:
- Accepts an incoming X-Request-ID header or generates a UUID
- Stores request_id in contextvars so every log line of the request carries it
- Emits one ``http.access`` event per request (method, path, status, latency)
- Echoes the request id and total duration in response headers

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from gateway.core.exception_handlers import general_exception_handler
from gateway.core.logging import clear_request_id, set_request_id

logger = logging.getLogger("gateway.access")


def _log_access(request: Request, status_code: int, duration_ms: float) -> None:
    logger.info(
        "http.access",
        extra={
            "method": request.method,
            "path": request.url.path,
            "query": request.url.query or None,
            "status_code": status_code,
            "duration_ms": round(duration_ms, 2),
            "client_ip": request.client.host if request.client else None,
            "user_agent": request.headers.get("user-agent"),
        },
    )


async def request_id_middleware(request: Request, call_next) -> Response:
    """Bind a correlation id to the request and record the access event.

    If the caller provides the configured request id header (default
    ``X-Request-ID``) that value is reused, otherwise a new UUID is generated.
    A caller-supplied id also reaches the backend, since the proxy copies
    request headers.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with ``X-Request-ID`` and
            ``X-Request-Duration-ms`` headers added. Unexpected errors from
            downstream become the generic 500 envelope here.
    """

    header_name = request.app.state.settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        try:
            response: Response = await call_next(request)
        except Exception as exc:
            # Answered here while the request id is still bound, so the 500
            # envelope and headers carry it.
            response = await general_exception_handler(request, exc)

        duration_ms = (time.perf_counter() - start) * 1000
        _log_access(request, response.status_code, duration_ms)
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
