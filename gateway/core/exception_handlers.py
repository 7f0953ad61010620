"""Global exception handlers for consistent gateway error responses.

Every failure leaves the gateway as a JSON envelope:

    {"error": {"code": ..., "message": ..., "request_id": ..., "details"?: ...}}

Design:
- AppError subclasses -> 404 / 502 / 504 / 500 depending on the type
- Framework HTTP errors (unmatched path, wrong method on /health) -> same envelope
- Unexpected Exception -> generic 500 (safety net, no stack traces leaked)
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gateway.core.errors import (
    AppError,
    RouteNotFoundAppError,
    UpstreamTimeoutAppError,
    UpstreamUnavailableAppError,
)
from gateway.core.logging import get_request_id

logger = logging.getLogger(__name__)


def status_code_for(exc: AppError) -> int:
    """Map a domain error to the HTTP status the caller receives."""
    if isinstance(exc, RouteNotFoundAppError):
        return 404
    if isinstance(exc, UpstreamTimeoutAppError):
        return 504
    if isinstance(exc, UpstreamUnavailableAppError):
        return 502
    return 500


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain errors with the gateway's JSON error envelope.

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with the mapped status code and error details.
    """
    status_code = status_code_for(exc)

    logger.info(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
    )


_HTTP_ERROR_CODES = {
    404: ("route_not_found", "No service is configured for this path"),
    405: ("method_not_allowed", "Method not allowed for this path"),
}


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Wrap framework HTTP errors in the gateway envelope.

    Paths outside every route (including the bare routing prefix) surface
    here as 404 and get the same ``route_not_found`` body as unknown services.
    """
    code, message = _HTTP_ERROR_CODES.get(
        exc.status_code, ("http_error", str(exc.detail))
    )

    logger.info(
        "http_error_handled",
        extra={
            "error_code": code,
            "status_code": exc.status_code,
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    error_content = {
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }
    if exc.status_code == 404:
        error_content["details"] = {"path": request.url.path}

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": error_content},
        headers=exc.headers,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors.

    Logs the failure with its traceback and returns a generic message; the
    process keeps serving other requests.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
        exc_info=exc,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register the gateway's exception handlers on ``app``."""
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(StarletteHTTPException)(http_exception_handler)
    app.exception_handler(Exception)(general_exception_handler)
