"""Application-level exception types.

This module defines the gateway's domain errors, enabling consistent error
handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    service: str
    path: str
    method: str
    timeout_seconds: float
    http_status: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for gateway failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationAppError(AppError):
    """Raised at startup when the gateway configuration is unusable."""


class RouteNotFoundAppError(AppError):
    """Raised when a request path matches no configured service."""


class UpstreamAppError(AppError):
    """Raised when forwarding to a backend fails."""


class UpstreamUnavailableAppError(UpstreamAppError):
    """Backend refused the connection or broke the HTTP exchange."""


class UpstreamTimeoutAppError(UpstreamAppError):
    """Backend did not answer within the configured timeout."""
