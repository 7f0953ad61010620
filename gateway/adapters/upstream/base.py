from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable

import httpx


@dataclass(frozen=True)
class ProxyRequest:
    """A request as it will be sent to a backend.

    Attributes:
        method: HTTP method, unchanged from the caller.
        url: Backend URL (target base + rewritten path + original query).
        headers: Header pairs in caller order, Host already rewritten.
        body: Request body, forwarded verbatim.
        original_path: Path as the caller sent it, before rewriting.
    """

    method: str
    url: httpx.URL
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""
    original_path: str = ""


@dataclass
class UpstreamResponse:
    """A backend response whose body has not been read yet.

    ``close`` must be awaited once the body has been relayed (or abandoned).
    """

    status_code: int
    headers: list[tuple[bytes, bytes]]
    body: AsyncIterator[bytes]
    close: Callable[[], Awaitable[None]]


class AbstractUpstreamClient(ABC):
    """Interface for clients that forward requests to backend services."""

    @abstractmethod
    async def send(self, proxy_request: ProxyRequest) -> UpstreamResponse:
        """Forward one request, returning as soon as response headers arrive.

        Raises:
            UpstreamTimeoutAppError: If the backend does not answer in time.
            UpstreamUnavailableAppError: If the backend cannot be reached or
                the exchange fails.
        """
        ...

    async def aclose(self) -> None:
        """Release pooled connections."""
