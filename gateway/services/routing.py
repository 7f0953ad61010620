"""Static route table: service name -> backend base URL.

Requests arrive as ``<prefix>/<service>/<rest>``. The ``<prefix>/<service>``
part is stripped before forwarding; an empty remainder is sent as ``/``. The
backend therefore never sees the gateway's routing prefix.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterator, Mapping

import httpx

from gateway.core.config import RoutingSettings
from gateway.core.errors import ConfigurationAppError


@dataclass(frozen=True)
class Route:
    """One configured backend service."""

    name: str
    target: httpx.URL

    @property
    def host_header(self) -> str:
        """Value of the Host header the backend expects."""
        return self.target.netloc.decode("ascii")

    def upstream_url(self, path: str, query: str = "") -> httpx.URL:
        """Join the target's own base path with the rewritten request path.

        ``http://orders:4000/v1`` + ``/items`` -> ``http://orders:4000/v1/items``.
        ``path`` is in its percent-encoded form; existing escapes such as
        ``%2F`` are kept as they are. The raw query string is carried over
        unchanged.
        """
        base_path = self.target.raw_path.decode("ascii").rstrip("/")
        url = self.target.copy_with(path=f"{base_path}{path}")
        if query:
            url = url.copy_with(query=query.encode("latin-1"))
        return url


@dataclass(frozen=True)
class RouteMatch:
    route: Route
    upstream_path: str


def _normalize_prefix(prefix: str) -> str:
    prefix = prefix.strip()
    if not prefix or prefix == "/":
        return ""
    return "/" + prefix.strip("/")


def _parse_target(name: str, raw: str | None) -> httpx.URL:
    if raw is None or not raw.strip():
        raise ConfigurationAppError(
            code="missing_service_url",
            message=f"No backend URL configured for service '{name}'",
            details={
                "service": name,
                "hint": f"Set {name.upper()}_SERVICE_URL",
            },
        )

    try:
        url = httpx.URL(raw.strip())
    except httpx.InvalidURL as exc:
        raise ConfigurationAppError(
            code="invalid_service_url",
            message=f"Backend URL for service '{name}' is not a valid URL",
            details={"service": name},
        ) from exc

    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationAppError(
            code="invalid_service_url",
            message=(
                f"Backend URL for service '{name}' must be an absolute "
                "http(s) URL"
            ),
            details={"service": name},
        )
    if url.query or url.fragment:
        raise ConfigurationAppError(
            code="invalid_service_url",
            message=f"Backend URL for service '{name}' must not carry a query or fragment",
            details={"service": name},
        )
    return url


class RouteTable(Mapping[str, Route]):
    """Immutable, validated mapping of service names to routes."""

    def __init__(self, routes: Mapping[str, Route], *, prefix: str = "/api") -> None:
        self._routes = MappingProxyType(dict(routes))
        self._prefix = _normalize_prefix(prefix)

    @classmethod
    def from_targets(
        cls,
        targets: Mapping[str, str | None],
        *,
        prefix: str = "/api",
    ) -> "RouteTable":
        """Build and validate a route table.

        Args:
            targets: Service name to backend base URL.
            prefix: Path prefix services are exposed under.

        Returns:
            RouteTable ready for lookups.

        Raises:
            ConfigurationAppError: If no services are configured, a name is
                invalid, or a target URL is missing or malformed.
        """
        if not targets:
            raise ConfigurationAppError(
                code="no_services_configured",
                message="At least one backend service must be configured",
            )

        routes: dict[str, Route] = {}
        for raw_name, raw_target in targets.items():
            name = raw_name.strip()
            if not name or "/" in name or any(ch.isspace() for ch in name):
                raise ConfigurationAppError(
                    code="invalid_service_name",
                    message=f"Invalid service name: '{raw_name}'",
                )
            if name in routes:
                raise ConfigurationAppError(
                    code="duplicate_service_name",
                    message=f"Service '{name}' is configured more than once",
                    details={"service": name},
                )
            routes[name] = Route(name=name, target=_parse_target(name, raw_target))

        return cls(routes, prefix=prefix)

    @classmethod
    def from_settings(
        cls,
        routing_settings: RoutingSettings,
        environ: Mapping[str, str] | None = None,
    ) -> "RouteTable":
        """Build the table from ``RoutingSettings`` and the environment."""
        names = routing_settings.service_names
        if len(set(names)) != len(names):
            duplicated = sorted({n for n in names if names.count(n) > 1})
            raise ConfigurationAppError(
                code="duplicate_service_name",
                message=f"Service(s) configured more than once: {', '.join(duplicated)}",
            )
        return cls.from_targets(
            routing_settings.service_targets(environ),
            prefix=routing_settings.prefix,
        )

    @property
    def prefix(self) -> str:
        return self._prefix

    def resolve(self, path: str) -> RouteMatch | None:
        """Match ``path`` against the table and rewrite it for the backend.

        ``/api/users/health/42`` -> (users, ``/health/42``);
        ``/api/users`` and ``/api/users/`` -> (users, ``/``).
        ``path`` should be the raw request path, so escapes in the remainder
        reach the backend untouched.
        Returns None when the prefix or the service segment does not match.
        """
        if self._prefix:
            if path != self._prefix and not path.startswith(self._prefix + "/"):
                return None
            path = path[len(self._prefix):]

        service, sep, rest = path.lstrip("/").partition("/")
        route = self._routes.get(service)
        if route is None:
            return None

        upstream_path = "/" + rest if sep else "/"
        return RouteMatch(route=route, upstream_path=upstream_path)

    def __getitem__(self, name: str) -> Route:
        return self._routes[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._routes)

    def __len__(self) -> int:
        return len(self._routes)
