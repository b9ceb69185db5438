"""Request builders and async HTTP transport built on top of httpx.

The builders turn canonical request options plus the active connection target
into an `OutboundRequest`. `AsyncHttpClient` sends those descriptors over
either TCP or the local unix-domain socket and maps httpx failures into
`HttpCallError`.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from lrsrest.options import require_options

__all__ = [
    "ConnectionTarget",
    "HttpCallError",
    "AsyncHttpClient",
    "OutboundRequest",
    "build_delete_request",
    "build_get_request",
    "build_post_request",
    "build_put_request",
]

log = logger.bind(module="net.http")

_MIN_TIMEOUT_SECONDS = 0.1
_SOCKET_AUTHORITY = "localhost"


class HttpCallError(RuntimeError):
    """Raised when an HTTP request cannot be completed at the transport level."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = str(message)


@dataclass(frozen=True, slots=True)
class ConnectionTarget:
    """Where requests go: a TCP host/port pair or a unix-domain socket."""

    host: str | None = None
    port: int | None = None
    socket_path: str | None = None

    def __post_init__(self) -> None:
        if self.socket_path is None and (self.host is None or self.port is None):
            raise ValueError("ConnectionTarget needs host and port, or socket_path.")
        if self.socket_path is not None and (self.host is not None or self.port is not None):
            raise ValueError("ConnectionTarget cannot combine socket_path with host/port.")

    @property
    def is_socket(self) -> bool:
        return self.socket_path is not None

    def as_options(self) -> dict[str, Any]:
        if self.is_socket:
            return {"socket_path": self.socket_path}
        return {"host": self.host, "port": self.port}

    def describe(self) -> str:
        if self.is_socket:
            return f"unix:{self.socket_path}"
        return f"{self.host}:{self.port}"


@dataclass(frozen=True, slots=True)
class OutboundRequest:
    """A fully configured request, ready to hand to the transport."""

    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    host: str | None = None
    port: int | None = None
    socket_path: str | None = None
    keep_alive: bool = True

    @property
    def target(self) -> ConnectionTarget:
        return ConnectionTarget(host=self.host, port=self.port, socket_path=self.socket_path)

    @property
    def url(self) -> str:
        if self.socket_path is not None:
            return f"http://{_SOCKET_AUTHORITY}{self.path}"
        return f"http://{self.host}:{self.port}{self.path}"


def _merge_options(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Return a new dict with `overrides` applied on top of `base`."""
    merged = dict(base)
    merged.update(overrides)
    return merged


def _build_request(
    method: str,
    options: Mapping[str, Any],
    target: ConnectionTarget,
    *,
    with_body: bool,
    keep_alive: bool,
) -> OutboundRequest:
    required = ["path", "content_length", "content_type"] if with_body else ["path"]
    require_options(options, required)

    headers: dict[str, str] = {"Accept": "*/*"}
    if with_body:
        headers["Content-Length"] = str(options["content_length"])
        headers["Content-Type"] = str(options["content_type"])
    if options.get("cookie"):
        headers["Cookie"] = str(options["cookie"])
    if not keep_alive:
        headers["Connection"] = "close"

    request_options = _merge_options(
        {"method": method, "path": str(options["path"]), "keep_alive": keep_alive},
        target.as_options(),
    )
    if not target.is_socket:
        headers["Host"] = f"{target.host}:{target.port}"
    return OutboundRequest(headers=headers, **request_options)


def build_get_request(options: Mapping[str, Any], target: ConnectionTarget) -> OutboundRequest:
    """Build a GET request; requires ``path``."""
    return _build_request("GET", options, target, with_body=False, keep_alive=False)


def build_post_request(options: Mapping[str, Any], target: ConnectionTarget) -> OutboundRequest:
    """Build a POST request; requires ``path``, ``content_length`` and ``content_type``."""
    return _build_request("POST", options, target, with_body=True, keep_alive=False)


def build_put_request(options: Mapping[str, Any], target: ConnectionTarget) -> OutboundRequest:
    """Build a PUT request; requires ``path``, ``content_length`` and ``content_type``."""
    return _build_request("PUT", options, target, with_body=True, keep_alive=True)


def build_delete_request(options: Mapping[str, Any], target: ConnectionTarget) -> OutboundRequest:
    """Build a DELETE request; requires ``path``."""
    return _build_request("DELETE", options, target, with_body=False, keep_alive=True)


class AsyncHttpClient:
    """Small async HTTP sender with consistent defaults and error mapping.

    Notes:
        - By default, a short-lived `httpx.AsyncClient` is created per request.
        - When `reuse_connections=True`, one persistent client is kept per
          connection target. Call `aclose()` (or use this object as an async
          context manager) to release them.
        - Timeouts are clamped to at least `_MIN_TIMEOUT_SECONDS`.
        - Redirects are never followed; status codes are returned as-is.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        reuse_connections: bool = False,
    ) -> None:
        self.timeout_seconds = float(max(_MIN_TIMEOUT_SECONDS, timeout_seconds))
        self.transport = transport
        self.reuse_connections = bool(reuse_connections)
        self._clients: dict[ConnectionTarget, httpx.AsyncClient] = {}

    def _build_transport(self, target: ConnectionTarget) -> httpx.AsyncBaseTransport | None:
        if self.transport is not None:
            return self.transport
        if target.is_socket:
            return httpx.AsyncHTTPTransport(uds=target.socket_path)
        return None

    def _build_client(self, target: ConnectionTarget) -> httpx.AsyncClient:
        kwargs: dict[str, object] = {
            "timeout": self.timeout_seconds,
            "follow_redirects": False,
        }
        transport = self._build_transport(target)
        if transport is not None:
            kwargs["transport"] = transport
        return httpx.AsyncClient(**kwargs)  # type: ignore[arg-type]

    async def aclose(self) -> None:
        """Close every persistent `httpx.AsyncClient`."""
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await client.aclose()

    async def __aenter__(self) -> "AsyncHttpClient":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.aclose()

    def _persistent_client(self, target: ConnectionTarget) -> httpx.AsyncClient:
        # Clients for earlier targets stay open so in-flight requests can finish.
        client = self._clients.get(target)
        if client is None:
            client = self._clients[target] = self._build_client(target)
        return client

    @asynccontextmanager
    async def _client_ctx(self, target: ConnectionTarget) -> AsyncIterator[httpx.AsyncClient]:
        if self.reuse_connections:
            yield self._persistent_client(target)
            return
        async with self._build_client(target) as client:
            yield client

    async def send(self, request: OutboundRequest, content: bytes | None = None) -> httpx.Response:
        """Send `request` with an optional body and return the fully read response.

        Raises:
            HttpCallError: When the transport fails (connect error, timeout, ...).
        """
        target = request.target
        log.debug("{} {} via {}", request.method, request.path, target.describe())
        try:
            async with self._client_ctx(target) as client:
                response = await client.request(
                    request.method,
                    request.url,
                    headers=dict(request.headers),
                    content=content,
                )
                return response
        except httpx.RequestError as exc:
            raise HttpCallError(
                f"{request.method} {request.path} via {target.describe()} failed: {exc}"
            ) from exc
