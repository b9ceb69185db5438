"""Session-aware client for the local LRS management REST API.

The client must be driven from a running asyncio event loop. Every call
schedules its request on the loop and returns immediately with a
`RestRequest` handle; outcomes are reported through events on the handle and
on the `Client` itself (``login``, ``logout``, ``loginFailure``,
``loginRequestFailure``, ``logoutRequestFailure``, ``error``).

Typical usage::

    client = create_client()
    client.on("login", lambda: client.get_json("/status", on_status))
    client.log_in({"host": "10.0.0.5", "port": 3001})
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Mapping, Sequence
from typing import Any
from urllib.parse import urlencode

import httpx
from loguru import logger
from rich.console import Console

from lrsrest.config import Settings, get_settings
from lrsrest.events import (
    ERROR,
    LOGIN,
    LOGIN_FAILURE,
    LOGIN_REQUEST_FAILURE,
    LOGOUT,
    LOGOUT_REQUEST_FAILURE,
    RESPONSE,
    EventEmitter,
)
from lrsrest.net.http import (
    AsyncHttpClient,
    ConnectionTarget,
    HttpCallError,
    OutboundRequest,
    build_delete_request,
    build_get_request,
    build_post_request,
    build_put_request,
)
from lrsrest.options import parse_options, to_json_string

__all__ = [
    "API_PREFIX",
    "UNIX_SOCKET_PATH",
    "Client",
    "ClientStateError",
    "LoginOptionsError",
    "RestRequest",
    "create_client",
    "print_response",
]

console = Console()
log = logger.bind(module="client")

# The local REST server listens here; no credentials are needed over the socket.
UNIX_SOCKET_PATH = "/tmp/rest_server/http.sock"
API_PREFIX = "/lrs/api/v1.0"

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"

ResponseCallback = Callable[[httpx.Response], Any]
RequestBuilder = Callable[[Mapping[str, Any], ConnectionTarget], OutboundRequest]


class LoginOptionsError(ValueError):
    """Emitted (not raised) when login options are contradictory."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ClientStateError(RuntimeError):
    """Raised when a request is issued before any connection target is known."""


def print_response(response: httpx.Response) -> None:
    """Default callback: print the status code and any body to stdout."""
    console.print(
        f"Management REST xaction STATUS: {response.status_code}",
        markup=False,
        highlight=False,
        soft_wrap=True,
    )
    body = response.text
    if body:
        console.print(
            f"Management REST xaction BODY: {body}",
            markup=False,
            highlight=False,
            soft_wrap=True,
        )


class RestRequest(EventEmitter):
    """Handle for one in-flight request.

    Emits ``response`` with the `httpx.Response` once the body has been read,
    then runs the callback; emits ``error`` with an `HttpCallError` on
    transport failure. Awaiting the handle yields the response, or None when
    an error was emitted. If the handle is never awaited, an exception escaping
    the request (an unhandled ``error`` event or a failing callback) is passed
    to the loop's exception handler as soon as the request finishes.
    """

    def __init__(
        self,
        http: AsyncHttpClient,
        descriptor: OutboundRequest,
        content: bytes | None,
        callback: ResponseCallback | None,
    ) -> None:
        super().__init__()
        self.descriptor = descriptor
        self._awaited = False
        self._loop = asyncio.get_running_loop()
        self._task: asyncio.Task[httpx.Response | None] = self._loop.create_task(
            self._run(http, content, callback)
        )
        self._task.add_done_callback(self._report_unobserved_failure)

    @property
    def method(self) -> str:
        return self.descriptor.method

    @property
    def path(self) -> str:
        return self.descriptor.path

    @property
    def task(self) -> asyncio.Task[httpx.Response | None]:
        return self._task

    async def _run(
        self,
        http: AsyncHttpClient,
        content: bytes | None,
        callback: ResponseCallback | None,
    ) -> httpx.Response | None:
        try:
            response = await http.send(self.descriptor, content)
        except HttpCallError as exc:
            log.debug("{} {} failed: {}", self.method, self.path, exc)
            self.emit(ERROR, exc)
            return None
        self.emit(RESPONSE, response)
        if callback is not None:
            result = callback(response)
            if inspect.isawaitable(result):
                await result
        return response

    def abort(self) -> bool:
        """Cancel the request; returns False when it already finished."""
        return self._task.cancel()

    def done(self) -> bool:
        return self._task.done()

    def __await__(self):  # type: ignore[no-untyped-def]
        self._awaited = True
        return self._task.__await__()

    def _report_unobserved_failure(self, task: asyncio.Task[httpx.Response | None]) -> None:
        # Failures nobody awaits go to the loop exception handler right away.
        if task.cancelled() or self._awaited:
            return
        exc = task.exception()
        if exc is None:
            return
        self._loop.call_exception_handler(
            {
                "message": f"Unhandled error in REST request {self.method} {self.path}",
                "exception": exc,
                "task": task,
            }
        )


def _call_args(args: Sequence[Any], kwargs: Mapping[str, Any]) -> Sequence[Any]:
    if kwargs and args:
        raise TypeError("Pass either positional arguments or keyword options, not both.")
    if kwargs:
        return (dict(kwargs),)
    return args


class Client(EventEmitter):
    """Stateful handle for the management API.

    State:
        logged_in: Set by a successful `log_in`, cleared by `log_out`.
        sid: Session cookie (``name=value``) captured at login.
        api_prefix: Prepended to every JSON API path.
        connection_options: Target chosen by the latest `log_in`; replaced,
            never mutated.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        http: AsyncHttpClient | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings or get_settings()
        self.logged_in = False
        self.sid: str | None = None
        self.api_prefix = API_PREFIX
        self.connection_options: ConnectionTarget | None = None
        self._http = http or AsyncHttpClient(
            timeout_seconds=self.settings.timeout_seconds,
            transport=transport,
            reuse_connections=self.settings.reuse_connections,
        )

    async def aclose(self) -> None:
        """Release pooled connections, if connection reuse is enabled."""
        await self._http.aclose()

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.aclose()

    # Session -------------------------------------------------------------

    def log_in(self, options: Mapping[str, Any] | None = None) -> RestRequest | None:
        """Log in and remember the connection target for later calls.

        Without ``host``/``port`` the client targets the local unix socket and
        emits ``login`` on the next loop iteration without any HTTP exchange.
        Otherwise a form POST is sent and the returned handle tracks it.
        """
        opts = dict(options or {})
        username = opts.get("username")
        password = opts.get("password")
        if username and not password:
            self.emit(
                ERROR,
                LoginOptionsError("Client login options contained the username but no password."),
            )
            return None
        if password and not username:
            self.emit(
                ERROR,
                LoginOptionsError("Client login options contained the password but no username."),
            )
            return None

        loop = asyncio.get_running_loop()
        host = opts.get("host")
        port = opts.get("port")
        if not (host or port):
            self.connection_options = ConnectionTarget(socket_path=UNIX_SOCKET_PATH)
            loop.call_soon(self._complete_local_login)
            return None

        self.connection_options = ConnectionTarget(
            host=str(host or self.settings.default_host),
            port=int(port or self.settings.default_port),
        )
        data = urlencode(
            {
                "username": username or self.settings.username,
                "password": password or self.settings.password,
            }
        ).encode("utf-8")
        descriptor = build_post_request(
            {
                "path": opts.get("path") or "/login",
                "content_length": len(data),
                "content_type": FORM_CONTENT_TYPE,
            },
            self.connection_options,
        )
        request = self._dispatch(descriptor, data, self._on_login_response)
        request.on(ERROR, lambda error: self.emit(LOGIN_REQUEST_FAILURE, error))
        return request

    def _complete_local_login(self) -> None:
        self.logged_in = True
        log.info("Logged in via {}", UNIX_SOCKET_PATH)
        self.emit(LOGIN)

    def _on_login_response(self, response: httpx.Response) -> None:
        body = response.text
        # The server answers a rejected login with its HTML login page.
        if "login" in body:
            log.warning("Login rejected by server (status={})", response.status_code)
            self.emit(LOGIN_FAILURE, response, body)
            return
        cookies = response.headers.get_list("set-cookie")
        if not cookies:
            log.warning("Login response carried no session cookie (status={})", response.status_code)
            self.emit(LOGIN_FAILURE, response, body)
            return
        self.sid = cookies[0].split(";", 1)[0].strip()
        self.logged_in = True
        log.info("Logged in via {}", self._require_target().describe())
        self.emit(LOGIN)

    def log_out(self, options: Mapping[str, Any] | None = None) -> RestRequest:
        """Send the session cookie to the logout path.

        Any response counts as a logout; the status code is only logged.
        """
        opts = options or {}
        descriptor = build_get_request(
            {"path": opts.get("path") or "/logout", "cookie": self.sid},
            self._require_target(),
        )
        request = self._dispatch(descriptor, None, self._on_logout_response)
        request.on(ERROR, lambda error: self.emit(LOGOUT_REQUEST_FAILURE, error))
        return request

    def _on_logout_response(self, response: httpx.Response) -> None:
        if response.status_code >= 400:
            log.warning("Logout answered with status {}; treating as logged out", response.status_code)
        self.logged_in = False
        log.info("Logged out")
        self.emit(LOGOUT)

    # JSON API ------------------------------------------------------------

    def get_json(self, *args: Any, **kwargs: Any) -> RestRequest:
        """GET ``api_prefix + path``.

        Accepts ``(path, callback=None)`` or ``({"path": ..., "callback": ...}, callback=None)``.
        """
        options = parse_options(_call_args(args, kwargs), ["path"], ["callback"])
        return self._send_json(build_get_request, options)

    def put_json(self, *args: Any, **kwargs: Any) -> RestRequest:
        """PUT a JSON body; accepts ``(path, body, callback=None)`` or an options mapping."""
        options = parse_options(_call_args(args, kwargs), ["path", "body"], ["callback"])
        return self._send_json(build_put_request, options, with_body=True)

    def post_json(self, *args: Any, **kwargs: Any) -> RestRequest:
        """POST a JSON body; accepts ``(path, body, callback=None)`` or an options mapping."""
        options = parse_options(_call_args(args, kwargs), ["path", "body"], ["callback"])
        return self._send_json(build_post_request, options, with_body=True)

    def delete_json(self, *args: Any, **kwargs: Any) -> RestRequest:
        """DELETE ``api_prefix + path``; same call shapes as `get_json`."""
        options = parse_options(_call_args(args, kwargs), ["path"], ["callback"])
        return self._send_json(build_delete_request, options)

    def _send_json(
        self,
        builder: RequestBuilder,
        options: Mapping[str, Any],
        *,
        with_body: bool = False,
    ) -> RestRequest:
        target = self._require_target()
        request_options: dict[str, Any] = {
            "path": self.api_prefix + str(options["path"]),
            "cookie": self.sid,
        }
        content: bytes | None = None
        if with_body:
            content = to_json_string(options.get("body")).encode("utf-8")
            request_options["content_length"] = len(content)
            request_options["content_type"] = JSON_CONTENT_TYPE
        descriptor = builder(request_options, target)
        request = self._dispatch(descriptor, content, options.get("callback") or print_response)
        self._install_error_proxy(request)
        return request

    # Plumbing ------------------------------------------------------------

    def _require_target(self) -> ConnectionTarget:
        if self.connection_options is None:
            raise ClientStateError("log_in() must be called before issuing requests.")
        return self.connection_options

    def _dispatch(
        self,
        descriptor: OutboundRequest,
        content: bytes | None,
        callback: ResponseCallback | None,
    ) -> RestRequest:
        log.debug("Dispatching {} {}", descriptor.method, descriptor.path)
        return RestRequest(self._http, descriptor, content, callback)

    def _install_error_proxy(self, request: RestRequest) -> None:
        """Forward request errors to the client unless the caller handles them."""

        def _proxy(error: BaseException) -> None:
            if request.listener_count(ERROR) > 1:
                return
            self.emit(ERROR, error)

        request.on(ERROR, _proxy)


def create_client(**kwargs: Any) -> Client:
    """Return a new `Client`; keyword arguments are passed through."""
    return Client(**kwargs)
