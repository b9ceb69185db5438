from __future__ import annotations

import asyncio

import httpx
import pytest

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
from lrsrest.options import MissingArgumentError

TCP = ConnectionTarget(host="10.0.0.5", port=3001)
SOCKET = ConnectionTarget(socket_path="/tmp/rest_server/http.sock")


def test_connection_target_requires_exactly_one_form() -> None:
    with pytest.raises(ValueError):
        ConnectionTarget(host="h")
    with pytest.raises(ValueError):
        ConnectionTarget(host="h", port=1, socket_path="/tmp/x.sock")
    assert SOCKET.is_socket is True
    assert TCP.is_socket is False
    assert TCP.describe() == "10.0.0.5:3001"


def test_get_request_sets_accept_cookie_host_and_closes_connection() -> None:
    request = build_get_request({"path": "/lrs/api/v1.0/foo", "cookie": "sid=abc"}, TCP)

    assert request.method == "GET"
    assert request.url == "http://10.0.0.5:3001/lrs/api/v1.0/foo"
    assert request.headers == {
        "Accept": "*/*",
        "Cookie": "sid=abc",
        "Connection": "close",
        "Host": "10.0.0.5:3001",
    }
    assert request.keep_alive is False


def test_get_request_without_cookie_omits_cookie_header() -> None:
    request = build_get_request({"path": "/x", "cookie": None}, TCP)
    assert "Cookie" not in request.headers


def test_socket_target_keeps_default_host_header() -> None:
    request = build_delete_request({"path": "/x"}, SOCKET)

    assert request.socket_path == SOCKET.socket_path
    assert request.host is None and request.port is None
    assert request.url == "http://localhost/x"
    assert "Host" not in request.headers


def test_body_builders_require_length_and_type() -> None:
    with pytest.raises(MissingArgumentError, match="content_length"):
        build_put_request({"path": "/x", "content_type": "application/json"}, TCP)
    with pytest.raises(MissingArgumentError, match="content_type"):
        build_post_request({"path": "/x", "content_length": 2}, TCP)
    with pytest.raises(MissingArgumentError, match="path"):
        build_get_request({}, TCP)


def test_body_builders_set_length_and_type_headers() -> None:
    options = {"path": "/x", "content_length": 7, "content_type": "application/json"}

    post = build_post_request(options, TCP)
    put = build_put_request(options, TCP)

    for request in (post, put):
        assert request.headers["Content-Length"] == "7"
        assert request.headers["Content-Type"] == "application/json"
    assert post.headers["Connection"] == "close"
    assert "Connection" not in put.headers
    assert put.keep_alive is True


def test_delete_request_keeps_transport_default_connection() -> None:
    request = build_delete_request({"path": "/x"}, TCP)
    assert request.method == "DELETE"
    assert "Connection" not in request.headers
    assert request.keep_alive is True


def test_send_passes_headers_and_body_through() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PUT"
        assert request.url.host == "10.0.0.5"
        assert request.url.port == 3001
        assert request.url.path == "/lrs/api/v1.0/foo"
        assert request.headers["content-length"] == "7"
        assert request.headers["content-type"] == "application/json"
        assert request.headers["host"] == "10.0.0.5:3001"
        assert request.headers["accept"] == "*/*"
        assert request.content == b'{"a":1}'
        return httpx.Response(201, json={"ok": True}, request=request)

    descriptor = build_put_request(
        {"path": "/lrs/api/v1.0/foo", "content_length": 7, "content_type": "application/json"},
        TCP,
    )
    client = AsyncHttpClient(transport=httpx.MockTransport(handler))
    response = asyncio.run(client.send(descriptor, b'{"a":1}'))

    assert response.status_code == 201
    assert response.json() == {"ok": True}


def test_send_returns_error_statuses_without_raising() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, content=b"not found", request=request)

    client = AsyncHttpClient(transport=httpx.MockTransport(handler))
    response = asyncio.run(client.send(build_get_request({"path": "/missing"}, TCP)))

    assert response.status_code == 404
    assert response.text == "not found"


def test_send_maps_transport_errors_to_http_call_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    client = AsyncHttpClient(transport=httpx.MockTransport(handler))
    with pytest.raises(HttpCallError, match="boom") as excinfo:
        asyncio.run(client.send(build_get_request({"path": "/x"}, TCP)))
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


def test_socket_targets_use_a_uds_transport(monkeypatch: pytest.MonkeyPatch) -> None:
    sockets: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "localhost"
        assert request.url.path == "/status"
        return httpx.Response(200, request=request)

    def fake_transport(*, uds: str | None = None) -> httpx.MockTransport:
        sockets.append(uds)
        return httpx.MockTransport(handler)

    monkeypatch.setattr(httpx, "AsyncHTTPTransport", fake_transport)

    client = AsyncHttpClient()
    response = asyncio.run(client.send(build_get_request({"path": "/status"}, SOCKET)))

    assert response.status_code == 200
    assert sockets == [SOCKET.socket_path]


def test_reuse_connections_keeps_one_client_per_target() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(204, request=request)

    other = ConnectionTarget(host="10.0.0.6", port=3001)

    async def scenario() -> None:
        client = AsyncHttpClient(transport=httpx.MockTransport(handler), reuse_connections=True)
        await client.send(build_get_request({"path": "/a"}, TCP))
        first = client._clients[TCP]
        await client.send(build_get_request({"path": "/b"}, TCP))
        assert client._clients[TCP] is first

        await client.send(build_get_request({"path": "/c"}, other))
        assert client._clients[other] is not first
        assert first.is_closed is False

        await client.send(build_get_request({"path": "/d"}, TCP))
        assert client._clients[TCP] is first

        await client.aclose()
        assert client._clients == {}
        assert first.is_closed is True

    asyncio.run(scenario())


def test_timeout_is_clamped() -> None:
    client = AsyncHttpClient(timeout_seconds=0.0)
    assert client.timeout_seconds == pytest.approx(0.1)


def test_outbound_request_target_round_trips_connection() -> None:
    request = OutboundRequest(method="GET", path="/x", host="h", port=2)
    assert request.target == ConnectionTarget(host="h", port=2)


def test_switching_targets_does_not_break_in_flight_requests() -> None:
    async def scenario() -> None:
        release = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "10.0.0.5":
                await release.wait()
            return httpx.Response(200, text=request.url.host, request=request)

        client = AsyncHttpClient(transport=httpx.MockTransport(handler), reuse_connections=True)
        slow = asyncio.ensure_future(client.send(build_get_request({"path": "/slow"}, TCP)))
        await asyncio.sleep(0)

        other = ConnectionTarget(host="10.0.0.6", port=3001)
        fast = await client.send(build_get_request({"path": "/fast"}, other))
        assert fast.text == "10.0.0.6"

        release.set()
        response = await slow
        assert response.status_code == 200
        assert response.text == "10.0.0.5"
        await client.aclose()

    asyncio.run(scenario())
