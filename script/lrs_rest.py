from __future__ import annotations

"""Command-line access to the LRS management REST API.

The script logs in, performs a single JSON call, prints the response and logs
out again. Without ``--host``/``--port`` it talks to the local REST server
over its unix-domain socket.

Usage (with uv):

    uv run python script/lrs_rest.py get /status
    uv run python script/lrs_rest.py --host 10.0.0.5 put /ports/1 '{"enabled": true}'
"""

import argparse
import asyncio
import logging
import sys
from typing import Any, Sequence

import httpx
from loguru import logger
from rich.console import Console

from lrsrest.client import Client, RestRequest, print_response
from lrsrest.config import get_settings
from lrsrest.options import OptionsError

console = Console(stderr=True)
log = logger.bind(module="script.lrs_rest")

_METHODS = ("get", "put", "post", "delete")


class _LoguruInterceptHandler(logging.Handler):
    """Bridge standard-library logging records (httpx, httpcore) into Loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - thin wrapper
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        logger.opt(exception=record.exc_info).log(level, record.getMessage())


def _configure_logging() -> None:
    """Configure Loguru and route stdlib logging through it."""

    settings = get_settings()
    level = (settings.log_level or "INFO").upper()

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        backtrace=False,
        diagnose=False,
    )

    root = logging.getLogger()
    root.handlers = [_LoguruInterceptHandler()]
    root.setLevel(level)
    logging.captureWarnings(True)


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Issue one call against the LRS management REST API.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("method", choices=_METHODS, help="HTTP verb to use.")
    parser.add_argument("path", help="API path, relative to the API prefix.")
    parser.add_argument("body", nargs="?", default=None, help="JSON body for put/post.")
    parser.add_argument("--host", default=None, help="Management server host (TCP mode).")
    parser.add_argument("--port", type=int, default=None, help="Management server port (TCP mode).")
    parser.add_argument("--username", default=None, help="Login user name.")
    parser.add_argument("--password", default=None, help="Login password.")
    parser.add_argument("--login-path", default="/login", help="Form login path.")
    parser.add_argument("--no-logout", action="store_true", help="Skip the logout call.")
    return parser


def _settle(future: asyncio.Future[bool], value: bool) -> None:
    if not future.done():
        future.set_result(value)


def _check_body(method: str, body: str | None) -> None:
    if method in ("put", "post") and body is None:
        raise OptionsError(f"{method} requires a JSON body argument.")


def _issue(client: Client, method: str, path: str, body: str | None) -> RestRequest:
    if method in ("put", "post"):
        call = client.put_json if method == "put" else client.post_json
        return call(path, body, print_response)
    call = client.get_json if method == "get" else client.delete_json
    return call(path, print_response)


async def _run(args: argparse.Namespace, *, transport: httpx.AsyncBaseTransport | None) -> int:
    _check_body(args.method, args.body)
    client = Client(settings=get_settings(), transport=transport)
    loop = asyncio.get_running_loop()
    logged_in: asyncio.Future[bool] = loop.create_future()

    def _on_login_failure(response: httpx.Response, body: str) -> None:
        console.log(f"[bold red]Login rejected[/] status={response.status_code}")
        _settle(logged_in, False)

    def _on_error(error: BaseException) -> None:
        console.log(f"[bold red]Request failed[/] {error}")
        _settle(logged_in, False)

    client.on("login", lambda: _settle(logged_in, True))
    client.on("loginFailure", _on_login_failure)
    client.on("loginRequestFailure", _on_error)
    client.on("logoutRequestFailure", lambda error: log.warning("Logout failed: {}", error))
    client.on("error", _on_error)

    login_options: dict[str, Any] = {"path": args.login_path}
    for key in ("host", "port", "username", "password"):
        value = getattr(args, key)
        if value is not None:
            login_options[key] = value

    async with client:
        client.log_in(login_options)
        if not await logged_in:
            return 1

        try:
            response = await _issue(client, args.method, args.path, args.body)
        finally:
            if not args.no_logout:
                await client.log_out()

    if response is None:
        return 1
    return 0 if response.status_code < 400 else 2


def main(
    argv: Sequence[str] | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    args = _build_arg_parser().parse_args(list(argv) if argv is not None else None)
    _configure_logging()

    try:
        return asyncio.run(_run(args, transport=transport))
    except OptionsError as exc:
        console.log(f"[bold red]Invalid arguments[/] {exc}")
        return 1
    except KeyboardInterrupt:
        console.log("[yellow]Keyboard interrupt received[/]; aborting.")
        return 130


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
