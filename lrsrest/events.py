"""Minimal event emitter shared by the REST client and its request handles.

Listeners are plain callables invoked synchronously, in registration order,
from whichever task emits the event. Emitting ``error`` without any listener
raises, so failures are never silently dropped.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

__all__ = [
    "ERROR",
    "LOGIN",
    "LOGIN_FAILURE",
    "LOGIN_REQUEST_FAILURE",
    "LOGOUT",
    "LOGOUT_REQUEST_FAILURE",
    "RESPONSE",
    "EventEmitter",
    "UnhandledErrorEvent",
]

LOGIN = "login"
LOGOUT = "logout"
LOGIN_FAILURE = "loginFailure"
LOGIN_REQUEST_FAILURE = "loginRequestFailure"
LOGOUT_REQUEST_FAILURE = "logoutRequestFailure"
ERROR = "error"
RESPONSE = "response"

Listener = Callable[..., Any]


class UnhandledErrorEvent(RuntimeError):
    """Raised when an ``error`` event carrying a non-exception payload has no listener."""

    def __init__(self, payload: object) -> None:
        super().__init__(f"Unhandled 'error' event: {payload!r}")
        self.payload = payload


class EventEmitter:
    """Register listeners per event name and emit events to them."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: str, listener: Listener) -> Listener:
        """Register `listener` for `event` and return it."""
        self._listeners.setdefault(event, []).append(listener)
        return listener

    add_listener = on

    def once(self, event: str, listener: Listener) -> Listener:
        """Register `listener` so that it runs at most once."""

        def _wrapper(*args: Any) -> Any:
            self.off(event, _wrapper)
            return listener(*args)

        _wrapper.__wrapped__ = listener  # type: ignore[attr-defined]
        self.on(event, _wrapper)
        return listener

    def off(self, event: str, listener: Listener) -> None:
        """Remove one registration of `listener` for `event` (no-op when absent)."""
        registered = self._listeners.get(event)
        if not registered:
            return
        for idx, candidate in enumerate(registered):
            if candidate is listener or getattr(candidate, "__wrapped__", None) is listener:
                del registered[idx]
                break
        if not registered:
            self._listeners.pop(event, None)

    remove_listener = off

    def listeners(self, event: str) -> list[Listener]:
        return list(self._listeners.get(event, ()))

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener of `event` with `args`.

        Returns True when at least one listener was called.

        Raises:
            BaseException: The payload itself, for an unhandled ``error`` event
                whose first argument is an exception.
            UnhandledErrorEvent: For any other unhandled ``error`` event.
        """
        registered = self.listeners(event)
        if not registered:
            if event == ERROR:
                payload = args[0] if args else None
                if isinstance(payload, BaseException):
                    raise payload
                raise UnhandledErrorEvent(payload)
            return False
        for listener in registered:
            listener(*args)
        return True
