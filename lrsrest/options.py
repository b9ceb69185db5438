"""Call-signature normalization for the REST client verbs.

Every JSON verb accepts either a short positional form or a single options
mapping::

    client.put_json("/users/1", {"name": "x"}, on_done)
    client.put_json({"path": "/users/1", "body": {"name": "x"}}, on_done)

`parse_options` turns both shapes into one canonical dict.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

__all__ = [
    "JsonConversionError",
    "MissingArgumentError",
    "MissingArgumentsError",
    "OptionsError",
    "parse_options",
    "require_options",
    "to_json_string",
]


class OptionsError(ValueError):
    """Base class for invalid call arguments."""


class MissingArgumentsError(OptionsError):
    """Raised when fewer positional arguments than required fields were given."""

    def __init__(self, required: Sequence[str]) -> None:
        super().__init__(f"More arguments required ({','.join(required)})")
        self.required = tuple(required)


class MissingArgumentError(OptionsError):
    """Raised when a named required option is absent or empty."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Missing required argument: {name}")
        self.name = name


class JsonConversionError(OptionsError):
    """Raised when a request body cannot be serialized to JSON."""


def _is_missing(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value)


def require_options(options: Mapping[str, Any], required: Sequence[str]) -> None:
    """Raise `MissingArgumentError` for the first required key that is unset."""
    for name in required:
        if _is_missing(options.get(name)):
            raise MissingArgumentError(name)


def parse_options(
    args: Sequence[Any],
    required: Sequence[str],
    optional: Sequence[str],
) -> dict[str, Any]:
    """Normalize raw call arguments into a canonical options dict.

    - String first argument: positional mode. `required` fields are filled in
      order, then remaining arguments fill `optional` fields; extras are dropped.
    - Mapping first argument: object mode. The mapping is validated against
      `required` and copied; later arguments fill `optional` fields.

    Raises:
        MissingArgumentsError: Not enough arguments for the required fields.
        MissingArgumentError: An options mapping lacks a required field.
        TypeError: The first argument is neither a string nor a mapping.
    """
    if not args:
        if not required:
            return {}
        raise MissingArgumentsError(required)

    first = args[0]
    result: dict[str, Any] = {}
    if isinstance(first, str):
        if len(args) < len(required):
            raise MissingArgumentsError(required)
        for name, value in zip(required, args):
            result[name] = value
        extra = args[len(required) :]
    elif isinstance(first, Mapping):
        require_options(first, required)
        result.update(first)
        extra = args[1:]
    else:
        raise TypeError(
            f"Expected a path string or an options mapping, got {type(first).__name__}."
        )

    for name, value in zip(optional, extra):
        result[name] = value
    return result


def to_json_string(value: Any) -> str:
    """Return `value` as compact JSON text; strings are assumed to be JSON already."""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise JsonConversionError(f"Argument could not be converted to JSON ({exc})") from exc
