"""Parameter flattening and URL encoding shared by every request kind."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from os import PathLike
from typing import Any
from urllib.parse import urlencode

Params = Mapping[str, Any] | Iterable[tuple[str, Any]] | None
"""Ordered request parameters: a mapping or a sequence of ``(name, value)`` pairs."""


def is_collection(value: object) -> bool:
    """Return True for values that expand to repeated parameters."""
    if isinstance(value, (str, bytes, bytearray, Mapping, PathLike)):
        return False
    return isinstance(value, Iterable) and not hasattr(value, "read")


def render_value(value: object) -> str:
    """Render a scalar the way the server expects it on the wire."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def iter_params(params: Params) -> list[tuple[str, Any]]:
    """Return ``(name, value)`` pairs in input order, without ``None`` values.

    Collection values are expanded to one pair per element; ``None`` elements
    inside a collection are dropped as well.
    """
    if params is None:
        return []
    items = params.items() if isinstance(params, Mapping) else params
    pairs: list[tuple[str, Any]] = []
    for name, value in items:
        if value is None:
            continue
        if is_collection(value):
            pairs.extend((name, element) for element in value if element is not None)
        else:
            pairs.append((name, value))
    return pairs


def encode_params(params: Params) -> str:
    """URL-encode *params* as ``key=value&...`` (space becomes ``+``)."""
    return urlencode([(name, render_value(value)) for name, value in iter_params(params)])


def append_query(url: str, params: Params) -> str:
    """Append encoded *params* to *url*, using ``&`` if it already has a query."""
    query = encode_params(params)
    if not query:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{query}"
