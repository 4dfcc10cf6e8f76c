"""Codec for the server's uniform JSON response envelope.

Every API call answers with::

    {"title": ..., "version": ..., "code": 0, "errors": [], "messages": [], "model": ...}

:func:`decode_envelope` turns raw bytes into an :class:`Envelope`;
:meth:`Envelope.raise_for_errors` classifies application failures.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from labbcat.exceptions import MalformedResponse, ResponseException

_HTTP_OK_MIN = 200
_HTTP_OK_MAX = 300


@dataclass(frozen=True, slots=True)
class Envelope:
    """Decoded response envelope plus the HTTP status it arrived with."""

    http_status: int
    title: str | None = None
    version: str | None = None
    code: int | None = None
    errors: tuple[str, ...] = ()
    messages: tuple[str, ...] = ()
    model: Any = None
    raw: str = field(default="", compare=False)

    @property
    def succeeded(self) -> bool:
        """True when the status is 2xx, ``code`` is 0 or absent and no errors."""
        return (
            not self.errors
            and self.code in (None, 0)
            and _HTTP_OK_MIN <= self.http_status < _HTTP_OK_MAX
        )

    def raise_for_errors(self) -> Any:  # noqa: ANN401
        """Return ``model`` on success, otherwise raise ``ResponseException``."""
        if not self.succeeded:
            raise ResponseException(
                self.http_status,
                self.code,
                list(self.errors),
                list(self.messages),
            )
        return self.model

    def to_json(self) -> bytes:
        """Encode the envelope fields back to a JSON body."""
        data: dict[str, Any] = {
            "title": self.title,
            "version": self.version,
            "code": self.code,
            "errors": list(self.errors),
            "messages": list(self.messages),
            "model": self.model,
        }
        return json.dumps({k: v for k, v in data.items() if v is not None}).encode()


def _string_list(data: dict[str, Any], key: str, raw: str, status: int) -> tuple[str, ...]:
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise MalformedResponse(f"Envelope {key!r} is not a list of strings: {raw}", raw, status)
    return tuple(value)


def _optional(  # noqa: ANN401
    data: dict[str, Any], key: str, kind: type, raw: str, status: int
) -> Any:
    value = data.get(key)
    if value is None:
        return None
    if (kind is int and isinstance(value, bool)) or not isinstance(value, kind):
        raise MalformedResponse(f"Envelope {key!r} has the wrong type: {raw}", raw, status)
    return value


def decode_envelope(http_status: int, body: bytes | str) -> Envelope:
    """Parse *body* as an envelope.

    A body that is empty, not JSON, not an object, or has mistyped envelope
    fields raises ``MalformedResponse`` when the status is 2xx.  With any
    other status the body is not trusted and an envelope carrying only the
    status is returned, so ``raise_for_errors`` reports the HTTP failure.
    """
    raw = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    ok_status = _HTTP_OK_MIN <= http_status < _HTTP_OK_MAX
    try:
        return _parse(http_status, raw)
    except MalformedResponse:
        if ok_status:
            raise
        return Envelope(http_status=http_status, raw=raw)


def _parse(http_status: int, raw: str) -> Envelope:
    if not raw:
        raise MalformedResponse("Empty response from server.", raw, http_status)
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise MalformedResponse(f"Response not JSON: {raw}", raw, http_status) from e
    if not isinstance(data, dict):
        raise MalformedResponse(f"Response not a JSON object: {raw}", raw, http_status)
    return Envelope(
        http_status=http_status,
        title=_optional(data, "title", str, raw, http_status),
        version=_optional(data, "version", str, raw, http_status),
        code=_optional(data, "code", int, raw, http_status),
        errors=_string_list(data, "errors", raw, http_status),
        messages=_string_list(data, "messages", raw, http_status),
        model=data.get("model"),
        raw=raw,
    )
