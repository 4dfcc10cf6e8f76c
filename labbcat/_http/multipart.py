"""Streaming ``multipart/form-data`` request bodies with cooperative cancel."""

from __future__ import annotations

import mimetypes
import secrets
import threading
from os import PathLike
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

from labbcat._http.params import iter_params, render_value
from labbcat.exceptions import RequestCancelled

if TYPE_CHECKING:
    from collections.abc import Iterator

    from labbcat._http.params import Params

CHUNK_SIZE = 1024
"""Bytes read from a file per write; bounds upload memory use."""

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(number: int) -> str:
    digits = []
    while True:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
        if number == 0:
            return "".join(reversed(digits))


def make_boundary() -> str:
    """Return a fresh random boundary string."""
    return "-" * 27 + "".join(_base36(secrets.randbits(63)) for _ in range(3))


def guess_content_type(filename: str) -> str:
    """Guess a part's content type from its file name."""
    content_type, _encoding = mimetypes.guess_type(filename)
    return content_type or "application/octet-stream"


def _is_file(value: object) -> bool:
    return isinstance(value, PathLike) or hasattr(value, "read")


class MultipartBody:
    """Lazily generated multipart body.

    Iterating the body yields the encoded parts one piece at a time.  Files
    are read ``CHUNK_SIZE`` bytes at a time, so only one chunk of file
    content is held in memory.  :meth:`cancel` may be called from another
    thread; the cancel flag is checked before every part boundary and every
    chunk, and the iteration then fails with ``RequestCancelled``.
    """

    def __init__(self, params: Params, boundary: str | None = None) -> None:
        """Capture ordered parameters; ``None`` values are omitted."""
        self.boundary = boundary or make_boundary()
        self._parts: list[tuple[str, Any]] = iter_params(params)
        self._cancelled = threading.Event()

    @property
    def content_type(self) -> str:
        """Value for the request's ``Content-Type`` header."""
        return f"multipart/form-data; boundary={self.boundary}"

    @property
    def cancelled(self) -> bool:
        """True once :meth:`cancel` has been called."""
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Request that the in-progress write stop at the next checkpoint."""
        self._cancelled.set()

    def _check(self) -> None:
        if self._cancelled.is_set():
            raise RequestCancelled("Request cancelled.")

    def describe(self) -> str:
        """Summarize the parts for logging, without file contents."""
        names = []
        for name, value in self._parts:
            if _is_file(value):
                names.append(f"{name}=<{_file_name(value)}>")
            else:
                names.append(f"{name}={render_value(value)}")
        return ", ".join(names)

    def __iter__(self) -> Iterator[bytes]:
        for name, value in self._parts:
            self._check()
            if _is_file(value):
                yield from self._file_part(name, value)
            else:
                yield (
                    f"--{self.boundary}\r\n"
                    f'Content-Disposition: form-data; name="{name}"\r\n'
                    f"\r\n"
                    f"{render_value(value)}\r\n"
                ).encode()
        self._check()
        yield f"--{self.boundary}--\r\n".encode()

    def _file_part(self, name: str, value: Any) -> Iterator[bytes]:  # noqa: ANN401
        filename = _file_name(value)
        yield (
            f"--{self.boundary}\r\n"
            f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'
            f"Content-Type: {guess_content_type(filename)}\r\n"
            f"\r\n"
        ).encode()
        if isinstance(value, PathLike):
            with Path(value).open("rb") as stream:
                yield from self._chunks(stream)
        else:
            yield from self._chunks(value)
        yield b"\r\n"

    def _chunks(self, stream: IO[bytes]) -> Iterator[bytes]:
        while True:
            self._check()
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                return
            yield chunk


def _file_name(value: Any) -> str:  # noqa: ANN401
    if isinstance(value, PathLike):
        return Path(value).name
    return Path(str(getattr(value, "name", "file"))).name
