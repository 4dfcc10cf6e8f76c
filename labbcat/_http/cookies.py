"""Per-session cookie store shared by all requests of one transport."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from collections.abc import Iterator


class CookieJar:
    """Lock-guarded wrapper around ``httpx.Cookies``.

    The server issues a session cookie on first contact which later requests
    must present.  One jar belongs to one transport, so separate sessions
    never see each other's cookies, while threads sharing a session do.
    """

    def __init__(self) -> None:
        """Create an empty jar."""
        self._cookies = httpx.Cookies()
        self._lock = threading.Lock()

    def apply(self, request: httpx.Request) -> None:
        """Set the ``Cookie`` header on *request* from stored cookies."""
        with self._lock:
            self._cookies.set_cookie_header(request)

    def extract(self, response: httpx.Response) -> None:
        """Store any ``Set-Cookie`` values from *response*."""
        with self._lock:
            self._cookies.extract_cookies(response)

    def get(self, name: str) -> str | None:
        """Return the value of cookie *name*, if present."""
        with self._lock:
            for cookie in self._cookies.jar:
                if cookie.name == name:
                    return cookie.value
        return None

    def clear(self) -> None:
        """Forget all cookies."""
        with self._lock:
            self._cookies.clear()

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            names = [cookie.name for cookie in self._cookies.jar]
        return iter(names)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cookies.jar)
