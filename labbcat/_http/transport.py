"""Blocking HTTP transport built on ``httpx.Client``.

The transport performs one exchange per call and hands back the raw status,
headers and body.  It never parses the body and never raises on an HTTP
error status; only network-level failures become exceptions.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
from loguru import logger

from labbcat._http.cookies import CookieJar
from labbcat._http.multipart import MultipartBody
from labbcat._http.params import append_query, encode_params
from labbcat.exceptions import MalformedURLError, TransportError

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping
    from pathlib import Path
    from types import TracebackType

    from typing_extensions import Self

    from labbcat._http.params import Params

COOKIE_PREFIX = "Cookie "
"""Authorization strings starting with this are sent as a ``Cookie`` header."""


@dataclass(frozen=True, slots=True)
class HttpResult:
    """Status, headers and body of one completed exchange."""

    status: int
    headers: httpx.Headers
    body: bytes
    url: str

    @property
    def text(self) -> str:
        """Body decoded as UTF-8."""
        return self.body.decode("utf-8", errors="replace")

    @property
    def ok(self) -> bool:
        """True for 2xx statuses."""
        return 200 <= self.status < 300  # noqa: PLR2004


def authorization_headers(authorization: str | None) -> dict[str, str]:
    """Return the single header that carries *authorization*."""
    if not authorization:
        return {}
    if authorization.startswith(COOKIE_PREFIX):
        return {"Cookie": authorization[len(COOKIE_PREFIX) :]}
    return {"Authorization": authorization}


class HttpTransport:
    """GET, POST and multipart POST over one ``httpx.Client``.

    Cookies issued by the server are kept in a per-transport
    :class:`CookieJar`.  Pass ``transport=httpx.MockTransport(...)`` to run
    against an in-process fake server.
    """

    def __init__(
        self,
        *,
        user_agent: str,
        language: str | None = None,
        timeout: float = 300.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Open the underlying client; redirects are never followed."""
        self.user_agent = user_agent
        self.language = language
        self.cookies = CookieJar()
        self._client = httpx.Client(
            transport=transport,
            timeout=timeout,
            follow_redirects=False,
        )

    def close(self) -> None:
        """Close pooled connections."""
        self._client.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Request kinds
    # ------------------------------------------------------------------

    def get(
        self,
        url: str,
        params: Params = None,
        headers: Mapping[str, str] | None = None,
        authorization: str | None = None,
        *,
        method: str = "GET",
    ) -> HttpResult:
        """Send parameters in the query string; *method* may be PUT/DELETE."""
        request = self._build(method, append_query(url, params), headers, authorization)
        return self._send(request)

    def post(
        self,
        url: str,
        params: Params = None,
        headers: Mapping[str, str] | None = None,
        authorization: str | None = None,
        *,
        method: str = "POST",
    ) -> HttpResult:
        """Send a URL-encoded body; ``None`` parameters are left out entirely."""
        body = encode_params(params).encode()
        request = self._build(
            method,
            url,
            headers,
            authorization,
            content=body,
            content_type="application/x-www-form-urlencoded",
        )
        logger.trace(f"{method} {url} : {body.decode()}")
        return self._send(request)

    def post_json(
        self,
        url: str,
        payload: Any,  # noqa: ANN401
        headers: Mapping[str, str] | None = None,
        authorization: str | None = None,
        *,
        method: str = "POST",
    ) -> HttpResult:
        """Send *payload* as a JSON body."""
        body = json.dumps(payload).encode()
        request = self._build(
            method,
            url,
            headers,
            authorization,
            content=body,
            content_type="application/json",
        )
        logger.trace(f"{method} {url} : {body.decode()}")
        return self._send(request)

    def post_multipart(
        self,
        url: str,
        params: Params = None,
        headers: Mapping[str, str] | None = None,
        authorization: str | None = None,
        *,
        body: MultipartBody | None = None,
    ) -> HttpResult:
        """Stream *params* (or a pre-built *body*) as ``multipart/form-data``.

        Raises ``RequestCancelled`` if the body is cancelled mid-write.
        """
        if body is None:
            body = MultipartBody(params)
        request = self._build(
            "POST",
            url,
            headers,
            authorization,
            content=iter(body),
            content_type=body.content_type,
        )
        logger.trace(f"POST {url} : {body.describe()}")
        return self._send(request)

    @contextmanager
    def stream(
        self,
        url: str,
        params: Params = None,
        headers: Mapping[str, str] | None = None,
        authorization: str | None = None,
    ) -> Iterator[httpx.Response]:
        """Yield a streaming GET response for writing a download to disk."""
        request = self._build("GET", append_query(url, params), headers, authorization)
        try:
            response = self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise self._wrap(e, request) from e
        try:
            self.cookies.extract(response)
            yield response
        finally:
            response.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None,
        authorization: str | None,
        *,
        content: Any = None,  # noqa: ANN401
        content_type: str | None = None,
    ) -> httpx.Request:
        merged: dict[str, str] = {"User-Agent": self.user_agent}
        if self.language:
            merged["Accept-Language"] = self.language
        if content_type:
            merged["Content-Type"] = content_type
        merged.update(headers or {})
        auth_headers = authorization_headers(authorization)
        merged.update(auth_headers)
        try:
            request = httpx.Request(method, url, headers=merged, content=content)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise MalformedURLError(f"Malformed URL {url!r}: {e}") from e
        if "Cookie" not in auth_headers:
            self.cookies.apply(request)
        return request

    def _send(self, request: httpx.Request) -> HttpResult:
        try:
            response = self._client.send(request)
        except httpx.HTTPError as e:
            raise self._wrap(e, request) from e
        self.cookies.extract(response)
        logger.trace(f"{request.method} {request.url} -> HTTP {response.status_code}")
        return HttpResult(
            status=response.status_code,
            headers=response.headers,
            body=response.content,
            url=str(request.url),
        )

    @staticmethod
    def _wrap(error: httpx.HTTPError, request: httpx.Request) -> TransportError:
        if isinstance(error, httpx.UnsupportedProtocol):
            return MalformedURLError(f"Malformed URL {request.url}: {error}")
        return TransportError(f"{request.method} {request.url} failed: {error}")


def write_response(response: httpx.Response, path: Path) -> Path:
    """Stream the body of *response* into *path* chunk by chunk."""
    try:
        with path.open("wb") as fh:
            for chunk in response.iter_bytes():
                fh.write(chunk)
    except httpx.HTTPError as e:
        path.unlink(missing_ok=True)
        raise TransportError(f"Download of {response.url} failed: {e}") from e
    return path
