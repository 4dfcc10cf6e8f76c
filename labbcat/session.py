"""Session: one base URL, one credential pair, one transport.

Every higher-level component (tasks, uploads, search, store queries, admin)
issues requests through a :class:`Session`, which adds authorization,
decodes the response envelope and mirrors traffic to the log in verbose
mode.
"""

from __future__ import annotations

import base64
import getpass
import threading
from importlib.metadata import PackageNotFoundError, version
from typing import TYPE_CHECKING, Any

import httpx
from loguru import logger

from labbcat._http import HttpTransport, MultipartBody
from labbcat.config import HTTP_TIMEOUT, LabbcatConfig, is_interactive_disabled
from labbcat.envelope import Envelope, decode_envelope
from labbcat.exceptions import (
    AuthorizationError,
    MalformedURLError,
    StoreException,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from types import TracebackType

    from typing_extensions import Self

    from labbcat._http import HttpResult
    from labbcat._http.params import Params

MIN_SERVER_VERSION = "20210210.2032"
"""Oldest server version whose API this client speaks."""

_HTTP_UNAUTHORIZED = 401
_JSON = {"Accept": "application/json"}

try:
    __version__ = version("labbcat")
except PackageNotFoundError:  # running from a source checkout
    __version__ = "0.0.0"

USER_AGENT = f"Python labbcat {__version__}"


def basic_authorization(username: str, password: str) -> str:
    """Return an HTTP Basic ``Authorization`` value."""
    token = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
    return f"Basic {token}"


def _validate_base_url(base_url: str) -> str:
    try:
        url = httpx.URL(base_url)
    except httpx.InvalidURL as e:
        raise MalformedURLError(f"Malformed URL {base_url!r}: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise MalformedURLError(f"Malformed URL {base_url!r}: expected http(s)://host/...")
    return base_url if base_url.endswith("/") else base_url + "/"


class Session:
    """Authenticated connection to one LaBB-CAT server.

    Can be used as a context manager to close pooled connections::

        with Session("https://labbcat.example.org/labbcat", "me", "secret") as s:
            s.get_required_http_authorization()

    *batch_mode* disables interactive credential prompts; it defaults to
    ``LABBCAT_NO_INTERACTIVE``.  In *verbose* mode every request and
    response is logged at INFO level instead of TRACE.
    """

    def __init__(
        self,
        base_url: str,
        username: str | None = None,
        password: str | None = None,
        *,
        language: str | None = None,
        verbose: bool = False,
        batch_mode: bool | None = None,
        timeout: float = HTTP_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
        prompt: Callable[[str], str] = input,
        prompt_password: Callable[[str], str] = getpass.getpass,
    ) -> None:
        """Validate *base_url* and open the transport."""
        self.base_url = _validate_base_url(base_url)
        self.username = username
        self.password = password
        self.verbose = verbose
        self.batch_mode = is_interactive_disabled() if batch_mode is None else batch_mode
        self.server_version: str | None = None
        self._prompt = prompt
        self._prompt_password = prompt_password
        self._http = HttpTransport(
            user_agent=USER_AGENT,
            language=language,
            timeout=timeout,
            transport=transport,
        )
        self._authorization: str | None = None
        self._verified = False
        self._auth_lock = threading.Lock()
        self._cancelling = threading.Event()
        self._in_flight: set[MultipartBody] = set()
        self._in_flight_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        cfg: LabbcatConfig | None = None,
        **kwargs: Any,  # noqa: ANN401
    ) -> Session:
        """Build a session from a :class:`LabbcatConfig` (loaded if omitted)."""
        cfg = cfg or LabbcatConfig.load()
        if not cfg.url:
            raise MalformedURLError("No server URL configured; set LABBCAT_URL.")
        return cls(
            cfg.url,
            cfg.username,
            cfg.password,
            language=cfg.language,
            **kwargs,
        )

    @property
    def language(self) -> str | None:
        """``Accept-Language`` sent with every request."""
        return self._http.language

    @language.setter
    def language(self, value: str | None) -> None:
        self._http.language = value

    @property
    def http(self) -> HttpTransport:
        """The underlying transport."""
        return self._http

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the transport's connections."""
        self._http.close()

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
    # URLs
    # ------------------------------------------------------------------

    def url(self, resource: str) -> str:
        """Absolute URL of *resource* relative to the server root."""
        return self.base_url + resource

    def store_url(self, resource: str) -> str:
        """URL of a read-only graph store call."""
        return self.url("api/store/" + resource)

    def edit_url(self, resource: str) -> str:
        """URL of a graph store editing call."""
        return self.url("api/edit/store/" + resource)

    def admin_url(self, resource: str) -> str:
        """URL of a graph store administration call."""
        return self.url("api/admin/store/" + resource)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def login_with_cookie(self, cookie: str) -> None:
        """Use an existing session cookie (``NAME=value``) instead of Basic auth."""
        with self._auth_lock:
            self._authorization = f"Cookie {cookie}"
            self._verified = False

    def get_required_http_authorization(self) -> str | None:
        """Return the authorization string every request must carry.

        The first call probes the store endpoint.  On HTTP 401 it retries
        with Basic credentials: once in batch mode, or in a prompt loop in
        interactive mode.  It then checks that the server is recent enough.
        The result is cached for the life of the session; ``None`` means the
        server needs no authorization.
        """
        with self._auth_lock:
            if not self._verified:
                self._authorization = self._negotiate_authorization()
                self._verified = True
            return self._authorization

    def _negotiate_authorization(self) -> str | None:
        probe = self.store_url("")
        authorization = self._authorization
        result = self._http.get(probe, headers=_JSON, authorization=authorization)
        self._trace(f"Authorization probe ({self._mode}): HTTP {result.status}")
        while result.status == _HTTP_UNAUTHORIZED:
            if self.batch_mode:
                authorization = self._batch_credentials(authorization)
            else:
                authorization = self._prompt_credentials()
            result = self._http.get(probe, headers=_JSON, authorization=authorization)
            self._trace(f"Authorization attempt ({self._mode}): HTTP {result.status}")
            if result.status == _HTTP_UNAUTHORIZED:
                self.username = None
                self.password = None
                if self.batch_mode:
                    raise AuthorizationError("Username/password invalid")
        envelope = self._decode(result)
        envelope.raise_for_errors()
        self._check_version(envelope)
        return authorization

    @property
    def _mode(self) -> str:
        return "batch" if self.batch_mode else "interactive"

    def _batch_credentials(self, previous: str | None) -> str:
        if self.username is None or self.password is None:
            raise AuthorizationError("Username/password required")
        authorization = basic_authorization(self.username, self.password)
        if authorization == previous:
            raise AuthorizationError("Username/password invalid")
        return authorization

    def _prompt_credentials(self) -> str:
        if not self.username:
            self.username = self._prompt("Username: ").strip()
            if not self.username:
                raise AuthorizationError("Cancelled")
        if not self.password:
            self.password = self._prompt_password(f"Password for {self.username}: ")
        return basic_authorization(self.username, self.password)

    def _check_version(self, envelope: Envelope) -> None:
        self.server_version = envelope.version
        if envelope.version is None or envelope.version < MIN_SERVER_VERSION:
            raise StoreException(
                f"Server is version {envelope.version} but the minimum "
                f"required version is {MIN_SERVER_VERSION}"
            )

    # ------------------------------------------------------------------
    # Cooperative cancellation
    # ------------------------------------------------------------------

    @property
    def cancelling(self) -> bool:
        """True after :meth:`cancel` until the next operation starts."""
        return self._cancelling.is_set()

    def cancel(self) -> None:
        """Stop waits, download loops and in-flight multipart uploads."""
        self._cancelling.set()
        with self._in_flight_lock:
            bodies = list(self._in_flight)
        for body in bodies:
            body.cancel()
        logger.info("Cancelling current operations")

    def begin_operation(self) -> None:
        """Clear a previous cancellation before a new top-level operation."""
        self._cancelling.clear()

    # ------------------------------------------------------------------
    # Requests returning the decoded envelope model
    # ------------------------------------------------------------------

    def get(
        self,
        url: str,
        params: Params = None,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
    ) -> Any:  # noqa: ANN401
        """GET *url* and return the envelope's model."""
        authorization = self.get_required_http_authorization()
        self._trace(f"{method} {url} {params_repr(params)}")
        result = self._http.get(
            url, params, headers or _JSON, authorization, method=method
        )
        return self._model(result)

    def post(
        self,
        url: str,
        params: Params = None,
        *,
        method: str = "POST",
        headers: Mapping[str, str] | None = None,
    ) -> Any:  # noqa: ANN401
        """POST a URL-encoded body and return the envelope's model."""
        authorization = self.get_required_http_authorization()
        self._trace(f"{method} {url} : {params_repr(params)}")
        result = self._http.post(
            url, params, headers or _JSON, authorization, method=method
        )
        return self._model(result)

    def put(self, url: str, params: Params = None) -> Any:  # noqa: ANN401
        """PUT with a URL-encoded body."""
        return self.post(url, params, method="PUT")

    def delete(self, url: str, params: Params = None) -> Any:  # noqa: ANN401
        """DELETE with a URL-encoded body."""
        return self.post(url, params, method="DELETE")

    def post_json(self, url: str, payload: Any, *, method: str = "POST") -> Any:  # noqa: ANN401
        """Send a JSON body and return the envelope's model."""
        authorization = self.get_required_http_authorization()
        self._trace(f"{method} {url} : {payload}")
        result = self._http.post_json(url, payload, _JSON, authorization, method=method)
        return self._model(result)

    def post_multipart(
        self,
        url: str,
        params: Params = None,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> Any:  # noqa: ANN401
        """Stream a multipart body and return the envelope's model.

        The body is registered so :meth:`cancel` can interrupt it.
        """
        result = self.post_multipart_raw(url, params, headers=headers)
        return self._model(result)

    def post_multipart_raw(
        self,
        url: str,
        params: Params = None,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResult:
        """Stream a multipart body and return the undecoded result."""
        authorization = self.get_required_http_authorization()
        body = MultipartBody(params)
        self._trace(f"POST {url} : {body.describe()}")
        with self._in_flight_lock:
            self._in_flight.add(body)
        try:
            return self._http.post_multipart(
                url, headers=headers or _JSON, authorization=authorization, body=body
            )
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(body)

    def post_raw(
        self,
        url: str,
        params: Params = None,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResult:
        """POST a URL-encoded body and return the undecoded result."""
        authorization = self.get_required_http_authorization()
        self._trace(f"POST {url} : {params_repr(params)}")
        return self._http.post(url, params, headers, authorization)

    def decode(self, result: HttpResult) -> Envelope:
        """Decode *result* as an envelope, logging it in verbose mode."""
        return self._decode(result)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _model(self, result: HttpResult) -> Any:  # noqa: ANN401
        return self._decode(result).raise_for_errors()

    def _decode(self, result: HttpResult) -> Envelope:
        envelope = decode_envelope(result.status, result.body)
        self._trace(
            f"HTTP {envelope.http_status} code={envelope.code} "
            f"errors={list(envelope.errors)} messages={list(envelope.messages)}"
        )
        if envelope.model is not None:
            self._trace(f"model: {envelope.model}")
        return envelope

    def _trace(self, message: str) -> None:
        if self.verbose:
            logger.info(message)
        else:
            logger.trace(message)


def params_repr(params: Params) -> str:
    """Readable form of request parameters for log lines."""
    if params is None:
        return ""
    items = params.items() if hasattr(params, "items") else params
    return ", ".join(f"{name}={value!r}" for name, value in items if value is not None)
