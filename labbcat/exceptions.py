"""Custom exception hierarchy for labbcat.

All library-specific exceptions inherit from ``LabbcatError`` so consumers
can catch ``except LabbcatError`` to handle any labbcat failure.
"""

from __future__ import annotations


class LabbcatError(Exception):
    """Base exception for all labbcat errors."""


class TransportError(LabbcatError):
    """Raised when the HTTP exchange itself fails (DNS, refused, timeout)."""


class MalformedURLError(TransportError, ValueError):
    """Raised when a URL is syntactically invalid or uses an unsupported scheme."""


class RequestCancelled(LabbcatError):
    """Raised inside a multipart write once its cancel flag has been set."""


class ValidationError(LabbcatError, ValueError):
    """Raised when a client-side precondition fails before any network call."""


class InteractiveModeRequiredError(LabbcatError):
    """Raised when interactive input is needed but disabled."""


class StoreException(LabbcatError):
    """Raised when the server cannot satisfy a request."""


class AuthorizationError(StoreException):
    """Raised when credentials are missing, rejected, or prompting was cancelled."""


class InvalidTaskIdError(StoreException):
    """Raised when a task id is not a number."""


class MalformedResponse(StoreException):
    """Raised when a response body is not the expected JSON envelope."""

    def __init__(self, message: str, raw: str = "", http_status: int = -1) -> None:
        """Store the raw body and status alongside the message."""
        self.raw = raw
        self.http_status = http_status
        super().__init__(message)


class ResponseException(StoreException):
    """Raised when the server reports failure in its response envelope.

    Carries the HTTP status, the envelope's numeric ``code`` and its ordered
    ``errors`` (localized according to the session's ``Accept-Language``).
    """

    def __init__(
        self,
        http_status: int,
        code: int | None = None,
        errors: list[str] | None = None,
        messages: list[str] | None = None,
    ) -> None:
        """Build the message from errors, else code, else HTTP status."""
        self.http_status = http_status
        self.code = code
        self.errors = list(errors or [])
        self.messages = list(messages or [])
        if self.errors:
            message = "\n".join(self.errors)
        elif code is not None and code != 0:
            message = f"Response code {code}"
        else:
            message = f"HTTP status {http_status}"
        super().__init__(message)


class TaskNotFoundError(ResponseException):
    """Raised when the server has no task with the requested numeric id."""
