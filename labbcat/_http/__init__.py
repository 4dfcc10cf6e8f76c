"""HTTP transport internals: parameter encoding, cookies, multipart streaming."""

from labbcat._http.cookies import CookieJar
from labbcat._http.multipart import CHUNK_SIZE, MultipartBody
from labbcat._http.transport import HttpResult, HttpTransport, write_response

__all__ = [
    "CHUNK_SIZE",
    "CookieJar",
    "HttpResult",
    "HttpTransport",
    "MultipartBody",
    "write_response",
]
