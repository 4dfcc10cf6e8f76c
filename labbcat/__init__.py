"""labbcat -- client for LaBB-CAT corpus annotation servers."""

from labbcat.admin import AdminResource, Administration
from labbcat.client import LabbcatClient
from labbcat.config import LabbcatConfig
from labbcat.edit import StoreEditor
from labbcat.envelope import Envelope, decode_envelope
from labbcat.exceptions import (
    AuthorizationError,
    InteractiveModeRequiredError,
    InvalidTaskIdError,
    LabbcatError,
    MalformedResponse,
    MalformedURLError,
    RequestCancelled,
    ResponseException,
    StoreException,
    TaskNotFoundError,
    TransportError,
    ValidationError,
)
from labbcat.models import Match, MatchId, TaskStatus, Upload, UploadParameter
from labbcat.pattern import PatternBuilder
from labbcat.search import SearchSession, matches_dataframe
from labbcat.session import Session, __version__
from labbcat.store import StoreQueries
from labbcat.tasks import TaskHandle, TaskManager
from labbcat.upload import UploadSession

__all__ = [
    "AdminResource",
    "Administration",
    "AuthorizationError",
    "Envelope",
    "InteractiveModeRequiredError",
    "InvalidTaskIdError",
    "LabbcatClient",
    "LabbcatConfig",
    "LabbcatError",
    "MalformedResponse",
    "MalformedURLError",
    "Match",
    "MatchId",
    "PatternBuilder",
    "RequestCancelled",
    "ResponseException",
    "SearchSession",
    "Session",
    "StoreEditor",
    "StoreException",
    "StoreQueries",
    "TaskHandle",
    "TaskManager",
    "TaskNotFoundError",
    "TaskStatus",
    "TransportError",
    "Upload",
    "UploadParameter",
    "UploadSession",
    "ValidationError",
    "__version__",
    "decode_envelope",
    "matches_dataframe",
]
