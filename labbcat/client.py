"""High-level client composing the per-area components over one session."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from labbcat.admin import Administration
from labbcat.config import LabbcatConfig
from labbcat.edit import StoreEditor
from labbcat.search import SearchSession
from labbcat.session import Session
from labbcat.store import StoreQueries
from labbcat.tasks import TaskManager
from labbcat.upload import UploadSession

if TYPE_CHECKING:
    from types import TracebackType

    from typing_extensions import Self


class LabbcatClient:
    """Entry point for talking to one LaBB-CAT server.

    Each area of the API is a component sharing the same
    :class:`~labbcat.session.Session` (and so the same credentials, cookie
    jar and cancellation flag)::

        with LabbcatClient(cfg) as client:
            matches = client.search.search(PatternBuilder().add_matches("orthography", "the"))
            wavs = client.search.sound_fragments_for(matches)

    When *cfg* is ``None`` the configuration is loaded from the environment
    and config file via :meth:`LabbcatConfig.load`.
    """

    def __init__(
        self,
        cfg: LabbcatConfig | None = None,
        *,
        session: Session | None = None,
        **session_kwargs: Any,  # noqa: ANN401
    ) -> None:
        """Open a session from *cfg*, or wrap an existing *session*."""
        self.session = session or Session.from_config(cfg or LabbcatConfig.load(), **session_kwargs)
        self.tasks = TaskManager(self.session)
        self.uploads = UploadSession(self.session)
        self.search = SearchSession(self.session, self.tasks)
        self.store = StoreQueries(self.session)
        self.edit = StoreEditor(self.session)
        self.admin = Administration(self.session)

    def connect(self) -> str | None:
        """Authenticate now instead of on the first request; return the server version."""
        self.session.get_required_http_authorization()
        return self.session.server_version

    def cancel(self) -> None:
        """Cancel whatever this client is doing; see :meth:`Session.cancel`."""
        self.session.cancel()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
