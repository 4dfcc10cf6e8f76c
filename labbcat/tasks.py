"""Server-side task tracking: status, bounded polling, cancel and release."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from loguru import logger
from tenacity import RetryCallState, Retrying, retry_if_result

from labbcat._http import write_response
from labbcat.exceptions import (
    InvalidTaskIdError,
    LabbcatError,
    ResponseException,
    TaskNotFoundError,
    ValidationError,
)
from labbcat.models import TaskStatus

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path
    from types import TracebackType

    from typing_extensions import Self

    from labbcat.session import Session

_HTTP_OK = 200
_HTTP_NOT_FOUND = 404

DEFAULT_REFRESH_SECONDS = 2
"""Sleep between polls when the server does not suggest an interval."""


def _refresh_wait(retry_state: RetryCallState) -> float:
    """Wait the interval suggested by the last observed status."""
    status: TaskStatus = retry_state.outcome.result()  # type: ignore[union-attr]
    if status.refresh_seconds <= 0:
        return DEFAULT_REFRESH_SECONDS
    return status.refresh_seconds


def _last_status(retry_state: RetryCallState) -> TaskStatus:
    """Give back the last snapshot instead of raising when polling stops."""
    return retry_state.outcome.result()  # type: ignore[union-attr]


def _log_poll(retry_state: RetryCallState) -> None:
    status: TaskStatus = retry_state.outcome.result()  # type: ignore[union-attr]
    logger.trace(
        f"Task {status.thread_id} still running ({status.percent_complete}%): "
        f"{status.status}"
    )


class _Deadline:
    """Tenacity stop condition: a wall-clock deadline or session cancellation."""

    def __init__(
        self,
        session: Session,
        max_seconds: float,
        clock: Callable[[], float],
    ) -> None:
        self._session = session
        self._clock = clock
        self._end = clock() + max_seconds if max_seconds > 0 else None

    def __call__(self, retry_state: RetryCallState) -> bool:  # noqa: ARG002
        if self._session.cancelling:
            return True
        return self._end is not None and self._clock() >= self._end


class TaskManager:
    """Status, wait, cancel, release and listing of server tasks.

    *sleep* and *clock* are injectable so polling can be tested without
    real delays.
    """

    def __init__(
        self,
        session: Session,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Bind to *session*."""
        self._session = session
        self._sleep = sleep
        self._clock = clock

    def handle(self, task_id: str) -> TaskHandle:
        """Wrap *task_id* in a :class:`TaskHandle`."""
        return TaskHandle(self, task_id)

    def status(self, task_id: str, *, include_log: bool = False) -> TaskStatus:
        """Fetch the current status of one task.

        Raises ``InvalidTaskIdError`` for a non-numeric id (without a network
        call) and ``TaskNotFoundError`` when the server knows no such task.
        """
        task_id = str(task_id)
        if not task_id.strip().isdigit():
            raise InvalidTaskIdError(f"Invalid task id: {task_id!r}")
        params: dict[str, object] = {"threadId": task_id}
        if include_log:
            params["log"] = True
        try:
            model = self._session.get(self._session.url("thread"), params)
        except ResponseException as e:
            if e.http_status not in (_HTTP_OK, _HTTP_NOT_FOUND):
                raise
            raise TaskNotFoundError(e.http_status, e.code, e.errors, e.messages) from e
        if model is None:
            raise TaskNotFoundError(_HTTP_NOT_FOUND, None, [f"Task not found: {task_id}"])
        return TaskStatus.model_validate(model)

    def wait_for(self, task_id: str, max_seconds: float = 0) -> TaskStatus:
        """Poll until the task stops running, *max_seconds* pass, or cancel.

        ``max_seconds <= 0`` waits without limit.  On timeout the last
        observed status is returned (check ``running``); nothing is raised.
        """
        self._session.begin_operation()
        retrying = Retrying(
            retry=retry_if_result(lambda status: status.running),
            stop=_Deadline(self._session, max_seconds, self._clock),
            wait=_refresh_wait,
            sleep=self._sleep,
            before_sleep=_log_poll,
            retry_error_callback=_last_status,
        )
        status: TaskStatus = retrying(self.status, task_id)
        if status.running:
            logger.trace(f"Stopped waiting for task {task_id}; still running")
        return status

    def cancel(self, task_id: str) -> None:
        """Ask the server to stop a task; finished tasks are not an error."""
        self._command(task_id, "cancel")

    def release(self, task_id: str) -> None:
        """Free the server resources held by a finished task."""
        self._command(task_id, "release")

    def release_quietly(self, task_id: str) -> None:
        """Release *task_id*, logging instead of raising on failure."""
        try:
            self.release(task_id)
        except LabbcatError as e:
            logger.warning(f"Could not release task {task_id}: {e}")

    def list_tasks(self) -> dict[str, TaskStatus]:
        """Return all tasks the server is tracking, keyed by id."""
        model = self._session.get(self._session.url("threads"))
        if not model:
            return {}
        return {
            str(task_id): TaskStatus.model_validate({"threadId": task_id, **status})
            for task_id, status in model.items()
        }

    def download_result(self, status: TaskStatus, path: Path) -> Path:
        """Save the task's ``result_url`` to *path* with session credentials."""
        if not status.result_url:
            raise ValidationError(f"Task {status.thread_id} has no result URL")
        authorization = self._session.get_required_http_authorization()
        with self._session.http.stream(status.result_url, authorization=authorization) as response:
            if response.status_code != _HTTP_OK:
                raise ResponseException(response.status_code)
            return write_response(response, path)

    def _command(self, task_id: str, command: str) -> None:
        self._session.get(
            self._session.url("threads"),
            {"threadId": str(task_id), "command": command},
        )


class TaskHandle:
    """One server-side task.

    As a context manager it releases the task on exit::

        with search.start(pattern) as task:
            task.wait_for()
            ...
    """

    def __init__(self, manager: TaskManager, task_id: str) -> None:
        """Bind *task_id* to *manager*."""
        self.manager = manager
        self.id = str(task_id)
        self.last_status: TaskStatus | None = None

    def __repr__(self) -> str:
        return f"TaskHandle({self.id!r})"

    def status(self, *, include_log: bool = False) -> TaskStatus:
        """Fetch and remember the current status."""
        self.last_status = self.manager.status(self.id, include_log=include_log)
        return self.last_status

    def wait_for(self, max_seconds: float = 0) -> TaskStatus:
        """Poll until done or *max_seconds*; see :meth:`TaskManager.wait_for`."""
        self.last_status = self.manager.wait_for(self.id, max_seconds)
        return self.last_status

    def cancel(self) -> None:
        """Ask the server to stop the task."""
        self.manager.cancel(self.id)

    def release(self) -> None:
        """Free the task on the server."""
        self.manager.release(self.id)

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.manager.release_quietly(self.id)
