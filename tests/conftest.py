"""Shared pytest fixtures for labbcat tests."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from labbcat.client import LabbcatClient
from labbcat.search import SearchSession
from labbcat.session import Session
from labbcat.tasks import TaskManager
from tests.fixtures.fake_labbcat_server import BASE_URL, FakeLabbcatServer

if TYPE_CHECKING:
    from collections.abc import Iterator

# Gate tests/integration/ collection on LABBCAT_INTEGRATION_URL env var.
collect_ignore_glob: list[str] = (
    [] if os.environ.get("LABBCAT_INTEGRATION_URL") else ["integration/*"]
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's own LABBCAT_* settings out of the tests."""
    for key in list(os.environ):
        if key.startswith("LABBCAT_") and not key.startswith("LABBCAT_INTEGRATION_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def server() -> FakeLabbcatServer:
    """A fresh fake server with no credentials required."""
    return FakeLabbcatServer()


@pytest.fixture
def session(server: FakeLabbcatServer) -> Iterator[Session]:
    """Batch-mode session bound to the fake server."""
    with make_session(server) as s:
        yield s


@pytest.fixture
def tasks(session: Session) -> TaskManager:
    """Task manager that never really sleeps."""
    return make_task_manager(session)


@pytest.fixture
def search(session: Session, tasks: TaskManager) -> SearchSession:
    return SearchSession(session, tasks)


@pytest.fixture
def client(session: Session) -> LabbcatClient:
    """Client wrapping the fake-server session."""
    return LabbcatClient(session=session)


# ---------------------------------------------------------------------------
# Shared test helpers
# ---------------------------------------------------------------------------


def make_session(
    server: FakeLabbcatServer,
    username: str | None = None,
    password: str | None = None,
    **kwargs: object,
) -> Session:
    """Create a Session whose transport is the fake server."""
    kwargs.setdefault("batch_mode", True)
    return Session(
        BASE_URL,
        username,
        password,
        transport=server.transport(),
        **kwargs,  # type: ignore[arg-type]
    )


def make_task_manager(session: Session, clock_step: float = 1.0) -> TaskManager:
    """TaskManager with a fake clock advancing *clock_step* per sleep."""
    now = [0.0]
    sleeps: list[float] = []

    def sleep(seconds: float) -> None:
        sleeps.append(seconds)
        now[0] += max(seconds, clock_step)

    manager = TaskManager(session, sleep=sleep, clock=lambda: now[0])
    manager.sleeps = sleeps  # type: ignore[attr-defined]
    return manager


def task_status(task_id: int | str = 7, *, running: bool = False, **extra: object) -> dict:
    """A ``thread`` model as the server reports it."""
    status: dict[str, object] = {
        "threadId": task_id,
        "threadName": f"task-{task_id}",
        "running": running,
        "percentComplete": 50 if running else 100,
        "duration": 3,
        "status": "working" if running else "done",
        "refreshSeconds": 1,
    }
    status.update(extra)
    return status
