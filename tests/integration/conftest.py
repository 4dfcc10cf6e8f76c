"""Integration test helpers: a client for a live LaBB-CAT server."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from labbcat.client import LabbcatClient
from labbcat.config import LabbcatConfig
from labbcat.exceptions import TransportError

if TYPE_CHECKING:
    from collections.abc import Iterator

pytestmark = pytest.mark.integration


def _env(key: str, default: str) -> str:
    return os.environ.get(key, default).strip()


@pytest.fixture(scope="session")
def live_client() -> Iterator[LabbcatClient]:
    """Client for the server at LABBCAT_INTEGRATION_URL.

    Skips the test session if the server is unreachable.
    """
    cfg = LabbcatConfig(
        url=_env("LABBCAT_INTEGRATION_URL", "http://localhost:8080/labbcat/"),
        username=_env("LABBCAT_INTEGRATION_USER", "labbcat") or None,
        password=_env("LABBCAT_INTEGRATION_PASSWORD", "labbcat") or None,
    )
    client = LabbcatClient(cfg, batch_mode=True)
    try:
        client.connect()
    except TransportError as exc:
        client.close()
        pytest.skip(f"LaBB-CAT not reachable at {cfg.url}: {exc}")
    yield client
    client.close()
