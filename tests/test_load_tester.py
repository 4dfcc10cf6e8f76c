"""Tests for the load tester's workload and timing summary."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pandas as pd

from labbcat.client import LabbcatClient
from labbcat.load_tester import LoadTester, LoadTestOptions, summarize
from tests.conftest import make_session, task_status
from tests.fixtures.fake_labbcat_server import envelope

if TYPE_CHECKING:
    from collections.abc import Callable

    from tests.fixtures.fake_labbcat_server import FakeLabbcatServer


def _ticking_clock() -> Callable[[], float]:
    now = [0.0]

    def clock() -> float:
        now[0] += 0.5
        return now[0]

    return clock


def _workload_server(server: FakeLabbcatServer) -> FakeLabbcatServer:
    server.route("GET", "search", envelope({"threadId": 3}))
    server.route("GET", "thread", envelope(task_status(3)))
    server.route("GET", "threads", envelope(None))
    server.route(
        "GET",
        "resultsStream",
        envelope(
            {
                "matches": [
                    {
                        "MatchId": "g_1;#=ew_0_1",
                        "Transcript": "a.eaf",
                        "Line": 1.0,
                        "LineEnd": 2.0,
                    }
                ]
            }
        ),
    )
    server.route("POST", "api/getMatchAnnotations", envelope([[None, None]]))
    server.route("GET", "api/serialize/fragment", httpx.Response(200, content=b"TextGrid"))
    server.route("GET", "soundfragment", httpx.Response(200, content=b"RIFF"))
    return server


def test_summarize_means_per_step() -> None:
    load = pd.DataFrame(
        [
            {"client": 0, "repetition": 0, "step": "search", "seconds": 2.0},
            {"client": 1, "repetition": 0, "step": "search", "seconds": 4.0},
            {"client": 0, "repetition": 0, "step": "matches", "seconds": 1.0},
        ]
    )
    idle = pd.DataFrame([{"client": 0, "repetition": 0, "step": "search", "seconds": 1.0}])
    summary = summarize(load, idle)
    assert list(summary["step"]) == ["search", "matches"]
    assert summary.loc[0, "load_seconds"] == 3.0
    assert summary.loc[0, "idle_seconds"] == 1.0
    assert pd.isna(summary.loc[1, "idle_seconds"])


def test_idle_run_times_every_step(server: FakeLabbcatServer) -> None:
    _workload_server(server)
    tester = LoadTester(
        lambda: LabbcatClient(session=make_session(server)),
        clock=_ticking_clock(),
    )
    timings = tester.run_idle()
    assert list(timings["step"]) == [
        "search",
        "matches",
        "match_annotations",
        "fragments",
        "sound_fragments",
    ]
    assert (timings["seconds"] > 0).all()
    assert server.requests_to("threads")[-1].query == [("threadId", "3"), ("command", "release")]


def test_load_run_uses_one_session_per_client(server: FakeLabbcatServer) -> None:
    _workload_server(server)
    sessions = []

    def factory() -> LabbcatClient:
        client = LabbcatClient(session=make_session(server))
        sessions.append(client.session)
        return client

    options = LoadTestOptions(
        clients=3, repetitions=2, client_delay=0.0, fragments=False, sound_fragments=False
    )
    tester = LoadTester(factory, options, sleep=lambda _s: None)
    timings = tester.run_load()
    assert len(sessions) == 3
    assert len({id(s) for s in sessions}) == 3
    assert len(timings) == 3 * 2 * 3
    assert set(timings["client"]) == {0, 1, 2}


def test_client_errors_are_logged_not_raised(server: FakeLabbcatServer) -> None:
    server.route("GET", "search", httpx.Response(500, text="down"))
    tester = LoadTester(lambda: LabbcatClient(session=make_session(server)))
    assert tester.run_idle().empty
