"""Load testing: simulated clients repeating a search-and-extract workload."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

import pandas as pd
from loguru import logger

from labbcat.exceptions import LabbcatError
from labbcat.pattern import PatternBuilder

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path

    from labbcat.client import LabbcatClient

STEPS = ("search", "matches", "match_annotations", "fragments", "sound_fragments")
"""Timed workload steps, in execution order."""

TIMING_COLUMNS = ["client", "repetition", "step", "seconds"]


@dataclass(frozen=True, slots=True)
class LoadTestOptions:
    """Workload shape for :class:`LoadTester`."""

    clients: int = 3
    repetitions: int = 1
    client_delay: float = 5.0
    search_for: str = "i"
    other_layer: str = "phonemes"
    max_matches: int = 200
    words_context: int = 5
    match_annotations: bool = True
    fragments: bool = True
    sound_fragments: bool = True


def _remove_files(files: list[Path | None]) -> None:
    for path in files:
        if path is not None:
            path.unlink(missing_ok=True)


class LoadTester:
    """Run the workload once on its own, then from concurrent client threads.

    *client_factory* must return a fresh :class:`LabbcatClient` per call;
    each simulated client owns its own session.
    """

    def __init__(
        self,
        client_factory: Callable[[], LabbcatClient],
        options: LoadTestOptions | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        """Store the factory and the workload options."""
        self._client_factory = client_factory
        self.options = options or LoadTestOptions()
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._rows: list[dict[str, object]] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run_idle(self) -> pd.DataFrame:
        """Time one repetition by a single client."""
        self._rows = []
        self._run_client(0, 1, delay=0.0)
        return self._frame()

    def run_load(self) -> pd.DataFrame:
        """Time every client's repetitions, with clients running concurrently."""
        self._rows = []
        opts = self.options
        threads = []
        for c in range(opts.clients):
            thread = threading.Thread(
                target=self._run_client,
                args=(c, opts.repetitions, opts.client_delay),
                name=f"labbcat-load-{c}",
            )
            threads.append(thread)
            thread.start()
            if c < opts.clients - 1:
                self._sleep(opts.client_delay)
        for thread in threads:
            thread.join()
        return self._frame()

    def run(self) -> pd.DataFrame:
        """Idle run then load run; return the per-step summary."""
        logger.info("Timing the workload under idle conditions")
        idle = self.run_idle()
        logger.info(
            f"Simulating {self.options.clients} clients doing "
            f"{self.options.repetitions} search(es) each"
        )
        load = self.run_load()
        return summarize(load, idle)

    # ------------------------------------------------------------------
    # One simulated client
    # ------------------------------------------------------------------

    def _run_client(self, c: int, repetitions: int, delay: float) -> None:
        opts = self.options
        try:
            with self._client_factory() as client:
                pattern = PatternBuilder().add_matches("orthography", opts.search_for)
                for r in range(repetitions):
                    self._repetition(client, pattern, c, r)
                    if r < repetitions - 1:
                        self._sleep(delay)
        except LabbcatError as e:
            logger.error(f"Client {c}: {e}")

    def _repetition(
        self, client: LabbcatClient, pattern: PatternBuilder, c: int, r: int
    ) -> None:
        opts = self.options
        with self._timed(c, r, "search"):
            task = client.search.start(
                pattern, main_participant=False, aligned=False
            )
            task.wait_for()
        try:
            with self._timed(c, r, "matches"):
                matches = client.search.matches(task.id, words_context=opts.words_context)
            logger.trace(f"Client {c}: {len(matches)} matches")
            matches = matches[: opts.max_matches]
            if not matches:
                logger.warning(f"Client {c}: no matches for {opts.search_for!r}")
                return
            layer_ids = ["orthography", opts.other_layer]
            if opts.match_annotations:
                with self._timed(c, r, "match_annotations"):
                    client.search.match_annotations(matches, layer_ids)
            if opts.fragments:
                with self._timed(c, r, "fragments"):
                    files = client.search.fragments_for(
                        matches, layer_ids, "text/praat-textgrid"
                    )
                _remove_files(files)
            if opts.sound_fragments:
                with self._timed(c, r, "sound_fragments"):
                    files = client.search.sound_fragments_for(matches, 16000)
                _remove_files(files)
        finally:
            client.tasks.release_quietly(task.id)

    @contextmanager
    def _timed(self, c: int, r: int, step: str) -> Iterator[None]:
        start = self._clock()
        yield
        seconds = self._clock() - start
        with self._lock:
            self._rows.append({"client": c, "repetition": r, "step": step, "seconds": seconds})

    def _frame(self) -> pd.DataFrame:
        with self._lock:
            return pd.DataFrame(self._rows, columns=TIMING_COLUMNS)


def summarize(load: pd.DataFrame, idle: pd.DataFrame | None = None) -> pd.DataFrame:
    """Mean seconds per step under load, with the idle time alongside."""
    means = load.groupby("step", sort=False)["seconds"].mean().rename("load_seconds")
    summary = means.to_frame()
    if idle is not None:
        idle_means = idle.groupby("step", sort=False)["seconds"].mean().rename("idle_seconds")
        summary = summary.join(idle_means, how="left")
    order = [s for s in STEPS if s in summary.index]
    return summary.loc[order].reset_index()
