"""Searching, match retrieval and fragment extraction."""

from __future__ import annotations

import json
import tempfile
from email.message import Message
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pandas as pd
from loguru import logger
from tqdm import tqdm

from labbcat._http import write_response
from labbcat.exceptions import ValidationError
from labbcat.models import Annotation, Match, fragment_id
from labbcat.pattern import PatternBuilder

if TYPE_CHECKING:
    from collections.abc import Sequence

    from labbcat.session import Session
    from labbcat.tasks import TaskHandle, TaskManager

_HTTP_OK = 200
_HTTP_NOT_FOUND = 404

Pattern = PatternBuilder | dict[str, Any] | str


def pattern_json(pattern: Pattern | None) -> str:
    """Normalize *pattern* to its JSON text, rejecting empty patterns."""
    if pattern is None:
        raise ValidationError("No pattern specified.")
    if isinstance(pattern, PatternBuilder):
        pattern = pattern.build()
    elif isinstance(pattern, str):
        try:
            pattern = json.loads(pattern)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Pattern is not valid JSON: {e}") from e
    if not isinstance(pattern, dict) or not pattern.get("columns"):
        raise ValidationError("Pattern has no columns.")
    return json.dumps(pattern)


def filename_from_disposition(disposition: str | None) -> str | None:
    """Extract the file name from a ``Content-Disposition`` header value."""
    if not disposition:
        return None
    header = Message()
    header["Content-Disposition"] = disposition
    name = header.get_filename()
    if not name:
        return None
    # directory parts are dropped
    name = Path(name).name
    return name or None


def matches_dataframe(matches: Sequence[Match]) -> pd.DataFrame:
    """Tabulate *matches* with the server's column names."""
    columns = [f.alias for f in Match.model_fields.values()]
    return pd.DataFrame([m.model_dump(by_alias=True) for m in matches], columns=columns)


def _match_id(match: Match | str) -> str:
    return match.match_id if isinstance(match, Match) else match


def _check_parallel(transcript_ids: Sequence[Any], *others: Sequence[Any]) -> None:
    sizes = [len(transcript_ids), *(len(o) for o in others)]
    if len(set(sizes)) > 1:
        raise ValidationError(
            "transcript_ids, starts and ends must have equal length, "
            f"got {', '.join(str(s) for s in sizes)}"
        )


class SearchSession:
    """Start searches and fetch what they matched.

    A search runs as a server task: :meth:`start` returns its
    :class:`~labbcat.tasks.TaskHandle`, and :meth:`matches` waits for it and
    reads the results page by page.  :meth:`search` does both and releases
    the task afterwards.
    """

    def __init__(self, session: Session, tasks: TaskManager) -> None:
        """Bind to *session*; *tasks* is used to wait for and release searches."""
        self._session = session
        self._tasks = tasks

    # ------------------------------------------------------------------
    # Searching
    # ------------------------------------------------------------------

    def start(  # noqa: PLR0913
        self,
        pattern: Pattern | None,
        participant_ids: Sequence[str] | None = None,
        transcript_types: Sequence[str] | None = None,
        *,
        main_participant: bool = True,
        aligned: bool = False,
        matches_per_transcript: int | None = None,
        overlap_threshold: int | None = None,
    ) -> TaskHandle:
        """Start a search task for *pattern* and return its handle.

        Raises ``ValidationError`` for a missing or empty pattern before
        anything is sent.
        """
        search_json = pattern_json(pattern)
        self._session.begin_operation()
        params: list[tuple[str, Any]] = [
            ("command", "search"),
            ("searchJson", search_json),
            ("words_context", 0),
            ("only_main_speaker", True if main_participant else None),
            ("only_aligned", True if aligned else None),
            ("matches_per_transcript", matches_per_transcript),
            ("participant_id", list(participant_ids) if participant_ids is not None else None),
            ("transcript_type", list(transcript_types) if transcript_types is not None else None),
            ("overlap_threshold", overlap_threshold),
        ]
        model = self._session.get(self._session.url("search"), params)
        task_id = str(model["threadId"])
        logger.trace(f"Search started as task {task_id}")
        return self._tasks.handle(task_id)

    def matches(
        self,
        task_id: str,
        page_length: int | None = None,
        page_number: int | None = None,
        words_context: int = 0,
    ) -> list[Match]:
        """Wait for search *task_id* and return one page of its matches.

        Pages are zero-based; a page past the end is empty.  Returns an
        empty list if the session is cancelled while waiting.
        """
        self._tasks.wait_for(str(task_id), 0)
        if self._session.cancelling:
            return []
        model = self._session.get(
            self._session.url("resultsStream"),
            {
                "threadId": str(task_id),
                "words_context": words_context,
                "pageLength": page_length,
                "pageNumber": page_number,
            },
        )
        return [Match.model_validate(m) for m in (model or {}).get("matches") or []]

    def search(  # noqa: PLR0913
        self,
        pattern: Pattern | None,
        participant_ids: Sequence[str] | None = None,
        transcript_types: Sequence[str] | None = None,
        *,
        main_participant: bool = True,
        aligned: bool = False,
        matches_per_transcript: int | None = None,
        overlap_threshold: int | None = None,
        words_context: int = 0,
        max_matches: int | None = None,
    ) -> list[Match]:
        """Run a search to completion and return its matches.

        With *max_matches* only the first page of that size is read.  The
        task is released on the server afterwards, even on failure.
        """
        task = self.start(
            pattern,
            participant_ids,
            transcript_types,
            main_participant=main_participant,
            aligned=aligned,
            matches_per_transcript=matches_per_transcript,
            overlap_threshold=overlap_threshold,
        )
        try:
            page_number = 0 if max_matches is not None else None
            return self.matches(task.id, max_matches, page_number, words_context)
        finally:
            self._tasks.release_quietly(task.id)

    # ------------------------------------------------------------------
    # Match annotations
    # ------------------------------------------------------------------

    def match_annotations(
        self,
        matches: Sequence[Match | str],
        layer_ids: Sequence[str],
        target_offset: int = 0,
        annotations_per_layer: int = 1,
    ) -> list[list[Annotation | None]]:
        """Return annotations on *layer_ids* for each match.

        Each row has ``len(layer_ids) * annotations_per_layer`` entries;
        ``None`` marks a missing annotation.  An unknown layer fails the
        whole call with ``ResponseException``.
        """
        self._session.begin_operation()
        match_ids = [_match_id(m) for m in matches]
        per_match = len(layer_ids) * annotations_per_layer
        with tempfile.TemporaryDirectory(prefix="labbcat_match_annotations_") as tmp:
            csv_path = Path(tmp) / "matches.csv"
            pd.DataFrame({"MatchId": match_ids}).to_csv(csv_path, index=False)
            logger.trace(f"{len(match_ids)} match ids written to {csv_path}")
            model = self._session.post_multipart(
                self._session.url("api/getMatchAnnotations"),
                [
                    ("layer", list(layer_ids)),
                    ("targetOffset", target_offset),
                    ("annotationsPerLayer", annotations_per_layer),
                    ("csvFieldDelimiter", ","),
                    ("targetColumn", 0),
                    ("copyColumns", False),
                    ("uploadfile", csv_path),
                ],
            )
        rows: list[list[Annotation | None]] = []
        for index in range(len(match_ids)):
            raw = model[index] if model is not None and index < len(model) else []
            row: list[Annotation | None] = []
            for a in range(per_match):
                value = raw[a] if a < len(raw) else None
                row.append(Annotation.model_validate(value) if value is not None else None)
            rows.append(row)
        return rows

    # ------------------------------------------------------------------
    # Fragments
    # ------------------------------------------------------------------

    def sound_fragments(
        self,
        transcript_ids: Sequence[str | None],
        starts: Sequence[float | None],
        ends: Sequence[float | None],
        sample_rate: int | None = None,
        directory: Path | None = None,
    ) -> list[Path | None]:
        """Download WAV extracts, one per (transcript, start, end) triple.

        Failed or skipped triples leave ``None`` in their slot.  Files go to
        *directory* (created if needed) or a fresh temporary directory that
        the caller owns.
        """
        _check_parallel(transcript_ids, starts, ends)
        return self._download_fragments(
            "soundfragment",
            transcript_ids,
            starts,
            ends,
            extra_params={"sampleRate": sample_rate},
            accept="audio/wav",
            suffix=".wav",
            directory=directory,
            label="Sound fragments",
        )

    def sound_fragments_for(
        self,
        matches: Sequence[Match],
        sample_rate: int | None = None,
        directory: Path | None = None,
    ) -> list[Path | None]:
        """:meth:`sound_fragments` for the utterances of *matches*."""
        return self.sound_fragments(
            [m.transcript for m in matches],
            [m.line for m in matches],
            [m.line_end for m in matches],
            sample_rate,
            directory,
        )

    def fragments(  # noqa: PLR0913
        self,
        transcript_ids: Sequence[str | None],
        starts: Sequence[float | None],
        ends: Sequence[float | None],
        layer_ids: Sequence[str],
        mime_type: str,
        directory: Path | None = None,
    ) -> list[Path | None]:
        """Download transcript extracts in *mime_type* (e.g. ``text/praat-textgrid``)."""
        _check_parallel(transcript_ids, starts, ends)
        return self._download_fragments(
            "api/serialize/fragment",
            transcript_ids,
            starts,
            ends,
            extra_params={"mimeType": mime_type, "layerId": list(layer_ids)},
            accept=mime_type,
            suffix="",
            directory=directory,
            label="Fragments",
        )

    def fragments_for(
        self,
        matches: Sequence[Match],
        layer_ids: Sequence[str],
        mime_type: str,
        directory: Path | None = None,
    ) -> list[Path | None]:
        """:meth:`fragments` for the utterances of *matches*."""
        return self.fragments(
            [m.transcript for m in matches],
            [m.line for m in matches],
            [m.line_end for m in matches],
            layer_ids,
            mime_type,
            directory,
        )

    def _download_fragments(  # noqa: PLR0913
        self,
        resource: str,
        transcript_ids: Sequence[str | None],
        starts: Sequence[float | None],
        ends: Sequence[float | None],
        *,
        extra_params: dict[str, Any],
        accept: str,
        suffix: str,
        directory: Path | None,
        label: str,
    ) -> list[Path | None]:
        self._session.begin_operation()
        if directory is None:
            directory = Path(tempfile.mkdtemp(prefix="labbcat_fragments_"))
        else:
            directory = Path(directory)
            directory.mkdir(parents=True, exist_ok=True)
        authorization = self._session.get_required_http_authorization()
        url = self._session.url(resource)
        results: list[Path | None] = [None] * len(transcript_ids)
        triples = list(zip(transcript_ids, starts, ends, strict=True))
        for index, (transcript_id, start, end) in enumerate(
            tqdm(triples, desc=label, unit="file", leave=False)
        ):
            if self._session.cancelling:
                logger.info(f"{label}: cancelled after {index} of {len(triples)}")
                break
            if transcript_id is None or start is None or end is None:
                continue
            params = {"id": transcript_id, "start": start, "end": end, **extra_params}
            with self._session.http.stream(
                url, params, {"Accept": accept}, authorization
            ) as response:
                if response.status_code != _HTTP_OK:
                    if response.status_code != _HTTP_NOT_FOUND:
                        logger.error(
                            f"{label}: HTTP {response.status_code} for "
                            f"{transcript_id} {start}-{end}"
                        )
                    continue
                name = filename_from_disposition(
                    response.headers.get("content-disposition")
                ) or fragment_id(transcript_id, start, end) + suffix
                results[index] = write_response(response, directory / name)
        return results

    # ------------------------------------------------------------------
    # Script-processing tasks
    # ------------------------------------------------------------------

    def process_with_praat(  # noqa: PLR0913
        self,
        match_ids: Sequence[Match | str],
        starts: Sequence[float],
        ends: Sequence[float],
        script: str,
        window_offset: float = 0.0,
        attributes: Sequence[str] | None = None,
    ) -> TaskHandle:
        """Run a Praat *script* over each interval; return the task's handle.

        The task's ``result_url`` points at a CSV of the script's output.
        """
        ids = [_match_id(m) for m in match_ids]
        _check_parallel(ids, starts, ends)
        frame = pd.DataFrame({"MatchId": ids, "Start": starts, "End": ends})
        return self._csv_task(
            "praat",
            frame,
            [
                ("matchIdColumn", 0),
                ("startTimeColumn", 1),
                ("endTimeColumn", 2),
                ("windowOffset", window_offset),
                ("script", script),
                ("attribute", list(attributes) if attributes else None),
            ],
        )

    def interval_annotations(  # noqa: PLR0913
        self,
        transcript_ids: Sequence[str],
        participant_ids: Sequence[str],
        starts: Sequence[float],
        ends: Sequence[float],
        layer_ids: Sequence[str],
        label_delimiter: str = " ",
        *,
        partial_containment: bool = False,
    ) -> TaskHandle:
        """Collect labels on *layer_ids* within each interval, as a task."""
        _check_parallel(transcript_ids, participant_ids, starts, ends)
        frame = pd.DataFrame(
            {
                "Transcript": transcript_ids,
                "Participant": participant_ids,
                "Start": starts,
                "End": ends,
            }
        )
        return self._csv_task(
            "api/annotation/intervals",
            frame,
            [
                ("transcriptColumn", 0),
                ("participantColumn", 1),
                ("startTimeColumn", 2),
                ("endTimeColumn", 3),
                ("layerId", list(layer_ids)),
                ("labelDelimiter", label_delimiter),
                ("partialContainment", partial_containment),
            ],
        )

    def _csv_task(
        self, resource: str, frame: pd.DataFrame, params: list[tuple[str, Any]]
    ) -> TaskHandle:
        self._session.begin_operation()
        with tempfile.TemporaryDirectory(prefix="labbcat_intervals_") as tmp:
            csv_path = Path(tmp) / "intervals.csv"
            frame.to_csv(csv_path, index=False)
            model = self._session.post_multipart(
                self._session.url(resource),
                [("csv", csv_path), *params],
            )
        task_id = str(model["threadId"])
        logger.trace(f"{resource} started as task {task_id}")
        return self._tasks.handle(task_id)
