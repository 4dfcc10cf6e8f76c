"""Two-phase transcript upload: submit the files, then resolve parameters."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from loguru import logger

from labbcat.exceptions import LabbcatError, ResponseException, ValidationError
from labbcat.models import Upload

if TYPE_CHECKING:
    from labbcat.session import Session

MediaFiles = Mapping[str, Sequence[Path]] | Sequence[Path] | None
"""Media per track suffix, or a plain list for the default (``""``) track."""

_HTTP_NOT_FOUND = 404


def _media_by_suffix(media: Any) -> dict[str, list[Path]]:  # noqa: ANN401
    if not media:
        return {}
    if isinstance(media, Mapping):
        return {suffix: [Path(f) for f in files] for suffix, files in media.items()}
    return {"": [Path(f) for f in media]}


class UploadSession:
    """Negotiates transcript uploads with the server.

    Phase one (:meth:`submit`) sends the files and returns an
    :class:`~labbcat.models.Upload` listing the parameters the server needs.
    Phase two (:meth:`resolve`) sends those values; the answer maps each
    transcript to the id of its background processing task.  Uploads that
    are never resolved should be :meth:`discard`-ed.
    """

    def __init__(self, session: Session) -> None:
        """Bind to *session*."""
        self._session = session

    def submit(
        self,
        transcript: Path,
        media: MediaFiles = None,
        *,
        merge: bool = False,
    ) -> Upload:
        """Upload *transcript* (and media) and return the pending upload.

        Set *merge* when the transcript already exists and should be updated.
        """
        self._session.begin_operation()
        params: list[tuple[str, Any]] = [("transcript", Path(transcript))]
        if merge:
            params.append(("merge", True))
        for suffix, files in _media_by_suffix(media).items():
            params.extend((f"media{suffix}", f) for f in files)
        model = self._session.post_multipart(
            self._session.url("api/edit/transcript/upload"), params
        )
        upload = Upload.model_validate(model)
        logger.trace(
            f"Upload {upload.id} needs parameters: "
            f"{', '.join(p.name for p in upload.parameters)}"
        )
        return upload

    def resolve(self, upload: Upload, values: Mapping[str, Any] | None = None) -> Upload:
        """Send parameter values for *upload* and return the committed upload.

        Raises ``ValidationError`` naming every required parameter that
        still has no value; nothing is sent in that case.
        """
        if values:
            upload = upload.with_values(dict(values))
        missing = upload.missing_required()
        if missing:
            raise ValidationError(
                f"Upload {upload.id} is missing required parameters: {', '.join(missing)}"
            )
        model = self._session.get(
            self._upload_url(upload.id), upload.values(), method="PUT"
        )
        resolved = Upload.model_validate(model)
        if resolved.transcripts:
            logger.trace(f"Upload {upload.id} tasks: {resolved.transcripts}")
        return resolved

    def discard(self, upload: Upload | str) -> None:
        """Abandon an upload that will not be resolved."""
        upload_id = upload.id if isinstance(upload, Upload) else upload
        self._session.delete(self._upload_url(upload_id))

    def discard_quietly(self, upload: Upload | str) -> None:
        """Discard *upload*, logging instead of raising on failure."""
        upload_id = upload.id if isinstance(upload, Upload) else upload
        try:
            self.discard(upload_id)
        except LabbcatError as e:
            logger.warning(f"Could not discard upload {upload_id}: {e}")

    def new_transcript(
        self,
        transcript: Path,
        media: Sequence[Path] | None = None,
        track_suffix: str = "",
        *,
        transcript_type: str | None = None,
        corpus: str | None = None,
        episode: str | None = None,
    ) -> str | None:
        """Upload a new transcript and return its processing task id.

        Falls back to the legacy ``edit/transcript/new`` endpoint when the
        server answers 404 to either upload phase.
        """
        transcript = Path(transcript)
        try:
            upload = self.submit(transcript, {track_suffix: list(media or [])})
            upload = upload.with_values(
                {
                    name: value
                    for name, value in (
                        ("labbcat_transcript_type", transcript_type),
                        ("labbcat_corpus", corpus),
                        ("labbcat_episode", episode),
                    )
                    if upload.parameter(name) is not None
                }
            )
            return self.resolve(upload).task_for(transcript.name)
        except ResponseException as e:
            if e.http_status != _HTTP_NOT_FOUND:
                raise
        return self._legacy_new(transcript, media, track_suffix, transcript_type, corpus, episode)

    def update_transcript(self, transcript: Path, *, generate: bool = True) -> str | None:
        """Upload a new version of an existing transcript; return its task id.

        Falls back to the legacy endpoint like :meth:`new_transcript`.
        """
        transcript = Path(transcript)
        try:
            upload = self.submit(transcript, merge=True)
            if upload.parameter("labbcat_generate") is not None:
                upload = upload.with_values({"labbcat_generate": generate})
            return self.resolve(upload).task_for(transcript.name)
        except ResponseException as e:
            if e.http_status != _HTTP_NOT_FOUND:
                raise
        return self._legacy_update(transcript)

    # ------------------------------------------------------------------
    # Legacy endpoint
    # ------------------------------------------------------------------

    def _legacy_new(
        self,
        transcript: Path,
        media: Sequence[Path] | None,
        track_suffix: str,
        transcript_type: str | None,
        corpus: str | None,
        episode: str | None,
    ) -> str | None:
        logger.debug("Upload API not available; using edit/transcript/new")
        params: list[tuple[str, Any]] = [
            ("todo", "new"),
            ("auto", True),
            ("transcriptType", transcript_type),
            ("corpus", corpus),
            ("episode", episode),
            ("uploadfile1_0", transcript),
        ]
        params.extend((f"uploadmedia{track_suffix}1", Path(f)) for f in media or [])
        model = self._session.post_multipart(self._session.url("edit/transcript/new"), params)
        return model["result"].get(transcript.name)

    def _legacy_update(self, transcript: Path) -> str | None:
        logger.debug("Upload API not available; using edit/transcript/new")
        params = [("todo", "update"), ("auto", True), ("uploadfile1_0", transcript)]
        model = self._session.post_multipart(self._session.url("edit/transcript/new"), params)
        return model["result"].get(transcript.name)

    def _upload_url(self, upload_id: str) -> str:
        return self._session.url("api/edit/transcript/upload/" + quote(upload_id, safe=""))
