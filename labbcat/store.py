"""Read-only queries against the annotation graph store."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from loguru import logger

from labbcat.exceptions import ResponseException
from labbcat.models import (
    Anchor,
    Annotation,
    Category,
    Layer,
    MediaFile,
    MediaTrack,
    SerializationDescriptor,
    UserInfo,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from labbcat._http import HttpResult
    from labbcat._http.params import Params
    from labbcat.session import Session

_HTTP_NOT_FOUND = 404
_CSV = {"Accept": "text/csv"}


def save_csv(session: Session, result: HttpResult, prefix: str) -> Path:
    """Write a CSV *result* to a temporary file the caller must delete.

    A failed response is decoded as an envelope and raised.
    """
    if not result.ok:
        session.decode(result).raise_for_errors()
        raise ResponseException(result.status)
    with tempfile.NamedTemporaryFile(prefix=prefix, suffix=".csv", delete=False) as fh:
        fh.write(result.body)
    logger.trace(f"{len(result.body)} bytes of CSV saved to {fh.name}")
    return Path(fh.name)


class StoreQueries:
    """Typed wrappers for ``api/store/<call>`` and related read endpoints.

    Paging arguments are zero-based; ``None`` leaves them to the server.
    """

    def __init__(self, session: Session) -> None:
        """Bind to *session*."""
        self._session = session

    def _call(self, call: str, params: Params = None) -> Any:  # noqa: ANN401
        return self._session.get(self._session.store_url(call), params)

    # ------------------------------------------------------------------
    # Corpus and schema
    # ------------------------------------------------------------------

    def get_id(self) -> str:
        """Return the store's id (usually its URL)."""
        return self._call("getId")

    def get_info(self) -> str:
        """Return the corpus information document (HTML)."""
        authorization = self._session.get_required_http_authorization()
        result = self._session.http.get(
            self._session.url("doc/"),
            headers={"Accept": "text/html"},
            authorization=authorization,
        )
        if not result.ok:
            raise ResponseException(result.status)
        return result.text

    def get_layer_ids(self) -> list[str]:
        return self._call("getLayerIds") or []

    def get_layers(self) -> list[Layer]:
        return [Layer.model_validate(layer) for layer in self._call("getLayers") or []]

    def get_layer(self, layer_id: str) -> Layer:
        return Layer.model_validate(self._call("getLayer", {"id": layer_id}))

    def get_corpus_ids(self) -> list[str]:
        return self._call("getCorpusIds") or []

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    def get_participant_ids(self) -> list[str]:
        return self._call("getParticipantIds") or []

    def get_participant(
        self, participant_id: str, layer_ids: Sequence[str] | None = None
    ) -> Annotation | None:
        """Return the participant record, with attributes on *layer_ids*."""
        model = self._call(
            "getParticipant",
            {"id": participant_id, "layerIds": list(layer_ids) if layer_ids else None},
        )
        return Annotation.model_validate(model) if model is not None else None

    def count_matching_participant_ids(self, expression: str) -> int:
        """Count participants matching a store query *expression*."""
        return int(self._call("countMatchingParticipantIds", {"expression": expression}))

    def get_matching_participant_ids(
        self,
        expression: str,
        page_length: int | None = None,
        page_number: int | None = None,
    ) -> list[str]:
        return (
            self._call(
                "getMatchingParticipantIds",
                {"expression": expression, "pageLength": page_length, "pageNumber": page_number},
            )
            or []
        )

    # ------------------------------------------------------------------
    # Transcripts
    # ------------------------------------------------------------------

    def get_transcript_ids(self) -> list[str]:
        return self._call("getTranscriptIds") or []

    def get_transcript_ids_in_corpus(self, corpus_id: str) -> list[str]:
        return self._call("getTranscriptIdsInCorpus", {"id": corpus_id}) or []

    def get_transcript_ids_with_participant(self, participant_id: str) -> list[str]:
        return self._call("getTranscriptIdsWithParticipant", {"id": participant_id}) or []

    def count_matching_transcript_ids(self, expression: str) -> int:
        return int(self._call("countMatchingTranscriptIds", {"expression": expression}))

    def get_matching_transcript_ids(
        self,
        expression: str,
        page_length: int | None = None,
        page_number: int | None = None,
        order: str | None = None,
    ) -> list[str]:
        """Transcript ids matching *expression*, optionally sorted by *order*."""
        return (
            self._call(
                "getMatchingTranscriptIds",
                {
                    "expression": expression,
                    "pageLength": page_length,
                    "pageNumber": page_number,
                    "order": order,
                },
            )
            or []
        )

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------

    def count_matching_annotations(self, expression: str) -> int:
        return int(self._call("countMatchingAnnotations", {"expression": expression}))

    def get_matching_annotations(
        self,
        expression: str,
        page_length: int | None = None,
        page_number: int | None = None,
    ) -> list[Annotation]:
        model = self._call(
            "getMatchingAnnotations",
            {"expression": expression, "pageLength": page_length, "pageNumber": page_number},
        )
        return [Annotation.model_validate(a) for a in model or []]

    def count_annotations(self, transcript_id: str, layer_id: str) -> int:
        return int(self._call("countAnnotations", {"id": transcript_id, "layerId": layer_id}))

    def get_annotations(
        self,
        transcript_id: str,
        layer_id: str,
        page_length: int | None = None,
        page_number: int | None = None,
    ) -> list[Annotation]:
        """Annotations on *layer_id* in one transcript, a page at a time."""
        model = self._call(
            "getAnnotations",
            {
                "id": transcript_id,
                "layerId": layer_id,
                "pageLength": page_length,
                "pageNumber": page_number,
            },
        )
        return [Annotation.model_validate(a) for a in model or []]

    def get_anchors(self, transcript_id: str, anchor_ids: Sequence[str]) -> list[Anchor]:
        model = self._call("getAnchors", {"id": transcript_id, "anchorIds": list(anchor_ids)})
        return [Anchor.model_validate(a) for a in model or []]

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    def get_media_tracks(self) -> list[MediaTrack]:
        return [MediaTrack.model_validate(t) for t in self._call("getMediaTracks") or []]

    def get_available_media(self, transcript_id: str) -> list[MediaFile]:
        model = self._call("getAvailableMedia", {"id": transcript_id})
        return [MediaFile.model_validate(m) for m in model or []]

    def get_media(
        self,
        transcript_id: str,
        track_suffix: str,
        mime_type: str,
        start_offset: float | None = None,
        end_offset: float | None = None,
    ) -> str | None:
        """URL of the transcript's media, optionally cut to an interval."""
        return self._call(
            "getMedia",
            {
                "id": transcript_id,
                "trackSuffix": track_suffix,
                "mimeType": mime_type,
                "startOffset": start_offset,
                "endOffset": end_offset,
            },
        )

    def get_episode_documents(self, transcript_id: str) -> list[MediaFile]:
        model = self._call("getEpisodeDocuments", {"id": transcript_id})
        return [MediaFile.model_validate(m) for m in model or []]

    # ------------------------------------------------------------------
    # Formats
    # ------------------------------------------------------------------

    def get_serializer_descriptors(self) -> list[SerializationDescriptor]:
        model = self._call("getSerializerDescriptors")
        return [SerializationDescriptor.model_validate(d) for d in model or []]

    def get_deserializer_descriptors(self) -> list[SerializationDescriptor]:
        model = self._call("getDeserializerDescriptors")
        return [SerializationDescriptor.model_validate(d) for d in model or []]

    # ------------------------------------------------------------------
    # Other read endpoints
    # ------------------------------------------------------------------

    def get_system_attribute(self, attribute: str) -> str | None:
        """Value of a system attribute, or ``None`` if there is no such attribute."""
        url = self._session.url("api/systemattributes/" + quote(attribute, safe=""))
        try:
            model = self._session.get(url)
        except ResponseException as e:
            if e.http_status == _HTTP_NOT_FOUND:
                return None
            raise
        return model.get("value") if model else None

    def get_user_info(self) -> UserInfo | None:
        """The logged-in user and their roles."""
        model = self._session.get(self._session.url("api/user"))
        return UserInfo.model_validate(model) if model else None

    def get_dictionaries(self) -> dict[str, list[str]]:
        """Dictionary ids available for lookup, keyed by layer manager."""
        model = self._session.get(self._session.url("dictionaries"))
        return {manager: list(ids) for manager, ids in (model or {}).items()}

    def read_categories(
        self,
        class_id: str,
        page_number: int | None = None,
        page_length: int | None = None,
    ) -> list[Category]:
        """Attribute categories of *class_id* (``transcript``, ``participant``, ``layer``)."""
        model = self._session.get(
            self._session.url("api/categories/" + quote(class_id, safe="")),
            {"pageNumber": page_number, "pageLength": page_length},
        )
        return [Category.model_validate(c) for c in model or []]

    def get_dictionary_entries(
        self, manager_id: str, dictionary_id: str, keys: Sequence[str]
    ) -> Path:
        """Look up *keys* in a dictionary; return a CSV file of the entries."""
        with tempfile.TemporaryDirectory(prefix="labbcat_dictionary_") as tmp:
            keys_path = Path(tmp) / "keys.csv"
            keys_path.write_text("".join(f"{key}\n" for key in keys), encoding="utf-8")
            result = self._session.post_multipart_raw(
                self._session.url("dictionary"),
                [
                    ("managerId", manager_id),
                    ("dictionaryId", dictionary_id),
                    ("uploadfile", keys_path),
                ],
                headers=_CSV,
            )
        return save_csv(self._session, result, "labbcat_dictionary_entries_")

    def get_transcript_attributes(
        self, transcript_ids: Sequence[str], layer_ids: Sequence[str]
    ) -> Path:
        """CSV of transcript attribute values; the caller deletes the file."""
        result = self._session.post_raw(
            self._session.url("api/attributes"),
            [("layer", "transcript"), ("id", list(transcript_ids)), ("layer", list(layer_ids))],
            headers=_CSV,
        )
        return save_csv(self._session, result, "labbcat_transcript_attributes_")

    def get_participant_attributes(
        self, participant_ids: Sequence[str], layer_ids: Sequence[str]
    ) -> Path:
        """CSV of participant attribute values; the caller deletes the file."""
        result = self._session.post_raw(
            self._session.url("participants"),
            [
                ("type", "participant"),
                ("content-type", "text/csv"),
                ("csvFieldDelimiter", ","),
                ("participantId", list(participant_ids)),
                ("layer", list(layer_ids)),
            ],
            headers=_CSV,
        )
        return save_csv(self._session, result, "labbcat_participant_attributes_")
