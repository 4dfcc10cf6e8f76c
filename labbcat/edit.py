"""Graph store edits: deletions, bulk tagging and dictionary entries."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from labbcat._http.params import Params
    from labbcat.session import Session


class StoreEditor:
    """POST wrappers for ``api/edit/store/<call>`` and dictionary editing."""

    def __init__(self, session: Session) -> None:
        """Bind to *session*."""
        self._session = session

    def _call(self, call: str, params: Params = None) -> Any:  # noqa: ANN401
        return self._session.post(self._session.edit_url(call), params)

    def delete_transcript(self, transcript_id: str) -> None:
        """Delete a transcript and all its annotations and media."""
        self._call("deleteTranscript", {"id": transcript_id})
        logger.info(f"Deleted transcript {transcript_id}")

    def delete_participant(self, participant_id: str) -> None:
        self._call("deleteParticipant", {"id": participant_id})
        logger.info(f"Deleted participant {participant_id}")

    def delete_media(self, transcript_id: str, file_name: str) -> None:
        """Delete one media file of a transcript."""
        self._call("deleteMedia", {"id": transcript_id, "fileName": file_name})

    def delete_matching_annotations(self, expression: str) -> int:
        """Delete every annotation matching *expression*; return how many."""
        return int(self._call("deleteMatchingAnnotations", {"expression": expression}) or 0)

    def tag_matching_annotations(
        self,
        expression: str,
        layer_id: str,
        label: str,
        confidence: int | None = None,
    ) -> int:
        """Add a *label* on *layer_id* to each match of *expression*.

        Returns the number of tags created.
        """
        model = self._call(
            "tagMatchingAnnotations",
            {
                "expression": expression,
                "layerId": layer_id,
                "label": label,
                "confidence": confidence,
            },
        )
        return int(model or 0)

    # ------------------------------------------------------------------
    # Dictionaries
    # ------------------------------------------------------------------

    def add_dictionary_entry(
        self, manager_id: str, dictionary_id: str, key: str, entry: str
    ) -> None:
        """Add *entry* for *key* to an editable dictionary."""
        self._session.post(
            self._session.url("api/edit/dictionary/add"),
            {
                "layerManagerId": manager_id,
                "dictionaryId": dictionary_id,
                "key": key,
                "entry": entry,
            },
        )

    def remove_dictionary_entry(
        self,
        manager_id: str,
        dictionary_id: str,
        key: str,
        entry: str | None = None,
    ) -> None:
        """Remove *entry* for *key*, or every entry for *key* if omitted."""
        self._session.post(
            self._session.url("api/edit/dictionary/remove"),
            {
                "layerManagerId": manager_id,
                "dictionaryId": dictionary_id,
                "key": key,
                "entry": entry,
            },
        )
