"""Tests for read-only store queries and graph store edits."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest

from labbcat.edit import StoreEditor
from labbcat.exceptions import ResponseException
from labbcat.store import StoreQueries
from tests.fixtures.fake_labbcat_server import envelope

if TYPE_CHECKING:
    from labbcat.session import Session
    from tests.fixtures.fake_labbcat_server import FakeLabbcatServer


@pytest.fixture
def store(session: Session) -> StoreQueries:
    return StoreQueries(session)


@pytest.fixture
def editor(session: Session) -> StoreEditor:
    return StoreEditor(session)


def test_get_id(server: FakeLabbcatServer, store: StoreQueries) -> None:
    server.route("GET", "api/store/getId", envelope("https://labbcat.example.org/labbcat/"))
    assert store.get_id() == "https://labbcat.example.org/labbcat/"


def test_get_layers(server: FakeLabbcatServer, store: StoreQueries) -> None:
    server.route(
        "GET",
        "api/store/getLayers",
        envelope(
            [
                {"id": "transcript", "alignment": 0, "peers": False},
                {"id": "orthography", "parentId": "word", "alignment": 0, "extra": 1},
            ]
        ),
    )
    layers = store.get_layers()
    assert [layer.id for layer in layers] == ["transcript", "orthography"]
    assert layers[1].parent_id == "word"


def test_get_layer_unknown(server: FakeLabbcatServer, store: StoreQueries) -> None:
    server.route(
        "GET", "api/store/getLayer", envelope(None, status=404, code=1, errors=["No layer: x"])
    )
    with pytest.raises(ResponseException, match="No layer: x"):
        store.get_layer("x")


def test_paged_queries_send_page_names(server: FakeLabbcatServer, store: StoreQueries) -> None:
    server.route("GET", "api/store/getMatchingTranscriptIds", envelope(["a.eaf", "b.eaf"]))
    ids = store.get_matching_transcript_ids(
        "/AP/.test(id)", page_length=2, page_number=1, order="id DESC"
    )
    assert ids == ["a.eaf", "b.eaf"]
    assert server.requests_to("api/store/getMatchingTranscriptIds")[0].query == [
        ("expression", "/AP/.test(id)"),
        ("pageLength", "2"),
        ("pageNumber", "1"),
        ("order", "id DESC"),
    ]


def test_counts_are_ints(server: FakeLabbcatServer, store: StoreQueries) -> None:
    server.route("GET", "api/store/countMatchingParticipantIds", envelope(3))
    server.route("GET", "api/store/countAnnotations", envelope("12"))
    assert store.count_matching_participant_ids("/Mike/.test(id)") == 3
    assert store.count_annotations("a.eaf", "orthography") == 12


def test_get_participant_with_layers(server: FakeLabbcatServer, store: StoreQueries) -> None:
    server.route(
        "GET",
        "api/store/getParticipant",
        envelope({"id": "m_-2_1", "label": "Mike", "layerId": "participant"}),
    )
    participant = store.get_participant("Mike", ["participant_gender", "participant_age"])
    assert participant is not None
    assert participant.label == "Mike"
    assert server.requests_to("api/store/getParticipant")[0].query_values("layerIds") == [
        "participant_gender",
        "participant_age",
    ]


def test_get_anchors(server: FakeLabbcatServer, store: StoreQueries) -> None:
    server.route("GET", "api/store/getAnchors", envelope([{"id": "n_1", "offset": 1.5}]))
    anchors = store.get_anchors("a.eaf", ["n_1", "n_2"])
    assert anchors[0].offset == 1.5
    assert server.requests_to("api/store/getAnchors")[0].query_values("anchorIds") == [
        "n_1",
        "n_2",
    ]


def test_get_media_optional_interval(server: FakeLabbcatServer, store: StoreQueries) -> None:
    server.route("GET", "api/store/getMedia", envelope("https://x/a.wav"))
    assert store.get_media("a.eaf", "", "audio/wav") == "https://x/a.wav"
    query = dict(server.requests_to("api/store/getMedia")[0].query)
    assert "startOffset" not in query
    assert query["trackSuffix"] == ""


def test_get_system_attribute(server: FakeLabbcatServer, store: StoreQueries) -> None:
    server.route(
        "GET", "api/systemattributes/title", envelope({"name": "title", "value": "LaBB-CAT"})
    )
    server.route("GET", "api/systemattributes/nope", httpx.Response(404, text="Not Found"))
    assert store.get_system_attribute("title") == "LaBB-CAT"
    assert store.get_system_attribute("nope") is None


def test_get_user_info(server: FakeLabbcatServer, store: StoreQueries) -> None:
    server.route("GET", "api/user", envelope({"user": "ann", "roles": ["view", "edit"]}))
    user = store.get_user_info()
    assert user is not None
    assert user.roles == ["view", "edit"]


def test_get_info_returns_html(server: FakeLabbcatServer, store: StoreQueries) -> None:
    server.route("GET", "doc/", httpx.Response(200, text="<p>A corpus</p>"))
    assert store.get_info() == "<p>A corpus</p>"
    assert server.requests_to("doc/")[0].headers["Accept"] == "text/html"


def test_read_categories(server: FakeLabbcatServer, store: StoreQueries) -> None:
    server.route(
        "GET",
        "api/categories/transcript",
        envelope([{"class_id": "transcript", "category": "General", "display_order": 1}]),
    )
    categories = store.read_categories("transcript")
    assert categories[0].category == "General"


def test_transcript_attributes_csv(server: FakeLabbcatServer, store: StoreQueries) -> None:
    server.route(
        "POST",
        "api/attributes",
        httpx.Response(200, content=b"transcript,transcript_type\na.eaf,interview\n"),
    )
    path = store.get_transcript_attributes(["a.eaf"], ["transcript_type"])
    try:
        assert path.read_bytes().startswith(b"transcript,transcript_type")
    finally:
        path.unlink()
    request = server.requests_to("api/attributes")[0]
    assert request.form() == [
        ("layer", "transcript"),
        ("id", "a.eaf"),
        ("layer", "transcript_type"),
    ]
    assert request.headers["Accept"] == "text/csv"


def test_participant_attributes_error(server: FakeLabbcatServer, store: StoreQueries) -> None:
    server.route(
        "POST",
        "participants",
        envelope(None, status=400, code=1, errors=["Invalid layer: nope"]),
    )
    with pytest.raises(ResponseException, match="Invalid layer: nope"):
        store.get_participant_attributes(["Mike"], ["nope"])


def test_dictionary_entries_upload_keys(server: FakeLabbcatServer, store: StoreQueries) -> None:
    server.route("POST", "dictionary", httpx.Response(200, content=b"the,D@\n"))
    path = store.get_dictionary_entries("CELEX-EN", "Phonology (wordform)", ["the", "a"])
    try:
        assert path.read_bytes() == b"the,D@\n"
    finally:
        path.unlink()
    body = server.requests_to("dictionary")[0].body
    assert b"the\na\n" in body
    assert b'name="uploadfile"; filename="keys.csv"' in body


# ---------------------------------------------------------------------------
# Edits
# ---------------------------------------------------------------------------


def test_delete_transcript(server: FakeLabbcatServer, editor: StoreEditor) -> None:
    server.route("POST", "api/edit/store/deleteTranscript", envelope(None))
    editor.delete_transcript("a.eaf")
    assert server.requests_to("api/edit/store/deleteTranscript")[0].form() == [("id", "a.eaf")]


def test_tag_matching_annotations(server: FakeLabbcatServer, editor: StoreEditor) -> None:
    server.route("POST", "api/edit/store/tagMatchingAnnotations", envelope(4))
    assert editor.tag_matching_annotations("layer.id == 'word'", "pos", "N") == 4
    form = dict(server.requests_to("api/edit/store/tagMatchingAnnotations")[0].form())
    assert "confidence" not in form
    assert form["label"] == "N"


def test_remove_dictionary_entry_without_entry(
    server: FakeLabbcatServer, editor: StoreEditor
) -> None:
    server.route("POST", "api/edit/dictionary/remove", envelope(None))
    editor.remove_dictionary_entry("FlatFileDictionary", "lexicon:word->pron", "the")
    form = server.requests_to("api/edit/dictionary/remove")[0].form()
    assert form == [
        ("layerManagerId", "FlatFileDictionary"),
        ("dictionaryId", "lexicon:word->pron"),
        ("key", "the"),
    ]
