"""Tests for wire models: task status, uploads and match ids."""

from __future__ import annotations

import pytest

from labbcat.models import Match, MatchId, TaskStatus, Upload, fragment_id
from labbcat.pattern import PatternBuilder


def test_task_status_from_wire() -> None:
    status = TaskStatus.model_validate(
        {
            "threadId": 42,
            "threadName": "search",
            "running": True,
            "percentComplete": 33.7,
            "refreshSeconds": 5,
            "resultUrl": "https://x/result",
            "somethingNew": "ignored",
        }
    )
    assert status.thread_id == "42"
    assert status.percent_complete == 33
    assert status.result_url == "https://x/result"
    assert status.to_json()["threadId"] == "42"


def test_task_status_is_frozen() -> None:
    status = TaskStatus(thread_id="1")
    with pytest.raises(ValueError, match="frozen"):
        status.running = True  # type: ignore[misc]


def test_upload_helpers() -> None:
    upload = Upload.model_validate(
        {
            "id": "u",
            "parameters": [
                {"name": "a", "required": True},
                {"name": "b", "required": True, "value": "x"},
                {"name": "c"},
            ],
        }
    )
    assert upload.missing_required() == ["a"]
    filled = upload.with_values({"a": 1, "z": 2})
    assert filled.missing_required() == []
    assert filled.values() == {"a": 1, "b": "x"}
    assert upload.missing_required() == ["a"]
    assert upload.task_for("t.eaf") is None


def test_upload_task_for_falls_back_to_first() -> None:
    upload = Upload(id="u", transcripts={"renamed.eaf": "5"})
    assert upload.task_for("t.eaf") == "5"


@pytest.mark.parametrize(
    ("match_id", "expected"),
    [
        (
            "g_243;em_12_20035;n_72700-n_72709;p_4;#=ew_0_12345;prefix=024-",
            MatchId(
                graph_id="g_243",
                start_anchor_id="n_72700",
                end_anchor_id="n_72709",
                utterance_id="em_12_20035",
                target_id="ew_0_12345",
                prefix="024-",
                attributes={},
            ),
        ),
        (
            "AP511.eaf;12.3-14.5;speaker=Mike",
            MatchId(
                graph_id="AP511.eaf",
                start_offset=12.3,
                end_offset=14.5,
                attributes={"speaker": "Mike"},
            ),
        ),
    ],
)
def test_match_id_parse(match_id: str, expected: MatchId) -> None:
    assert MatchId.parse(match_id) == expected


def test_match_from_wire_names() -> None:
    match = Match.model_validate({"MatchId": "g_1;#=ew_0_1", "Transcript": "a.eaf", "Line": 1.5})
    assert match.transcript == "a.eaf"
    assert match.line == 1.5
    assert match.line_end is None
    assert match.parsed_id.target_id == "ew_0_1"


def test_fragment_id() -> None:
    assert fragment_id("AP511_MikeThorpe.eaf", 1, 2.5) == "AP511_MikeThorpe__1.000-2.500"
    assert fragment_id("noext", 0.1234, 0.5) == "noext__0.123-0.500"


# ---------------------------------------------------------------------------
# Pattern builder
# ---------------------------------------------------------------------------


def test_pattern_single_column() -> None:
    assert PatternBuilder().add_matches("orthography", "the").build() == {
        "columns": [{"layers": {"orthography": {"pattern": "the"}}}]
    }


def test_pattern_columns_and_conditions() -> None:
    pattern = (
        PatternBuilder()
        .add_matches("orthography", "the")
        .add_not_matches("pos", "DT")
        .add_column(adj=2)
        .add_range("syllableCount", 2, 3)
        .add_column()
        .add_min("frequency", 10)
        .build()
    )
    columns = pattern["columns"]
    assert len(columns) == 3
    assert columns[0]["adj"] == 1
    assert columns[0]["layers"]["pos"] == {"not": True, "pattern": "DT"}
    assert columns[1]["adj"] == 2
    assert columns[1]["layers"]["syllableCount"] == {"min": "2", "max": "3"}
    assert "adj" not in columns[2]
    assert columns[2]["layers"]["frequency"] == {"min": "10"}


def test_pattern_empty_column_is_reused() -> None:
    pattern = PatternBuilder().add_column().add_column(adj=3).add_max("f", 1.5).build()
    assert pattern == {"columns": [{"layers": {"f": {"max": "1.5"}}}]}
