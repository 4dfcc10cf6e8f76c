"""Tests for request parameter flattening and URL encoding."""

from __future__ import annotations

from pathlib import Path

from labbcat._http.params import append_query, encode_params, is_collection, iter_params


def test_none_values_are_omitted() -> None:
    assert iter_params({"a": 1, "b": None, "c": "x"}) == [("a", 1), ("c", "x")]
    assert encode_params({"a": None}) == ""


def test_collections_expand_in_order() -> None:
    pairs = iter_params([("layer", ["orthography", "phonemes"]), ("id", "t1"), ("layer", ("pos",))])
    assert pairs == [
        ("layer", "orthography"),
        ("layer", "phonemes"),
        ("id", "t1"),
        ("layer", "pos"),
    ]


def test_none_elements_in_collection_are_dropped() -> None:
    assert iter_params({"id": ["a", None, "b"]}) == [("id", "a"), ("id", "b")]


def test_booleans_render_lowercase() -> None:
    assert encode_params({"only_aligned": True, "copyColumns": False}) == (
        "only_aligned=true&copyColumns=false"
    )


def test_encode_uses_plus_for_space_and_escapes() -> None:
    assert encode_params({"expression": "id = 'a&b'"}) == "expression=id+%3D+%27a%26b%27"


def test_strings_and_paths_are_not_collections() -> None:
    assert not is_collection("abc")
    assert not is_collection(b"abc")
    assert not is_collection(Path("x.txt"))
    assert not is_collection({"a": 1})
    assert is_collection(["a"])


def test_append_query() -> None:
    assert append_query("http://h/x", None) == "http://h/x"
    assert append_query("http://h/x", {"a": 1}) == "http://h/x?a=1"
    assert append_query("http://h/x?y=2", {"a": 1}) == "http://h/x?y=2&a=1"
