"""
Document model and JSON Pointer tests
"""

import pytest

from ehr_platform.exceptions import MalformedDocumentError
from ehr_platform.services.fhir.document import (
    InvalidPointerError,
    PathNotFoundError,
    array_index,
    MAX_DEPTH,
    clone,
    deep_equal,
    format_pointer,
    is_pointer_prefix,
    nesting_depth,
    parse_json,
    parse_pointer,
    resolve_pointer,
)


class TestParseJson:

    def test_parses_bytes(self):
        assert parse_json(b'{"a": [1, 2]}') == {"a": [1, 2]}

    def test_rejects_duplicate_keys(self):
        with pytest.raises(MalformedDocumentError) as exc_info:
            parse_json('{"a": 1, "a": 2}')
        assert exc_info.value.error_code == "P000"

    @pytest.mark.parametrize("text", ["", "{", "NaN", '{"a": Infinity}', "[1,]"])
    def test_rejects_invalid(self, text):
        with pytest.raises(MalformedDocumentError):
            parse_json(text)

    def test_rejects_non_utf8(self):
        with pytest.raises(MalformedDocumentError):
            parse_json(b"\xff\xfe")


class TestDeepEqual:

    def test_numbers_compare_by_value(self):
        assert deep_equal(1, 1.0)

    def test_bool_never_equals_number(self):
        assert not deep_equal(True, 1)
        assert not deep_equal(0, False)

    def test_object_order_irrelevant(self):
        assert deep_equal({"a": 1, "b": [1, {"c": None}]}, {"b": [1, {"c": None}], "a": 1})

    def test_array_order_matters(self):
        assert not deep_equal([1, 2], [2, 1])

    def test_null_only_equals_null(self):
        assert deep_equal(None, None)
        assert not deep_equal(None, {})

    def test_clone_is_independent(self):
        doc = {"a": [{"b": 1}]}
        copy = clone(doc)
        copy["a"][0]["b"] = 2
        assert doc["a"][0]["b"] == 1


class TestPointer:

    def test_parse_and_unescape(self):
        assert parse_pointer("") == []
        assert parse_pointer("/a~1b/m~0n/0") == ["a/b", "m~n", "0"]
        assert parse_pointer("/") == [""]

    def test_unescape_order(self):
        # "~01" is "~1" literally, not "/"
        assert parse_pointer("/~01") == ["~1"]

    @pytest.mark.parametrize("path", ["a/b", "/a~2", "/trailing~"])
    def test_invalid_pointer(self, path):
        with pytest.raises(InvalidPointerError):
            parse_pointer(path)

    def test_format_round_trip(self):
        tokens = ["a/b", "m~n", ""]
        assert parse_pointer(format_pointer(tokens)) == tokens

    def test_resolve(self, observation):
        assert resolve_pointer(observation, "/code/coding/0/code") == "718-7"
        assert resolve_pointer(observation, "") is observation

    def test_resolve_missing(self, observation):
        with pytest.raises(PathNotFoundError):
            resolve_pointer(observation, "/subject")
        with pytest.raises(PathNotFoundError):
            resolve_pointer(observation, "/note/5")
        with pytest.raises(PathNotFoundError):
            resolve_pointer(observation, "/note/-")

    def test_resolve_through_scalar(self, observation):
        with pytest.raises(InvalidPointerError):
            resolve_pointer(observation, "/status/x")

    @pytest.mark.parametrize("token", ["01", "-1", "1.0", "x"])
    def test_invalid_array_index(self, token):
        with pytest.raises(InvalidPointerError):
            array_index(token, 5)

    def test_array_index_end(self):
        assert array_index("-", 3, allow_end=True) == 3
        assert array_index("3", 3, allow_end=True) == 3
        with pytest.raises(PathNotFoundError):
            array_index("4", 3, allow_end=True)

    def test_prefix(self):
        assert is_pointer_prefix("/a", "/a/b")
        assert is_pointer_prefix("/a", "/a")
        assert not is_pointer_prefix("/a", "/ab")
        assert not is_pointer_prefix("/a/b", "/a")


def _nested_text(depth):
    return '{"a": ' + "[" * depth + "]" * depth + "}"


class TestNestingDepth:

    @pytest.mark.parametrize("doc,depth", [
        (1, 0),
        ({}, 1),
        ({"a": [1, {"b": []}]}, 4),
        ([[], [[[]]]], 4),
    ])
    def test_nesting_depth(self, doc, depth):
        assert nesting_depth(doc) == depth

    def test_accepts_document_at_limit(self):
        doc = parse_json(_nested_text(MAX_DEPTH - 1))
        assert nesting_depth(doc) == MAX_DEPTH

    @pytest.mark.parametrize("depth", [MAX_DEPTH, 600, 900])
    def test_rejects_deep_document(self, depth):
        with pytest.raises(MalformedDocumentError) as exc_info:
            parse_json(_nested_text(depth))
        assert "too deep" in exc_info.value.message

    def test_clone_rejects_deep_value(self):
        doc = []
        for _ in range(600):
            doc = [doc]
        with pytest.raises(MalformedDocumentError):
            clone(doc)
