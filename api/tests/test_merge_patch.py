"""
JSON Merge Patch (RFC 7396) tests
"""

import copy

import pytest

from ehr_platform.exceptions import MalformedDocumentError, MalformedPatchError
from ehr_platform.services.fhir.merge_patch import apply_merge_patch, parse_merge_patch


class TestApplyMergePatch:

    def test_status_then_remove_code(self):
        doc = {"status": "draft", "code": "CBC"}
        doc = apply_merge_patch(doc, {"status": "active"})
        assert doc == {"status": "active", "code": "CBC"}
        doc = apply_merge_patch(doc, {"code": None})
        assert doc == {"status": "active"}

    def test_nested_objects_merge(self):
        doc = {"valueQuantity": {"value": 1, "unit": "mg"}}
        result = apply_merge_patch(doc, {"valueQuantity": {"value": 2}})
        assert result == {"valueQuantity": {"value": 2, "unit": "mg"}}

    def test_arrays_replaced_wholesale(self):
        doc = {"note": [{"text": "a"}, {"text": "b"}]}
        assert apply_merge_patch(doc, {"note": [{"text": "c"}]}) == {"note": [{"text": "c"}]}

    def test_remove_absent_key_is_noop(self):
        assert apply_merge_patch({"a": 1}, {"b": None}) == {"a": 1}

    def test_non_object_patch_replaces(self):
        assert apply_merge_patch({"a": 1}, ["x"]) == ["x"]
        assert apply_merge_patch({"a": 1}, "text") == "text"

    def test_non_object_target_becomes_object(self):
        assert apply_merge_patch([1, 2], {"a": 1}) == {"a": 1}
        assert apply_merge_patch({"a": "scalar"}, {"a": {"b": 1}}) == {"a": {"b": 1}}

    def test_nulls_inside_new_object_are_dropped(self):
        assert apply_merge_patch({}, {"a": {"b": None, "c": 1}}) == {"a": {"c": 1}}

    def test_inputs_not_mutated(self):
        doc = {"a": {"b": [1]}, "c": 1}
        patch = {"a": {"d": {"e": 1}}, "c": None}
        doc_before, patch_before = copy.deepcopy(doc), copy.deepcopy(patch)
        result = apply_merge_patch(doc, patch)
        result["a"]["d"]["e"] = 99
        result["a"]["b"].append(2)
        assert doc == doc_before
        assert patch == patch_before

    @pytest.mark.parametrize("doc,patch", [
        ({"a": 1, "b": {"c": 2}}, {"b": {"c": None, "d": 3}}),
        ({"list": [1]}, {"list": [2, 3], "x": None}),
        ({}, {"a": {"b": {"c": None}}}),
        ("scalar", {"a": 1}),
    ])
    def test_idempotent(self, doc, patch):
        once = apply_merge_patch(doc, patch)
        assert apply_merge_patch(once, patch) == once


class TestParseMergePatch:

    def test_parse(self):
        assert parse_merge_patch(b'{"status": null}') == {"status": None}

    def test_invalid_json(self):
        with pytest.raises(MalformedPatchError):
            parse_merge_patch(b"{status: active}")


class TestDeepDocuments:

    def test_deep_target_is_structured_error(self):
        doc = {}
        for _ in range(600):
            doc = {"a": doc}
        with pytest.raises(MalformedDocumentError):
            apply_merge_patch(doc, {"b": 1})

    def test_deep_patch_body_rejected_on_parse(self):
        with pytest.raises(MalformedPatchError):
            parse_merge_patch('{"a": ' + "[" * 600 + "]" * 600 + "}")
