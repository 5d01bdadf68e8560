"""
JSON Merge Patch (RFC 7396)
"""

from typing import Union

from ehr_platform.exceptions import MalformedDocumentError, MalformedPatchError
from .document import Document, clone, parse_json

MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"


def parse_merge_patch(data: Union[bytes, str]) -> Document:
    """Parse a merge patch body; any JSON value is a valid merge patch."""
    try:
        return parse_json(data)
    except MalformedDocumentError as e:
        raise MalformedPatchError(e.details.get("reason", e.message)) from e


def apply_merge_patch(document: Document, patch: Document) -> Document:
    """
    Merge patch into document and return a new value.

    null members remove keys, object members merge recursively and everything
    else (arrays included) replaces the target member. A patch that is not an
    object replaces the whole document. Neither argument is modified.
    """
    if not isinstance(patch, dict):
        return clone(patch)

    result = clone(document) if isinstance(document, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        elif isinstance(value, dict):
            result[key] = apply_merge_patch(result.get(key), value)
        else:
            result[key] = clone(value)
    return result
