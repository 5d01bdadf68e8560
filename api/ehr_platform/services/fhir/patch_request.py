"""
PATCH body dispatch by Content-Type.

Unsupported media types are rejected before either engine sees the body.
"""

from enum import Enum
from typing import Optional, Union

from ehr_platform.exceptions import UnsupportedMediaTypeError
from .document import Document
from .patch import JSON_PATCH_CONTENT_TYPE, apply_json_patch, parse_json_patch
from .merge_patch import MERGE_PATCH_CONTENT_TYPE, apply_merge_patch, parse_merge_patch


class PatchFormat(str, Enum):
    JSON_PATCH = JSON_PATCH_CONTENT_TYPE
    MERGE_PATCH = MERGE_PATCH_CONTENT_TYPE


def resolve_patch_format(content_type: Optional[str]) -> PatchFormat:
    """
    Map a Content-Type header onto a patch format.

    Media type parameters (charset etc.) and case are ignored.

    Raises:
        UnsupportedMediaTypeError: anything other than the two patch media types.
    """
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    try:
        return PatchFormat(media_type)
    except ValueError:
        raise UnsupportedMediaTypeError(content_type) from None


def apply_patch_request(
    document: Document,
    body: Union[bytes, str],
    content_type: Optional[str],
) -> Document:
    """Parse body with the engine selected by content_type and apply it to document."""
    fmt = resolve_patch_format(content_type)
    if fmt is PatchFormat.JSON_PATCH:
        return apply_json_patch(document, parse_json_patch(body))
    return apply_merge_patch(document, parse_merge_patch(body))
