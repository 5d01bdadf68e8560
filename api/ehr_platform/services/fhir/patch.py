"""
JSON Patch (RFC 6902)

Operations are parsed into PatchOperation values and applied to a private
deep copy of the document. The copy is returned only when every operation
succeeds, so a failed patch never leaves a partially modified document.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ehr_platform.core.logging_config import get_logger
from ehr_platform.exceptions import (
    MalformedDocumentError,
    MalformedPatchError,
    PatchPathNotFoundError,
    PatchTestFailedError,
    InvalidPatchPathError,
)
from .document import (
    Document,
    InvalidPointerError,
    PathNotFoundError,
    array_index,
    clone,
    deep_equal,
    is_pointer_prefix,
    parse_json,
    parse_pointer,
    resolve_tokens,
)

logger = get_logger(__name__)

JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"


class PatchOp(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    REPLACE = "replace"
    MOVE = "move"
    COPY = "copy"
    TEST = "test"


_VALUE_OPS = {PatchOp.ADD, PatchOp.REPLACE, PatchOp.TEST}
_FROM_OPS = {PatchOp.MOVE, PatchOp.COPY}


class _Missing:
    """Marks an operation with no "value" member (distinct from null)."""

    def __repr__(self):
        return "MISSING"


MISSING = _Missing()


@dataclass(frozen=True)
class PatchOperation:
    """One parsed JSON Patch operation"""
    op: PatchOp
    path: str
    value: Any = MISSING
    from_path: Optional[str] = None

    @property
    def has_value(self) -> bool:
        return self.value is not MISSING

    def to_dict(self) -> Dict[str, Any]:
        data = {"op": self.op.value, "path": self.path}
        if self.has_value:
            data["value"] = self.value
        if self.from_path is not None:
            data["from"] = self.from_path
        return data


class _TestMismatch(Exception):
    pass


# ============================================
# Parsing
# ============================================

def parse_json_patch(data: Union[bytes, str, list]) -> List[PatchOperation]:
    """
    Parse a JSON Patch body into operations.

    Raises:
        MalformedPatchError: not a JSON array of well-formed operation objects.
    """
    if isinstance(data, (bytes, bytearray, str)):
        try:
            data = parse_json(data)
        except MalformedDocumentError as e:
            raise MalformedPatchError(e.details.get("reason", e.message)) from e

    if not isinstance(data, list):
        raise MalformedPatchError("patch document must be a JSON array")

    return [_parse_operation(index, raw) for index, raw in enumerate(data)]


def _parse_operation(index: int, raw: Any) -> PatchOperation:
    if not isinstance(raw, dict):
        raise MalformedPatchError("operation must be a JSON object", index)

    name = raw.get("op")
    if not isinstance(name, str):
        raise MalformedPatchError("missing 'op'", index)
    try:
        op = PatchOp(name)
    except ValueError:
        raise MalformedPatchError(f"unknown op {name!r}", index) from None

    path = raw.get("path")
    if not isinstance(path, str):
        raise MalformedPatchError(f"'{op.value}' requires a string 'path'", index)

    value = raw["value"] if "value" in raw else MISSING
    if op in _VALUE_OPS and value is MISSING:
        raise MalformedPatchError(f"'{op.value}' requires 'value'", index)

    from_path = raw.get("from")
    if op in _FROM_OPS and not isinstance(from_path, str):
        raise MalformedPatchError(f"'{op.value}' requires a string 'from'", index)

    return PatchOperation(
        op=op,
        path=path,
        value=value if op in _VALUE_OPS else MISSING,
        from_path=from_path if op in _FROM_OPS else None,
    )


# ============================================
# Apply
# ============================================

def apply_json_patch(document: Document, operations: List[PatchOperation]) -> Document:
    """
    Apply operations in order and return the patched copy.

    The input document is never modified.

    Raises:
        PatchPathNotFoundError: a target or source location does not exist.
        PatchTestFailedError: a test operation did not match.
        InvalidPatchPathError: a pointer is malformed, targets the root, or a
            move would place a value inside itself.
        MalformedDocumentError: the document or a value nests too deeply.
    """
    working = clone(document)
    for index, operation in enumerate(operations):
        try:
            working = _HANDLERS[operation.op](working, operation)
        except PathNotFoundError as e:
            logger.info("json_patch_failed", operation_index=index, op=operation.op.value, reason=str(e))
            raise PatchPathNotFoundError(index, operation.op.value, operation.path, str(e)) from e
        except InvalidPointerError as e:
            logger.info("json_patch_failed", operation_index=index, op=operation.op.value, reason=str(e))
            raise InvalidPatchPathError(index, operation.op.value, operation.path, str(e)) from e
        except _TestMismatch:
            logger.info("json_patch_test_failed", operation_index=index, path=operation.path)
            raise PatchTestFailedError(index, operation.path) from None
    return working


def _target(path: str) -> List[str]:
    tokens = parse_pointer(path)
    if not tokens or path == "/":
        raise InvalidPointerError("the document root cannot be a patch target")
    return tokens


def _parent(doc: Document, tokens: List[str], create: bool = False):
    """Walk to the container holding the last token, optionally creating objects."""
    current = doc
    for token in tokens[:-1]:
        if isinstance(current, dict):
            if token not in current:
                if not create:
                    raise PathNotFoundError(f"member {token!r} does not exist")
                current[token] = {}
            current = current[token]
        elif isinstance(current, list):
            current = current[array_index(token, len(current))]
        else:
            raise InvalidPointerError(f"cannot traverse into scalar at {token!r}")
    if not isinstance(current, (dict, list)):
        raise InvalidPointerError("parent of the target is not an object or array")
    return current


def _insert(doc: Document, tokens: List[str], value: Any) -> None:
    parent = _parent(doc, tokens, create=True)
    key = tokens[-1]
    if isinstance(parent, dict):
        parent[key] = value
    else:
        parent.insert(array_index(key, len(parent), allow_end=True), value)


def _pop(doc: Document, tokens: List[str]) -> Any:
    parent = _parent(doc, tokens)
    key = tokens[-1]
    if isinstance(parent, dict):
        if key not in parent:
            raise PathNotFoundError(f"member {key!r} does not exist")
        return parent.pop(key)
    return parent.pop(array_index(key, len(parent)))


def _add(doc, operation):
    _insert(doc, _target(operation.path), clone(operation.value))
    return doc


def _remove(doc, operation):
    _pop(doc, _target(operation.path))
    return doc


def _replace(doc, operation):
    tokens = _target(operation.path)
    parent = _parent(doc, tokens)
    key = tokens[-1]
    if isinstance(parent, dict):
        if key not in parent:
            raise PathNotFoundError(f"member {key!r} does not exist")
        parent[key] = clone(operation.value)
    else:
        parent[array_index(key, len(parent))] = clone(operation.value)
    return doc


def _move(doc, operation):
    source = _target(operation.from_path)
    tokens = _target(operation.path)
    if source == tokens:
        resolve_tokens(doc, source)
        return doc
    if is_pointer_prefix(operation.from_path, operation.path):
        raise InvalidPointerError(
            f"cannot move {operation.from_path!r} into its own child {operation.path!r}"
        )
    _insert(doc, tokens, _pop(doc, source))
    return doc


def _copy(doc, operation):
    value = clone(resolve_tokens(doc, _target(operation.from_path)))
    _insert(doc, _target(operation.path), value)
    return doc


def _test(doc, operation):
    if not deep_equal(resolve_tokens(doc, _target(operation.path)), operation.value):
        raise _TestMismatch()
    return doc


_HANDLERS = {
    PatchOp.ADD: _add,
    PatchOp.REMOVE: _remove,
    PatchOp.REPLACE: _replace,
    PatchOp.MOVE: _move,
    PatchOp.COPY: _copy,
    PatchOp.TEST: _test,
}
